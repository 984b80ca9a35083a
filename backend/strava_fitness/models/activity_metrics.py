"""Computed per-activity fitness metrics."""

from sqlalchemy import Column, BigInteger, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from strava_fitness.database import Base


class ActivityMetrics(Base):
    """Metrics derived from one pass over an activity's stream."""

    __tablename__ = "activity_metrics"

    activity_id = Column(
        BigInteger, ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True
    )

    efficiency_factor = Column(Float, default=0)
    normalized_efficiency_factor = Column(Float, default=0)
    aerobic_decoupling = Column(Float, default=0)  # percent
    cardiac_drift = Column(Float, default=0)  # bpm
    trimp = Column(Float, default=0)
    hrss = Column(Float, default=0)
    data_quality_score = Column(Float, default=0)  # 0-1
    steady_state_pct = Column(Float, default=0)

    # Pace (min/km) around HR zone midpoints
    pace_at_z1 = Column(Float, nullable=True)
    pace_at_z2 = Column(Float, nullable=True)
    pace_at_z3 = Column(Float, nullable=True)

    computed_at = Column(DateTime, default=datetime.utcnow)

    activity = relationship("Activity", back_populates="metrics")

    def __repr__(self):
        return f"<ActivityMetrics {self.activity_id} EF={self.efficiency_factor:.2f} TRIMP={self.trimp:.1f}>"

"""Daily training load (CTL/ATL/TSB) and rolling aggregates."""

from sqlalchemy import Column, Date, Float, Integer, DateTime
from datetime import datetime

from strava_fitness.database import Base


class FitnessTrend(Base):
    """One row per calendar day between the first and last activity."""

    __tablename__ = "fitness_trends"

    date = Column(Date, primary_key=True)

    daily_trimp = Column(Float, default=0)
    ctl = Column(Float, default=0)  # Chronic Training Load (fitness)
    atl = Column(Float, default=0)  # Acute Training Load (fatigue)
    tsb = Column(Float, default=0)  # Training Stress Balance (form)

    efficiency_factor_7d = Column(Float, nullable=True)
    efficiency_factor_28d = Column(Float, nullable=True)
    efficiency_factor_90d = Column(Float, nullable=True)
    run_count_7d = Column(Integer, default=0)
    total_distance_7d = Column(Float, default=0)  # meters
    total_time_7d = Column(Integer, default=0)  # seconds

    computed_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<FitnessTrend {self.date} CTL={self.ctl:.1f} ATL={self.atl:.1f} TSB={self.tsb:.1f}>"

"""Best result per record category (race distances, best efforts, longest run)."""

from sqlalchemy import Column, BigInteger, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from strava_fitness.database import Base


class PersonalRecord(Base):
    """One row per category; replaced only when a new result beats it."""

    __tablename__ = "personal_records"

    id = Column(Integer, primary_key=True, index=True)
    category = Column(String(50), unique=True, nullable=False, index=True)
    activity_id = Column(
        BigInteger, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True
    )

    distance_meters = Column(Float, nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    pace_per_mile = Column(Float, nullable=True)  # seconds per mile
    avg_heartrate = Column(Float, nullable=True)
    achieved_at = Column(DateTime, nullable=False)  # UTC

    # Stream offsets of a best effort; empty for whole-activity records
    start_offset = Column(Integer, nullable=True)
    end_offset = Column(Integer, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    activity = relationship("Activity", back_populates="personal_records")

    def __repr__(self):
        return f"<PersonalRecord {self.category} {self.duration_seconds}s activity={self.activity_id}>"

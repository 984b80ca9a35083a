"""Activity model for storing run summaries from Strava."""

from sqlalchemy import Column, BigInteger, Integer, String, Float, Boolean, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from strava_fitness.database import Base


class Activity(Base):
    """Activity summary as returned by /athlete/activities."""

    __tablename__ = "activities"

    # Strava activity id
    id = Column(BigInteger, primary_key=True, autoincrement=False)
    athlete_id = Column(BigInteger, nullable=True, index=True)

    name = Column(String(255), default="")
    activity_type = Column(String(50), index=True)  # "Run", "Ride", "Swim", etc.
    sport_type = Column(String(50), nullable=True)

    # Timing
    start_date = Column(DateTime, index=True)  # UTC
    start_date_local = Column(DateTime)  # athlete wall clock
    timezone = Column(String(100), nullable=True)

    # Metrics
    distance = Column(Float, default=0)  # meters
    moving_time = Column(Integer, default=0)  # seconds
    elapsed_time = Column(Integer, default=0)  # seconds
    total_elevation_gain = Column(Float, default=0)  # meters

    # Heart rate
    average_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    has_heartrate = Column(Boolean, default=False, index=True)

    # Speed/Cadence
    average_speed = Column(Float, default=0)  # m/s
    max_speed = Column(Float, default=0)  # m/s
    average_cadence = Column(Float, nullable=True)
    suffer_score = Column(Integer, nullable=True)

    # Stream sync tracking
    streams_synced = Column(Boolean, default=False, index=True)
    streams_synced_at = Column(DateTime, nullable=True)

    # Last time this activity was checked for personal records
    records_checked_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    stream_points = relationship(
        "StreamPoint", back_populates="activity", cascade="all, delete-orphan"
    )
    metrics = relationship(
        "ActivityMetrics", back_populates="activity", uselist=False, cascade="all, delete-orphan"
    )
    personal_records = relationship(
        "PersonalRecord", back_populates="activity", cascade="all, delete-orphan"
    )

    @property
    def label(self) -> str:
        day = self.start_date_local.date().isoformat() if self.start_date_local else "?"
        return f"{self.name or 'Activity'} ({day})"

    def __repr__(self):
        return f"<Activity {self.id} {self.name} ({self.activity_type}) streams={self.streams_synced}>"

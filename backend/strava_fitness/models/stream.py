"""Second-by-second stream samples for an activity."""

from sqlalchemy import Column, BigInteger, Integer, Float, ForeignKey
from sqlalchemy.orm import relationship

from strava_fitness.database import Base


class StreamPoint(Base):
    """One sample of /activities/{id}/streams, keyed by time offset."""

    __tablename__ = "streams"

    activity_id = Column(
        BigInteger, ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    time_offset = Column(Integer, primary_key=True)  # seconds from start

    latlng_lat = Column(Float, nullable=True)
    latlng_lng = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)  # meters
    velocity_smooth = Column(Float, nullable=True)  # m/s
    heartrate = Column(Integer, nullable=True)  # bpm
    cadence = Column(Integer, nullable=True)  # spm
    grade_smooth = Column(Float, nullable=True)  # percent
    distance = Column(Float, nullable=True)  # cumulative meters

    activity = relationship("Activity", back_populates="stream_points")

    def __repr__(self):
        return f"<StreamPoint {self.activity_id}@{self.time_offset}s hr={self.heartrate}>"

"""OAuth tokens for Strava API access (single athlete)."""

from sqlalchemy import Column, BigInteger, Integer, String, DateTime, CheckConstraint
from datetime import datetime

from strava_fitness.database import Base


class AthleteAuth(Base):
    """Singleton row holding the current Strava token pair."""

    __tablename__ = "athlete_auth"
    __table_args__ = (CheckConstraint("id = 1", name="ck_athlete_auth_singleton"),)

    id = Column(Integer, primary_key=True, default=1)
    athlete_id = Column(BigInteger, nullable=True)
    access_token = Column(String(512), nullable=False)
    refresh_token = Column(String(512), nullable=False)
    expires_at = Column(DateTime, nullable=False)  # UTC

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<AthleteAuth athlete={self.athlete_id} expires={self.expires_at}>"

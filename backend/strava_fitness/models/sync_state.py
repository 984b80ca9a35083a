"""Key-value store for sync bookkeeping (watermarks)."""

from sqlalchemy import Column, String, DateTime
from datetime import datetime

from strava_fitness.database import Base


class SyncState(Base):

    __tablename__ = "sync_state"

    key = Column(String(100), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SyncState {self.key}={self.value}>"

"""
Pytest configuration and fixtures

Every test gets a fresh in-memory SQLite database; Strava is faked with
httpx.MockTransport and time with FakeClock.
"""
import os

# Must be set before strava_fitness.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from strava_fitness.database import init_db
from strava_fitness.schemas import StravaActivity, StreamSample
from strava_fitness.services.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTokenProvider:
    def __init__(self, tokens: Optional[List[str]] = None):
        self.tokens = tokens or ["token-1", "token-2", "token-3"]
        self.calls: List[bool] = []
        self._current = 0

    async def get_token(self, force_refresh: bool = False) -> str:
        self.calls.append(force_refresh)
        if force_refresh:
            self._current += 1
        return self.tokens[self._current]

    @property
    def refreshes(self) -> int:
        return sum(1 for forced in self.calls if forced)


def activity_payload(
    activity_id: int,
    start: datetime = datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc),
    activity_type: str = "Run",
    has_heartrate: bool = True,
    distance: float = 10000.0,
    moving_time: int = 3000,
    average_heartrate: Optional[float] = 150.0,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """A /athlete/activities item as Strava returns it."""
    return {
        "id": activity_id,
        "athlete": {"id": 42},
        "name": name or f"Run {activity_id}",
        "type": activity_type,
        "sport_type": activity_type,
        "start_date": start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        # Strava sends local wall-clock time with a "Z" suffix
        "start_date_local": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "timezone": "(GMT+00:00) Europe/London",
        "distance": distance,
        "moving_time": moving_time,
        "elapsed_time": moving_time + 60,
        "total_elevation_gain": 50.0,
        "average_speed": distance / moving_time if moving_time else 0,
        "max_speed": 4.5,
        "average_heartrate": average_heartrate,
        "max_heartrate": 175.0 if average_heartrate else None,
        "has_heartrate": has_heartrate,
    }


def stream_payload(
    n: int = 600,
    velocity: float = 3.3,
    heartrate: float = 150,
    hr_drift: float = 0.0,
) -> Dict[str, Any]:
    """A key_by_type stream set of ``n`` one-second samples."""
    return {
        "time": {"data": list(range(n))},
        "latlng": {"data": [[51.5 + i * 1e-5, -0.12] for i in range(n)]},
        "altitude": {"data": [20.0] * n},
        "velocity_smooth": {"data": [velocity] * n},
        "heartrate": {"data": [heartrate + hr_drift * i / max(n - 1, 1) for i in range(n)]},
        "cadence": {"data": [88] * n},
        "grade_smooth": {"data": [0.0] * n},
        "distance": {"data": [velocity * i for i in range(n)]},
    }


def make_samples(
    n: int,
    velocity: float = 3.0,
    heartrate: int = 150,
    grade: float = 0.0,
) -> List[StreamSample]:
    return [
        StreamSample(time_offset=i, velocity_smooth=velocity, heartrate=heartrate, grade_smooth=grade)
        for i in range(n)
    ]


def make_summary(activity_id: int, **kwargs) -> StravaActivity:
    return StravaActivity.model_validate(activity_payload(activity_id, **kwargs))


@pytest.fixture
def db_session():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(clock=clock, sleep=clock.sleep)


@pytest.fixture
def token_provider():
    return FakeTokenProvider()


@pytest.fixture
def utc_now():
    return datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def days_ago(utc_now):
    def _days_ago(days: int) -> datetime:
        return utc_now - timedelta(days=days)
    return _days_ago

"""Database models package."""

from strava_fitness.models.activity import Activity
from strava_fitness.models.stream import StreamPoint
from strava_fitness.models.activity_metrics import ActivityMetrics
from strava_fitness.models.fitness_trend import FitnessTrend
from strava_fitness.models.sync_state import SyncState
from strava_fitness.models.athlete_auth import AthleteAuth
from strava_fitness.models.personal_record import PersonalRecord

__all__ = [
    "Activity",
    "StreamPoint",
    "ActivityMetrics",
    "FitnessTrend",
    "SyncState",
    "AthleteAuth",
    "PersonalRecord",
]

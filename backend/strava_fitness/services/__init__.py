"""Services package."""

from strava_fitness.services.auth_service import StravaTokenProvider, TokenProvider
from strava_fitness.services.rate_limiter import RateLimiter
from strava_fitness.services.repository import ActivityRepository
from strava_fitness.services.strava_service import StravaClient
from strava_fitness.services.sync_service import ProgressChannel, SyncService

__all__ = [
    "ActivityRepository",
    "ProgressChannel",
    "RateLimiter",
    "StravaClient",
    "StravaTokenProvider",
    "SyncService",
    "TokenProvider",
]

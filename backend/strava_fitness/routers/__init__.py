"""Routers package."""

from strava_fitness.routers.auth import router as auth_router
from strava_fitness.routers.fitness import router as fitness_router
from strava_fitness.routers.sync import router as sync_router

__all__ = [
    "auth_router",
    "fitness_router",
    "sync_router",
]

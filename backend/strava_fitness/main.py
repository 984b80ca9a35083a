"""Strava Fitness - FastAPI Application Entry Point."""

from fastapi import FastAPI
from contextlib import asynccontextmanager

from strava_fitness.config import get_settings
from strava_fitness.database import init_db
from strava_fitness.logging_config import setup_logging
from strava_fitness.routers import auth_router, fitness_router, sync_router


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    # Startup: Create database tables
    init_db()
    yield


app = FastAPI(
    title="Strava Fitness API",
    description="Strava activity ingestion with aerobic efficiency and training load analytics",
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(sync_router, prefix="/api/v1")
app.include_router(fitness_router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}

"""Sync trigger and rate limit status."""

import asyncio
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from strava_fitness.config import get_settings
from strava_fitness.database import get_db
from strava_fitness.exceptions import CancellationError, SyncAbortedError
from strava_fitness.routers.auth import get_token_provider
from strava_fitness.schemas import RateLimitStatus, SyncReport
from strava_fitness.services.auth_service import TokenProvider
from strava_fitness.services.metrics_service import HRZones
from strava_fitness.services.rate_limiter import RateLimiter
from strava_fitness.services.repository import ActivityRepository
from strava_fitness.services.strava_service import StravaClient
from strava_fitness.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# One sync at a time per process
_sync_lock = asyncio.Lock()


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter shared by every Strava request."""
    return RateLimiter.from_settings(get_settings())


def get_strava_client(
    token_provider: TokenProvider = Depends(get_token_provider),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> StravaClient:
    settings = get_settings()
    return StravaClient(
        token_provider,
        rate_limiter=rate_limiter,
        page_size=settings.summary_page_size,
        timeout=settings.http_timeout_seconds,
    )


@router.post("", response_model=SyncReport)
async def run_sync(
    db: Session = Depends(get_db),
    client: StravaClient = Depends(get_strava_client),
):
    """Run a full sync: summaries, streams, metrics, training load, then records."""
    if _sync_lock.locked():
        raise HTTPException(status_code=409, detail="A sync is already running")

    settings = get_settings()
    async with _sync_lock:
        service = SyncService(
            client,
            ActivityRepository(db),
            zones=HRZones.from_settings(settings),
            stream_batch_size=settings.stream_batch_size,
            concurrency=settings.stream_concurrency,
        )
        try:
            return await service.sync_all()
        except SyncAbortedError as e:
            return JSONResponse(status_code=502, content=e.report.model_dump(mode="json"))
        except CancellationError:
            raise HTTPException(status_code=503, detail="Sync cancelled")
        finally:
            await client.aclose()


@router.get("/rate-limit", response_model=RateLimitStatus)
def rate_limit_status(rate_limiter: RateLimiter = Depends(get_rate_limiter)):
    """Remaining Strava quota as last seen by this process."""
    return rate_limiter.status()

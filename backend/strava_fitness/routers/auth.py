"""Strava OAuth router."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from strava_fitness.config import get_settings
from strava_fitness.database import get_db
from strava_fitness.exceptions import ApiError, TransportError
from strava_fitness.models import AthleteAuth
from strava_fitness.schemas import AuthUrlResponse, StravaConnection
from strava_fitness.services.auth_service import StravaTokenProvider

router = APIRouter(prefix="/auth", tags=["auth"])


# ============== Dependencies ==============

def get_token_provider(db: Session = Depends(get_db)) -> StravaTokenProvider:
    return StravaTokenProvider(db, get_settings())


# ============== Strava OAuth ==============

@router.get("/strava/url", response_model=AuthUrlResponse)
def get_strava_auth_url(provider: StravaTokenProvider = Depends(get_token_provider)):
    """Get Strava OAuth authorization URL."""
    return AuthUrlResponse(url=provider.get_auth_url())


@router.get("/strava/callback", response_model=StravaConnection)
async def strava_callback(
    code: str = Query(...),
    provider: StravaTokenProvider = Depends(get_token_provider),
):
    """Handle Strava OAuth callback and store the token pair."""
    try:
        auth = await provider.exchange_code(code)
    except ApiError as e:
        raise HTTPException(status_code=400, detail=f"Strava authorization failed: {e}")
    except TransportError as e:
        raise HTTPException(status_code=502, detail=f"Strava unreachable: {e}")

    return StravaConnection(connected=True, athlete_id=auth.athlete_id, expires_at=auth.expires_at)


@router.get("/strava/status", response_model=StravaConnection)
def strava_status(db: Session = Depends(get_db)):
    """Whether a Strava token pair is stored."""
    auth = db.query(AthleteAuth).filter(AthleteAuth.id == 1).first()
    if not auth:
        return StravaConnection(connected=False)
    return StravaConnection(connected=True, athlete_id=auth.athlete_id, expires_at=auth.expires_at)

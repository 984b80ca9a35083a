"""Strava OAuth tokens: authorization, code exchange and refresh."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from strava_fitness.config import Settings, get_settings
from strava_fitness.exceptions import ApiError, TransportError
from strava_fitness.models import AthleteAuth

logger = logging.getLogger(__name__)

# Refresh when the token expires within this margin
REFRESH_MARGIN = timedelta(seconds=60)


class TokenProvider(Protocol):
    """Supplies a bearer token for Strava requests."""

    async def get_token(self, force_refresh: bool = False) -> str:
        ...


class StravaTokenProvider:
    """Token provider backed by the ``athlete_auth`` row.

    Tokens are refreshed transparently when close to expiry, or on demand
    after Strava rejected the current one, and the new pair is persisted.
    """

    AUTH_URL = "https://www.strava.com/oauth/authorize"
    TOKEN_URL = "https://www.strava.com/oauth/token"

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._http = http_client
        self._lock = asyncio.Lock()

    def get_auth_url(self, redirect_uri: Optional[str] = None) -> str:
        """Generate Strava OAuth authorization URL."""
        params = {
            "client_id": self.settings.strava_client_id,
            "redirect_uri": redirect_uri or self.settings.strava_redirect_uri,
            "response_type": "code",
            "scope": "read,activity:read_all",
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> AthleteAuth:
        """Exchange authorization code for tokens and store them."""
        data = await self._token_request({"code": code, "grant_type": "authorization_code"})
        athlete_id = (data.get("athlete") or {}).get("id")
        return self._store(data, athlete_id=athlete_id)

    async def get_token(self, force_refresh: bool = False) -> str:
        async with self._lock:
            auth = self._load()
            if auth is None:
                raise ApiError(401, "Strava not connected: no stored or configured tokens")

            if not force_refresh and auth.expires_at - REFRESH_MARGIN > datetime.utcnow():
                return auth.access_token

            logger.info("Refreshing Strava access token")
            data = await self._token_request({
                "refresh_token": auth.refresh_token,
                "grant_type": "refresh_token",
            })
            return self._store(data).access_token

    def _load(self) -> Optional[AthleteAuth]:
        auth = self.db.query(AthleteAuth).filter(AthleteAuth.id == 1).first()
        if auth is None and self.settings.strava_refresh_token:
            # Bootstrap from environment; expired so the first use refreshes it
            auth = AthleteAuth(
                id=1,
                access_token=self.settings.strava_access_token or "",
                refresh_token=self.settings.strava_refresh_token,
                expires_at=datetime.utcnow() - timedelta(seconds=1),
            )
            self.db.add(auth)
            self.db.commit()
        return auth

    def _store(self, data: Dict[str, Any], athlete_id: Optional[int] = None) -> AthleteAuth:
        try:
            access_token = data["access_token"]
            refresh_token = data["refresh_token"]
            expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc).replace(tzinfo=None)
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(502, f"unexpected token response: {e}") from e

        auth = self.db.query(AthleteAuth).filter(AthleteAuth.id == 1).first()
        if auth is None:
            auth = AthleteAuth(id=1)
            self.db.add(auth)
        auth.access_token = access_token
        auth.refresh_token = refresh_token
        auth.expires_at = expires_at
        if athlete_id is not None:
            auth.athlete_id = athlete_id
        self.db.commit()
        self.db.refresh(auth)
        return auth

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        form = {
            "client_id": self.settings.strava_client_id,
            "client_secret": self.settings.strava_client_secret,
            **form,
        }
        try:
            if self._http is not None:
                response = await self._http.post(self.TOKEN_URL, data=form)
            else:
                async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
                    response = await client.post(self.TOKEN_URL, data=form)
        except httpx.TransportError as e:
            raise TransportError(f"token request failed: {e}") from e

        if response.status_code != 200:
            raise ApiError(response.status_code, response.text)
        return response.json()

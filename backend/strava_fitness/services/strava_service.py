"""Strava API client: activity summaries and streams, rate limited."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from strava_fitness.exceptions import (
    ApiError,
    DataError,
    PartialFetchError,
    TransportError,
)
from strava_fitness.schemas import RateLimitStatus, StravaActivity, StreamSample
from strava_fitness.services.auth_service import TokenProvider
from strava_fitness.services.rate_limiter import RateLimiter, run_cancellable

logger = logging.getLogger(__name__)

STREAM_KEYS = [
    "time",
    "latlng",
    "altitude",
    "velocity_smooth",
    "heartrate",
    "cadence",
    "grade_smooth",
    "distance",
]


def parse_usage_header(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse a "short,daily" counter pair such as ``"34,512"``."""
    if not value:
        return None
    parts = value.split(",")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0].strip()), int(parts[1].strip())
    except ValueError:
        return None


def streams_to_samples(payload: Any) -> List[StreamSample]:
    """Convert a key_by_type stream set into per-second samples."""
    if not isinstance(payload, dict):
        raise DataError(f"expected stream set object, got {type(payload).__name__}")

    def series(key: str) -> list:
        stream = payload.get(key)
        if stream is None:
            return []
        if not isinstance(stream, dict) or not isinstance(stream.get("data"), list):
            raise DataError(f"stream '{key}' has no data array")
        return stream["data"]

    times = series("time")
    latlng = series("latlng")
    columns = {
        "altitude": series("altitude"),
        "velocity_smooth": series("velocity_smooth"),
        "heartrate": series("heartrate"),
        "cadence": series("cadence"),
        "grade_smooth": series("grade_smooth"),
        "distance": series("distance"),
    }

    samples = []
    try:
        for i, offset in enumerate(times):
            values = {k: v[i] for k, v in columns.items() if i < len(v) and v[i] is not None}
            for k in ("heartrate", "cadence"):
                if k in values:
                    values[k] = int(round(values[k]))
            if i < len(latlng) and latlng[i]:
                values["latlng_lat"], values["latlng_lng"] = latlng[i][0], latlng[i][1]
            samples.append(StreamSample(time_offset=offset, **values))
    except (ValidationError, TypeError, IndexError) as e:
        raise DataError(f"malformed stream data: {e}") from e

    return samples


class StravaClient:
    """Client for the Strava v3 API.

    Every request goes through the shared ``RateLimiter`` and every response
    reconciles the limiter from Strava's usage headers before the body is
    looked at.
    """

    BASE_URL = "https://www.strava.com/api/v3"
    MAX_PAGE_SIZE = 200

    def __init__(
        self,
        token_provider: TokenProvider,
        rate_limiter: Optional[RateLimiter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        page_size: int = MAX_PAGE_SIZE,
        timeout: float = 30.0,
    ):
        self.token_provider = token_provider
        self.rate_limiter = rate_limiter or RateLimiter()
        self.page_size = min(page_size, self.MAX_PAGE_SIZE)
        self._http = http_client or httpx.AsyncClient(base_url=self.BASE_URL, timeout=timeout)
        self._owns_http = http_client is None

    async def __aenter__(self) -> "StravaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.status()

    async def fetch_summaries_page(
        self,
        after: Optional[datetime],
        page: int,
        page_size: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[StravaActivity]:
        """Fetch one page of activity summaries started after ``after``."""
        params: Dict[str, Any] = {"page": page, "per_page": page_size}
        if after is not None:
            if after.tzinfo is None:
                after = after.replace(tzinfo=timezone.utc)
            params["after"] = int(after.timestamp())

        data = await self._get("/athlete/activities", params, cancel_event)
        if not isinstance(data, list):
            raise DataError(f"expected activity list, got {type(data).__name__}")
        try:
            return [StravaActivity.model_validate(item) for item in data]
        except ValidationError as e:
            raise DataError(f"malformed activity on page {page}: {e}") from e

    async def fetch_all_summaries_since(
        self,
        after: Optional[datetime],
        on_progress: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[StravaActivity]:
        """Fetch all activities after a given time (paginated).

        A failure part-way raises ``PartialFetchError`` carrying the
        activities gathered so far; cancellation propagates untouched.
        """
        all_activities: List[StravaActivity] = []
        page = 1

        while True:
            try:
                page_data = await self.fetch_summaries_page(
                    after, page, self.page_size, cancel_event
                )
            except (TransportError, ApiError, DataError) as e:
                logger.warning("Fetching activity page %d failed: %s", page, e)
                raise PartialFetchError(page, all_activities) from e

            if not page_data:
                break

            all_activities.extend(page_data)
            logger.debug("Fetched page %d (%d activities)", page, len(page_data))

            if on_progress is not None:
                on_progress(len(all_activities))

            if len(page_data) < self.page_size:
                break  # Last page

            page += 1

        return all_activities

    async def fetch_stream(
        self,
        activity_id: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[StreamSample]:
        """Fetch the full stream set for an activity."""
        data = await self._get(
            f"/activities/{activity_id}/streams",
            {"keys": ",".join(STREAM_KEYS), "key_by_type": "true"},
            cancel_event,
        )
        return streams_to_samples(data)

    async def _get(
        self,
        path: str,
        params: Dict[str, Any],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        force_refresh = False
        for attempt in range(2):
            await self.rate_limiter.acquire(cancel_event)
            token = await self.token_provider.get_token(force_refresh=force_refresh)

            try:
                response = await run_cancellable(
                    self._http.get(
                        path,
                        params=params,
                        headers={"Authorization": f"Bearer {token}"},
                    ),
                    cancel_event,
                    f"cancelled during GET {path}",
                )
            except httpx.TransportError as e:
                raise TransportError(f"GET {path}: {e}") from e

            self._reconcile(response)

            if response.status_code == 401 and attempt == 0:
                logger.info("Strava returned 401 for %s, refreshing token", path)
                force_refresh = True
                continue

            if not response.is_success:
                raise ApiError(response.status_code, response.text)

            try:
                return response.json()
            except ValueError as e:
                raise DataError(f"GET {path}: invalid JSON: {e}") from e

    def _reconcile(self, response: httpx.Response) -> None:
        usage = parse_usage_header(response.headers.get("X-RateLimit-Usage"))
        if usage is None:
            return
        limits = parse_usage_header(response.headers.get("X-RateLimit-Limit")) or (None, None)
        self.rate_limiter.reconcile_from_server(usage[0], usage[1], limits[0], limits[1])

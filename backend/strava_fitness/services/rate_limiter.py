"""Strava API rate limiting.

Strava enforces two quotas on every application:
- 100 requests per 15 minutes
- 1000 requests per day

Every outbound request waits on ``RateLimiter.acquire`` first. Responses carry
the provider's own usage counters, which are fed back through
``reconcile_from_server`` so the local counters follow what Strava has actually
counted (requests made by other processes, clock skew between windows).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from strava_fitness.exceptions import CancellationError
from strava_fitness.schemas import RateLimitStatus

logger = logging.getLogger(__name__)


async def run_cancellable(
    awaitable: Awaitable,
    cancel_event: Optional[asyncio.Event],
    message: str = "operation cancelled",
):
    """Await ``awaitable`` unless ``cancel_event`` is set first."""
    if cancel_event is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    canceller = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, canceller}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task.cancel()
        raise
    finally:
        canceller.cancel()

    if task.done():
        return task.result()
    task.cancel()
    raise CancellationError(message)


@dataclass
class _Window:
    limit: int
    length: float  # seconds
    usage: int = 0
    resets_at: float = 0.0

    def roll(self, now: float) -> None:
        if now >= self.resets_at:
            self.usage = 0
            self.resets_at = now + self.length

    @property
    def exhausted(self) -> bool:
        return self.usage >= self.limit


class RateLimiter:
    """Two-window quota plus a minimum spacing between requests.

    All mutable state (both windows and the last request instant) is guarded
    by one lock and checked-and-updated in a single critical section. The lock
    is released before sleeping, so a waiting caller never holds it.
    """

    def __init__(
        self,
        short_limit: int = 100,
        short_window: float = 15 * 60,
        daily_limit: int = 1000,
        daily_window: float = 24 * 60 * 60,
        min_interval: float = 0.15,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        now = clock()
        self._short = _Window(short_limit, short_window, resets_at=now + short_window)
        self._daily = _Window(daily_limit, daily_window, resets_at=now + daily_window)
        self._min_interval = min_interval
        self._last_request: Optional[float] = None
        self._server_reported = False
        self._publish(now)

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(
            short_limit=settings.rate_limit_short,
            short_window=settings.rate_limit_short_window_seconds,
            daily_limit=settings.rate_limit_daily,
            daily_window=settings.rate_limit_daily_window_seconds,
            min_interval=settings.rate_limit_min_interval_seconds,
        )

    async def acquire(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        """Block until a request may be sent, then count it."""
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CancellationError("cancelled while waiting for rate limit")

            async with self._lock:
                now = self._clock()
                self._short.roll(now)
                self._daily.roll(now)
                delay = self._delay(now)
                if delay <= 0:
                    self._short.usage += 1
                    self._daily.usage += 1
                    self._last_request = now
                    self._publish(now)
                    return

            if self._short.exhausted or self._daily.exhausted:
                logger.info(
                    "Rate limit reached (%d/%d short, %d/%d daily), waiting %.1fs",
                    self._short.usage, self._short.limit,
                    self._daily.usage, self._daily.limit, delay,
                )
            await self._wait(delay, cancel_event)

    def reconcile_from_server(
        self,
        used_short: int,
        used_daily: int,
        limit_short: Optional[int] = None,
        limit_daily: Optional[int] = None,
    ) -> None:
        """Replace local counters with the usage Strava reports."""
        # Plain assignments with no await in between: atomic on the event loop
        self._short.usage = used_short
        self._daily.usage = used_daily
        if limit_short:
            self._short.limit = limit_short
        if limit_daily:
            self._daily.limit = limit_daily
        self._server_reported = True
        self._publish(self._clock())

    def status(self) -> RateLimitStatus:
        """Remaining quota; reads the last published snapshot, never the lock."""
        taken_at, snapshot = self._published
        elapsed = self._clock() - taken_at
        short_in = snapshot.short_resets_in - elapsed
        daily_in = snapshot.daily_resets_in - elapsed
        return snapshot.model_copy(update={
            "short_remaining": snapshot.short_limit if short_in <= 0 else snapshot.short_remaining,
            "daily_remaining": snapshot.daily_limit if daily_in <= 0 else snapshot.daily_remaining,
            "short_resets_in": max(short_in, 0.0),
            "daily_resets_in": max(daily_in, 0.0),
        })

    def _delay(self, now: float) -> float:
        delay = 0.0
        if self._last_request is not None:
            delay = self._last_request + self._min_interval - now
        if self._short.exhausted:
            delay = max(delay, self._short.resets_at - now)
        if self._daily.exhausted:
            delay = max(delay, self._daily.resets_at - now)
        return delay

    async def _wait(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        await run_cancellable(
            self._sleep(delay), cancel_event, "cancelled while waiting for rate limit"
        )

    def _publish(self, now: float) -> None:
        # Replaced as a whole so readers always see a consistent pair
        self._published = (now, RateLimitStatus(
            short_limit=self._short.limit,
            short_remaining=max(self._short.limit - self._short.usage, 0),
            daily_limit=self._daily.limit,
            daily_remaining=max(self._daily.limit - self._daily.usage, 0),
            short_resets_in=max(self._short.resets_at - now, 0.0),
            daily_resets_in=max(self._daily.resets_at - now, 0.0),
            server_reported=self._server_reported,
        ))

"""Error taxonomy for the sync pipeline."""

from typing import List, Optional


class StravaFitnessError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(StravaFitnessError):
    """Connectivity problem or timeout talking to Strava.

    Retryable at a higher level (the next sync run).
    """


class ApiError(StravaFitnessError):
    """Strava answered with a non-2xx status."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"API error {status}: {body[:200]}")


class DataError(StravaFitnessError):
    """Malformed or unexpected data for a single item."""


class CancellationError(StravaFitnessError):
    """The caller's cancel signal was raised while work was pending."""


class PartialFetchError(StravaFitnessError):
    """Pagination stopped part-way; the pages fetched so far are attached."""

    def __init__(self, page: int, activities: Optional[List] = None):
        self.page = page
        self.activities = activities or []
        super().__init__(
            f"fetching page {page} failed after {len(self.activities)} activities"
        )


class SyncAbortedError(StravaFitnessError):
    """A sync stopped before completing; the report holds the progress made."""

    def __init__(self, phase: str, report):
        self.phase = phase
        self.report = report
        super().__init__(f"sync aborted during {phase} phase")

"""Sync orchestration: summaries -> streams -> metrics -> training load -> records.

Each phase persists its own progress, so a failed or cancelled run never
loses work that already completed; the next run picks up where it stopped.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Deque, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from strava_fitness.exceptions import (
    ApiError,
    CancellationError,
    DataError,
    PartialFetchError,
    StravaFitnessError,
    SyncAbortedError,
    TransportError,
)
from strava_fitness.models import Activity
from strava_fitness.schemas import (
    ItemResult,
    ItemStatus,
    PhaseReport,
    StravaActivity,
    StreamSample,
    SyncPhase,
    SyncProgress,
    SyncReport,
)
from strava_fitness.services.metrics_service import HRZones, compute_activity_metrics
from strava_fitness.services.records_service import personal_record_candidates
from strava_fitness.services.repository import ActivityRepository
from strava_fitness.services.strava_service import StravaClient
from strava_fitness.services.training_load_service import build_fitness_trends

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Bounded, non-blocking queue of progress events for one consumer.

    ``emit`` never waits. When the buffer is full an ordinary event is
    dropped (and counted), while an error event evicts the oldest ordinary
    event so that failures always reach the consumer.
    """

    def __init__(self, maxsize: int = 256):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.dropped = 0
        self._buffer: Deque[SyncProgress] = deque()
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: SyncProgress, essential: Optional[bool] = None) -> bool:
        """Queue an event. Returns False when it was dropped."""
        if self._closed:
            return False
        if essential is None:
            essential = event.error is not None

        if len(self._buffer) >= self.maxsize:
            if not essential:
                self.dropped += 1
                return False
            victim = next(
                (i for i, queued in enumerate(self._buffer) if queued.error is None), None
            )
            # A buffer holding only errors grows past its bound
            if victim is not None:
                del self._buffer[victim]
                self.dropped += 1

        self._buffer.append(event)
        self._ready.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    def drain(self) -> List[SyncProgress]:
        """Take every queued event without waiting."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    async def events(self) -> AsyncIterator[SyncProgress]:
        """Yield events until the channel is closed and empty."""
        while True:
            while self._buffer:
                yield self._buffer.popleft()
            if self._closed:
                return
            self._ready.clear()
            await self._ready.wait()


class SyncService:
    """Runs the sync phases against one repository and one client."""

    def __init__(
        self,
        client: StravaClient,
        repository: ActivityRepository,
        zones: Optional[HRZones] = None,
        progress: Optional[ProgressChannel] = None,
        stream_batch_size: int = 50,
        concurrency: int = 1,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.repository = repository
        self.zones = zones or HRZones()
        self.progress = progress
        self.stream_batch_size = stream_batch_size
        self.concurrency = max(1, concurrency)
        self._now = now
        self.last_report: Optional[SyncReport] = None

    async def sync_all(self, cancel_event: Optional[asyncio.Event] = None) -> SyncReport:
        """Run a full sync.

        Raises:
            SyncAbortedError: a phase failed as a whole; ``report`` on the
                error holds everything done up to that point.
            CancellationError / asyncio.CancelledError: the run was
                cancelled; ``last_report`` holds the partial report.
        """
        report = SyncReport(started_at=self._now())
        self.last_report = report

        phases = [
            (SyncPhase.ACTIVITIES, self._sync_activities),
            (SyncPhase.STREAMS, self._sync_streams),
            (SyncPhase.METRICS, self._compute_metrics),
            (SyncPhase.TRENDS, self._update_trends),
            (SyncPhase.RECORDS, self._compute_records),
        ]
        phase = SyncPhase.ACTIVITIES

        try:
            for phase, step in phases:
                report.state = phase
                await step(report, cancel_event)
        except (CancellationError, asyncio.CancelledError):
            logger.info("Sync cancelled during %s phase", phase.value)
            report.state = SyncPhase.CANCELLED
            raise
        except SyncAbortedError as e:
            report.state = SyncPhase.FAILED
            report.error = report.error or str(e.__cause__ or e)
            logger.error("Sync aborted during %s phase: %s", phase.value, report.error)
            raise
        except (StravaFitnessError, SQLAlchemyError) as e:
            if isinstance(e, SQLAlchemyError):
                self.repository.rollback()
            report.state = SyncPhase.FAILED
            report.error = str(e)
            logger.error("Sync failed during %s phase: %s", phase.value, e)
            raise SyncAbortedError(phase.value, report) from e
        else:
            report.state = SyncPhase.DONE
        finally:
            self._finish(report)

        return report

    # ============== Phases ==============

    async def _sync_activities(self, report: SyncReport, cancel_event: Optional[asyncio.Event]) -> None:
        phase_report = self._start_phase(report, SyncPhase.ACTIVITIES)
        started = self._now()
        after = self.repository.get_sync_watermark()
        logger.info("Fetching activity summaries since %s", after.isoformat() if after else "the beginning")

        def on_page(count: int) -> None:
            self._emit(SyncProgress(phase=SyncPhase.ACTIVITIES, completed=count))

        try:
            summaries = await self.client.fetch_all_summaries_since(after, on_page, cancel_event)
        except PartialFetchError as e:
            report.activities_fetched = len(e.activities)
            report.error = str(e.__cause__ or e)
            self._store_summaries(e.activities, report, phase_report)
            self._emit(SyncProgress(
                phase=SyncPhase.ACTIVITIES,
                total=phase_report.total,
                completed=len(phase_report.items),
                error=report.error,
            ))
            raise SyncAbortedError(SyncPhase.ACTIVITIES.value, report) from e

        report.activities_fetched = len(summaries)
        self._store_summaries(summaries, report, phase_report)

        if phase_report.failed:
            logger.warning(
                "Keeping sync watermark: %d activities could not be stored", phase_report.failed
            )
        else:
            self.repository.set_sync_watermark(started)
            report.watermark_advanced = True

        logger.info(
            "Activities: %d fetched, %d stored, %d skipped, %d failed",
            report.activities_fetched, report.activities_stored,
            phase_report.skipped, phase_report.failed,
        )

    def _store_summaries(
        self,
        summaries: Iterable[StravaActivity],
        report: SyncReport,
        phase_report: PhaseReport,
    ) -> None:
        summaries = list(summaries)
        phase_report.total = len(summaries)

        for summary in summaries:
            label = summary.name or str(summary.id)
            if not (summary.is_run and summary.has_heartrate):
                phase_report.items.append(ItemResult(
                    activity_id=summary.id,
                    label=label,
                    status=ItemStatus.SKIPPED,
                    reason="not a run with heart rate",
                ))
                continue
            try:
                self.repository.upsert_activity_summary(summary)
            except SQLAlchemyError as e:
                self.repository.rollback()
                self._record_error(phase_report, summary.id, label, e)
                continue
            report.activities_stored += 1
            phase_report.items.append(
                ItemResult(activity_id=summary.id, label=label, status=ItemStatus.SUCCESS)
            )

    async def _sync_streams(self, report: SyncReport, cancel_event: Optional[asyncio.Event]) -> None:
        phase_report = self._start_phase(report, SyncPhase.STREAMS)
        candidates = self.repository.get_stream_sync_candidates(self.stream_batch_size)
        phase_report.total = len(candidates)
        logger.info("Syncing streams for %d activities", len(candidates))

        async def sync_one(activity: Activity) -> None:
            self._check_cancelled(cancel_event)
            activity_id, label = activity.id, activity.label
            self._emit(SyncProgress(
                phase=SyncPhase.STREAMS,
                total=phase_report.total,
                completed=len(phase_report.items),
                current_label=label,
            ))
            try:
                samples = await self.client.fetch_stream(activity_id, cancel_event)
                self.repository.save_stream(activity_id, samples)
                self.repository.mark_stream_synced(activity_id)
            except (TransportError, ApiError, DataError) as e:
                self._record_error(phase_report, activity_id, label, e)
                return
            except SQLAlchemyError as e:
                self.repository.rollback()
                self._record_error(phase_report, activity_id, label, e)
                return
            phase_report.items.append(
                ItemResult(activity_id=activity_id, label=label, status=ItemStatus.SUCCESS)
            )

        await self._run_bounded(candidates, sync_one)
        self._log_phase(phase_report)

    async def _compute_metrics(self, report: SyncReport, cancel_event: Optional[asyncio.Event]) -> None:
        phase_report = self._start_phase(report, SyncPhase.METRICS)
        candidates = self.repository.get_metrics_candidates()
        phase_report.total = len(candidates)
        logger.info("Computing metrics for %d activities", len(candidates))

        for activity in candidates:
            self._check_cancelled(cancel_event)
            activity_id, label = activity.id, activity.label
            self._emit(SyncProgress(
                phase=SyncPhase.METRICS,
                total=phase_report.total,
                completed=len(phase_report.items),
                current_label=label,
            ))

            samples = self._load_stream(phase_report, activity_id, label)
            if samples is None:
                continue

            try:
                metrics = compute_activity_metrics(activity, samples, self.zones)
                self.repository.save_activity_metrics(metrics)
            except SQLAlchemyError as e:
                self.repository.rollback()
                self._record_error(phase_report, activity_id, label, e)
                continue

            phase_report.items.append(
                ItemResult(activity_id=activity_id, label=label, status=ItemStatus.SUCCESS)
            )
            # Let a cancel request from another task land between items
            await asyncio.sleep(0)

        self._log_phase(phase_report)

    async def _update_trends(self, report: SyncReport, cancel_event: Optional[asyncio.Event]) -> None:
        self._check_cancelled(cancel_event)
        phase_report = self._start_phase(report, SyncPhase.TRENDS)

        rows = build_fitness_trends(
            self.repository.get_all_daily_impulse(),
            self.repository.get_daily_volume(),
        )
        phase_report.total = len(rows)
        self._emit(SyncProgress(phase=SyncPhase.TRENDS, total=len(rows)))

        report.trend_days = self.repository.upsert_daily_training_loads(rows)
        if rows:
            latest = rows[-1]
            logger.info(
                "Training load updated for %d days (latest %s: CTL %.1f, ATL %.1f, TSB %.1f)",
                report.trend_days, latest.date, latest.ctl, latest.atl, latest.tsb,
            )
        self._emit(SyncProgress(phase=SyncPhase.TRENDS, total=len(rows), completed=len(rows)))

    async def _compute_records(self, report: SyncReport, cancel_event: Optional[asyncio.Event]) -> None:
        phase_report = self._start_phase(report, SyncPhase.RECORDS)
        candidates = self.repository.get_records_candidates()
        phase_report.total = len(candidates)
        logger.info("Checking %d activities for personal records", len(candidates))

        for activity in candidates:
            self._check_cancelled(cancel_event)
            activity_id, label = activity.id, activity.label
            self._emit(SyncProgress(
                phase=SyncPhase.RECORDS,
                total=phase_report.total,
                completed=len(phase_report.items),
                current_label=label,
            ))

            samples = self._load_stream(phase_report, activity_id, label)
            if samples is None:
                continue

            try:
                improved = [
                    record.category
                    for record in personal_record_candidates(activity, samples)
                    if self.repository.save_personal_record(record)
                ]
                self.repository.mark_records_checked(activity_id)
            except SQLAlchemyError as e:
                self.repository.rollback()
                self._record_error(phase_report, activity_id, label, e)
                continue

            if improved:
                logger.info("New personal records in %s: %s", label, ", ".join(improved))
            report.records_set += len(improved)
            phase_report.items.append(ItemResult(
                activity_id=activity_id,
                label=label,
                status=ItemStatus.SUCCESS,
                reason=", ".join(improved) or None,
            ))
            await asyncio.sleep(0)

        self._log_phase(phase_report)

    # ============== Helpers ==============

    async def _run_bounded(
        self,
        items: List[Activity],
        worker: Callable[[Activity], Awaitable[None]],
    ) -> None:
        if self.concurrency == 1:
            for item in items:
                await worker(item)
            return

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(item: Activity) -> None:
            async with semaphore:
                await worker(item)

        tasks = [asyncio.ensure_future(bounded(item)) for item in items]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start_phase(self, report: SyncReport, phase: SyncPhase) -> PhaseReport:
        phase_report = PhaseReport(phase=phase)
        report.phases.append(phase_report)
        return phase_report

    def _record_error(self, phase_report: PhaseReport, activity_id: int, label: str, error: Exception) -> None:
        logger.warning("%s failed for %s: %s", phase_report.phase.value, label, error)
        phase_report.items.append(ItemResult(
            activity_id=activity_id, label=label, status=ItemStatus.ERROR, reason=str(error)
        ))
        self._emit(SyncProgress(
            phase=phase_report.phase,
            total=phase_report.total,
            completed=len(phase_report.items),
            current_label=label,
            error=str(error),
        ))

    def _load_stream(
        self, phase_report: PhaseReport, activity_id: int, label: str
    ) -> Optional[List[StreamSample]]:
        """Stored stream of one activity, or None after recording a skip."""
        try:
            return self.repository.get_stream(activity_id)
        except DataError as e:
            self._record_skip(phase_report, activity_id, label, e)
        except SQLAlchemyError as e:
            self.repository.rollback()
            self._record_skip(phase_report, activity_id, label, e)
        return None

    def _record_skip(self, phase_report: PhaseReport, activity_id: int, label: str, error: Exception) -> None:
        logger.warning("Skipping %s for %s: %s", phase_report.phase.value, label, error)
        phase_report.items.append(ItemResult(
            activity_id=activity_id, label=label, status=ItemStatus.SKIPPED, reason=str(error)
        ))
        self._emit(SyncProgress(
            phase=phase_report.phase,
            total=phase_report.total,
            completed=len(phase_report.items),
            current_label=label,
            error=str(error),
        ))

    def _log_phase(self, phase_report: PhaseReport) -> None:
        logger.info(
            "%s: %d succeeded, %d skipped, %d failed",
            phase_report.phase.value.capitalize(),
            phase_report.succeeded, phase_report.skipped, phase_report.failed,
        )

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError("sync cancelled")

    def _emit(self, event: SyncProgress, essential: Optional[bool] = None) -> None:
        if self.progress is not None:
            self.progress.emit(event, essential)

    def _finish(self, report: SyncReport) -> None:
        report.finished_at = self._now()
        last = report.phases[-1] if report.phases else None
        self._emit(
            SyncProgress(
                phase=report.state,
                total=last.total if last else 0,
                completed=len(last.items) if last else 0,
                error=report.error,
            ),
            essential=True,
        )
        if self.progress is not None:
            report.progress_dropped = self.progress.dropped
            self.progress.close()

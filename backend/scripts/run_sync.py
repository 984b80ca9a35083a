"""Run a full Strava sync from the command line.

Ctrl-C requests a clean stop: work already persisted is kept and the next
run resumes from there.
"""
import asyncio
import signal

from strava_fitness.config import get_settings
from strava_fitness.database import SessionLocal, init_db
from strava_fitness.exceptions import CancellationError, SyncAbortedError
from strava_fitness.logging_config import setup_logging
from strava_fitness.schemas import SyncReport
from strava_fitness.services import (
    ActivityRepository,
    ProgressChannel,
    RateLimiter,
    StravaClient,
    StravaTokenProvider,
    SyncService,
)
from strava_fitness.services.metrics_service import HRZones


async def print_progress(channel: ProgressChannel):
    async for event in channel.events():
        if event.error:
            print(f"  [{event.phase.value}] error on {event.current_label}: {event.error}")
        elif event.current_label:
            print(f"  [{event.phase.value}] {event.completed + 1}/{event.total} {event.current_label}")
        elif event.phase.value == "activities":
            print(f"  [activities] {event.completed} summaries fetched")


def print_report(report: SyncReport):
    print(f"Sync {report.state.value}: {report.activities_fetched} fetched, {report.activities_stored} stored")
    for phase in report.phases:
        print(f"  {phase.phase.value}: {phase.succeeded} ok, {phase.skipped} skipped, {phase.failed} failed")
    if report.trend_days:
        print(f"  training load: {report.trend_days} days")
    if report.records_set:
        print(f"  personal records: {report.records_set} new")
    if report.progress_dropped:
        print(f"  ({report.progress_dropped} progress events dropped)")


async def run_sync():
    settings = get_settings()
    setup_logging()
    init_db()

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        pass  # Windows: Ctrl-C raises KeyboardInterrupt instead

    db = SessionLocal()
    channel = ProgressChannel(settings.progress_buffer_size)
    printer = asyncio.create_task(print_progress(channel))
    try:
        async with StravaClient(
            StravaTokenProvider(db, settings),
            rate_limiter=RateLimiter.from_settings(settings),
            page_size=settings.summary_page_size,
            timeout=settings.http_timeout_seconds,
        ) as client:
            service = SyncService(
                client,
                ActivityRepository(db),
                zones=HRZones.from_settings(settings),
                progress=channel,
                stream_batch_size=settings.stream_batch_size,
                concurrency=settings.stream_concurrency,
            )
            try:
                report = await service.sync_all(cancel_event)
            except SyncAbortedError as e:
                report = e.report
            except CancellationError:
                report = service.last_report
        await printer
        print_report(report)
        return 0 if report.state.value == "done" else 1
    finally:
        printer.cancel()
        db.close()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run_sync()))

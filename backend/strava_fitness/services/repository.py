"""Persistence for activities, streams, metrics, records, training load and sync state."""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from strava_fitness.exceptions import DataError
from strava_fitness.models import (
    Activity,
    ActivityMetrics,
    FitnessTrend,
    PersonalRecord,
    StreamPoint,
    SyncState,
)
from strava_fitness.schemas import (
    ComputedMetrics,
    DailyTrainingLoad,
    DailyVolume,
    PersonalRecordEntry,
    StravaActivity,
    StreamSample,
)
from strava_fitness.services.records_service import is_improvement

logger = logging.getLogger(__name__)

WATERMARK_KEY = "last_activity_sync"

_TREND_FIELDS = (
    "daily_trimp",
    "ctl",
    "atl",
    "tsb",
    "efficiency_factor_7d",
    "efficiency_factor_28d",
    "efficiency_factor_90d",
    "run_count_7d",
    "total_distance_7d",
    "total_time_7d",
)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _local_day(activity: Activity) -> Optional[date]:
    moment = activity.start_date_local or activity.start_date
    return moment.date() if moment else None


class ActivityRepository:
    """Storage operations used by the sync pipeline and the API.

    Every write commits on its own, and every write is idempotent: replaying
    the same call leaves the database unchanged.
    """

    def __init__(self, db: Session):
        self.db = db

    def rollback(self) -> None:
        self.db.rollback()

    # ============== Activities ==============

    def upsert_activity_summary(self, summary: StravaActivity) -> Activity:
        """Insert or update an activity from its Strava summary."""
        activity = self.db.query(Activity).filter(Activity.id == summary.id).first()
        if activity is None:
            activity = Activity(id=summary.id, streams_synced=False)
            self.db.add(activity)

        activity.athlete_id = summary.athlete_id
        activity.name = summary.name
        activity.activity_type = summary.activity_type
        activity.sport_type = summary.sport_type
        activity.start_date = to_naive_utc(summary.start_date)
        # Strava labels local wall-clock time with a "Z"; keep the wall clock
        activity.start_date_local = (
            summary.start_date_local.replace(tzinfo=None) if summary.start_date_local else None
        )
        activity.timezone = summary.timezone
        activity.distance = summary.distance
        activity.moving_time = summary.moving_time
        activity.elapsed_time = summary.elapsed_time
        activity.total_elevation_gain = summary.total_elevation_gain
        activity.average_heartrate = summary.average_heartrate
        activity.max_heartrate = summary.max_heartrate
        activity.has_heartrate = summary.has_heartrate
        activity.average_speed = summary.average_speed
        activity.max_speed = summary.max_speed
        activity.average_cadence = summary.average_cadence
        activity.suffer_score = int(summary.suffer_score) if summary.suffer_score is not None else None

        self.db.commit()
        return activity

    def get_activity(self, activity_id: int) -> Optional[Activity]:
        return self.db.query(Activity).filter(Activity.id == activity_id).first()

    def get_stream_sync_candidates(self, limit: int) -> List[Activity]:
        """Heart-rate activities whose streams are not stored yet, newest first."""
        return (
            self.db.query(Activity)
            .filter(Activity.has_heartrate == True)  # noqa: E712
            .filter(Activity.streams_synced == False)  # noqa: E712
            .order_by(Activity.start_date.desc())
            .limit(limit)
            .all()
        )

    # ============== Streams ==============

    def save_stream(self, activity_id: int, samples: Sequence[StreamSample]) -> int:
        """Replace the stored stream of an activity. Returns the number of points."""
        if self.get_activity(activity_id) is None:
            raise DataError(f"cannot store stream for unknown activity {activity_id}")

        # Last sample wins on duplicate offsets
        by_offset = {s.time_offset: s for s in samples}

        self.db.query(StreamPoint).filter(StreamPoint.activity_id == activity_id).delete(
            synchronize_session=False
        )
        self.db.add_all(
            StreamPoint(activity_id=activity_id, **sample.model_dump())
            for sample in by_offset.values()
        )
        self.db.commit()
        return len(by_offset)

    def mark_stream_synced(self, activity_id: int) -> None:
        activity = self.get_activity(activity_id)
        if activity is None:
            raise DataError(f"unknown activity {activity_id}")
        activity.streams_synced = True
        activity.streams_synced_at = datetime.utcnow()
        self.db.commit()

    def get_stream(self, activity_id: int) -> List[StreamSample]:
        """Stored stream ordered by time offset."""
        if self.get_activity(activity_id) is None:
            raise DataError(f"unknown activity {activity_id}")
        points = (
            self.db.query(StreamPoint)
            .filter(StreamPoint.activity_id == activity_id)
            .order_by(StreamPoint.time_offset)
            .all()
        )
        return [StreamSample.model_validate(p) for p in points]

    # ============== Metrics ==============

    def get_metrics_candidates(self) -> List[Activity]:
        """Activities with a stream but no metrics, or metrics older than the stream."""
        return (
            self.db.query(Activity)
            .outerjoin(ActivityMetrics, ActivityMetrics.activity_id == Activity.id)
            .filter(Activity.streams_synced == True)  # noqa: E712
            .filter(
                or_(
                    ActivityMetrics.activity_id.is_(None),
                    ActivityMetrics.computed_at < Activity.streams_synced_at,
                )
            )
            .order_by(Activity.start_date)
            .all()
        )

    def save_activity_metrics(self, metrics: ComputedMetrics) -> ActivityMetrics:
        row = (
            self.db.query(ActivityMetrics)
            .filter(ActivityMetrics.activity_id == metrics.activity_id)
            .first()
        )
        if row is None:
            row = ActivityMetrics(activity_id=metrics.activity_id)
            self.db.add(row)

        for field, value in metrics.model_dump(exclude={"activity_id"}).items():
            setattr(row, field, value)
        row.computed_at = datetime.utcnow()

        self.db.commit()
        return row

    def get_activity_metrics(self, activity_id: int) -> Optional[ActivityMetrics]:
        return (
            self.db.query(ActivityMetrics)
            .filter(ActivityMetrics.activity_id == activity_id)
            .first()
        )

    def get_metric_series(self, field: str, since: Optional[date] = None) -> List[tuple]:
        """(local day, value) pairs of one ActivityMetrics column, oldest first."""
        column = getattr(ActivityMetrics, field)
        rows = (
            self.db.query(Activity, column)
            .join(ActivityMetrics, ActivityMetrics.activity_id == Activity.id)
            .filter(column > 0)
            .order_by(Activity.start_date)
            .all()
        )
        series = []
        for activity, value in rows:
            day = _local_day(activity)
            if day is None or (since is not None and day < since):
                continue
            series.append((day, value))
        return series

    # ============== Personal records ==============

    def get_records_candidates(self) -> List[Activity]:
        """Activities with a stream that was not checked for records since it was stored."""
        return (
            self.db.query(Activity)
            .filter(Activity.streams_synced == True)  # noqa: E712
            .filter(
                or_(
                    Activity.records_checked_at.is_(None),
                    Activity.records_checked_at < Activity.streams_synced_at,
                )
            )
            .order_by(Activity.start_date)
            .all()
        )

    def save_personal_record(self, record: PersonalRecordEntry) -> bool:
        """Store a record if it beats the current one. Returns True when stored."""
        row = (
            self.db.query(PersonalRecord)
            .filter(PersonalRecord.category == record.category)
            .first()
        )
        existing = PersonalRecordEntry.model_validate(row) if row is not None else None
        if not is_improvement(existing, record):
            return False

        if row is None:
            row = PersonalRecord(category=record.category)
            self.db.add(row)
        for field, value in record.model_dump(exclude={"category"}).items():
            setattr(row, field, value)
        row.achieved_at = to_naive_utc(record.achieved_at)

        self.db.commit()
        return True

    def mark_records_checked(self, activity_id: int) -> None:
        activity = self.get_activity(activity_id)
        if activity is None:
            raise DataError(f"unknown activity {activity_id}")
        activity.records_checked_at = datetime.utcnow()
        self.db.commit()

    def get_personal_records(self, activity_id: Optional[int] = None) -> List[PersonalRecord]:
        query = self.db.query(PersonalRecord)
        if activity_id is not None:
            query = query.filter(PersonalRecord.activity_id == activity_id)
        return query.order_by(PersonalRecord.category).all()

    # ============== Daily aggregates ==============

    def get_all_daily_impulse(self) -> Dict[date, float]:
        """Sum of TRIMP per local calendar day over the full history."""
        rows = (
            self.db.query(Activity, ActivityMetrics.trimp)
            .join(ActivityMetrics, ActivityMetrics.activity_id == Activity.id)
            .all()
        )
        daily: Dict[date, float] = defaultdict(float)
        for activity, trimp in rows:
            day = _local_day(activity)
            if day is not None:
                daily[day] += trimp or 0.0
        return dict(daily)

    def get_daily_volume(self) -> Dict[date, DailyVolume]:
        """Run count, distance, time and efficiency readings per local day."""
        rows = (
            self.db.query(Activity, ActivityMetrics.efficiency_factor)
            .outerjoin(ActivityMetrics, ActivityMetrics.activity_id == Activity.id)
            .filter(Activity.activity_type == "Run")
            .all()
        )
        volume: Dict[date, DailyVolume] = {}
        for activity, ef in rows:
            day = _local_day(activity)
            if day is None:
                continue
            entry = volume.setdefault(day, DailyVolume())
            entry.run_count += 1
            entry.distance += activity.distance or 0
            entry.moving_time += activity.moving_time or 0
            if ef:
                entry.efficiency_factors.append(ef)
        return volume

    # ============== Training load ==============

    def upsert_daily_training_load(self, row: DailyTrainingLoad) -> None:
        self._upsert_trend(row)
        self.db.commit()

    def upsert_daily_training_loads(self, rows: Iterable[DailyTrainingLoad]) -> int:
        """Batch variant: one commit for the whole series."""
        count = 0
        for row in rows:
            self._upsert_trend(row)
            count += 1
        self.db.commit()
        return count

    def _upsert_trend(self, row: DailyTrainingLoad) -> None:
        trend = self.db.query(FitnessTrend).filter(FitnessTrend.date == row.date).first()
        if trend is None:
            trend = FitnessTrend(date=row.date)
            self.db.add(trend)
        for field in _TREND_FIELDS:
            setattr(trend, field, getattr(row, field))
        trend.computed_at = datetime.utcnow()

    def get_fitness_trends(self, start: Optional[date] = None, end: Optional[date] = None) -> List[FitnessTrend]:
        query = self.db.query(FitnessTrend)
        if start is not None:
            query = query.filter(FitnessTrend.date >= start)
        if end is not None:
            query = query.filter(FitnessTrend.date <= end)
        return query.order_by(FitnessTrend.date).all()

    def get_latest_fitness_trend(self) -> Optional[FitnessTrend]:
        return self.db.query(FitnessTrend).order_by(FitnessTrend.date.desc()).first()

    # ============== Sync state ==============

    def get_sync_watermark(self) -> Optional[datetime]:
        """Start instant of the last complete summary fetch (UTC), if any."""
        state = self.db.query(SyncState).filter(SyncState.key == WATERMARK_KEY).first()
        if state is None:
            return None
        try:
            value = datetime.fromisoformat(state.value)
        except ValueError:
            logger.warning("Ignoring unreadable sync watermark %r", state.value)
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def set_sync_watermark(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        state = self.db.query(SyncState).filter(SyncState.key == WATERMARK_KEY).first()
        if state is None:
            state = SyncState(key=WATERMARK_KEY)
            self.db.add(state)
        state.value = value.astimezone(timezone.utc).isoformat()
        self.db.commit()

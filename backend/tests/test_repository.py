"""Tests for ActivityRepository against an in-memory database."""

from datetime import date, datetime, timedelta, timezone

import pytest

from strava_fitness.exceptions import DataError
from strava_fitness.models import Activity, StreamPoint
from strava_fitness.schemas import ComputedMetrics, DailyTrainingLoad, PersonalRecordEntry, StreamSample
from strava_fitness.services.repository import ActivityRepository

from conftest import make_samples, make_summary


@pytest.fixture
def repository(db_session):
    return ActivityRepository(db_session)


class TestActivities:

    def test_upsert_inserts_then_updates(self, repository, db_session):
        repository.upsert_activity_summary(make_summary(1, name="Morning Run"))
        repository.upsert_activity_summary(make_summary(1, name="Renamed Run", distance=12000))

        assert db_session.query(Activity).count() == 1
        activity = repository.get_activity(1)
        assert activity.name == "Renamed Run"
        assert activity.distance == 12000
        assert activity.athlete_id == 42

    def test_dates_are_stored_naive(self, repository):
        start = datetime(2024, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        repository.upsert_activity_summary(make_summary(1, start=start))
        activity = repository.get_activity(1)

        assert activity.start_date == datetime(2024, 3, 2, 4, 30)
        assert activity.start_date.tzinfo is None

    def test_upsert_keeps_stream_sync_flag(self, repository):
        repository.upsert_activity_summary(make_summary(1))
        repository.mark_stream_synced(1)
        repository.upsert_activity_summary(make_summary(1))
        assert repository.get_activity(1).streams_synced is True

    def test_stream_sync_candidates(self, repository):
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for i in range(1, 5):
            repository.upsert_activity_summary(make_summary(i, start=base + timedelta(days=i)))
        repository.upsert_activity_summary(make_summary(5, start=base, has_heartrate=False))
        repository.mark_stream_synced(4)

        candidates = repository.get_stream_sync_candidates(limit=2)
        assert [a.id for a in candidates] == [3, 2]


class TestStreams:

    def test_save_and_load(self, repository):
        repository.upsert_activity_summary(make_summary(1))
        count = repository.save_stream(1, make_samples(10))

        assert count == 10
        loaded = repository.get_stream(1)
        assert [s.time_offset for s in loaded] == list(range(10))
        assert loaded[0].heartrate == 150

    def test_save_replaces_previous_stream(self, repository, db_session):
        repository.upsert_activity_summary(make_summary(1))
        repository.save_stream(1, make_samples(10))
        repository.save_stream(1, make_samples(4, heartrate=140))

        assert db_session.query(StreamPoint).count() == 4
        assert {s.heartrate for s in repository.get_stream(1)} == {140}

    def test_duplicate_offsets_last_wins(self, repository):
        repository.upsert_activity_summary(make_summary(1))
        samples = [
            StreamSample(time_offset=0, heartrate=120),
            StreamSample(time_offset=0, heartrate=130),
            StreamSample(time_offset=1, heartrate=125),
        ]
        assert repository.save_stream(1, samples) == 2
        assert [s.heartrate for s in repository.get_stream(1)] == [130, 125]

    def test_unknown_activity(self, repository):
        with pytest.raises(DataError):
            repository.get_stream(404)
        with pytest.raises(DataError):
            repository.save_stream(404, make_samples(1))

    def test_mark_stream_synced_sets_timestamp(self, repository):
        repository.upsert_activity_summary(make_summary(1))
        repository.mark_stream_synced(1)
        activity = repository.get_activity(1)
        assert activity.streams_synced is True
        assert activity.streams_synced_at is not None


class TestMetrics:

    def test_candidates_need_stream_and_fresh_metrics(self, repository, db_session):
        for i in (1, 2, 3):
            repository.upsert_activity_summary(make_summary(i))
        repository.mark_stream_synced(1)
        repository.mark_stream_synced(2)
        repository.save_activity_metrics(ComputedMetrics(activity_id=2, trimp=50))

        assert [a.id for a in repository.get_metrics_candidates()] == [1]

        # A newer stream makes the metrics stale
        activity = repository.get_activity(2)
        activity.streams_synced_at = datetime.utcnow() + timedelta(minutes=5)
        db_session.commit()
        assert {a.id for a in repository.get_metrics_candidates()} == {1, 2}

    def test_save_metrics_is_idempotent(self, repository):
        repository.upsert_activity_summary(make_summary(1))
        repository.save_activity_metrics(ComputedMetrics(activity_id=1, trimp=50, efficiency_factor=2000))
        repository.save_activity_metrics(ComputedMetrics(activity_id=1, trimp=60, efficiency_factor=2000))

        metrics = repository.get_activity_metrics(1)
        assert metrics.trimp == 60
        assert metrics.computed_at is not None

    def test_daily_impulse_groups_by_local_day(self, repository):
        morning = datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)
        repository.upsert_activity_summary(make_summary(1, start=morning))
        repository.upsert_activity_summary(make_summary(2, start=morning + timedelta(hours=10)))
        repository.upsert_activity_summary(make_summary(3, start=morning + timedelta(days=2)))
        repository.save_activity_metrics(ComputedMetrics(activity_id=1, trimp=40))
        repository.save_activity_metrics(ComputedMetrics(activity_id=2, trimp=25))
        repository.save_activity_metrics(ComputedMetrics(activity_id=3, trimp=60))

        assert repository.get_all_daily_impulse() == {
            date(2024, 3, 1): pytest.approx(65.0),
            date(2024, 3, 3): pytest.approx(60.0),
        }

    def test_daily_volume(self, repository):
        start = datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)
        repository.upsert_activity_summary(make_summary(1, start=start, distance=8000, moving_time=2400))
        repository.upsert_activity_summary(make_summary(2, start=start + timedelta(hours=9), distance=5000, moving_time=1500))
        repository.save_activity_metrics(ComputedMetrics(activity_id=1, efficiency_factor=2100))

        volume = repository.get_daily_volume()[date(2024, 3, 1)]
        assert volume.run_count == 2
        assert volume.distance == 13000
        assert volume.moving_time == 3900
        assert volume.efficiency_factors == [2100]

    def test_metric_series(self, repository):
        start = datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)
        for i in (1, 2):
            repository.upsert_activity_summary(make_summary(i, start=start + timedelta(days=i)))
            repository.save_activity_metrics(ComputedMetrics(activity_id=i, efficiency_factor=2000 + i))

        series = repository.get_metric_series("efficiency_factor", since=date(2024, 3, 3))
        assert series == [(date(2024, 3, 3), 2002)]


class TestTrainingLoad:

    def test_upsert_overwrites_same_day(self, repository):
        repository.upsert_daily_training_load(DailyTrainingLoad(date=date(2024, 1, 1), ctl=1, atl=2, tsb=-1))
        repository.upsert_daily_training_load(DailyTrainingLoad(date=date(2024, 1, 1), ctl=5, atl=3, tsb=2))

        rows = repository.get_fitness_trends()
        assert len(rows) == 1
        assert rows[0].ctl == 5

    def test_batch_and_range(self, repository):
        rows = [DailyTrainingLoad(date=date(2024, 1, d), ctl=d) for d in range(1, 11)]
        assert repository.upsert_daily_training_loads(rows) == 10

        selected = repository.get_fitness_trends(date(2024, 1, 3), date(2024, 1, 5))
        assert [r.date.day for r in selected] == [3, 4, 5]
        assert repository.get_latest_fitness_trend().date == date(2024, 1, 10)


def _record(category, activity_id, duration, distance=5000.0):
    return PersonalRecordEntry(
        category=category,
        activity_id=activity_id,
        distance_meters=distance,
        duration_seconds=duration,
        achieved_at=datetime(2024, 3, activity_id, 7, 0, tzinfo=timezone.utc),
    )


class TestPersonalRecords:

    def test_first_record_is_stored(self, repository):
        repository.upsert_activity_summary(make_summary(1))

        assert repository.save_personal_record(_record("effort_5k", 1, 1500)) is True

        [stored] = repository.get_personal_records()
        assert stored.activity_id == 1
        assert stored.duration_seconds == 1500
        assert stored.achieved_at == datetime(2024, 3, 1, 7, 0)

    def test_only_faster_time_replaces_record(self, repository):
        for i in (1, 2, 3):
            repository.upsert_activity_summary(make_summary(i))
        repository.save_personal_record(_record("effort_5k", 1, 1500))

        assert repository.save_personal_record(_record("effort_5k", 2, 1600)) is False
        assert repository.save_personal_record(_record("effort_5k", 2, 1500)) is False
        assert repository.save_personal_record(_record("effort_5k", 3, 1450)) is True

        [stored] = repository.get_personal_records()
        assert stored.activity_id == 3
        assert stored.duration_seconds == 1450

    def test_longest_run_ranks_by_distance(self, repository):
        for i in (1, 2):
            repository.upsert_activity_summary(make_summary(i))
        repository.save_personal_record(_record("longest_run", 1, 3000, distance=10000.0))

        # Slower but further
        assert repository.save_personal_record(_record("longest_run", 2, 5000, distance=15000.0)) is True
        assert repository.get_personal_records()[0].activity_id == 2

    def test_records_for_activity(self, repository):
        for i in (1, 2):
            repository.upsert_activity_summary(make_summary(i))
        repository.save_personal_record(_record("effort_1k", 1, 240, distance=1000.0))
        repository.save_personal_record(_record("effort_5k", 2, 1500))

        assert [r.category for r in repository.get_personal_records(activity_id=2)] == ["effort_5k"]
        assert [r.category for r in repository.get_personal_records()] == ["effort_1k", "effort_5k"]

    def test_candidates_need_stream_and_fresh_check(self, repository, db_session):
        for i in (1, 2, 3):
            repository.upsert_activity_summary(make_summary(i))
        repository.mark_stream_synced(1)
        repository.mark_stream_synced(2)
        repository.mark_records_checked(2)

        assert [a.id for a in repository.get_records_candidates()] == [1]

        # A re-synced stream is checked again
        activity = repository.get_activity(2)
        activity.streams_synced_at = datetime.utcnow() + timedelta(minutes=5)
        db_session.commit()
        assert {a.id for a in repository.get_records_candidates()} == {1, 2}

    def test_mark_unknown_activity(self, repository):
        with pytest.raises(DataError):
            repository.mark_records_checked(99)


class TestWatermark:

    def test_absent_by_default(self, repository):
        assert repository.get_sync_watermark() is None

    def test_round_trip_is_utc(self, repository):
        instant = datetime(2024, 3, 10, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        repository.set_sync_watermark(instant)
        repository.set_sync_watermark(instant)

        stored = repository.get_sync_watermark()
        assert stored == instant
        assert stored.utcoffset() == timedelta(0)

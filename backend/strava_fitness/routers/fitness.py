"""Training load, trends, per-activity metrics and personal records."""

from datetime import date, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from strava_fitness.database import get_db
from strava_fitness.schemas import (
    ActivityMetricsDetail,
    FitnessHistory,
    FitnessSnapshot,
    PersonalRecordEntry,
    TrendResult,
)
from strava_fitness.services.metrics_service import data_quality_description, decoupling_assessment
from strava_fitness.services.repository import ActivityRepository
from strava_fitness.services.training_load_service import analyze_trend, form_description, moving_average

router = APIRouter(prefix="/fitness", tags=["fitness"])

# Metrics read from the daily training load table
DAILY_METRICS = {
    "ctl",
    "atl",
    "tsb",
    "daily_trimp",
    "efficiency_factor_7d",
    "efficiency_factor_28d",
    "efficiency_factor_90d",
}
# Metrics read per activity
ACTIVITY_METRICS = {
    "efficiency_factor",
    "normalized_efficiency_factor",
    "aerobic_decoupling",
    "cardiac_drift",
    "trimp",
    "hrss",
}


def get_repository(db: Session = Depends(get_db)) -> ActivityRepository:
    return ActivityRepository(db)


@router.get("/history", response_model=FitnessHistory)
def get_fitness_history(
    days: int = Query(90, ge=1, le=3650),
    repository: ActivityRepository = Depends(get_repository),
):
    """Get historical fitness/fatigue data for charting."""
    since = date.today() - timedelta(days=days)
    trends = repository.get_fitness_trends(start=since)

    return FitnessHistory(
        dates=[t.date for t in trends],
        ctl_values=[round(t.ctl, 1) for t in trends],
        atl_values=[round(t.atl, 1) for t in trends],
        tsb_values=[round(t.tsb, 1) for t in trends],
    )


@router.get("/current", response_model=FitnessSnapshot)
def get_current_fitness(repository: ActivityRepository = Depends(get_repository)):
    """Latest CTL/ATL/TSB with a form description."""
    latest = repository.get_latest_fitness_trend()
    if not latest:
        raise HTTPException(status_code=404, detail="No training load computed yet")

    return FitnessSnapshot(
        as_of=latest.date,
        ctl=round(latest.ctl, 1),
        atl=round(latest.atl, 1),
        tsb=round(latest.tsb, 1),
        form=form_description(latest.tsb),
    )


@router.get("/trend", response_model=TrendResult)
def get_metric_trend(
    metric: str = Query("efficiency_factor"),
    days: int = Query(90, ge=1, le=3650),
    smooth: int = Query(1, ge=1, le=28),
    repository: ActivityRepository = Depends(get_repository),
):
    """Linear trend of one metric over the last ``days`` days.

    With ``smooth`` > 1 the trend is fitted to a trailing moving average of
    that many readings, each dated at the last reading of its window.
    """
    since = date.today() - timedelta(days=days)

    if metric in DAILY_METRICS:
        points = [
            (t.date, getattr(t, metric))
            for t in repository.get_fitness_trends(start=since)
            if getattr(t, metric) is not None
        ]
    elif metric in ACTIVITY_METRICS:
        points = repository.get_metric_series(metric, since=since)
    else:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown metric '{metric}'. Use one of: {', '.join(sorted(DAILY_METRICS | ACTIVITY_METRICS))}",
        )

    values = [v for _, v in points]
    dates = [d for d, _ in points]
    if smooth > 1 and len(values) >= smooth:
        values = moving_average(values, smooth)
        dates = dates[smooth - 1:]

    return analyze_trend(values, dates)


@router.get("/activities/{activity_id}/metrics", response_model=ActivityMetricsDetail)
def get_activity_metrics(
    activity_id: int,
    repository: ActivityRepository = Depends(get_repository),
):
    """Stored metrics for one activity."""
    metrics = repository.get_activity_metrics(activity_id)
    if not metrics:
        raise HTTPException(status_code=404, detail="Metrics not found")

    detail = ActivityMetricsDetail.model_validate(metrics)
    detail.data_quality = data_quality_description(metrics.data_quality_score or 0)
    detail.decoupling = decoupling_assessment(metrics.aerobic_decoupling or 0)
    return detail


@router.get("/records", response_model=List[PersonalRecordEntry])
def get_personal_records(repository: ActivityRepository = Depends(get_repository)):
    """Current best result in every record category."""
    return repository.get_personal_records()


@router.get("/activities/{activity_id}/records", response_model=List[PersonalRecordEntry])
def get_activity_records(
    activity_id: int,
    repository: ActivityRepository = Depends(get_repository),
):
    """Records currently held by one activity."""
    if repository.get_activity(activity_id) is None:
        raise HTTPException(status_code=404, detail="Activity not found")
    return repository.get_personal_records(activity_id=activity_id)

"""Training load model - CTL/ATL/TSB, rolling aggregates and trend analysis."""

from datetime import date, timedelta
from typing import List, Mapping, Optional, Sequence, Tuple

from strava_fitness.schemas import DailyTrainingLoad, DailyVolume, TrendDirection, TrendResult

CTL_DAYS = 42
ATL_DAYS = 7

# EMA smoothing coefficients
CTL_ALPHA = 2.0 / (CTL_DAYS + 1.0)
ATL_ALPHA = 2.0 / (ATL_DAYS + 1.0)

TREND_MIN_POINTS = 3
TREND_MIN_PERCENT = 5.0
TREND_MIN_R_SQUARED = 0.3


def _days(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def calculate_daily_load(
    daily_impulse: Mapping[date, float],
    start_date: date,
    end_date: date,
) -> List[DailyTrainingLoad]:
    """
    Walk every day in [start_date, end_date] and compute CTL, ATL and TSB.

    EMA_today = EMA_yesterday + alpha * (load_today - EMA_yesterday), seeded
    at 0. Days without activity contribute 0. The recurrence always runs over
    the whole range so the result depends only on the impulses given.
    """
    ctl = 0.0
    atl = 0.0
    rows = []

    for day in _days(start_date, end_date):
        load = daily_impulse.get(day, 0.0)
        ctl = ctl + CTL_ALPHA * (load - ctl)
        atl = atl + ATL_ALPHA * (load - atl)
        rows.append(DailyTrainingLoad(date=day, daily_trimp=load, ctl=ctl, atl=atl, tsb=ctl - atl))

    return rows


def _window_days(day: date, days: int):
    return [day - timedelta(days=offset) for offset in range(days)]


def _window_mean_ef(daily_volume: Mapping[date, DailyVolume], day: date, days: int) -> Optional[float]:
    values = []
    for d in _window_days(day, days):
        volume = daily_volume.get(d)
        if volume is not None:
            values.extend(ef for ef in volume.efficiency_factors if ef > 0)
    return sum(values) / len(values) if values else None


def build_fitness_trends(
    daily_impulse: Mapping[date, float],
    daily_volume: Optional[Mapping[date, DailyVolume]] = None,
) -> List[DailyTrainingLoad]:
    """Dense daily series from the first to the last activity day.

    Adds rolling efficiency means (7/28/90 days) and 7-day volume to the
    CTL/ATL/TSB rows.
    """
    daily_volume = daily_volume or {}
    observed = set(daily_impulse) | set(daily_volume)
    if not observed:
        return []

    rows = calculate_daily_load(daily_impulse, min(observed), max(observed))

    for row in rows:
        week = [daily_volume.get(d) for d in _window_days(row.date, 7)]
        week = [v for v in week if v is not None]
        row.run_count_7d = sum(v.run_count for v in week)
        row.total_distance_7d = sum(v.distance for v in week)
        row.total_time_7d = sum(v.moving_time for v in week)
        row.efficiency_factor_7d = _window_mean_ef(daily_volume, row.date, 7)
        row.efficiency_factor_28d = _window_mean_ef(daily_volume, row.date, 28)
        row.efficiency_factor_90d = _window_mean_ef(daily_volume, row.date, 90)

    return rows


def linear_regression(x: Sequence[float], y: Sequence[float]) -> Tuple[float, float, float]:
    """
    Ordinary least squares: y = slope * x + intercept

    Returns:
        slope, intercept, r_squared
    """
    n = len(x)
    if n == 0 or n != len(y):
        raise ValueError("x and y must be non-empty and the same length")

    x_mean = sum(x) / n
    y_mean = sum(y) / n

    numerator = sum((xi - x_mean) * (yi - y_mean) for xi, yi in zip(x, y))
    denominator = sum((xi - x_mean) ** 2 for xi in x)

    if denominator == 0:
        return 0.0, y_mean, 0.0

    slope = numerator / denominator
    intercept = y_mean - slope * x_mean

    ss_tot = sum((yi - y_mean) ** 2 for yi in y)
    ss_res = sum((yi - (slope * xi + intercept)) ** 2 for xi, yi in zip(x, y))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0

    return slope, intercept, r_squared


def analyze_trend(values: Sequence[float], dates: Sequence[date]) -> TrendResult:
    """Fit a linear trend of value against days since the first sample.

    Direction needs both magnitude (more than 5% change between the fitted
    start and end) and fit quality (R² above 0.3); otherwise it is flat.
    """
    if len(values) != len(dates):
        raise ValueError("values and dates must be the same length")

    n = len(values)
    if n < TREND_MIN_POINTS:
        return TrendResult(sample_size=n)

    points = sorted(zip(dates, values), key=lambda p: p[0])
    start = points[0][0]
    x = [float((d - start).days) for d, _ in points]
    y = [float(v) for _, v in points]

    slope, intercept, r_squared = linear_regression(x, y)

    fitted_start = intercept + slope * x[0]
    fitted_end = intercept + slope * x[-1]
    percent_change = 0.0
    if fitted_start != 0:
        percent_change = (fitted_end - fitted_start) / abs(fitted_start) * 100

    direction = TrendDirection.FLAT
    if r_squared > TREND_MIN_R_SQUARED:
        if percent_change > TREND_MIN_PERCENT:
            direction = TrendDirection.UP
        elif percent_change < -TREND_MIN_PERCENT:
            direction = TrendDirection.DOWN

    return TrendResult(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        percent_change=percent_change,
        direction=direction,
        sample_size=n,
    )


def moving_average(values: Sequence[float], window: int) -> List[float]:
    """Trailing mean over ``window`` values.

    Returns ``len(values) - window + 1`` points; input shorter than the
    window is returned unchanged.
    """
    if window < 1:
        raise ValueError("window must be at least 1")
    if len(values) < window:
        return list(values)

    result = []
    total = sum(values[:window])
    result.append(total / window)
    for i in range(window, len(values)):
        total += values[i] - values[i - window]
        result.append(total / window)
    return result


def form_description(tsb: float) -> str:
    """Human-readable description of TSB."""
    if tsb > 25:
        return "Very fresh (possibly detrained)"
    elif tsb > 10:
        return "Fresh and ready to race"
    elif tsb > 0:
        return "Neutral - good for training"
    elif tsb > -10:
        return "Slightly fatigued"
    elif tsb > -25:
        return "Tired but building fitness"
    return "Very fatigued - rest needed"

"""Per-activity fitness metrics - EF, decoupling, cardiac drift, TRIMP, HRSS.

Every function here is pure and total: insufficient or missing data yields a
zero/neutral value instead of an exception, so one bad activity never stops a
batch. Streams are re-sorted by time offset before any split-based analysis.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from strava_fitness.models import Activity
from strava_fitness.schemas import ComputedMetrics, StreamSample

# Noise filter: must be actually moving with a plausible HR
MIN_VELOCITY = 0.5  # m/s
MIN_HEART_RATE = 80  # bpm
MAX_HEART_RATE = 220  # bpm, exclusive; higher readings are sensor spikes

EF_SCALE = 100_000
MIN_SPLIT_SAMPLES = 60
STEADY_STATE_TOLERANCE = 0.10

# Banister male coefficient
TRIMP_K = 1.92


@dataclass(frozen=True)
class HRZones:
    """Athlete heart rate anchors."""
    resting_hr: float = 50
    max_hr: float = 185
    threshold_hr: float = 165

    @classmethod
    def from_settings(cls, settings) -> "HRZones":
        return cls(
            resting_hr=settings.athlete_resting_hr,
            max_hr=settings.athlete_max_hr,
            threshold_hr=settings.athlete_threshold_hr,
        )

    @property
    def reserve(self) -> float:
        return self.max_hr - self.resting_hr

    def at_reserve_fraction(self, fraction: float) -> float:
        return self.resting_hr + self.reserve * fraction


def _sorted(samples: Sequence[StreamSample]) -> List[StreamSample]:
    return sorted(samples, key=lambda s: s.time_offset)


def _is_valid(sample: StreamSample) -> bool:
    return (
        sample.velocity_smooth is not None
        and sample.heartrate is not None
        and sample.velocity_smooth >= MIN_VELOCITY
        and MIN_HEART_RATE <= sample.heartrate < MAX_HEART_RATE
    )


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def efficiency_factor(samples: Sequence[StreamSample]) -> float:
    """Average speed divided by average heart rate, scaled by 100,000.

    Higher is better - running faster for the same HR.
    """
    valid = [s for s in samples if _is_valid(s)]
    if not valid:
        return 0.0
    avg_velocity = _mean([s.velocity_smooth for s in valid])
    avg_hr = _mean([s.heartrate for s in valid])
    return avg_velocity / avg_hr * EF_SCALE


def grade_adjusted_velocity(velocity: float, grade_percent: Optional[float]) -> float:
    """Normalize velocity for grade; steep descents are capped at half effort."""
    grade = (grade_percent or 0.0) / 100.0
    return velocity / max(1.0 + grade * 3.0, 0.5)


def normalized_efficiency_factor(samples: Sequence[StreamSample]) -> float:
    """Efficiency factor computed on grade-adjusted velocity."""
    valid = [s for s in samples if _is_valid(s)]
    if not valid:
        return 0.0
    avg_velocity = _mean([grade_adjusted_velocity(s.velocity_smooth, s.grade_smooth) for s in valid])
    avg_hr = _mean([s.heartrate for s in valid])
    return avg_velocity / avg_hr * EF_SCALE


def aerobic_decoupling(samples: Sequence[StreamSample]) -> float:
    """
    Pace:HR drift between first and second half, in percent.

    Positive means the second half was less efficient. Under 5% on a long
    run indicates a good aerobic base.
    """
    if len(samples) < MIN_SPLIT_SAMPLES:
        return 0.0

    ordered = _sorted(samples)
    mid = len(ordered) // 2
    first = efficiency_factor(ordered[:mid])
    second = efficiency_factor(ordered[mid:])

    if first == 0 or second == 0:
        return 0.0

    return ((first / second) - 1) * 100


def average_heart_rate(samples: Sequence[StreamSample]) -> float:
    """Mean of the positive heart rate readings."""
    return _mean([s.heartrate for s in samples if s.heartrate is not None and s.heartrate > 0])


def average_velocity(activity: Activity) -> float:
    """Distance over moving time (elapsed time when moving time is missing)."""
    duration = activity.moving_time or activity.elapsed_time or 0
    if duration <= 0 or not activity.distance:
        return 0.0
    return activity.distance / duration


def _steady_samples(samples: Sequence[StreamSample], avg_velocity: float) -> List[StreamSample]:
    low = avg_velocity * (1 - STEADY_STATE_TOLERANCE)
    high = avg_velocity * (1 + STEADY_STATE_TOLERANCE)
    return [
        s for s in samples
        if s.velocity_smooth is not None and low <= s.velocity_smooth <= high
    ]


def cardiac_drift(samples: Sequence[StreamSample], avg_velocity: float) -> float:
    """HR increase (bpm) between the first and last quarter of steady running."""
    if avg_velocity <= 0:
        return 0.0

    steady = [
        s for s in _steady_samples(_sorted(samples), avg_velocity)
        if s.heartrate is not None and s.heartrate > 0
    ]
    if len(steady) < MIN_SPLIT_SAMPLES:
        return 0.0

    quarter = len(steady) // 4
    first_hr = average_heart_rate(steady[:quarter])
    last_hr = average_heart_rate(steady[-quarter:])
    if first_hr == 0:
        return 0.0
    return last_hr - first_hr


def steady_state_pct(samples: Sequence[StreamSample], avg_velocity: float) -> float:
    """Share of samples (percent) within 10% of the average velocity."""
    with_velocity = [s for s in samples if s.velocity_smooth is not None]
    if not with_velocity or avg_velocity <= 0:
        return 0.0
    return len(_steady_samples(with_velocity, avg_velocity)) / len(with_velocity) * 100


def _trimp(duration_min: float, avg_hr: float, zones: HRZones) -> float:
    if avg_hr <= 0 or zones.reserve <= 0:
        return 0.0
    hr_ratio = (avg_hr - zones.resting_hr) / zones.reserve
    hr_ratio = max(0.0, min(hr_ratio, 1.0))  # Clamp between 0 and 1
    return duration_min * hr_ratio * math.exp(TRIMP_K * hr_ratio)


def training_impulse(activity: Activity, samples: Sequence[StreamSample], zones: HRZones) -> float:
    """
    Calculate TRIMP (Training Impulse) for an activity.

    Formula: TRIMP = Duration (min) × HR_ratio × e^(1.92 × HR_ratio)
    Where HR_ratio = (HR_avg - HR_rest) / (HR_max - HR_rest)

    HR_avg comes from the stream when it has readings, otherwise from the
    activity summary.
    """
    avg_hr = average_heart_rate(samples)
    if avg_hr == 0 and activity.average_heartrate:
        avg_hr = activity.average_heartrate
    duration_min = (activity.moving_time or 0) / 60
    return _trimp(duration_min, avg_hr, zones)


def stress_score(trimp: float, zones: HRZones) -> float:
    """HRSS: TRIMP scaled so one hour at threshold heart rate scores 100."""
    threshold_trimp = _trimp(60.0, zones.threshold_hr, zones)
    if threshold_trimp <= 0:
        return 0.0
    return trimp / threshold_trimp * 100


def data_quality(samples: Sequence[StreamSample]) -> float:
    """Fraction of samples carrying a positive heart rate."""
    if not samples:
        return 0.0
    valid = sum(1 for s in samples if s.heartrate is not None and s.heartrate > 0)
    return valid / len(samples)


def pace_at_hr(samples: Sequence[StreamSample], target_hr: float, tolerance: float = 5) -> Optional[float]:
    """Average pace (min/km) while HR is within tolerance of target.

    Needs at least 30 seconds of matching data.
    """
    paces = [
        (1000 / s.velocity_smooth) / 60
        for s in samples
        if s.velocity_smooth is not None
        and s.heartrate is not None
        and s.velocity_smooth > MIN_VELOCITY
        and abs(s.heartrate - target_hr) <= tolerance
    ]
    if len(paces) < 30:
        return None
    return _mean(paces)


def compute_activity_metrics(
    activity: Activity,
    samples: Sequence[StreamSample],
    zones: HRZones,
) -> ComputedMetrics:
    """Calculate all metrics for a single activity in one go."""
    if not samples:
        return ComputedMetrics(activity_id=activity.id)

    ordered = _sorted(samples)
    velocity = average_velocity(activity)
    trimp = training_impulse(activity, ordered, zones)

    return ComputedMetrics(
        activity_id=activity.id,
        efficiency_factor=efficiency_factor(ordered),
        normalized_efficiency_factor=normalized_efficiency_factor(ordered),
        aerobic_decoupling=aerobic_decoupling(ordered),
        cardiac_drift=cardiac_drift(ordered, velocity),
        trimp=trimp,
        hrss=stress_score(trimp, zones),
        data_quality_score=data_quality(ordered),
        steady_state_pct=steady_state_pct(ordered, velocity),
        # Zone midpoints at ~60/70/80% of heart rate reserve
        pace_at_z1=pace_at_hr(ordered, zones.at_reserve_fraction(0.6)),
        pace_at_z2=pace_at_hr(ordered, zones.at_reserve_fraction(0.7)),
        pace_at_z3=pace_at_hr(ordered, zones.at_reserve_fraction(0.8)),
    )


def data_quality_description(score: float) -> str:
    """Human-readable data quality assessment."""
    if score >= 0.95:
        return "Excellent"
    elif score >= 0.85:
        return "Good"
    elif score >= 0.70:
        return "Fair"
    elif score >= 0.50:
        return "Poor"
    return "Very Poor"


def decoupling_assessment(decoupling: float) -> str:
    """Human-readable decoupling assessment."""
    if decoupling < 3:
        return "Excellent aerobic base"
    elif decoupling < 5:
        return "Good aerobic fitness"
    elif decoupling < 8:
        return "Developing aerobic base"
    elif decoupling < 12:
        return "Needs more easy miles"
    return "Aerobic system needs work"

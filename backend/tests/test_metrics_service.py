"""Tests for per-activity fitness metrics."""

import math

import pytest

from strava_fitness.models import Activity
from strava_fitness.schemas import StreamSample
from strava_fitness.services.metrics_service import (
    EF_SCALE,
    HRZones,
    aerobic_decoupling,
    average_velocity,
    cardiac_drift,
    compute_activity_metrics,
    data_quality,
    data_quality_description,
    decoupling_assessment,
    efficiency_factor,
    grade_adjusted_velocity,
    normalized_efficiency_factor,
    pace_at_hr,
    steady_state_pct,
    stress_score,
    training_impulse,
)

from conftest import make_samples

ZONES = HRZones(resting_hr=50, max_hr=190, threshold_hr=170)


def _activity(moving_time=3600, distance=10800.0, average_heartrate=None, elapsed_time=None):
    return Activity(
        id=1,
        name="Test run",
        activity_type="Run",
        moving_time=moving_time,
        elapsed_time=elapsed_time if elapsed_time is not None else moving_time,
        distance=distance,
        average_heartrate=average_heartrate,
    )


class TestEfficiencyFactor:

    def test_basic_value(self):
        ef = efficiency_factor(make_samples(100, velocity=3.0, heartrate=150))
        assert ef == pytest.approx(3.0 / 150 * EF_SCALE)

    def test_positive_for_any_plausible_sample(self):
        """Boundary values are included by the noise filter."""
        samples = [StreamSample(time_offset=0, velocity_smooth=0.5, heartrate=80)]
        assert efficiency_factor(samples) > 0

    def test_noise_is_filtered(self):
        samples = make_samples(10, velocity=3.0, heartrate=150) + [
            StreamSample(time_offset=100, velocity_smooth=0.2, heartrate=150),
            StreamSample(time_offset=101, velocity_smooth=3.0, heartrate=60),
            StreamSample(time_offset=102, velocity_smooth=None, heartrate=150),
        ]
        assert efficiency_factor(samples) == pytest.approx(3.0 / 150 * EF_SCALE)

    def test_heart_rate_spikes_are_filtered(self):
        samples = make_samples(10, velocity=3.0, heartrate=150) + [
            StreamSample(time_offset=100, velocity_smooth=3.0, heartrate=220),
            StreamSample(time_offset=101, velocity_smooth=3.0, heartrate=255),
        ]
        assert efficiency_factor(samples) == pytest.approx(3.0 / 150 * EF_SCALE)
        assert normalized_efficiency_factor(samples) == pytest.approx(3.0 / 150 * EF_SCALE)

    def test_no_valid_samples(self):
        assert efficiency_factor([]) == 0.0
        assert efficiency_factor(make_samples(10, velocity=0.1)) == 0.0

    def test_flat_ground_nef_equals_ef(self):
        samples = make_samples(50, velocity=3.2, heartrate=145)
        assert normalized_efficiency_factor(samples) == pytest.approx(efficiency_factor(samples))

    def test_uphill_lowers_normalized_velocity(self):
        # 10% grade: divisor 1.3
        assert grade_adjusted_velocity(3.9, 10) == pytest.approx(3.0)
        samples = make_samples(50, velocity=3.0, heartrate=150, grade=10)
        assert normalized_efficiency_factor(samples) < efficiency_factor(samples)

    def test_steep_descent_is_capped(self):
        assert grade_adjusted_velocity(3.0, -30) == pytest.approx(6.0)
        assert grade_adjusted_velocity(3.0, -50) == pytest.approx(6.0)
        assert grade_adjusted_velocity(3.0, None) == pytest.approx(3.0)


class TestDecoupling:

    def test_constant_effort_is_zero(self):
        assert aerobic_decoupling(make_samples(120)) == pytest.approx(0.0)

    def test_too_few_samples(self):
        samples = make_samples(30, heartrate=140) + [
            StreamSample(time_offset=30 + i, velocity_smooth=3.0, heartrate=170) for i in range(29)
        ]
        assert aerobic_decoupling(samples) == 0.0

    def test_rising_heart_rate_is_positive(self):
        samples = make_samples(60, heartrate=140) + [
            StreamSample(time_offset=60 + i, velocity_smooth=3.0, heartrate=154) for i in range(60)
        ]
        # first EF / second EF = 154 / 140
        assert aerobic_decoupling(samples) == pytest.approx((154 / 140 - 1) * 100)

    def test_unsorted_input_is_sorted(self):
        samples = make_samples(60, heartrate=140) + [
            StreamSample(time_offset=60 + i, velocity_smooth=3.0, heartrate=154) for i in range(60)
        ]
        assert aerobic_decoupling(list(reversed(samples))) == pytest.approx(aerobic_decoupling(samples))

    def test_half_without_valid_data(self):
        samples = make_samples(60, heartrate=150) + make_samples(60, velocity=0.0)
        for i, s in enumerate(samples):
            s.time_offset = i
        assert aerobic_decoupling(samples) == 0.0


class TestCardiacDrift:

    def test_drift_between_quarters(self):
        samples = [
            StreamSample(time_offset=i, velocity_smooth=3.0, heartrate=140 if i < 50 else 150)
            for i in range(200)
        ]
        # First quarter all 140, last quarter all 150
        assert cardiac_drift(samples, 3.0) == pytest.approx(10.0)

    def test_unsteady_samples_are_ignored(self):
        samples = [
            StreamSample(time_offset=i, velocity_smooth=3.0 if i % 2 == 0 else 5.0, heartrate=150)
            for i in range(200)
        ]
        # Only 100 steady samples remain, all at 150 bpm
        assert cardiac_drift(samples, 3.0) == pytest.approx(0.0)

    def test_needs_sixty_steady_samples(self):
        assert cardiac_drift(make_samples(59), 3.0) == 0.0
        assert cardiac_drift(make_samples(200), 0.0) == 0.0

    def test_steady_state_pct(self):
        samples = make_samples(75, velocity=3.0) + [
            StreamSample(time_offset=100 + i, velocity_smooth=4.0, heartrate=150) for i in range(25)
        ]
        assert steady_state_pct(samples, 3.0) == pytest.approx(75.0)

    def test_average_velocity_falls_back_to_elapsed_time(self):
        assert average_velocity(_activity(moving_time=3600, distance=10800)) == pytest.approx(3.0)
        assert average_velocity(_activity(moving_time=0, elapsed_time=4000, distance=10000)) == pytest.approx(2.5)
        assert average_velocity(_activity(moving_time=0, elapsed_time=0)) == 0.0


class TestTrainingImpulse:

    def test_formula(self):
        samples = make_samples(100, heartrate=120)
        r = (120 - 50) / 140
        expected = 60 * r * math.exp(1.92 * r)
        assert training_impulse(_activity(), samples, ZONES) == pytest.approx(expected)

    def test_summary_hr_fallback(self):
        samples = [StreamSample(time_offset=i, velocity_smooth=3.0) for i in range(100)]
        with_summary = training_impulse(_activity(average_heartrate=120), samples, ZONES)
        assert with_summary == pytest.approx(training_impulse(_activity(), make_samples(100, heartrate=120), ZONES))

    def test_no_heart_rate_is_zero(self):
        samples = [StreamSample(time_offset=i, velocity_smooth=3.0) for i in range(100)]
        assert training_impulse(_activity(), samples, ZONES) == 0.0

    def test_ratio_is_clamped(self):
        below_rest = training_impulse(_activity(), make_samples(100, heartrate=40), ZONES)
        above_max = training_impulse(_activity(), make_samples(100, heartrate=220), ZONES)
        assert below_rest == 0.0
        assert above_max == pytest.approx(60 * math.exp(1.92))

    def test_non_positive_reserve_is_zero(self):
        zones = HRZones(resting_hr=60, max_hr=60, threshold_hr=50)
        assert training_impulse(_activity(), make_samples(100), zones) == 0.0

    def test_hour_at_threshold_scores_100(self):
        samples = make_samples(100, heartrate=170)
        trimp = training_impulse(_activity(moving_time=3600), samples, ZONES)
        assert stress_score(trimp, ZONES) == pytest.approx(100.0)


class TestComputeActivityMetrics:

    def test_empty_stream_gives_zero_row(self):
        metrics = compute_activity_metrics(_activity(), [], ZONES)

        assert metrics.activity_id == 1
        assert metrics.efficiency_factor == 0
        assert metrics.trimp == 0
        assert metrics.data_quality_score == 0
        assert metrics.pace_at_z2 is None

    def test_full_row(self):
        samples = make_samples(600, velocity=3.0, heartrate=150)
        metrics = compute_activity_metrics(_activity(moving_time=600, distance=1800), samples, ZONES)

        assert metrics.efficiency_factor == pytest.approx(2000.0)
        assert metrics.aerobic_decoupling == pytest.approx(0.0)
        assert metrics.cardiac_drift == pytest.approx(0.0)
        assert metrics.data_quality_score == pytest.approx(1.0)
        assert metrics.steady_state_pct == pytest.approx(100.0)
        assert metrics.trimp > 0
        # Zone 2 midpoint is 148 bpm for these zones; 150 is within tolerance
        assert metrics.pace_at_z2 == pytest.approx(1000 / 3.0 / 60)
        assert metrics.pace_at_z1 is None

    def test_data_quality(self):
        samples = make_samples(3) + [StreamSample(time_offset=3, velocity_smooth=3.0)]
        assert data_quality(samples) == pytest.approx(0.75)
        assert data_quality([]) == 0.0

    def test_pace_needs_thirty_samples(self):
        assert pace_at_hr(make_samples(29, heartrate=150), 150) is None
        assert pace_at_hr(make_samples(30, heartrate=150), 150) is not None


class TestDescriptions:

    def test_data_quality_description(self):
        assert data_quality_description(0.99) == "Excellent"
        assert data_quality_description(0.6) == "Poor"
        assert data_quality_description(0.1) == "Very Poor"

    def test_decoupling_assessment(self):
        assert decoupling_assessment(2) == "Excellent aerobic base"
        assert decoupling_assessment(6) == "Developing aerobic base"
        assert decoupling_assessment(20) == "Aerobic system needs work"

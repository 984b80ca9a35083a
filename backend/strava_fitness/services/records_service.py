"""Personal records - best efforts, race-distance results and longest run.

Best efforts are the fastest stretch of a standard distance anywhere inside a
run, found on the cumulative distance stream. Race-distance records use the
whole activity when its distance is within 5% of a standard race.
"""

from typing import List, Optional, Sequence, Tuple

from strava_fitness.models import Activity
from strava_fitness.schemas import BestEffort, PersonalRecordEntry, StreamSample

METERS_PER_MILE = 1609.34

# Best efforts searched for inside every stream
EFFORT_DISTANCES = {
    "effort_400m": 400.0,
    "effort_1k": 1000.0,
    "effort_1mi": METERS_PER_MILE,
    "effort_5k": 5000.0,
    "effort_10k": 10000.0,
}

# Whole-activity race distances
RACE_DISTANCES = {
    "distance_1mi": METERS_PER_MILE,
    "distance_5k": 5000.0,
    "distance_10k": 10000.0,
    "distance_half": 21097.0,
    "distance_full": 42195.0,
}

LONGEST_RUN = "longest_run"

DISTANCE_TOLERANCE = 0.05
MIN_POINTS_FOR_EFFORT = 10
MIN_SEGMENT_HEART_RATE = 50  # bpm


def find_best_effort(samples: Sequence[StreamSample], target_distance: float) -> Optional[BestEffort]:
    """
    Fastest segment covering at least ``target_distance`` meters.

    Two pointers over the distance stream: for every end point the start is
    moved as late as it can go while the segment still covers the target.
    Returns None when the stream is too short or has too few distance points.
    """
    points = sorted(
        (s for s in samples if s.distance is not None),
        key=lambda s: s.time_offset,
    )
    if len(points) < MIN_POINTS_FOR_EFFORT:
        return None
    if points[-1].distance - points[0].distance < target_distance:
        return None

    # Prefix sums for the segment's mean heart rate
    hr_sum = [0.0]
    hr_count = [0]
    for p in points:
        counted = p.heartrate is not None and p.heartrate > MIN_SEGMENT_HEART_RATE
        hr_sum.append(hr_sum[-1] + (p.heartrate if counted else 0))
        hr_count.append(hr_count[-1] + (1 if counted else 0))

    best: Optional[Tuple[int, int]] = None
    best_duration = None
    left = 0

    for right in range(1, len(points)):
        end = points[right].distance
        while left + 1 < right and end - points[left + 1].distance >= target_distance:
            left += 1
        if end - points[left].distance < target_distance:
            continue
        duration = points[right].time_offset - points[left].time_offset
        if duration <= 0:
            continue
        if best_duration is None or duration < best_duration:
            best_duration = duration
            best = (left, right)

    if best is None:
        return None

    left, right = best
    count = hr_count[right + 1] - hr_count[left]
    avg_hr = (hr_sum[right + 1] - hr_sum[left]) / count if count else None

    return BestEffort(
        distance_meters=points[right].distance - points[left].distance,
        duration_seconds=best_duration,
        start_offset=points[left].time_offset,
        end_offset=points[right].time_offset,
        avg_heartrate=avg_hr,
    )


def matches_race_distance(activity_distance: float, race_distance: float) -> bool:
    """Within ±5% of the race distance."""
    low = race_distance * (1 - DISTANCE_TOLERANCE)
    high = race_distance * (1 + DISTANCE_TOLERANCE)
    return low <= activity_distance <= high


def matching_race_category(activity_distance: float) -> Optional[str]:
    for category, distance in RACE_DISTANCES.items():
        if matches_race_distance(activity_distance, distance):
            return category
    return None


def pace_per_mile(distance_meters: float, duration_seconds: int) -> float:
    """Seconds per mile; 0 without distance or time."""
    if distance_meters <= 0 or duration_seconds <= 0:
        return 0.0
    return duration_seconds / (distance_meters / METERS_PER_MILE)


def is_improvement(existing: Optional[PersonalRecordEntry], candidate: PersonalRecordEntry) -> bool:
    """Longest run ranks by distance; every other category by time."""
    if existing is None:
        return True
    if candidate.category == LONGEST_RUN:
        return candidate.distance_meters > existing.distance_meters
    return candidate.duration_seconds < existing.duration_seconds


def personal_record_candidates(
    activity: Activity,
    samples: Sequence[StreamSample],
) -> List[PersonalRecordEntry]:
    """Every record this activity could set, before comparing with stored ones."""
    candidates = []
    distance = activity.distance or 0.0
    moving_time = activity.moving_time or 0

    def whole_activity(category: str) -> PersonalRecordEntry:
        return PersonalRecordEntry(
            category=category,
            activity_id=activity.id,
            distance_meters=distance,
            duration_seconds=moving_time,
            pace_per_mile=pace_per_mile(distance, moving_time),
            avg_heartrate=activity.average_heartrate,
            achieved_at=activity.start_date,
        )

    if distance > 0 and moving_time > 0:
        race = matching_race_category(distance)
        if race is not None:
            candidates.append(whole_activity(race))
        candidates.append(whole_activity(LONGEST_RUN))

    for category, target in EFFORT_DISTANCES.items():
        effort = find_best_effort(samples, target)
        if effort is None:
            continue
        candidates.append(PersonalRecordEntry(
            category=category,
            activity_id=activity.id,
            distance_meters=effort.distance_meters,
            duration_seconds=effort.duration_seconds,
            pace_per_mile=pace_per_mile(effort.distance_meters, effort.duration_seconds),
            avg_heartrate=effort.avg_heartrate,
            achieved_at=activity.start_date,
            start_offset=effort.start_offset,
            end_offset=effort.end_offset,
        ))

    return candidates

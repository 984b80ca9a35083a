"""Pydantic schemas for Strava payloads, sync reporting and API responses."""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import Optional, List, Dict, Any
from datetime import datetime, date


# ============== Strava Payload Schemas ==============

class StravaActivity(BaseModel):
    """Activity summary as returned by GET /athlete/activities."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    athlete: Dict[str, Any] = {}
    name: str = ""
    activity_type: str = Field("", alias="type")
    sport_type: Optional[str] = None
    start_date: datetime
    start_date_local: Optional[datetime] = None
    timezone: Optional[str] = None
    distance: float = 0  # meters
    moving_time: int = 0  # seconds
    elapsed_time: int = 0  # seconds
    total_elevation_gain: float = 0
    average_speed: float = 0  # m/s
    max_speed: float = 0
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    average_cadence: Optional[float] = None
    suffer_score: Optional[float] = None
    has_heartrate: bool = False

    @property
    def athlete_id(self) -> Optional[int]:
        return self.athlete.get("id")

    @property
    def is_run(self) -> bool:
        return self.activity_type == "Run"


class StreamSample(BaseModel):
    """One second-indexed observation of an activity stream."""
    model_config = ConfigDict(from_attributes=True)

    time_offset: int
    latlng_lat: Optional[float] = None
    latlng_lng: Optional[float] = None
    altitude: Optional[float] = None
    velocity_smooth: Optional[float] = None  # m/s
    heartrate: Optional[int] = None  # bpm
    cadence: Optional[int] = None
    grade_smooth: Optional[float] = None  # percent
    distance: Optional[float] = None  # cumulative meters


# ============== Metrics Schemas ==============

class ComputedMetrics(BaseModel):
    """Per-activity metrics computed from one stream pass."""
    model_config = ConfigDict(from_attributes=True)

    activity_id: int
    efficiency_factor: float = 0
    normalized_efficiency_factor: float = 0
    aerobic_decoupling: float = 0
    cardiac_drift: float = 0
    trimp: float = 0
    hrss: float = 0
    data_quality_score: float = 0
    steady_state_pct: float = 0
    pace_at_z1: Optional[float] = None
    pace_at_z2: Optional[float] = None
    pace_at_z3: Optional[float] = None


class DailyVolume(BaseModel):
    """Run volume and efficiency readings on one calendar day."""
    run_count: int = 0
    distance: float = 0
    moving_time: int = 0
    efficiency_factors: List[float] = []


class DailyTrainingLoad(BaseModel):
    """Training load for one calendar day."""
    model_config = ConfigDict(from_attributes=True)

    date: date
    daily_trimp: float = 0
    ctl: float = 0  # Chronic Training Load (Fitness)
    atl: float = 0  # Acute Training Load (Fatigue)
    tsb: float = 0  # Training Stress Balance (Form)
    efficiency_factor_7d: Optional[float] = None
    efficiency_factor_28d: Optional[float] = None
    efficiency_factor_90d: Optional[float] = None
    run_count_7d: int = 0
    total_distance_7d: float = 0
    total_time_7d: int = 0


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class TrendResult(BaseModel):
    """Linear trend of a metric over time."""
    slope: float = 0  # units per day
    intercept: float = 0
    r_squared: float = 0
    percent_change: float = 0
    direction: TrendDirection = TrendDirection.FLAT
    sample_size: int = 0


class FitnessHistory(BaseModel):
    """Historical fitness/fatigue data for charting."""
    dates: List[date]
    ctl_values: List[float]
    atl_values: List[float]
    tsb_values: List[float]


class FitnessSnapshot(BaseModel):
    """Most recent training load with a readable form description."""
    as_of: Optional[date] = None
    ctl: float = 0
    atl: float = 0
    tsb: float = 0
    form: str


# ============== Personal Record Schemas ==============

class BestEffort(BaseModel):
    """Fastest stretch of a target distance inside one activity."""
    distance_meters: float
    duration_seconds: int
    start_offset: int  # seconds from activity start
    end_offset: int
    avg_heartrate: Optional[float] = None


class PersonalRecordEntry(BaseModel):
    """Best result in one record category, e.g. "effort_5k" or "longest_run"."""
    model_config = ConfigDict(from_attributes=True)

    category: str
    activity_id: int
    distance_meters: float
    duration_seconds: int
    pace_per_mile: Optional[float] = None  # seconds per mile
    avg_heartrate: Optional[float] = None
    achieved_at: datetime
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None


# ============== Sync Schemas ==============

class SyncPhase(str, Enum):
    ACTIVITIES = "activities"
    STREAMS = "streams"
    METRICS = "metrics"
    TRENDS = "trends"
    RECORDS = "records"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


class SyncProgress(BaseModel):
    """Progress event pushed to observers."""
    phase: SyncPhase
    total: int = 0
    completed: int = 0
    current_label: Optional[str] = None
    error: Optional[str] = None


class ItemResult(BaseModel):
    """Outcome of processing one activity within a phase."""
    activity_id: int
    label: str = ""
    status: ItemStatus
    reason: Optional[str] = None


class PhaseReport(BaseModel):
    phase: SyncPhase
    total: int = 0
    items: List[ItemResult] = []

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == ItemStatus.SUCCESS)

    @computed_field
    @property
    def skipped(self) -> int:
        return sum(1 for i in self.items if i.status == ItemStatus.SKIPPED)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == ItemStatus.ERROR)

    def errors(self) -> List[ItemResult]:
        return [i for i in self.items if i.status == ItemStatus.ERROR]


class SyncReport(BaseModel):
    """Summary of one sync run."""
    state: SyncPhase = SyncPhase.ACTIVITIES
    started_at: datetime
    finished_at: Optional[datetime] = None
    activities_fetched: int = 0
    activities_stored: int = 0
    watermark_advanced: bool = False
    trend_days: int = 0
    records_set: int = 0
    phases: List[PhaseReport] = []
    error: Optional[str] = None
    progress_dropped: int = 0

    def phase(self, phase: SyncPhase) -> Optional[PhaseReport]:
        for report in self.phases:
            if report.phase == phase:
                return report
        return None


class RateLimitStatus(BaseModel):
    """Snapshot of remaining Strava quota."""
    model_config = ConfigDict(frozen=True)

    short_limit: int
    short_remaining: int
    daily_limit: int
    daily_remaining: int
    short_resets_in: float  # seconds
    daily_resets_in: float
    server_reported: bool = False


# ============== API Response Schemas ==============

class ActivityMetricsDetail(ComputedMetrics):
    """Stored metrics of one activity with readable assessments."""
    computed_at: Optional[datetime] = None
    data_quality: str = ""
    decoupling: str = ""


class AuthUrlResponse(BaseModel):
    url: str


class StravaConnection(BaseModel):
    connected: bool
    athlete_id: Optional[int] = None
    expires_at: Optional[datetime] = None

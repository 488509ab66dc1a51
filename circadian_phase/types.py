"""
Data structures for circadian phase estimation.

Input records are owned by the caller and never modified. Everything else is
rebuilt on every analysis call.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Literal

# Records further apart than this start a new, independently analyzed segment.
# External tools that pre-split raw sleep files must use the same value.
GAP_THRESHOLD_DAYS = 14

ConfidenceLevel = Literal["high", "medium", "low"]

# Quality tier of an anchor (A = long, high-quality sleep)
AnchorTier = Literal["A", "B", "C"]

SleepStageLevel = Literal["wake", "light", "deep", "rem"]


# =============================================================================
# Input
# =============================================================================


@dataclass(frozen=True)
class SleepStages:
    """Minutes spent in each stage (v1.2 "stages" records only)."""

    deep: int
    light: int
    rem: int
    wake: int


@dataclass(frozen=True)
class SleepStageEntry:
    """One interval of the per-interval stage timeline."""

    date_time: str  # ISO datetime as logged by the tracker
    level: SleepStageLevel
    seconds: int


@dataclass(frozen=True)
class SleepRecord:
    """
    One logged sleep episode.

    Timestamps are naive local wall-clock datetimes. `date_of_sleep` is the
    calendar date the tracker attributed the episode to (usually the wake date).
    """

    log_id: int
    date_of_sleep: date
    start_time: datetime
    end_time: datetime
    duration_hours: float
    sleep_score: float  # Quality in [0, 1]
    is_main_sleep: bool = True

    # Optional tracker metadata (not used by the estimators)
    efficiency: float | None = None
    minutes_asleep: int | None = None
    minutes_awake: int | None = None
    stages: SleepStages | None = None
    stage_data: tuple[SleepStageEntry, ...] | None = None

    @property
    def midpoint(self) -> datetime:
        """Clock time halfway through the episode."""
        return self.start_time + timedelta(hours=self.duration_hours / 2)


# =============================================================================
# Intermediate
# =============================================================================


@dataclass(frozen=True)
class Anchor:
    """
    Representative sleep record for one day (regression and circular filter).

    `midpoint_hour` is measured in hours from the analysis epoch and is
    rewritten (by whole multiples of 24) during phase unwrapping.
    """

    day_number: int  # Days since the analysis epoch
    midpoint_hour: float
    weight: float
    tier: AnchorTier
    record: SleepRecord

    @property
    def date(self) -> date:
        return self.record.date_of_sleep


@dataclass
class AnchorPoint:
    """Serializable projection of an anchor (no record reference)."""

    day_number: int
    midpoint_hour: float
    weight: float
    date: str  # "2024-01-12" ISO date


@dataclass(frozen=True)
class CSFState:
    """Circular filter estimate for one day."""

    phase: float  # Hours since the epoch
    tau: float  # Hours
    phase_var: float
    tau_var: float
    cov: float  # Phase/tau covariance


@dataclass(frozen=True)
class SmoothedState(CSFState):
    """Filtered state together with its backward-smoothed counterpart."""

    smoothed_phase: float
    smoothed_tau: float
    smoothed_phase_var: float
    smoothed_tau_var: float


# =============================================================================
# Output
# =============================================================================


@dataclass
class CircadianDay:
    """Estimated circadian night for one calendar day."""

    date: str  # "2024-01-12" ISO date
    night_start_hour: float  # May be negative or exceed 24 (window around midsleep)
    night_end_hour: float
    confidence_score: float  # 0-1
    confidence: ConfidenceLevel
    local_tau: float  # Hours
    local_drift: float  # Hours/day (tau - 24)
    is_forecast: bool = False
    is_gap: bool = False
    anchor_sleep: SleepRecord | None = None

    @property
    def midpoint_hour(self) -> float:
        """Center of the night window (not normalized)."""
        return (self.night_start_hour + self.night_end_hour) / 2


@dataclass
class SegmentResult:
    """
    Per-segment estimator output, shared by every estimator.

    Diagnostic fields that an estimator does not produce keep their defaults.
    """

    days: list[CircadianDay]
    first_day: int  # Day number of the first data day
    last_day: int  # Day number of the last data day (forecast days excluded)

    # Anchor-based diagnostics
    residuals: list[float] = field(default_factory=list)
    anchors: list[AnchorPoint] = field(default_factory=list)
    tier_counts: dict[str, int] = field(default_factory=lambda: {"A": 0, "B": 0, "C": 0})

    # Kalman diagnostics
    gated_count: int = 0
    observation_count: int = 0
    mean_innovation: float = 0.0

    # Circular filter diagnostics
    states: list[SmoothedState] = field(default_factory=list)


@dataclass
class CircadianAnalysis:
    """Algorithm-independent analysis result."""

    global_tau: float
    global_daily_drift: float
    days: list[CircadianDay]
    algorithm_id: str
    r_squared: float = 0.0


@dataclass
class RegressionAnalysis(CircadianAnalysis):
    """Result of the weighted regression estimator."""

    anchors: list[AnchorPoint] = field(default_factory=list)
    median_residual_hours: float = 0.0
    anchor_count: int = 0
    anchor_tier_counts: dict[str, int] = field(default_factory=lambda: {"A": 0, "B": 0, "C": 0})


@dataclass
class KalmanAnalysis(CircadianAnalysis):
    """Result of the Kalman filter estimator."""

    gated_outlier_count: int = 0
    observation_count: int = 0
    avg_innovation: float = 0.0


@dataclass
class CSFAnalysis(CircadianAnalysis):
    """Result of the circular state-space filter estimator."""

    states: list[SmoothedState] = field(default_factory=list)
    median_residual_hours: float = 0.0
    anchor_count: int = 0
    anchor_tier_counts: dict[str, int] = field(default_factory=lambda: {"A": 0, "B": 0, "C": 0})

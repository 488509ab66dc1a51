"""
Shared circadian arithmetic.

Clock-hour helpers (24h wrap handling), day numbering relative to an analysis
epoch, and the weighted least-squares fit used by every estimator.
"""

import math
from datetime import date, datetime, timedelta

import pytz

from .types import ConfidenceLevel, SleepRecord

HOURS_PER_DAY = 24.0

# Confidence buckets
HIGH_CONFIDENCE = 0.6
MEDIUM_CONFIDENCE = 0.3

# (x, y, weight)
Point = tuple[float, float, float]


def normalize_hour(hour: float) -> float:
    """Wrap an hour value into [0, 24)."""
    return hour % HOURS_PER_DAY


def unwrap_near(value: float, reference: float) -> float:
    """
    Shift `value` by whole days until it lies within 12h of `reference`.

    Values exactly 12h away are left on their current branch.
    """
    while value - reference > 12:
        value -= HOURS_PER_DAY
    while reference - value > 12:
        value += HOURS_PER_DAY
    return value


def circular_distance(a: float, b: float) -> float:
    """Shortest distance between two clock hours (0-12)."""
    d = abs(normalize_hour(a) - normalize_hour(b))
    return HOURS_PER_DAY - d if d > 12 else d


def circular_diff(a: float, b: float) -> float:
    """Signed shortest difference a - b between two clock hours, in [-12, 12]."""
    diff = normalize_hour(a) - normalize_hour(b)
    if diff > 12:
        return diff - HOURS_PER_DAY
    if diff < -12:
        return diff + HOURS_PER_DAY
    return diff


def resolve_ambiguity(z: float, predicted_phase: float) -> float:
    """Move `z` by whole days onto the branch nearest the predicted phase."""
    return z + round((predicted_phase - z) / HOURS_PER_DAY) * HOURS_PER_DAY


def gaussian(distance: float, sigma: float) -> float:
    """Unnormalized Gaussian kernel."""
    return math.exp(-0.5 * (distance / sigma) ** 2)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def upper_median(values: list[float]) -> float:
    """Element at index n // 2 of the sorted values (0 for no values)."""
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def weighted_linear_regression(points: list[Point]) -> tuple[float, float]:
    """
    Weighted least-squares line through (x, y, w) points.

    Returns:
        (slope, intercept). A degenerate fit (no weight, or all x equal)
        returns slope 0 and the weighted mean of y as intercept.
    """
    sum_w = sum_wx = sum_wy = sum_wxx = sum_wxy = 0.0
    for x, y, w in points:
        sum_w += w
        sum_wx += w * x
        sum_wy += w * y
        sum_wxx += w * x * x
        sum_wxy += w * x * y

    denom = sum_w * sum_wxx - sum_wx * sum_wx
    if denom == 0 or sum_w == 0:
        return 0.0, (sum_wy / sum_w if sum_w > 0 else 0.0)

    slope = (sum_w * sum_wxy - sum_wx * sum_wy) / denom
    intercept = (sum_wy * sum_wxx - sum_wx * sum_wxy) / denom
    return slope, intercept


def confidence_label(score: float) -> ConfidenceLevel:
    """Bucket a 0-1 confidence score."""
    if score >= HIGH_CONFIDENCE:
        return "high"
    if score >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


# =============================================================================
# Day numbering
# =============================================================================


def analysis_epoch(records: list[SleepRecord]) -> datetime:
    """
    Midnight of the date attributed to the earliest-starting record.

    Every day number and midpoint hour in an analysis is measured from here.
    """
    first = min(records, key=lambda r: r.start_time)
    return datetime.combine(first.date_of_sleep, datetime.min.time())


def day_number(day: date, epoch: datetime) -> int:
    """Whole days from the epoch's date to `day`."""
    return (day - epoch.date()).days


def day_to_date_str(number: int, epoch: datetime) -> str:
    """ISO date string for a day number."""
    return (epoch.date() + timedelta(days=number)).isoformat()


def hours_since(moment: datetime, epoch: datetime) -> float:
    """Hours elapsed from the epoch to `moment`."""
    return (moment - epoch).total_seconds() / 3600


def midpoint_hour(record: SleepRecord, epoch: datetime) -> float:
    """Sleep midpoint as hours from the epoch (not wrapped)."""
    return hours_since(record.start_time, epoch) + record.duration_hours / 2


# =============================================================================
# Time zones
# =============================================================================


def get_current_datetime_in_tz(tz_name: str) -> datetime:
    """
    Get current datetime in the specified timezone.

    Sleep logs are kept in local wall-clock time, so "now" has to be read in
    the sleeper's zone rather than the host's.

    Args:
        tz_name: IANA timezone name (e.g., "America/Los_Angeles")

    Returns:
        Current datetime in the specified timezone (naive, for local comparisons)
    """
    tz = pytz.timezone(tz_name)
    now_utc = datetime.now(pytz.UTC)
    return now_utc.astimezone(tz).replace(tzinfo=None)


def to_local_naive(moment: datetime, tz_name: str | None = None) -> datetime:
    """
    Drop the offset from a timestamp, converting to `tz_name` first if given.

    Naive timestamps are already local and are returned unchanged.
    """
    if moment.tzinfo is None:
        return moment
    if tz_name:
        moment = moment.astimezone(pytz.timezone(tz_name))
    return moment.replace(tzinfo=None)

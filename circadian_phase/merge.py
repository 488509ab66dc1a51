"""
Stitching per-segment results into one calendar.

Segments are analyzed independently, so their phases are unwrapped on
unrelated branches. The global period is fit over midpoints bridged across
segments: each segment is unwrapped internally, and its first midpoint is
snapped to within 12h of the previous segment's last.
"""

from datetime import date, datetime

from .circadian_math import Point, day_number, day_to_date_str, unwrap_near, weighted_linear_regression
from .types import CircadianDay, SegmentResult, SleepRecord

DEGENERATE_DENOMINATOR = 1e-10


def placeholder_day(number: int, epoch: datetime, is_gap: bool = False, is_forecast: bool = False) -> CircadianDay:
    """Zero-confidence day with an empty window at midnight."""
    return CircadianDay(
        date=day_to_date_str(number, epoch),
        night_start_hour=0.0,
        night_end_hour=0.0,
        confidence_score=0.0,
        confidence="low",
        local_tau=24.0,
        local_drift=0.0,
        is_forecast=is_forecast,
        is_gap=is_gap,
    )


def neutral_segment(records: list[SleepRecord], forecast_days: int, epoch: datetime) -> SegmentResult:
    """
    Stand-in for a segment no estimator could analyze.

    Covers the same days the segment would have, so the calendar stays
    complete, but reports nothing about phase.
    """
    first_day = min(day_number(r.date_of_sleep, epoch) for r in records)
    last_day = max(day_number(r.date_of_sleep, epoch) for r in records)
    days = [
        placeholder_day(d, epoch, is_forecast=d > last_day)
        for d in range(first_day, last_day + forecast_days + 1)
    ]
    return SegmentResult(days=days, first_day=first_day, last_day=last_day)


def merge_days(segments: list[SegmentResult], epoch: datetime) -> list[CircadianDay]:
    """Concatenate segment days with gap placeholders between them (segments sorted by first day)."""
    days: list[CircadianDay] = []
    for i, seg in enumerate(segments):
        if i > 0:
            prev_end = segments[i - 1].last_day
            days.extend(placeholder_day(d, epoch, is_gap=True) for d in range(prev_end + 1, seg.first_day))
        days.extend(seg.days)
    return days


def bridged_midpoints(segments: list[SegmentResult], epoch: datetime) -> list[Point]:
    """
    (day number, unwrapped midpoint, confidence) for every data day.

    Forecast days, gap days and zero-confidence days are skipped. Segments
    must be sorted by first day.
    """
    points: list[Point] = []
    prev_segment_end: float | None = None

    for seg in segments:
        prev_mid: float | None = None
        for day in seg.days:
            if day.is_forecast or day.is_gap or day.confidence_score <= 0:
                continue

            mid = day.midpoint_hour
            if prev_mid is not None:
                mid = unwrap_near(mid, prev_mid)
            elif prev_segment_end is not None:
                mid = unwrap_near(mid, prev_segment_end)

            points.append((day_number(date.fromisoformat(day.date), epoch), mid, day.confidence_score))
            prev_mid = mid

        if prev_mid is not None:
            prev_segment_end = prev_mid

    return points


def global_drift(points: list[Point]) -> float:
    """Slope of the confidence-weighted fit (0 with fewer than two points)."""
    if len(points) < 2:
        return 0.0
    slope, _intercept = weighted_linear_regression(points)
    return slope


def weighted_r_squared(points: list[Point]) -> float:
    """Weighted coefficient of determination of the bridged fit (0 when undefined)."""
    if len(points) < 2:
        return 0.0

    sw = sum(w for _x, _y, w in points)
    sx = sum(w * x for x, _y, w in points)
    sxx = sum(w * x * x for x, _y, w in points)
    if abs(sw * sxx - sx * sx) <= DEGENERATE_DENOMINATOR:
        return 0.0

    slope, intercept = weighted_linear_regression(points)
    y_mean = sum(w * y for _x, y, w in points) / sw
    ss_res = sum(w * (y - (slope * x + intercept)) ** 2 for x, y, w in points)
    ss_tot = sum(w * (y - y_mean) ** 2 for _x, y, w in points)
    return max(0.0, 1 - ss_res / ss_tot) if ss_tot > 0 else 0.0

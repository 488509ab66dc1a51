"""
Test helpers for building sleep logs and checking analyses.

These functions can be imported by test modules.
"""

import math
import random
from datetime import date, datetime, timedelta

from circadian_phase.circadian_math import normalize_hour
from circadian_phase.types import CircadianAnalysis, SleepRecord

BASE_DATE = datetime(2024, 1, 1)


def make_record(
    day_offset: int,
    mid_hour: float,
    duration: float = 8.0,
    quality: float = 0.85,
    is_main_sleep: bool = True,
    log_id: int | None = None,
    date_of_sleep: date | None = None,
) -> SleepRecord:
    """
    Build a record from its midpoint.

    Args:
        day_offset: Days after BASE_DATE
        mid_hour: Midpoint in hours after that day's midnight (may exceed 24)
        duration: Sleep duration in hours
        quality: Sleep score (0-1)
        is_main_sleep: False for naps
        log_id: Defaults to 1000 + day_offset
        date_of_sleep: Defaults to the wake date
    """
    midpoint = BASE_DATE + timedelta(days=day_offset, hours=mid_hour)
    start = midpoint - timedelta(hours=duration / 2)
    end = midpoint + timedelta(hours=duration / 2)
    return SleepRecord(
        log_id=log_id if log_id is not None else 1000 + day_offset,
        date_of_sleep=date_of_sleep or end.date(),
        start_time=start,
        end_time=end,
        duration_hours=duration,
        sleep_score=quality,
        is_main_sleep=is_main_sleep,
        efficiency=90,
        minutes_asleep=round(duration * 60 * 0.9),
        minutes_awake=round(duration * 60 * 0.1),
    )


def make_synthetic_records(
    tau: float = 24.5,
    days: int = 90,
    base_duration: float = 8.0,
    noise: float = 0.5,
    gap_fraction: float = 0.0,
    start_midpoint: float = 3.0,
    seed: int = 42,
    quality: float = 0.8,
    start_day: int = 0,
) -> list[SleepRecord]:
    """
    Main-sleep records with a known period.

    The midpoint drifts by (tau - 24) hours per day with Gaussian noise;
    durations vary by ±0.5h. Each record is attributed to the day it was
    generated for, as trackers do for sleep that starts late.
    """
    rng = random.Random(seed)
    drift = tau - 24
    records = []

    for d in range(days):
        if gap_fraction > 0 and rng.random() < gap_fraction:
            continue

        mid = start_midpoint + d * drift + rng.gauss(0, 1) * noise
        duration = base_duration + (rng.random() - 0.5)
        day = start_day + d
        records.append(
            make_record(
                day,
                mid,
                duration=duration,
                quality=quality,
                date_of_sleep=(BASE_DATE + timedelta(days=day)).date(),
            )
        )

    return sorted(records, key=lambda r: r.start_time)


def make_n24_records(days: int = 60, drift: float = 0.5, quality: float = 0.85) -> list[SleepRecord]:
    """Noise-free 8h main sleeps starting at 23:00 and shifting later by `drift` hours per day."""
    return [make_record(d, 27 + d * drift, duration=8.0, quality=quality) for d in range(days)]


def expected_day_count(records: list[SleepRecord], forecast_days: int = 0) -> int:
    """Inclusive calendar days from the first to the last attributed date, plus forecast."""
    dates = [r.date_of_sleep for r in records]
    return (max(dates) - min(dates)).days + 1 + forecast_days


def midpoint_diff_hours(a: float, b: float) -> float:
    """Signed circular difference b - a in (-12, 12]."""
    d = normalize_hour(b) - normalize_hour(a)
    if d > 12:
        d -= 24
    elif d <= -12:
        d += 24
    return d


def assert_valid_calendar(analysis: CircadianAnalysis) -> None:
    """Dates strictly ascending by one day, windows ordered, confidences in range."""
    dates = [date.fromisoformat(d.date) for d in analysis.days]
    for prev, curr in zip(dates, dates[1:]):
        assert (curr - prev).days == 1, f"Calendar jumps from {prev} to {curr}"

    for day in analysis.days:
        assert day.night_end_hour >= day.night_start_hour, f"Inverted window on {day.date}"
        assert 0 <= day.confidence_score <= 1, f"Confidence out of range on {day.date}"
        assert not math.isnan(day.night_start_hour), f"NaN window on {day.date}"
        assert not (day.is_gap and day.is_forecast), f"Gap day marked forecast on {day.date}"

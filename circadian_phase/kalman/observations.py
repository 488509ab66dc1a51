"""
Per-day observations for the Kalman estimator.

Each observation carries its own measurement noise: long, high-quality main
sleeps are trusted most, naps least.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from ..circadian_math import HOURS_PER_DAY, clamp, midpoint_hour
from ..types import SleepRecord

logger = logging.getLogger(__name__)

MIN_DURATION_HOURS = 2.0  # Shorter records are not observed
MIN_QUALITY = 0.1
NOISE_QUALITY_FLOOR = 0.1
NAP_NOISE_FACTOR = 0.15  # Main-sleep factor applied to naps


@dataclass(frozen=True)
class Observation:
    """Phase measurement for one day."""

    day_number: int
    midpoint_hour: float  # Hours since the epoch, not unwrapped
    r: float  # Measurement noise variance (h²)
    record: SleepRecord


def measurement_noise(record: SleepRecord, r_base: float) -> float:
    """
    R = r_base / (quality * duration factor * main factor).

    quality is floored at 0.1, the duration factor is (duration - 4) / 5
    clamped to [0.1, 1], and the main factor is 1.0 (0.15 for naps).
    """
    quality = max(NOISE_QUALITY_FLOOR, record.sleep_score)
    duration_factor = clamp((record.duration_hours - 4) / 5, 0.1, 1.0)
    main_factor = 1.0 if record.is_main_sleep else NAP_NOISE_FACTOR
    return r_base / (quality * duration_factor * main_factor)


def _is_better(candidate: Observation, existing: Observation) -> bool:
    if candidate.record.is_main_sleep != existing.record.is_main_sleep:
        return candidate.record.is_main_sleep
    return candidate.r < existing.r


def extract_observations(records: list[SleepRecord], epoch: datetime, r_base: float) -> dict[int, Observation]:
    """
    Pick at most one observation per day.

    The day of a record is round(midpoint / 24), measured from the epoch.
    Main sleep beats naps; among equals the lower-noise record wins.

    Returns:
        Observations keyed by day number
    """
    by_day: dict[int, Observation] = {}
    skipped = 0

    for record in records:
        if record.duration_hours < MIN_DURATION_HOURS or record.sleep_score < MIN_QUALITY:
            skipped += 1
            continue

        mid = midpoint_hour(record, epoch)
        obs = Observation(
            day_number=round(mid / HOURS_PER_DAY),
            midpoint_hour=mid,
            r=measurement_noise(record, r_base),
            record=record,
        )
        existing = by_day.get(obs.day_number)
        if existing is None or _is_better(obs, existing):
            by_day[obs.day_number] = obs

    if skipped:
        logger.debug("Skipped %d records too short or too poor to observe", skipped)

    return by_day

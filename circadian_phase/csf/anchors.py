"""
Anchor selection for the circular filter.

Unlike the regression path, a record's tier decides both whether it can be an
anchor and its base weight. C-tier records are only used when the A/B
anchors leave a hole longer than two weeks.
"""

import logging
from datetime import datetime

from ..circadian_math import day_number, midpoint_hour
from ..types import Anchor, AnchorTier, SleepRecord

logger = logging.getLogger(__name__)

# (tier, min duration hours, min quality, base weight), strongest first
TIER_RULES: list[tuple[AnchorTier, float, float, float]] = [
    ("A", 7.0, 0.75, 1.0),
    ("B", 5.0, 0.6, 0.4),
    ("C", 4.0, 0.4, 0.1),
]

MIN_DURATION_HOURS = 4.0  # Duration factor is 0 here
DURATION_RAMP_HOURS = 5.0  # ...and reaches 1 this far above it
NAP_WEIGHT_FACTOR = 0.15
MAX_AB_GAP_DAYS = 14  # Larger holes between A/B anchors let C-tier records in


def classify_anchor(record: SleepRecord) -> tuple[AnchorTier, float] | None:
    """
    Tier and weight of a record, or None if it is too short or too poor.

    weight = base weight * quality * min(1, (duration - 4) / 5), times 0.15
    for naps.
    """
    for tier, min_duration, min_quality, base_weight in TIER_RULES:
        if record.duration_hours >= min_duration and record.sleep_score >= min_quality:
            break
    else:
        return None

    duration_factor = min(1.0, (record.duration_hours - MIN_DURATION_HOURS) / DURATION_RAMP_HOURS)
    weight = base_weight * record.sleep_score * duration_factor

    if not record.is_main_sleep:
        weight *= NAP_WEIGHT_FACTOR

    return tier, weight


def max_ab_gap(candidates: list[Anchor]) -> int:
    """Longest run of days between consecutive dates holding an A or B candidate."""
    days = sorted({c.day_number for c in candidates if c.tier != "C"})
    return max((b - a for a, b in zip(days, days[1:])), default=0)


def prepare_anchors(records: list[SleepRecord], epoch: datetime) -> list[Anchor]:
    """
    Pick the heaviest qualifying record per attributed date.

    Args:
        records: Records of one segment
        epoch: Analysis epoch shared by all segments

    Returns:
        Anchors sorted by day number; midpoints are hours since the epoch
    """
    candidates: list[Anchor] = []
    for record in sorted(records, key=lambda r: r.start_time):
        classified = classify_anchor(record)
        if classified is None:
            continue
        tier, weight = classified
        candidates.append(
            Anchor(
                day_number=day_number(record.date_of_sleep, epoch),
                midpoint_hour=midpoint_hour(record, epoch),
                weight=weight,
                tier=tier,
                record=record,
            )
        )

    if max_ab_gap(candidates) <= MAX_AB_GAP_DAYS:
        candidates = [c for c in candidates if c.tier != "C"]

    best_by_day: dict[int, Anchor] = {}
    for candidate in candidates:
        existing = best_by_day.get(candidate.day_number)
        if existing is None or candidate.weight > existing.weight:
            best_by_day[candidate.day_number] = candidate

    logger.debug("Prepared %d anchors from %d candidates", len(best_by_day), len(candidates))

    return [best_by_day[d] for d in sorted(best_by_day)]

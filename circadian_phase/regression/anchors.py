"""
Anchor selection and weighting for the regression estimator.

An anchor is the single sleep record that represents a calendar day. Its
weight grows with sleep quality and with duration above 4 hours; naps keep
only a small fraction of their weight so they cannot dominate the trend or
the unwrapping decisions.
"""

import logging
from datetime import datetime

from ..circadian_math import clamp, day_number, midpoint_hour
from ..types import Anchor, AnchorTier, SleepRecord

logger = logging.getLogger(__name__)

MIN_DURATION_HOURS = 4.0  # Duration factor is 0 at or below this
DURATION_RAMP_HOURS = 3.0  # Duration factor reaches 1 this far above the minimum
MIN_ANCHOR_WEIGHT = 0.05  # Records below this are not anchors
NAP_WEIGHT_FACTOR = 0.15

DEFAULT_MEDIAN_SPACING = 7  # Days, when spacing cannot be measured


def compute_anchor_weight(record: SleepRecord) -> float | None:
    """
    Weight of a record as an anchor, or None if it is too weak to use.

    weight = quality * clamp((duration - 4) / 3, 0, 1), times 0.15 for naps.
    The minimum-weight cut is applied before the nap factor.
    """
    duration_factor = clamp((record.duration_hours - MIN_DURATION_HOURS) / DURATION_RAMP_HOURS, 0, 1)
    weight = record.sleep_score * duration_factor

    if weight < MIN_ANCHOR_WEIGHT:
        return None

    return weight if record.is_main_sleep else weight * NAP_WEIGHT_FACTOR


def classify_tier(record: SleepRecord) -> AnchorTier:
    """Diagnostic tier: A = 7h+ at 0.75+ quality, B = 5h+ at 0.6+, C = the rest."""
    if record.duration_hours >= 7 and record.sleep_score >= 0.75:
        return "A"
    if record.duration_hours >= 5 and record.sleep_score >= 0.6:
        return "B"
    return "C"


def _is_better(candidate: Anchor, existing: Anchor) -> bool:
    if candidate.record.is_main_sleep != existing.record.is_main_sleep:
        return candidate.record.is_main_sleep
    return candidate.weight > existing.weight


def build_anchors(records: list[SleepRecord], epoch: datetime) -> list[Anchor]:
    """
    Pick one anchor per attributed date.

    Main sleep wins over naps; among equals the heavier record wins and the
    earlier record is kept on ties.

    Args:
        records: Records of one segment
        epoch: Analysis epoch (midnight of the first record's date)

    Returns:
        Anchors sorted by day number, midpoints not yet unwrapped
    """
    best_by_day: dict[int, Anchor] = {}
    dropped = 0

    for record in sorted(records, key=lambda r: r.start_time):
        weight = compute_anchor_weight(record)
        if weight is None:
            dropped += 1
            continue

        anchor = Anchor(
            day_number=day_number(record.date_of_sleep, epoch),
            midpoint_hour=midpoint_hour(record, epoch),
            weight=weight,
            tier=classify_tier(record),
            record=record,
        )
        existing = best_by_day.get(anchor.day_number)
        if existing is None or _is_better(anchor, existing):
            best_by_day[anchor.day_number] = anchor

    if dropped:
        logger.debug("Skipped %d records below the anchor weight floor", dropped)

    return [best_by_day[d] for d in sorted(best_by_day)]


def compute_median_spacing(anchors: list[Anchor]) -> float:
    """Median day spacing between consecutive anchors (7 when fewer than two)."""
    if len(anchors) < 2:
        return DEFAULT_MEDIAN_SPACING
    spacings = sorted(b.day_number - a.day_number for a, b in zip(anchors, anchors[1:]))
    return spacings[len(spacings) // 2]

"""Per-segment circular filter pipeline: anchors -> forward filter -> smoother -> days."""

import logging
import math
from datetime import datetime

from ..circadian_math import circular_diff, clamp, confidence_label, day_number, day_to_date_str, normalize_hour
from ..types import CircadianDay, SegmentResult, SleepRecord
from .anchors import prepare_anchors
from .filter import DEFAULT_CSF_CONFIG, CSFConfig, forward_pass, rts_smooth
from .smoothing import correct_edge, smooth_output_phase

logger = logging.getLogger(__name__)

MIN_ANCHORS = 2
DRIFT_MIN = -1.5  # Hours/day
DRIFT_MAX = 3.0
DEFAULT_HALF_DURATION = 4.0  # Hours, on days without an anchor

# Forecast confidence: 0.5 * exp(-0.1 * days past the data), floored at 0.1
FORECAST_CONFIDENCE = 0.5
FORECAST_DECAY = 0.1
MIN_FORECAST_CONFIDENCE = 0.1
MIN_VARIANCE_FOR_DENSITY = 0.1
ZERO_CONFIDENCE_VARIANCE = 2.0  # h², smoothed phase variance at which confidence reaches 0


def variance_to_confidence(phase_variance: float) -> float:
    """min(1, 1 / var) * (1 - var / 2), both factors clamped to [0, 1]."""
    density = min(1.0, 1 / max(phase_variance, MIN_VARIANCE_FOR_DENSITY))
    return min(1.0, density * (1 - min(1.0, phase_variance / ZERO_CONFIDENCE_VARIANCE)))


def forecast_confidence(days_past_data: int) -> float:
    return max(MIN_FORECAST_CONFIDENCE, FORECAST_CONFIDENCE * math.exp(-FORECAST_DECAY * days_past_data))


def analyze_segment(
    records: list[SleepRecord],
    forecast_days: int,
    epoch: datetime,
    config: CSFConfig = DEFAULT_CSF_CONFIG,
) -> SegmentResult | None:
    """
    Estimate one segment's nightly windows with the circular filter.

    Returns:
        SegmentResult, or None when fewer than two anchors qualify
    """
    if not records:
        return None

    anchors = prepare_anchors(records, epoch)
    if len(anchors) < MIN_ANCHORS:
        return None

    first_day = min(day_number(r.date_of_sleep, epoch) for r in records)
    last_day = max(day_number(r.date_of_sleep, epoch) for r in records)
    data_days = last_day - first_day
    total_days = data_days + forecast_days

    fwd = forward_pass(anchors, first_day, first_day + total_days, config)
    states = rts_smooth(fwd.states, config)
    states = correct_edge(states, anchors, first_day, data_days)
    states = smooth_output_phase(states)

    anchor_by_day = {a.day_number: a for a in anchors}
    days: list[CircadianDay] = []
    residuals: list[float] = []

    for local_day, state in enumerate(states):
        day = first_day + local_day
        is_forecast = local_day > data_days
        anchor = anchor_by_day.get(day)

        if is_forecast:
            confidence = forecast_confidence(local_day - data_days)
        else:
            confidence = variance_to_confidence(state.smoothed_phase_var)

        drift = clamp(state.smoothed_tau - 24, DRIFT_MIN, DRIFT_MAX)
        mid = normalize_hour(state.smoothed_phase)
        half_duration = anchor.record.duration_hours / 2 if anchor else DEFAULT_HALF_DURATION

        days.append(
            CircadianDay(
                date=day_to_date_str(day, epoch),
                night_start_hour=mid - half_duration,
                night_end_hour=mid + half_duration,
                confidence_score=confidence,
                confidence=confidence_label(confidence),
                local_tau=24 + drift,
                local_drift=drift,
                is_forecast=is_forecast,
                anchor_sleep=anchor.record if anchor else None,
            )
        )

        if anchor and not is_forecast:
            residuals.append(abs(circular_diff(anchor.midpoint_hour, state.smoothed_phase)))

    tier_counts = {"A": 0, "B": 0, "C": 0}
    for anchor in anchors:
        tier_counts[anchor.tier] += 1

    logger.debug(
        "Circular filter segment days %d-%d: %d anchors, %d gated",
        first_day,
        last_day,
        len(anchors),
        fwd.gated_count,
    )

    return SegmentResult(
        days=days,
        first_day=first_day,
        last_day=last_day,
        residuals=residuals,
        tier_counts=tier_counts,
        gated_count=fwd.gated_count,
        states=states,
    )

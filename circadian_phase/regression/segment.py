"""
Per-segment regression pipeline.

anchors -> unwrap -> outlier rejection -> sliding-window fit per day ->
post-hoc smoothing.
"""

import logging
import math
from datetime import datetime

from ..circadian_math import confidence_label, day_number, day_to_date_str, normalize_hour
from ..types import Anchor, AnchorPoint, CircadianDay, SegmentResult, SleepRecord
from .anchors import build_anchors, compute_median_spacing
from .fitting import (
    evaluate_window_expanding,
    expected_points,
    fallback_slope,
    fit_confidence,
    regularize_slope,
    segment_wide_fit,
)
from .smoothing import Trajectory, smooth_trajectory
from .unwrap import unwrap_anchors_from_seed

logger = logging.getLogger(__name__)

OUTLIER_THRESHOLD_HOURS = 8.0
MAX_OUTLIER_FRACTION = 0.15  # Larger outlier sets are left alone
FORECAST_DECAY = 0.1  # Per day past the last data day


def reject_outliers(anchors: list[Anchor]) -> list[Anchor]:
    """
    Drop anchors more than 8h off the segment-wide trend and re-unwrap.

    Nothing is dropped when no anchor or 15% or more of the anchors are off
    trend (a large share points at a bad fit rather than bad nights).
    """
    fit = segment_wide_fit(anchors)
    kept = [a for a in anchors if abs(a.midpoint_hour - fit.value_at(a.day_number)) <= OUTLIER_THRESHOLD_HOURS]
    removed = len(anchors) - len(kept)

    if removed == 0 or removed >= len(anchors) * MAX_OUTLIER_FRACTION:
        return anchors

    logger.debug("Rejected %d outlier anchors of %d", removed, len(anchors))
    return unwrap_anchors_from_seed(kept)


def count_tiers(anchors: list[Anchor]) -> dict[str, int]:
    counts = {"A": 0, "B": 0, "C": 0}
    for anchor in anchors:
        counts[anchor.tier] += 1
    return counts


def analyze_segment(records: list[SleepRecord], forecast_days: int, epoch: datetime) -> SegmentResult | None:
    """
    Estimate one segment's nightly windows with the sliding-window regression.

    Args:
        records: Records of a single segment
        forecast_days: Days to project past the last data day
        epoch: Analysis epoch shared by all segments

    Returns:
        SegmentResult, or None when fewer than two anchors survive weighting
    """
    if not records:
        return None

    anchors = build_anchors(records, epoch)
    if len(anchors) < 2:
        return None

    anchors = reject_outliers(unwrap_anchors_from_seed(anchors))
    segment_fit = segment_wide_fit(anchors)

    first_day = min(day_number(r.date_of_sleep, epoch) for r in records)
    last_day = max(anchors[-1].day_number, max(day_number(r.date_of_sleep, epoch) for r in records))
    data_days = last_day - first_day
    total_days = data_days + forecast_days

    anchor_by_day = {a.day_number: a for a in anchors}
    median_spacing = compute_median_spacing(anchors)
    expected = expected_points(median_spacing)

    edge_result = evaluate_window_expanding(anchors, last_day)
    edge_confidence = fit_confidence(edge_result, expected)

    traj = Trajectory(
        anchors=anchors,
        days=[],
        predicted_mid=[],
        confidence=[],
        slope_confidence=[],
        half_duration=[],
        is_forecast=[],
        first_day=first_day,
        data_days=data_days,
        edge_result=edge_result,
        median_spacing=median_spacing,
        segment_fit=segment_fit,
    )
    residuals: list[float] = []

    for local_day in range(total_days + 1):
        day = first_day + local_day
        is_forecast = local_day > data_days

        result = edge_result if is_forecast else evaluate_window_expanding(anchors, day)
        slope, slope_conf = regularize_slope(result, fallback_slope(anchors, day, segment_fit), expected)
        drift = max(0.0, slope)

        predicted = result.value_at(result.weighted_mean_x) + drift * (day - result.weighted_mean_x)
        half_duration = result.avg_duration / 2

        if is_forecast:
            confidence = edge_confidence * math.exp(-FORECAST_DECAY * (local_day - data_days))
        else:
            confidence = fit_confidence(result, expected)

        anchor = anchor_by_day.get(day)
        mid = normalize_hour(predicted)
        traj.days.append(
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
        traj.predicted_mid.append(predicted)
        traj.confidence.append(confidence)
        traj.slope_confidence.append(slope_conf)
        traj.half_duration.append(half_duration)
        traj.is_forecast.append(is_forecast)

        if anchor and not is_forecast:
            residuals.append(abs(anchor.midpoint_hour - predicted))

    smooth_trajectory(traj)

    logger.debug(
        "Regression segment days %d-%d: %d anchors, %d forecast days", first_day, last_day, len(anchors), forecast_days
    )

    return SegmentResult(
        days=traj.days,
        first_day=first_day,
        last_day=last_day,
        residuals=residuals,
        anchors=[
            AnchorPoint(
                day_number=a.day_number,
                midpoint_hour=a.midpoint_hour,
                weight=a.weight,
                date=a.date.isoformat(),
            )
            for a in anchors
        ],
        tier_counts=count_tiers(anchors),
    )

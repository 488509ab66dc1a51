"""Per-segment Kalman pipeline: observations -> forward filter -> RTS -> days."""

import logging
import math
from datetime import datetime

from ..circadian_math import clamp, confidence_label, day_number, day_to_date_str, gaussian, normalize_hour
from ..types import CircadianDay, SegmentResult, SleepRecord
from .filter import DEFAULT_KALMAN_CONFIG, DRIFT_MAX, DRIFT_MIN, KalmanConfig, run_forward_pass
from .observations import Observation, extract_observations
from .smoother import rts_smooth

logger = logging.getLogger(__name__)

DURATION_SIGMA = 3  # Days
DURATION_HALF_WINDOW = 4  # Days
DEFAULT_DURATION_HOURS = 8.0
FORECAST_DECAY = 0.1  # Per day past the last data day


def covariance_to_confidence(phase_variance: float) -> float:
    """1 / (1 + phase std): std 0 -> 1.0, std 1h -> 0.5."""
    return 1 / (1 + math.sqrt(max(0.0, phase_variance)))


def local_duration(observations: dict[int, Observation], day: int, fallback: float) -> float:
    """Gaussian-weighted mean duration of observations within 4 days."""
    w_sum = 0.0
    dur_sum = 0.0
    for offset in range(-DURATION_HALF_WINDOW, DURATION_HALF_WINDOW + 1):
        obs = observations.get(day + offset)
        if obs is not None:
            w = gaussian(offset, DURATION_SIGMA)
            w_sum += w
            dur_sum += w * obs.record.duration_hours
    return dur_sum / w_sum if w_sum > 0 else fallback


def analyze_segment(
    records: list[SleepRecord],
    forecast_days: int,
    epoch: datetime,
    config: KalmanConfig = DEFAULT_KALMAN_CONFIG,
) -> SegmentResult | None:
    """
    Estimate one segment's nightly windows with the Kalman filter and RTS smoother.

    Returns:
        SegmentResult, or None when no record qualifies as an observation
    """
    if not records:
        return None

    observations = extract_observations(records, epoch, config.r_base)
    if not observations:
        return None

    first_day = min(day_number(r.date_of_sleep, epoch) for r in records)
    last_day = max(day_number(r.date_of_sleep, epoch) for r in records)
    data_days = last_day - first_day
    total_days = data_days + forecast_days

    fwd = run_forward_pass(observations, first_day, data_days, total_days, config)
    states, covs = rts_smooth(fwd)

    mean_duration = sum(o.record.duration_hours for o in observations.values()) / len(observations)

    days: list[CircadianDay] = []
    for local_day in range(total_days + 1):
        day = first_day + local_day
        is_forecast = local_day > data_days

        drift = clamp(states[local_day].drift, DRIFT_MIN, DRIFT_MAX)
        mid = normalize_hour(states[local_day].phase)
        half_duration = local_duration(observations, day, mean_duration or DEFAULT_DURATION_HOURS) / 2

        confidence = covariance_to_confidence(covs[local_day].p00)
        if is_forecast:
            confidence *= math.exp(-FORECAST_DECAY * (local_day - data_days))

        obs = observations.get(day)
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
                anchor_sleep=obs.record if obs else None,
            )
        )

    logger.debug(
        "Kalman segment days %d-%d: %d observations, %d gated",
        first_day,
        last_day,
        fwd.observation_count,
        fwd.gated_count,
    )

    return SegmentResult(
        days=days,
        first_day=first_day,
        last_day=last_day,
        gated_count=fwd.gated_count,
        observation_count=fwd.observation_count,
        mean_innovation=fwd.mean_innovation,
    )

"""
Phase coherence periodogram (windowed weighted Rayleigh test).

For each trial period the anchor times are folded modulo the period and
placed on the unit circle. The squared mean resultant length R² is near 1
when the folded phases line up and near 0 when they spread evenly, so the
strongest period is a tau estimate that does not depend on any estimator.

Tau is not constant over months, so long logs are split into overlapping
120-day windows where it is roughly stable and R² is averaged across them.
"""

import logging
import math
from dataclasses import dataclass, field

from .circadian_math import analysis_epoch, day_number, midpoint_hour
from .types import SleepRecord

logger = logging.getLogger(__name__)

MIN_DURATION_HOURS = 4.0
FULL_WEIGHT_DURATION_HOURS = 7.0

MIN_ANCHORS = 3
WINDOW_DAYS = 120
WINDOW_STEP_DAYS = 30
MIN_WINDOW_ANCHORS = 8
SINGLE_WINDOW_SPAN_DAYS = WINDOW_DAYS * 1.5

SMOOTHING_SIGMA = 3  # Trial periods
SIGNIFICANCE_P = 0.01

# Display range trimming (hours)
DISPLAY_PADDING = 0.25
UNSIGNIFICANT_HALF_WIDTH = 1.0
MIN_DISPLAY_WIDTH = 2.0


@dataclass(frozen=True)
class PeriodogramAnchor:
    day_number: int  # Days from the first record's date
    midpoint_hour: float  # Hours from midnight of the record's date
    weight: float


@dataclass(frozen=True)
class PeriodogramPoint:
    period: float  # Trial period in hours
    power: float  # R²; 0 = uniform, 1 = perfectly concentrated


@dataclass
class PeriodogramResult:
    points: list[PeriodogramPoint] = field(default_factory=list)
    trimmed_points: list[PeriodogramPoint] = field(default_factory=list)
    peak_period: float = 24.0
    peak_power: float = 0.0
    significance_threshold: float = 0.0
    power_24h: float = 0.0


@dataclass
class _Window:
    indices: list[int]
    total_weight: float


def build_periodogram_anchors(records: list[SleepRecord]) -> list[PeriodogramAnchor]:
    """
    One anchor per main sleep of at least four hours, in start-time order.

    weight = sleep score * min(1, duration / 7)
    """
    if not records:
        return []

    epoch = analysis_epoch(records)
    anchors: list[PeriodogramAnchor] = []

    for record in sorted(records, key=lambda r: r.start_time):
        if not record.is_main_sleep or record.duration_hours < MIN_DURATION_HOURS:
            continue
        day = day_number(record.date_of_sleep, epoch)
        anchors.append(
            PeriodogramAnchor(
                day_number=day,
                midpoint_hour=midpoint_hour(record, epoch) - 24 * day,
                weight=record.sleep_score * min(1.0, record.duration_hours / FULL_WEIGHT_DURATION_HOURS),
            )
        )

    return anchors


def gaussian_smooth(values: list[float], sigma: float) -> list[float]:
    """Gaussian kernel convolution truncated at 3 sigma, renormalized at the edges."""
    radius = math.ceil(sigma * 3)
    smoothed: list[float] = []

    for i in range(len(values)):
        total = w_sum = 0.0
        for j in range(max(0, i - radius), min(len(values) - 1, i + radius) + 1):
            w = math.exp(-0.5 * ((j - i) / sigma) ** 2)
            total += w * values[j]
            w_sum += w
        smoothed.append(total / w_sum)

    return smoothed


def _build_windows(anchors: list[PeriodogramAnchor]) -> list[_Window]:
    weights = [a.weight for a in anchors]
    first_day = anchors[0].day_number
    last_day = anchors[-1].day_number

    if last_day - first_day <= SINGLE_WINDOW_SPAN_DAYS:
        return [_Window(indices=list(range(len(anchors))), total_weight=sum(weights))]

    half = WINDOW_DAYS / 2
    windows: list[_Window] = []
    center = first_day + half
    while center <= last_day - half + WINDOW_STEP_DAYS:
        indices = [i for i, a in enumerate(anchors) if abs(a.day_number - center) <= half]
        if len(indices) >= MIN_WINDOW_ANCHORS:
            windows.append(_Window(indices=indices, total_weight=sum(weights[i] for i in indices)))
        center += WINDOW_STEP_DAYS

    return windows


def _effective_size(window: _Window, weights: list[float]) -> float:
    """(sum w)² / sum w²"""
    total = sum(weights[i] for i in window.indices)
    total_sq = sum(weights[i] ** 2 for i in window.indices)
    return total * total / total_sq


def _display_range(
    points: list[PeriodogramPoint], threshold: float, peak_period: float, min_period: float, max_period: float
) -> tuple[float, float]:
    significant = [p.period for p in points if p.power > threshold]
    if significant:
        low, high = min(significant) - DISPLAY_PADDING, max(significant) + DISPLAY_PADDING
    else:
        low, high = peak_period - UNSIGNIFICANT_HALF_WIDTH, peak_period + UNSIGNIFICANT_HALF_WIDTH

    # 24h is always shown for reference
    low = min(low, 24 - DISPLAY_PADDING)
    high = max(high, 24 + DISPLAY_PADDING)

    if high - low < MIN_DISPLAY_WIDTH:
        center = (low + high) / 2
        low, high = center - MIN_DISPLAY_WIDTH / 2, center + MIN_DISPLAY_WIDTH / 2

    return max(min_period, low), min(max_period, high)


def compute_periodogram(
    anchors: list[PeriodogramAnchor],
    min_period: float = 23.0,
    max_period: float = 26.0,
    step: float = 0.01,
) -> PeriodogramResult:
    """
    Windowed phase coherence over trial periods `min_period`..`max_period`.

    Args:
        anchors: Anchors in day order
        min_period: Shortest trial period (hours)
        max_period: Longest trial period (hours)
        step: Trial period spacing (hours)

    Returns:
        PeriodogramResult with the smoothed power of every trial period, the
        peak, the p < 0.01 Rayleigh threshold on the R² scale, the power at
        24h and `trimmed_points`: the points around the significant peaks
        (or around the peak when none is significant), always including 24h.
        Fewer than three anchors, or no window with enough anchors, gives an
        empty result.
    """
    if len(anchors) < MIN_ANCHORS:
        return PeriodogramResult()

    windows = _build_windows(anchors)
    if not windows:
        return PeriodogramResult()

    times = [a.day_number * 24 + a.midpoint_hour for a in anchors]
    weights = [a.weight for a in anchors]

    sizes = sorted(_effective_size(w, weights) for w in windows)
    median_size = sizes[len(sizes) // 2]

    trial_count = round((max_period - min_period) / step) + 1
    periods = [min_period + k * step for k in range(trial_count)]

    raw_power: list[float] = []
    for period in periods:
        power_sum = 0.0
        for window in windows:
            sum_cos = sum_sin = 0.0
            for i in window.indices:
                theta = 2 * math.pi * (times[i] % period) / period
                sum_cos += weights[i] * math.cos(theta)
                sum_sin += weights[i] * math.sin(theta)
            c = sum_cos / window.total_weight
            s = sum_sin / window.total_weight
            power_sum += c * c + s * s
        raw_power.append(power_sum / len(windows))

    result = PeriodogramResult(significance_threshold=-math.log(SIGNIFICANCE_P) / median_size)

    for period, power in zip(periods, gaussian_smooth(raw_power, SMOOTHING_SIGMA)):
        result.points.append(PeriodogramPoint(period=period, power=power))
        if power > result.peak_power:
            result.peak_power = power
            result.peak_period = period
        if abs(period - 24.0) < step / 2:
            result.power_24h = power

    low, high = _display_range(result.points, result.significance_threshold, result.peak_period, min_period, max_period)
    result.trimmed_points = [p for p in result.points if low <= p.period <= high]

    logger.debug(
        "Periodogram over %d anchors in %d windows: peak %.2fh (R² %.3f, threshold %.3f)",
        len(anchors),
        len(windows),
        result.peak_period,
        result.peak_power,
        result.significance_threshold,
    )

    return result

"""
Robust windowed regression over anchors.

The per-day trajectory is a Gaussian-weighted local line fit. Ordinary
weighted least squares is refined with iteratively reweighted least squares
(Tukey biweight) so that single mislogged nights lose their influence.
"""

from dataclasses import dataclass

from ..circadian_math import Point, gaussian, upper_median, weighted_linear_regression
from ..types import Anchor

WINDOW_HALF = 21  # Days on each side of the evaluated day
MAX_WINDOW_HALF = 60  # Widest window tried when data is sparse
MIN_ANCHORS_PER_WINDOW = 6
GAUSSIAN_SIGMA = 14  # Days
REGULARIZATION_HALF = 60  # Regional fit used as the fallback slope

# IRLS
TUKEY_TUNING_CONSTANT = 4.685
MAX_IRLS_ITERATIONS = 5
MAD_TO_SIGMA = 0.6745
MIN_ROBUST_SCALE = 0.5  # Hours

# Reported when a window cannot be fit
NO_FIT_RESIDUAL_MAD = 999.0
DEFAULT_DURATION_HOURS = 8.0


@dataclass
class WindowResult:
    """Local fit around one day."""

    slope: float  # Hours/day
    intercept: float
    points_used: int
    avg_quality: float  # Mean anchor weight inside the window
    residual_mad: float  # Median absolute residual (hours)
    avg_duration: float  # Weight-averaged sleep duration (hours)
    weighted_mean_x: float  # Kernel-weighted mean day number

    def value_at(self, x: float) -> float:
        return self.slope * x + self.intercept


def robust_weighted_regression(
    points: list[Point],
    max_iter: int = MAX_IRLS_ITERATIONS,
    tuning_constant: float = TUKEY_TUNING_CONSTANT,
) -> tuple[float, float]:
    """
    Weighted line fit with Tukey biweight IRLS.

    Args:
        points: (x, y, w) points
        max_iter: Maximum reweighting passes
        tuning_constant: Biweight cutoff in units of the robust scale

    Returns:
        (slope, intercept). Fewer than two points gives slope 0 and the
        first point's y (or 0) as intercept.
    """
    if len(points) < 2:
        return 0.0, (points[0][1] if points else 0.0)

    slope, intercept = weighted_linear_regression(points)

    for _ in range(max_iter):
        residuals = [y - (slope * x + intercept) for x, y, _w in points]

        mad = upper_median([abs(r) for r in residuals]) or 1.0
        scale = max(mad / MAD_TO_SIGMA, MIN_ROBUST_SCALE)

        reweighted: list[Point] = []
        for (x, y, w), r in zip(points, residuals):
            u = r / (tuning_constant * scale)
            biweight = (1 - u * u) ** 2 if abs(u) <= 1 else 0.0
            reweighted.append((x, y, w * biweight))

        if sum(1 for _x, _y, w in reweighted if w > 1e-6) < 2:
            break

        new_slope, new_intercept = weighted_linear_regression(reweighted)
        if abs(new_slope - slope) < 1e-6:
            break

        slope, intercept = new_slope, new_intercept

    return slope, intercept


def evaluate_window(
    anchors: list[Anchor],
    center_day: float,
    half_window: float,
    sigma: float = GAUSSIAN_SIGMA,
) -> WindowResult:
    """
    Fit the anchors within `half_window` days of `center_day`.

    Each anchor's weight is multiplied by a Gaussian of its distance from
    the center; anchors whose combined weight is negligible are ignored.
    """
    points: list[Point] = []
    quality_sum = 0.0
    duration_sum = 0.0
    duration_weight = 0.0

    for anchor in anchors:
        dist = abs(anchor.day_number - center_day)
        if dist > half_window:
            continue

        w = anchor.weight * gaussian(dist, sigma)
        if w < 1e-6:
            continue

        points.append((anchor.day_number, anchor.midpoint_hour, w))
        quality_sum += anchor.weight
        duration_sum += anchor.record.duration_hours * anchor.weight
        duration_weight += anchor.weight

    w_total = sum(w for _x, _y, w in points)
    weighted_mean_x = sum(w * x for x, _y, w in points) / w_total if w_total > 0 else center_day

    if len(points) < 2:
        return WindowResult(
            slope=0.0,
            intercept=0.0,
            points_used=len(points),
            avg_quality=0.0,
            residual_mad=NO_FIT_RESIDUAL_MAD,
            avg_duration=DEFAULT_DURATION_HOURS,
            weighted_mean_x=weighted_mean_x,
        )

    slope, intercept = robust_weighted_regression(points)
    residual_mad = upper_median([abs(y - (slope * x + intercept)) for x, y, _w in points])

    return WindowResult(
        slope=slope,
        intercept=intercept,
        points_used=len(points),
        avg_quality=quality_sum / len(points),
        residual_mad=residual_mad,
        avg_duration=duration_sum / duration_weight if duration_weight > 0 else DEFAULT_DURATION_HOURS,
        weighted_mean_x=weighted_mean_x,
    )


def evaluate_window_expanding(anchors: list[Anchor], center_day: float) -> WindowResult:
    """Fit at 21 days, widening to 32 and then 60 days while too few anchors fall inside."""
    result = evaluate_window(anchors, center_day, WINDOW_HALF)
    if result.points_used < MIN_ANCHORS_PER_WINDOW:
        result = evaluate_window(anchors, center_day, round(WINDOW_HALF * 1.5))
        if result.points_used < MIN_ANCHORS_PER_WINDOW:
            result = evaluate_window(anchors, center_day, MAX_WINDOW_HALF)
    return result


def segment_wide_fit(anchors: list[Anchor]) -> WindowResult:
    """Fit centred on the middle anchor with a window wide enough to cover the segment."""
    center = anchors[len(anchors) // 2].day_number
    return evaluate_window(anchors, center, anchors[-1].day_number)


# =============================================================================
# Confidence and slope regularization
# =============================================================================

# Accepted local drift range (hours/day); outside it the fallback slope is used
SLOPE_MIN = -0.5
SLOPE_MAX = 2.0

REGIME_CHANGE_THRESHOLD = 0.3  # Hours/day between local and regional slope
REGIME_CHANGE_MAX_MAD = 2.0  # Hours
REGIME_CHANGE_MAX_BOOST = 0.4

DEFAULT_EXPECTED_POINTS = 10


def expected_points(median_spacing: float) -> float:
    """Anchors a full 21-day window should hold at the segment's typical spacing."""
    return (WINDOW_HALF * 2) / median_spacing if median_spacing > 0 else DEFAULT_EXPECTED_POINTS


def fit_confidence(result: WindowResult, expected: float) -> float:
    """0.4 * density + 0.3 * mean quality + 0.3 * residual tightness."""
    density = min(1.0, result.points_used / expected)
    spread = 1 - min(1.0, result.residual_mad / 3)
    return 0.4 * density + 0.3 * result.avg_quality + 0.3 * spread


def fallback_slope(anchors: list[Anchor], day: float, segment_fit: WindowResult) -> float:
    """Regional (±60 day) slope when it is well supported and plausible, else the segment slope."""
    regional = evaluate_window(anchors, day, REGULARIZATION_HALF)
    if regional.points_used >= MIN_ANCHORS_PER_WINDOW and SLOPE_MIN <= regional.slope <= SLOPE_MAX:
        return regional.slope
    return segment_fit.slope


def regularize_slope(result: WindowResult, fallback: float, expected: float) -> tuple[float, float]:
    """
    Blend a local slope with its fallback by how much the local fit can be trusted.

    A local slope that departs from the fallback by more than 0.3 h/day while
    being well supported (6+ anchors, MAD under 2h) is treated as a real
    regime change and its trust is boosted by up to 0.4.

    Returns:
        (slope, slope_confidence). The slope is not floored at zero here.
    """
    slope_conf = min(1.0, result.points_used / expected) * (1 - min(1.0, result.residual_mad / 4))

    slope_diff = abs(result.slope - fallback)
    if (
        slope_diff > REGIME_CHANGE_THRESHOLD
        and result.points_used >= MIN_ANCHORS_PER_WINDOW
        and result.residual_mad < REGIME_CHANGE_MAX_MAD
    ):
        boost = min(REGIME_CHANGE_MAX_BOOST, (slope_diff - REGIME_CHANGE_THRESHOLD) * 0.5)
        slope_conf = min(1.0, slope_conf + boost)

    slope = slope_conf * result.slope + (1 - slope_conf) * fallback
    if slope > SLOPE_MAX or slope < SLOPE_MIN:
        slope = fallback

    return slope, slope_conf

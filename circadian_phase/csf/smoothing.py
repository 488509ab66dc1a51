"""
Output-stage corrections of the smoothed circular filter states.

The backward smoother leaves the last day unsmoothed, so the final days of a
segment lag behind recent anchors and forecast days inherit that lag. The
edge correction pulls those days toward an anchor-based fit, and forecast
days are re-projected from the corrected last data day.
"""

from dataclasses import replace

from ..circadian_math import Point, circular_diff, gaussian, normalize_hour, unwrap_near, weighted_linear_regression
from ..types import Anchor, SmoothedState

EDGE_WINDOW = 10  # Days before the last data day that get corrected
EDGE_FIT_RADIUS = 30  # Days of anchors used for the edge fit
ANCHOR_HALF_WINDOW = 15  # Days
ANCHOR_SIGMA = 7  # Days
MIN_EDGE_ANCHORS = 3
MIN_RESIDUAL_WEIGHT = 0.5
DEGENERATE_DENOMINATOR = 1e-10

OUTPUT_SIGMA = 2  # Days
OUTPUT_HALF_WINDOW = 3  # Days


def _clock_hour_points(anchors: list[Anchor]) -> list[Point]:
    """(day number, clock hour, weight), clock hours unwrapped consecutively from the first anchor."""
    points: list[Point] = []
    prev: float | None = None
    for anchor in anchors:
        hour = normalize_hour(anchor.midpoint_hour)
        if prev is not None:
            hour = unwrap_near(hour, prev)
        points.append((anchor.day_number, hour, anchor.weight))
        prev = hour
    return points


def _is_degenerate(points: list[Point]) -> bool:
    sw = sum(w for _x, _y, w in points)
    sx = sum(w * x for x, _y, w in points)
    sxx = sum(w * x * x for x, _y, w in points)
    return abs(sw * sxx - sx * sx) < DEGENERATE_DENOMINATOR


def correct_edge(
    states: list[SmoothedState],
    anchors: list[Anchor],
    first_day: int,
    last_data_index: int,
) -> list[SmoothedState]:
    """
    Correct the segment edge against recent anchors.

    Fits a weighted line to the clock hours of the anchors in the 30 days up
    to the last data day. Each of the last 10 data days is moved toward that
    line plus a Gaussian-weighted mean anchor residual, with a quadratic ramp
    from no correction at the start of the window to full correction on the
    last data day. Days after the last data day are then placed on the fit's
    slope from the corrected last data day.

    Args:
        states: Smoothed states indexed by local day (0 = `first_day`)
        anchors: The segment's anchors
        first_day: Day number of local day 0
        last_data_index: Local index of the last data day

    Returns:
        Corrected copy of `states` (unchanged when fewer than three recent
        anchors exist or the segment is shorter than the window)
    """
    if len(anchors) < MIN_EDGE_ANCHORS or last_data_index < EDGE_WINDOW:
        return states

    last_data_day = first_day + last_data_index
    recent = [a for a in anchors if last_data_day - EDGE_FIT_RADIUS <= a.day_number <= last_data_day]
    if len(recent) < MIN_EDGE_ANCHORS:
        return states

    points = _clock_hour_points(recent)
    if _is_degenerate(points):
        return states
    slope, intercept = weighted_linear_regression(points)

    corrected = list(states)
    edge_start = last_data_index - EDGE_WINDOW
    for i in range(edge_start, min(last_data_index, len(states) - 1) + 1):
        day = first_day + i

        w_sum = 0.0
        w_residual_sum = 0.0
        for x, hour, weight in points:
            dist = abs(x - day)
            if dist > ANCHOR_HALF_WINDOW:
                continue
            w = gaussian(dist, ANCHOR_SIGMA) * weight
            w_residual_sum += w * (hour - (slope * x + intercept))
            w_sum += w

        if w_sum < MIN_RESIDUAL_WEIGHT:
            continue

        target = slope * day + intercept + w_residual_sum / w_sum
        ramp = ((i - edge_start) / EDGE_WINDOW) ** 2
        correction = circular_diff(target, corrected[i].smoothed_phase)
        corrected[i] = replace(corrected[i], smoothed_phase=corrected[i].smoothed_phase + ramp * correction)

    last_hour = normalize_hour(corrected[last_data_index].smoothed_phase)
    for i in range(last_data_index + 1, len(states)):
        target = last_hour + slope * (i - last_data_index)
        correction = circular_diff(target, corrected[i].smoothed_phase)
        corrected[i] = replace(
            corrected[i],
            smoothed_phase=corrected[i].smoothed_phase + correction,
            smoothed_tau=24 + slope,
        )

    return corrected


def smooth_output_phase(
    states: list[SmoothedState], sigma_days: float = OUTPUT_SIGMA, half_window: int = OUTPUT_HALF_WINDOW
) -> list[SmoothedState]:
    """Gaussian moving average of smoothed phase and tau (fewer than three states are returned as is)."""
    if len(states) < 3:
        return states

    result: list[SmoothedState] = []
    for i in range(len(states)):
        phase_sum = tau_sum = w_sum = 0.0
        for j in range(max(0, i - half_window), min(len(states) - 1, i + half_window) + 1):
            w = gaussian(abs(j - i), sigma_days)
            phase_sum += w * states[j].smoothed_phase
            tau_sum += w * states[j].smoothed_tau
            w_sum += w
        result.append(replace(states[i], smoothed_phase=phase_sum / w_sum, smoothed_tau=tau_sum / w_sum))

    return result

"""
Post-hoc smoothing of the regression trajectory.

The sliding-window fit is evaluated independently for every day, so sparse
stretches can wobble and neighboring windows can land on different 24h
branches. These passes clean the overlay up without touching the reported
drift or confidence:

1. Pairwise-unwrap the predicted midpoints of consecutive data days.
2. Where the local slope is untrustworthy, pull the trajectory toward a
   Gaussian-weighted residual of nearby anchors around the segment trend.
3. Smooth out day-to-day jumps larger than 2h (up to three passes).
4. Bridge short runs that drift backward against the expected direction.
5. Re-anchor forecast days on the last smoothed data day.
"""

from dataclasses import dataclass

from ..circadian_math import circular_distance, gaussian, normalize_hour, unwrap_near
from ..types import Anchor, CircadianDay
from .fitting import WindowResult, expected_points, fallback_slope, segment_wide_fit

SMOOTH_HALF = 7  # Days on each side used for residual smoothing
SMOOTH_SIGMA = 3  # Days
SMOOTH_MARGIN = 5  # Halo (days) around flagged days
JUMP_THRESHOLD_HOURS = 2.0
MAX_JUMP_PASSES = 3
MIN_ANCHOR_KERNEL_WEIGHT = 0.5
LOW_SLOPE_CONFIDENCE = 0.4

# Backward-drift bridging
BACKWARD_DEVIATION_HOURS = 0.5
BACKWARD_MIN_RUN = 3  # Days
MAX_BRIDGE_RATE = 3.0  # Hours/day
BRIDGE_MIN_CONFIDENCE = 0.3


@dataclass
class Trajectory:
    """
    Per-day working values of one segment, indexed by local day (0 = first day).

    `days` and `predicted_mid` are updated in place by `smooth_trajectory`.
    """

    anchors: list[Anchor]
    days: list[CircadianDay]
    predicted_mid: list[float]  # Unwrapped hours since the epoch
    confidence: list[float]
    slope_confidence: list[float]
    half_duration: list[float]  # Hours
    is_forecast: list[bool]
    first_day: int  # Day number of local day 0
    data_days: int  # Index of the last data day
    edge_result: WindowResult  # Expanding fit at the last data day
    median_spacing: float
    segment_fit: WindowResult  # Segment-wide fit used as fallback slope

    @property
    def total_days(self) -> int:
        return len(self.days) - 1


def _set_window(day: CircadianDay, mid: float, half_duration: float) -> None:
    normalized = normalize_hour(mid)
    day.night_start_hour = normalized - half_duration
    day.night_end_hour = normalized + half_duration


def _unwrap_data_days(traj: Trajectory) -> None:
    mids = traj.predicted_mid
    for i in range(1, len(mids)):
        if traj.is_forecast[i] or traj.is_forecast[i - 1]:
            continue
        mids[i] = unwrap_near(mids[i], mids[i - 1])


def _distance_to_flagged(flagged: list[bool]) -> list[float]:
    """Days from each index to the nearest flagged index (inf if none)."""
    n = len(flagged)
    dist = [0.0 if f else float("inf") for f in flagged]
    for i in range(1, n):
        dist[i] = min(dist[i], dist[i - 1] + 1)
    for i in range(n - 2, -1, -1):
        dist[i] = min(dist[i], dist[i + 1] + 1)
    return dist


def smooth_low_confidence(traj: Trajectory, trend: WindowResult) -> None:
    """
    Pull days with an unreliable local slope toward nearby anchors.

    Flagged days (slope confidence under 0.4, plus a 5-day halo) get the
    trend value plus a Gaussian-weighted mean anchor residual, blended with
    the regression prediction by distance from the low-confidence core.
    """
    core = [not f and sc < LOW_SLOPE_CONFIDENCE for f, sc in zip(traj.is_forecast, traj.slope_confidence)]
    dist_to_core = _distance_to_flagged(core)

    for i, day in enumerate(traj.days):
        if traj.is_forecast[i] or dist_to_core[i] > SMOOTH_MARGIN:
            continue

        day_num = traj.first_day + i
        w_sum = 0.0
        w_residual_sum = 0.0
        for anchor in traj.anchors:
            dist = abs(anchor.day_number - day_num)
            if dist > SMOOTH_HALF:
                continue
            w = gaussian(dist, SMOOTH_SIGMA) * anchor.weight
            w_residual_sum += w * (anchor.midpoint_hour - trend.value_at(anchor.day_number))
            w_sum += w

        if w_sum <= MIN_ANCHOR_KERNEL_WEIGHT:
            continue

        anchor_mid = trend.value_at(day_num) + w_residual_sum / w_sum
        anchor_weight = max(0.0, 1 - dist_to_core[i] / SMOOTH_MARGIN)
        smoothed = anchor_weight * anchor_mid + (1 - anchor_weight) * traj.predicted_mid[i]
        traj.predicted_mid[i] = smoothed
        _set_window(day, smoothed, traj.half_duration[i])


def _find_jumps(traj: Trajectory) -> list[bool]:
    norm = [normalize_hour(m) for m in traj.predicted_mid]
    last = traj.total_days
    flagged = [False] * len(norm)

    for i in range(len(norm)):
        if traj.is_forecast[i]:
            continue
        max_jump = 0.0
        if i > 0 and not traj.is_forecast[i - 1]:
            max_jump = max(max_jump, circular_distance(norm[i], norm[i - 1]))
        if i < last and not traj.is_forecast[i + 1]:
            max_jump = max(max_jump, circular_distance(norm[i], norm[i + 1]))
        flagged[i] = max_jump > JUMP_THRESHOLD_HOURS

    return flagged


def smooth_jumps(traj: Trajectory, trend: WindowResult) -> int:
    """
    Smooth day-to-day jumps over 2h.

    Each pass flags jumping data days plus five days either side and replaces
    them with the trend plus a confidence- and Gaussian-weighted mean residual
    of surrounding data days.

    Returns:
        Number of passes that found jumps
    """
    last = traj.total_days
    passes = 0

    for _ in range(MAX_JUMP_PASSES):
        _unwrap_data_days(traj)

        jumps = _find_jumps(traj)
        if not any(jumps):
            break
        passes += 1

        flagged = list(jumps)
        for i, jumped in enumerate(jumps):
            if not jumped:
                continue
            for j in range(max(0, i - SMOOTH_MARGIN), min(last, i + SMOOTH_MARGIN) + 1):
                if not traj.is_forecast[j]:
                    flagged[j] = True

        for i, day in enumerate(traj.days):
            if not flagged[i]:
                continue

            w_sum = 0.0
            w_residual_sum = 0.0
            for j in range(max(0, i - SMOOTH_HALF), min(last, i + SMOOTH_HALF) + 1):
                if traj.is_forecast[j]:
                    continue
                w = gaussian(abs(i - j), SMOOTH_SIGMA) * traj.confidence[j]
                w_residual_sum += w * (traj.predicted_mid[j] - trend.value_at(traj.first_day + j))
                w_sum += w

            if w_sum > 0:
                smoothed = trend.value_at(traj.first_day + i) + w_residual_sum / w_sum
                traj.predicted_mid[i] = smoothed
                _set_window(day, smoothed, traj.half_duration[i])

    return passes


def _wrapped_delta(a: float, b: float) -> float:
    """b - a wrapped into (-12, 12]."""
    delta = b - a
    if delta > 12:
        delta -= 24
    if delta < -12:
        delta += 24
    return delta


def bridge_backward_runs(traj: Trajectory) -> None:
    """
    Replace runs that move backward against the expected drift.

    A day moves backward when its midpoint advances by more than 0.5h less
    than the (non-negative) expected drift, with both days at confidence
    0.3 or more. Runs of three or more such days are linearly interpolated
    between the day before and the day after the run, provided that bridge
    moves forward at no more than 3h/day.
    """
    days = traj.days
    norm = [normalize_hour(d.midpoint_hour) for d in days]

    backward = [False] * len(days)
    for i in range(1, len(days)):
        if days[i].is_forecast or days[i - 1].is_forecast:
            continue
        if min(days[i - 1].confidence_score, days[i].confidence_score) < BRIDGE_MIN_CONFIDENCE:
            continue
        expected = max(0.0, (days[i - 1].local_drift + days[i].local_drift) / 2)
        backward[i] = _wrapped_delta(norm[i - 1], norm[i]) < expected - BACKWARD_DEVIATION_HOURS

    run_start = -1
    for i in range(len(days) + 1):
        is_back = i < len(days) and backward[i]
        if is_back and run_start < 0:
            run_start = i
        elif not is_back and run_start >= 0:
            entry, exit_ = run_start - 1, i
            if (
                i - run_start >= BACKWARD_MIN_RUN
                and entry >= 0
                and exit_ < len(days)
                and not days[exit_].is_forecast
            ):
                span = exit_ - entry
                forward = (norm[exit_] - norm[entry]) % 24
                if forward != 0 and forward / span <= MAX_BRIDGE_RATE:
                    for j in range(run_start, exit_):
                        if days[j].is_forecast:
                            continue
                        mid = norm[entry] + (j - entry) / span * forward
                        _set_window(days[j], mid, traj.half_duration[j])
            run_start = -1


def extend_forecast(traj: Trajectory) -> None:
    """Project forecast days forward from the last smoothed data day."""
    if traj.total_days <= traj.data_days:
        return

    edge = traj.edge_result
    last_mid = normalize_hour(traj.days[traj.data_days].midpoint_hour)

    expected = expected_points(traj.median_spacing)
    edge_slope_conf = min(1.0, edge.points_used / expected) * (1 - min(1.0, edge.residual_mad / 4))
    fallback = fallback_slope(traj.anchors, traj.first_day + traj.data_days, traj.segment_fit)
    edge_slope = edge_slope_conf * edge.slope + (1 - edge_slope_conf) * fallback

    for i in range(traj.data_days + 1, traj.total_days + 1):
        _set_window(traj.days[i], last_mid + edge_slope * (i - traj.data_days), traj.half_duration[i])


def smooth_trajectory(traj: Trajectory) -> None:
    """Run every smoothing pass over a segment's trajectory, in order."""
    _unwrap_data_days(traj)
    trend = segment_wide_fit(traj.anchors)

    smooth_low_confidence(traj, trend)
    smooth_jumps(traj, trend)
    bridge_backward_runs(traj)
    extend_forecast(traj)

"""
Phase unwrapping for regression anchors.

Anchor midpoints are only known modulo 24 hours. Unwrapping picks, for each
anchor, the branch (midpoint ± 24k) that is consistent with its neighbors so
the sequence can be fit with a straight line.

Scientific basis: a free-running rhythm drifts by well under 12h per day, so
the correct branch is the one nearest the locally expected phase.

Strategy:
1. Find the most internally consistent ~6-week window (the seed) and unwrap
   it pairwise.
2. Grow outward from the seed, resolving one anchor at a time against the
   anchors already resolved.
"""

from dataclasses import dataclass, replace
from typing import Iterator

from ..circadian_math import Point, gaussian, unwrap_near, upper_median, weighted_linear_regression
from ..types import Anchor
from .fitting import GAUSSIAN_SIGMA

SEED_HALF = 21  # Days on each side of a candidate seed center
MIN_SEED_ANCHORS = 4
SEED_CANDIDATES = 30  # Roughly how many seed centers are tried on long spans
EXPANSION_LOOKBACK_DAYS = 30

# Snap decision thresholds
CANDIDATES_AGREE_HOURS = 1.0
NEIGHBOR_MAX_DAYS = 7
NEIGHBOR_MAX_HOURS = 6.0

# Seed score weights
SCORE_MAD = 0.35
SCORE_DENSITY = 0.25
SCORE_WEIGHT = 0.25
SCORE_SLOPE = 0.15

# Plausible seed slopes (hours/day); penalty ramps in outside this range
SEED_SLOPE_MIN = -0.5
SEED_SLOPE_MAX = 3.0


@dataclass
class SeedRegion:
    """Index range of the seed window and its line fit."""

    start_idx: int
    end_idx: int
    slope: float
    intercept: float
    score: float = 0.0


def local_pairwise_unwrap(midpoints: list[float]) -> list[float]:
    """Unwrap each value to within 12h of its (already unwrapped) predecessor."""
    out = list(midpoints)
    for i in range(1, len(out)):
        out[i] = unwrap_near(out[i], out[i - 1])
    return out


def _slope_penalty(slope: float) -> float:
    if slope < SEED_SLOPE_MIN:
        return min(1.0, (SEED_SLOPE_MIN - slope) / 5)
    if slope > SEED_SLOPE_MAX:
        return min(1.0, (slope - SEED_SLOPE_MAX) / 5)
    return 0.0


def find_seed_region(anchors: list[Anchor]) -> SeedRegion:
    """
    Find the window whose anchors are most self-consistent.

    Spans shorter than two seed half-widths are fit as a whole. Otherwise
    candidate windows are scored on residual spread, anchor density, mean
    anchor weight and slope plausibility; the best one wins (earliest on ties).
    """
    first_day = anchors[0].day_number
    last_day = anchors[-1].day_number

    if last_day - first_day < SEED_HALF * 2:
        mids = local_pairwise_unwrap([a.midpoint_hour for a in anchors])
        slope, intercept = weighted_linear_regression(
            [(a.day_number, m, a.weight) for a, m in zip(anchors, mids)]
        )
        return SeedRegion(0, len(anchors) - 1, slope, intercept)

    step = max(1, (last_day - first_day - SEED_HALF * 2) // SEED_CANDIDATES)

    best: SeedRegion | None = None
    for center in range(first_day + SEED_HALF, last_day - SEED_HALF + 1, step):
        window_start = center - SEED_HALF
        window_end = center + SEED_HALF
        indices = [i for i, a in enumerate(anchors) if window_start <= a.day_number <= window_end]
        if len(indices) < MIN_SEED_ANCHORS:
            continue

        mids = local_pairwise_unwrap([anchors[i].midpoint_hour for i in indices])
        points: list[Point] = [(anchors[i].day_number, m, anchors[i].weight) for i, m in zip(indices, mids)]
        slope, intercept = weighted_linear_regression(points)

        mad = upper_median([abs(y - (slope * x + intercept)) for x, y, _w in points])
        window_days = (window_end - window_start) or 1
        density = min(1.0, len(indices) / (window_days / 2))
        avg_weight = sum(w for _x, _y, w in points) / len(points)

        score = (
            SCORE_MAD * (1 - min(1.0, mad / 6))
            + SCORE_DENSITY * density
            + SCORE_WEIGHT * avg_weight
            + SCORE_SLOPE * (1 - _slope_penalty(slope))
        )
        if best is None or score > best.score:
            best = SeedRegion(indices[0], indices[-1], slope, intercept, score)

    return best or SeedRegion(0, len(anchors) - 1, 0.0, 0.0)


def snap_to_neighbors(anchor: Anchor, resolved: list[Anchor]) -> float:
    """
    Choose the branch of `anchor`'s midpoint given already-resolved anchors.

    Two candidates are compared: the branch nearest a Gaussian-weighted local
    regression prediction, and the branch nearest the closest resolved
    neighbor. When they disagree, a close neighbor (within 7 days, within 6h)
    wins; otherwise the regression prediction does.

    Returns:
        The resolved midpoint (unchanged if nothing is within reach).
    """
    neighbors: list[Point] = []
    nearest_dist = float("inf")
    nearest_mid = 0.0

    for ref in resolved:
        dist = abs(ref.day_number - anchor.day_number)
        if dist <= EXPANSION_LOOKBACK_DAYS:
            neighbors.append((ref.day_number, ref.midpoint_hour, ref.weight * gaussian(dist, GAUSSIAN_SIGMA)))
        if dist < nearest_dist:
            nearest_dist = dist
            nearest_mid = ref.midpoint_hour

    if not neighbors:
        return anchor.midpoint_hour

    if len(neighbors) == 1:
        prediction = neighbors[0][1]
    else:
        slope, intercept = weighted_linear_regression(neighbors)
        prediction = slope * anchor.day_number + intercept

    reg_mid = unwrap_near(anchor.midpoint_hour, prediction)
    pair_mid = unwrap_near(anchor.midpoint_hour, nearest_mid)

    if abs(reg_mid - pair_mid) < CANDIDATES_AGREE_HOURS:
        return reg_mid
    if nearest_dist <= NEIGHBOR_MAX_DAYS and abs(pair_mid - nearest_mid) < NEIGHBOR_MAX_HOURS:
        return pair_mid
    return reg_mid


def expansion_order(seed: SeedRegion, count: int) -> Iterator[tuple[int, int, int]]:
    """
    Order in which anchors outside the seed are resolved.

    Yields (index, ref_start, ref_end): the anchor to resolve and the
    inclusive index range of resolved anchors it is snapped against.
    Forward first (left to right, everything from the seed start up to the
    previous anchor), then backward (right to left, everything from the next
    anchor up to the seed end). Later anchors depend on earlier resolutions,
    so this order is part of the result.
    """
    for i in range(seed.end_idx + 1, count):
        yield i, seed.start_idx, i - 1
    for i in range(seed.start_idx - 1, -1, -1):
        yield i, i + 1, seed.end_idx


def expand_from_seed(anchors: list[Anchor], seed: SeedRegion) -> list[Anchor]:
    """Fold over the expansion order, snapping each anchor against those resolved so far."""
    resolved = list(anchors)
    for idx, ref_start, ref_end in expansion_order(seed, len(anchors)):
        mid = snap_to_neighbors(resolved[idx], resolved[ref_start : ref_end + 1])
        resolved[idx] = replace(resolved[idx], midpoint_hour=mid)
    return resolved


def unwrap_anchors_from_seed(anchors: list[Anchor]) -> list[Anchor]:
    """
    Resolve the 24h ambiguity of every anchor.

    Args:
        anchors: Anchors sorted by day number

    Returns:
        New anchor list with unwrapped midpoints; each midpoint differs from
        the input only by a whole number of days.
    """
    if len(anchors) < 2:
        return list(anchors)

    seed = find_seed_region(anchors)
    resolved = list(anchors)

    seed_mids = local_pairwise_unwrap([a.midpoint_hour for a in anchors[seed.start_idx : seed.end_idx + 1]])
    for offset, mid in enumerate(seed_mids):
        idx = seed.start_idx + offset
        resolved[idx] = replace(resolved[idx], midpoint_hour=mid)

    return expand_from_seed(resolved, seed)

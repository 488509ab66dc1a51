"""
Weighted regression estimator (regression-v1).

Modules:
- anchors: One weighted anchor per day
- unwrap: Seed-based 24h phase unwrapping
- fitting: Robust (IRLS, Tukey biweight) sliding-window regression
- segment: Per-segment pipeline with outlier rejection
- smoothing: Post-hoc trajectory smoothing and forecast re-anchoring
"""

from datetime import datetime

from ..circadian_math import upper_median
from ..estimator import PhaseEstimator
from ..merge import bridged_midpoints, global_drift, merge_days
from ..types import AnchorPoint, RegressionAnalysis, SegmentResult, SleepRecord
from .segment import analyze_segment

ALGORITHM_ID = "regression-v1"

# Median residual (hours) at which r_squared bottoms out
RESIDUAL_SCALE_HOURS = 3.0


class RegressionEstimator(PhaseEstimator):
    """Anchor-based weighted regression with sliding window evaluation and robust outlier handling."""

    algorithm_id = ALGORITHM_ID
    name = "Weighted Regression"
    description = "Anchor-based weighted regression with sliding window evaluation and robust outlier handling"

    def analyze_segment(
        self, records: list[SleepRecord], forecast_days: int, epoch: datetime
    ) -> SegmentResult | None:
        return analyze_segment(records, forecast_days, epoch)

    def empty_analysis(self) -> RegressionAnalysis:
        return RegressionAnalysis(global_tau=24.0, global_daily_drift=0.0, days=[], algorithm_id=self.algorithm_id)

    def build_analysis(self, segments: list[SegmentResult], epoch: datetime) -> RegressionAnalysis:
        days = merge_days(segments, epoch)
        drift = global_drift(bridged_midpoints(segments, epoch))

        anchors: list[AnchorPoint] = []
        residuals: list[float] = []
        tier_counts = {"A": 0, "B": 0, "C": 0}
        for seg in segments:
            anchors.extend(seg.anchors)
            residuals.extend(seg.residuals)
            for tier, count in seg.tier_counts.items():
                tier_counts[tier] += count

        median_residual = upper_median(residuals)

        return RegressionAnalysis(
            global_tau=24 + drift,
            global_daily_drift=drift,
            days=days,
            algorithm_id=self.algorithm_id,
            r_squared=1 - min(1.0, median_residual / RESIDUAL_SCALE_HOURS),
            anchors=anchors,
            median_residual_hours=median_residual,
            anchor_count=len(anchors),
            anchor_tier_counts=tier_counts,
        )

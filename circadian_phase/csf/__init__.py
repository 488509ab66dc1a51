"""
Circular state-space filter estimator (csf-v1).

Modules:
- anchors: Tiered anchor selection with continuous weights
- filter: Von Mises phase/tau filter and backward smoother
- smoothing: Edge correction and output phase smoothing
- segment: Per-segment pipeline and day output
"""

from datetime import datetime

from ..circadian_math import upper_median
from ..estimator import PhaseEstimator
from ..merge import bridged_midpoints, global_drift, merge_days
from ..types import CSFAnalysis, SegmentResult, SleepRecord, SmoothedState
from .filter import DEFAULT_CSF_CONFIG, CSFConfig
from .segment import analyze_segment

ALGORITHM_ID = "csf-v1"

# Median residual (hours) at which r_squared bottoms out
RESIDUAL_SCALE_HOURS = 3.0


class CSFEstimator(PhaseEstimator):
    """Von Mises circular filter with a backward smoother."""

    algorithm_id = ALGORITHM_ID
    name = "Circular State-Space Filter"
    description = "Von Mises circular filter with RTS smoother - native circular phase handling without unwrapping"

    def __init__(self, config: CSFConfig = DEFAULT_CSF_CONFIG):
        self.config = config

    def analyze_segment(
        self, records: list[SleepRecord], forecast_days: int, epoch: datetime
    ) -> SegmentResult | None:
        return analyze_segment(records, forecast_days, epoch, self.config)

    def empty_analysis(self) -> CSFAnalysis:
        return CSFAnalysis(global_tau=24.0, global_daily_drift=0.0, days=[], algorithm_id=self.algorithm_id)

    def build_analysis(self, segments: list[SegmentResult], epoch: datetime) -> CSFAnalysis:
        days = merge_days(segments, epoch)
        drift = global_drift(bridged_midpoints(segments, epoch))

        states: list[SmoothedState] = []
        residuals: list[float] = []
        tier_counts = {"A": 0, "B": 0, "C": 0}
        for seg in segments:
            states.extend(seg.states)
            residuals.extend(seg.residuals)
            for tier, count in seg.tier_counts.items():
                tier_counts[tier] += count

        median_residual = upper_median(residuals)

        return CSFAnalysis(
            global_tau=24 + drift,
            global_daily_drift=drift,
            days=days,
            algorithm_id=self.algorithm_id,
            r_squared=1 - min(1.0, median_residual / RESIDUAL_SCALE_HOURS),
            states=states,
            median_residual_hours=median_residual,
            anchor_count=sum(tier_counts.values()),
            anchor_tier_counts=tier_counts,
        )

"""
Kalman filter estimator (kalman-v1).

Modules:
- linalg: State / 2x2 covariance value types
- observations: One noise-weighted observation per day
- filter: Configuration, initialization, gating and the forward pass
- smoother: Rauch-Tung-Striebel backward pass
- segment: Per-segment pipeline and day output
"""

from datetime import datetime

from ..estimator import PhaseEstimator
from ..merge import bridged_midpoints, global_drift, merge_days, weighted_r_squared
from ..types import KalmanAnalysis, SegmentResult, SleepRecord
from .filter import DEFAULT_KALMAN_CONFIG, KalmanConfig
from .segment import analyze_segment

ALGORITHM_ID = "kalman-v1"


class KalmanEstimator(PhaseEstimator):
    """State-space phase/drift filter with RTS smoothing."""

    algorithm_id = ALGORITHM_ID
    name = "Kalman Filter"
    description = "State-space model with forward Kalman filter and RTS backward smoother for optimal phase tracking"

    def __init__(self, config: KalmanConfig = DEFAULT_KALMAN_CONFIG):
        self.config = config

    def analyze_segment(
        self, records: list[SleepRecord], forecast_days: int, epoch: datetime
    ) -> SegmentResult | None:
        return analyze_segment(records, forecast_days, epoch, self.config)

    def empty_analysis(self) -> KalmanAnalysis:
        return KalmanAnalysis(global_tau=24.0, global_daily_drift=0.0, days=[], algorithm_id=self.algorithm_id)

    def build_analysis(self, segments: list[SegmentResult], epoch: datetime) -> KalmanAnalysis:
        days = merge_days(segments, epoch)
        points = bridged_midpoints(segments, epoch)
        drift = global_drift(points)

        observation_count = sum(seg.observation_count for seg in segments)
        innovation_total = sum(seg.mean_innovation * seg.observation_count for seg in segments)

        return KalmanAnalysis(
            global_tau=24 + drift,
            global_daily_drift=drift,
            days=days,
            algorithm_id=self.algorithm_id,
            r_squared=weighted_r_squared(points),
            gated_outlier_count=sum(seg.gated_count for seg in segments),
            observation_count=observation_count,
            avg_innovation=innovation_total / observation_count if observation_count else 0.0,
        )

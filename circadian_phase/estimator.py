"""
Estimator strategy interface.

An estimator only has to analyze one segment and assemble its own result
type; splitting into segments, the shared epoch and the forecast horizon are
handled here for every estimator alike.
"""

import logging
from datetime import datetime

from .circadian_math import analysis_epoch
from .merge import neutral_segment
from .segments import split_into_segments
from .types import CircadianAnalysis, SegmentResult, SleepRecord

logger = logging.getLogger(__name__)


class PhaseEstimator:
    """Base class for circadian phase estimators."""

    algorithm_id: str = ""
    name: str = ""
    description: str = ""

    def analyze_segment(
        self, records: list[SleepRecord], forecast_days: int, epoch: datetime
    ) -> SegmentResult | None:
        """Analyze one segment, or return None when it holds too little usable data."""
        raise NotImplementedError

    def build_analysis(self, segments: list[SegmentResult], epoch: datetime) -> CircadianAnalysis:
        """Merge segment results, sorted by first day, into this estimator's analysis type."""
        raise NotImplementedError

    def empty_analysis(self) -> CircadianAnalysis:
        return CircadianAnalysis(global_tau=24.0, global_daily_drift=0.0, days=[], algorithm_id=self.algorithm_id)

    def analyze(self, records: list[SleepRecord], forecast_days: int = 0) -> CircadianAnalysis:
        """
        Run the full pipeline over a sleep log.

        Args:
            records: Sleep records in any order (not modified)
            forecast_days: Days to project past the last record's date

        Returns:
            Analysis with one day per calendar date from the first record's
            date through the last record's date plus `forecast_days`
        """
        if not records:
            return self.empty_analysis()

        forecast_days = max(0, forecast_days)
        epoch = analysis_epoch(records)
        record_segments = split_into_segments(records)

        results: list[SegmentResult] = []
        for i, segment in enumerate(record_segments):
            horizon = forecast_days if i == len(record_segments) - 1 else 0
            result = self.analyze_segment(segment, horizon, epoch)
            if result is None:
                logger.debug("Segment %d (%d records) has too little data to analyze", i, len(segment))
                result = neutral_segment(segment, horizon, epoch)
            results.append(result)

        results.sort(key=lambda s: s.first_day)
        logger.debug("%s analyzed %d records in %d segments", self.algorithm_id, len(records), len(results))
        return self.build_analysis(results, epoch)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.algorithm_id!r})"

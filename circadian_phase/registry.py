"""
Estimator lookup by algorithm id.

The table is built once at import and is read-only afterwards.
"""

import logging

from .csf import CSFEstimator
from .estimator import PhaseEstimator
from .kalman import KalmanEstimator
from .regression import RegressionEstimator
from .types import CircadianAnalysis, RegressionAnalysis, SleepRecord

logger = logging.getLogger(__name__)


class UnknownAlgorithmError(ValueError):
    """Raised when an algorithm id is not registered."""

    def __init__(self, algorithm_id: str, available: list[str]):
        self.algorithm_id = algorithm_id
        self.available = available
        super().__init__(f"Unknown algorithm: {algorithm_id}. Available: {', '.join(available)}")


def _build_table(estimators: list[PhaseEstimator]) -> dict[str, PhaseEstimator]:
    table: dict[str, PhaseEstimator] = {}
    for estimator in estimators:
        if estimator.algorithm_id in table:
            logger.warning("Overwriting existing algorithm: %s", estimator.algorithm_id)
        table[estimator.algorithm_id] = estimator
    return table


ALGORITHMS: dict[str, PhaseEstimator] = _build_table(
    [RegressionEstimator(), KalmanEstimator(), CSFEstimator()]
)

DEFAULT_ALGORITHM_ID = RegressionEstimator.algorithm_id


def list_algorithms() -> list[PhaseEstimator]:
    """Registered estimators, default first."""
    return list(ALGORITHMS.values())


def get_algorithm(algorithm_id: str) -> PhaseEstimator:
    """
    Look up an estimator.

    Raises:
        UnknownAlgorithmError: If the id is not registered
    """
    try:
        return ALGORITHMS[algorithm_id]
    except KeyError:
        raise UnknownAlgorithmError(algorithm_id, list(ALGORITHMS)) from None


def analyze_with_algorithm(
    algorithm_id: str, records: list[SleepRecord], forecast_days: int = 0
) -> CircadianAnalysis:
    """Run the named estimator over `records`."""
    return get_algorithm(algorithm_id).analyze(records, forecast_days)


def analyze_circadian(records: list[SleepRecord], forecast_days: int = 0) -> RegressionAnalysis:
    """Run the default (regression) estimator."""
    return ALGORITHMS[DEFAULT_ALGORITHM_ID].analyze(records, forecast_days)

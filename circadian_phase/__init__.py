"""
Circadian Phase Estimation

Estimates nightly circadian windows and the free-running period (tau) from
irregular sleep logs, aimed at non-24-hour sleep-wake patterns.

Estimators: RegressionEstimator ("regression-v1", default), KalmanEstimator
("kalman-v1") and CSFEstimator ("csf-v1"). A Lomb-Scargle periodogram gives
an independent tau estimate.
"""

from .csf import CSFEstimator
from .csf.filter import DEFAULT_CSF_CONFIG, CSFConfig
from .estimator import PhaseEstimator
from .ingest import (
    SleepDataFormatError,
    calculate_sleep_score,
    default_forecast_days,
    load_sleep_file,
    parse_sleep_data,
)
from .kalman import KalmanEstimator
from .kalman.filter import DEFAULT_KALMAN_CONFIG, KalmanConfig
from .registry import (
    ALGORITHMS,
    DEFAULT_ALGORITHM_ID,
    UnknownAlgorithmError,
    analyze_circadian,
    analyze_with_algorithm,
    get_algorithm,
    list_algorithms,
)
from .regression import RegressionEstimator
from .periodogram import build_periodogram_anchors, compute_periodogram
from .segments import split_into_segments
from .serialization import analysis_to_dict, periodogram_to_dict, records_from_dict, records_to_dict
from .types import (
    GAP_THRESHOLD_DAYS,
    AnchorPoint,
    CircadianAnalysis,
    CircadianDay,
    CSFAnalysis,
    KalmanAnalysis,
    RegressionAnalysis,
    SleepRecord,
)

__all__ = [
    # Types
    "SleepRecord",
    "CircadianDay",
    "CircadianAnalysis",
    "RegressionAnalysis",
    "KalmanAnalysis",
    "CSFAnalysis",
    "AnchorPoint",
    "GAP_THRESHOLD_DAYS",
    # Estimators
    "PhaseEstimator",
    "RegressionEstimator",
    "KalmanEstimator",
    "KalmanConfig",
    "DEFAULT_KALMAN_CONFIG",
    "CSFEstimator",
    "CSFConfig",
    "DEFAULT_CSF_CONFIG",
    # Registry
    "ALGORITHMS",
    "DEFAULT_ALGORITHM_ID",
    "UnknownAlgorithmError",
    "analyze_circadian",
    "analyze_with_algorithm",
    "get_algorithm",
    "list_algorithms",
    "split_into_segments",
    # Period analysis
    "build_periodogram_anchors",
    "compute_periodogram",
    # Loading and serialization
    "SleepDataFormatError",
    "calculate_sleep_score",
    "default_forecast_days",
    "load_sleep_file",
    "parse_sleep_data",
    "analysis_to_dict",
    "periodogram_to_dict",
    "records_to_dict",
    "records_from_dict",
]

"""
Pytest fixtures for circadian phase estimation tests.
"""

import pytest

from circadian_phase.kalman import KalmanEstimator
from circadian_phase.regression import RegressionEstimator

from helpers import make_n24_records, make_record, make_synthetic_records


@pytest.fixture
def n24_records():
    """60 clean nights drifting +0.5h/day from a 23:00 start."""
    return make_n24_records(days=60, drift=0.5)


@pytest.fixture
def synthetic_records():
    """90 noisy nights with tau = 24.5h."""
    return make_synthetic_records(tau=24.5, days=90)


@pytest.fixture
def two_cluster_records():
    """Two 20-night clusters separated by 20 nights without data."""
    first = [make_record(d, 27.0) for d in range(20)]
    second = [make_record(d, 27.0) for d in range(40, 60)]
    return first + second


@pytest.fixture(params=["regression", "kalman"])
def estimator(request):
    """Each registered estimator in turn."""
    if request.param == "regression":
        return RegressionEstimator()
    return KalmanEstimator()

"""
Tests for the Kalman phase/drift filter and RTS smoother.
"""

import pytest

from circadian_phase.circadian_math import analysis_epoch
from circadian_phase.kalman import KalmanEstimator
from circadian_phase.kalman.filter import (
    DEFAULT_KALMAN_CONFIG,
    DRIFT_MAX,
    ForwardPass,
    KalmanConfig,
    gate,
    initialize_state,
    resolve_ambiguity,
    run_forward_pass,
)
from circadian_phase.kalman.linalg import Covariance, Matrix2, State, measurement_update
from circadian_phase.kalman.observations import Observation, extract_observations, measurement_noise
from circadian_phase.kalman.segment import covariance_to_confidence
from circadian_phase.kalman.smoother import rts_smooth

from helpers import make_n24_records, make_record, midpoint_diff_hours


def drifting_observations(days: int, drift: float = 0.5, r: float = 1.0) -> dict[int, Observation]:
    """Observations on days 0..days-1 at 03:00 shifting by `drift` hours per day."""
    return {
        d: Observation(day_number=d, midpoint_hour=24 * d + 3 + drift * d, r=r, record=make_record(d, 3))
        for d in range(days)
    }


class TestLinalg:
    """Closed-form 2x2 algebra for F = [[1, 1], [0, 1]]."""

    def test_state_predict(self):
        assert State(3.0, 0.5).predict() == State(3.5, 0.5)

    def test_covariance_predict(self):
        cov = Covariance(1.0, 0.0, 0.1).predict(0.06, 0.003)

        assert cov.p00 == pytest.approx(1.16)
        assert cov.p01 == pytest.approx(0.1)
        assert cov.p11 == pytest.approx(0.103)

    def test_invert(self):
        assert Covariance(2.0, 0.0, 4.0).invert() == Covariance(0.5, 0.0, 0.25)

    def test_invert_singular(self):
        assert Covariance(1.0, 1.0, 1.0).invert() is None

    def test_sandwich_with_identity(self):
        cov = Covariance(2.0, 0.3, 0.5)

        assert Matrix2(1, 0, 0, 1).sandwich(cov) == cov

    def test_sandwich(self):
        """G S G^T for a general G."""
        cov = Matrix2(1, 1, 0, 1).sandwich(Covariance(1.0, 0.0, 1.0))

        assert cov == Covariance(2.0, 1.0, 1.0)

    def test_measurement_update(self):
        state, cov, innovation = measurement_update(State(0.0, 0.5), Covariance(1.0, 0.0, 0.25), 2.0, 1.0)

        assert innovation == 2.0
        assert state.phase == pytest.approx(1.0)
        assert state.drift == pytest.approx(0.5)
        assert cov.p00 == pytest.approx(0.5)
        assert cov.p11 == pytest.approx(0.25)

    def test_correlated_update_moves_drift(self):
        """Phase/drift covariance lets a phase observation correct drift."""
        state, _cov, _innovation = measurement_update(State(0.0, 0.5), Covariance(1.0, 0.5, 1.0), 2.0, 1.0)

        assert state.drift == pytest.approx(1.0)


class TestObservations:
    """One noise-weighted observation per day."""

    def test_noise_grows_for_short_and_poor_sleep(self):
        good = measurement_noise(make_record(0, 3, duration=9, quality=1.0), 3.0)
        short = measurement_noise(make_record(0, 3, duration=5, quality=1.0), 3.0)
        poor = measurement_noise(make_record(0, 3, duration=9, quality=0.5), 3.0)

        assert good == pytest.approx(3.0)
        assert short == pytest.approx(15.0)
        assert poor == pytest.approx(6.0)

    def test_nap_noise(self):
        nap = measurement_noise(make_record(0, 15, duration=9, quality=1.0, is_main_sleep=False), 3.0)

        assert nap == pytest.approx(20.0)

    def test_short_and_poor_records_skipped(self):
        records = [
            make_record(0, 3),
            make_record(1, 3, duration=1.5),
            make_record(2, 3, quality=0.05),
        ]

        observations = extract_observations(records, analysis_epoch(records), 3.0)

        assert list(observations) == [0]

    def test_main_sleep_beats_nap(self):
        main = make_record(0, 3, duration=5, quality=0.5, log_id=1)
        nap = make_record(0, 5, duration=9, quality=1.0, is_main_sleep=False, log_id=2)

        observations = extract_observations([nap, main], analysis_epoch([main, nap]), 3.0)

        assert observations[0].record.log_id == 1

    def test_day_from_midpoint(self):
        """The observation day is the midpoint rounded to whole days from the epoch."""
        records = [make_record(0, 3), make_record(3, 4)]

        observations = extract_observations(records, analysis_epoch(records), 3.0)

        assert sorted(observations) == [0, 3]
        assert observations[3].midpoint_hour == pytest.approx(76.0)


class TestAmbiguityAndGating:
    def test_snaps_to_nearest_branch(self):
        assert resolve_ambiguity(27.5, 3.2) == pytest.approx(3.5)

    def test_snaps_across_midnight(self):
        assert resolve_ambiguity(1.0, 23.0) == pytest.approx(25.0)

    def test_gate_rejects_far_observation(self):
        """Mahalanobis distance 4 is beyond the 3.5 gate."""
        assert gate(State(0.0, 0.5), Covariance(1.0, 0.0, 0.1), 8.0, 3.0, 3.5)

    def test_gate_accepts_near_observation(self):
        assert not gate(State(0.0, 0.5), Covariance(1.0, 0.0, 0.1), 6.0, 3.0, 3.5)


class TestInitializeState:
    """Prior for the day before the segment."""

    def test_no_observations(self):
        state, cov = initialize_state({}, 0)

        assert state == State(12.0, 0.7)
        assert cov == Covariance(16.0, 0.0, 1.0)

    def test_single_observation_back_projected(self):
        """One observation is walked back to the prior day at the default drift."""
        obs = Observation(day_number=3, midpoint_hour=75.0, r=1.0, record=make_record(3, 3))

        state, _cov = initialize_state({3: obs}, 0)

        assert state.phase == pytest.approx(72.2)
        assert state.drift == pytest.approx(0.7)

    def test_fit_over_unwrapped_midpoints(self):
        """Daily midpoints 24.5h apart give a drift of 0.5h/day."""
        state, cov = initialize_state(drifting_observations(10), 0)

        assert state.drift == pytest.approx(0.5)
        assert state.phase == pytest.approx(2.5)
        assert cov == Covariance(4.0, 0.0, 0.25)

    def test_drift_clamped(self):
        state, _cov = initialize_state(drifting_observations(10, drift=5.0), 0)

        assert state.drift == DRIFT_MAX


class TestForwardPass:
    def test_tracks_clean_drift(self):
        fwd = run_forward_pass(drifting_observations(30), 0, 29, 29)

        assert len(fwd.filtered_states) == 30
        assert len(fwd.predicted_covs) == 30
        assert fwd.observation_count == 30
        assert fwd.gated_count == 0
        assert fwd.filtered_states[-1].drift == pytest.approx(0.5, abs=0.05)

    def test_outlier_gated(self):
        """A night 10h off the track is counted but not applied."""
        observations = drifting_observations(30)
        clean = observations[15]
        observations[15] = Observation(15, clean.midpoint_hour + 10, clean.r, clean.record)

        fwd = run_forward_pass(observations, 0, 29, 29)

        assert fwd.gated_count == 1
        assert fwd.observation_count == 30
        assert len(fwd.innovations) == 29

    def test_forecast_days_are_predict_only(self):
        fwd = run_forward_pass(drifting_observations(10), 0, 9, 14)

        assert len(fwd.filtered_states) == 15
        assert fwd.observation_count == 10
        assert fwd.filtered_covs[14].p00 > fwd.filtered_covs[9].p00


class TestRtsSmoother:
    def test_empty(self):
        assert rts_smooth(ForwardPass()) == ([], [])

    def test_last_step_equals_filter(self):
        fwd = run_forward_pass(drifting_observations(20), 0, 19, 19)

        states, covs = rts_smooth(fwd)

        assert states[-1] == fwd.filtered_states[-1]
        assert covs[-1] == fwd.filtered_covs[-1]

    def test_smoothing_reduces_early_variance(self):
        """Later observations tighten the estimate of early days."""
        fwd = run_forward_pass(drifting_observations(20), 0, 19, 19)

        _states, covs = rts_smooth(fwd)

        assert covs[0].p00 < fwd.filtered_covs[0].p00

    def test_singular_prediction_keeps_filtered_step(self):
        fwd = ForwardPass(
            predicted_states=[State(0.0, 0.5), State(0.5, 0.5)],
            predicted_covs=[Covariance(1.0, 0.0, 1.0), Covariance(1.0, 1.0, 1.0)],
            filtered_states=[State(0.1, 0.5), State(0.7, 0.5)],
            filtered_covs=[Covariance(0.5, 0.0, 0.5), Covariance(0.5, 0.0, 0.5)],
        )

        states, covs = rts_smooth(fwd)

        assert states[0] == State(0.1, 0.5)
        assert covs[0] == Covariance(0.5, 0.0, 0.5)


class TestConfidence:
    def test_covariance_to_confidence(self):
        assert covariance_to_confidence(0.0) == 1.0
        assert covariance_to_confidence(1.0) == pytest.approx(0.5)
        assert covariance_to_confidence(-1.0) == 1.0


class TestKalmanAnalysis:
    """End-to-end behavior of the Kalman estimator."""

    def test_outlier_night_gated(self):
        """A night 9h early is rejected and barely moves its neighbors."""
        clean = make_n24_records(days=30, drift=0.5)
        noisy = list(clean)
        noisy[10] = make_record(10, 27 + 5 - 9)

        estimator = KalmanEstimator()
        clean_result = estimator.analyze(clean)
        noisy_result = estimator.analyze(noisy)

        assert clean_result.gated_outlier_count == 0
        assert noisy_result.gated_outlier_count == 1
        for i in (9, 10, 11):
            diff = midpoint_diff_hours(clean_result.days[i].midpoint_hour, noisy_result.days[i].midpoint_hour)
            assert abs(diff) < 0.5

    @pytest.mark.parametrize("index", [8, 10, 12, 15, 20])
    def test_half_day_shift_gated(self, index):
        """A night logged exactly 12h off its rhythm is ambiguous on the circle and is rejected."""
        clean = make_n24_records(days=30, drift=0.5)
        noisy = list(clean)
        noisy[index] = make_record(index, 27 + 0.5 * index + 12, date_of_sleep=clean[index].date_of_sleep)

        estimator = KalmanEstimator()
        clean_result = estimator.analyze(clean)
        noisy_result = estimator.analyze(noisy)

        assert noisy_result.gated_outlier_count == 1
        assert len(noisy_result.days) == len(clean_result.days)
        for clean_day, noisy_day in zip(clean_result.days, noisy_result.days):
            diff = midpoint_diff_hours(clean_day.midpoint_hour, noisy_day.midpoint_hour)
            assert abs(diff) < 0.5

    def test_reports_diagnostics(self):
        result = KalmanEstimator().analyze(make_n24_records(days=40))

        assert result.algorithm_id == "kalman-v1"
        assert result.observation_count > 0
        assert result.avg_innovation >= 0
        assert 0 <= result.r_squared <= 1

    def test_negative_drift_tracked(self):
        """An advancing sleeper keeps a negative drift."""
        result = KalmanEstimator().analyze(make_n24_records(days=40, drift=-0.5))

        assert result.global_daily_drift == pytest.approx(-0.5, abs=0.1)
        assert min(d.local_drift for d in result.days) < 0

    def test_config_is_used(self):
        """A tighter gate rejects more observations."""
        records = make_n24_records(days=30)
        noisy = list(records)
        noisy[10] = make_record(10, 27 + 5 - 4)

        loose = KalmanEstimator().analyze(noisy)
        tight = KalmanEstimator(KalmanConfig(gate_threshold=0.5)).analyze(noisy)

        assert tight.gated_outlier_count > loose.gated_outlier_count
        assert DEFAULT_KALMAN_CONFIG.gate_threshold == 3.5

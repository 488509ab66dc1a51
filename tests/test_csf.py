"""
Tests for the circular state-space filter estimator.
"""

import math
from datetime import datetime

import pytest

from circadian_phase.csf import CSFEstimator
from circadian_phase.csf.anchors import classify_anchor, max_ab_gap, prepare_anchors
from circadian_phase.csf.filter import (
    DEFAULT_CSF_CONFIG,
    TAU_MAX,
    TAU_MIN,
    forward_pass,
    initialize_state,
    predict,
    rts_smooth,
    update,
    update_prior,
    von_mises_update,
)
from circadian_phase.csf.segment import forecast_confidence, variance_to_confidence
from circadian_phase.csf.smoothing import correct_edge, smooth_output_phase
from circadian_phase.serialization import analysis_to_dict
from circadian_phase.types import Anchor, CSFAnalysis, CSFState, SmoothedState

from helpers import assert_valid_calendar, expected_day_count, make_record

EPOCH = datetime(2024, 1, 1)


def anchor(day: int, midpoint: float, weight: float = 1.0, tier: str = "A") -> Anchor:
    return Anchor(day_number=day, midpoint_hour=midpoint, weight=weight, tier=tier, record=make_record(day, 3))


def drifting_anchors(days: int, drift: float = 0.5) -> list[Anchor]:
    """Anchors on days 0..days-1 at 03:00 shifting later by `drift` hours per day."""
    return [anchor(d, 24 * d + 3 + drift * d) for d in range(days)]


def state(phase: float = 5.0, tau: float = 24.5, phase_var: float = 1.0, tau_var: float = 0.1, cov: float = 0.0):
    return CSFState(phase=phase, tau=tau, phase_var=phase_var, tau_var=tau_var, cov=cov)


def smoothed(phases: list[float], tau: float = 24.5) -> list[SmoothedState]:
    return [
        SmoothedState(
            phase=p,
            tau=tau,
            phase_var=0.5,
            tau_var=0.01,
            cov=0.0,
            smoothed_phase=p,
            smoothed_tau=tau,
            smoothed_phase_var=0.5,
            smoothed_tau_var=0.01,
        )
        for p in phases
    ]


class TestAnchorSelection:
    def test_tier_a(self):
        tier, weight = classify_anchor(make_record(0, 3, duration=8, quality=0.85))

        assert tier == "A"
        assert weight == pytest.approx(0.85 * 0.8)

    def test_tier_b(self):
        tier, weight = classify_anchor(make_record(0, 3, duration=6, quality=0.7))

        assert tier == "B"
        assert weight == pytest.approx(0.4 * 0.7 * 0.4)

    def test_tier_c(self):
        tier, weight = classify_anchor(make_record(0, 3, duration=4.5, quality=0.5))

        assert tier == "C"
        assert weight == pytest.approx(0.1 * 0.5 * 0.1)

    @pytest.mark.parametrize("duration,quality", [(3.5, 0.9), (8, 0.3)])
    def test_rejected(self, duration, quality):
        assert classify_anchor(make_record(0, 3, duration=duration, quality=quality)) is None

    def test_nap_weight_reduced(self):
        _tier, main = classify_anchor(make_record(0, 3))
        _tier, nap = classify_anchor(make_record(0, 3, is_main_sleep=False))

        assert nap == pytest.approx(main * 0.15)

    def test_max_ab_gap_ignores_c_tier(self):
        candidates = [anchor(0, 3), anchor(10, 3, tier="C"), anchor(20, 3, tier="B")]

        assert max_ab_gap(candidates) == 20

    def test_c_tier_dropped_when_ab_dense(self):
        records = [make_record(d, 3) for d in (0, 1, 2, 4, 5)] + [make_record(3, 3, duration=4.5, quality=0.5)]

        anchors = prepare_anchors(records, EPOCH)

        assert [a.day_number for a in anchors] == [0, 1, 2, 4, 5]

    def test_c_tier_kept_across_long_hole(self):
        records = [make_record(0, 3), make_record(20, 3), make_record(10, 3, duration=4.5, quality=0.5)]

        anchors = prepare_anchors(records, EPOCH)

        assert [(a.day_number, a.tier) for a in anchors] == [(0, "A"), (10, "C"), (20, "A")]

    def test_heaviest_record_per_day(self):
        nap = make_record(0, 15, duration=5, quality=0.8, is_main_sleep=False, log_id=1)
        main = make_record(0, 3, log_id=2)

        anchors = prepare_anchors([nap, main], EPOCH)

        assert len(anchors) == 1
        assert anchors[0].record.log_id == 2

    def test_tie_keeps_earlier_record(self):
        late = make_record(0, 13, log_id=2)
        early = make_record(0, 3, log_id=1)

        anchors = prepare_anchors([late, early], EPOCH)

        assert anchors[0].record.log_id == 1

    def test_midpoints_measured_from_epoch(self):
        anchors = prepare_anchors([make_record(2, 3)], EPOCH)

        assert anchors[0].midpoint_hour == pytest.approx(51)


class TestVonMises:
    def test_zero_prior_concentration_takes_measurement(self):
        phase, kappa = von_mises_update(10, 0, 5, 1)

        assert phase == pytest.approx(5)
        assert kappa == pytest.approx(1)

    def test_equal_concentrations_meet_halfway(self):
        phase, kappa = von_mises_update(0, 1, 2, 1)

        assert phase == pytest.approx(1)
        assert kappa == pytest.approx(2 * math.cos(math.pi / 12))

    def test_fuses_across_midnight(self):
        """23:00 and 01:00 average to midnight, not noon."""
        phase, _kappa = von_mises_update(23, 1, 1, 1)

        assert phase == pytest.approx(0, abs=1e-9)


class TestFilterSteps:
    def test_initialize_from_first_anchor(self):
        s = initialize_state(anchor(0, 3), 0)

        assert s.phase == 3
        assert s.tau == DEFAULT_CSF_CONFIG.tau_prior
        assert s.tau_var == DEFAULT_CSF_CONFIG.tau_prior_var

    def test_initialize_walks_back_late_anchor(self):
        s = initialize_state(anchor(5, 100), 0)

        assert s.phase == pytest.approx(97.5)

    def test_predict(self):
        predicted = predict(state(phase=10, tau=24.5, phase_var=0.5, tau_var=0.1, cov=0.0))

        assert predicted.phase == pytest.approx(10.5)
        assert predicted.phase_var == pytest.approx(1.1)
        assert predicted.tau_var == pytest.approx(0.105)
        assert predicted.cov == pytest.approx(0.1)

    def test_prior_pulls_fast_tau_down(self):
        pulled = update_prior(state(tau=25.5, tau_var=0.1))

        assert 24.5 < pulled.tau < 25.5
        assert pulled.tau_var < 0.1

    def test_prior_pulls_advancing_tau_hardest(self):
        """Advancing drift uses the smallest pseudo-measurement noise (0.1)."""
        pulled = update_prior(state(tau=23.5, tau_var=0.1))

        assert pulled.tau == pytest.approx(24.0)

    def test_update_moves_toward_measurement(self):
        updated = update(state(phase=5, cov=0.1), anchor(0, 6))

        assert 5 < updated.phase < 6
        assert updated.tau > 24.5
        assert updated.phase_var < 1.0

    def test_heavier_anchor_pulls_harder(self):
        light = update(state(phase=5), anchor(0, 6, weight=0.2))
        heavy = update(state(phase=5), anchor(0, 6, weight=1.0))

        assert heavy.phase - 5 > light.phase - 5 > 0

    def test_measurement_snapped_to_nearest_day(self):
        """A midpoint a whole day away from the prediction is the same clock hour."""
        updated = update(state(phase=29), anchor(0, 6))

        assert 29 < updated.phase < 30

    def test_outlier_gated(self):
        assert update(state(phase=5, phase_var=0.01), anchor(0, 13, weight=10)) is None

    def test_correction_clamped(self):
        updated = update(state(phase=5, phase_var=10), anchor(0, 8, weight=100))

        assert updated.phase == pytest.approx(7)


class TestForwardPass:
    def test_one_state_per_day(self):
        fwd = forward_pass(drifting_anchors(10), 0, 14)

        assert len(fwd.states) == 15
        assert fwd.gated_count == 0

    def test_tracks_drift(self):
        """Clean anchors drifting at the prior keep the filter on them."""
        fwd = forward_pass(drifting_anchors(30), 0, 29)

        for d, s in enumerate(fwd.states):
            assert s.phase == pytest.approx(3 + 0.5 * d, abs=0.01)
            assert s.tau == pytest.approx(24.5, abs=0.01)

    def test_fast_drift_raises_tau(self):
        anchors = [anchor(d, 24 * d + 3 + d) for d in range(40)]

        fwd = forward_pass(anchors, 0, 39)

        assert fwd.states[-1].tau > 24.5

    def test_outlier_counted(self):
        anchors = drifting_anchors(30)
        anchors[20] = anchor(20, anchors[20].midpoint_hour + 9)

        fwd = forward_pass(anchors, 0, 29)

        assert fwd.gated_count == 1

    def test_tau_stays_in_bounds(self):
        anchors = [anchor(d, 24 * d + 3 + 4 * d) for d in range(30)]

        fwd = forward_pass(anchors, 0, 29)

        assert all(TAU_MIN <= s.tau <= TAU_MAX for s in fwd.states)


class TestSmoother:
    def test_empty(self):
        assert rts_smooth([]) == []

    def test_last_state_unchanged(self):
        states = forward_pass(drifting_anchors(20), 0, 19).states

        result = rts_smooth(states)

        assert len(result) == 20
        assert result[-1].smoothed_phase == states[-1].phase
        assert result[-1].smoothed_tau == states[-1].tau

    def test_keeps_filtered_values(self):
        states = forward_pass(drifting_anchors(20), 0, 19).states

        result = rts_smooth(states)

        assert [r.phase for r in result] == [s.phase for s in states]

    def test_variance_shrinks(self):
        states = forward_pass(drifting_anchors(20), 0, 19).states

        result = rts_smooth(states)

        for r in result[:-1]:
            assert r.smoothed_phase_var <= r.phase_var
            assert TAU_MIN <= r.smoothed_tau <= TAU_MAX


class TestOutputSmoothing:
    def test_correct_edge_short_segment_unchanged(self):
        states = smoothed([3.0, 3.5, 4.0, 4.5, 5.0])

        assert correct_edge(states, drifting_anchors(5), 0, 4) is states

    def test_correct_edge_needs_three_anchors(self):
        states = smoothed([3 + 0.5 * d for d in range(20)])

        assert correct_edge(states, drifting_anchors(2), 0, 19) is states

    def test_correct_edge_pulls_last_day_to_anchors(self):
        """A lagging edge is moved onto the recent anchors; forecast follows their slope."""
        anchors = drifting_anchors(20)
        lagging = [3 + 0.5 * d - (1.0 if d >= 15 else 0) for d in range(23)]

        result = correct_edge(smoothed(lagging), anchors, 0, 19)

        assert result[19].smoothed_phase % 24 == pytest.approx(12.5, abs=0.05)
        assert result[9].smoothed_phase == lagging[9]
        assert result[22].smoothed_phase % 24 == pytest.approx(14.0, abs=0.05)
        assert result[22].smoothed_tau == pytest.approx(24.5, abs=0.01)

    def test_smooth_output_short_unchanged(self):
        states = smoothed([1.0, 5.0])

        assert smooth_output_phase(states) is states

    def test_smooth_output_keeps_line(self):
        phases = [3 + 0.5 * d for d in range(15)]

        result = smooth_output_phase(smoothed(phases))

        for d in range(3, 12):
            assert result[d].smoothed_phase == pytest.approx(phases[d])

    def test_smooth_output_flattens_spike(self):
        phases = [3.0] * 9
        phases[4] = 6.0

        result = smooth_output_phase(smoothed(phases))

        assert 3.0 < result[4].smoothed_phase < 6.0
        assert result[4].phase == 6.0


class TestConfidence:
    def test_variance_to_confidence(self):
        assert variance_to_confidence(0.1) == pytest.approx(0.95)
        assert variance_to_confidence(1.0) == pytest.approx(0.5)
        assert variance_to_confidence(2.5) == 0

    def test_forecast_confidence(self):
        assert forecast_confidence(0) == pytest.approx(0.5)
        assert forecast_confidence(5) == pytest.approx(0.5 * math.exp(-0.5))
        assert forecast_confidence(100) == 0.1


class TestCSFAnalysis:
    def test_empty_input(self):
        result = CSFEstimator().analyze([])

        assert isinstance(result, CSFAnalysis)
        assert result.days == []
        assert result.global_tau == 24.0

    def test_calendar(self, n24_records):
        result = CSFEstimator().analyze(n24_records, forecast_days=5)

        assert len(result.days) == expected_day_count(n24_records, 5)
        assert_valid_calendar(result)

    def test_two_clusters(self, two_cluster_records):
        result = CSFEstimator().analyze(two_cluster_records)

        assert len(result.days) == expected_day_count(two_cluster_records)
        assert sum(d.is_gap for d in result.days) == 20
        assert_valid_calendar(result)

    def test_clean_n24(self, n24_records):
        result = CSFEstimator().analyze(n24_records)

        assert result.global_tau == pytest.approx(24.5, abs=0.2)
        assert result.algorithm_id == "csf-v1"

    def test_forecast(self, n24_records):
        result = CSFEstimator().analyze(n24_records, forecast_days=10)

        forecast = result.days[-10:]
        assert all(d.is_forecast for d in forecast)
        assert not any(d.is_forecast for d in result.days[:-10])
        scores = [d.confidence_score for d in forecast]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == pytest.approx(0.5 * math.exp(-0.1))

    def test_diagnostics(self, n24_records):
        result = CSFEstimator().analyze(n24_records)

        assert result.anchor_count == 60
        assert result.anchor_tier_counts == {"A": 60, "B": 0, "C": 0}
        assert len(result.states) == len(result.days)
        assert 0 <= result.r_squared <= 1

    def test_local_tau_consistent_with_drift(self, n24_records):
        result = CSFEstimator().analyze(n24_records)

        for day in result.days:
            assert day.local_tau == pytest.approx(24 + day.local_drift)
            assert -1.5 <= day.local_drift <= 3.0

    def test_too_few_anchors_gives_neutral_days(self):
        records = [make_record(0, 3), make_record(1, 3.5, duration=3)]

        result = CSFEstimator().analyze(records)

        assert len(result.days) == 2
        assert all(d.confidence_score == 0 for d in result.days)

    def test_serialized_states(self, n24_records):
        output = analysis_to_dict(CSFEstimator().analyze(n24_records))

        assert output["algorithmId"] == "csf-v1"
        assert output["anchorCount"] == 60
        assert len(output["states"]) == len(output["days"])
        assert set(output["states"][0]) >= {"phase", "tau", "smoothedPhase", "smoothedTau"}

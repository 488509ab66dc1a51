"""
Von Mises phase filter with a period (tau) state.

The phase is tracked in hours since the epoch, but measurements are fused on
the circle: prior and measurement are combined as weighted unit vectors, so
a night logged across midnight needs no unwrapping. Tau follows the phase
residual through the phase/tau covariance and is pulled back toward a prior
every day.
"""

import math
from dataclasses import asdict, dataclass, field, replace

from ..circadian_math import HOURS_PER_DAY, circular_diff, clamp, normalize_hour, resolve_ambiguity
from ..types import Anchor, CSFState, SmoothedState

TAU_MIN = 22.0
TAU_MAX = 27.0

MIN_PHASE_VAR = 0.01
MIN_TAU_VAR = 0.001
MIN_KAPPA = 0.001
MAX_PREDICTED_COV = 10.0
MAX_UPDATED_COV = 1.0

# Backward smoother gain bounds
MIN_SMOOTHER_GAIN = 0.1
MAX_SMOOTHER_GAIN = 0.95


@dataclass(frozen=True)
class TauPriorNoise:
    """Noise of the daily pull toward the tau prior; smaller pulls harder."""

    advancing: float = 0.1  # Drift below 0
    beyond_prior: float = 1.0  # Drift above the prior's drift
    within_prior: float = 5.0  # Drift between 0 and the prior's drift


@dataclass(frozen=True)
class CSFConfig:
    """Tuning of the circular filter."""

    process_noise_phase: float = 0.5  # h² per day
    process_noise_tau: float = 0.005
    measurement_kappa_base: float = 1.5  # Concentration of a weight-1 anchor
    tau_prior: float = 24.5  # Hours
    tau_prior_var: float = 0.5
    tau_prior_noise: TauPriorNoise = field(default_factory=TauPriorNoise)
    gate_threshold: float = 3.5  # Mahalanobis distance
    max_correction_per_step: float = 2.0  # Hours


DEFAULT_CSF_CONFIG = CSFConfig()


@dataclass
class ForwardPass:
    states: list[CSFState] = field(default_factory=list)  # One per day
    gated_count: int = 0


def von_mises_update(
    prior_phase: float, prior_kappa: float, measurement: float, measurement_kappa: float
) -> tuple[float, float]:
    """
    Combine two von Mises estimates of a clock hour.

    Each estimate is a vector of length kappa at its angle on the 24h circle;
    the posterior is their sum.

    Returns:
        (phase in (-12, 12], concentration)
    """
    scale = 2 * math.pi / HOURS_PER_DAY

    c = prior_kappa * math.cos(prior_phase * scale) + measurement_kappa * math.cos(measurement * scale)
    s = prior_kappa * math.sin(prior_phase * scale) + measurement_kappa * math.sin(measurement * scale)

    return math.atan2(s, c) / scale, max(math.hypot(c, s), MIN_KAPPA)


def initialize_state(first_anchor: Anchor, first_day: int, config: CSFConfig = DEFAULT_CSF_CONFIG) -> CSFState:
    """
    State on `first_day`, taken from the segment's first anchor.

    When the first anchor comes later than `first_day`, its phase is walked
    back at the prior drift.
    """
    drift = config.tau_prior - HOURS_PER_DAY
    return CSFState(
        phase=first_anchor.midpoint_hour - drift * (first_anchor.day_number - first_day),
        tau=config.tau_prior,
        phase_var=1.0,
        tau_var=config.tau_prior_var,
        cov=0.0,
    )


def predict(state: CSFState, config: CSFConfig = DEFAULT_CSF_CONFIG) -> CSFState:
    """Advance one day at the current tau."""
    return CSFState(
        phase=state.phase + state.tau - HOURS_PER_DAY,
        tau=state.tau,
        phase_var=max(MIN_PHASE_VAR, state.phase_var + 2 * state.cov + state.tau_var + config.process_noise_phase),
        tau_var=max(MIN_TAU_VAR, state.tau_var + config.process_noise_tau),
        cov=min(state.cov + state.tau_var, MAX_PREDICTED_COV),
    )


def update_prior(state: CSFState, config: CSFConfig = DEFAULT_CSF_CONFIG) -> CSFState:
    """
    Pull tau toward the prior as a pseudo-measurement.

    The pull is strongest for advancing drift, weaker for drift faster than
    the prior, and weakest in between.
    """
    drift = state.tau - HOURS_PER_DAY
    prior_drift = config.tau_prior - HOURS_PER_DAY
    noise = config.tau_prior_noise

    if drift < 0:
        r = noise.advancing
    elif drift > prior_drift:
        r = noise.beyond_prior
    else:
        r = noise.within_prior

    gain = state.tau_var / (state.tau_var + r)
    return replace(
        state,
        tau=clamp(state.tau + gain * (config.tau_prior - state.tau), TAU_MIN, TAU_MAX),
        tau_var=max(MIN_TAU_VAR, (1 - gain) * state.tau_var),
        cov=(1 - gain) * state.cov,
    )


def update(predicted: CSFState, anchor: Anchor, config: CSFConfig = DEFAULT_CSF_CONFIG) -> CSFState | None:
    """
    Fuse one anchor into the predicted state.

    The anchor is snapped to the branch nearest the prediction and gated on
    its Mahalanobis distance. Both the phase correction and the residual
    driving tau are clamped to `max_correction_per_step`.

    Returns:
        The updated state, or None when the anchor is gated
    """
    measurement_kappa = max(MIN_KAPPA, config.measurement_kappa_base * anchor.weight)
    prior_kappa = max(MIN_KAPPA, 1 / max(predicted.phase_var, MIN_PHASE_VAR))

    measurement = resolve_ambiguity(anchor.midpoint_hour, predicted.phase)
    residual = circular_diff(measurement, predicted.phase)
    innovation_var = max(MIN_PHASE_VAR, predicted.phase_var + 1 / measurement_kappa)

    if residual * residual / innovation_var > config.gate_threshold**2:
        return None

    predicted_hour = normalize_hour(predicted.phase)
    posterior_hour, posterior_kappa = von_mises_update(
        predicted_hour, prior_kappa, normalize_hour(measurement), measurement_kappa
    )

    limit = config.max_correction_per_step
    correction = clamp(circular_diff(posterior_hour, predicted_hour), -limit, limit)

    gain = predicted.cov / innovation_var
    tau = predicted.tau + gain * clamp(residual, -limit, limit)
    if not math.isfinite(tau):
        tau = predicted.tau

    return CSFState(
        phase=predicted.phase + correction,
        tau=clamp(tau, TAU_MIN, TAU_MAX),
        phase_var=max(MIN_PHASE_VAR, 1 / max(posterior_kappa, MIN_KAPPA)),
        tau_var=max(MIN_TAU_VAR, predicted.tau_var - gain * predicted.cov),
        cov=min(predicted.cov - gain * innovation_var, MAX_UPDATED_COV),
    )


def forward_pass(
    anchors: list[Anchor], first_day: int, last_day: int, config: CSFConfig = DEFAULT_CSF_CONFIG
) -> ForwardPass:
    """
    Filter one state per day from `first_day` through `last_day` inclusive.

    Every day is predicted, updated with its anchor if it has one, and then
    pulled toward the tau prior.
    """
    anchor_by_day = {a.day_number: a for a in anchors}

    state = initialize_state(anchors[0], first_day, config)
    fwd = ForwardPass(states=[state])

    for day in range(first_day + 1, last_day + 1):
        state = predict(state, config)

        anchor = anchor_by_day.get(day)
        if anchor is not None:
            updated = update(state, anchor, config)
            if updated is None:
                fwd.gated_count += 1
            else:
                state = updated

        state = update_prior(state, config)
        fwd.states.append(state)

    return fwd


def rts_smooth(states: list[CSFState], config: CSFConfig = DEFAULT_CSF_CONFIG) -> list[SmoothedState]:
    """
    Backward pass over the filtered states.

    A scalar gain (filtered phase variance over predicted variance, kept
    within [0.1, 0.95]) blends each day toward the next day's smoothed
    estimate. The last day keeps its filtered values.
    """
    if not states:
        return []

    smoothed = [
        SmoothedState(
            **asdict(s),
            smoothed_phase=s.phase,
            smoothed_tau=s.tau,
            smoothed_phase_var=s.phase_var,
            smoothed_tau_var=s.tau_var,
        )
        for s in states
    ]

    for t in range(len(states) - 2, -1, -1):
        curr = states[t]
        nxt = smoothed[t + 1]

        predicted_var = max(MIN_PHASE_VAR, curr.phase_var + 2 * curr.cov + curr.tau_var + config.process_noise_phase)
        gain = clamp(curr.phase_var / predicted_var, MIN_SMOOTHER_GAIN, MAX_SMOOTHER_GAIN)

        expected_phase = curr.phase + curr.tau - HOURS_PER_DAY
        tau = curr.tau + gain * (nxt.smoothed_tau - curr.tau)
        if not math.isfinite(tau):
            tau = curr.tau

        smoothed[t] = replace(
            smoothed[t],
            smoothed_phase=curr.phase + gain * circular_diff(nxt.smoothed_phase, expected_phase),
            smoothed_tau=clamp(tau, TAU_MIN, TAU_MAX),
            smoothed_phase_var=max(MIN_PHASE_VAR, curr.phase_var * (1 - gain)),
            smoothed_tau_var=max(MIN_TAU_VAR, curr.tau_var * (1 - gain)),
        )

    return smoothed

"""
Forward Kalman pass over one segment.

Model: phase(t+1) = phase(t) + drift(t), drift(t+1) = drift(t), with only
phase observed. One step per calendar day; days without a usable observation
are predict-only.
"""

from dataclasses import dataclass, field

from ..circadian_math import clamp, resolve_ambiguity, unwrap_near
from .linalg import Covariance, State, measurement_update
from .observations import Observation

DRIFT_MIN = -1.5  # Hours/day
DRIFT_MAX = 3.0
DEGENERATE_DENOMINATOR = 1e-10


@dataclass(frozen=True)
class KalmanConfig:
    """Tuning of the phase/drift filter."""

    q_phase: float = 0.06  # Process noise for phase (h²)
    q_drift: float = 0.003  # Process noise for drift (h²/day²)
    r_base: float = 3.0  # Base measurement noise (h²)
    gate_threshold: float = 3.5  # Mahalanobis distance
    init_window: int = 7  # Observations used to initialize
    default_drift_prior: float = 0.7  # Hours/day, typical free-running drift
    init_p_phase: float = 4.0  # Initial phase variance (h²)
    init_p_drift: float = 0.25  # Initial drift variance (h²/day²)
    no_data_phase: float = 12.0  # Phase prior with nothing to initialize from


DEFAULT_KALMAN_CONFIG = KalmanConfig()


@dataclass
class ForwardPass:
    """Everything the RTS smoother and the output stage need from the forward pass."""

    predicted_states: list[State] = field(default_factory=list)
    predicted_covs: list[Covariance] = field(default_factory=list)
    filtered_states: list[State] = field(default_factory=list)
    filtered_covs: list[Covariance] = field(default_factory=list)
    gated_count: int = 0
    observation_count: int = 0
    innovations: list[float] = field(default_factory=list)  # |innovation| of accepted updates

    @property
    def mean_innovation(self) -> float:
        return sum(self.innovations) / len(self.innovations) if self.innovations else 0.0


def gate(state: State, cov: Covariance, z: float, r: float, threshold: float) -> bool:
    """True when the observation is too far from the prediction to trust."""
    innovation = z - state.phase
    return innovation * innovation / (cov.p00 + r) > threshold * threshold


def initialize_state(
    observations: dict[int, Observation],
    first_day: int,
    config: KalmanConfig = DEFAULT_KALMAN_CONFIG,
) -> tuple[State, Covariance]:
    """
    Prior for the day before `first_day`.

    Uses up to `init_window` observations found within the first
    2 * init_window + 1 days, fit by 1/R-weighted least squares. The prior is
    placed one day early so the first predict step lands on `first_day`.
    """
    init_obs: list[Observation] = []
    for d in range(first_day, first_day + config.init_window * 2 + 1):
        if len(init_obs) >= config.init_window:
            break
        if d in observations:
            init_obs.append(observations[d])

    prior_day = first_day - 1
    drift = config.default_drift_prior

    if not init_obs:
        return (
            State(config.no_data_phase, drift),
            Covariance(config.init_p_phase * 4, 0.0, config.init_p_drift * 4),
        )

    if len(init_obs) == 1:
        obs = init_obs[0]
        return (
            State(obs.midpoint_hour - drift * (obs.day_number - prior_day), drift),
            Covariance(config.init_p_phase, 0.0, config.init_p_drift),
        )

    sw = sx = sy = sxx = sxy = 0.0
    prev_y: float | None = None
    for obs in init_obs:
        w = 1 / obs.r
        x = obs.day_number
        y = obs.midpoint_hour if prev_y is None else unwrap_near(obs.midpoint_hour, prev_y)
        prev_y = y
        sw += w
        sx += w * x
        sy += w * y
        sxx += w * x * x
        sxy += w * x * y

    denom = sw * sxx - sx * sx
    if abs(denom) < DEGENERATE_DENOMINATOR:
        slope = drift
        intercept = sy / sw
    else:
        slope = (sw * sxy - sx * sy) / denom
        intercept = (sy * sxx - sx * sxy) / denom

    slope = clamp(slope, DRIFT_MIN, DRIFT_MAX)

    return (
        State(intercept + slope * prior_day, slope),
        Covariance(config.init_p_phase, 0.0, config.init_p_drift),
    )


def run_forward_pass(
    observations: dict[int, Observation],
    first_day: int,
    data_days: int,
    total_days: int,
    config: KalmanConfig = DEFAULT_KALMAN_CONFIG,
) -> ForwardPass:
    """
    Predict/update once per day from `first_day` through the forecast horizon.

    Observations are used on data days only. Each is snapped to the branch
    nearest the predicted phase, then either gated (counted, not applied) or
    applied as a scalar update.
    """
    state, cov = initialize_state(observations, first_day, config)
    fwd = ForwardPass()

    for local_day in range(total_days + 1):
        state = state.predict()
        cov = cov.predict(config.q_phase, config.q_drift)
        fwd.predicted_states.append(state)
        fwd.predicted_covs.append(cov)

        obs = observations.get(first_day + local_day) if local_day <= data_days else None
        if obs is not None:
            fwd.observation_count += 1
            z = resolve_ambiguity(obs.midpoint_hour, state.phase)

            if gate(state, cov, z, obs.r, config.gate_threshold):
                fwd.gated_count += 1
            else:
                state, cov, innovation = measurement_update(state, cov, z, obs.r)
                fwd.innovations.append(abs(innovation))

        fwd.filtered_states.append(state)
        fwd.filtered_covs.append(cov)

    return fwd

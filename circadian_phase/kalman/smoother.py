"""Rauch-Tung-Striebel backward smoother for the phase/drift filter."""

from .filter import ForwardPass
from .linalg import Covariance, State


def rts_smooth(fwd: ForwardPass) -> tuple[list[State], list[Covariance]]:
    """
    Refine filtered estimates with later observations.

    G = P_f[t] F^T P_p[t+1]^-1
    x_s[t] = x_f[t] + G (x_s[t+1] - x_p[t+1])
    P_s[t] = P_f[t] + G (P_s[t+1] - P_p[t+1]) G^T

    A singular predicted covariance leaves that step's filtered estimate.

    Returns:
        (smoothed states, smoothed covariances), one per day
    """
    n = len(fwd.filtered_states)
    if n == 0:
        return [], []

    states = list(fwd.filtered_states)
    covs = list(fwd.filtered_covs)

    for t in range(n - 2, -1, -1):
        p_pred_inv = fwd.predicted_covs[t + 1].invert()
        if p_pred_inv is None:
            continue

        gain = fwd.filtered_covs[t].times_transition_transpose().times_symmetric(p_pred_inv)
        states[t] = fwd.filtered_states[t] + gain.apply(states[t + 1] - fwd.predicted_states[t + 1])
        covs[t] = fwd.filtered_covs[t] + gain.sandwich(covs[t + 1] - fwd.predicted_covs[t + 1])

    return states, covs

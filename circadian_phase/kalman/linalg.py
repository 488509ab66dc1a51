"""
Fixed-size algebra for the two-state phase/drift model.

The transition matrix is F = [[1, 1], [0, 1]] (phase advances by drift each
day) and only phase is observed (H = [1, 0]), so every product the filter and
smoother need has a short closed form.
"""

from dataclasses import dataclass

SINGULAR_DETERMINANT = 1e-12


@dataclass(frozen=True)
class State:
    """[phase, drift]: phase in hours since the epoch, drift in hours/day."""

    phase: float
    drift: float

    def predict(self) -> "State":
        return State(self.phase + self.drift, self.drift)

    def __add__(self, other: "State") -> "State":
        return State(self.phase + other.phase, self.drift + other.drift)

    def __sub__(self, other: "State") -> "State":
        return State(self.phase - other.phase, self.drift - other.drift)


@dataclass(frozen=True)
class Covariance:
    """Symmetric 2x2 matrix [[p00, p01], [p01, p11]]."""

    p00: float
    p01: float
    p11: float

    @property
    def determinant(self) -> float:
        return self.p00 * self.p11 - self.p01 * self.p01

    def predict(self, q_phase: float, q_drift: float) -> "Covariance":
        """F P F^T + diag(q_phase, q_drift)."""
        return Covariance(
            p00=self.p00 + 2 * self.p01 + self.p11 + q_phase,
            p01=self.p01 + self.p11,
            p11=self.p11 + q_drift,
        )

    def invert(self) -> "Covariance | None":
        """Inverse, or None when |det| < 1e-12."""
        det = self.determinant
        if abs(det) < SINGULAR_DETERMINANT:
            return None
        return Covariance(self.p11 / det, -self.p01 / det, self.p00 / det)

    def times_transition_transpose(self) -> "Matrix2":
        """P F^T (not symmetric)."""
        return Matrix2(self.p00 + self.p01, self.p01, self.p01 + self.p11, self.p11)

    def __add__(self, other: "Covariance") -> "Covariance":
        return Covariance(self.p00 + other.p00, self.p01 + other.p01, self.p11 + other.p11)

    def __sub__(self, other: "Covariance") -> "Covariance":
        return Covariance(self.p00 - other.p00, self.p01 - other.p01, self.p11 - other.p11)


@dataclass(frozen=True)
class Matrix2:
    """General 2x2 matrix [[a00, a01], [a10, a11]]."""

    a00: float
    a01: float
    a10: float
    a11: float

    def times_symmetric(self, s: Covariance) -> "Matrix2":
        return Matrix2(
            a00=self.a00 * s.p00 + self.a01 * s.p01,
            a01=self.a00 * s.p01 + self.a01 * s.p11,
            a10=self.a10 * s.p00 + self.a11 * s.p01,
            a11=self.a10 * s.p01 + self.a11 * s.p11,
        )

    def apply(self, v: State) -> State:
        return State(
            self.a00 * v.phase + self.a01 * v.drift,
            self.a10 * v.phase + self.a11 * v.drift,
        )

    def sandwich(self, s: Covariance) -> Covariance:
        """G S G^T, returned as its symmetric upper triangle."""
        gs = self.times_symmetric(s)
        return Covariance(
            p00=gs.a00 * self.a00 + gs.a01 * self.a01,
            p01=gs.a00 * self.a10 + gs.a01 * self.a11,
            p11=gs.a10 * self.a10 + gs.a11 * self.a11,
        )


def measurement_update(
    state: State, cov: Covariance, z: float, r: float
) -> tuple[State, Covariance, float]:
    """
    Scalar phase measurement update.

    Args:
        state: Predicted state
        cov: Predicted covariance
        z: Observed phase (already on the predicted branch)
        r: Measurement noise variance

    Returns:
        (updated state, updated covariance, innovation)
    """
    innovation = z - state.phase
    s = cov.p00 + r
    k0 = cov.p00 / s
    k1 = cov.p01 / s

    updated = State(state.phase + k0 * innovation, state.drift + k1 * innovation)
    updated_cov = Covariance(
        p00=cov.p00 - k0 * cov.p00,
        p01=cov.p01 - k0 * cov.p01,
        p11=cov.p11 - k1 * cov.p01,
    )
    return updated, updated_cov, innovation

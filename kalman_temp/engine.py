"""
Kalman Engine
=============

Predict/correct recursion over immutable state values.

    PREDICT:  x̂(k|k-1) = F(dt)·x̂(k-1) + G(dt, u)
              P(k|k-1) = F(dt)·P(k-1)·F(dt)ᵀ + Q(dt)

    CORRECT:  ν = z − H·x̂(k|k-1)
              S = H·P(k|k-1)·Hᵀ + R
              K = P(k|k-1)·Hᵀ·S⁻¹
              x̂(k|k) = x̂(k|k-1) + K·ν
              P(k|k) = (I − K·H)·P(k|k-1)

The covariance update is evaluated in Joseph form,
(I−KH)·P·(I−KH)ᵀ + K·R·Kᵀ, which equals (I−KH)·P for the optimal gain
and keeps P symmetric PSD under round-off.

States are never modified: ``predict`` returns a new
:class:`PredictedState`, ``correct`` accepts only a ``PredictedState`` and
returns a new :class:`CorrectedState`. Correcting twice without an
intervening predict is a ``TypeError``.

License: AGPL-3.0-or-later
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .diagnostics import Diagnostics, evaluate_innovation
from .errors import InvalidObservation, SingularCovariance
from .linalg import lu_factor, lu_solve, symmetrize
from .models import Drive, LinearStateModel, check_timestep


def _read_only(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=float)
    a.setflags(write=False)
    return a


# ===== STATE VALUES =====

@dataclass(frozen=True, eq=False)
class GaussianState:
    """Mean, covariance and step index. Arrays are read-only copies."""
    mean: np.ndarray
    covariance: np.ndarray
    index: int = 0

    def __post_init__(self):
        mean = _read_only(np.ravel(self.mean))
        cov = _read_only(np.atleast_2d(self.covariance))
        n = mean.shape[0]
        if cov.shape != (n, n):
            raise ValueError(f"Covariance shape {cov.shape} does not match state dimension {n}")
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "covariance", cov)

    @property
    def dimension(self) -> int:
        return int(self.mean.shape[0])

    @property
    def value(self) -> float:
        """Observed (first) component of the mean."""
        return float(self.mean[0])

    @property
    def variance(self) -> float:
        return float(self.covariance[0, 0])


@dataclass(frozen=True, eq=False)
class PredictedState(GaussianState):
    """Output of predict; the only valid input of correct."""


@dataclass(frozen=True, eq=False)
class CorrectedState(GaussianState):
    """Output of correct or of initialisation (``diagnostics`` is None then)."""
    diagnostics: Optional[Diagnostics] = None


def _observation_vector(observation, k: int) -> np.ndarray:
    try:
        z = np.atleast_1d(np.asarray(observation, dtype=float)).ravel()
    except (TypeError, ValueError) as exc:
        raise InvalidObservation(f"Observation is not numeric: {observation!r}",
                                 value=observation) from exc
    if z.shape[0] != k:
        raise InvalidObservation(f"Expected {k} observed value(s), got {z.shape[0]}",
                                 value=observation)
    if not np.all(np.isfinite(z)):
        raise InvalidObservation(f"Observation must be finite, got {observation!r}",
                                 value=observation)
    return z


# ===== ENGINE =====

class KalmanEngine:
    """Stateless executor of the Kalman recursion for one model."""

    def __init__(self, model: LinearStateModel):
        self.model = model
        self._H = model.observation_matrix()
        self._R = model.observation_noise()

    def __repr__(self):
        return f"KalmanEngine({self.model!r})"

    def initialize(self, value: float) -> CorrectedState:
        """Initial state anchored on a first observation."""
        z = _observation_vector(value, 1)
        return CorrectedState(self.model.initial_mean(z[0]),
                              self.model.initial_covariance(), index=0)

    def predict(self, state: GaussianState, dt: float, u: Drive = None) -> PredictedState:
        """Propagate ``state`` forward by ``dt`` seconds.

        Raises:
            InvalidTimestep: ``dt`` negative or not finite.
        """
        dt = check_timestep(dt)
        self._check_dimension(state)
        F = self.model.transition(dt)
        G = self.model.drive(dt, u)
        Q = self.model.process_noise(dt)

        x = F @ state.mean + G
        P = symmetrize(F @ state.covariance @ F.T + Q)
        return PredictedState(x, P, index=state.index)

    def correct(self, state: PredictedState, observation) -> CorrectedState:
        """Fuse ``observation`` into a predicted state.

        Raises:
            TypeError: ``state`` is not a PredictedState.
            InvalidObservation: observation not finite / wrong size.
            SingularCovariance: S not invertible or non-finite result.
        """
        if not isinstance(state, PredictedState):
            raise TypeError(
                f"correct() requires a PredictedState, got {type(state).__name__}; "
                "call predict() first")
        self._check_dimension(state)

        H, R = self._H, self._R
        z = _observation_vector(observation, H.shape[0])
        x, P = state.mean, state.covariance

        y = z - H @ x
        S = symmetrize(H @ P @ H.T + R)
        factor = lu_factor(S)
        diagnostics = evaluate_innovation(y, S, factor)

        # K = P·Hᵀ·S⁻¹ = (S⁻¹·H·P)ᵀ since P and S are symmetric
        K = lu_solve(factor, H @ P).T

        x_new = x + K @ y
        I_KH = np.eye(state.dimension) - K @ H
        P_new = symmetrize(I_KH @ P @ I_KH.T + K @ R @ K.T)

        if not (np.all(np.isfinite(x_new)) and np.all(np.isfinite(P_new))):
            raise SingularCovariance("Correction produced a non-finite state")

        return CorrectedState(x_new, P_new, index=state.index + 1, diagnostics=diagnostics)

    def step(self, state: GaussianState, dt: float, observation,
             u: Drive = None) -> CorrectedState:
        """Predict by ``dt`` then correct with ``observation``."""
        return self.correct(self.predict(state, dt, u), observation)

    def _check_dimension(self, state: GaussianState) -> None:
        if state.dimension != self.model.dimension:
            raise ValueError(
                f"State dimension {state.dimension} does not match model "
                f"dimension {self.model.dimension}")


__all__ = ["GaussianState", "PredictedState", "CorrectedState", "KalmanEngine"]

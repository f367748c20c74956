"""
Linear State Models
===================

Discrete linear-Gaussian state-space descriptions whose matrices depend on
the elapsed time ``dt`` (seconds) since the previous step:

    x(k+1) = F(dt)·x(k) + G(dt, u) + w,   w ~ N(0, Q(dt))
    z(k)   = H·x(k) + v,                  v ~ N(0, R)

Three instantiations, selected by :class:`NoiseModel`:

  RANDOM_WALK : [value, rate], rate noise σ = q·√τ scaled into the value
                component with a fixed correlation factor
  CWAN        : [value, rate], continuous white acceleration noise
                integrated over τ: q²·[[τ³/3, τ²/2], [τ²/2, τ]]
  THERMAL_RC  : [T_in, T_mass, Q_bias], 3R2C building model with
                exogenous drive u = (t_out, q_heat)

For the two-state models τ = dt / rate_unit, so with the default
``rate_unit=60`` the rate component is expressed per minute and q in
quantity per minute^1.5.

dt = 0 always gives F = I, G = 0, Q = 0.

License: AGPL-3.0-or-later
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigError, InvalidTimestep

Drive = Union[None, Sequence[float], Mapping[str, float]]


class NoiseModel(Enum):
    RANDOM_WALK = "random_walk"
    CWAN = "cwan"
    THERMAL_RC = "thermal_rc"


def check_timestep(dt: float) -> float:
    """Return ``dt`` as float; raise InvalidTimestep if negative or not finite."""
    dt = float(dt)
    if not math.isfinite(dt):
        raise InvalidTimestep(f"Elapsed time must be finite, got {dt}", dt=dt)
    if dt < 0.0:
        raise InvalidTimestep(f"Elapsed time is negative ({dt} s): clock went backwards", dt=dt)
    return dt


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _positive(name: str, value: float) -> None:
    _require(math.isfinite(value) and value > 0.0, f"{name} must be a finite value > 0, got {value}")


def _non_negative(name: str, value: float) -> None:
    _require(math.isfinite(value) and value >= 0.0, f"{name} must be a finite value >= 0, got {value}")


# ===== MATRIX BUILDERS =====

def make_random_walk_matrices(dt: float, q: float, rate_unit: float = 60.0,
                              correlation: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Random walk on rate: state = [value, rate].

    Returns:
        F (2×2), Q (2×2)
    """
    tau = dt / rate_unit
    F = np.array([[1.0, tau],
                  [0.0, 1.0]])

    rate_noise = q * math.sqrt(tau)
    value_noise = rate_noise * tau
    cross = correlation * value_noise * rate_noise
    Q = np.array([[value_noise ** 2, cross],
                  [cross, rate_noise ** 2]])
    return F, Q


def make_cwan_matrices(dt: float, q: float, rate_unit: float = 60.0) -> Tuple[np.ndarray, np.ndarray]:
    """Continuous white acceleration noise: state = [value, rate].

    Returns:
        F (2×2), Q (2×2)
    """
    tau = dt / rate_unit
    F = np.array([[1.0, tau],
                  [0.0, 1.0]])

    q2 = q ** 2
    Q = np.array([[q2 * tau ** 3 / 3.0, q2 * tau ** 2 / 2.0],
                  [q2 * tau ** 2 / 2.0, q2 * tau]])
    return F, Q


def make_thermal_rc_matrices(dt: float, r1: float, r3: float, ci: float, cm: float,
                             sigma: Tuple[float, float, float]) -> Tuple[np.ndarray, np.ndarray]:
    """Forward-Euler 3R2C model: state = [T_in, T_mass, Q_bias].

    The state-dependent T_mass term lives in F; the pure outside-temperature
    drive belongs to G (see :meth:`ThermalRCModel.drive`).

    Returns:
        F (3×3), Q (3×3)
    """
    F = np.array([
        [1.0 - dt / (r1 * ci), dt / (r1 * ci), dt / ci],
        [dt / (r1 * cm), 1.0 - dt / (r1 * cm) - dt / (r3 * cm), 0.0],
        [0.0, 0.0, 1.0],
    ])
    dt_min = dt / 60.0
    Q = np.diag([s ** 2 * dt_min for s in sigma])
    return F, Q


# ===== MODEL INTERFACE =====

class LinearStateModel(ABC):
    """Interface of a time-varying linear-Gaussian model.

    Implementations are immutable; every method is a pure function of its
    arguments.
    """

    kind: NoiseModel
    r: float
    q: float

    @property
    @abstractmethod
    def dimension(self) -> int:
        """State dimension n."""

    @abstractmethod
    def transition(self, dt: float) -> np.ndarray:
        """F(dt), n×n."""

    @abstractmethod
    def process_noise(self, dt: float) -> np.ndarray:
        """Q(dt), n×n symmetric PSD."""

    def drive(self, dt: float, u: Drive = None) -> np.ndarray:
        """G(dt, u); zero vector for models without exogenous input."""
        check_timestep(dt)
        return np.zeros(self.dimension)

    def observation_matrix(self) -> np.ndarray:
        """H selects the first state component."""
        H = np.zeros((1, self.dimension))
        H[0, 0] = 1.0
        return H

    def observation_noise(self) -> np.ndarray:
        return np.array([[self.r ** 2]])

    @abstractmethod
    def initial_mean(self, value: float) -> np.ndarray:
        """Natural zero-state anchored at ``value``."""

    @abstractmethod
    def initial_covariance(self) -> np.ndarray:
        """Initial P."""

    def with_process_noise(self, q: float) -> "LinearStateModel":
        """Copy of this model with a different process-noise parameter."""
        return replace(self, q=q)


@dataclass(frozen=True)
class _KinematicModel(LinearStateModel):
    """Shared [value, rate] layout of the random-walk and CWAN models."""

    r: float = 0.2
    q: float = 0.001
    rate_unit: float = 60.0
    initial_value_std: float = 10.0
    initial_rate_std: float = 10.0

    def __post_init__(self):
        _positive("r", self.r)
        _non_negative("q", self.q)
        _positive("rate_unit", self.rate_unit)
        _positive("initial_value_std", self.initial_value_std)
        _positive("initial_rate_std", self.initial_rate_std)

    @property
    def dimension(self) -> int:
        return 2

    def transition(self, dt: float) -> np.ndarray:
        return self._matrices(check_timestep(dt))[0]

    def process_noise(self, dt: float) -> np.ndarray:
        return self._matrices(check_timestep(dt))[1]

    def initial_mean(self, value: float) -> np.ndarray:
        return np.array([float(value), 0.0])

    def initial_covariance(self) -> np.ndarray:
        return np.diag([self.initial_value_std ** 2, self.initial_rate_std ** 2])

    @abstractmethod
    def _matrices(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """(F, Q) for an already validated ``dt``."""


@dataclass(frozen=True)
class RandomWalkModel(_KinematicModel):
    """Random walk on the rate, value noise fully derived from rate noise."""

    correlation: float = 1.0
    kind: NoiseModel = field(default=NoiseModel.RANDOM_WALK, init=False, repr=False)

    def __post_init__(self):
        super().__post_init__()
        _require(math.isfinite(self.correlation) and 0.0 <= self.correlation <= 1.0,
                 f"correlation must be within [0, 1], got {self.correlation}")

    def _matrices(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        return make_random_walk_matrices(dt, self.q, self.rate_unit, self.correlation)


@dataclass(frozen=True)
class CWANModel(_KinematicModel):
    """Continuous white acceleration noise."""

    kind: NoiseModel = field(default=NoiseModel.CWAN, init=False, repr=False)

    def _matrices(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        return make_cwan_matrices(dt, self.q, self.rate_unit)


@dataclass(frozen=True)
class ThermalRCModel(LinearStateModel):
    """3R2C room model: inside air, building mass and an internal-gain bias.

    ``q`` scales all three process-noise sigmas, so the fast copy of a
    thermal model is obtained with :meth:`with_process_noise` like the
    kinematic ones. Exogenous input is ``(t_out, q_heat)`` in °C and W.
    """

    r: float = 0.8
    q: float = 1.0
    r1: float = 0.0016          # K/W, inside air <-> mass
    r3: float = 0.008           # K/W, mass <-> outside
    ci: float = 3.14e6          # J/K, inside air
    cm: float = 10.681e6        # J/K, building mass
    sigma_in: float = 0.08
    sigma_mass: float = 0.08
    sigma_bias: float = 0.005
    initial_bias: float = 800.0
    initial_std: Tuple[float, float, float] = (10.0, 10.0, 1000.0)
    kind: NoiseModel = field(default=NoiseModel.THERMAL_RC, init=False, repr=False)

    def __post_init__(self):
        _positive("r", self.r)
        _non_negative("q", self.q)
        for name in ("r1", "r3", "ci", "cm"):
            _positive(name, getattr(self, name))
        for name in ("sigma_in", "sigma_mass", "sigma_bias"):
            _non_negative(name, getattr(self, name))
        _require(len(self.initial_std) == 3, "initial_std must have 3 entries")
        for s in self.initial_std:
            _positive("initial_std", s)

    @property
    def dimension(self) -> int:
        return 3

    def _matrices(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        sigma = (self.q * self.sigma_in, self.q * self.sigma_mass, self.q * self.sigma_bias)
        return make_thermal_rc_matrices(dt, self.r1, self.r3, self.ci, self.cm, sigma)

    def transition(self, dt: float) -> np.ndarray:
        return self._matrices(check_timestep(dt))[0]

    def process_noise(self, dt: float) -> np.ndarray:
        return self._matrices(check_timestep(dt))[1]

    def drive(self, dt: float, u: Drive = None) -> np.ndarray:
        dt = check_timestep(dt)
        if u is None:
            return np.zeros(3)
        if isinstance(u, Mapping):
            t_out, q_heat = float(u["t_out"]), float(u["q_heat"])
        else:
            t_out, q_heat = (float(v) for v in u)
        return np.array([dt * q_heat / self.ci, dt * t_out / (self.r3 * self.cm), 0.0])

    def initial_mean(self, value: float) -> np.ndarray:
        return np.array([float(value), float(value), self.initial_bias])

    def initial_covariance(self) -> np.ndarray:
        return np.diag([s ** 2 for s in self.initial_std])


def make_model(kind, r: float, q: float, **params) -> LinearStateModel:
    """Build a model from its tag (enum member or its string value)."""
    kind = NoiseModel(kind)
    if kind == NoiseModel.RANDOM_WALK:
        return RandomWalkModel(r=r, q=q, **params)
    if kind == NoiseModel.CWAN:
        return CWANModel(r=r, q=q, **params)
    return ThermalRCModel(r=r, q=q, **params)


__all__ = [
    "NoiseModel", "Drive", "check_timestep",
    "make_random_walk_matrices", "make_cwan_matrices", "make_thermal_rc_matrices",
    "LinearStateModel", "RandomWalkModel", "CWANModel", "ThermalRCModel",
    "make_model",
]

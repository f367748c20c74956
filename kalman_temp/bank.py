"""
Model Bank — Multiple-Model Adaptive Estimation
===============================================

N independent Kalman filters track the same scalar with different
process-noise assumptions (reference bank: "slow" with Q, "fast" with
Q·fast_q_factor, shared R). Model probabilities μ follow a Markov chain
with a constant persistence matrix Π and are re-weighted every step by
each filter's Gaussian log-likelihood:

    μ⁻      = Πᵀ·μ
    w_i     = μ⁻_i · exp(logL_i − max_j logL_j)
    μ       = w / Σw                     (uniform if Σw is 0 or not finite)
    fused   = Σ μ_i · x̂_i[0]
    var     = Σ μ_i · (P_i[0,0] + (x̂_i[0] − fused)²)

The max-subtraction keeps the exponentials in range for very negative
log-likelihoods. Unlike IMM, model states are not mixed: each filter runs
on its own, the Markov prior only lets confidence drift back toward the
model the data currently favours.

License: AGPL-3.0-or-later
"""

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .diagnostics import NISMonitor
from .engine import CorrectedState, KalmanEngine, PredictedState
from .errors import ConfigError, DegenerateLikelihood, SessionNotInitialized
from .models import Drive, LinearStateModel

logger = logging.getLogger(__name__)

SLOW = "slow"
FAST = "fast"


# ===== MARKOV FUSION =====

def persistence_matrix(persistence: Sequence[float]) -> np.ndarray:
    """Markov matrix Π from per-model stay probabilities.

    Row i is "from model i": Π[i, i] = p_i and the complement 1 − p_i is
    split evenly over the other models.
    """
    p = np.asarray(persistence, dtype=float).ravel()
    n = p.shape[0]
    if n == 0:
        raise ConfigError("At least one persistence probability is required")
    if not np.all(np.isfinite(p)) or np.any(p < 0.0) or np.any(p > 1.0):
        raise ConfigError(f"Persistence probabilities must lie in [0, 1], got {p.tolist()}")
    if n == 1:
        return np.ones((1, 1))

    Pi = np.empty((n, n))
    for i in range(n):
        Pi[i, :] = (1.0 - p[i]) / (n - 1)
        Pi[i, i] = p[i]
    return Pi


def markov_prior(Pi: np.ndarray, mu: np.ndarray) -> np.ndarray:
    """Predicted model probabilities Πᵀ·μ."""
    return Pi.T @ mu


def update_model_probabilities(mu: np.ndarray, log_likelihoods: Sequence[float],
                               Pi: np.ndarray) -> Tuple[np.ndarray, bool]:
    """One Bayesian update of μ.

    NaN log-likelihoods count as −inf (model ruled out for this step).

    Returns:
        (new μ, degenerate); ``degenerate`` is True when the update fell
        back to uniform weights.
    """
    mu = np.asarray(mu, dtype=float)
    n = mu.shape[0]
    log_l = np.asarray(log_likelihoods, dtype=float)
    if log_l.shape != (n,):
        raise ValueError(f"Expected {n} log-likelihoods, got shape {log_l.shape}")
    log_l = np.where(np.isnan(log_l), -np.inf, log_l)

    prior = markov_prior(Pi, mu)
    max_log_l = float(np.max(log_l))
    if math.isfinite(max_log_l):
        w = prior * np.exp(log_l - max_log_l)
        total = float(np.sum(w))
        if math.isfinite(total) and total > 0.0:
            return w / total, False

    return np.full(n, 1.0 / n), True


def fuse_estimates(mu: np.ndarray, values: Sequence[float],
                   variances: Sequence[float]) -> Tuple[float, float]:
    """Probability-weighted value and mixture variance."""
    mu = np.asarray(mu, dtype=float)
    x = np.asarray(values, dtype=float)
    fused = float(mu @ x)
    var = float(mu @ (np.asarray(variances, dtype=float) + (x - fused) ** 2))
    return fused, var


# ===== ESTIMATE RECORD =====

@dataclass(frozen=True)
class Estimate:
    """Fused output of a bank update or forecast."""
    value: float
    variance: float
    values: Dict[str, float]
    probabilities: Dict[str, float]
    index: int
    is_forecast: bool = False
    timestamp: Optional[float] = None

    @property
    def std(self) -> float:
        return math.sqrt(max(self.variance, 0.0))

    @property
    def slow_confidence(self) -> float:
        """Probability of the first ("slow") model."""
        return next(iter(self.probabilities.values()))


# ===== MODEL BANK =====

@dataclass
class _Slot:
    name: str
    engine: KalmanEngine
    monitor: NISMonitor
    state: Optional[CorrectedState] = None


class ModelBank:
    """Bank of filters with Markov model-probability fusion.

    Usage:
        bank = ModelBank.slow_fast(RandomWalkModel(r=0.2, q=0.0015),
                                   fast_q_factor=10.0)
        bank.initialize(20.0)
        est = bank.step(20.4, dt=600.0)
        est.value, est.probabilities["fast"]
    """

    def __init__(self, models: Sequence[Tuple[str, LinearStateModel]],
                 persistence: Sequence[float],
                 initial_probabilities: Optional[Sequence[float]] = None,
                 nis_window: int = 20):
        if not models:
            raise ConfigError("ModelBank needs at least one model")
        names = [name for name, _ in models]
        if len(set(names)) != len(names):
            raise ConfigError(f"Model names must be unique, got {names}")
        dims = {m.dimension for _, m in models}
        if len(dims) != 1:
            raise ConfigError("All models in a bank must share the state dimension")
        if len(persistence) != len(models):
            raise ConfigError(
                f"Expected {len(models)} persistence probabilities, got {len(persistence)}")

        self._slots: List[_Slot] = [
            _Slot(name, KalmanEngine(model),
                  NISMonitor(dof=model.observation_matrix().shape[0], window=nis_window))
            for name, model in models
        ]
        self._Pi = persistence_matrix(persistence)
        self._Pi.setflags(write=False)
        self._mu0 = self._check_probabilities(initial_probabilities)
        self._mu = self._mu0.copy()
        self.degenerate_count = 0

    @classmethod
    def slow_fast(cls, model: LinearStateModel, fast_q_factor: float = 1.0,
                  p_slow: float = 0.995, p_fast: float = 0.95,
                  initial_probabilities: Optional[Sequence[float]] = None,
                  nis_window: int = 20) -> "ModelBank":
        """Reference two-model bank; the fast model uses Q·fast_q_factor."""
        if not (math.isfinite(fast_q_factor) and fast_q_factor > 0.0):
            raise ConfigError(f"fast_q_factor must be > 0, got {fast_q_factor}")
        fast = model.with_process_noise(model.q * fast_q_factor)
        return cls([(SLOW, model), (FAST, fast)], [p_slow, p_fast],
                   initial_probabilities, nis_window)

    def _check_probabilities(self, probabilities: Optional[Sequence[float]]) -> np.ndarray:
        n = len(self._slots)
        if probabilities is None:
            return np.full(n, 1.0 / n)
        mu = np.asarray(probabilities, dtype=float).ravel()
        if mu.shape != (n,):
            raise ConfigError(f"Expected {n} initial probabilities, got {mu.shape[0]}")
        total = float(np.sum(mu))
        if not np.all(np.isfinite(mu)) or np.any(mu < 0.0) or not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ConfigError(
                f"Initial probabilities must be non-negative and sum to 1, got {mu.tolist()}")
        return mu / total

    def __repr__(self):
        names = ", ".join(s.name for s in self._slots)
        return f"ModelBank([{names}], initialized={self.initialized})"

    def __len__(self) -> int:
        return len(self._slots)

    # ----- read-only views -----

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._slots]

    @property
    def transition_matrix(self) -> np.ndarray:
        return self._Pi

    @property
    def probabilities(self) -> np.ndarray:
        return self._mu.copy()

    @property
    def initialized(self) -> bool:
        return all(s.state is not None for s in self._slots)

    @property
    def states(self) -> Dict[str, CorrectedState]:
        self._require_initialized()
        return {s.name: s.state for s in self._slots}

    @property
    def monitors(self) -> Dict[str, NISMonitor]:
        return {s.name: s.monitor for s in self._slots}

    def model(self, name: str) -> LinearStateModel:
        for s in self._slots:
            if s.name == name:
                return s.engine.model
        raise KeyError(name)

    # ----- lifecycle -----

    def initialize(self, value: float) -> Estimate:
        """Anchor every model on a first observation; μ back to its initial value."""
        states = [s.engine.initialize(value) for s in self._slots]
        for slot, state in zip(self._slots, states):
            slot.state = state
            slot.monitor.reset()
        self._mu = self._mu0.copy()
        return self._estimate(states, self._mu, is_forecast=False)

    def step(self, value: float, dt: float, u: Drive = None) -> Estimate:
        """Predict every model by ``dt``, correct with ``value``, update μ.

        Atomic: if any model fails (InvalidTimestep, InvalidObservation,
        SingularCovariance) no state and no probability is changed.
        """
        self._require_initialized()
        states = [s.engine.step(s.state, dt, value, u) for s in self._slots]
        log_l = [st.diagnostics.log_likelihood for st in states]

        mu, degenerate = update_model_probabilities(self._mu, log_l, self._Pi)
        if degenerate:
            self.degenerate_count += 1
            logger.debug("Degenerate likelihood fusion, logL=%s", log_l)
            warnings.warn(
                f"Model-probability update degenerate (logL={log_l}); "
                "falling back to uniform weights",
                DegenerateLikelihood, stacklevel=2)

        for slot, state in zip(self._slots, states):
            slot.state = state
            slot.monitor.push(state.diagnostics.nis)
        self._mu = mu
        return self._estimate(states, mu, is_forecast=False)

    def forecast(self, dt: float, u: Drive = None) -> Estimate:
        """Fused prediction ``dt`` seconds past the last correction.

        Works on disposable predicted copies; the bank is not modified.
        """
        self._require_initialized()
        predicted: List[PredictedState] = [s.engine.predict(s.state, dt, u) for s in self._slots]
        return self._estimate(predicted, self._mu.copy(), is_forecast=True)

    def estimate(self) -> Estimate:
        """Fused estimate of the current corrected states."""
        self._require_initialized()
        return self._estimate([s.state for s in self._slots], self._mu, is_forecast=False)

    def release(self) -> None:
        """Drop all filter states."""
        for slot in self._slots:
            slot.state = None
            slot.monitor.reset()
        self._mu = self._mu0.copy()

    # ----- helpers -----

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise SessionNotInitialized("ModelBank has not been initialized")

    def _estimate(self, states, mu: np.ndarray, is_forecast: bool) -> Estimate:
        values = [st.value for st in states]
        fused, var = fuse_estimates(mu, values, [st.variance for st in states])
        names = self.names
        return Estimate(
            value=fused,
            variance=var,
            values=dict(zip(names, values)),
            probabilities=dict(zip(names, (float(m) for m in mu))),
            index=states[0].index,
            is_forecast=is_forecast,
        )


__all__ = [
    "SLOW", "FAST", "persistence_matrix", "markov_prior",
    "update_model_probabilities", "fuse_estimates", "Estimate", "ModelBank",
]

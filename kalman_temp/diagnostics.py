"""
Innovation Diagnostics
======================

Statistics of a correction step, computed from the predicted (pre-update)
covariance:

    ν    = z − H·x̂(k|k-1)                       innovation
    S    = H·P(k|k-1)·Hᵀ + R                    innovation covariance
    NIS  = νᵀ·S⁻¹·ν                             ~ χ²(k) for a consistent filter
    logL = −½·(NIS + k·ln 2π + ln|S|)           Gaussian log-likelihood

NIS and logL are the only numbers the multiple-model layer consumes. A
non-finite value means S is singular for this step and is reported as
:class:`~kalman_temp.errors.SingularCovariance`, never substituted.

Reference: Bar-Shalom, Li, Kirubarajan (2001), §5.4

License: AGPL-3.0-or-later
"""

import math
from collections import deque
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.stats import chi2

from .errors import SingularCovariance
from .linalg import LUFactor, lu_det, lu_factor, lu_solve

LOG_2PI = math.log(2.0 * math.pi)


@dataclass(frozen=True, eq=False)
class Diagnostics:
    """Outcome statistics of one correction step."""
    innovation: np.ndarray
    innovation_covariance: np.ndarray
    nis: float
    log_likelihood: float

    @property
    def dimension(self) -> int:
        return int(self.innovation.shape[0])


def compute_nis(innovation: np.ndarray, S: np.ndarray,
                factor: Optional[LUFactor] = None) -> float:
    """Normalized Innovation Squared νᵀ·S⁻¹·ν."""
    y = np.atleast_1d(np.asarray(innovation, dtype=float))
    factor = factor if factor is not None else lu_factor(S)
    return float(y @ lu_solve(factor, y))


def gaussian_log_likelihood(nis: float, det_S: float, k: int) -> float:
    """log N(ν; 0, S) given the NIS and |S|; −inf for |S| <= 0."""
    if det_S <= 0.0:
        return float("-inf")
    return -0.5 * (nis + k * LOG_2PI + math.log(det_S))


def evaluate_innovation(innovation: np.ndarray, S: np.ndarray,
                        factor: Optional[LUFactor] = None) -> Diagnostics:
    """Build :class:`Diagnostics` for an innovation and its covariance.

    Raises:
        SingularCovariance: S not invertible, not positive definite, or the
            resulting statistics are not finite.
    """
    y = np.array(np.atleast_1d(innovation), dtype=float)
    S = np.array(np.atleast_2d(S), dtype=float)
    if factor is None:
        factor = lu_factor(S)

    det_S = lu_det(factor)
    if not (math.isfinite(det_S) and det_S > 0.0):
        raise SingularCovariance(f"Innovation covariance determinant is {det_S}")

    nis = compute_nis(y, S, factor)
    log_l = gaussian_log_likelihood(nis, det_S, y.shape[0])
    if not (math.isfinite(nis) and math.isfinite(log_l)):
        raise SingularCovariance(f"Non-finite diagnostics: NIS={nis}, logL={log_l}")

    y.setflags(write=False)
    S.setflags(write=False)
    return Diagnostics(innovation=y, innovation_covariance=S, nis=nis, log_likelihood=log_l)


# ===== NIS CONSISTENCY =====

def nis_consistency_bounds(dof: int, n_samples: int,
                           confidence: float = 0.95) -> Tuple[float, float]:
    """Two-sided interval for the mean of ``n_samples`` NIS values.

    n·mean(NIS) ~ χ²(n·dof) when the filter is consistent.
    """
    if n_samples < 1:
        raise ValueError("n_samples must be >= 1")
    total = dof * n_samples
    alpha = 1.0 - confidence
    lo = chi2.ppf(alpha / 2.0, df=total) / n_samples
    hi = chi2.ppf(1.0 - alpha / 2.0, df=total) / n_samples
    return float(lo), float(hi)


class NISMonitor:
    """Sliding-window NIS average with a chi-square consistency check.

    A mean below the interval means the filter is pessimistic (R or Q too
    large); above it, overconfident.
    """

    def __init__(self, dof: int = 1, window: int = 20, confidence: float = 0.95):
        if window < 1:
            raise ValueError("window must be >= 1")
        if not 0.0 < confidence < 1.0:
            raise ValueError("confidence must be within (0, 1)")
        self.dof = dof
        self.window = window
        self.confidence = confidence
        self._history = deque(maxlen=window)

    def push(self, nis: float) -> None:
        self._history.append(float(nis))

    def __len__(self) -> int:
        return len(self._history)

    @property
    def mean(self) -> float:
        if not self._history:
            return float(self.dof)
        return float(np.mean(self._history))

    @property
    def bounds(self) -> Tuple[float, float]:
        return nis_consistency_bounds(self.dof, max(1, len(self._history)), self.confidence)

    @property
    def consistent(self) -> bool:
        """True while the windowed mean NIS lies inside the interval (or no data yet)."""
        if not self._history:
            return True
        lo, hi = self.bounds
        return lo <= self.mean <= hi

    def reset(self) -> None:
        self._history.clear()


__all__ = [
    "LOG_2PI", "Diagnostics", "compute_nis", "gaussian_log_likelihood",
    "evaluate_innovation", "nis_consistency_bounds", "NISMonitor",
]

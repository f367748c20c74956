"""
Fixed-size linear algebra (≤ 3×3)
=================================

Purpose-built routines for the three small matrix shapes the estimation
core needs: 1×1 / 2×2 / 3×3 innovation covariances and 2×2 / 3×3 state
covariances. numpy arrays are the storage; factorisation, determinant and
solve are done here with LU decomposition and partial pivoting so the
behaviour on singular input is explicit.

    A = Pᵀ · L · U        (Doolittle, unit lower-triangular L)
    |A| = sign(P) · Π diag(U)

License: AGPL-3.0-or-later
"""

import numpy as np
from typing import NamedTuple

from .errors import SingularCovariance

MAX_DIMENSION = 3

# Pivot considered zero when |pivot| <= SINGULAR_RTOL * max|A|
SINGULAR_RTOL = 1e-14


class LUFactor(NamedTuple):
    """Packed LU factors: strict lower part is L, upper part (with diagonal) is U."""
    lu: np.ndarray
    perm: np.ndarray
    sign: float


def _as_square(A: np.ndarray) -> np.ndarray:
    A = np.atleast_2d(np.asarray(A, dtype=float))
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {A.shape}")
    if A.shape[0] > MAX_DIMENSION:
        raise ValueError(
            f"Matrix dimension {A.shape[0]} exceeds supported maximum {MAX_DIMENSION}")
    return A


def lu_factor(A: np.ndarray) -> LUFactor:
    """LU-decompose a square matrix with partial (row) pivoting.

    Raises:
        SingularCovariance: non-finite entries or a zero pivot.
    """
    A = _as_square(A)
    if not np.all(np.isfinite(A)):
        raise SingularCovariance("Matrix contains non-finite entries")

    n = A.shape[0]
    lu = A.copy()
    perm = np.arange(n)
    sign = 1.0
    scale = float(np.max(np.abs(A))) if n else 0.0
    if scale == 0.0:
        raise SingularCovariance("Matrix is identically zero")

    for k in range(n):
        p = k + int(np.argmax(np.abs(lu[k:, k])))
        if abs(lu[p, k]) <= SINGULAR_RTOL * scale:
            raise SingularCovariance(f"Zero pivot in column {k}")
        if p != k:
            lu[[k, p]] = lu[[p, k]]
            perm[[k, p]] = perm[[p, k]]
            sign = -sign
        for i in range(k + 1, n):
            lu[i, k] /= lu[k, k]
            lu[i, k + 1:] -= lu[i, k] * lu[k, k + 1:]

    return LUFactor(lu, perm, sign)


def lu_det(factor: LUFactor) -> float:
    """Determinant from packed LU factors."""
    return factor.sign * float(np.prod(np.diag(factor.lu)))


def lu_solve(factor: LUFactor, b: np.ndarray) -> np.ndarray:
    """Solve A·x = b for a vector or for each column of a matrix."""
    lu, perm = factor.lu, factor.perm
    n = lu.shape[0]
    b = np.asarray(b, dtype=float)
    vector = b.ndim == 1
    x = b.reshape(n, -1)[perm].copy()

    # Forward substitution (unit L)
    for i in range(n):
        x[i] -= lu[i, :i] @ x[:i]
    # Back substitution
    for i in range(n - 1, -1, -1):
        x[i] -= lu[i, i + 1:] @ x[i + 1:]
        x[i] /= lu[i, i]

    return x.ravel() if vector else x


def symmetrize(P: np.ndarray) -> np.ndarray:
    """Symmetric part 0.5·(P + Pᵀ); removes round-off asymmetry."""
    P = np.asarray(P, dtype=float)
    return 0.5 * (P + P.T)


__all__ = ["MAX_DIMENSION", "LUFactor", "lu_factor", "lu_det", "lu_solve", "symmetrize"]

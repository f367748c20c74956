"""kalman-temp: scalar Kalman estimation with a slow/fast model bank.

Irregularly sampled sensor streams (room temperature, tank level, ...),
tracked by two filters with different process noise and fused by their
likelihood-driven Markov model probabilities.

Quick Start::

    from kalman_temp import EstimationSession, SessionConfig
    session = EstimationSession(SessionConfig(r=0.2, q=0.0015, fast_q_factor=10))
    session.observe(20.0, 0.0)
    est = session.observe(20.5, 3600.0)
    est.value, est.slow_confidence, session.forecast(3900.0)
"""

__version__ = "1.0.0"
__license__ = "AGPL-3.0-or-later"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from .errors import (
    KalmanTempError,
    ConfigError,
    InvalidObservation,
    InvalidTimestep,
    SingularCovariance,
    SessionStateError,
    SessionNotInitialized,
    SessionClosed,
    KalmanTempWarning,
    DegenerateLikelihood,
)

# ---------------------------------------------------------------------------
# Models & filter core
# ---------------------------------------------------------------------------
from .models import (
    NoiseModel,
    LinearStateModel,
    RandomWalkModel,
    CWANModel,
    ThermalRCModel,
    make_model,
    make_random_walk_matrices,
    make_cwan_matrices,
    make_thermal_rc_matrices,
)
from .engine import (
    GaussianState,
    PredictedState,
    CorrectedState,
    KalmanEngine,
)
from .diagnostics import (
    Diagnostics,
    NISMonitor,
    compute_nis,
    gaussian_log_likelihood,
    nis_consistency_bounds,
)

# ---------------------------------------------------------------------------
# Multiple-model fusion & session
# ---------------------------------------------------------------------------
from .bank import (
    Estimate,
    ModelBank,
    persistence_matrix,
    update_model_probabilities,
    fuse_estimates,
)
from .config import SessionConfig
from .session import EstimationSession, SessionStatus
from .scheduler import ForecastScheduler, EstimationNode

__all__ = [
    # Errors
    "KalmanTempError", "ConfigError", "InvalidObservation", "InvalidTimestep",
    "SingularCovariance", "SessionStateError", "SessionNotInitialized",
    "SessionClosed", "KalmanTempWarning", "DegenerateLikelihood",
    # Models & filter core
    "NoiseModel", "LinearStateModel", "RandomWalkModel", "CWANModel",
    "ThermalRCModel", "make_model", "make_random_walk_matrices",
    "make_cwan_matrices", "make_thermal_rc_matrices",
    "GaussianState", "PredictedState", "CorrectedState", "KalmanEngine",
    "Diagnostics", "NISMonitor", "compute_nis", "gaussian_log_likelihood",
    "nis_consistency_bounds",
    # Fusion & session
    "Estimate", "ModelBank", "persistence_matrix", "update_model_probabilities",
    "fuse_estimates", "SessionConfig", "EstimationSession", "SessionStatus",
    "ForecastScheduler", "EstimationNode",
]

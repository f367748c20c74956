"""
kalman-temp error taxonomy
==========================

Every condition the estimation core can surface derives from
:class:`KalmanTempError`. Rejections (bad observation, clock going
backwards, singular innovation covariance) leave filter state untouched;
the caller decides whether to skip, retry or reinitialise.

Degenerate likelihood fusion is recovered automatically and is reported as
a warning category instead of an exception.

License: AGPL-3.0-or-later
"""


class KalmanTempError(Exception):
    """Base exception for all kalman-temp errors."""


class ConfigError(KalmanTempError, ValueError):
    """Invalid session or model configuration."""


class InvalidObservation(KalmanTempError, ValueError):
    """Observation value is not a finite number."""

    def __init__(self, message: str, *, value=None) -> None:
        self.value = value
        super().__init__(message)


class InvalidTimestep(KalmanTempError, ValueError):
    """Elapsed time is negative or not finite."""

    def __init__(self, message: str, *, dt: float = float("nan")) -> None:
        self.dt = dt
        super().__init__(message)


class SingularCovariance(KalmanTempError, ArithmeticError):
    """Innovation covariance could not be inverted for this step."""


class SessionStateError(KalmanTempError, RuntimeError):
    """Operation not allowed in the current session state."""


class SessionNotInitialized(SessionStateError):
    """No observation has been received yet."""


class SessionClosed(SessionStateError):
    """Session was torn down."""


class KalmanTempWarning(UserWarning):
    """Base warning category for kalman-temp."""


class DegenerateLikelihood(KalmanTempWarning, RuntimeWarning):
    """Model-probability update fell back to uniform weights."""


__all__ = [
    "KalmanTempError",
    "ConfigError",
    "InvalidObservation",
    "InvalidTimestep",
    "SingularCovariance",
    "SessionStateError",
    "SessionNotInitialized",
    "SessionClosed",
    "KalmanTempWarning",
    "DegenerateLikelihood",
]

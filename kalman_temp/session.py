"""
Estimation Session
==================

One logical stream of observations of one quantity.

    UNINITIALIZED --first valid observe()--> TRACKING --close()--> CLOSED

  observe(v, t)   first call anchors every model on ``v`` at ``t``; later
                  calls predict every model to ``t``, correct, update μ
  forecast(t)     fused prediction at ``t >= last observation`` computed on
                  disposable copies of the model states; never mutates
  close()         releases the model bank

Timestamps are in any monotonic unit; ``SessionConfig.time_scale`` converts
them to seconds (1.0 for seconds, 0.001 for milliseconds).

A rejected call (InvalidObservation, InvalidTimestep, SingularCovariance)
leaves the session exactly as it was.

License: AGPL-3.0-or-later
"""

import logging
import math
from dataclasses import replace
from enum import Enum, auto
from typing import Dict, Optional

from .bank import Estimate, ModelBank
from .config import SessionConfig
from .errors import (InvalidObservation, InvalidTimestep, KalmanTempError,
                     SessionClosed, SessionNotInitialized)
from .models import Drive

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    UNINITIALIZED = auto()
    TRACKING = auto()
    CLOSED = auto()


def _as_value(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidObservation(f"Input must be a number, got {value!r}", value=value) from exc
    if not math.isfinite(v):
        raise InvalidObservation(f"Input must be a finite number, got {value!r}", value=value)
    return v


def _as_timestamp(timestamp) -> float:
    try:
        t = float(timestamp)
    except (TypeError, ValueError) as exc:
        raise InvalidTimestep(f"Timestamp must be a number, got {timestamp!r}") from exc
    if not math.isfinite(t):
        raise InvalidTimestep(f"Timestamp must be finite, got {timestamp!r}")
    return t


class EstimationSession:
    """Slow/fast MMAE estimator for a single stream.

    Usage:
        session = EstimationSession(SessionConfig(r=0.2, q=0.0015, fast_q_factor=10))
        session.observe(20.0, 0.0)
        est = session.observe(20.5, 3600.0)
        session.forecast(3900.0)
    """

    def __init__(self, config: Optional[SessionConfig] = None,
                 bank: Optional[ModelBank] = None, name: str = "session"):
        self.config = config if config is not None else SessionConfig()
        self.name = name
        if bank is None:
            bank = ModelBank.slow_fast(
                self.config.build_model(),
                fast_q_factor=self.config.fast_q_factor,
                p_slow=self.config.p_slow,
                p_fast=self.config.p_fast,
                initial_probabilities=self.config.initial_probabilities,
                nis_window=self.config.nis_window,
            )
        self._bank: Optional[ModelBank] = bank
        self._status = SessionStatus.UNINITIALIZED
        self._last_ts: Optional[float] = None
        self.rejected_count = 0

    def __repr__(self):
        return (f"EstimationSession({self.name!r}, status={self._status.name}, "
                f"last_timestamp={self._last_ts})")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ----- state -----

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def bank(self) -> ModelBank:
        self._require_open()
        return self._bank

    @property
    def last_timestamp(self) -> Optional[float]:
        return self._last_ts

    @property
    def step_count(self) -> int:
        """Number of corrections since initialisation."""
        if self._status != SessionStatus.TRACKING:
            return 0
        return self._bank.estimate().index

    @property
    def model_probabilities(self) -> Dict[str, float]:
        bank = self.bank
        return dict(zip(bank.names, (float(m) for m in bank.probabilities)))

    @property
    def slow_confidence(self) -> float:
        return float(self.bank.probabilities[0])

    @property
    def degenerate_count(self) -> int:
        return self.bank.degenerate_count

    @property
    def nis_consistent(self) -> Dict[str, bool]:
        return {name: m.consistent for name, m in self.bank.monitors.items()}

    # ----- operations -----

    def observe(self, value, timestamp, u: Drive = None) -> Estimate:
        """Feed one observation; returns the fused estimate at ``timestamp``.

        Raises:
            InvalidObservation: value not a finite number.
            InvalidTimestep: timestamp earlier than the last observation.
            SingularCovariance: correction failed; state unchanged.
            SessionClosed: after close().
        """
        self._require_open()
        try:
            v = _as_value(value)
            t = _as_timestamp(timestamp)
            if self._status == SessionStatus.UNINITIALIZED:
                est = self._bank.initialize(v)
                self._status = SessionStatus.TRACKING
                logger.info("%s: initialized at %.6g (t=%s)", self.name, v, t)
            else:
                est = self._bank.step(v, self._elapsed(t), u)
        except KalmanTempError as exc:
            self.rejected_count += 1
            logger.debug("%s: observation rejected: %s", self.name, exc)
            raise

        self._last_ts = t
        return replace(est, timestamp=t)

    def forecast(self, timestamp, u: Drive = None) -> float:
        """Fused value predicted at ``timestamp``; the session is not modified."""
        return self.forecast_estimate(timestamp, u).value

    def forecast_estimate(self, timestamp, u: Drive = None) -> Estimate:
        """Full fused forecast record at ``timestamp``.

        Raises:
            SessionNotInitialized: no observation yet.
            InvalidTimestep: ``timestamp`` before the last observation.
        """
        self._require_open()
        if self._status != SessionStatus.TRACKING:
            raise SessionNotInitialized(f"{self.name}: no observation received yet")
        t = _as_timestamp(timestamp)
        est = self._bank.forecast(self._elapsed(t), u)
        return replace(est, timestamp=t)

    def close(self) -> None:
        """Release the model bank. Idempotent."""
        if self._status == SessionStatus.CLOSED:
            return
        if self._bank is not None:
            self._bank.release()
        self._bank = None
        self._status = SessionStatus.CLOSED
        logger.debug("%s: closed", self.name)

    # ----- helpers -----

    def _elapsed(self, t: float) -> float:
        dt = (t - self._last_ts) * self.config.time_scale
        if dt < 0.0:
            raise InvalidTimestep(
                f"Timestamp {t} is before the last observation {self._last_ts}", dt=dt)
        return dt

    def _require_open(self) -> None:
        if self._status == SessionStatus.CLOSED:
            raise SessionClosed(f"{self.name} is closed")


__all__ = ["SessionStatus", "EstimationSession"]

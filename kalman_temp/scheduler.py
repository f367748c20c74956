"""
Periodic Forecasting & Host Adapter
===================================

Event-loop side of an estimation stream:

  ForecastScheduler : one cancelable ``loop.call_later`` slot. Scheduling
                      replaces the pending callback, so at most one forecast
                      is ever pending; ``cancel()`` is synchronous and a
                      cancelled callback never fires.
  EstimationNode    : message-in / message-out wrapper around an
                      EstimationSession. Every accepted input emits the
                      fused estimate and restarts the forecast timer; when
                      the timer expires the node emits a forecast at
                      ``now + lookahead`` and re-arms itself.

Everything runs on one asyncio loop thread; no locks are needed.

License: AGPL-3.0-or-later
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from .bank import Estimate
from .config import SessionConfig
from .errors import KalmanTempError, SessionClosed
from .session import EstimationSession, SessionStatus

logger = logging.getLogger(__name__)


class ForecastScheduler:
    """Single pending, cancelable delayed callback."""

    def __init__(self, interval: float, callback: Callable[[], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        if not interval > 0.0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.interval = float(interval)
        self._callback = callback
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._closed = False
        self.fired_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: Optional[float] = None) -> None:
        """(Re)arm the timer; any pending callback is cancelled first."""
        if self._closed:
            raise SessionClosed("ForecastScheduler is closed")
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        generation = self._generation
        self._handle = loop.call_later(self.interval if delay is None else delay,
                                       self._fire, generation)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        # A callback already dequeued by the loop sees a stale generation
        self._generation += 1

    def close(self) -> None:
        self.cancel()
        self._closed = True

    def _fire(self, generation: int) -> None:
        if self._closed or generation != self._generation:
            return
        self._handle = None
        self.fired_count += 1
        self._callback()


class EstimationNode:
    """Host adapter: messages in, fused estimates and periodic forecasts out.

    Args:
        config: Session configuration (``predict_interval`` and
            ``lookahead`` drive the timer)
        send: Called with each output message
        clock: Timestamp source in session time units
        loop: Event loop for the timer (defaults to the running loop)
    """

    def __init__(self, config: Optional[SessionConfig] = None,
                 send: Optional[Callable[[Dict[str, Any]], None]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 name: str = "kalman-temp"):
        self.config = config if config is not None else SessionConfig()
        self.name = name
        self.session = EstimationSession(self.config, name=name)
        self._send = send if send is not None else (lambda msg: None)
        self._clock = clock
        self.scheduler = ForecastScheduler(self.config.predict_interval, self._on_timer, loop)

    def __repr__(self):
        return f"EstimationNode({self.name!r}, status={self.session.status.name})"

    def on_input(self, msg) -> Optional[Dict[str, Any]]:
        """Handle one input message (mapping with ``payload`` or a bare value).

        Invalid input is logged and dropped; the session and the pending
        forecast are left untouched.
        """
        payload = msg.get("payload") if isinstance(msg, Mapping) else msg
        try:
            est = self.session.observe(payload, self._clock())
        except SessionClosed:
            raise
        except KalmanTempError as exc:
            logger.warning("%s: %s", self.name, exc)
            return None

        out = self._message(est)
        self._send(out)
        self.scheduler.schedule()
        return out

    def close(self) -> None:
        """Cancel the timer and tear the session down."""
        self.scheduler.close()
        self.session.close()

    def _on_timer(self) -> None:
        if self.session.status != SessionStatus.TRACKING:
            return
        try:
            # lookahead is in seconds, the clock in session time units
            horizon = self.config.lookahead / self.config.time_scale
            est = self.session.forecast_estimate(self._clock() + horizon)
        except KalmanTempError as exc:
            logger.warning("%s: scheduled forecast failed: %s", self.name, exc)
            return
        self._send(self._message(est))
        self.scheduler.schedule()

    @staticmethod
    def _message(est: Estimate) -> Dict[str, Any]:
        return {
            "payload": est.value,
            "models": dict(est.values),
            "probabilities": dict(est.probabilities),
            "slow_confidence": est.slow_confidence,
            "timestamp": est.timestamp,
            "forecast": est.is_forecast,
        }


__all__ = ["ForecastScheduler", "EstimationNode"]

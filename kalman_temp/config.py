"""
Session Configuration
=====================

Every tunable of an estimation session in one validated dataclass.
Bounds are checked at construction; a bad value raises
:class:`~kalman_temp.errors.ConfigError` before any filter is built.

Configuration can come from keyword arguments, a mapping (including the
camelCase keys used by flow-editor node definitions: ``R``, ``Q``,
``predictInterval``, ``fastQFactor``, ...) or a YAML file:

    r: 0.2
    q: 0.0015
    fast_q_factor: 10
    predict_interval: 60
    noise_model: cwan

License: AGPL-3.0-or-later
"""

import math
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .models import LinearStateModel, NoiseModel, make_model

# camelCase aliases accepted by SessionConfig.from_dict
_ALIASES = {
    "R": "r",
    "Q": "q",
    "fastQFactor": "fast_q_factor",
    "predictInterval": "predict_interval",
    "pSlow": "p_slow",
    "pFast": "p_fast",
    "noiseModel": "noise_model",
    "initialProbabilities": "initial_probabilities",
    "timeScale": "time_scale",
    "rateUnit": "rate_unit",
    "initialValueStd": "initial_value_std",
    "initialRateStd": "initial_rate_std",
    "nisWindow": "nis_window",
}


@dataclass(frozen=True)
class SessionConfig:
    """Estimation session configuration.

    Attributes:
        r: Observation noise standard deviation (quantity units)
        q: Slow-model process-noise parameter (quantity per rate_unit^1.5)
        fast_q_factor: Fast-model Q multiplier
        predict_interval: Period of scheduled forecasts [s]
        lookahead: Horizon added to "now" for scheduled forecasts [s]
        p_slow: Markov persistence of the slow model
        p_fast: Markov persistence of the fast model
        noise_model: ``random_walk`` or ``cwan``
        initial_probabilities: μ at initialisation (slow, fast)
        time_scale: Seconds per timestamp unit (0.001 for milliseconds)
        rate_unit: Seconds per rate unit (60 → rate per minute)
        correlation: Value/rate noise correlation of the random-walk model
        initial_value_std: Initial std of the value component
        initial_rate_std: Initial std of the rate component
        nis_window: Samples in the NIS consistency window
    """
    r: float = 0.2
    q: float = 0.001
    fast_q_factor: float = 1.0
    predict_interval: float = 60.0
    lookahead: float = 0.0
    p_slow: float = 0.995
    p_fast: float = 0.95
    noise_model: NoiseModel = NoiseModel.RANDOM_WALK
    initial_probabilities: Tuple[float, float] = (0.5, 0.5)
    time_scale: float = 1.0
    rate_unit: float = 60.0
    correlation: float = 1.0
    initial_value_std: float = 10.0
    initial_rate_std: float = 10.0
    nis_window: int = 20

    def __post_init__(self):
        try:
            object.__setattr__(self, "noise_model", NoiseModel(self.noise_model))
        except ValueError as exc:
            raise ConfigError(f"Unknown noise_model {self.noise_model!r}") from exc
        try:
            mu = tuple(float(p) for p in self.initial_probabilities)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"initial_probabilities must be numeric, got {self.initial_probabilities!r}") from exc
        object.__setattr__(self, "initial_probabilities", mu)
        self.validate()

    def validate(self) -> None:
        """Check all bounds; raise ConfigError on the first violation."""
        for name in ("r", "q", "fast_q_factor", "predict_interval", "time_scale",
                     "rate_unit", "initial_value_std", "initial_rate_std"):
            value = getattr(self, name)
            if not _is_number(value) or not math.isfinite(value) or value <= 0.0:
                raise ConfigError(f"{name} must be a finite number > 0, got {value!r}")

        if not _is_number(self.lookahead) or not math.isfinite(self.lookahead) or self.lookahead < 0.0:
            raise ConfigError(f"lookahead must be a finite number >= 0, got {self.lookahead!r}")

        for name in ("p_slow", "p_fast", "correlation"):
            value = getattr(self, name)
            if not _is_number(value) or not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must lie in [0, 1], got {value!r}")

        if self.noise_model == NoiseModel.THERMAL_RC:
            raise ConfigError("thermal_rc sessions need an explicit model; use ModelBank directly")

        mu = self.initial_probabilities
        if len(mu) != 2 or any(not math.isfinite(p) or p < 0.0 for p in mu) \
                or not math.isclose(sum(mu), 1.0, abs_tol=1e-6):
            raise ConfigError(
                f"initial_probabilities must be two non-negative values summing to 1, got {mu!r}")

        if not isinstance(self.nis_window, int) or self.nis_window < 1:
            raise ConfigError(f"nis_window must be an integer >= 1, got {self.nis_window!r}")

    # ----- construction helpers -----

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SessionConfig":
        """Build from a mapping; None values fall back to defaults.

        Unknown keys raise ConfigError.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown configuration key {key!r}")
            if value is None:
                continue
            try:
                if name == "nis_window":
                    value = int(value)
                elif name == "initial_probabilities":
                    value = tuple(float(p) for p in value)
                elif name != "noise_model":
                    value = float(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{key} has an invalid value {value!r}") from exc
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str) -> "SessionConfig":
        """Load from a YAML file (top-level mapping, optional ``session:`` section)."""
        return cls.from_dict(load_yaml_section(path))

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["noise_model"] = self.noise_model.value
        out["initial_probabilities"] = list(self.initial_probabilities)
        return out

    def build_model(self) -> LinearStateModel:
        """Slow model described by this configuration."""
        params = dict(rate_unit=self.rate_unit,
                      initial_value_std=self.initial_value_std,
                      initial_rate_std=self.initial_rate_std)
        if self.noise_model == NoiseModel.RANDOM_WALK:
            params["correlation"] = self.correlation
        return make_model(self.noise_model, self.r, self.q, **params)


def load_yaml_section(path: str) -> Optional[Mapping[str, Any]]:
    """Raw session mapping of a YAML file, keys as written (None for an empty file)."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if isinstance(data, Mapping) and "session" in data:
        data = data["session"]
    return data


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


__all__ = ["SessionConfig", "load_yaml_section"]

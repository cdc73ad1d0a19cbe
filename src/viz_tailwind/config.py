"""Configuration for the visualizer core and its backend client."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .timefmt import DURATION_PRESETS, parse_duration_preset

__all__ = [
    "TIME_JUMP_POLICIES",
    "VizConfig",
    "DEFAULT_CONFIG",
    "resolve_config",
    "config_from_env",
]

logger = logging.getLogger(__name__)

TIME_JUMP_POLICIES = ("none", "clamp", "wrap")


@dataclass(frozen=True)
class VizConfig:
    """Settings shared by the session, the selection manager and the client."""

    backend_url: str = "http://localhost:8000"
    api_token: Optional[str] = None
    request_timeout_s: float = 20.0
    default_speed: float = 1.0
    speed_options: Tuple[float, ...] = (0.5, 1.0, 2.0, 5.0, 10.0)
    focus_window_s: int = 3600
    duration_presets: Tuple[str, ...] = DURATION_PRESETS
    default_preset: str = "1h"
    hotspot_threshold: float = 0.0
    ranking_top_k: int = 50
    flow_top_groups: int = 10
    # Backend bin width, used when no occupancy series tells otherwise
    time_bin_minutes: int = 15
    # How set_time treats values outside the clock bounds
    time_jump_policy: str = "none"
    simulation_weights: Optional[Mapping[str, float]] = None
    simulation_top_k: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend_url", str(self.backend_url).rstrip("/"))
        object.__setattr__(self, "speed_options", tuple(float(s) for s in self.speed_options))
        object.__setattr__(self, "duration_presets", tuple(str(p) for p in self.duration_presets))
        if self.default_speed <= 0:
            raise ValueError("default_speed must be positive")
        if any(s <= 0 for s in self.speed_options):
            raise ValueError("speed_options must all be positive")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive")
        if self.time_bin_minutes <= 0:
            raise ValueError("time_bin_minutes must be positive")
        if self.focus_window_s < 0:
            raise ValueError("focus_window_s must be non-negative")
        if self.time_jump_policy not in TIME_JUMP_POLICIES:
            raise ValueError(
                f"time_jump_policy must be one of {TIME_JUMP_POLICIES}, got '{self.time_jump_policy}'"
            )
        if self.default_preset not in self.duration_presets:
            raise ValueError(f"default_preset '{self.default_preset}' is not a known preset")
        for preset in self.duration_presets:
            parse_duration_preset(preset)
        if self.simulation_weights is not None:
            object.__setattr__(
                self,
                "simulation_weights",
                {str(k): float(v) for k, v in self.simulation_weights.items()},
            )

    @property
    def default_window_s(self) -> int:
        return parse_duration_preset(self.default_preset)


DEFAULT_CONFIG = VizConfig()


def resolve_config(config: Optional[VizConfig]) -> VizConfig:
    """Return a copy of the provided config or the defaults."""

    cfg = config if config is not None else DEFAULT_CONFIG
    return replace(cfg)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default


def config_from_env(base: Optional[VizConfig] = None, **overrides: Any) -> VizConfig:
    """Build a config from ``BACKEND_URL`` and the ``TAILWIND_*`` variables.

    Explicit keyword overrides win over the environment.
    """
    cfg = resolve_config(base)
    values: Dict[str, Any] = {
        "backend_url": os.getenv("BACKEND_URL", cfg.backend_url),
        "api_token": os.getenv("TAILWIND_API_TOKEN", cfg.api_token or "") or None,
        "request_timeout_s": _env_float("TAILWIND_TIMEOUT_S", cfg.request_timeout_s),
        "time_jump_policy": os.getenv("TAILWIND_TIME_JUMP_POLICY", cfg.time_jump_policy).strip().lower(),
    }
    values.update(overrides)
    return replace(cfg, **values)

"""The single simulation clock shared by every view of a session."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

__all__ = ["SimulationClock"]

logger = logging.getLogger(__name__)


@dataclass
class SimulationClock:
    """Current simulation time, playable bounds, speed and play state.

    Times are seconds since local midnight. ``advance`` loops back to
    ``min_time`` once the clock runs past ``max_time``; ``set_time`` follows
    ``jump_policy``:

    - ``"none"``: store the value as given,
    - ``"clamp"``: clamp into the bounds,
    - ``"wrap"``: fold into the bounds as ``advance`` does.
    """

    current_time: float = 0.0
    min_time: float = 0.0
    max_time: float = 24 * 3600.0
    speed: float = 1.0
    playing: bool = False
    jump_policy: str = "none"

    def __post_init__(self) -> None:
        if self.max_time < self.min_time:
            raise ValueError("max_time must not be earlier than min_time")
        if self.speed <= 0:
            raise ValueError("speed must be positive")
        if self.jump_policy not in ("none", "clamp", "wrap"):
            raise ValueError(f"Unknown jump policy '{self.jump_policy}'")

    @property
    def bounds(self) -> Tuple[float, float]:
        return self.min_time, self.max_time

    def advance(self, elapsed_ms: float) -> float:
        """Move the clock forward by wall-clock ``elapsed_ms`` scaled by speed.

        Overflow past ``max_time`` continues from ``min_time`` with the
        excess carried over, so (0, 100) at 95 advanced by 10 s lands on 5.
        A clock sitting before ``min_time`` after a jump just moves forward.
        """
        if not self.playing:
            return self.current_time
        delta = (float(elapsed_ms) / 1000.0) * self.speed
        t = self.current_time + delta
        if t > self.max_time:
            t = self._wrap(t)
        self.current_time = t
        return self.current_time

    def set_time(self, t: float) -> float:
        t = float(t)
        if self.jump_policy == "clamp":
            t = min(max(t, self.min_time), self.max_time)
        elif self.jump_policy == "wrap":
            t = self._wrap(t)
        elif not (self.min_time <= t <= self.max_time):
            logger.debug("Clock set outside bounds: %s not in [%s, %s]", t, self.min_time, self.max_time)
        self.current_time = t
        return self.current_time

    def set_bounds(self, min_time: float, max_time: float, initial_time: Optional[float] = None) -> None:
        if max_time < min_time:
            raise ValueError("max_time must not be earlier than min_time")
        self.min_time = float(min_time)
        self.max_time = float(max_time)
        if initial_time is not None:
            self.current_time = float(initial_time)

    def set_speed(self, speed: float) -> None:
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.speed = float(speed)

    def set_playing(self, playing: bool) -> None:
        self.playing = bool(playing)

    def toggle(self) -> bool:
        self.playing = not self.playing
        return self.playing

    def _wrap(self, t: float) -> float:
        span = self.max_time - self.min_time
        if span <= 0:
            return self.min_time
        if t > self.max_time:
            return self.min_time + math.fmod(t - self.max_time, span)
        if t < self.min_time:
            return self.max_time - math.fmod(self.min_time - t, span)
        return t

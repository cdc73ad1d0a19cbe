"""Last-request-wins bookkeeping for async backend fetches."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Literal, Optional, TypeVar

from .client import BackendError

__all__ = ["FetchStatus", "FetchResult", "LatestRequestGate"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchStatus = Literal["ok", "empty", "error", "stale"]


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one gated fetch.

    ``error`` and ``empty`` are both unavailable: callers render and select
    nothing for them. ``stale`` results were superseded and must be dropped.
    """

    status: FetchStatus
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status == "ok"

    @property
    def stale(self) -> bool:
        return self.status == "stale"


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


class LatestRequestGate:
    """Tracks a generation number per request channel.

    Every ``run`` on a channel bumps its generation; when the awaited call
    finishes under an older generation its result is reported as stale.
    ``invalidate`` bumps a channel without starting a request, e.g. when the
    selection it depends on changes.
    """

    def __init__(self) -> None:
        self._generations: Dict[str, int] = {}

    def begin(self, channel: str) -> int:
        gen = self._generations.get(channel, 0) + 1
        self._generations[channel] = gen
        return gen

    def is_current(self, channel: str, generation: int) -> bool:
        return self._generations.get(channel, 0) == generation

    def invalidate(self, channel: Optional[str] = None) -> None:
        if channel is None:
            for key in list(self._generations):
                self._generations[key] += 1
            return
        self.begin(channel)

    async def run(self, channel: str, fetch: Callable[[], Awaitable[T]]) -> FetchResult[T]:
        generation = self.begin(channel)
        try:
            value = await fetch()
        except BackendError as exc:
            if not self.is_current(channel, generation):
                return FetchResult("stale")
            return FetchResult("error", error=str(exc))
        if not self.is_current(channel, generation):
            logger.debug("Dropping stale response on %s (generation %d)", channel, generation)
            return FetchResult("stale")
        if _is_empty(value):
            return FetchResult("empty", value=value)
        return FetchResult("ok", value=value)

"""JSONL trace of session events, stamped with wall-clock and simulation time."""
from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, TextIO

import numpy as np

from .timefmt import format_hhmmss

__all__ = ["SessionLogger"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


@dataclass
class SessionLogger:
    """JSONL trace of what happened during a visualization session.

    Usage:
      trace = SessionLogger.to_timestamped("output/sessions")
      trace.event("clock_set", {"t": 22800}, sim_time=22800)
      trace.event("simulated", {"regulations": 2})
      trace.close()
    """

    path: str
    _fh: Optional[TextIO] = None

    @staticmethod
    def to_timestamped(base_dir: str, prefix: str = "session") -> "SessionLogger":
        os.makedirs(base_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return SessionLogger.open(os.path.join(base_dir, f"{prefix}_{stamp}.jsonl"))

    @staticmethod
    def open(path: str) -> "SessionLogger":
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        log = SessionLogger(path=path)
        log._fh = open(path, "w", encoding="utf-8")
        return log

    def event(self, kind: str, payload: Optional[Dict[str, Any]] = None, sim_time: Optional[float] = None) -> None:
        if self._fh is None:
            return
        row: Dict[str, Any] = {"ts": _now_iso(), "type": str(kind)}
        if sim_time is not None:
            row["sim_time"] = format_hhmmss(sim_time)
        row.update(payload or {})
        self._fh.write(json.dumps(row, ensure_ascii=False, separators=(",", ":"), default=_json_default) + "\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "SessionLogger":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _json_default(obj: Any):
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    return str(obj)

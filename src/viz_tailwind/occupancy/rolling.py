"""Rolling one-hour occupancy built from per-bin entrance counts."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..timefmt import SECONDS_PER_DAY, bin_label_span, hour_label

__all__ = [
    "OccupancyPoint",
    "RollingValue",
    "RollingOccupancySeries",
    "bins_per_hour",
    "rolling_forward_sum",
]

logger = logging.getLogger(__name__)

DEFAULT_BIN_MINUTES = 60

CountsInput = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def bins_per_hour(bin_minutes: float) -> int:
    """Number of bins in one hour, rounded half up, at least 1."""
    if bin_minutes <= 0:
        raise ValueError("bin_minutes must be positive")
    return max(1, int(math.floor(60.0 / float(bin_minutes) + 0.5)))


def rolling_forward_sum(values: np.ndarray, window: int) -> np.ndarray:
    """Forward-looking sum: ``out[i] = sum(values[i:i + window])``.

    The tail is zero-padded so windows near the end only cover what is left.
    """
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise ValueError("values must be one-dimensional")
    if window <= 0:
        raise ValueError("window must be positive")
    n = arr.shape[0]
    if n == 0:
        return arr.copy()
    padded = np.pad(arr, (0, window - 1), mode="constant", constant_values=0)
    cs = np.cumsum(padded)
    left = np.concatenate([np.zeros(1, dtype=cs.dtype), cs[: n - 1]])
    right = cs[window - 1 : window - 1 + n]
    return right - left


@dataclass(frozen=True)
class OccupancyPoint:
    """One bin of the rolling series.

    ``end_s`` is pushed past midnight when the label wraps.
    """

    label: str
    start_s: int
    end_s: int
    count: int
    rolling: int
    capacity: Optional[float]

    @property
    def start_hour(self) -> float:
        return self.start_s / 3600.0

    @property
    def is_overloaded(self) -> bool:
        return self.capacity is not None and self.rolling > self.capacity


@dataclass(frozen=True)
class RollingValue:
    """Rolling count and capacity read at one time; label is None when empty."""

    value: int
    capacity: Optional[float]
    label: Optional[str] = None


@dataclass(frozen=True, eq=False)
class RollingOccupancySeries:
    traffic_volume_id: str
    bin_minutes: int
    points: Tuple[OccupancyPoint, ...] = ()
    hourly_capacity: Dict[str, float] = field(default_factory=dict)

    # ------------------------------ Construction ---------------------------
    @classmethod
    def from_counts(
        cls,
        counts: CountsInput,
        hourly_capacity: Optional[Mapping[str, Any]] = None,
        *,
        bin_minutes: Optional[float] = None,
        traffic_volume_id: str = "",
    ) -> "RollingOccupancySeries":
        """Build the series from ``label -> count`` pairs.

        Malformed labels or counts are skipped with a warning. Bins are
        sorted by start time. The bin width comes from ``bin_minutes`` when it
        is positive, else from the span of the first valid label.
        """
        items = list(counts.items()) if isinstance(counts, Mapping) else list(counts)
        parsed: List[Tuple[int, int, str, int]] = []
        for label, raw in items:
            try:
                start, end = bin_label_span(str(label))
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Skipping malformed occupancy bin %r=%r for %s", label, raw, traffic_volume_id or "?")
                continue
            parsed.append((start, end, str(label), value))
        width = _resolve_bin_minutes(bin_minutes, parsed)
        parsed.sort(key=lambda row: row[0])

        capacity = _normalize_capacity(hourly_capacity or {})
        counts_arr = np.array([row[3] for row in parsed], dtype=np.int64)
        rolling = rolling_forward_sum(counts_arr, bins_per_hour(width))
        points = tuple(
            OccupancyPoint(
                label=label,
                start_s=start,
                end_s=end,
                count=count,
                rolling=int(rolling[i]),
                capacity=capacity.get(hour_label(start // 3600)),
            )
            for i, (start, end, label, count) in enumerate(parsed)
        )
        return cls(
            traffic_volume_id=str(traffic_volume_id),
            bin_minutes=width,
            points=points,
            hourly_capacity=capacity,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RollingOccupancySeries":
        """Build from a ``/tv_count_with_capacity`` response."""
        metadata = payload.get("metadata") or {}
        return cls.from_counts(
            payload.get("occupancy_counts") or {},
            payload.get("hourly_capacity") or {},
            bin_minutes=metadata.get("time_bin_minutes"),
            traffic_volume_id=str(payload.get("traffic_volume_id", "")),
        )

    # ------------------------------- Queries -------------------------------
    def __len__(self) -> int:
        return len(self.points)

    @property
    def bins_per_hour(self) -> int:
        return bins_per_hour(self.bin_minutes)

    @property
    def rolling_counts(self) -> np.ndarray:
        return np.array([p.rolling for p in self.points], dtype=np.int64)

    def covering_index(self, t: float) -> Optional[int]:
        """Index of the bin whose ``[start, end)`` contains ``t`` modulo 24h."""
        if not self.points:
            return None
        cur = float(t) % SECONDS_PER_DAY
        starts = np.array([p.start_s for p in self.points], dtype=np.float64)
        ends = np.array([p.end_s for p in self.points], dtype=np.float64)
        shifted = np.where(cur >= starts, cur, cur + SECONDS_PER_DAY)
        hits = np.flatnonzero((starts <= shifted) & (shifted < ends))
        return int(hits[0]) if hits.size else None

    def nearest_index(self, t: float) -> Optional[int]:
        """First bin whose start hour is at or after ``t``, else the last bin."""
        if not self.points:
            return None
        hour = float(t) / 3600.0
        for i, point in enumerate(self.points):
            if hour <= point.start_hour:
                return i
        return len(self.points) - 1

    def nearest_bin_at(self, t: float) -> Optional[OccupancyPoint]:
        idx = self.nearest_index(t)
        return None if idx is None else self.points[idx]

    def current_value_at(self, t: float) -> RollingValue:
        """Rolling value and capacity of the bin covering ``t``.

        Falls back to ``nearest_index`` when no bin covers ``t``; an empty
        series reads as 0 with no capacity.
        """
        idx = self.covering_index(t)
        if idx is None:
            idx = self.nearest_index(t)
        if idx is None:
            return RollingValue(0, None)
        point = self.points[idx]
        return RollingValue(point.rolling, point.capacity, point.label)

    def capacity_for_time(self, t: float) -> Optional[float]:
        return self.hourly_capacity.get(hour_label(int(t // 3600) % 24))

    def window(self, t: float, half_width_s: float) -> List[OccupancyPoint]:
        """Bins starting within ``[t - half_width_s, t + half_width_s]``."""
        lo, hi = t - half_width_s, t + half_width_s
        return [p for p in self.points if lo <= p.start_s <= hi]

    def overloaded_bins(self) -> List[OccupancyPoint]:
        return [p for p in self.points if p.is_overloaded]

    def as_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "label": [p.label for p in self.points],
                "start_s": [p.start_s for p in self.points],
                "count": [p.count for p in self.points],
                "rolling": [p.rolling for p in self.points],
                "capacity": [p.capacity for p in self.points],
            }
        )


def _resolve_bin_minutes(explicit: Optional[Any], parsed: Sequence[Tuple[int, int, str, int]]) -> int:
    if explicit is not None:
        try:
            value = float(explicit)
        except (TypeError, ValueError):
            value = 0.0
        if value > 0 and value.is_integer():
            return int(value)
        logger.warning("Ignoring time_bin_minutes=%r; bin widths are whole positive minutes", explicit)
    if parsed:
        start, end = parsed[0][0], parsed[0][1]
        return max(1, int(round((end - start) / 60.0)))
    return DEFAULT_BIN_MINUTES


def _normalize_capacity(raw: Mapping[str, Any]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, value in raw.items():
        if value is None:
            continue
        try:
            out[str(key)] = float(value)
        except (TypeError, ValueError):
            logger.warning("Skipping malformed hourly capacity %r=%r", key, value)
    return out

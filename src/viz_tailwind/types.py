"""Record types shared across the visualizer core."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, TypedDict

from .timefmt import bin_label_span, parse_clock

__all__ = [
    "SlackSign",
    "Position",
    "Hotspot",
    "ArrivalDetail",
    "SlackEntry",
    "RollingTVResult",
    "SimulationResult",
    "SimulationRegulationPayload",
    "SimulationPayload",
]

logger = logging.getLogger(__name__)

SlackSign = Literal["plus", "minus"]


@dataclass(frozen=True)
class Position:
    """Interpolated aircraft state at one instant."""

    flight_id: str
    longitude: float
    latitude: float
    altitude_ft: Optional[float]
    heading_deg: float


@dataclass(frozen=True)
class Hotspot:
    """One overloaded (traffic volume, time bin) cell reported by the backend."""

    traffic_volume_id: str
    time_bin: str
    z_max: float = 0.0
    z_sum: float = 0.0
    hourly_occupancy: float = 0.0
    hourly_capacity: float = 0.0
    is_overloaded: bool = False

    @staticmethod
    def from_payload(item: Mapping[str, Any]) -> "Hotspot":
        return Hotspot(
            traffic_volume_id=str(item["traffic_volume_id"]),
            time_bin=str(item["time_bin"]),
            z_max=float(item.get("z_max") or 0.0),
            z_sum=float(item.get("z_sum") or 0.0),
            hourly_occupancy=float(item.get("hourly_occupancy") or 0.0),
            hourly_capacity=float(item.get("hourly_capacity") or 0.0),
            is_overloaded=bool(item.get("is_overloaded", False)),
        )

    def span(self) -> Tuple[int, int]:
        """Return ``[start, end)`` seconds, end wrapped past midnight if needed."""
        return bin_label_span(self.time_bin)

    @property
    def start_seconds(self) -> int:
        return self.span()[0]


@dataclass(frozen=True)
class ArrivalDetail:
    """Arrival of one flight at the selected traffic volume."""

    flight_id: str
    arrival_seconds: Optional[int]
    arrival_time: Optional[str] = None
    delta_seconds: Optional[float] = None
    time_window: Optional[str] = None
    score: Optional[float] = None
    components: Dict[str, float] = field(default_factory=dict)

    @staticmethod
    def from_payload(item: Mapping[str, Any]) -> "ArrivalDetail":
        """Build from a ranked or ordered row.

        ``arrival_seconds`` is taken as given when present, otherwise parsed
        from ``arrival_time``. An unparsable arrival leaves it as None.
        """
        arrival_time = item.get("arrival_time")
        seconds: Optional[int] = None
        raw_seconds = item.get("arrival_seconds")
        if raw_seconds is not None:
            try:
                seconds = int(float(raw_seconds))
            except (TypeError, ValueError):
                seconds = None
        if seconds is None and arrival_time:
            try:
                seconds = parse_clock(arrival_time)
            except ValueError:
                logger.debug("Unparsable arrival time %r for %s", arrival_time, item.get("flight_id"))
        components = item.get("components") or {}
        return ArrivalDetail(
            flight_id=str(item["flight_id"]),
            arrival_seconds=seconds,
            arrival_time=str(arrival_time) if arrival_time is not None else None,
            delta_seconds=float(item["delta_seconds"]) if item.get("delta_seconds") is not None else None,
            time_window=item.get("time_window"),
            score=float(item["score"]) if item.get("score") is not None else None,
            components={str(k): float(v) for k, v in dict(components).items()},
        )


@dataclass(frozen=True)
class SlackEntry:
    traffic_volume_id: str
    time_window: str
    slack: float
    occupancy: float
    capacity_per_bin: Optional[float] = None

    @staticmethod
    def from_payload(item: Mapping[str, Any]) -> "SlackEntry":
        cap = item.get("capacity_per_bin")
        return SlackEntry(
            traffic_volume_id=str(item["traffic_volume_id"]),
            time_window=str(item.get("time_window", "")),
            slack=float(item.get("slack") or 0.0),
            occupancy=float(item.get("occupancy") or 0.0),
            capacity_per_bin=float(cap) if cap is not None else None,
        )


class SimulationRegulationPayload(TypedDict):
    location: str
    rate: int
    time_windows: List[int]
    filter_type: str
    filter_value: str
    target_flight_ids: List[str]


class SimulationPayload(TypedDict, total=False):
    regulations: List[SimulationRegulationPayload]
    weights: Dict[str, float]
    top_k: int
    include_excess_vector: bool


class RollingTVResult(TypedDict, total=False):
    traffic_volume_id: str
    pre_rolling_counts: List[float]
    post_rolling_counts: List[float]
    capacity_per_bin: List[float]
    active_time_windows: List[int]


class SimulationResult(TypedDict, total=False):
    delays_by_flight: Dict[str, float]
    delay_stats: Dict[str, Any]
    objective: float
    objective_components: Dict[str, float]
    rolling_changed_tvs: List[RollingTVResult]
    metadata: Dict[str, Any]

"""Regulation records and the in-memory plan handed to the simulator."""
from __future__ import annotations

import logging
import uuid
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..engine.trajectory import FlightSet
from ..timefmt import format_hhmm, window_to_bins
from ..types import SimulationPayload, SimulationRegulationPayload

__all__ = ["Regulation", "RegulationPlan", "PlanExport"]

logger = logging.getLogger(__name__)

DEFAULT_FILTER_TYPE = "IC"
DEFAULT_FILTER_VALUE = "__"


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _normalize_tokens(tokens: Iterable[Any]) -> Tuple[str, ...]:
    """Strip, drop blanks and de-duplicate while keeping order."""
    return tuple(dict.fromkeys(s for s in (str(t).strip() for t in tokens) if s))


@dataclass(frozen=True)
class Regulation:
    """A rate restriction on one traffic volume during an active window.

    Attributes:
        id: Opaque identifier generated at creation.
        traffic_volume: The controlled traffic volume id.
        window_from: Start of the active window, seconds since midnight.
        window_to: End of the active window, seconds since midnight.
        flight_tokens: Snapshot of the targeted flights as display tokens
            (callsign when known, else flight id).
        rate: Allowed flights per hour.
        created_at: UTC creation timestamp.
    """

    id: str
    traffic_volume: str
    window_from: float
    window_to: float
    flight_tokens: Tuple[str, ...]
    rate: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "traffic_volume", str(self.traffic_volume).strip())
        object.__setattr__(self, "window_from", float(self.window_from))
        object.__setattr__(self, "window_to", float(self.window_to))
        object.__setattr__(self, "flight_tokens", _normalize_tokens(self.flight_tokens))
        object.__setattr__(self, "rate", int(round(float(self.rate))))
        if not self.traffic_volume:
            raise ValueError("traffic_volume is required")
        if self.window_to < self.window_from:
            raise ValueError("window_to must not precede window_from")
        if self.rate <= 0:
            raise ValueError("rate must be positive")

    @property
    def window_label(self) -> str:
        return f"{format_hhmm(self.window_from)}-{format_hhmm(self.window_to)}"

    def time_window_bins(self, bin_minutes: int) -> List[int]:
        return window_to_bins(self.window_from, self.window_to, bin_minutes)


@dataclass(frozen=True)
class PlanExport:
    """Simulation request body plus the tokens that matched no loaded flight."""

    payload: SimulationPayload
    unresolved: Dict[str, List[str]]


@dataclass
class RegulationPlan:
    """Ordered regulations authored during a session."""

    regulations: List[Regulation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.regulations)

    def __iter__(self):
        return iter(self.regulations)

    # --- Metrics -----------------------------------------------------------------
    def number_of_regulations(self) -> int:
        return len(self.regulations)

    def number_of_flights_affected(self) -> int:
        unique: set[str] = set()
        for regulation in self.regulations:
            unique.update(regulation.flight_tokens)
        return len(unique)

    def get(self, regulation_id: str) -> Optional[Regulation]:
        for regulation in self.regulations:
            if regulation.id == regulation_id:
                return regulation
        return None

    # --- Mutation ----------------------------------------------------------------
    def add_regulation(
        self,
        traffic_volume: str,
        window: Tuple[float, float],
        target_flight_ids: Iterable[str],
        rate: float,
        flights: Optional[FlightSet] = None,
    ) -> str:
        """Commit a regulation built from the current target selection.

        Flight ids are copied into display tokens now, so later changes to the
        live selection leave the committed regulation untouched.
        """
        ids = list(target_flight_ids)
        tokens = [flights.display_token(fid) for fid in ids] if flights is not None else ids
        return self._append(traffic_volume, window, tokens, rate)

    def remove_regulation(self, regulation_id: str) -> bool:
        before = len(self.regulations)
        self.regulations = [r for r in self.regulations if r.id != regulation_id]
        return len(self.regulations) != before

    def edit_regulation(
        self,
        regulation_id: str,
        traffic_volume: str,
        window: Tuple[float, float],
        flight_tokens: Iterable[str],
        rate: float,
    ) -> str:
        """Replace a regulation with a new one built from the given fields.

        The replacement is appended with a fresh id and creation time.

        Raises:
            KeyError: If no regulation has ``regulation_id``.
        """
        if self.get(regulation_id) is None:
            raise KeyError(regulation_id)
        self.remove_regulation(regulation_id)
        return self._append(traffic_volume, window, flight_tokens, rate)

    def clear(self) -> None:
        self.regulations.clear()

    def _append(self, traffic_volume: str, window: Tuple[float, float], tokens: Iterable[str], rate: float) -> str:
        regulation = Regulation(
            id=_new_id(),
            traffic_volume=traffic_volume,
            window_from=window[0],
            window_to=window[1],
            flight_tokens=tuple(tokens),
            rate=rate,
        )
        self.regulations.append(regulation)
        logger.debug(
            "Added regulation %s on %s %s rate=%d flights=%d",
            regulation.id,
            regulation.traffic_volume,
            regulation.window_label,
            regulation.rate,
            len(regulation.flight_tokens),
        )
        return regulation.id

    # --- Payload builders --------------------------------------------------------
    def to_simulation_payload(
        self,
        flights: FlightSet,
        *,
        bin_minutes: int,
        weights: Optional[Mapping[str, float]] = None,
        top_k: Optional[int] = None,
        include_excess_vector: bool = False,
    ) -> PlanExport:
        """Serialise the plan for ``/regulation_plan_simulation``.

        Tokens are resolved to flight ids by id or callsign. A token that
        matches no flight is sent as-is and reported in ``unresolved``.

        Raises:
            ValueError: If the plan is empty.
        """
        if not self.regulations:
            raise ValueError("Cannot simulate an empty regulation plan")

        items: List[SimulationRegulationPayload] = []
        unresolved: Dict[str, List[str]] = {}
        for regulation in self.regulations:
            targets: List[str] = []
            for token in regulation.flight_tokens:
                fid = flights.resolve_token(token)
                if fid is None:
                    unresolved.setdefault(regulation.id, []).append(token)
                    fid = token
                targets.append(fid)
            items.append(
                {
                    "location": regulation.traffic_volume,
                    "rate": regulation.rate,
                    "time_windows": regulation.time_window_bins(bin_minutes),
                    "filter_type": DEFAULT_FILTER_TYPE,
                    "filter_value": DEFAULT_FILTER_VALUE,
                    "target_flight_ids": list(dict.fromkeys(targets)),
                }
            )

        if unresolved:
            count = sum(len(v) for v in unresolved.values())
            logger.warning("Passing %d unresolved flight tokens to the simulator: %s", count, unresolved)
            warnings.warn(
                f"{count} flight token(s) did not match any loaded flight and were sent unresolved",
                UserWarning,
                stacklevel=2,
            )

        payload: SimulationPayload = {"regulations": items}
        if weights:
            payload["weights"] = {str(k): float(v) for k, v in weights.items()}
        if top_k is not None:
            payload["top_k"] = int(top_k)
        if include_excess_vector:
            payload["include_excess_vector"] = True
        return PlanExport(payload=payload, unresolved=unresolved)

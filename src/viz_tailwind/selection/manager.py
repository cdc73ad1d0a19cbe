"""Keeps the derived selection sets consistent with the clock and user input."""
from __future__ import annotations

import logging
import math
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import VizConfig, resolve_config
from ..engine.trajectory import FlightSet
from ..timefmt import parse_duration_preset, preset_for_window
from ..types import ArrivalDetail, Hotspot
from .sets import (
    active_hotspots,
    arrival_seconds_by_flight,
    candidates_from_time_windows,
    focus_flight_ids,
    regulation_candidate_ids,
)

__all__ = ["SelectionListener", "TemporalSelectionManager", "ALL_VISIBLE_TOKEN"]

logger = logging.getLogger(__name__)

ALL_VISIBLE_TOKEN = "all"

SelectionListener = Callable[[str, object], None]


class TemporalSelectionManager:
    """Owner of the focus, active-hotspot, candidate and target sets.

    Each set is re-derived from scratch when one of its inputs changes and
    only published to listeners when its contents differ from the previous
    value. Listeners receive ``(kind, value)`` with ``kind`` one of
    ``"focus"``, ``"hotspots"``, ``"candidates"`` or ``"targets"``.
    """

    def __init__(self, config: Optional[VizConfig] = None) -> None:
        self.config = resolve_config(config)
        self._t: float = 0.0
        self.traffic_volume_id: Optional[str] = None
        self.focus_mode: bool = False
        self.focus_window_s: float = float(self.config.focus_window_s)
        self.show_hotspots: bool = True
        self.preset: str = self.config.default_preset
        self.regulation_window: Optional[Tuple[float, float]] = None

        self._arrivals: Dict[str, int] = {}
        self._flights_by_window: Dict[str, List[str]] = {}
        self._hotspots: Tuple[Hotspot, ...] = ()

        self.focus_ids: FrozenSet[str] = frozenset()
        self.active_hotspots: Tuple[Hotspot, ...] = ()
        self.candidate_ids: FrozenSet[str] = frozenset()
        self.target_ids: Tuple[str, ...] = ()

        self._listeners: List[SelectionListener] = []

    # ------------------------------ Listeners ------------------------------
    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, kind: str, value: object) -> None:
        for listener in list(self._listeners):
            listener(kind, value)

    # ------------------------------- Inputs --------------------------------
    @property
    def current_time(self) -> float:
        return self._t

    @property
    def arrivals(self) -> Mapping[str, int]:
        return dict(self._arrivals)

    def on_clock_advanced(self, t: float) -> bool:
        """Re-derive the clock-driven sets at ``t``; True if any set changed."""
        self._t = float(t)
        focus_changed = self._update_focus()
        hotspots_changed = self._update_hotspots()
        return focus_changed or hotspots_changed

    def select_traffic_volume(self, traffic_volume_id: Optional[str]) -> None:
        """Switch the selected traffic volume and drop data tied to the old one."""
        if traffic_volume_id == self.traffic_volume_id:
            return
        self.traffic_volume_id = traffic_volume_id
        self._arrivals = {}
        self._flights_by_window = {}
        self._update_focus()
        self._update_candidates()

    def set_arrivals(
        self,
        details: Iterable[ArrivalDetail],
        flights_by_time_window: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self._arrivals = arrival_seconds_by_flight(details)
        if flights_by_time_window is not None:
            self._flights_by_window = {str(k): [str(f) for f in v] for k, v in flights_by_time_window.items()}
        self._update_focus()
        self._update_candidates()

    def set_hotspots(self, hotspots: Iterable[Hotspot]) -> None:
        self._hotspots = tuple(hotspots)
        self._update_hotspots()

    def set_show_hotspots(self, enabled: bool) -> None:
        self.show_hotspots = bool(enabled)
        self._update_hotspots()

    def set_focus_mode(self, enabled: bool) -> None:
        self.focus_mode = bool(enabled)
        self._update_focus()

    def set_focus_window(self, window_s: float) -> None:
        if window_s < 0:
            raise ValueError("focus window must be non-negative")
        self.focus_window_s = float(window_s)
        self._update_focus()

    # --------------------------- Regulation window -------------------------
    def apply_preset(self, preset: str, t: Optional[float] = None) -> Tuple[float, float]:
        """Anchor the regulation window at ``floor(t)`` for the preset duration."""
        duration = parse_duration_preset(preset)
        start = float(math.floor(self._t if t is None else t))
        self.preset = str(preset)
        self.regulation_window = (start, start + duration)
        self._update_candidates()
        return self.regulation_window

    def set_regulation_window(self, from_s: float, to_s: float) -> None:
        """Set an explicit window; the preset follows the nearest duration."""
        if to_s < from_s:
            raise ValueError("regulation window end precedes its start")
        self.regulation_window = (float(from_s), float(to_s))
        self.preset = preset_for_window(to_s - from_s, self.config.duration_presets)
        self._update_candidates()

    def clear_regulation_window(self) -> None:
        self.regulation_window = None
        self._update_candidates()

    # ------------------------------- Targets -------------------------------
    def set_targets(self, flight_ids: Iterable[str]) -> bool:
        ordered = tuple(dict.fromkeys(str(f) for f in flight_ids))
        if set(ordered) == set(self.target_ids):
            return False
        self.target_ids = ordered
        self._publish("targets", self.target_ids)
        return True

    def add_targets(
        self,
        tokens: Iterable[str],
        flights: FlightSet,
        visible_ids: Sequence[str] = (),
    ) -> List[str]:
        """Add flights named by id or callsign (any case).

        The token ``all`` adds every id in ``visible_ids``. Returns the tokens
        that matched no flight.
        """
        additions: List[str] = []
        unmatched: List[str] = []
        for token in tokens:
            tok = str(token).strip()
            if not tok:
                continue
            if tok.lower() == ALL_VISIBLE_TOKEN:
                additions.extend(str(f) for f in visible_ids)
                continue
            fid = flights.resolve_token(tok)
            if fid is None:
                unmatched.append(tok)
            else:
                additions.append(fid)
        if unmatched:
            logger.info("No flight matches %s", ", ".join(unmatched))
        self.set_targets(list(self.target_ids) + additions)
        return unmatched

    def remove_target(self, flight_id: str) -> bool:
        return self.set_targets(f for f in self.target_ids if f != str(flight_id))

    def clear_targets(self) -> bool:
        return self.set_targets(())

    # -------------------------------- Views --------------------------------
    def displayed_flight_ids(self, active_ids: Sequence[str]) -> List[str]:
        """Focus set in focus mode, otherwise the active flights."""
        if self.focus_mode:
            return sorted(self.focus_ids)
        return list(active_ids)

    # ------------------------------ Derivation -----------------------------
    def _update_focus(self) -> bool:
        if self.traffic_volume_id is None or not self._arrivals:
            derived: FrozenSet[str] = frozenset()
        else:
            derived = focus_flight_ids(self._t, self.focus_window_s, self._arrivals)
        if derived == self.focus_ids:
            return False
        self.focus_ids = derived
        self._publish("focus", derived)
        return True

    def _update_hotspots(self) -> bool:
        derived = tuple(active_hotspots(self._t, self._hotspots, enabled=self.show_hotspots))
        if set(derived) == set(self.active_hotspots):
            return False
        self.active_hotspots = derived
        self._publish("hotspots", derived)
        return True

    def _update_candidates(self) -> bool:
        window = self.regulation_window
        if window is None or self.traffic_volume_id is None:
            derived: FrozenSet[str] = frozenset()
        elif self._arrivals:
            derived = regulation_candidate_ids(window, self._arrivals)
        else:
            derived = candidates_from_time_windows(window, self._flights_by_window)
        if derived == self.candidate_ids:
            return False
        self.candidate_ids = derived
        self._publish("candidates", derived)
        return True

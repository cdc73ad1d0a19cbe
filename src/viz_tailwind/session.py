"""The explicit per-session state object tying the core components together.

A ``SimulationSession`` owns the single authoritative clock, the loaded
flight set, occupancy snapshots, hotspots, the selection manager and the
regulation plan. A host drives it by calling ``frame`` once per rendered
frame and the ``refresh_*`` coroutines whenever backend data is needed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .actions.regulations import PlanExport, RegulationPlan
from .api.client import TailwindClient
from .api.latest import FetchResult, LatestRequestGate
from .config import VizConfig, resolve_config
from .engine.clock import SimulationClock
from .engine.trajectory import FlightSet
from .occupancy.rolling import RollingOccupancySeries, RollingValue
from .selection.manager import TemporalSelectionManager
from .selection.sets import top_flow_groups
from .session_log import SessionLogger
from .timefmt import format_hhmm, format_ref_time
from .types import ArrivalDetail, Hotspot, Position, SlackEntry, SlackSign

__all__ = ["FrameState", "SimulationSession"]

logger = logging.getLogger(__name__)

# Channels whose data depends on the selected traffic volume
_TV_CHANNELS = ("occupancy", "arrivals", "slack", "flows")


@dataclass(frozen=True)
class FrameState:
    """What a renderer needs for one frame."""

    t: float
    positions: Tuple[Position, ...]
    selection_changed: bool


class SimulationSession:
    def __init__(
        self,
        flights: FlightSet,
        config: Optional[VizConfig] = None,
        *,
        client: Optional[TailwindClient] = None,
        trace: Optional[SessionLogger] = None,
    ) -> None:
        self.config = resolve_config(config)
        self.flights = flights
        self.client = client
        self.trace = trace
        self.clock = SimulationClock(speed=self.config.default_speed, jump_policy=self.config.time_jump_policy)
        bounds = flights.bounds()
        if bounds is not None:
            self.clock.set_bounds(bounds[0], bounds[1], initial_time=bounds[0])
        self.selection = TemporalSelectionManager(self.config)
        self.plan = RegulationPlan()
        self.gate = LatestRequestGate()
        self.occupancy: Dict[str, RollingOccupancySeries] = {}
        self.hotspots: List[Hotspot] = []
        self.slack: FetchResult[List[SlackEntry]] = FetchResult("empty")
        self._slack_key: Optional[str] = None
        self.last_simulation: Optional[Dict[str, Any]] = None
        self.selection.on_clock_advanced(self.clock.current_time)
        logger.info(
            "Session ready: %d flights, clock [%s, %s]",
            len(flights),
            format_hhmm(self.clock.min_time),
            format_hhmm(self.clock.max_time),
        )

    # ------------------------------- Clock ---------------------------------
    @property
    def t(self) -> float:
        return self.clock.current_time

    def frame(self, elapsed_ms: float) -> FrameState:
        """Advance the clock, then derive selections and positions at the new time."""
        t = self.clock.advance(elapsed_ms)
        changed = self.selection.on_clock_advanced(t)
        return FrameState(t=t, positions=tuple(self.plane_positions()), selection_changed=changed)

    def set_time(self, t: float) -> float:
        new_t = self.clock.set_time(t)
        self.selection.on_clock_advanced(new_t)
        self._event("clock_set", {"t": new_t})
        return new_t

    def play(self) -> None:
        self.clock.set_playing(True)

    def pause(self) -> None:
        self.clock.set_playing(False)

    def set_speed(self, speed: float) -> None:
        if speed not in self.config.speed_options:
            logger.debug("Speed %s is not one of the offered options %s", speed, self.config.speed_options)
        self.clock.set_speed(speed)

    def jump_to_flight(self, token: str) -> float:
        """Move the clock to a flight's first sample, by id or callsign."""
        fid = self.flights.resolve_token(token)
        if fid is None:
            raise KeyError(token)
        return self.set_time(self.flights.trajectories[fid].t0)

    def jump_to_hotspot(self, hotspot: Hotspot) -> float:
        """Select the hotspot's traffic volume and move to its bin start."""
        self.select_traffic_volume(hotspot.traffic_volume_id)
        return self.set_time(hotspot.start_seconds)

    # ------------------------------- Views ---------------------------------
    def visible_flight_ids(self) -> List[str]:
        return self.selection.displayed_flight_ids(self.flights.active_flight_ids(self.t))

    def plane_positions(self) -> List[Position]:
        return self.flights.positions_at(self.t, self.visible_flight_ids())

    def occupancy_series(self, traffic_volume_id: Optional[str] = None) -> Optional[RollingOccupancySeries]:
        tv = traffic_volume_id or self.selection.traffic_volume_id
        return self.occupancy.get(tv) if tv else None

    def occupancy_reading(self) -> RollingValue:
        series = self.occupancy_series()
        if series is None:
            return RollingValue(0, None)
        return series.current_value_at(self.t)

    def default_rate(self) -> Optional[float]:
        """Hourly capacity of the selected traffic volume at the current time."""
        series = self.occupancy_series()
        return None if series is None else series.capacity_for_time(self.t)

    # ----------------------------- Selection -------------------------------
    def select_traffic_volume(self, traffic_volume_id: Optional[str]) -> None:
        if traffic_volume_id == self.selection.traffic_volume_id:
            return
        for channel in _TV_CHANNELS:
            self.gate.invalidate(channel)
        self.selection.select_traffic_volume(traffic_volume_id)
        self.slack = FetchResult("empty")
        self._slack_key = None
        self._event("select_tv", {"traffic_volume_id": traffic_volume_id})

    def apply_preset(self, preset: str) -> Tuple[float, float]:
        return self.selection.apply_preset(preset, self.t)

    def add_targets(self, tokens: Iterable[str]) -> List[str]:
        return self.selection.add_targets(tokens, self.flights, self.visible_flight_ids())

    # --------------------------- Backend refresh ---------------------------
    def _require_client(self) -> TailwindClient:
        if self.client is None:
            raise RuntimeError("This session has no backend client")
        return self.client

    async def refresh_occupancy(self) -> FetchResult[RollingOccupancySeries]:
        tv = self.selection.traffic_volume_id
        if tv is None:
            return FetchResult("empty")
        client = self._require_client()

        async def _fetch() -> RollingOccupancySeries:
            return RollingOccupancySeries.from_payload(await client.occupancy(tv))

        result = await self.gate.run("occupancy", _fetch)
        if result.available and result.value is not None:
            self.occupancy[tv] = result.value
        elif not result.stale:
            self.occupancy.pop(tv, None)
        return result

    async def refresh_hotspots(self, threshold: Optional[float] = None) -> FetchResult[List[Hotspot]]:
        client = self._require_client()
        level = self.config.hotspot_threshold if threshold is None else threshold
        result = await self.gate.run("hotspots", lambda: client.hotspots(level))
        if not result.stale:
            self.hotspots = list(result.value or []) if result.available else []
            self.selection.set_hotspots(self.hotspots)
        return result

    async def refresh_arrivals(
        self,
        seed_tokens: Iterable[str] = (),
        duration_s: Optional[float] = None,
    ) -> FetchResult[List[ArrivalDetail]]:
        """Fetch ranked arrivals at the selected traffic volume around ``t``.

        When the ranking is unavailable the ``time window -> flights`` map is
        fetched instead so regulation candidates can still be derived.
        """
        tv = self.selection.traffic_volume_id
        if tv is None:
            return FetchResult("empty")
        client = self._require_client()
        ref = format_ref_time(self.t)
        seeds = [fid for fid in (self.flights.resolve_token(tok) for tok in seed_tokens) if fid]
        if duration_s is None:
            window = self.selection.regulation_window
            duration_s = (window[1] - window[0]) if window else self.selection.focus_window_s
        duration_min = max(1, int(round(duration_s / 60.0)))

        result = await self.gate.run(
            "arrivals",
            lambda: client.ranked_arrivals(
                tv,
                ref,
                seed_flight_ids=seeds,
                duration_min=duration_min,
                top_k=self.config.ranking_top_k,
            ),
        )
        if result.stale:
            return result
        if result.available:
            self.selection.set_arrivals(result.value or [])
            return result
        fallback = await self.gate.run("arrivals", lambda: client.tv_flights(tv, ref))
        if fallback.stale:
            return result
        self.selection.set_arrivals([], fallback.value if fallback.available else {})
        return result

    async def refresh_slack(self, sign: SlackSign = "plus", delta_min: float = 0.0) -> FetchResult[List[SlackEntry]]:
        """Fetch the slack distribution unless the same request already succeeded."""
        tv = self.selection.traffic_volume_id
        if tv is None:
            return FetchResult("empty")
        ref = format_hhmm(self.t)
        key = f"{tv}|{ref}|{sign}|{delta_min}"
        if key == self._slack_key and self.slack.available:
            return self.slack
        client = self._require_client()
        result = await self.gate.run("slack", lambda: client.slack_distribution(tv, ref, sign, delta_min))
        if not result.stale:
            self.slack = result
            self._slack_key = key if result.available else None
        return result

    async def refresh_flows(self, flight_ids: Optional[Iterable[str]] = None) -> FetchResult[List[Tuple[int, List[str]]]]:
        """Community groups among candidate flights, largest first."""
        tv = self.selection.traffic_volume_id
        if tv is None:
            return FetchResult("empty")
        client = self._require_client()
        ids = sorted(flight_ids if flight_ids is not None else self.selection.candidate_ids)
        if not ids:
            return FetchResult("empty")
        ref = format_ref_time(self.t)

        async def _fetch() -> List[Tuple[int, List[str]]]:
            body = await client.flow_extraction(tv, ref, ids)
            return top_flow_groups(body.get("communities") or {}, self.config.flow_top_groups)

        return await self.gate.run("flows", _fetch)

    # ------------------------------ Regulations ----------------------------
    def add_regulation(self, rate: Optional[float] = None) -> str:
        """Commit the current targets as a regulation and clear the targets.

        The rate defaults to the hourly capacity at the current time.
        """
        tv = self.selection.traffic_volume_id
        window = self.selection.regulation_window
        if tv is None:
            raise ValueError("Select a traffic volume before adding a regulation")
        if window is None:
            raise ValueError("Choose an active time window before adding a regulation")
        if rate is None:
            rate = self.default_rate()
        if rate is None:
            raise ValueError(f"No capacity known for {tv} at {format_hhmm(self.t)}; pass a rate")
        reg_id = self.plan.add_regulation(tv, window, self.selection.target_ids, rate, flights=self.flights)
        self.selection.clear_targets()
        self._event("regulation_added", {"id": reg_id, "traffic_volume": tv, "window": window, "rate": rate})
        return reg_id

    def edit_regulation(
        self,
        regulation_id: str,
        traffic_volume: str,
        window: Tuple[float, float],
        flight_tokens: Iterable[str],
        rate: float,
    ) -> str:
        new_id = self.plan.edit_regulation(regulation_id, traffic_volume, window, flight_tokens, rate)
        self._event("regulation_edited", {"old_id": regulation_id, "id": new_id})
        return new_id

    def remove_regulation(self, regulation_id: str) -> bool:
        removed = self.plan.remove_regulation(regulation_id)
        if removed:
            self._event("regulation_removed", {"id": regulation_id})
        return removed

    def export_plan(self) -> PlanExport:
        return self.plan.to_simulation_payload(
            self.flights,
            bin_minutes=self._plan_bin_minutes(),
            weights=self.config.simulation_weights,
            top_k=self.config.simulation_top_k,
        )

    async def simulate_plan(self) -> FetchResult[Dict[str, Any]]:
        client = self._require_client()
        export = self.export_plan()
        result = await self.gate.run("simulation", lambda: client.simulate(export.payload))
        if result.available:
            self.last_simulation = result.value
            self._event(
                "simulated",
                {
                    "regulations": len(export.payload["regulations"]),
                    "unresolved": export.unresolved,
                    "objective": (result.value or {}).get("objective"),
                },
            )
        return result

    def _plan_bin_minutes(self) -> int:
        for regulation in self.plan:
            series = self.occupancy.get(regulation.traffic_volume)
            if series is not None:
                return series.bin_minutes
        return self.config.time_bin_minutes

    def _event(self, kind: str, payload: Dict[str, Any]) -> None:
        if self.trace is not None:
            self.trace.event(kind, payload, sim_time=self.t)

import asyncio
import json
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parents[1] / "src"
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from typing import Dict, List, Optional

import httpx
import pytest

from viz_tailwind.api import TailwindClient
from viz_tailwind.config import VizConfig
from viz_tailwind.engine.trajectory import FlightSet, Trajectory
from viz_tailwind.occupancy.rolling import RollingValue
from viz_tailwind.session import SimulationSession
from viz_tailwind.session_log import SessionLogger
from viz_tailwind.types import Hotspot


def _hm(h: int, m: int) -> int:
    return h * 3600 + m * 60


def _flights() -> FlightSet:
    return FlightSet.from_trajectories(
        [
            Trajectory("F1", coords=[(0, 0, 30000), (2, 0, 30000)], times=[_hm(6, 0), _hm(7, 0)], call_sign="AFR1"),
            Trajectory("F2", coords=[(5, 5, 0), (5, 6, 10000)], times=[_hm(6, 30), _hm(8, 0)], call_sign="BAW2"),
            Trajectory("F3", coords=[(9, 9, 0), (9, 9, 0)], times=[_hm(9, 0), _hm(10, 0)]),
        ]
    )


OCCUPANCY = {
    "traffic_volume_id": "TV1",
    "occupancy_counts": {"06:00-06:15": 4, "06:15-06:30": 6, "06:30-06:45": 2, "06:45-07:00": 3},
    "hourly_capacity": {"06:00-07:00": 12},
    "metadata": {"time_bin_minutes": 15},
}


class FakeBackend:
    """Records requests and answers the endpoints a session uses."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.bodies: List[Dict] = []
        self.fail_ranking = False
        self.fail_hotspots = False
        self.occupancy: Optional[Dict] = OCCUPANCY

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        if path == "/tv_count_with_capacity":
            if self.occupancy is None:
                return httpx.Response(500, json={"detail": "boom"})
            return httpx.Response(200, json=self.occupancy)
        if path == "/hotspots":
            if self.fail_hotspots:
                return httpx.Response(503, json={"detail": "down"})
            return httpx.Response(
                200,
                json={"hotspots": [{"traffic_volume_id": "TV1", "time_bin": "06:15-06:30", "z_max": 2.0}]},
            )
        if path == "/regulation_ranking_tv_flights_ordered":
            if self.fail_ranking:
                return httpx.Response(500, json={"detail": "boom"})
            return httpx.Response(
                200,
                json={
                    "ranked_flights": [
                        {"flight_id": "F1", "arrival_time": "06:20:00"},
                        {"flight_id": "F2", "arrival_time": "06:50:00"},
                    ]
                },
            )
        if path == "/tv_flights":
            return httpx.Response(200, json={"06:15-06:30": ["F1"], "07:15-07:30": ["F2"]})
        if path == "/slack_distribution":
            return httpx.Response(
                200,
                json={"results": [{"traffic_volume_id": "TV2", "time_window": "06:15-06:30", "slack": 4, "occupancy": 1}]},
            )
        if path == "/flow_extraction":
            return httpx.Response(200, json={"communities": {"F1": 3, "F2": 3}})
        if path == "/regulation_plan_simulation":
            self.bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"delays_by_flight": {"F1": 5}, "objective": 12.5})
        return httpx.Response(404, json={"detail": "unknown"})


def _session(backend: FakeBackend, **cfg) -> SimulationSession:
    config = VizConfig(backend_url="http://backend.test", **cfg)
    client = TailwindClient(config, transport=httpx.MockTransport(backend))
    return SimulationSession(_flights(), config, client=client)


def test_clock_bounds_come_from_flights() -> None:
    session = SimulationSession(_flights())
    assert session.clock.bounds == (_hm(6, 0), _hm(10, 0))
    assert session.t == _hm(6, 0)


def test_frame_advances_before_positions() -> None:
    session = SimulationSession(_flights())
    session.set_speed(10)
    session.play()
    state = session.frame(180_000)  # 30 min of simulation time
    assert state.t == _hm(6, 30)
    by_id = {p.flight_id: p for p in state.positions}
    assert sorted(by_id) == ["F1", "F2"]
    assert by_id["F1"].longitude == pytest.approx(1.0)
    assert by_id["F2"].latitude == pytest.approx(5.0)


def test_frame_wraps_at_end_of_day_window() -> None:
    session = SimulationSession(_flights())
    session.set_time(_hm(9, 59))
    session.play()
    state = session.frame(120_000)
    assert state.t == _hm(6, 1)


def test_jump_to_flight_and_hotspot() -> None:
    session = SimulationSession(_flights())
    assert session.jump_to_flight("baw2") == _hm(6, 30)
    with pytest.raises(KeyError):
        session.jump_to_flight("nobody")
    session.jump_to_hotspot(Hotspot("TV7", "09:15-09:30"))
    assert session.t == _hm(9, 15)
    assert session.selection.traffic_volume_id == "TV7"


def test_advance_after_jump_before_first_flight() -> None:
    session = SimulationSession(_flights())
    session.jump_to_hotspot(Hotspot("TV1", "05:00-05:15"))
    session.play()
    state = session.frame(1000)
    assert state.t == _hm(5, 0) + 1


def test_occupancy_refresh_and_reading() -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.select_traffic_volume("TV1")
    session.set_time(_hm(6, 20))
    result = asyncio.run(session.refresh_occupancy())
    assert result.available
    reading = session.occupancy_reading()
    assert (reading.value, reading.capacity) == (11, 12.0)
    assert session.default_rate() == 12.0
    assert session.occupancy_series().rolling_counts.tolist() == [15, 11, 5, 3]


@pytest.mark.parametrize("second", ["empty", "error"])
def test_unavailable_occupancy_clears_snapshot(second: str) -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.select_traffic_volume("TV1")
    session.set_time(_hm(6, 20))
    assert asyncio.run(session.refresh_occupancy()).available

    if second == "empty":
        backend.occupancy = {**OCCUPANCY, "occupancy_counts": {}}
    else:
        backend.occupancy = None
    result = asyncio.run(session.refresh_occupancy())
    assert result.status == second
    assert session.occupancy_series() is None
    assert session.occupancy_reading() == RollingValue(0, None)
    assert session.default_rate() is None


def test_stale_occupancy_is_not_applied() -> None:
    async def run():
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200, json=OCCUPANCY)

        config = VizConfig(backend_url="http://backend.test")
        client = TailwindClient(config, transport=httpx.MockTransport(handler))
        session = SimulationSession(_flights(), config, client=client)
        session.select_traffic_volume("TV1")
        task = asyncio.create_task(session.refresh_occupancy())
        await asyncio.sleep(0)
        # user picks another traffic volume while the first fetch is in flight
        session.select_traffic_volume("TV2")
        release.set()
        return session, await task

    session, result = asyncio.run(run())
    assert result.stale
    assert session.occupancy == {}


def test_hotspots_feed_active_set() -> None:
    backend = FakeBackend()
    session = _session(backend)
    asyncio.run(session.refresh_hotspots())
    session.set_time(_hm(6, 20))
    assert [h.traffic_volume_id for h in session.selection.active_hotspots] == ["TV1"]
    session.set_time(_hm(6, 40))
    assert session.selection.active_hotspots == ()


def test_failed_hotspot_refresh_clears_previous_hotspots() -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.set_time(_hm(6, 20))
    asyncio.run(session.refresh_hotspots())
    assert len(session.selection.active_hotspots) == 1
    backend.fail_hotspots = True
    result = asyncio.run(session.refresh_hotspots())
    assert result.status == "error"
    assert session.hotspots == []
    assert session.selection.active_hotspots == ()


def test_arrivals_drive_focus_and_candidates() -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.select_traffic_volume("TV1")
    session.set_time(_hm(6, 10))
    session.apply_preset("30")
    result = asyncio.run(session.refresh_arrivals())
    assert result.available
    assert session.selection.candidate_ids == {"F1"}
    session.selection.set_focus_mode(True)
    session.set_time(_hm(6, 15))
    assert session.visible_flight_ids() == ["F1", "F2"]


def test_arrivals_fall_back_to_time_windows_on_error() -> None:
    backend = FakeBackend()
    backend.fail_ranking = True
    session = _session(backend)
    session.select_traffic_volume("TV1")
    session.set_time(_hm(6, 0))
    session.apply_preset("1h")
    result = asyncio.run(session.refresh_arrivals())
    assert result.status == "error"
    assert "/tv_flights" in backend.calls
    assert session.selection.candidate_ids == {"F1"}
    assert session.selection.focus_ids == frozenset()


def test_slack_fetch_is_deduplicated() -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.select_traffic_volume("TV1")
    first = asyncio.run(session.refresh_slack("plus", 15))
    again = asyncio.run(session.refresh_slack("plus", 15))
    assert first.available and again is session.slack
    assert backend.calls.count("/slack_distribution") == 1
    asyncio.run(session.refresh_slack("minus", 15))
    assert backend.calls.count("/slack_distribution") == 2


def test_flow_groups_over_candidates() -> None:
    backend = FakeBackend()
    session = _session(backend)
    session.select_traffic_volume("TV1")
    result = asyncio.run(session.refresh_flows(["F1", "F2"]))
    assert result.value == [(3, ["F1", "F2"])]


def test_regulation_flow_end_to_end(tmp_path: Path) -> None:
    backend = FakeBackend()
    session = _session(backend, simulation_top_k=5)
    session.trace = SessionLogger.open(str(tmp_path / "trace.jsonl"))
    session.select_traffic_volume("TV1")
    session.set_time(_hm(6, 0))
    asyncio.run(session.refresh_occupancy())
    session.apply_preset("1h")
    session.add_targets(["afr1", "F2"])

    reg_id = session.add_regulation()
    assert session.selection.target_ids == ()
    reg = session.plan.get(reg_id)
    assert reg.rate == 12 and reg.flight_tokens == ("AFR1", "BAW2")

    result = asyncio.run(session.simulate_plan())
    assert result.available and session.last_simulation["objective"] == 12.5
    sent = backend.bodies[0]
    assert sent["top_k"] == 5
    assert sent["regulations"][0]["target_flight_ids"] == ["F1", "F2"]
    assert sent["regulations"][0]["time_windows"] == [24, 25, 26, 27]
    session.trace.close()

    rows = [json.loads(line) for line in (tmp_path / "trace.jsonl").read_text().splitlines()]
    kinds = [row["type"] for row in rows]
    assert "regulation_added" in kinds and kinds[-1] == "simulated"
    assert rows[kinds.index("regulation_added")]["sim_time"] == "06:00:00"


def test_add_regulation_requires_context() -> None:
    session = SimulationSession(_flights())
    with pytest.raises(ValueError):
        session.add_regulation(rate=10)
    session.select_traffic_volume("TV1")
    with pytest.raises(ValueError):
        session.add_regulation(rate=10)
    session.apply_preset("1h")
    with pytest.raises(ValueError):
        session.add_regulation()
    with pytest.raises(RuntimeError):
        asyncio.run(session.refresh_hotspots())

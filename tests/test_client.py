import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parents[1] / "src"
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import httpx
import pytest

from viz_tailwind.api import BackendError, LatestRequestGate, TailwindClient
from viz_tailwind.config import VizConfig


def _client(handler) -> TailwindClient:
    cfg = VizConfig(backend_url="http://backend.test")
    return TailwindClient(cfg, transport=httpx.MockTransport(handler))


def test_login_sets_bearer_header() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            seen["form"] = request.content.decode()
            return httpx.Response(200, json={"access_token": "abc", "token_type": "bearer"})
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"traffic_volume_id": "TV1", "occupancy_counts": {}})

    async def run() -> None:
        async with _client(handler) as client:
            assert not client.authenticated
            await client.login("alice", "pw")
            await client.occupancy("TV1")

    asyncio.run(run())
    assert "username=alice" in seen["form"]
    assert seen["auth"] == "Bearer abc"


def test_hotspots_sorted_by_z_max() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["threshold"] == "0.5"
        return httpx.Response(
            200,
            json={
                "hotspots": [
                    {"traffic_volume_id": "TV1", "time_bin": "10:00-10:15", "z_max": 1.0},
                    {"traffic_volume_id": "TV2", "time_bin": "11:00-11:15", "z_max": 4.0, "is_overloaded": True},
                ],
                "count": 2,
            },
        )

    async def run():
        async with _client(handler) as client:
            return await client.hotspots(0.5)

    hotspots = asyncio.run(run())
    assert [h.traffic_volume_id for h in hotspots] == ["TV2", "TV1"]
    assert hotspots[0].is_overloaded


def test_ranked_arrivals_params_and_parsing() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(dict(request.url.params))
        return httpx.Response(
            200,
            json={
                "ranked_flights": [
                    {
                        "flight_id": "F1",
                        "arrival_time": "10:05:00",
                        "time_window": "10:00-10:15",
                        "delta_seconds": 300,
                        "score": 0.9,
                        "components": {"proximity": 0.5},
                    }
                ]
            },
        )

    async def run():
        async with _client(handler) as client:
            return await client.ranked_arrivals("TV1", "100000", seed_flight_ids=[], duration_min=60, top_k=50)

    details = asyncio.run(run())
    assert captured == {
        "traffic_volume_id": "TV1",
        "ref_time_str": "100000",
        "seed_flight_ids": "",
        "duration_min": "60",
        "top_k": "50",
    }
    assert details[0].arrival_seconds == 36300
    assert details[0].components == {"proximity": 0.5}


def test_error_status_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "Traffic volume not found"})

    async def run() -> None:
        async with _client(handler) as client:
            await client.occupancy("NOPE")

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code == 404
    assert "not found" in str(excinfo.value)


def test_transport_failure_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def run() -> None:
        async with _client(handler) as client:
            await client.hotspots()

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code is None


def test_simulate_rejects_empty_plan_locally() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def run() -> None:
        async with _client(handler) as client:
            await client.simulate({"regulations": []})

    with pytest.raises(ValueError):
        asyncio.run(run())


def test_slack_and_flows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/slack_distribution":
            assert request.url.params["sign"] == "minus"
            return httpx.Response(
                200,
                json={"results": [{"traffic_volume_id": "TV9", "time_window": "10:00-10:15", "slack": 3, "occupancy": 7}]},
            )
        assert request.url.params["flight_ids"] == "F1,F2"
        return httpx.Response(200, json={"communities": {"F1": 0, "F2": 0}, "groups": {"0": ["F1", "F2"]}})

    async def run():
        async with _client(handler) as client:
            slack = await client.slack_distribution("TV1", "10:00", "minus", 15)
            flows = await client.flow_extraction("TV1", "100000", ["F1", "F2"], threshold=0.1)
            return slack, flows

    slack, flows = asyncio.run(run())
    assert slack[0].traffic_volume_id == "TV9" and slack[0].slack == 3.0
    assert flows["communities"] == {"F1": 0, "F2": 0}
    with pytest.raises(ValueError):
        asyncio.run(_client(handler).slack_distribution("TV1", "10:00", "sideways"))


def test_gate_discards_superseded_results() -> None:
    gate = LatestRequestGate()

    async def run():
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return ["old"]

        async def fast():
            return ["new"]

        first = asyncio.create_task(gate.run("occupancy", slow))
        await asyncio.sleep(0)
        second = await gate.run("occupancy", fast)
        release.set()
        return await first, second

    first, second = asyncio.run(run())
    assert first.stale and not first.available
    assert second.available and second.value == ["new"]


def test_gate_reports_error_and_empty_as_unavailable() -> None:
    gate = LatestRequestGate()

    async def boom():
        raise BackendError("down", 503)

    async def nothing():
        return []

    error = asyncio.run(gate.run("hotspots", boom))
    empty = asyncio.run(gate.run("hotspots", nothing))
    assert error.status == "error" and error.error == "down"
    assert empty.status == "empty"
    assert not error.available and not empty.available

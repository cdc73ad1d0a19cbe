from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .api.client import BackendError, TailwindClient
from .config import VizConfig, config_from_env
from .engine.trajectory import FlightSet, build_trajectories, load_segments_csv
from .session import SimulationSession
from .timefmt import format_hhmm, format_hhmmss, parse_clock

logger = logging.getLogger(__name__)


def _fmt(value: Optional[float], digits: int = 1) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


async def _connect(cfg: VizConfig, args: argparse.Namespace) -> TailwindClient:
    client = TailwindClient(cfg)
    username = args.username or os.getenv("TAILWIND_USERNAME")
    password = args.password or os.getenv("TAILWIND_PASSWORD")
    if username and password and not client.authenticated:
        await client.login(username, password)
    return client


def cmd_positions(args: argparse.Namespace, cfg: VizConfig, console: Console) -> int:
    flights = build_trajectories(load_segments_csv(args.segments))
    session = SimulationSession(flights, cfg)
    t = session.set_time(parse_clock(args.time))
    positions = session.plane_positions()[: args.limit]

    table = Table(title=f"Aircraft at {format_hhmmss(t)} ({len(session.visible_flight_ids())} active)")
    for col in ("Flight", "Callsign", "Lon", "Lat", "Alt (ft)", "Heading"):
        table.add_column(col)
    for pos in positions:
        table.add_row(
            pos.flight_id,
            flights.display_token(pos.flight_id),
            f"{pos.longitude:.4f}",
            f"{pos.latitude:.4f}",
            _fmt(pos.altitude_ft, 0),
            f"{pos.heading_deg:.0f}",
        )
    console.print(table)
    return 0


async def _hotspots(args: argparse.Namespace, cfg: VizConfig, console: Console) -> int:
    async with await _connect(cfg, args) as client:
        hotspots = await client.hotspots(args.threshold)
    table = Table(title=f"Hotspots (threshold {args.threshold})")
    for col in ("TV", "Time bin", "z_max", "z_sum", "Occupancy", "Capacity"):
        table.add_column(col)
    for h in hotspots[: args.limit]:
        table.add_row(
            h.traffic_volume_id,
            h.time_bin,
            f"{h.z_max:.2f}",
            f"{h.z_sum:.2f}",
            f"{h.hourly_occupancy:.0f}",
            f"{h.hourly_capacity:.0f}",
        )
    console.print(table)
    return 0


async def _occupancy(args: argparse.Namespace, cfg: VizConfig, console: Console) -> int:
    session = SimulationSession(FlightSet(), cfg)
    session.set_time(parse_clock(args.time))
    session.select_traffic_volume(args.tv)
    async with await _connect(cfg, args) as client:
        session.client = client
        result = await session.refresh_occupancy()
    if not result.available:
        console.print(f"[red]No occupancy data for {args.tv}[/red] {result.error or ''}")
        return 1
    series = result.value
    reading = series.current_value_at(session.t)
    table = Table(title=f"{args.tv} rolling-hour entrances around {format_hhmm(session.t)}")
    for col in ("Bin", "Count", "Rolling", "Capacity"):
        table.add_column(col)
    for point in series.window(session.t, args.span * 60):
        style = "bold yellow" if point.label == reading.label else ("red" if point.is_overloaded else None)
        table.add_row(point.label, str(point.count), str(point.rolling), _fmt(point.capacity, 0), style=style)
    console.print(table)
    console.print(f"Current: {reading.value} / {_fmt(reading.capacity, 0)}")
    return 0


def _load_plan(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("plan file must hold a JSON list of regulations")
    return data


async def _simulate(args: argparse.Namespace, cfg: VizConfig, console: Console) -> int:
    flights = build_trajectories(load_segments_csv(args.segments))
    session = SimulationSession(flights, cfg)
    for item in _load_plan(args.plan):
        session.plan.add_regulation(
            str(item["traffic_volume"]),
            (parse_clock(item["from"]), parse_clock(item["to"])),
            [str(f) for f in item.get("flights", [])],
            float(item["rate"]),
            flights=flights,
        )
    async with await _connect(cfg, args) as client:
        session.client = client
        result = await session.simulate_plan()
    if not result.available:
        console.print(f"[red]Simulation failed[/red] {result.error or ''}")
        return 1
    body = result.value or {}
    table = Table(title="Delay statistics")
    table.add_column("Metric")
    table.add_column("Value")
    for key, value in (body.get("delay_stats") or {}).items():
        table.add_row(str(key), str(value))
    table.add_row("objective", str(body.get("objective")))
    console.print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Tailwind traffic visualizer core")
    ap.add_argument("--backend-url", default=None, help="Backend base URL (default: $BACKEND_URL)")
    ap.add_argument("--username", default=None, help="Backend user (default: $TAILWIND_USERNAME)")
    ap.add_argument("--password", default=None, help="Backend password (default: $TAILWIND_PASSWORD)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("positions", help="Interpolated aircraft positions at a time")
    p.add_argument("--segments", required=True, help="Flight segment CSV")
    p.add_argument("--time", required=True, help="HH:MM or HH:MM:SS")
    p.add_argument("--limit", type=int, default=25)

    p = sub.add_parser("hotspots", help="List hotspots from the backend")
    p.add_argument("--threshold", type=float, default=0.0)
    p.add_argument("--limit", type=int, default=25)

    p = sub.add_parser("occupancy", help="Rolling occupancy of a traffic volume")
    p.add_argument("--tv", required=True, help="Traffic volume id")
    p.add_argument("--time", required=True, help="HH:MM or HH:MM:SS")
    p.add_argument("--span", type=int, default=120, help="Minutes shown either side of --time")

    p = sub.add_parser("simulate", help="Simulate a regulation plan from a JSON file")
    p.add_argument("--segments", required=True, help="Flight segment CSV")
    p.add_argument("--plan", required=True, help="JSON list of {traffic_volume, from, to, flights, rate}")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    overrides = {"backend_url": args.backend_url} if args.backend_url else {}
    cfg = config_from_env(**overrides)
    console = Console()

    try:
        if args.command == "positions":
            return cmd_positions(args, cfg, console)
        if args.command == "hotspots":
            return asyncio.run(_hotspots(args, cfg, console))
        if args.command == "occupancy":
            return asyncio.run(_occupancy(args, cfg, console))
        return asyncio.run(_simulate(args, cfg, console))
    except BackendError as exc:
        logger.error("%s", exc)
        return 2
    except (OSError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

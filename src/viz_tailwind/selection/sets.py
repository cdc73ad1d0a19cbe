"""Pure derivations of the time-scoped selection sets.

Every function here is a plain re-derivation from its inputs. Flights
whose arrival time is unknown are left out of time-scoped sets.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..timefmt import SECONDS_PER_DAY, parse_bin_label
from ..types import ArrivalDetail, Hotspot

__all__ = [
    "arrival_seconds_by_flight",
    "time_in_window",
    "focus_flight_ids",
    "hotspot_contains",
    "active_hotspots",
    "regulation_candidate_ids",
    "candidates_from_time_windows",
    "top_flow_groups",
]

logger = logging.getLogger(__name__)


def arrival_seconds_by_flight(details: Iterable[ArrivalDetail]) -> Dict[str, int]:
    """Map flight id to arrival seconds, dropping flights without a known arrival.

    The first row wins when a flight appears more than once.
    """
    out: Dict[str, int] = {}
    for detail in details:
        if detail.arrival_seconds is None:
            continue
        out.setdefault(detail.flight_id, int(detail.arrival_seconds))
    return out


def time_in_window(value: float, lo: float, hi: float) -> bool:
    """Whether time of day ``value`` lies in the closed window ``[lo, hi]``.

    Both sides are compared modulo 24h, so a clock unwrapped past midnight
    still matches arrivals reported as plain times of day and a window may
    cross midnight.
    """
    span = hi - lo
    if span < 0:
        return False
    if span >= SECONDS_PER_DAY:
        return True
    return (float(value) - float(lo)) % SECONDS_PER_DAY <= span


def focus_flight_ids(t: float, window_s: float, arrivals: Mapping[str, Optional[float]]) -> FrozenSet[str]:
    """Flights arriving within ``[t, t + window_s]``."""
    hi = t + window_s
    return frozenset(
        fid for fid, arrival in arrivals.items() if arrival is not None and time_in_window(arrival, t, hi)
    )


def hotspot_contains(hotspot: Hotspot, t: float) -> bool:
    """Whether ``t`` falls in the hotspot's ``[start, end)`` window.

    Bins wrapping past midnight are matched on both sides of it.
    """
    start, end = hotspot.span()
    cur = float(t) % SECONDS_PER_DAY
    if cur < start:
        cur += SECONDS_PER_DAY
    return start <= cur < end


def active_hotspots(t: float, hotspots: Sequence[Hotspot], enabled: bool = True) -> List[Hotspot]:
    """Hotspots whose time bin contains ``t``; empty when the display is off."""
    if not enabled:
        return []
    out: List[Hotspot] = []
    for hotspot in hotspots:
        try:
            if hotspot_contains(hotspot, t):
                out.append(hotspot)
        except ValueError:
            logger.warning("Skipping hotspot with malformed time bin %r", hotspot.time_bin)
    return out


def regulation_candidate_ids(
    window: Tuple[float, float],
    arrivals: Mapping[str, Optional[float]],
) -> FrozenSet[str]:
    """Flights whose arrival lies in the closed interval ``[from, to]``."""
    lo, hi = window
    return frozenset(
        fid for fid, arrival in arrivals.items() if arrival is not None and time_in_window(arrival, lo, hi)
    )


def candidates_from_time_windows(
    window: Tuple[float, float],
    flights_by_time_window: Mapping[str, Sequence[Any]],
) -> FrozenSet[str]:
    """Candidate ids from a ``time window label -> flight ids`` map.

    Used when per-flight arrival details are unavailable; a flight counts
    when its bin starts inside ``[from, to]``.
    """
    lo, hi = window
    out = set()
    for label, flight_ids in flights_by_time_window.items():
        try:
            start, _ = parse_bin_label(label)
        except ValueError:
            logger.warning("Skipping malformed time window %r", label)
            continue
        if time_in_window(start, lo, hi):
            out.update(str(f) for f in flight_ids)
    return frozenset(out)


def top_flow_groups(communities: Mapping[str, Any], limit: int = 10) -> List[Tuple[int, List[str]]]:
    """Group a ``flight -> community`` map and keep the largest groups.

    Singleton communities are dropped. Ties keep ascending community id.
    """
    groups: Dict[int, List[str]] = defaultdict(list)
    for fid, community in communities.items():
        try:
            groups[int(community)].append(str(fid))
        except (TypeError, ValueError):
            logger.debug("Ignoring flight %s with community %r", fid, community)
    ranked = sorted(
        ((cid, sorted(members)) for cid, members in groups.items() if len(members) > 1),
        key=lambda item: (-len(item[1]), item[0]),
    )
    return ranked[: max(0, int(limit))]

"""Piecewise-linear flight trajectories and the in-memory flight set."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from math import atan2, cos, degrees, radians, sin
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..timefmt import SECONDS_PER_DAY, parse_compact_hms
from ..types import Position

__all__ = [
    "SEGMENT_COLUMNS",
    "Trajectory",
    "FlightSet",
    "initial_bearing",
    "load_segments_csv",
    "build_trajectories",
]

logger = logging.getLogger(__name__)

SEGMENT_COLUMNS = (
    "flight_identifier",
    "sequence",
    "time_begin_segment",
    "time_end_segment",
    "latitude_begin",
    "longitude_begin",
    "latitude_end",
    "longitude_end",
    "flight_level_begin",
    "flight_level_end",
)


def initial_bearing(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle initial bearing in degrees, normalised to [0, 360)."""
    lat1, lat2 = radians(lat1), radians(lat2)
    dlon = radians(lon2 - lon1)
    x = sin(dlon) * cos(lat2)
    y = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlon)
    return (degrees(atan2(x, y)) + 360.0) % 360.0


@dataclass(frozen=True, eq=False)
class Trajectory:
    """Time-stamped samples of one flight.

    Attributes:
        flight_id: Unique flight identifier.
        coords: ``(n, 3)`` array of longitude, latitude, altitude in feet.
            Altitude is NaN when the source had no flight level.
        times: ``(n,)`` non-decreasing sample times in seconds since midnight.
        call_sign, origin, destination: Descriptive metadata, may be None.
    """

    flight_id: str
    coords: np.ndarray
    times: np.ndarray
    call_sign: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None

    def __post_init__(self) -> None:
        coords = np.array(self.coords, dtype=np.float64).reshape(-1, 3)
        times = np.array(self.times, dtype=np.float64).reshape(-1)
        if coords.shape[0] != times.shape[0]:
            raise ValueError("coords and times must have the same length")
        if times.size > 1 and np.any(np.diff(times) < 0):
            raise ValueError(f"Sample times of flight {self.flight_id} are not ordered")
        coords.setflags(write=False)
        times.setflags(write=False)
        object.__setattr__(self, "flight_id", str(self.flight_id))
        object.__setattr__(self, "coords", coords)
        object.__setattr__(self, "times", times)

    @property
    def t0(self) -> float:
        return float(self.times[0]) if self.times.size else 0.0

    @property
    def t1(self) -> float:
        return float(self.times[-1]) if self.times.size else 0.0

    def __len__(self) -> int:
        return int(self.times.size)

    def is_active(self, t: float) -> bool:
        return self.times.size > 0 and self.t0 <= t <= self.t1

    def segment_index(self, t: float) -> int:
        """Index ``i`` of the first pair with ``times[i] <= t <= times[i+1]``."""
        j = int(np.searchsorted(self.times, t, side="left"))
        return max(0, min(j - 1, self.times.size - 2))

    def progress(self, t: float) -> Tuple[int, float]:
        """Return the bracketing segment index and the fraction ``u`` along it."""
        i = self.segment_index(t)
        ta, tb = float(self.times[i]), float(self.times[i + 1])
        u = 0.0 if tb == ta else (t - ta) / (tb - ta)
        return i, u

    def position_at(self, t: float) -> Optional[Position]:
        """Interpolated position and heading at ``t``, or None when inactive."""
        if not self.is_active(t):
            return None
        if self.times.size == 1:
            lon, lat, alt = self.coords[0]
            return Position(self.flight_id, float(lon), float(lat), _altitude(alt), 0.0)
        i, u = self.progress(t)
        a, b = self.coords[i], self.coords[i + 1]
        lon = a[0] + (b[0] - a[0]) * u
        lat = a[1] + (b[1] - a[1]) * u
        if np.isnan(a[2]) or np.isnan(b[2]):
            alt = None
        else:
            alt = float(a[2] + (b[2] - a[2]) * u)
        heading = initial_bearing(a[0], a[1], b[0], b[1])
        return Position(self.flight_id, float(lon), float(lat), alt, heading)


def _altitude(value: float) -> Optional[float]:
    return None if np.isnan(value) else float(value)


@dataclass
class FlightSet:
    """Read-only collection of trajectories with id/callsign lookup."""

    trajectories: Dict[str, Trajectory] = field(default_factory=dict)
    _by_callsign: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _by_callsign_folded: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _by_id_folded: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _ids: np.ndarray = field(default=None, init=False, repr=False)  # type: ignore[assignment]
    _t0: np.ndarray = field(default=None, init=False, repr=False)  # type: ignore[assignment]
    _t1: np.ndarray = field(default=None, init=False, repr=False)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        for fid, traj in self.trajectories.items():
            if traj.call_sign:
                # first flight wins when callsigns repeat
                self._by_callsign.setdefault(traj.call_sign, fid)
                self._by_callsign_folded.setdefault(traj.call_sign.casefold(), fid)
            self._by_id_folded.setdefault(fid.casefold(), fid)
        non_empty = [tr for tr in self.trajectories.values() if len(tr)]
        self._ids = np.array([tr.flight_id for tr in non_empty], dtype=object)
        self._t0 = np.array([tr.t0 for tr in non_empty], dtype=np.float64)
        self._t1 = np.array([tr.t1 for tr in non_empty], dtype=np.float64)

    @classmethod
    def from_trajectories(cls, trajectories: Iterable[Trajectory]) -> "FlightSet":
        return cls({tr.flight_id: tr for tr in trajectories})

    def __len__(self) -> int:
        return len(self.trajectories)

    def __contains__(self, flight_id: object) -> bool:
        return flight_id in self.trajectories

    def get(self, flight_id: str) -> Optional[Trajectory]:
        return self.trajectories.get(str(flight_id))

    def bounds(self) -> Optional[Tuple[float, float]]:
        """(earliest t0, latest t1) over all flights, None for an empty set."""
        if self._t0.size == 0:
            return None
        return float(self._t0.min()), float(self._t1.max())

    def active_flight_ids(self, t: float) -> List[str]:
        mask = (self._t0 <= t) & (t <= self._t1)
        return [str(fid) for fid in self._ids[mask]]

    def positions_at(self, t: float, flight_ids: Optional[Iterable[str]] = None) -> List[Position]:
        ids = self.active_flight_ids(t) if flight_ids is None else flight_ids
        out: List[Position] = []
        for fid in ids:
            traj = self.trajectories.get(str(fid))
            if traj is None:
                continue
            pos = traj.position_at(t)
            if pos is not None:
                out.append(pos)
        return out

    def display_token(self, flight_id: str) -> str:
        """Callsign of a flight when known, else its id."""
        traj = self.trajectories.get(str(flight_id))
        if traj is not None and traj.call_sign:
            return traj.call_sign
        return str(flight_id)

    def resolve_token(self, token: str) -> Optional[str]:
        """Map a flight id or callsign to a flight id.

        Exact matches are tried before case-insensitive ones.
        """
        tok = str(token).strip()
        if not tok:
            return None
        if tok in self.trajectories:
            return tok
        if tok in self._by_callsign:
            return self._by_callsign[tok]
        folded = tok.casefold()
        return self._by_id_folded.get(folded) or self._by_callsign_folded.get(folded)


def load_segments_csv(path: Union[str, Path]) -> pd.DataFrame:
    """Read a flight segment CSV with identifier and time columns kept as text."""
    text_cols = {
        "flight_identifier": str,
        "segment_identifier": str,
        "call_sign": str,
        "origin_aerodrome": str,
        "destination_aerodrome": str,
        "time_begin_segment": str,
        "time_end_segment": str,
        "date_begin_segment": str,
        "date_end_segment": str,
    }
    df = pd.read_csv(path, dtype=text_cols, skip_blank_lines=True)
    missing = [c for c in SEGMENT_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Segment file {path} is missing columns: {missing}")
    return df


def _meta(value: object) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    s = str(value).strip()
    return s or None


def _unwrap_time(t: float, previous: Optional[float]) -> float:
    # segments continuing past midnight restart their clock at 0
    while previous is not None and t < previous:
        t += SECONDS_PER_DAY
    return t


def build_trajectories(segments: pd.DataFrame) -> FlightSet:
    """Group segment rows into trajectories keyed by flight identifier.

    Segments are ordered by ``sequence``; a segment's begin point is only
    added when it differs in position from the previous point, its end point
    always is. Altitude is flight level times 100 feet. Rows with an
    unparsable time are skipped.
    """
    missing = [c for c in SEGMENT_COLUMNS if c not in segments.columns]
    if missing:
        raise ValueError(f"Segment frame is missing columns: {missing}")

    df = segments[segments["flight_identifier"].notna()]
    trajectories: List[Trajectory] = []
    skipped = 0
    for flight_id, group in df.groupby("flight_identifier", sort=False):
        group = group.sort_values("sequence", kind="stable")
        coords: List[Tuple[float, float, float]] = []
        times: List[float] = []
        for row in group.itertuples(index=False):
            try:
                tb = float(parse_compact_hms(row.time_begin_segment))
                te = float(parse_compact_hms(row.time_end_segment))
            except ValueError:
                skipped += 1
                continue
            p0 = (float(row.longitude_begin), float(row.latitude_begin), float(row.flight_level_begin) * 100.0)
            p1 = (float(row.longitude_end), float(row.latitude_end), float(row.flight_level_end) * 100.0)
            if not coords or coords[-1][0] != p0[0] or coords[-1][1] != p0[1]:
                tb = _unwrap_time(tb, times[-1] if times else None)
                coords.append(p0)
                times.append(tb)
            te = _unwrap_time(te, times[-1] if times else None)
            coords.append(p1)
            times.append(te)
        if not coords:
            continue
        first = group.iloc[0]
        trajectories.append(
            Trajectory(
                flight_id=str(flight_id),
                coords=np.asarray(coords, dtype=np.float64),
                times=np.asarray(times, dtype=np.float64),
                call_sign=_meta(first.get("call_sign")),
                origin=_meta(first.get("origin_aerodrome")),
                destination=_meta(first.get("destination_aerodrome")),
            )
        )
    if skipped:
        logger.warning("Skipped %d segment rows with unparsable times", skipped)
    logger.info("Built %d trajectories from %d segment rows", len(trajectories), len(df))
    return FlightSet.from_trajectories(trajectories)

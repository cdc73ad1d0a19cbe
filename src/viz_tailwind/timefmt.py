"""Time-of-day parsing and formatting helpers.

All times handled by the visualizer are seconds since local midnight. The
backend speaks several string dialects for the same quantity:

- compact HMS from the segment files (``"754"`` is 00:07:54),
- clock labels ``"HH:MM"`` / ``"HH:MM:SS"``,
- reference times ``"HHMMSS"`` for ranking and flow endpoints,
- bin labels ``"HH:MM-HH:MM"`` for occupancy and hotspot windows.
"""
from __future__ import annotations

from typing import Any, List, Sequence, Tuple

__all__ = [
    "SECONDS_PER_DAY",
    "DURATION_PRESETS",
    "parse_compact_hms",
    "parse_clock",
    "parse_bin_label",
    "bin_label_span",
    "format_hhmm",
    "format_hhmmss",
    "format_ref_time",
    "hour_label",
    "parse_duration_preset",
    "preset_for_window",
    "window_to_bins",
]

SECONDS_PER_DAY = 24 * 3600

DURATION_PRESETS: Tuple[str, ...] = (
    "15",
    "30",
    "45",
    "1h",
    "1h15",
    "1h30",
    "1h45",
    "2h",
    "2h30",
    "3h",
    "3h30",
    "4h",
)


def parse_compact_hms(value: Any) -> int:
    """Parse a compact HMS string into seconds since midnight.

    The last two digits are seconds, the two before are minutes and whatever
    remains is hours: ``"754"`` -> 474, ``"50007"`` -> 18007.
    """
    s = str(value).strip()
    if s.endswith(".0"):
        # pandas may hand back floats for numeric columns
        s = s[:-2]
    if s and not s.isdigit():
        raise ValueError(f"Invalid compact time '{value}'")
    sec = int(s[-2:] or "0")
    minute = int(s[-4:-2] or "0")
    hour = int(s[:-4] or "0")
    return hour * 3600 + minute * 60 + sec


def parse_clock(value: Any) -> int:
    """Seconds since midnight for ``HH:MM``, ``HH:MM:SS``, ``HHMM`` or ``HHMMSS``.

    ``24:00`` is accepted as the exclusive end of a day-long window.

    Raises:
        ValueError: If the string is empty, malformed or out of range.
    """
    s = str(value).strip()
    if ":" in s:
        fields = s.split(":")
    elif s.isdigit() and len(s) in (4, 6):
        fields = [s[i : i + 2] for i in range(0, len(s), 2)]
    else:
        raise ValueError(f"Invalid time format '{value}'")
    if len(fields) not in (2, 3) or not all(f.isdigit() for f in fields):
        raise ValueError(f"Invalid time format '{value}'")

    hour, minute = int(fields[0]), int(fields[1])
    second = int(fields[2]) if len(fields) == 3 else 0
    seconds = hour * 3600 + minute * 60 + second
    if minute >= 60 or second >= 60 or seconds > SECONDS_PER_DAY:
        raise ValueError(f"Time out of range in '{value}'")
    return seconds


def parse_bin_label(label: str) -> Tuple[int, int]:
    """Split a ``"HH:MM-HH:MM"`` label into raw (start, end) seconds.

    The end is returned as written; callers decide how to treat a bin whose
    end precedes its start (see ``bin_label_span``).
    """
    if not isinstance(label, str) or "-" not in label:
        raise ValueError(f"Invalid bin label '{label}'")
    left, right = label.split("-", 1)
    return parse_clock(left), parse_clock(right)


def bin_label_span(label: str) -> Tuple[int, int]:
    """Return (start, end) seconds with end pushed past midnight when it wraps."""
    start, end = parse_bin_label(label)
    if end <= start:
        end += SECONDS_PER_DAY
    return start, end


def format_hhmm(seconds: float) -> str:
    total = int(seconds) // 60
    hour = (total // 60) % 24
    minute = total % 60
    return f"{hour:02d}:{minute:02d}"


def format_hhmmss(seconds: float) -> str:
    total = int(seconds)
    hour = (total // 3600) % 24
    minute = (total % 3600) // 60
    sec = total % 60
    return f"{hour:02d}:{minute:02d}:{sec:02d}"


def format_ref_time(seconds: float) -> str:
    """Format a time as the ``HHMMSS`` reference string the backend expects."""
    return format_hhmmss(seconds).replace(":", "")


def hour_label(hour: int) -> str:
    """Hourly capacity key, e.g. ``hour_label(23) == "23:00-00:00"``."""
    h = int(hour) % 24
    return f"{h:02d}:00-{(h + 1) % 24:02d}:00"


def parse_duration_preset(preset: str) -> int:
    """Convert a preset such as ``"1h30"`` or ``"45"`` into seconds.

    Bare numbers are minutes.
    """
    s = str(preset).strip().lower()
    if not s:
        raise ValueError("duration preset cannot be empty")
    if "h" in s:
        hours_str, _, minutes_str = s.partition("h")
        if not hours_str.isdigit() or (minutes_str and not minutes_str.isdigit()):
            raise ValueError(f"Invalid duration preset '{preset}'")
        return int(hours_str) * 3600 + int(minutes_str or "0") * 60
    if not s.isdigit():
        raise ValueError(f"Invalid duration preset '{preset}'")
    return int(s) * 60


def preset_for_window(duration_s: float, presets: Sequence[str] = DURATION_PRESETS) -> str:
    """Return the preset matching ``duration_s`` exactly, else the nearest one."""
    if not presets:
        raise ValueError("presets cannot be empty")
    best = presets[0]
    best_diff = None
    for preset in presets:
        diff = abs(parse_duration_preset(preset) - duration_s)
        if diff == 0:
            return preset
        if best_diff is None or diff < best_diff:
            best, best_diff = preset, diff
    return best


def window_to_bins(from_s: float, to_s: float, bin_minutes: int) -> List[int]:
    """Bin indices covering ``[from_s, to_s)`` for a fixed bin width.

    A window whose end does not exceed its start still yields the bin that
    contains ``from_s``.
    """
    if bin_minutes <= 0:
        raise ValueError("bin_minutes must be positive")
    width = int(bin_minutes) * 60
    first = int(from_s) // width
    last = (int(to_s) - 1) // width if to_s > from_s else first
    return list(range(first, max(first, last) + 1))

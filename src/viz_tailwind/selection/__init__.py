from .manager import ALL_VISIBLE_TOKEN, TemporalSelectionManager
from .sets import (
    active_hotspots,
    arrival_seconds_by_flight,
    candidates_from_time_windows,
    focus_flight_ids,
    hotspot_contains,
    regulation_candidate_ids,
    time_in_window,
    top_flow_groups,
)

__all__ = [
    "ALL_VISIBLE_TOKEN",
    "TemporalSelectionManager",
    "active_hotspots",
    "arrival_seconds_by_flight",
    "candidates_from_time_windows",
    "focus_flight_ids",
    "hotspot_contains",
    "regulation_candidate_ids",
    "time_in_window",
    "top_flow_groups",
]

"""Client-side time engine and selection core for the tailwind traffic visualizer."""

from .actions.regulations import Regulation, RegulationPlan
from .config import DEFAULT_CONFIG, VizConfig, config_from_env, resolve_config
from .engine.clock import SimulationClock
from .engine.trajectory import FlightSet, Trajectory, build_trajectories
from .occupancy.rolling import RollingOccupancySeries
from .selection.manager import TemporalSelectionManager
from .session import SimulationSession

__all__ = [
    "DEFAULT_CONFIG",
    "VizConfig",
    "config_from_env",
    "resolve_config",
    "SimulationClock",
    "FlightSet",
    "Trajectory",
    "build_trajectories",
    "RollingOccupancySeries",
    "TemporalSelectionManager",
    "Regulation",
    "RegulationPlan",
    "SimulationSession",
]

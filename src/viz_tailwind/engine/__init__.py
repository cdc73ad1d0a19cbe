from .clock import SimulationClock
from .trajectory import FlightSet, Trajectory, build_trajectories, initial_bearing, load_segments_csv

__all__ = [
    "SimulationClock",
    "FlightSet",
    "Trajectory",
    "build_trajectories",
    "initial_bearing",
    "load_segments_csv",
]

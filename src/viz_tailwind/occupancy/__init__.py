from .rolling import OccupancyPoint, RollingOccupancySeries, RollingValue, bins_per_hour, rolling_forward_sum

__all__ = [
    "OccupancyPoint",
    "RollingOccupancySeries",
    "RollingValue",
    "bins_per_hour",
    "rolling_forward_sum",
]

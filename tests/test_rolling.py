import sys
from pathlib import Path

project_root = Path(__file__).resolve().parents[1] / "src"
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import logging

import numpy as np
import pytest

from viz_tailwind.occupancy.rolling import RollingOccupancySeries, bins_per_hour, rolling_forward_sum


def _payload() -> dict:
    return {
        "traffic_volume_id": "TV1",
        "occupancy_counts": {
            "06:15-06:30": 6,
            "06:00-06:15": 4,
            "06:45-07:00": 3,
            "06:30-06:45": 2,
        },
        "hourly_capacity": {"06:00-07:00": 12},
        "metadata": {"time_bin_minutes": 15, "total_time_windows": 96},
    }


def test_forward_rolling_sum_does_not_wrap() -> None:
    out = rolling_forward_sum(np.array([2, 3, 5, 1]), 4)
    assert out.tolist() == [11, 9, 6, 1]


def test_forward_rolling_sum_edge_cases() -> None:
    assert rolling_forward_sum(np.array([], dtype=np.int64), 4).tolist() == []
    assert rolling_forward_sum(np.array([7, 8]), 1).tolist() == [7, 8]
    with pytest.raises(ValueError):
        rolling_forward_sum(np.array([1]), 0)


@pytest.mark.parametrize("minutes,expected", [(15, 4), (20, 3), (60, 1), (120, 1), (8, 8), (24, 3)])
def test_bins_per_hour(minutes: int, expected: int) -> None:
    assert bins_per_hour(minutes) == expected


def test_series_from_payload_sorts_and_annotates_capacity() -> None:
    series = RollingOccupancySeries.from_payload(_payload())
    assert [p.label for p in series.points] == ["06:00-06:15", "06:15-06:30", "06:30-06:45", "06:45-07:00"]
    assert series.rolling_counts.tolist() == [15, 11, 5, 3]
    assert all(p.capacity == 12.0 for p in series.points)
    assert series.bin_minutes == 15 and series.bins_per_hour == 4


def test_current_value_uses_bin_covering_time() -> None:
    series = RollingOccupancySeries.from_payload(_payload())
    reading = series.current_value_at(6 * 3600 + 20 * 60)
    assert reading.value == 11
    assert reading.capacity == 12.0
    assert reading.label == "06:15-06:30"


def test_current_value_falls_back_to_clamped_forward_lookup() -> None:
    series = RollingOccupancySeries.from_payload(_payload())
    # before the series: first bin at or after t
    assert series.current_value_at(3 * 3600).label == "06:00-06:15"
    # after the series: last bin
    assert series.current_value_at(20 * 3600).label == "06:45-07:00"
    assert series.nearest_bin_at(6 * 3600 + 20 * 60).label == "06:30-06:45"


def test_empty_series_reads_zero() -> None:
    series = RollingOccupancySeries.from_counts({}, {})
    assert len(series) == 0
    reading = series.current_value_at(1000.0)
    assert (reading.value, reading.capacity, reading.label) == (0, None, None)
    assert series.bin_minutes == 60


def test_malformed_labels_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    counts = {"06:00-06:15": 1, "garbage": 5, "25:00-25:15": 2, "06:15-06:30": "x", "06:15-06:30 ": 3}
    with caplog.at_level(logging.WARNING):
        series = RollingOccupancySeries.from_counts(counts, {}, bin_minutes=15)
    assert [p.count for p in series.points] == [1, 3]
    assert series.rolling_counts.tolist() == [4, 3]
    assert "garbage" in caplog.text


def test_bin_width_inferred_from_first_label() -> None:
    series = RollingOccupancySeries.from_counts({"10:00-10:30": 1, "10:30-11:00": 2, "11:00-11:30": 4}, {})
    assert series.bin_minutes == 30
    assert series.rolling_counts.tolist() == [3, 6, 4]


@pytest.mark.parametrize("explicit", [7.5, "7.5", 0, "abc"])
def test_unusable_bin_minutes_fall_back_to_labels(explicit, caplog: pytest.LogCaptureFixture) -> None:
    counts = {"10:00-10:30": 1, "10:30-11:00": 2}
    with caplog.at_level(logging.WARNING):
        series = RollingOccupancySeries.from_counts(counts, {}, bin_minutes=explicit)
    assert series.bin_minutes == 30
    assert "time_bin_minutes" in caplog.text
    assert RollingOccupancySeries.from_counts(counts, {}, bin_minutes=30.0).bin_minutes == 30


def test_capacity_keys_wrap_at_midnight() -> None:
    series = RollingOccupancySeries.from_counts(
        {"23:45-00:00": 2, "23:30-23:45": 1},
        {"23:00-00:00": 9},
        bin_minutes=15,
    )
    assert [p.capacity for p in series.points] == [9.0, 9.0]
    assert series.capacity_for_time(23 * 3600 + 50 * 60) == 9.0
    assert series.capacity_for_time(3600) is None
    assert series.current_value_at(23 * 3600 + 50 * 60).label == "23:45-00:00"


def test_window_and_overload_queries() -> None:
    payload = _payload()
    payload["hourly_capacity"] = {"06:00-07:00": 10}
    series = RollingOccupancySeries.from_payload(payload)
    assert [p.label for p in series.overloaded_bins()] == ["06:00-06:15", "06:15-06:30"]
    labels = [p.label for p in series.window(6 * 3600 + 30 * 60, 15 * 60)]
    assert labels == ["06:15-06:30", "06:30-06:45", "06:45-07:00"]
    frame = series.as_frame()
    assert list(frame.columns) == ["label", "start_s", "count", "rolling", "capacity"]
    assert frame["rolling"].tolist() == [15, 11, 5, 3]

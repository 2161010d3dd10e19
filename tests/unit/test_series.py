from datetime import datetime, timedelta, timezone

import pytest

from coinfeed.models import Candle
from coinfeed.utils.series import Series

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candle(seconds: int, close: float = 100.0) -> Candle:
    """Helper to create a candle `seconds` after T0."""
    return Candle(timestamp=T0 + timedelta(seconds=seconds), close=close)


def seconds_of(series: Series[Candle]) -> list[int]:
    return [int((c.timestamp - T0).total_seconds()) for c in series]


def test_initialization() -> None:
    """Tests the constructor and initial state of the Series."""
    series = Series[Candle](5)
    assert series.capacity == 5
    assert len(series) == 0
    assert not series.is_full
    assert series.last is None

    with pytest.raises(ValueError, match="Capacity must be a positive integer."):
        Series[Candle](0)
    with pytest.raises(ValueError, match="Capacity must be a positive integer."):
        Series[Candle](-1)
    with pytest.raises(ValueError, match="Capacity must be a positive integer."):
        Series[Candle](2.5)  # type: ignore[arg-type]


def test_initial_items_are_sorted_and_trimmed() -> None:
    series = Series(3, [candle(4), candle(1), candle(3), candle(2)])
    assert seconds_of(series) == [2, 3, 4]


def test_overflow_evicts_oldest() -> None:
    """Tests that the series discards the oldest point when full."""
    series = Series[Candle](3)
    series.extend([candle(1), candle(2), candle(3)])
    assert series.is_full

    series.append(candle(4))
    assert len(series) == 3
    assert seconds_of(series) == [2, 3, 4]
    assert series.last == candle(4)


def test_out_of_order_point_is_inserted_sorted() -> None:
    series = Series[Candle](5)
    series.extend([candle(1), candle(3), candle(5)])
    assert series.append(candle(2))
    assert seconds_of(series) == [1, 2, 3, 5]


def test_out_of_order_point_in_full_series_evicts_oldest() -> None:
    series = Series[Candle](3)
    series.extend([candle(1), candle(3), candle(5)])
    assert series.append(candle(4))
    assert seconds_of(series) == [3, 4, 5]


def test_point_older_than_full_window_is_dropped() -> None:
    series = Series[Candle](3)
    series.extend([candle(10), candle(11), candle(12)])
    assert not series.append(candle(5))
    assert seconds_of(series) == [10, 11, 12]


def test_equal_timestamps_keep_arrival_order() -> None:
    series = Series[Candle](5)
    series.append(candle(1, close=1.0))
    series.append(candle(2, close=2.0))
    series.append(candle(1, close=3.0))
    assert [c.close for c in series] == [1.0, 3.0, 2.0]


def test_replace_swaps_content() -> None:
    series = Series[Candle](3)
    series.extend([candle(1), candle(2)])
    series.replace([candle(20), candle(10), candle(30), candle(40)])
    assert seconds_of(series) == [20, 30, 40]

    series.replace([])
    assert len(series) == 0


def test_snapshot_is_immutable_copy() -> None:
    series = Series[Candle](3)
    series.append(candle(1))
    snapshot = series.snapshot()
    series.append(candle(2))
    assert snapshot == (candle(1),)
    assert isinstance(snapshot, tuple)


def test_getitem_and_clear() -> None:
    series = Series[Candle](3)
    series.extend([candle(1), candle(2)])
    assert series[0] == candle(1)
    assert series[-1] == candle(2)
    with pytest.raises(IndexError):
        _ = series[2]

    series.clear()
    assert len(series) == 0
    assert series.capacity == 3


def test_repr() -> None:
    series = Series[Candle](10)
    series.extend([candle(1), candle(2)])
    assert repr(series) == "Series(capacity=10, size=2)"


def test_resize_keeps_newest_points() -> None:
    series = Series[Candle](5)
    series.extend([candle(i) for i in range(5)])

    series.resize(3)
    assert series.capacity == 3
    assert seconds_of(series) == [2, 3, 4]

    series.resize(10)
    series.extend([candle(5), candle(6)])
    assert seconds_of(series) == [2, 3, 4, 5, 6]
    assert not series.is_full

    with pytest.raises(ValueError, match="Capacity must be a positive integer."):
        series.resize(0)

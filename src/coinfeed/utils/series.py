import bisect
from collections import deque
from collections.abc import Iterable, Iterator, Sized
from datetime import datetime
from operator import attrgetter
from typing import Generic, Protocol, TypeVar


class Timestamped(Protocol):
    @property
    def timestamp(self) -> datetime: ...


T = TypeVar("T", bound=Timestamped)

_timestamp_of = attrgetter("timestamp")


class Series(Sized, Generic[T]):
    """A bounded, time-ascending sliding window of chart points.

    Backed by `collections.deque`. Appending to a full series evicts the
    oldest point. Points that arrive out of order are inserted at their
    sorted position, so iteration always yields ascending timestamps.
    """

    def __init__(self, capacity: int, items: Iterable[T] = ()) -> None:
        """Initializes the Series.

        Args:
            capacity: The maximum number of points the series can hold.
            items: Optional initial points, in any order.

        Raises:
            ValueError: If the capacity is not a positive integer.
        """
        self._capacity = _check_capacity(capacity)
        self._data: deque[T] = deque(maxlen=capacity)
        self.replace(items)

    @property
    def capacity(self) -> int:
        """The maximum number of points the series can hold."""
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._data) == self._capacity

    @property
    def last(self) -> T | None:
        """The newest point, or None if the series is empty."""
        return self._data[-1] if self._data else None

    def append(self, item: T) -> bool:
        """Adds a point, evicting the oldest one if the series is full.

        Args:
            item: The point to add.

        Returns:
            False if the point was dropped because it is older than every
            point of a full series, True otherwise.
        """
        if not self._data or _timestamp_of(item) >= _timestamp_of(self._data[-1]):
            self._data.append(item)
            return True

        # Out of order: find its slot without disturbing the existing points.
        if self.is_full:
            if _timestamp_of(item) < _timestamp_of(self._data[0]):
                return False
            self._data.popleft()
        index = bisect.bisect_right(self._data, _timestamp_of(item), key=_timestamp_of)
        self._data.insert(index, item)
        return True

    def resize(self, capacity: int) -> None:
        """Changes the capacity, keeping the newest points that still fit."""
        self._capacity = _check_capacity(capacity)
        self._data = deque(self._data, maxlen=capacity)

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.append(item)

    def replace(self, items: Iterable[T]) -> None:
        """Swaps the whole content for the newest `capacity` of ``items``."""
        ordered = sorted(items, key=_timestamp_of)
        self._data.clear()
        self._data.extend(ordered[-self._capacity :])

    def snapshot(self) -> tuple[T, ...]:
        """Returns an immutable copy suitable for publishing."""
        return tuple(self._data)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index: int) -> T:
        return self._data[index]

    def __iter__(self) -> Iterator[T]:
        return iter(self._data)

    def __repr__(self) -> str:
        return f"Series(capacity={self.capacity}, size={len(self)})"


def _check_capacity(capacity: int) -> int:
    if not isinstance(capacity, int) or capacity <= 0:
        err_msg = "Capacity must be a positive integer."
        raise ValueError(err_msg)
    return capacity

import asyncio
from collections.abc import Callable
from typing import Final

from loguru import logger

from coinfeed.models import Candle, PricePoint
from coinfeed.utils.series import Series

# Emit at most one series update per this many seconds.
DEFAULT_THROTTLE_INTERVAL_S: Final[float] = 1.0

SnapshotCallback = Callable[[tuple[Candle, ...]], None]


class Aggregator:
    """Throttles live ticks into a bounded series.

    Ticks are submitted as they arrive. The first tick of a window arms a
    timer; every later tick in the same window replaces the pending one.
    When the timer fires, only the latest pending tick is appended to the
    series and a single snapshot is emitted. Earlier ticks of the window
    are dropped, not merged.

    Points already in the series are never touched: the aggregator only
    ever appends, and the series evicts its oldest point when full.
    """

    def __init__(
        self,
        series: Series[Candle],
        on_emit: SnapshotCallback,
        interval_s: float = DEFAULT_THROTTLE_INTERVAL_S,
    ) -> None:
        """Initializes the Aggregator.

        Args:
            series: The series that accepted ticks are appended to.
            on_emit: Receives a snapshot of the series after each append.
            interval_s: Length of a throttle window in seconds.
        """
        if interval_s <= 0:
            err_msg = "Throttle interval must be a positive number."
            raise ValueError(err_msg)
        self.series = series
        self.interval_s = interval_s
        self._on_emit = on_emit
        self._pending: PricePoint | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.dropped = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def submit(self, point: PricePoint) -> None:
        """Queues a tick for the current window. Must run on the event loop."""
        if self._pending is not None:
            self.dropped += 1
        self._pending = point
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.interval_s, self.flush)

    def flush(self) -> bool:
        """Appends the pending tick now and emits a snapshot.

        Returns:
            True if a tick was pending and has been emitted.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        point, self._pending = self._pending, None
        if point is None:
            return False

        if not self.series.append(point.to_candle()):
            logger.debug(f"Dropped tick at {point.timestamp}; older than the window.")
            return False
        self._on_emit(self.series.snapshot())
        return True

    def reset(self) -> None:
        """Cancels the window timer and forgets the pending tick."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None

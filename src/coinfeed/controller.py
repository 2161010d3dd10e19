import asyncio
import functools
from typing import Any, Protocol

from loguru import logger

from coinfeed.aggregator import DEFAULT_THROTTLE_INTERVAL_S, Aggregator
from coinfeed.errors import FeedError
from coinfeed.models import (
    LIVE_WINDOW,
    Candle,
    FeedMode,
    FeedState,
    Interval,
    PricePoint,
)
from coinfeed.publisher import Publisher, Topic
from coinfeed.sources.base import StreamSource
from coinfeed.utils.series import Series

# Interval fetched to seed the chart before live ticks start arriving.
SEED_INTERVAL = Interval.ONE_MIN


class CandleSource(Protocol):
    async def fetch(self, symbol: str, interval: Interval) -> list[Candle]: ...


class FeedController:
    """Keeps one chart series up to date for a tracked symbol.

    The controller is a small state machine over `FeedMode`:

    - IDLE: nothing tracked, empty series.
    - HISTORICAL: a single poll fetch per interval selection. A successful
      fetch replaces the series; a failed one keeps the previous series and
      sets `last_error`. The series grows to hold the whole fetched
      snapshot.
    - LIVE: a seed fetch at `SEED_INTERVAL` fills the series, then the
      stream source appends throttled ticks. The series holds at most
      `series_capacity` points, evicting the oldest. Stream failures only set
      `last_error`; the mode stays LIVE until the consumer changes it.

    Every transition (attach, select_symbol, select_interval, retry,
    detach) runs under one lock and fully tears down the active source
    before starting the next. Each transition starts a new session; fetch
    results and ticks that belong to an older session are discarded.

    State snapshots are published on ``("feed", name)`` after every change.
    """

    def __init__(
        self,
        poll_source: CandleSource,
        stream_source: StreamSource,
        publisher: Publisher | None = None,
        *,
        name: str = "chart",
        series_capacity: int = LIVE_WINDOW,
        throttle_interval_s: float = DEFAULT_THROTTLE_INTERVAL_S,
    ) -> None:
        self.poll_source = poll_source
        self.stream_source = stream_source
        self.publisher = publisher or Publisher()
        self.name = name
        self.series_capacity = series_capacity
        self._series: Series[Candle] = Series(series_capacity)
        self._aggregator = Aggregator(
            self._series, self._on_aggregated, interval_s=throttle_interval_s
        )
        self._symbol: str | None = None
        self._interval = Interval.LIVE
        self._mode = FeedMode.IDLE
        self._is_loading = False
        self._last_error: str | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._sessions: set[asyncio.Task[None]] = set()

    # --- Read access ---

    @property
    def topic(self) -> Topic:
        return ("feed", self.name)

    @property
    def mode(self) -> FeedMode:
        return self._mode

    @property
    def state(self) -> FeedState:
        return FeedState(
            symbol=self._symbol or "",
            interval=self._interval,
            mode=self._mode,
            is_loading=self._is_loading,
            last_error=self._last_error,
            series=self._series.snapshot(),
        )

    def subscribe(self, queue: "asyncio.Queue[Any]") -> int:
        """Subscribes a queue to this controller's state snapshots."""
        return self.publisher.subscribe(self.topic, queue)

    def unsubscribe(self, sub_id: int) -> None:
        self.publisher.unsubscribe(sub_id)

    # --- Transitions ---

    async def attach(self, symbol: str, interval: Interval = Interval.LIVE) -> None:
        """Starts tracking a symbol at the given interval."""
        await self._attach(symbol, interval)

    async def select_symbol(self, symbol: str) -> None:
        """Switches to another symbol, keeping the current interval.

        The series is cleared: it holds the previous symbol's prices.
        """
        await self._attach(symbol, None)

    async def _attach(self, symbol: str, interval: Interval | None) -> None:
        symbol = _clean_symbol(symbol)
        async with self._lock:
            self._symbol = symbol
            if interval is not None:
                self._interval = interval
            self._series.clear()
            session = await self._restart(self._symbol)
        await _settle(session)

    async def select_interval(self, interval: Interval) -> None:
        """Switches between live streaming and a historical interval."""
        async with self._lock:
            self._interval = interval
            if self._symbol is None:
                logger.debug(
                    f"[{self.name}] Interval set to {interval.value} before attach."
                )
                return
            session = await self._restart(self._symbol)
        await _settle(session)

    async def retry(self) -> None:
        """Re-enters the current mode, e.g. after a failure the user saw."""
        async with self._lock:
            if self._symbol is None:
                return
            session = await self._restart(self._symbol)
        await _settle(session)

    async def detach(self) -> None:
        """Stops every source and returns to IDLE with an empty series.

        The symbol is forgotten too: only a new `attach` leaves IDLE.
        """
        async with self._lock:
            symbol, self._symbol = self._symbol, None
            self._generation += 1
            await self._teardown()
            self._series.clear()
            self._mode = FeedMode.IDLE
            self._is_loading = False
            self._last_error = None
            self._publish()
        logger.info(f"[{self.name}] Detached from {symbol}.")

    async def close(self) -> None:
        """Detaches and waits for in-flight fetches to finish."""
        await self.detach()
        if self._sessions:
            await asyncio.wait(set(self._sessions))

    # --- Internals ---

    async def _teardown(self) -> None:
        await self.stream_source.stop()
        self._aggregator.reset()

    async def _restart(self, symbol: str) -> asyncio.Task[None]:
        """Tears down the active source and launches a new session.

        Must be called with the lock held.
        """
        self._generation += 1
        await self._teardown()

        self._mode = FeedMode.LIVE if self._interval.is_live else FeedMode.HISTORICAL
        self._is_loading = True
        self._last_error = None
        self._publish()
        logger.info(
            f"[{self.name}] Entering {self._mode.value} mode for {self._symbol} "
            f"({self._interval.value})."
        )

        session = asyncio.create_task(
            self._run_session(self._generation, symbol, self._interval)
        )
        self._sessions.add(session)
        session.add_done_callback(self._sessions.discard)
        return session

    async def _run_session(
        self, generation: int, symbol: str, interval: Interval
    ) -> None:
        fetch_interval = SEED_INTERVAL if interval.is_live else interval
        candles: list[Candle] | None = None
        error: str | None = None
        try:
            candles = await self.poll_source.fetch(symbol, fetch_interval)
        except FeedError as e:
            logger.warning(f"[{self.name}] Fetch for {symbol} failed: {e}")
            error = str(e)
        except Exception as e:
            logger.exception(f"[{self.name}] Unexpected error fetching {symbol}.")
            error = f"Unexpected error: {e}"

        async with self._lock:
            if generation != self._generation:
                logger.debug(f"[{self.name}] Discarding a superseded session result.")
                return
            if interval.is_live:
                self._series.resize(self.series_capacity)
            elif candles is not None:
                self._series.resize(max(self.series_capacity, len(candles)))
            if candles is not None:
                self._series.replace(candles)
            self._last_error = error
            self._is_loading = False
            if interval.is_live:
                await self.stream_source.start(
                    symbol,
                    on_tick=functools.partial(self._on_tick, generation),
                    on_error=functools.partial(self._on_stream_error, generation),
                )
            self._publish()

    def _on_tick(self, generation: int, point: PricePoint) -> None:
        if generation != self._generation or self._mode is not FeedMode.LIVE:
            return
        self._aggregator.submit(point)

    def _on_stream_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        self._last_error = str(error) or type(error).__name__
        self._publish()

    def _on_aggregated(self, _snapshot: tuple[Candle, ...]) -> None:
        self._publish()

    def _publish(self) -> None:
        self.publisher.publish(self.topic, self.state)


async def _settle(session: asyncio.Task[None]) -> None:
    """Waits for a session to finish without inheriting its fate."""
    await asyncio.wait({session})


def _clean_symbol(symbol: str) -> str:
    cleaned = symbol.strip().upper()
    if not cleaned:
        err_msg = "Symbol must not be empty."
        raise ValueError(err_msg)
    return cleaned

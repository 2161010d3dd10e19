import abc
import asyncio
import contextlib
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import websockets
from loguru import logger

from coinfeed.errors import FeedTransportError
from coinfeed.models import PricePoint

TickCallback = Callable[[PricePoint], None]
ErrorCallback = Callable[[Exception], None]
ConnectFactory = Callable[[str], AbstractAsyncContextManager[Any]]

# Ticks closer together than this are dropped at the source.
MIN_TICK_SPACING_S = 1.0


class StreamSource(abc.ABC):
    """An abstract base class for live trade streams.

    A stream source owns at most one WebSocket connection at a time. It
    parses each inbound message into a `PricePoint`, drops ticks that arrive
    faster than the minimum spacing, and hands the rest to the tick
    callback supplied to `start`.

    The source never reconnects by itself: when the connection fails or
    closes, the error callback is invoked once and the receive loop ends.
    Re-establishing the stream is the owner's decision.

    Subclasses supply the endpoint URL and the message parser.
    """

    def __init__(
        self,
        *,
        min_spacing_s: float = MIN_TICK_SPACING_S,
        clock: Callable[[], float] = time.monotonic,
        connect: ConnectFactory = websockets.connect,
    ) -> None:
        """Initializes the stream source.

        Args:
            min_spacing_s: Minimum seconds between two delivered ticks.
            clock: Monotonic clock used for tick spacing.
            connect: Factory opening a WebSocket as an async context manager.
        """
        self.min_spacing_s = min_spacing_s
        self._clock = clock
        self._connect = connect
        self._symbol: str | None = None
        self._last_emit: float | None = None
        self._main_task: asyncio.Task[None] | None = None

    @property
    @abc.abstractmethod
    def venue_name(self) -> str:
        """A unique, lowercase identifier for the exchange (e.g., 'binance')."""
        raise NotImplementedError

    @property
    def symbol(self) -> str | None:
        return self._symbol

    @property
    def is_running(self) -> bool:
        return self._main_task is not None and not self._main_task.done()

    async def start(
        self, symbol: str, on_tick: TickCallback, on_error: ErrorCallback
    ) -> None:
        """Opens the stream for a symbol, replacing any open connection.

        Args:
            symbol: The base asset to stream (e.g., 'BTC').
            on_tick: Receives every accepted tick.
            on_error: Receives the error that ended the connection.
        """
        await self.stop()
        self._symbol = symbol
        self._last_emit = None
        self._main_task = asyncio.create_task(
            self._receive_loop(symbol, on_tick, on_error)
        )
        logger.info(f"[{self.venue_name}] Stream started for {symbol}.")

    async def stop(self) -> None:
        """Closes the connection. Safe to call repeatedly or before `start`."""
        task, self._main_task = self._main_task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(f"[{self.venue_name}] Stream stopped for {self._symbol}.")

    async def _receive_loop(
        self, symbol: str, on_tick: TickCallback, on_error: ErrorCallback
    ) -> None:
        """Keeps exactly one receive in flight until the connection ends."""
        url = self._stream_url(symbol)
        try:
            async with self._connect(url) as websocket:
                logger.info(f"[{self.venue_name}] Connected to {url}")
                while True:
                    message_raw = await websocket.recv()
                    point = self._parse_message(message_raw)
                    if point is not None:
                        self._emit(point, on_tick)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"[{self.venue_name}] Stream for {symbol} closed: {e}")
            on_error(FeedTransportError(f"Live stream closed: {e}"))
        except (asyncio.TimeoutError, OSError) as e:
            logger.warning(
                f"[{self.venue_name}] Connection lost for {symbol}: "
                f"{type(e).__name__}: {e}"
            )
            on_error(FeedTransportError(f"Live stream connection lost: {e}"))
        except Exception as e:
            logger.exception(f"[{self.venue_name}] Unexpected error in stream loop.")
            on_error(e)

    def _emit(self, point: PricePoint, on_tick: TickCallback) -> None:
        now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self.min_spacing_s:
            return
        self._last_emit = now
        on_tick(point)

    @abc.abstractmethod
    def _stream_url(self, symbol: str) -> str:
        """Returns the WebSocket URL carrying trades for the symbol."""
        raise NotImplementedError

    @abc.abstractmethod
    def _parse_message(self, message: str | bytes) -> PricePoint | None:
        """Parses one raw WebSocket message.

        Returns:
            A PricePoint, or None if the message is malformed or is not a
            trade (it is then dropped).
        """
        raise NotImplementedError

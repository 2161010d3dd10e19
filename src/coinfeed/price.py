import asyncio
import contextlib
from typing import Any, Protocol

from loguru import logger

from coinfeed.backoff import BASE_DELAY_S, MAX_DELAY_S, BackoffState, next_delay
from coinfeed.publisher import Publisher, Topic


class PriceLookup(Protocol):
    async def fetch_price(self, symbol: str) -> float | None: ...


class PricePoller:
    """Polls the spot price of one symbol with exponential backoff.

    The first attempt runs immediately. After a successful lookup the next
    one follows `base_delay_s` later; consecutive failures double the wait
    up to `max_delay_s`. Each new price is published on ``("price", name)``.
    """

    def __init__(
        self,
        client: PriceLookup,
        publisher: Publisher | None = None,
        *,
        name: str = "spot",
        base_delay_s: float = BASE_DELAY_S,
        max_delay_s: float = MAX_DELAY_S,
    ) -> None:
        self.client = client
        self.publisher = publisher or Publisher()
        self.name = name
        self.symbol = ""
        self.current_price: float | None = None
        self.backoff = BackoffState(base_delay=base_delay_s, max_delay=max_delay_s)
        self._task: asyncio.Task[None] | None = None

    @property
    def topic(self) -> Topic:
        return ("price", self.name)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, queue: "asyncio.Queue[Any]") -> int:
        return self.publisher.subscribe(self.topic, queue)

    def unsubscribe(self, sub_id: int) -> None:
        self.publisher.unsubscribe(sub_id)

    async def start(self, symbol: str) -> None:
        """Starts polling a symbol, cancelling any loop already running."""
        await self.stop()
        self.symbol = symbol
        self.backoff = self.backoff.reset()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"[{self.name}] Price polling started for '{symbol}'.")

    async def update_symbol(self, symbol: str) -> None:
        """Changes the tracked symbol and restarts polling."""
        await self.start(symbol)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(f"[{self.name}] Price polling stopped for '{self.symbol}'.")

    async def _poll_loop(self) -> None:
        """Sleep, fetch, compute the next delay, repeat until cancelled.

        Cancellation lands at the sleep or at the in-flight fetch, so a stop
        takes effect within one sleep quantum.
        """
        delay = 0.0
        while True:
            if delay > 0:
                await asyncio.sleep(delay)

            symbol = self.symbol.strip()
            if not symbol:
                logger.info(f"[{self.name}] Symbol is empty, stopping price polling.")
                return

            try:
                price = await self.client.fetch_price(symbol)
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error polling {symbol}.")
                price = None

            if price is not None:
                self.current_price = price
                self.publisher.publish(self.topic, price)
                logger.debug(f"[{self.name}] Polled price {price} for {symbol}.")

            self.backoff, delay = next_delay(self.backoff, price is not None)
            if price is None:
                logger.warning(
                    f"[{self.name}] No price for {symbol}. Retrying in {delay:.1f}s."
                )

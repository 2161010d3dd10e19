import asyncio
from collections.abc import Iterable
from typing import Any, Final

import httpx
from loguru import logger

from coinfeed.errors import FeedDecodeError, FeedError, FeedTransportError
from coinfeed.models import MarketCoin, MarketState
from coinfeed.persistence import (
    COINS_CACHE_FILE,
    WATCHLIST_CACHE_FILE,
    FavoritesStore,
    JsonCache,
)
from coinfeed.publisher import Publisher, Topic

TOP_N: Final[int] = 10
MARKET_PAGE_SIZE: Final[int] = 100

MARKETS_ERROR = "Failed to load market data"
WATCHLIST_ERROR = "Failed to load watchlist"


class MarketService:
    """The market list and the user's watchlist, backed by CoinGecko.

    One instance is created at process start and handed to every consumer.
    `start` shows cached data first, so consumers never see an empty list
    while the network is slow, and then refreshes both lists. A failed
    refresh keeps whatever was shown before and sets `load_error`.

    Snapshots are published on ``("market", "all")`` after every change.
    """

    topic: Topic = ("market", "all")

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: JsonCache,
        favorites: FavoritesStore,
        publisher: Publisher | None = None,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        timeout_s: float = 15.0,
    ) -> None:
        self.http_client = http_client
        self.cache = cache
        self.favorites = favorites
        self.publisher = publisher or Publisher()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._api_key = api_key
        self.coins: tuple[MarketCoin, ...] = ()
        self.watchlist: tuple[MarketCoin, ...] = ()
        self.load_error: str | None = None
        self._loading = 0
        self._watchlist_generation = 0

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def state(self) -> MarketState:
        return MarketState(
            coins=self.coins,
            watchlist=self.watchlist,
            is_loading=self.is_loading,
            load_error=self.load_error,
        )

    def subscribe(self, queue: "asyncio.Queue[Any]") -> int:
        return self.publisher.subscribe(self.topic, queue)

    def unsubscribe(self, sub_id: int) -> None:
        self.publisher.unsubscribe(sub_id)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Loads favorites and cached lists, then refreshes from the network."""
        await self.favorites.load()
        await self.load_from_cache()
        await asyncio.gather(self.fetch_coin_markets(), self.fetch_watchlist())

    async def load_from_cache(self) -> None:
        coins = await self._read_cached(COINS_CACHE_FILE)
        if coins is not None:
            self.coins = tuple(self._mark_favorites(coins))
        watchlist = await self._read_cached(WATCHLIST_CACHE_FILE)
        if watchlist is not None:
            self.watchlist = tuple(watchlist)
        logger.info(
            f"Loaded {len(self.coins)} coins and {len(self.watchlist)} "
            "watchlist entries from cache."
        )
        self._publish()

    # --- Fetching ---

    async def fetch_coin_markets(self) -> None:
        """Refreshes the top coins by market cap, with sparklines."""
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": str(MARKET_PAGE_SIZE),
            "page": "1",
            "sparkline": "true",
            "price_change_percentage": "1h,24h",
        }
        self._begin_loading()
        try:
            fetched = await self._get_markets(params)
        except FeedError as e:
            logger.error(f"Error fetching markets: {e}")
            self.load_error = MARKETS_ERROR
        else:
            self.coins = tuple(self._mark_favorites(fetched))
            await self.cache.write(
                COINS_CACHE_FILE, [coin.to_cache() for coin in self.coins]
            )
            logger.success(f"Fetched {len(self.coins)} coin markets.")
        finally:
            self._end_loading()

    async def fetch_watchlist(self) -> None:
        """Refreshes the watchlist from the full set of favorites.

        With no favorites the watchlist is empty by definition and any stale
        watchlist cache is deleted.
        """
        self._watchlist_generation += 1
        generation = self._watchlist_generation

        ids = sorted(self.favorites.ids)
        if not ids:
            self.watchlist = ()
            await self.cache.remove(WATCHLIST_CACHE_FILE)
            self._publish()
            return

        params = {
            "vs_currency": "usd",
            "ids": ",".join(ids),
            "order": "market_cap_desc",
            "sparkline": "true",
            "price_change_percentage": "1h,24h",
        }
        self._begin_loading()
        try:
            fetched = await self._get_markets(params)
        except FeedError as e:
            if generation == self._watchlist_generation:
                logger.error(f"Error fetching watchlist: {e}")
                self.load_error = WATCHLIST_ERROR
        else:
            if generation != self._watchlist_generation:
                logger.debug("Discarding watchlist of a superseded request.")
                return
            self.watchlist = tuple(coin.with_favorite(True) for coin in fetched)
            await self.cache.write(
                WATCHLIST_CACHE_FILE, [coin.to_cache() for coin in self.watchlist]
            )
            logger.success(f"Fetched {len(self.watchlist)} watchlist coins.")
        finally:
            self._end_loading()

    # --- Favorites ---

    def is_favorite(self, coin_id: str) -> bool:
        return coin_id in self.favorites

    async def toggle_favorite(self, coin_id: str) -> bool:
        """Adds or removes a favorite, then re-fetches the whole watchlist.

        Returns:
            True if the coin is a favorite afterwards.
        """
        is_favorite = await self.favorites.toggle(coin_id)
        self.coins = tuple(self._mark_favorites(self.coins))
        self._publish()
        await self.fetch_watchlist()
        return is_favorite

    # --- Computed subsets ---

    @property
    def top_gainers(self) -> list[MarketCoin]:
        """Top coins by 24h price change, highest first."""
        return sorted(self.coins, key=_change_24h, reverse=True)[:TOP_N]

    @property
    def top_losers(self) -> list[MarketCoin]:
        return sorted(self.coins, key=_change_24h)[:TOP_N]

    @property
    def trending(self) -> list[MarketCoin]:
        """Top coins by total traded volume."""
        return sorted(self.coins, key=lambda c: c.total_volume, reverse=True)[:TOP_N]

    # --- Internals ---

    async def _get_markets(self, params: dict[str, str]) -> list[MarketCoin]:
        url = f"{self.base_url}/coins/markets"
        headers = {"x-cg-demo-api-key": self._api_key} if self._api_key else None
        logger.debug(f"Fetching {url} with {params}")
        try:
            response = await self.http_client.get(
                url, params=params, headers=headers, timeout=self.timeout_s
            )
        except httpx.TimeoutException as e:
            err_msg = f"Request to {url} timed out after {self.timeout_s}s"
            raise FeedTransportError(err_msg) from e
        except httpx.HTTPError as e:
            err_msg = f"Request to {url} failed: {e}"
            raise FeedTransportError(err_msg) from e

        if not response.is_success:
            err_msg = f"{url} returned HTTP {response.status_code}"
            raise FeedTransportError(err_msg, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            err_msg = f"{url} returned a body that is not JSON"
            raise FeedDecodeError(err_msg) from e
        if not isinstance(data, list):
            err_msg = f"Expected a list of coins, got {type(data).__name__}"
            raise FeedDecodeError(err_msg)
        return _decode_coins(data)

    async def _read_cached(self, name: str) -> list[MarketCoin] | None:
        data = await self.cache.read(name)
        if data is None:
            return None
        if not isinstance(data, list):
            logger.warning(f"Ignoring malformed cache document '{name}'.")
            return None
        return _decode_coins(data)

    def _mark_favorites(self, coins: Iterable[MarketCoin]) -> list[MarketCoin]:
        return [coin.with_favorite(coin.id in self.favorites) for coin in coins]

    def _begin_loading(self) -> None:
        self._loading += 1
        self.load_error = None
        self._publish()

    def _end_loading(self) -> None:
        self._loading -= 1
        self._publish()

    def _publish(self) -> None:
        self.publisher.publish(self.topic, self.state)


def _decode_coins(records: list[Any]) -> list[MarketCoin]:
    coins: list[MarketCoin] = []
    for record in records:
        try:
            coins.append(MarketCoin.from_api(record))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed coin record: {e}")
    return coins


def _change_24h(coin: MarketCoin) -> float:
    return coin.price_change_percentage_24h or 0.0

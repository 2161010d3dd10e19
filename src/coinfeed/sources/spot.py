import math
from collections.abc import Awaitable, Callable
from typing import Any, Final

import httpx
from loguru import logger

from coinfeed.sources.binance import to_venue_pair

COINGECKO_IDS: Final[dict[str, str]] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "SOL": "solana",
    "ADA": "cardano",
    "XRP": "ripple",
    "DOGE": "dogecoin",
}


def coingecko_id(symbol: str) -> str:
    """Maps a ticker symbol to its CoinGecko coin id."""
    return COINGECKO_IDS.get(symbol.upper(), symbol.lower())


class SpotPriceClient:
    """Looks up the latest USD spot price through a chain of public APIs.

    The tiers are tried in order (Coinbase, then Binance, then CoinGecko)
    until one of them yields a price. A failing tier is logged and skipped;
    only when every tier fails does the lookup return None.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        coinbase_url: str = "https://api.coinbase.com/v2",
        binance_url: str = "https://api.binance.com/api/v3",
        coingecko_url: str = "https://api.coingecko.com/api/v3",
        timeout_s: float = 15.0,
    ) -> None:
        self.http_client = http_client
        self.coinbase_url = coinbase_url.rstrip("/")
        self.binance_url = binance_url.rstrip("/")
        self.coingecko_url = coingecko_url.rstrip("/")
        self.timeout_s = timeout_s
        self._tiers: list[tuple[str, Callable[[str], Awaitable[float | None]]]] = [
            ("coinbase", self.fetch_coinbase_price),
            ("binance", self.fetch_binance_price),
            ("coingecko", self.fetch_coingecko_price),
        ]

    async def fetch_price(self, symbol: str) -> float | None:
        """Returns the first price any tier provides, or None."""
        for tier_name, fetch in self._tiers:
            price = await fetch(symbol)
            if price is not None:
                logger.debug(f"[spot] {symbol} = {price} via {tier_name}.")
                return price
        logger.warning(f"[spot] No price source answered for {symbol}.")
        return None

    async def fetch_coinbase_price(self, symbol: str) -> float | None:
        """`GET /prices/<SYM>-USD/spot` -> `{"data": {"amount": "..."}}`."""
        url = f"{self.coinbase_url}/prices/{symbol.upper()}-USD/spot"
        data = await self._get_json("coinbase", url)
        try:
            return _positive_price(data["data"]["amount"])
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"[coinbase] Unexpected spot payload for {symbol}: {e}")
            return None

    async def fetch_binance_price(self, symbol: str) -> float | None:
        """`GET /ticker/price?symbol=<SYM>USDT` -> `{"symbol": ..., "price": "..."}`."""
        url = f"{self.binance_url}/ticker/price"
        data = await self._get_json("binance", url, {"symbol": to_venue_pair(symbol)})
        try:
            return _positive_price(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"[binance] Unexpected ticker payload for {symbol}: {e}")
            return None

    async def fetch_coingecko_price(self, symbol: str) -> float | None:
        """`GET /simple/price?ids=<id>&vs_currencies=usd` -> `{"<id>": {"usd": n}}`."""
        coin_id = coingecko_id(symbol)
        url = f"{self.coingecko_url}/simple/price"
        data = await self._get_json(
            "coingecko", url, {"ids": coin_id, "vs_currencies": "usd"}
        )
        try:
            return _positive_price(data[coin_id]["usd"])
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"[coingecko] Unexpected price payload for {coin_id}: {e}")
            return None

    async def _get_json(
        self, tier_name: str, url: str, params: dict[str, str] | None = None
    ) -> Any:
        """Fetches JSON, returning None on any transport or status failure."""
        try:
            response = await self.http_client.get(
                url, params=params, timeout=self.timeout_s
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.debug(f"[{tier_name}] Price request failed: {type(e).__name__}: {e}")
        except ValueError as e:
            logger.debug(f"[{tier_name}] Price response is not JSON: {e}")
        return None


def _positive_price(value: Any) -> float:
    price = float(value)
    if not math.isfinite(price) or price <= 0:
        err_msg = f"Not a usable price: {value!r}"
        raise ValueError(err_msg)
    return price

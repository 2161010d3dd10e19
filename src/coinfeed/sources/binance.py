import json
import math
from operator import attrgetter
from typing import Any

import httpx
from loguru import logger

from coinfeed.errors import (
    FeedDecodeError,
    FeedTransportError,
    RegionBlockedError,
)
from coinfeed.models import Candle, Interval, PricePoint
from coinfeed.sources.base import StreamSource
from coinfeed.utils.time import from_epoch_ms

REGION_BLOCKED_STATUS = 451
DEFAULT_QUOTE_ASSET = "USDT"
DEFAULT_TIMEOUT_S = 10.0


def to_venue_pair(symbol: str, quote: str = DEFAULT_QUOTE_ASSET) -> str:
    """Converts a base asset like 'btc' into Binance's 'BTCUSDT' pair."""
    return f"{symbol.strip().upper()}{quote.upper()}"


class BinanceTradeStream(StreamSource):
    """Live trade stream from the Binance `<pair>@trade` WebSocket."""

    _BASE_WSS_URL: str = "wss://stream.binance.com:9443/ws"

    def __init__(
        self,
        *args: Any,
        base_url: str = _BASE_WSS_URL,
        quote: str = DEFAULT_QUOTE_ASSET,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.quote = quote

    @property
    def venue_name(self) -> str:
        return "binance"

    def _stream_url(self, symbol: str) -> str:
        return f"{self.base_url}/{to_venue_pair(symbol, self.quote).lower()}@trade"

    def _parse_message(self, message: str | bytes) -> PricePoint | None:
        """Parses a trade event: `{"e": "trade", "p": "<price>", "T": <ms>, ...}`."""
        try:
            data = json.loads(message)
            price = float(data["p"])
            timestamp = from_epoch_ms(data["T"])
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug(f"[{self.venue_name}] Dropping non-JSON message: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(
                f"[{self.venue_name}] Dropping unparseable trade message: "
                f"{message!r}. Error: {e}"
            )
            return None

        if not math.isfinite(price) or price <= 0:
            logger.debug(f"[{self.venue_name}] Dropping trade with price {price}.")
            return None
        return PricePoint(timestamp=timestamp, price=price)


class BinanceKlineSource:
    """Fetches candle snapshots from the Binance klines REST endpoint.

    Requests go to the primary API first. If it refuses with an HTTP error
    status (451 when the caller's region is blocked), exactly one retry is
    made against the secondary API, which by default is Binance.US. The
    source keeps no state between calls.
    """

    _BASE_API_URL: str = "https://api.binance.com/api/v3"
    _FALLBACK_API_URL: str = "https://api.binance.us/api/v3"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str = _BASE_API_URL,
        fallback_url: str = _FALLBACK_API_URL,
        quote: str = DEFAULT_QUOTE_ASSET,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.fallback_url = fallback_url.rstrip("/")
        self.quote = quote
        self.timeout_s = timeout_s

    @property
    def venue_name(self) -> str:
        return "binance"

    async def fetch(self, symbol: str, interval: Interval) -> list[Candle]:
        """Fetches the most recent candles for a symbol and chart interval.

        Args:
            symbol: The base asset (e.g., 'BTC').
            interval: The chart interval, which picks the kline code and limit.

        Returns:
            Candles sorted by ascending timestamp.

        Raises:
            FeedTransportError: Both endpoints failed, or the primary timed out.
            FeedDecodeError: The response body was not a list of klines.
        """
        params = {
            "symbol": to_venue_pair(symbol, self.quote),
            "interval": interval.binance_interval,
            "limit": interval.binance_limit,
        }
        try:
            return await self._fetch_from(self.base_url, params)
        except FeedTransportError as e:
            if e.status_code is None:
                raise
            logger.warning(
                f"[{self.venue_name}] Primary endpoint refused {params['symbol']} "
                f"with HTTP {e.status_code}. Retrying against {self.fallback_url}."
            )
        return await self._fetch_from(self.fallback_url, params)

    async def _fetch_from(self, base_url: str, params: dict[str, Any]) -> list[Candle]:
        url = f"{base_url}/klines"
        try:
            response = await self.http_client.get(
                url, params=params, timeout=self.timeout_s
            )
        except httpx.TimeoutException as e:
            err_msg = f"Request to {url} timed out after {self.timeout_s}s"
            raise FeedTransportError(err_msg) from e
        except httpx.HTTPError as e:
            err_msg = f"Request to {url} failed: {e}"
            raise FeedTransportError(err_msg) from e

        if response.status_code == REGION_BLOCKED_STATUS:
            err_msg = f"{url} is not available in this region"
            raise RegionBlockedError(err_msg)
        if not response.is_success:
            err_msg = f"{url} returned HTTP {response.status_code}"
            raise FeedTransportError(err_msg, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            err_msg = f"{url} returned a body that is not JSON"
            raise FeedDecodeError(err_msg) from e

        candles = parse_klines(data)
        logger.debug(
            f"[{self.venue_name}] Fetched {len(candles)} candles for "
            f"{params['symbol']} ({params['interval']})."
        )
        return candles


def parse_klines(data: Any) -> list[Candle]:
    """Parses a klines payload, skipping malformed rows.

    Each row is positional: [openTime, open, high, low, close, volume, ...].
    Only the open time (ms), close and volume are kept. A row with an
    unusable time or close price is skipped; an unusable volume becomes 0.

    Raises:
        FeedDecodeError: If the payload is not a list.
    """
    if not isinstance(data, list):
        err_msg = f"Expected a list of klines, got {type(data).__name__}"
        raise FeedDecodeError(err_msg)

    candles: list[Candle] = []
    for row in data:
        candle = _parse_kline_row(row)
        if candle is not None:
            candles.append(candle)

    skipped = len(data) - len(candles)
    if skipped:
        logger.warning(f"Skipped {skipped} malformed kline rows.")
    candles.sort(key=attrgetter("timestamp"))
    return candles


def _parse_kline_row(row: Any) -> Candle | None:
    if not isinstance(row, list) or len(row) < 5:
        return None
    try:
        timestamp = from_epoch_ms(row[0])
        close = float(row[4])
    except (TypeError, ValueError):
        return None
    if not math.isfinite(close):
        return None

    try:
        volume = float(row[5])
    except (IndexError, TypeError, ValueError):
        volume = 0.0
    if not math.isfinite(volume):
        volume = 0.0
    return Candle(timestamp=timestamp, close=close, volume=volume)

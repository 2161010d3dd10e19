from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Final

# The live chart keeps five minutes of one-second ticks.
LIVE_WINDOW: Final[int] = 300

# Binance rejects kline requests above this many rows.
MAX_KLINE_LIMIT: Final[int] = 1000


@dataclass(frozen=True)
class Candle:
    """A single point on a chart: close price and traded volume at a time."""

    timestamp: datetime
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class PricePoint:
    """A single trade price reported by the live stream."""

    timestamp: datetime
    price: float

    def to_candle(self) -> Candle:
        return Candle(timestamp=self.timestamp, close=self.price, volume=0.0)


class Interval(str, Enum):
    """Chart intervals selectable by a consumer."""

    LIVE = "LIVE"
    ONE_MIN = "1m"
    FIVE_MIN = "5m"
    FIFTEEN_MIN = "15m"
    THIRTY_MIN = "30m"
    ONE_HOUR = "1H"
    FOUR_HOUR = "4H"
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTH = "3M"
    ONE_YEAR = "1Y"
    THREE_YEAR = "3Y"
    ALL = "ALL"

    @property
    def is_live(self) -> bool:
        return self is Interval.LIVE

    @property
    def binance_interval(self) -> str:
        """The kline interval code sent to Binance for this chart interval."""
        return _BINANCE_INTERVALS[self]

    @property
    def binance_limit(self) -> int:
        """How many klines to request for this chart interval."""
        return min(_BINANCE_LIMITS[self], MAX_KLINE_LIMIT)

    @classmethod
    def parse(cls, value: str) -> "Interval":
        """Looks up an interval by its display code, e.g. '1H' or 'live'."""
        if value.upper() == cls.LIVE.value:
            return cls.LIVE
        try:
            return cls(value)
        except ValueError:
            err_msg = f"Unknown chart interval: {value}"
            raise ValueError(err_msg) from None


_BINANCE_INTERVALS: Final[dict[Interval, str]] = {
    Interval.LIVE: "1m",
    Interval.ONE_MIN: "1m",
    Interval.FIVE_MIN: "5m",
    Interval.FIFTEEN_MIN: "15m",
    Interval.THIRTY_MIN: "30m",
    Interval.ONE_HOUR: "1h",
    Interval.FOUR_HOUR: "4h",
    Interval.ONE_DAY: "1d",
    Interval.ONE_WEEK: "1w",
    Interval.ONE_MONTH: "1M",
    Interval.THREE_MONTH: "1d",
    Interval.ONE_YEAR: "1d",
    Interval.THREE_YEAR: "1d",
    Interval.ALL: "1w",
}

_BINANCE_LIMITS: Final[dict[Interval, int]] = {
    Interval.LIVE: LIVE_WINDOW,
    Interval.ONE_MIN: 60,
    Interval.FIVE_MIN: 48,
    Interval.FIFTEEN_MIN: 24,
    Interval.THIRTY_MIN: 24,
    Interval.ONE_HOUR: 48,
    Interval.FOUR_HOUR: 120,
    Interval.ONE_DAY: 60,
    Interval.ONE_WEEK: 52,
    Interval.ONE_MONTH: 12,
    Interval.THREE_MONTH: 90,
    Interval.ONE_YEAR: 365,
    Interval.THREE_YEAR: 1095,
    Interval.ALL: 999,
}


class FeedMode(str, Enum):
    IDLE = "idle"
    HISTORICAL = "historical"
    LIVE = "live"


@dataclass(frozen=True)
class FeedState:
    """A published snapshot of what a feed controller is showing."""

    symbol: str
    interval: Interval
    mode: FeedMode = FeedMode.IDLE
    is_loading: bool = False
    last_error: str | None = None
    series: tuple[Candle, ...] = ()

    @property
    def last_price(self) -> float | None:
        return self.series[-1].close if self.series else None


@dataclass(frozen=True)
class MarketCoin:
    """One coin record from CoinGecko's `/coins/markets` endpoint."""

    id: str
    symbol: str
    name: str
    image: str = ""
    current_price: float = 0.0
    total_volume: float = 0.0
    market_cap: float = 0.0
    price_change_percentage_24h: float | None = None
    price_change_percentage_1h: float | None = None
    sparkline: tuple[float, ...] = ()
    is_favorite: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MarketCoin":
        """Builds a coin from a CoinGecko (or cached) JSON object.

        Raises:
            KeyError: If an identifying field is missing.
            TypeError, ValueError: If a numeric field has the wrong type.
        """
        sparkline = data.get("sparkline_in_7d") or {}
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            name=data.get("name") or data["symbol"].upper(),
            image=data.get("image") or "",
            current_price=float(data.get("current_price") or 0.0),
            total_volume=float(data.get("total_volume") or 0.0),
            market_cap=float(data.get("market_cap") or 0.0),
            price_change_percentage_24h=_optional_float(
                data.get("price_change_percentage_24h")
            ),
            price_change_percentage_1h=_optional_float(
                data.get("price_change_percentage_1h_in_currency")
            ),
            sparkline=tuple(float(p) for p in sparkline.get("price") or []),
            is_favorite=bool(data.get("is_favorite", False)),
        )

    def to_cache(self) -> dict[str, Any]:
        """Serializes the coin in the same key layout CoinGecko uses."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "image": self.image,
            "current_price": self.current_price,
            "total_volume": self.total_volume,
            "market_cap": self.market_cap,
            "price_change_percentage_24h": self.price_change_percentage_24h,
            "price_change_percentage_1h_in_currency": self.price_change_percentage_1h,
            "sparkline_in_7d": {"price": list(self.sparkline)},
            "is_favorite": self.is_favorite,
        }

    def with_favorite(self, is_favorite: bool) -> "MarketCoin":
        return replace(self, is_favorite=is_favorite)


@dataclass(frozen=True)
class MarketState:
    """A published snapshot of the market list and watchlist."""

    coins: tuple[MarketCoin, ...] = ()
    watchlist: tuple[MarketCoin, ...] = ()
    is_loading: bool = False
    load_error: str | None = None


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)

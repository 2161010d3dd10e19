from datetime import datetime, timezone

import pytest

from coinfeed.models import (
    MAX_KLINE_LIMIT,
    Candle,
    FeedState,
    Interval,
    MarketCoin,
    PricePoint,
)

COINGECKO_RECORD = {
    "id": "bitcoin",
    "symbol": "btc",
    "name": "Bitcoin",
    "image": "https://example.test/btc.png",
    "current_price": 43000.5,
    "total_volume": 1.5e10,
    "market_cap": 8.4e11,
    "price_change_percentage_24h": 2.5,
    "price_change_percentage_1h_in_currency": -0.3,
    "sparkline_in_7d": {"price": [42000, 42500.5, 43000]},
}


@pytest.mark.parametrize(
    ("interval", "code", "limit"),
    [
        (Interval.ONE_MIN, "1m", 60),
        (Interval.FIVE_MIN, "5m", 48),
        (Interval.ONE_HOUR, "1h", 48),
        (Interval.FOUR_HOUR, "4h", 120),
        (Interval.ONE_DAY, "1d", 60),
        (Interval.ONE_WEEK, "1w", 52),
        (Interval.ONE_MONTH, "1M", 12),
        (Interval.THREE_MONTH, "1d", 90),
        (Interval.ONE_YEAR, "1d", 365),
        (Interval.ALL, "1w", 999),
    ],
)
def test_interval_request_parameters(interval: Interval, code: str, limit: int) -> None:
    assert interval.binance_interval == code
    assert interval.binance_limit == limit


def test_kline_limit_is_capped() -> None:
    assert Interval.THREE_YEAR.binance_limit == MAX_KLINE_LIMIT


def test_interval_parse() -> None:
    assert Interval.parse("live") is Interval.LIVE
    assert Interval.parse("LIVE") is Interval.LIVE
    assert Interval.parse("1H") is Interval.ONE_HOUR
    assert Interval.parse("1M") is Interval.ONE_MONTH
    assert Interval.parse("1m") is Interval.ONE_MIN
    with pytest.raises(ValueError, match="Unknown chart interval: 2h"):
        Interval.parse("2h")


def test_only_live_is_live() -> None:
    assert Interval.LIVE.is_live
    assert not any(i.is_live for i in Interval if i is not Interval.LIVE)


def test_price_point_to_candle() -> None:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert PricePoint(ts, 10.0).to_candle() == Candle(ts, 10.0, 0.0)


def test_feed_state_last_price() -> None:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert FeedState("BTC", Interval.LIVE).last_price is None
    state = FeedState("BTC", Interval.LIVE, series=(Candle(ts, 1.0), Candle(ts, 2.0)))
    assert state.last_price == 2.0


def test_market_coin_from_api() -> None:
    coin = MarketCoin.from_api(COINGECKO_RECORD)
    assert coin.id == "bitcoin"
    assert coin.current_price == 43000.5
    assert coin.price_change_percentage_1h == -0.3
    assert coin.sparkline == (42000.0, 42500.5, 43000.0)
    assert not coin.is_favorite


def test_market_coin_tolerates_missing_optional_fields() -> None:
    coin = MarketCoin.from_api({"id": "foo", "symbol": "foo", "current_price": None})
    assert coin.name == "FOO"
    assert coin.current_price == 0.0
    assert coin.price_change_percentage_24h is None
    assert coin.sparkline == ()


def test_market_coin_requires_identity() -> None:
    with pytest.raises(KeyError):
        MarketCoin.from_api({"symbol": "btc"})


def test_market_coin_cache_layout_matches_api() -> None:
    coin = MarketCoin.from_api(COINGECKO_RECORD).with_favorite(True)
    restored = MarketCoin.from_api(coin.to_cache())
    assert restored == coin
    assert restored.is_favorite

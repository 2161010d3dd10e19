"""Builds the long-lived service objects from settings.

Everything is constructed once at process start and passed by reference;
nothing in the package reaches for a module-level instance.
"""

import httpx

from coinfeed.config import Settings, get_api_key
from coinfeed.controller import FeedController
from coinfeed.market import MarketService
from coinfeed.persistence import FavoritesStore, JsonCache
from coinfeed.price import PricePoller
from coinfeed.publisher import Publisher
from coinfeed.sources.binance import BinanceKlineSource, BinanceTradeStream
from coinfeed.sources.spot import SpotPriceClient


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=True,
        timeout=settings.feed.request_timeout_s,
        follow_redirects=True,
        headers={"User-Agent": settings.endpoints.user_agent},
    )


def build_feed_controller(
    settings: Settings,
    http_client: httpx.AsyncClient,
    publisher: Publisher,
    name: str = "chart",
) -> FeedController:
    feed, endpoints = settings.feed, settings.endpoints
    poll_source = BinanceKlineSource(
        http_client,
        base_url=endpoints.binance_api_url,
        fallback_url=endpoints.binance_us_api_url,
        quote=feed.quote_asset,
        timeout_s=feed.request_timeout_s,
    )
    stream_source = BinanceTradeStream(
        base_url=endpoints.binance_stream_url,
        quote=feed.quote_asset,
        min_spacing_s=feed.min_tick_spacing_s,
    )
    return FeedController(
        poll_source,
        stream_source,
        publisher,
        name=name,
        series_capacity=feed.series_capacity,
        throttle_interval_s=feed.throttle_interval_s,
    )


def build_price_poller(
    settings: Settings,
    http_client: httpx.AsyncClient,
    publisher: Publisher,
) -> PricePoller:
    endpoints = settings.endpoints
    client = SpotPriceClient(
        http_client,
        coinbase_url=endpoints.coinbase_api_url,
        binance_url=endpoints.binance_api_url,
        coingecko_url=endpoints.coingecko_api_url,
        timeout_s=settings.feed.price_timeout_s,
    )
    return PricePoller(
        client,
        publisher,
        base_delay_s=settings.feed.backoff_base_delay_s,
        max_delay_s=settings.feed.backoff_max_delay_s,
    )


def build_market_service(
    settings: Settings,
    http_client: httpx.AsyncClient,
    publisher: Publisher,
) -> MarketService:
    cache = JsonCache(settings.cache.path)
    return MarketService(
        http_client,
        cache,
        FavoritesStore(cache),
        publisher,
        base_url=settings.endpoints.coingecko_api_url,
        api_key=get_api_key("coingecko"),
        timeout_s=settings.cache.market_timeout_s,
    )

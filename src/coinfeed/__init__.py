# src/coinfeed/__init__.py
"""coinfeed: live and polled cryptocurrency market feeds.

This package keeps observable market state up to date from public REST and
WebSocket APIs (Binance, Coinbase, CoinGecko) and publishes immutable
snapshots to subscribers.

The application is designed around Python's asyncio. All state changes
happen on the event loop, and consumers observe them through explicit
subscriptions.

Key modules and sub-packages:
- `controller`: the feed controller switching between live and polled data.
- `sources`: the trade stream, candle poll, and spot price sources.
- `market`: the market list, watchlist, and favorites.
- `utils`: the bounded time series and time helpers.
"""

import importlib.metadata

try:
    __version__: str = importlib.metadata.version("coinfeed")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"

# src/coinfeed/sources/__init__.py
"""Market data sources.

- `base`: the `StreamSource` base class for live trade WebSockets.
- `binance`: the Binance trade stream and the klines poll source with
  Binance.US failover.
- `spot`: the Coinbase -> Binance -> CoinGecko spot price chain.
"""

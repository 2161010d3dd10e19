r"""Console runner for the market feeds.

Usage:
    python -m coinfeed chart <SYMBOL> [--interval LIVE|1m|5m|...|ALL]
    python -m coinfeed price <SYMBOL>
    python -m coinfeed markets [--toggle COIN_ID]

Example:
    python -m coinfeed chart BTC --interval 1H --duration 30
"""

import argparse
import asyncio
import sys
from pathlib import Path

import httpx
from loguru import logger

from coinfeed import __version__
from coinfeed.app import (
    build_feed_controller,
    build_market_service,
    build_price_poller,
    create_http_client,
)
from coinfeed.config import CONFIG_FILE, Settings, load_config
from coinfeed.logging_config import setup_logging
from coinfeed.models import FeedState, Interval, MarketState
from coinfeed.publisher import Publisher
from coinfeed.utils.time import to_rfc3339


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coinfeed", description="Stream and poll cryptocurrency market data."
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--config", type=Path, default=CONFIG_FILE, help="Path to config.toml"
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to run before exiting (0 runs until interrupted)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    chart = commands.add_parser("chart", help="Follow the chart series of a symbol")
    chart.add_argument("symbol")
    chart.add_argument(
        "--interval",
        type=Interval.parse,
        default=Interval.LIVE,
        help="Chart interval (LIVE, 1m, 5m, 15m, 30m, 1H, 4H, 1D, 1W, ...)",
    )

    price = commands.add_parser("price", help="Poll the spot price of a symbol")
    price.add_argument("symbol")

    markets = commands.add_parser("markets", help="Show the market list")
    markets.add_argument(
        "--toggle", metavar="COIN_ID", help="Toggle a favorite before refreshing"
    )
    return parser


async def _drain(queue: "asyncio.Queue[object]", duration: float) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration > 0 else None
    while True:
        timeout = None if deadline is None else max(0.0, deadline - loop.time())
        try:
            snapshot = await asyncio.wait_for(queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return
        _report(snapshot)


def _report(snapshot: object) -> None:
    if isinstance(snapshot, FeedState):
        last = snapshot.series[-1] if snapshot.series else None
        where = f"{snapshot.symbol} {snapshot.interval.value} [{snapshot.mode.value}]"
        if last is not None:
            logger.info(
                f"{where} {len(snapshot.series)} points, last {last.close} "
                f"at {to_rfc3339(last.timestamp)}"
            )
        if snapshot.last_error:
            logger.warning(f"{where} {snapshot.last_error}")
    elif isinstance(snapshot, MarketState):
        if snapshot.load_error:
            logger.warning(snapshot.load_error)
        elif not snapshot.is_loading:
            logger.info(
                f"{len(snapshot.coins)} coins, {len(snapshot.watchlist)} in watchlist"
            )
    else:
        logger.info(f"Price: {snapshot}")


async def run(args: argparse.Namespace, settings: Settings) -> int:
    publisher = Publisher()
    queue: asyncio.Queue[object] = asyncio.Queue(maxsize=100)

    async with create_http_client(settings) as http_client:
        if args.command == "chart":
            return await _run_chart(args, settings, http_client, publisher, queue)
        if args.command == "price":
            poller = build_price_poller(settings, http_client, publisher)
            poller.subscribe(queue)
            await poller.start(args.symbol)
            try:
                await _drain(queue, args.duration)
            finally:
                await poller.stop()
            return 0

        service = build_market_service(settings, http_client, publisher)
        service.subscribe(queue)
        await service.start()
        if args.toggle:
            now_favorite = await service.toggle_favorite(args.toggle)
            logger.info(f"{args.toggle} favorite: {now_favorite}")
        for coin in service.top_gainers:
            change = coin.price_change_percentage_24h
            logger.info(f"Gainer {coin.symbol.upper()}: {change}")
        while not queue.empty():
            _report(queue.get_nowait())
        return 1 if service.load_error else 0


async def _run_chart(
    args: argparse.Namespace,
    settings: Settings,
    http_client: httpx.AsyncClient,
    publisher: Publisher,
    queue: "asyncio.Queue[object]",
) -> int:
    controller = build_feed_controller(settings, http_client, publisher)
    sub_id = controller.subscribe(queue)
    try:
        await controller.attach(args.symbol, args.interval)
        await _drain(queue, args.duration)
    finally:
        controller.unsubscribe(sub_id)
        await controller.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_config(args.config)
    log_dir = settings.general.log_directory
    setup_logging(
        console_level=settings.general.log_level_console,
        file_level=settings.general.log_level_file,
        log_dir=Path(log_dir).expanduser() if log_dir else None,
    )
    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down.")
        return 130


if __name__ == "__main__":
    sys.exit(main())

import json
import logging
import sys
from pathlib import Path
from typing import Any, Final, cast

from loguru import logger
from loguru._defaults import LOGURU_FORMAT

SENSITIVE_KEYS: Final = frozenset(
    {"api_key", "api_secret", "secret", "password", "token"}
)
REDACTED: Final = "***REDACTED***"
LOG_FILE_PATTERN: Final = "coinfeed_{time:YYYY-MM-DD}.log"

# Third-party loggers that are too chatty below these levels.
NOISY_LOGGERS: Final[dict[str, int]] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "hpack": logging.WARNING,
    "websockets": logging.INFO,
}


class InterceptHandler(logging.Handler):
    """Forwards standard `logging` records to Loguru.

    httpx and websockets log through the standard library; this handler
    makes their records show up in the same sinks as ours.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module for accurate source info.
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = cast(Any, frame.f_back)
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _sensitive_data_filter(record: dict[str, Any]) -> bool:
    """Masks secrets bound into a record's 'extra' data.

    The CoinGecko demo key reaches log calls only through
    `logger.bind(api_key=...)`, so masking 'extra' is sufficient.
    """
    extra = record["extra"]
    for key in SENSITIVE_KEYS.intersection(extra):
        if isinstance(extra[key], str):
            extra[key] = REDACTED
    return True


def _json_formatter(record: dict[str, Any]) -> str:
    """Renders a record as one JSON line.

    Loguru treats a formatter's return value as a template, so the JSON is
    stored in 'extra' and the template only references it.
    """
    payload = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "source": {
            "name": record["name"],
            "file": f"{record['file'].name}:{record['line']}",
            "function": record["function"],
        },
        "extra": {k: v for k, v in record["extra"].items() if k != "serialized"},
    }
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    record["extra"]["serialized"] = json.dumps(payload, default=str)
    return "{extra[serialized]}\n"


def _add_console_sink(level: str) -> None:
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=LOGURU_FORMAT,
        colorize=True,
        filter=_sensitive_data_filter,
    )


def _add_file_sink(log_dir: Path, level: str) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / LOG_FILE_PATTERN,
        level=level.upper(),
        format=_json_formatter,
        rotation="00:00",
        retention="7 days",
        compression="zip",
        filter=_sensitive_data_filter,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


def _route_stdlib_logging() -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_dir: Path | None = None,
) -> None:
    """Configures the process-wide Loguru logger.

    Replaces any existing sinks with a colorized console sink and, when
    `log_dir` is given, a daily-rotated JSON-lines file sink kept for a
    week. Standard library logging is routed into the same sinks.

    Args:
        console_level: The minimum log level for console output.
        file_level: The minimum log level for file output.
        log_dir: Directory for log files. If None, file logging is disabled.
    """
    logger.remove()
    _add_console_sink(console_level)
    if log_dir:
        _add_file_sink(log_dir, file_level)
    _route_stdlib_logging()

    logger.info("Logging configured successfully.")

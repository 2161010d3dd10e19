import json
import logging
from pathlib import Path

from loguru import logger

from coinfeed.logging_config import REDACTED, setup_logging


def test_stdlib_logging_is_routed_to_loguru() -> None:
    setup_logging(console_level="DEBUG")
    messages: list[str] = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="INFO")
    try:
        logging.getLogger("websockets.client").warning("handshake failed")
    finally:
        logger.remove(sink_id)
    assert "handshake failed" in messages


def test_httpx_info_logs_are_suppressed() -> None:
    setup_logging()
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING


def test_file_sink_writes_json_and_redacts_secrets(tmp_path: Path) -> None:
    setup_logging(console_level="ERROR", file_level="DEBUG", log_dir=tmp_path)
    logger.bind(api_key="demo-key-123", venue="coingecko").info("Requesting markets")
    logger.complete()
    logger.remove()

    (log_file,) = tmp_path.glob("coinfeed_*.log")
    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    record = next(r for r in lines if r["message"] == "Requesting markets")
    assert record["level"] == "INFO"
    assert record["extra"]["api_key"] == REDACTED
    assert record["extra"]["venue"] == "coingecko"
    assert "demo-key-123" not in log_file.read_text()

import math
from datetime import datetime, timezone
from typing import Any


def from_epoch_ms(value: Any) -> datetime:
    """Converts a Unix timestamp in milliseconds into a UTC datetime.

    Binance reports kline open times and trade event times this way, either
    as JSON numbers or as numeric strings.

    Args:
        value: Milliseconds since the Unix epoch, as int, float, or str.

    Returns:
        A timezone-aware UTC datetime.

    Raises:
        ValueError: If the value is not numeric or is out of range.
    """
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        err_msg = f"Unsupported timestamp type: {type(value).__name__}"
        raise ValueError(err_msg)

    millis = float(value)
    if not math.isfinite(millis):
        err_msg = f"Timestamp '{value}' is not a finite number."
        raise ValueError(err_msg)
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OSError, OverflowError) as e:
        err_msg = f"Numeric timestamp '{value}' is out of range."
        raise ValueError(err_msg) from e


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round(dt.timestamp() * 1000)


def to_rfc3339(dt: datetime) -> str:
    """Formats a datetime as RFC3339 in UTC with millisecond precision.

    Example: "2023-10-27T10:00:00.123Z"
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (
        dt.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )

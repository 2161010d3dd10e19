class FeedError(Exception):
    """Base class for all market data fetch failures."""


class FeedTransportError(FeedError):
    """A request could not complete: timeout, refused connection, or bad status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RegionBlockedError(FeedTransportError):
    """The endpoint refused service for this region (HTTP 451)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=451)


class FeedDecodeError(FeedError):
    """A response body could not be decoded into the expected shape."""

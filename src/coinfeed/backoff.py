from dataclasses import dataclass, replace
from typing import Final

# --- Constants for Retry Logic ---
BASE_DELAY_S: Final[float] = 5.0
MAX_DELAY_S: Final[float] = 60.0
BACKOFF_FACTOR: Final[float] = 2.0


@dataclass(frozen=True)
class BackoffState:
    """Retry delay bookkeeping for one polling loop.

    A fresh state has ``current_delay == 0`` so the first attempt after
    activation fires immediately.
    """

    current_delay: float = 0.0
    base_delay: float = BASE_DELAY_S
    max_delay: float = MAX_DELAY_S

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            err_msg = "Base delay must be a positive number."
            raise ValueError(err_msg)
        if self.max_delay < self.base_delay:
            err_msg = "Max delay must not be smaller than the base delay."
            raise ValueError(err_msg)

    def reset(self) -> "BackoffState":
        """Returns the activation state, keeping the configured bounds."""
        return replace(self, current_delay=0.0)


def next_delay(state: BackoffState, succeeded: bool) -> tuple[BackoffState, float]:
    """Computes the wait before the next attempt.

    On success the delay settles at the base interval, giving a steady
    polling cadence. On failure it starts at the base interval and doubles
    with every consecutive failure, never exceeding ``max_delay``.

    Args:
        state: The state after the previous attempt.
        succeeded: Whether the attempt that just finished succeeded.

    Returns:
        A tuple of (new_state, delay_in_seconds).
    """
    if succeeded:
        delay = state.base_delay
    elif state.current_delay <= 0:
        delay = state.base_delay
    else:
        delay = min(state.max_delay, state.current_delay * BACKOFF_FACTOR)
    return replace(state, current_delay=delay), delay

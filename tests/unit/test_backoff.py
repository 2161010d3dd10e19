import pytest

from coinfeed.backoff import BASE_DELAY_S, MAX_DELAY_S, BackoffState, next_delay


def test_fresh_state_fires_immediately() -> None:
    """A freshly activated poller has no delay before its first attempt."""
    state = BackoffState()
    assert state.current_delay == 0.0
    assert state.base_delay == BASE_DELAY_S
    assert state.max_delay == MAX_DELAY_S


def test_success_settles_at_base_delay() -> None:
    state = BackoffState(current_delay=40.0)
    state, delay = next_delay(state, succeeded=True)
    assert delay == BASE_DELAY_S
    assert state.current_delay == BASE_DELAY_S


def test_consecutive_failures_double_up_to_cap() -> None:
    """Tests the 5, 10, 20, 40, 60, 60 failure sequence."""
    state = BackoffState()
    delays = []
    for _ in range(6):
        state, delay = next_delay(state, succeeded=False)
        delays.append(delay)
    assert delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]


def test_success_after_failures_resets_cadence() -> None:
    state = BackoffState()
    for _ in range(3):
        state, _ = next_delay(state, succeeded=False)
    assert state.current_delay == 20.0

    state, delay = next_delay(state, succeeded=True)
    assert delay == BASE_DELAY_S
    state, delay = next_delay(state, succeeded=False)
    assert delay == 10.0


def test_delay_never_leaves_bounds() -> None:
    state = BackoffState(base_delay=1.0, max_delay=7.0)
    for succeeded in [False] * 10 + [True] + [False] * 10:
        state, delay = next_delay(state, succeeded)
        assert 1.0 <= delay <= 7.0


def test_reset_keeps_bounds() -> None:
    state = BackoffState(current_delay=30.0, base_delay=2.0, max_delay=30.0)
    fresh = state.reset()
    assert fresh.current_delay == 0.0
    assert fresh.base_delay == 2.0
    assert fresh.max_delay == 30.0


def test_next_delay_does_not_mutate_input() -> None:
    state = BackoffState()
    next_delay(state, succeeded=False)
    assert state.current_delay == 0.0


def test_invalid_bounds_raise() -> None:
    with pytest.raises(ValueError, match="Base delay must be a positive number."):
        BackoffState(base_delay=0.0)
    with pytest.raises(ValueError, match="Max delay"):
        BackoffState(base_delay=10.0, max_delay=5.0)

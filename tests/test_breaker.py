"""Tests for the circuit breaker state machine."""

from __future__ import annotations

from mongoquick.breaker import BreakerState, CircuitBreaker


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_unknown_name_is_allowed() -> None:
    breaker = CircuitBreaker()

    assert breaker.allow("anything") is True
    assert breaker.state("anything") is None


def test_opens_at_threshold_and_schedules_next_attempt() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(max_failures=3, cooldown=60.0, clock=clock)

    breaker.record_failure("db")
    breaker.record_failure("db")
    assert breaker.allow("db") is True

    state = breaker.record_failure("db")

    assert state.state is BreakerState.OPEN
    assert state.failures == 3
    assert state.last_failure == 0.0
    assert state.next_attempt == 60.0
    assert breaker.allow("db") is False


def test_cooldown_moves_to_half_open() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(max_failures=1, cooldown=10.0, clock=clock)
    breaker.record_failure("db")

    clock.now = 9.9
    assert breaker.allow("db") is False
    clock.now = 10.0
    assert breaker.allow("db") is True

    state = breaker.state("db")
    assert state is not None and state.state is BreakerState.HALF_OPEN


def test_half_open_failure_reopens_immediately() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(max_failures=3, cooldown=10.0, clock=clock)
    for _ in range(3):
        breaker.record_failure("db")
    clock.now = 11.0
    breaker.allow("db")

    state = breaker.record_failure("db")

    assert state.state is BreakerState.OPEN
    assert state.next_attempt == 21.0
    assert breaker.allow("db") is False


def test_success_resets_record() -> None:
    breaker = CircuitBreaker(max_failures=1)
    breaker.record_failure("db")

    breaker.record_success("db")

    assert breaker.state("db") is None
    assert breaker.allow("db") is True


def test_state_returns_snapshot() -> None:
    breaker = CircuitBreaker()
    breaker.record_failure("db")

    snapshot = breaker.state("db")
    assert snapshot is not None
    snapshot.failures = 99

    again = breaker.state("db")
    assert again is not None and again.failures == 1


def test_names_are_independent() -> None:
    breaker = CircuitBreaker(max_failures=1)

    breaker.record_failure("down")

    assert breaker.allow("down") is False
    assert breaker.allow("up") is True

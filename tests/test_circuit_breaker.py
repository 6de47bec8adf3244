"""
Tests for the acquisition circuit breaker.
"""

import pytest

from gram_trends.services.circuit_breaker import CircuitBreaker, CircuitOpenError


def test_opens_after_threshold_failures(clock):
    breaker = CircuitBreaker("browser", threshold=5, timeout_seconds=300, clock=clock)
    for _ in range(4):
        breaker.record_failure()
        assert breaker.can_execute() is True

    breaker.record_failure()
    assert breaker.is_open is True
    assert breaker.can_execute() is False

    state = breaker.get_state()
    assert state["is_open"] is True
    assert state["failure_count"] == 5
    assert state["time_until_reset"] == 300


def test_half_open_after_timeout(clock):
    breaker = CircuitBreaker("browser", threshold=5, timeout_seconds=300, clock=clock)
    for _ in range(5):
        breaker.record_failure()

    clock.advance(299)
    assert breaker.can_execute() is False

    clock.advance(1)
    assert breaker.can_execute() is True
    assert breaker.is_open is False


def test_failure_in_half_open_reopens_immediately(clock):
    breaker = CircuitBreaker("proxy_grid", threshold=5, timeout_seconds=60, clock=clock)
    for _ in range(5):
        breaker.record_failure()
    clock.advance(61)
    assert breaker.can_execute() is True

    breaker.record_failure()
    assert breaker.is_open is True
    assert breaker.can_execute() is False


def test_single_success_fully_resets(clock):
    breaker = CircuitBreaker("browser", threshold=5, timeout_seconds=300, clock=clock)
    for _ in range(5):
        breaker.record_failure()
    clock.advance(300)
    assert breaker.can_execute() is True

    breaker.record_success()
    assert breaker.failure_count == 0
    assert breaker.get_state() == {"is_open": False, "failure_count": 0, "time_until_reset": 0.0}

    # Needs a full threshold of failures again before opening.
    for _ in range(4):
        breaker.record_failure()
    assert breaker.can_execute() is True


def test_time_until_reset_counts_down(clock):
    breaker = CircuitBreaker("browser", threshold=1, timeout_seconds=10, clock=clock)
    breaker.record_failure()
    clock.advance(4)
    assert breaker.get_state()["time_until_reset"] == 6


def test_check_raises_while_open(clock):
    breaker = CircuitBreaker("proxy_grid", threshold=2, timeout_seconds=60, clock=clock)
    breaker.check()
    breaker.record_failure()
    breaker.record_failure()

    with pytest.raises(CircuitOpenError, match="proxy_grid"):
        breaker.check()

    clock.advance(60)
    breaker.check()

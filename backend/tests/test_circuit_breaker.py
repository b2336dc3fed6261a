"""Tests for the circuit breaker state machine."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from underwriteiq.core.circuit_breaker import BreakerState, CircuitBreaker


@pytest.fixture()
def breaker(clock):
    return CircuitBreaker("test", failure_threshold=3, cooldown=30, clock=clock)


class TestCircuitBreaker:
    def test_starts_closed_and_allows(self, breaker):
        assert breaker.state == BreakerState.CLOSED
        assert breaker.before().allowed is True

    def test_opens_after_threshold(self, breaker):
        for _ in range(2):
            breaker.before()
            breaker.on_failure()
        assert breaker.state == BreakerState.CLOSED
        breaker.before()
        breaker.on_failure()
        assert breaker.state == BreakerState.OPEN

    def test_open_rejects_with_cooldown_message(self, breaker, clock):
        for _ in range(3):
            breaker.on_failure()
        clock.advance(10)
        decision = breaker.before()
        assert decision.allowed is False
        assert decision.retry_after == 20
        assert "try again in 20 seconds" in decision.reason

    def test_success_resets_failure_count(self, breaker):
        breaker.on_failure()
        breaker.on_failure()
        breaker.on_success()
        breaker.on_failure()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failures == 1

    def test_half_open_after_cooldown_admits_one_probe(self, breaker, clock):
        for _ in range(3):
            breaker.on_failure()
        clock.advance(30)
        assert breaker.before().allowed is True
        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.before().allowed is False

    def test_half_open_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.on_failure()
        clock.advance(31)
        breaker.before()
        breaker.on_success()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.before().allowed is True

    def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.on_failure()
        clock.advance(31)
        breaker.before()
        breaker.on_failure()
        assert breaker.state == BreakerState.OPEN
        assert breaker.before().allowed is False

    def test_release_frees_probe_slot(self, breaker, clock):
        for _ in range(3):
            breaker.on_failure()
        clock.advance(31)
        breaker.before()
        breaker.release()
        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.before().allowed is True

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.on_failure()
        breaker.reset()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failures == 0

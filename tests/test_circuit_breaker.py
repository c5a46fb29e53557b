"""
Tests for the circuit breaker guarding the messaging API.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    all_circuit_breakers,
    get_circuit_breaker,
    reset_circuit_breakers,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    """Tests for circuit breaker state transitions."""

    def test_starts_closed(self):
        breaker = CircuitBreaker("test")
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_allowed() is True

    def test_opens_after_threshold(self):
        """Test circuit opens after the configured consecutive failures."""
        breaker = CircuitBreaker("test", failure_threshold=3)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.is_allowed() is False

    def test_success_resets_count(self):
        breaker = CircuitBreaker("test", failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failure_count == 1
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self):
        """Test circuit lets a trial call through after the recovery timeout."""
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        clock.now += 29
        assert breaker.state == CircuitState.OPEN

        clock.now += 1
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.is_allowed() is True

    def test_half_open_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=10, clock=clock)
        breaker.record_failure()
        clock.now += 10
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=10, clock=clock)
        breaker.record_failure()
        clock.now += 10
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        breaker.record_failure()
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_to_dict(self):
        breaker = CircuitBreaker("messaging_api", failure_threshold=5, recovery_timeout=30.0)
        assert breaker.to_dict() == {
            "name": "messaging_api",
            "state": "closed",
            "failure_count": 0,
            "failure_threshold": 5,
            "recovery_timeout": 30.0,
        }


class TestCircuitBreakerRegistry:
    """Tests for the named breaker registry."""

    def test_same_name_same_instance(self):
        first = get_circuit_breaker("messaging_api", failure_threshold=2)
        second = get_circuit_breaker("messaging_api", failure_threshold=10)

        assert first is second
        assert first.failure_threshold == 2

    def test_reset_registry(self):
        get_circuit_breaker("a")
        get_circuit_breaker("b")
        assert len(all_circuit_breakers()) == 2

        reset_circuit_breakers()
        assert all_circuit_breakers() == []

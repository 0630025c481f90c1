"""Tests for the circuit breaker."""

from unittest.mock import patch

from story_ledger.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    get_circuit_breaker,
    reset_global_circuit_breaker,
)


class TestCircuitBreakerTransitions:
    """Tests for state transitions."""

    def test_starts_closed(self):
        """A new breaker allows requests."""
        breaker = CircuitBreaker()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()

    def test_opens_after_threshold(self):
        """Consecutive failures open the circuit."""
        breaker = CircuitBreaker(failure_threshold=3)
        for _ in range(2):
            breaker.record_failure(ConnectionError("down"))
        assert not breaker.is_open

        breaker.record_failure(ConnectionError("down"))

        assert breaker.is_open
        assert not breaker.allow_request()

    def test_success_resets_failure_count(self):
        """A success while closed clears earlier failures."""
        breaker = CircuitBreaker(failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self):
        """Once the timeout passes a single probe is allowed."""
        breaker = CircuitBreaker(failure_threshold=1, timeout_seconds=10.0)
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1000.0):
            breaker.record_failure()
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1011.0):
            assert breaker.state == CircuitState.HALF_OPEN
            assert breaker.allow_request()
            assert not breaker.allow_request()

    def test_half_open_closes_after_successes(self):
        """Enough successful probes close the circuit."""
        breaker = CircuitBreaker(failure_threshold=1, success_threshold=2, timeout_seconds=10.0)
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1000.0):
            breaker.record_failure()
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1011.0):
            assert breaker.allow_request()
            breaker.record_success()
            assert breaker.state == CircuitState.HALF_OPEN
            assert breaker.allow_request()
            breaker.record_success()
            assert breaker.state == CircuitState.CLOSED

    def test_failed_probe_reopens(self):
        """A failure while half-open reopens the circuit."""
        breaker = CircuitBreaker(failure_threshold=1, timeout_seconds=10.0)
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1000.0):
            breaker.record_failure()
        with patch("story_ledger.utils.circuit_breaker.time.time", return_value=1011.0):
            breaker.allow_request()
            breaker.record_failure()
            assert breaker.state == CircuitState.OPEN
            assert breaker.time_until_retry() == 10.0

    def test_disabled_never_opens(self):
        """A disabled breaker lets everything through."""
        breaker = CircuitBreaker(failure_threshold=1, enabled=False)
        breaker.record_failure()
        assert breaker.allow_request()
        assert breaker.state == CircuitState.CLOSED

    def test_reset(self):
        """reset returns the breaker to closed."""
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.time_until_retry() == 0.0

    def test_status(self):
        """get_status reports the current numbers."""
        breaker = CircuitBreaker(failure_threshold=4)
        breaker.record_failure()
        status = breaker.get_status()
        assert status["state"] == "closed"
        assert status["failure_count"] == 1
        assert status["failure_threshold"] == 4


class TestGlobalCircuitBreaker:
    """Tests for the process-wide breaker."""

    def test_singleton(self):
        """The same breaker is returned until reset."""
        first = get_circuit_breaker(failure_threshold=7)
        assert get_circuit_breaker(failure_threshold=2) is first
        assert first.failure_threshold == 7

        reset_global_circuit_breaker()

        assert get_circuit_breaker() is not first

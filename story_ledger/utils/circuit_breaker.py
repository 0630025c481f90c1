"""Circuit breaker guarding calls to the model provider.

When Ollama is down or overloaded, every continuity call would otherwise
sit out its full timeout. The breaker fails fast after repeated failures
so the generation pipeline loses continuity quickly instead of stalling.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Three-state circuit breaker.

    State transitions:
    - CLOSED -> OPEN: after ``failure_threshold`` consecutive failures
    - OPEN -> HALF_OPEN: once ``timeout_seconds`` have passed since the last failure
    - HALF_OPEN -> CLOSED: after ``success_threshold`` successful probes
    - HALF_OPEN -> OPEN: on any failure

    Only one probe request is let through at a time while half-open.
    """

    name: str = "llm"
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 60.0
    enabled: bool = True

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _probe_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    def __post_init__(self) -> None:
        """Log the breaker configuration."""
        logger.debug(
            "Circuit breaker '%s' created: enabled=%s, failures=%d, successes=%d, timeout=%.1fs",
            self.name,
            self.enabled,
            self.failure_threshold,
            self.success_threshold,
            self.timeout_seconds,
        )

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN when the timeout has elapsed."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time is not None:
                elapsed = time.time() - self._last_failure_time
                if elapsed >= self.timeout_seconds:
                    logger.info(
                        "Circuit breaker '%s': OPEN -> HALF_OPEN after %.1fs", self.name, elapsed
                    )
                    self._state = CircuitState.HALF_OPEN
                    self._success_count = 0
                    self._probe_in_flight = False
            return self._state

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (blocking requests)."""
        return self.state == CircuitState.OPEN

    def allow_request(self) -> bool:
        """Return True if a request may be sent now."""
        if not self.enabled:
            return True

        with self._lock:
            state = self.state
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                logger.debug("Circuit breaker '%s': allowing probe request", self.name)
                return True
            logger.warning("Circuit breaker '%s': rejecting request (%s)", self.name, state.value)
            return False

    def record_success(self) -> None:
        """Record a successful request."""
        if not self.enabled:
            return

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info("Circuit breaker '%s': HALF_OPEN -> CLOSED", self.name)
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        """Record a failed request.

        Args:
            error: Optional exception that caused the failure.
        """
        if not self.enabled:
            return

        with self._lock:
            self._last_failure_time = time.time()
            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Circuit breaker '%s': probe failed, HALF_OPEN -> OPEN. Error: %s",
                    self.name,
                    error,
                )
                self._probe_in_flight = False
                self._state = CircuitState.OPEN
                return

            self._failure_count += 1
            logger.debug(
                "Circuit breaker '%s': failure %d/%d. Error: %s",
                self.name,
                self._failure_count,
                self.failure_threshold,
                error,
            )
            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning("Circuit breaker '%s': CLOSED -> OPEN", self.name)
                self._state = CircuitState.OPEN

    def reset(self) -> None:
        """Reset the breaker to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._probe_in_flight = False

    def time_until_retry(self) -> float:
        """Seconds until an open circuit lets a probe through (0 when not open)."""
        with self._lock:
            if self.state != CircuitState.OPEN or self._last_failure_time is None:
                return 0.0
            return max(0.0, self.timeout_seconds - (time.time() - self._last_failure_time))

    def get_status(self) -> dict[str, Any]:
        """Return a status snapshot for monitoring."""
        with self._lock:
            return {
                "name": self.name,
                "enabled": self.enabled,
                "state": self.state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "time_until_retry": self.time_until_retry(),
            }


_global_circuit_breaker: CircuitBreaker | None = None
_circuit_breaker_lock = threading.Lock()


def get_circuit_breaker(
    failure_threshold: int = 5,
    success_threshold: int = 2,
    timeout_seconds: float = 60.0,
    enabled: bool = True,
) -> CircuitBreaker:
    """Get or lazily create the process-wide breaker for model calls.

    The arguments only take effect on creation.
    """
    global _global_circuit_breaker

    if _global_circuit_breaker is None:
        with _circuit_breaker_lock:
            if _global_circuit_breaker is None:
                _global_circuit_breaker = CircuitBreaker(
                    name="llm",
                    failure_threshold=failure_threshold,
                    success_threshold=success_threshold,
                    timeout_seconds=timeout_seconds,
                    enabled=enabled,
                )

    return _global_circuit_breaker


def reset_global_circuit_breaker() -> None:
    """Drop the global breaker so the next call creates a fresh one."""
    global _global_circuit_breaker
    with _circuit_breaker_lock:
        _global_circuit_breaker = None

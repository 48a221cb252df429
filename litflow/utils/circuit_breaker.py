"""Circuit breaker for the full-text fetch dependency.

Implements the circuit breaker pattern to prevent cascading failures.

States:
- CLOSED: Normal operation, requests allowed
- OPEN: After failure threshold, requests rejected without being attempted
- HALF_OPEN: After the reset timeout, requests allowed as probes

State Transitions:
- CLOSED → OPEN: After failure_threshold consecutive failures
- OPEN → HALF_OPEN: Once reset_timeout_seconds have passed (checked on read)
- HALF_OPEN → CLOSED: After success_threshold consecutive successes
- HALF_OPEN → OPEN: On any failure

Counters belonging to the previous state are cleared on every transition.
"""

import threading
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from litflow.models.config import CircuitBreakerConfig
from litflow.observability.metrics import (
    CIRCUIT_BREAKER_REJECTIONS,
    CIRCUIT_BREAKER_STATE,
    CIRCUIT_BREAKER_TRANSITIONS,
)
from litflow.utils.exceptions import CircuitOpenError, ConfigurationError

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreaker:
    """Thread-safe circuit breaker implementation.

    One instance guards one dependency. All state changes go through
    record_success/record_failure (called by execute) or the OPEN →
    HALF_OPEN check performed when ``state`` is read.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        failure_threshold: Optional[int] = None,
        success_threshold: Optional[int] = None,
        reset_timeout_seconds: Optional[float] = None,
    ) -> None:
        """Initialize circuit breaker.

        Explicit keyword thresholds override the config values.

        Args:
            name: Identifier for this circuit breaker
            config: Circuit breaker configuration

        Raises:
            ConfigurationError: If any threshold or the timeout is not positive
        """
        config = config or CircuitBreakerConfig()
        self.name = name
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else config.failure_threshold
        )
        self.success_threshold = (
            success_threshold
            if success_threshold is not None
            else config.success_threshold
        )
        self.reset_timeout_seconds = (
            reset_timeout_seconds
            if reset_timeout_seconds is not None
            else config.reset_timeout_seconds
        )

        for field, value in (
            ("failure_threshold", self.failure_threshold),
            ("success_threshold", self.success_threshold),
            ("reset_timeout_seconds", self.reset_timeout_seconds),
        ):
            if value <= 0:
                raise ConfigurationError(
                    f"Circuit breaker '{name}': {field} must be greater than 0",
                    context={field: value},
                )

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_successes = 0
        self._total_failures = 0
        self._total_rejections = 0
        self._next_attempt_time: Optional[float] = None
        self._lock = threading.RLock()
        CIRCUIT_BREAKER_STATE.labels(breaker=name).set(0)

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout has passed."""
        with self._lock:
            if (
                self._state == CircuitState.OPEN
                and self._next_attempt_time is not None
                and time.monotonic() >= self._next_attempt_time
            ):
                self._success_count = 0
                self._transition(CircuitState.HALF_OPEN)
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def success_count(self) -> int:
        with self._lock:
            return self._success_count

    @property
    def next_attempt_time(self) -> Optional[float]:
        """Monotonic timestamp after which an OPEN breaker admits a probe."""
        with self._lock:
            return self._next_attempt_time

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        CIRCUIT_BREAKER_TRANSITIONS.labels(
            breaker=self.name, to_state=new_state.value
        ).inc()
        CIRCUIT_BREAKER_STATE.labels(breaker=self.name).set(
            _STATE_GAUGE_VALUE[new_state]
        )
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit_breaker_state_changed",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def _open(self) -> None:
        self._next_attempt_time = time.monotonic() + self.reset_timeout_seconds
        self._failure_count = 0
        self._success_count = 0
        self._transition(CircuitState.OPEN)

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            self._total_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._failure_count = 0
                    self._success_count = 0
                    self._next_attempt_time = None
                    self._transition(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        with self._lock:
            self._total_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.failure_threshold:
                    self._open()

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request should proceed, False if blocked
        """
        return self.state != CircuitState.OPEN

    def check_or_raise(self) -> None:
        """Check if request is allowed, raising if circuit is OPEN.

        Raises:
            CircuitOpenError: If circuit is OPEN
        """
        with self._lock:
            if self.allow_request():
                return
            self._total_rejections += 1
            next_attempt = self._next_attempt_time or time.monotonic()
            retry_after = max(0.0, next_attempt - time.monotonic())

        CIRCUIT_BREAKER_REJECTIONS.labels(breaker=self.name).inc()
        raise CircuitOpenError(self.name, next_attempt, retry_after)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation through the breaker.

        Raises:
            CircuitOpenError: If the breaker is OPEN; operation is not called
            Exception: Whatever operation raised, after recording the failure
        """
        self.check_or_raise()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._next_attempt_time = None
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def get_stats(self) -> Dict:
        """Get circuit breaker statistics.

        Returns:
            Dictionary with state and counter information
        """
        with self._lock:
            state = self.state
            retry_after = 0.0
            if state == CircuitState.OPEN and self._next_attempt_time is not None:
                retry_after = max(0.0, self._next_attempt_time - time.monotonic())

            return {
                "name": self.name,
                "state": state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "total_successes": self._total_successes,
                "total_failures": self._total_failures,
                "total_rejections": self._total_rejections,
                "retry_after_seconds": retry_after,
            }

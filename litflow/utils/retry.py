"""Retry with exponential backoff and jitter.

Retries a failing async operation according to a RetryPolicy:
- Attempts are 1-indexed; attempt 1 runs immediately
- delay = min(base * 2^(attempt-1) + U[0, base * jitter_factor), max)
- The retry predicate decides which errors are worth another attempt
- After the last attempt the final error propagates unchanged
"""

import asyncio
import random
from dataclasses import dataclass
from typing import TypeVar, Callable, Awaitable, Optional

import structlog

from litflow.models.config import RetryConfig
from litflow.observability.metrics import RETRY_ATTEMPTS
from litflow.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


T = TypeVar("T")


def _always_retry(error: Exception) -> bool:
    return True


@dataclass
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    Validated on construction; a bad policy raises ConfigurationError
    immediately rather than misbehaving on the first failure.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    jitter_factor: float = 0.2
    should_retry: Callable[[Exception], bool] = _always_retry
    on_retry: Optional[Callable[[int, Exception, float], None]] = None

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ConfigurationError(
                "max_attempts must be greater than 0",
                context={"max_attempts": self.max_attempts},
            )
        if self.base_delay_seconds <= 0:
            raise ConfigurationError(
                "base_delay_seconds must be greater than 0",
                context={"base_delay_seconds": self.base_delay_seconds},
            )
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ConfigurationError(
                "max_delay_seconds must be >= base_delay_seconds",
                context={
                    "base_delay_seconds": self.base_delay_seconds,
                    "max_delay_seconds": self.max_delay_seconds,
                },
            )
        if self.jitter_factor < 0:
            raise ConfigurationError(
                "jitter_factor cannot be negative",
                context={"jitter_factor": self.jitter_factor},
            )

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        should_retry: Callable[[Exception], bool] = _always_retry,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            jitter_factor=config.jitter_factor,
            should_retry=should_retry,
            on_retry=on_retry,
        )


class RetryHandler:
    """Async retry handler with exponential backoff and jitter."""

    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        """Initialize retry handler.

        Args:
            policy: Default policy used when execute_with_retry gets none
        """
        self.policy = policy or RetryPolicy()

    def calculate_delay(
        self, attempt: int, policy: Optional[RetryPolicy] = None
    ) -> float:
        """Calculate the wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)
            policy: Policy to use instead of the handler default

        Returns:
            Delay in seconds to wait before the next attempt
        """
        policy = policy or self.policy
        base_delay = policy.base_delay_seconds * (2 ** (attempt - 1))
        jitter = random.uniform(0, policy.base_delay_seconds * policy.jitter_factor)
        return min(base_delay + jitter, policy.max_delay_seconds)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """Run operation, retrying failures the policy allows.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Policy to use instead of the handler default

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last error, unchanged, once retries stop
        """
        policy = policy or self.policy

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= policy.max_attempts or not policy.should_retry(e):
                    raise

                delay = self.calculate_delay(attempt, policy)

                logger.warning(
                    "retry_attempt",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    delay_seconds=round(delay, 3),
                )
                RETRY_ATTEMPTS.labels(error_type=type(e).__name__).inc()

                if policy.on_retry is not None:
                    policy.on_retry(attempt, e, delay)

                await asyncio.sleep(delay)
                attempt += 1

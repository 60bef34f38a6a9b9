"""
Circuit breaker for text-generation calls.

Rejects requests immediately while the upstream service keeps failing, so a
dead provider does not tie up every generation request for a full timeout.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar('T')


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    State transitions:
        CLOSED -> OPEN (after failure_threshold failures)
        OPEN -> HALF_OPEN (after recovery_timeout)
        HALF_OPEN -> CLOSED (after success_threshold successes)
        HALF_OPEN -> OPEN (on any failure)
    """
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"           # Failing, reject requests immediately
    HALF_OPEN = "half_open" # Testing recovery, limited requests


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5      # Failures before opening
    recovery_timeout: float = 60.0  # Seconds before attempting recovery
    success_threshold: int = 1      # Successes to close from half-open
    name: str = "circuit"           # For logging


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open."""

    def __init__(self, circuit_name: str, retry_after: float):
        self.circuit_name = circuit_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{circuit_name}' is OPEN. "
            f"Retry after {retry_after:.1f}s"
        )


class AsyncCircuitBreaker:
    """
    Circuit breaker for coroutine calls.

    All state lives on the event loop thread, so no locking is needed.

    Example:
        >>> breaker = AsyncCircuitBreaker(CircuitBreakerConfig(name="llm"))
        >>> result = await breaker.call(client.post, url, json=payload)
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            clock: Monotonic time source, injectable for tests
        """
        self.config = config
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        """Get current state (with automatic OPEN -> HALF_OPEN transition)."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time > self.config.recovery_timeout:
                logger.info(f"[{self.config.name}] Circuit transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func(*args, **kwargs)`` with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If circuit is open
            Exception: Any exception from func (after recording)
        """
        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_time or self._clock())
            raise CircuitBreakerOpen(
                self.config.name, max(0.0, self.config.recovery_timeout - elapsed)
            )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        """Record successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                logger.success(f"[{self.config.name}] Circuit closing (recovered)")
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._failure_count > 0:
            self._failure_count = 0

    def _on_failure(self) -> None:
        """Record failed call."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            logger.warning(f"[{self.config.name}] Circuit re-opening (failed during recovery)")
            self._state = CircuitState.OPEN
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            logger.error(
                f"[{self.config.name}] Circuit opening "
                f"({self._failure_count} failures)"
            )
            self._state = CircuitState.OPEN

    def get_metrics(self) -> dict[str, Any]:
        """Get circuit breaker metrics."""
        return {
            "name": self.config.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }

    def reset(self) -> None:
        """Manually reset circuit to CLOSED state."""
        logger.info(f"[{self.config.name}] Circuit manually reset")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None

"""
Resilience patterns for market data provider calls.

This module provides:
1. Circuit Breaker - Fail fast after consecutive transport failures
2. Retry with Tenacity - Exponential backoff with jitter for transient errors

Rate-limit notices are never retried: the provider's quota will not recover
within a backoff window, and the gateway serves stale data instead.

Usage:
    from ipsagent.services.data_providers.resilience import (
        CircuitBreaker,
        retrying,
    )

    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30.0, name="alpha_vantage")

    async def fetch():
        await breaker.guard()  # Raises CircuitOpenError if open
        try:
            async for attempt in retrying(max_attempts=3):
                with attempt:
                    result = await do_fetch()
            breaker.record_success()
            return result
        except Exception as e:
            breaker.record_failure(e)
            raise
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.logging import get_logger

logger = get_logger("resilience")


# =============================================================================
# Exceptions
# =============================================================================


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open and blocking calls."""

    def __init__(self, name: str, message: str = "Circuit breaker is open"):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}")


class TransientUpstreamError(Exception):
    """Retryable provider failure (5xx, malformed body)."""


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast, blocking calls
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreaker:
    """
    Circuit breaker pattern for fail-fast protection.

    States:
    - CLOSED: Normal operation, counting failures
    - OPEN: After threshold failures, block all calls
    - HALF_OPEN: After recovery timeout, allow test request

    Args:
        failure_threshold: Number of consecutive failures before opening
        recovery_timeout: Seconds to wait before testing (half-open)
        name: Identifier for logging
        excluded_exceptions: Exception types that shouldn't trigger circuit
        clock: Monotonic time source
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    name: str = "circuit"
    excluded_exceptions: tuple[type, ...] = ()
    clock: Clock = field(default=system_clock, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition from OPEN to HALF_OPEN)."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self.clock.monotonic() - self._last_failure_time >= self.recovery_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    async def guard(self) -> None:
        """Raise CircuitOpenError if the circuit is open."""
        state = self.state

        if state == CircuitState.OPEN:
            remaining = self.recovery_timeout - (
                self.clock.monotonic() - (self._last_failure_time or 0)
            )
            raise CircuitOpenError(
                self.name,
                f"Circuit open after {self._failure_count} failures, "
                f"retry in {remaining:.1f}s",
            )

        if state == CircuitState.HALF_OPEN:
            logger.info(f"[{self.name}] Circuit half-open, allowing test request")

    def record_success(self) -> None:
        """Record a successful call, reset failure count."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"[{self.name}] Circuit closed after successful recovery")

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def record_failure(self, error: Exception | None = None) -> None:
        """Record a failed call. Opens circuit after threshold failures."""
        if error and isinstance(error, self.excluded_exceptions):
            return

        self._failure_count += 1
        self._last_failure_time = self.clock.monotonic()

        if self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"[{self.name}] Circuit OPEN after {self._failure_count} failures"
                )
            self._state = CircuitState.OPEN
        else:
            logger.debug(
                f"[{self.name}] Failure {self._failure_count}/{self.failure_threshold}"
            )

    def reset(self) -> None:
        """Force reset to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def get_stats(self) -> dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


# =============================================================================
# Retry
# =============================================================================

# Transport-level failures worth another attempt
DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TransportError,
    TransientUpstreamError,
    asyncio.TimeoutError,
)


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        f"Retry {state.attempt_number} for {getattr(state.fn, '__name__', 'call')}: {error}"
    )


def retrying(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    jitter: float = 0.5,
    retry_on: tuple[type[Exception], ...] = DEFAULT_RETRY_EXCEPTIONS,
    sleep: Any = None,
) -> AsyncRetrying:
    """
    Build a tenacity retry loop with exponential backoff and jitter.

    The last exception is re-raised once attempts are exhausted.

    Args:
        max_attempts: Maximum number of attempts (including initial)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        jitter: Maximum random jitter added to each delay
        retry_on: Exception types that trigger retry
        sleep: Optional async sleep override (tests)
    """
    kwargs: dict[str, Any] = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=base_delay, max=max_delay, jitter=jitter),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
        **kwargs,
    )

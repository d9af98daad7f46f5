"""
Tests for resilience patterns (circuit breaker, retry).
"""

import httpx
import pytest
from conftest import FakeClock

from ipsagent.services.data_providers.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    TransientUpstreamError,
    retrying,
)


async def _no_sleep(_seconds: float) -> None:
    return None


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_initial_state_is_closed(self, clock: FakeClock):
        """Circuit starts in closed state."""
        breaker = CircuitBreaker(name="test", clock=clock)
        assert breaker.state == CircuitState.CLOSED
        assert not breaker.is_open

    def test_opens_after_threshold_failures(self, clock: FakeClock):
        """Circuit opens after reaching failure threshold."""
        breaker = CircuitBreaker(failure_threshold=3, name="test", clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_guard_raises_when_open(self, clock: FakeClock):
        """Guard raises CircuitOpenError when circuit is open."""
        breaker = CircuitBreaker(failure_threshold=2, name="test", clock=clock)
        breaker.record_failure()
        breaker.record_failure()

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.guard()
        assert exc_info.value.name == "test"

    def test_half_open_after_recovery_timeout(self, clock: FakeClock):
        """Circuit transitions to half-open after recovery timeout."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, name="test", clock=clock)
        breaker.record_failure()
        breaker.record_failure()

        clock.advance(29)
        assert breaker.state == CircuitState.OPEN
        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN

    def test_success_in_half_open_closes_circuit(self, clock: FakeClock):
        """Success in half-open state closes the circuit."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=5, name="test", clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(5)

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["failure_count"] == 0

    def test_excluded_exceptions_not_counted(self, clock: FakeClock):
        """Excluded exception types don't increment failure count."""
        breaker = CircuitBreaker(
            failure_threshold=2,
            name="test",
            excluded_exceptions=(ValueError,),
            clock=clock,
        )

        breaker.record_failure(ValueError("ignored"))
        breaker.record_failure(ValueError("also ignored"))
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure(RuntimeError("counted"))
        assert breaker.get_stats()["failure_count"] == 1

    def test_reset_closes_circuit(self, clock: FakeClock):
        """Reset forces circuit to closed state."""
        breaker = CircuitBreaker(failure_threshold=1, name="test", clock=clock)
        breaker.record_failure()
        assert breaker.is_open

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


# =============================================================================
# Retry Tests
# =============================================================================


class TestRetrying:
    """Tests for the tenacity retry loop."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        """Transient errors are retried until success."""
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise TransientUpstreamError("HTTP 503")
            return "ok"

        async for attempt in retrying(max_attempts=3, sleep=_no_sleep):
            with attempt:
                result = await flaky()

        assert result == "ok"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self):
        """The original exception surfaces after the last attempt."""
        attempts = 0

        async def down() -> None:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            async for attempt in retrying(max_attempts=2, sleep=_no_sleep):
                with attempt:
                    await down()

        assert attempts == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        """Errors outside retry_on fail on the first attempt."""
        attempts = 0

        async def broken() -> None:
            nonlocal attempts
            attempts += 1
            raise KeyError("bug")

        with pytest.raises(KeyError):
            async for attempt in retrying(max_attempts=5, sleep=_no_sleep):
                with attempt:
                    await broken()

        assert attempts == 1

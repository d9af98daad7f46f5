"""Daily upstream call budget.

A day-scoped counter compared against a ceiling before each chargeable
upstream call. The day is the UTC calendar date; the counter starts over at
zero the first time it is read or incremented on a new day.

The budget is a soft guard, not a rate limiter: the check happens before a
call and the charge after it succeeds, so concurrent in-flight calls may push
the count slightly past the ceiling.
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta
from typing import Any, Protocol

from redis.asyncio import Redis

from ipsagent.core.clock import Clock, system_clock, utc_day_key
from ipsagent.core.logging import get_logger


logger = get_logger("cache.budget")

BUDGET_PREFIX = "ipsagent:budget"


class BudgetGuard(Protocol):
    """Contract shared by the in-memory and Valkey budgets."""

    limit: int

    async def value(self) -> int: ...

    async def increment(self) -> int: ...


class DailyBudget:
    """Process-local daily counter.

    Args:
        limit: Calls allowed per UTC day
        clock: Time source used for the day key
    """

    def __init__(self, limit: int = 50_000, *, clock: Clock = system_clock):
        self.limit = limit
        self._clock = clock
        self._lock = threading.Lock()
        self._day_key = utc_day_key(clock.now())
        self._count = 0

    def _rollover(self) -> None:
        # Caller holds the lock
        today = utc_day_key(self._clock.now())
        if today != self._day_key:
            logger.info(
                f"Daily budget reset for {today} ({self._count} calls on {self._day_key})"
            )
            self._day_key = today
            self._count = 0

    async def value(self) -> int:
        """Calls charged so far today."""
        with self._lock:
            self._rollover()
            return self._count

    async def increment(self) -> int:
        """Charge one call and return the new count."""
        with self._lock:
            self._rollover()
            self._count += 1
            return self._count

    @property
    def day_key(self) -> str:
        return self._day_key

    async def get_stats(self) -> dict[str, Any]:
        used = await self.value()
        return {
            "backend": "memory",
            "day": self._day_key,
            "used": used,
            "limit": self.limit,
            "exceeded": used >= self.limit,
        }


class ValkeyDailyBudget:
    """Daily counter shared across processes through Valkey.

    One key per UTC day; the key expires at the end of that day so the
    counter never outlives it.
    """

    # INCR and set the expiry in one round trip
    _INCREMENT_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIREAT', KEYS[1], tonumber(ARGV[1]))
    end
    return count
    """

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Redis]],
        limit: int = 50_000,
        *,
        clock: Clock = system_clock,
        prefix: str = BUDGET_PREFIX,
    ):
        self.limit = limit
        self._client_factory = client_factory
        self._clock = clock
        self._prefix = prefix

    def _key(self, now: datetime) -> str:
        return f"{self._prefix}:{utc_day_key(now)}"

    @staticmethod
    def _end_of_day(now: datetime) -> int:
        tomorrow = now.astimezone(UTC).date() + timedelta(days=1)
        return int(datetime.combine(tomorrow, time.min, tzinfo=UTC).timestamp())

    async def value(self) -> int:
        client = await self._client_factory()
        try:
            raw = await client.get(self._key(self._clock.now()))
        except Exception as e:
            # Fail open so a cache outage does not block market data
            logger.error(f"Budget read failed: {e}")
            return 0
        return int(raw) if raw is not None else 0

    async def increment(self) -> int:
        client = await self._client_factory()
        now = self._clock.now()
        try:
            count = await client.eval(
                self._INCREMENT_SCRIPT, 1, self._key(now), self._end_of_day(now)
            )
        except Exception as e:
            logger.error(f"Budget increment failed: {e}")
            return 0
        return int(count)

    async def get_stats(self) -> dict[str, Any]:
        used = await self.value()
        return {
            "backend": "valkey",
            "day": utc_day_key(self._clock.now()),
            "used": used,
            "limit": self.limit,
            "exceeded": used >= self.limit,
        }

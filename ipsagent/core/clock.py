"""Injectable time source.

Everything that reads wall-clock time or sleeps (cache freshness, budget
day rollover, batch pacing, stuck-job windows) takes a ``Clock`` so tests can
drive time explicitly.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime


class Clock:
    """Real clock backed by the system time."""

    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def utc_day_key(moment: datetime) -> str:
    """Calendar date of ``moment`` in UTC, e.g. ``2024-05-01``."""
    return moment.astimezone(UTC).date().isoformat()


system_clock = Clock()

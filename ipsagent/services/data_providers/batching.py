"""Paced, fixed-size concurrent batches.

Items are processed ``batch_size`` at a time; all calls in a batch run
concurrently and the next batch starts ``delay_ms`` after the previous one
finished. No pause follows the last batch, so K items cost ``ceil(K/B)``
batches and ``(ceil(K/B) - 1) * delay_ms`` of sleeping.

A failure in one slot yields ``None`` for that slot and never aborts the batch.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.logging import get_logger


logger = get_logger("data_providers.batching")

T = TypeVar("T")
R = TypeVar("R")


def batch_count(total: int, batch_size: int) -> int:
    return math.ceil(total / batch_size) if total > 0 else 0


async def run_in_batches(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    batch_size: int = 5,
    delay_ms: int = 100,
    clock: Clock = system_clock,
) -> list[R | None]:
    """Apply ``fn`` to every item in paced batches, preserving input order."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    results: list[R | None] = []
    batches = batch_count(len(items), batch_size)

    for index in range(batches):
        chunk = items[index * batch_size:(index + 1) * batch_size]
        outcomes = await asyncio.gather(*(fn(item) for item in chunk), return_exceptions=True)

        for item, outcome in zip(chunk, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Batch item {item!r} failed: {outcome}",
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                results.append(None)
            else:
                results.append(outcome)

        if index < batches - 1 and delay_ms > 0:
            await clock.sleep(delay_ms / 1000)

    return results

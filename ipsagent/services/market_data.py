"""
Market data gateway: cache → budget → upstream, with stale fallback.

For each symbol, in order:
1. Fresh cache hit → returned with ``from_cache=True``; no upstream call, no charge.
2. Budget spent → last known value tagged ``served-stale:budget-exceeded``
   (``no-data:budget-exceeded`` when nothing is cached); no upstream call.
3. Otherwise the provider is called. Success writes through to the cache and
   charges the budget once. A classified provider failure falls back to the
   last known value tagged ``served-stale:<CODE>`` / ``no-data:<CODE>`` and
   is never charged.

Quotes and option chains are cached separately and share one budget.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ipsagent.cache.budget import BudgetGuard
from ipsagent.cache.quote_cache import QuoteCache
from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.exceptions import BudgetExceeded, UpstreamError, UpstreamRateLimited
from ipsagent.core.logging import get_logger
from ipsagent.services.data_providers.batching import run_in_batches
from ipsagent.services.data_providers.models import (
    MarketDataProvider,
    OptionChain,
    QuoteSnapshot,
)


logger = get_logger("services.market_data")

T = TypeVar("T")

BUDGET_EXCEEDED = "budget-exceeded"
FETCH_FAILED = "FETCH_FAILED"


@dataclass
class MarketDataItem(Generic[T]):
    """Outcome for one symbol."""

    symbol: str
    data: T | None
    from_cache: bool = False
    tag: str | None = None  # e.g. "served-stale:RATE_LIMIT"

    @property
    def stale(self) -> bool:
        return bool(self.tag and self.tag.startswith("served-stale:"))

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass
class MarketDataBatch(Generic[T]):
    """Per-symbol outcomes plus batch-level budget/rate-limit flags.

    ``budget_exceeded`` is set only when a symbol in this batch was refused an
    upstream call; ``budget_used >= budget_limit`` alone does not set it.
    """

    items: list[MarketDataItem[T]] = field(default_factory=list)
    rate_limited: bool = False
    budget_exceeded: bool = False
    budget_used: int = 0
    budget_limit: int = 0

    def by_symbol(self) -> dict[str, MarketDataItem[T]]:
        return {item.symbol: item for item in self.items}

    def available(self) -> dict[str, T]:
        return {item.symbol: item.data for item in self.items if item.data is not None}

    @property
    def meta(self) -> dict[str, Any]:
        return {
            "budget_used": self.budget_used,
            "budget_limit": self.budget_limit,
            "budget_exceeded": self.budget_exceeded,
            "rate_limited": self.rate_limited,
        }


class MarketDataGateway:
    """Rate- and budget-guarded access to the market data provider."""

    def __init__(
        self,
        provider: MarketDataProvider,
        budget: BudgetGuard,
        *,
        quote_cache: QuoteCache[QuoteSnapshot] | None = None,
        chain_cache: QuoteCache[OptionChain] | None = None,
        batch_size: int = 5,
        batch_delay_ms: int = 100,
        clock: Clock = system_clock,
    ):
        self.provider = provider
        self.budget = budget
        self.quote_cache = quote_cache or QuoteCache(clock=clock, name="quotes")
        self.chain_cache = chain_cache or QuoteCache(clock=clock, name="option_chains")
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self._clock = clock

    # =========================================================================
    # Public API
    # =========================================================================

    async def get_quotes(self, symbols: Sequence[str]) -> MarketDataBatch[QuoteSnapshot]:
        """Quotes for ``symbols`` in input order."""
        return await self._resolve_many(symbols, self.quote_cache, self.provider.fetch_quote)

    async def get_option_chains(self, symbols: Sequence[str]) -> MarketDataBatch[OptionChain]:
        """Option chains for ``symbols`` in input order."""
        return await self._resolve_many(
            symbols, self.chain_cache, self.provider.fetch_options_chain
        )

    async def get_quote(self, symbol: str) -> MarketDataItem[QuoteSnapshot]:
        batch = await self.get_quotes([symbol])
        return batch.items[0]

    async def get_stats(self) -> dict[str, Any]:
        stats = getattr(self.budget, "get_stats", None)
        return {
            "quotes": self.quote_cache.get_stats(),
            "option_chains": self.chain_cache.get_stats(),
            "budget": await stats() if stats else {"limit": self.budget.limit},
        }

    # =========================================================================
    # Resolution
    # =========================================================================

    @staticmethod
    def _fallback(symbol: str, cache: QuoteCache[T], reason: str) -> MarketDataItem[T]:
        stale = cache.get_stale(symbol)
        prefix = "served-stale" if stale is not None else "no-data"
        return MarketDataItem(symbol=symbol, data=stale, tag=f"{prefix}:{reason}")

    async def _ensure_budget(self) -> None:
        used = await self.budget.value()
        if used >= self.budget.limit:
            raise BudgetExceeded(details={"used": used, "limit": self.budget.limit})

    async def _resolve(
        self,
        symbol: str,
        cache: QuoteCache[T],
        fetch: Callable[[str], Awaitable[T]],
        batch: MarketDataBatch[T],
    ) -> MarketDataItem[T]:
        fresh = cache.get(symbol)
        if fresh is not None:
            return MarketDataItem(symbol=symbol, data=fresh, from_cache=True)

        try:
            await self._ensure_budget()
            data = await fetch(symbol)
        except BudgetExceeded:
            batch.budget_exceeded = True
            return self._fallback(symbol, cache, BUDGET_EXCEEDED)
        except UpstreamError as e:
            if isinstance(e, UpstreamRateLimited):
                batch.rate_limited = True
            logger.warning(
                f"Upstream fetch failed for {symbol} ({e.error_code}): {e.message}",
                extra={"symbol": symbol, "code": e.error_code},
            )
            return self._fallback(symbol, cache, e.error_code)

        cache.set(symbol, data)
        await self.budget.increment()
        return MarketDataItem(symbol=symbol, data=data)

    async def _resolve_many(
        self,
        symbols: Sequence[str],
        cache: QuoteCache[T],
        fetch: Callable[[str], Awaitable[T]],
    ) -> MarketDataBatch[T]:
        normalized = [s.strip().upper() for s in symbols if s and s.strip()]
        batch: MarketDataBatch[T] = MarketDataBatch(budget_limit=self.budget.limit)

        results = await run_in_batches(
            normalized,
            lambda symbol: self._resolve(symbol, cache, fetch, batch),
            batch_size=self.batch_size,
            delay_ms=self.batch_delay_ms,
            clock=self._clock,
        )

        for symbol, item in zip(normalized, results):
            # Unexpected errors were already logged by the batch runner
            batch.items.append(item if item is not None else self._fallback(symbol, cache, FETCH_FAILED))

        batch.budget_used = await self.budget.value()
        return batch

"""Tests for the cache → budget → upstream market data gateway."""

from __future__ import annotations

import pytest
from conftest import FakeClock, FakeProvider, make_chain

from ipsagent.cache.budget import DailyBudget
from ipsagent.core.exceptions import UpstreamRateLimited, UpstreamUnavailable
from ipsagent.services.market_data import MarketDataGateway


TTL = 3 * 60 * 60


class TestCacheFirst:
    """Fresh cache hits never reach the provider."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, gateway: MarketDataGateway, provider: FakeProvider):
        """A miss calls upstream once and writes through."""
        provider.prices["AAPL"] = 190.0

        first = await gateway.get_quotes(["aapl"])
        second = await gateway.get_quotes(["AAPL"])

        assert provider.calls_for("quote") == ["AAPL"]
        assert first.items[0].from_cache is False
        assert second.items[0].from_cache is True
        assert second.items[0].data.price == 190.0

    @pytest.mark.asyncio
    async def test_fresh_hit_is_not_charged(
        self, gateway: MarketDataGateway, provider: FakeProvider, budget: DailyBudget
    ):
        """Only upstream calls count against the budget."""
        provider.prices["AAPL"] = 190.0

        await gateway.get_quotes(["AAPL"])
        await gateway.get_quotes(["AAPL"])

        assert await budget.value() == 1

    @pytest.mark.asyncio
    async def test_expired_entry_refetches(
        self, gateway: MarketDataGateway, provider: FakeProvider, clock: FakeClock
    ):
        """Past the TTL the provider is called again."""
        provider.prices["AAPL"] = 190.0
        await gateway.get_quotes(["AAPL"])

        clock.advance(TTL + 1)
        provider.prices["AAPL"] = 191.0
        batch = await gateway.get_quotes(["AAPL"])

        assert provider.calls_for("quote") == ["AAPL", "AAPL"]
        assert batch.items[0].data.price == 191.0


class TestBudget:
    """Spent budget short-circuits to cached or missing data."""

    @pytest.mark.asyncio
    async def test_budget_exceeded_serves_stale(self, provider: FakeProvider, clock: FakeClock):
        """With the budget spent, stale values are served and tagged."""
        budget = DailyBudget(limit=1, clock=clock)
        gateway = MarketDataGateway(provider, budget, clock=clock)
        provider.prices.update({"AAPL": 190.0, "MSFT": 410.0})

        await gateway.get_quotes(["AAPL"])
        clock.advance(TTL + 1)
        batch = await gateway.get_quotes(["AAPL", "MSFT"])

        by_symbol = batch.by_symbol()
        assert by_symbol["AAPL"].data.price == 190.0
        assert by_symbol["AAPL"].tag == "served-stale:budget-exceeded"
        assert by_symbol["MSFT"].data is None
        assert by_symbol["MSFT"].tag == "no-data:budget-exceeded"
        assert batch.budget_exceeded is True
        assert provider.calls_for("quote") == ["AAPL"]

    @pytest.mark.asyncio
    async def test_flag_only_set_when_a_symbol_is_refused(
        self, provider: FakeProvider, clock: FakeClock
    ):
        """Spending the last unit, or serving fresh hits, does not raise the flag."""
        budget = DailyBudget(limit=1, clock=clock)
        gateway = MarketDataGateway(provider, budget, clock=clock)
        provider.prices["AAPL"] = 190.0

        spending = await gateway.get_quotes(["AAPL"])
        cached = await gateway.get_quotes(["AAPL"])

        assert spending.budget_used == 1
        assert spending.budget_exceeded is False
        assert cached.items[0].from_cache is True
        assert cached.budget_exceeded is False

    @pytest.mark.asyncio
    async def test_meta_reports_usage(self, gateway: MarketDataGateway, provider: FakeProvider):
        """Batch meta carries budget usage and flags."""
        provider.prices.update({"AAPL": 190.0, "MSFT": 410.0})

        batch = await gateway.get_quotes(["AAPL", "MSFT"])

        assert batch.meta == {
            "budget_used": 2,
            "budget_limit": 50_000,
            "budget_exceeded": False,
            "rate_limited": False,
        }


class TestUpstreamFailures:
    """Provider errors never escape; they become tagged results."""

    @pytest.mark.asyncio
    async def test_rate_limit_serves_stale_and_flags(
        self, gateway: MarketDataGateway, provider: FakeProvider, clock: FakeClock, budget: DailyBudget
    ):
        """A rate limit falls back to the stale value and sets rate_limited."""
        provider.prices["AAPL"] = 190.0
        await gateway.get_quotes(["AAPL"])
        clock.advance(TTL + 1)

        provider.errors["AAPL"] = UpstreamRateLimited("Alpha Vantage rate limit")
        batch = await gateway.get_quotes(["AAPL"])

        item = batch.items[0]
        assert item.data.price == 190.0
        assert item.stale is True
        assert item.tag == "served-stale:RATE_LIMIT"
        assert batch.rate_limited is True
        assert await budget.value() == 1

    @pytest.mark.asyncio
    async def test_unavailable_without_cache_is_no_data(
        self, gateway: MarketDataGateway, provider: FakeProvider
    ):
        """A failure with nothing cached yields no data tagged with the error code."""
        provider.errors["AAPL"] = UpstreamUnavailable("down")

        batch = await gateway.get_quotes(["AAPL"])

        assert batch.items[0].data is None
        assert batch.items[0].tag == "no-data:FETCH_FAILED"
        assert batch.rate_limited is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(
        self, gateway: MarketDataGateway, provider: FakeProvider
    ):
        """A non-upstream exception affects only its own symbol."""
        provider.prices["MSFT"] = 410.0
        provider.errors["AAPL"] = RuntimeError("bug")

        batch = await gateway.get_quotes(["AAPL", "MSFT"])

        assert batch.by_symbol()["AAPL"].tag == "no-data:FETCH_FAILED"
        assert batch.by_symbol()["MSFT"].ok


class TestBatching:
    @pytest.mark.asyncio
    async def test_order_and_pacing(
        self, gateway: MarketDataGateway, provider: FakeProvider, clock: FakeClock
    ):
        """Results follow input order; 7 symbols pause once between 2 batches."""
        symbols = [f"S{i}" for i in range(7)]
        provider.prices.update({s: 10.0 + i for i, s in enumerate(symbols)})

        batch = await gateway.get_quotes(symbols)

        assert [item.symbol for item in batch.items] == symbols
        assert clock.sleeps == [0.1]

    @pytest.mark.asyncio
    async def test_chains_cached_separately(
        self, gateway: MarketDataGateway, provider: FakeProvider
    ):
        """Quotes and chains use separate caches but share the budget."""
        provider.prices["AAPL"] = 100.0
        provider.chains["AAPL"] = make_chain("AAPL")

        await gateway.get_quotes(["AAPL"])
        chains = await gateway.get_option_chains(["AAPL"])

        assert chains.items[0].ok
        assert chains.budget_used == 2
        stats = await gateway.get_stats()
        assert stats["quotes"]["entries"] == 1
        assert stats["option_chains"]["entries"] == 1

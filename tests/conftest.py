"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from ipsagent.cache.budget import DailyBudget
from ipsagent.cache.quote_cache import QuoteCache
from ipsagent.core.clock import Clock
from ipsagent.core.exceptions import UpstreamUnavailable
from ipsagent.jobs.dispatch import JobDispatcher
from ipsagent.jobs.runner import JobRunner
from ipsagent.jobs.store import InMemoryJobStore
from ipsagent.repositories.candidates import InMemoryCandidateRepository
from ipsagent.services.data_providers.models import OptionChain, OptionContract, QuoteSnapshot
from ipsagent.services.market_data import MarketDataGateway


START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock(Clock):
    """Manually advanced clock; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: datetime = START):
        self._now = start
        self._mono = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds

    def set(self, moment: datetime) -> None:
        self._mono += (moment - self._now).total_seconds()
        self._now = moment

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeProvider:
    """Scripted market data provider that records every call."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.prices: dict[str, float] = {}
        self.chains: dict[str, OptionChain] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        self.calls.append(("quote", symbol))
        if symbol in self.errors:
            raise self.errors[symbol]
        if symbol not in self.prices:
            raise UpstreamUnavailable(f"No usable data for {symbol}")
        return QuoteSnapshot(symbol=symbol, price=self.prices[symbol], as_of=self.clock.now())

    async def fetch_options_chain(self, symbol: str) -> OptionChain:
        self.calls.append(("chain", symbol))
        if symbol in self.errors:
            raise self.errors[symbol]
        if symbol not in self.chains:
            raise UpstreamUnavailable(f"No options data for {symbol}")
        return self.chains[symbol]

    def calls_for(self, kind: str) -> list[str]:
        return [symbol for k, symbol in self.calls if k == kind]


# =============================================================================
# Builders
# =============================================================================


def make_put(
    strike: float,
    expiry: date,
    *,
    bid: float | None,
    ask: float | None,
    delta: float | None = None,
    iv: float | None = 0.3,
    volume: float | None = 100,
    open_interest: float | None = 1000,
) -> OptionContract:
    return OptionContract(
        contract_id=f"P{strike:g}-{expiry.isoformat()}",
        expiry=expiry,
        strike=strike,
        option_type="P",
        bid=bid,
        ask=ask,
        iv=iv,
        delta=delta,
        volume=volume,
        open_interest=open_interest,
    )


def make_call(strike: float, expiry: date, *, iv: float = 0.25) -> OptionContract:
    return OptionContract(
        contract_id=f"C{strike:g}-{expiry.isoformat()}",
        expiry=expiry,
        strike=strike,
        option_type="C",
        bid=1.0,
        ask=1.2,
        iv=iv,
        delta=0.4,
    )


def make_chain(
    symbol: str,
    price: float = 100.0,
    *,
    as_of: datetime = START,
    dtes: Iterable[int] = (10,),
    strikes: Iterable[float] = range(99, 87, -1),
) -> OptionChain:
    """Chain whose puts form credit spreads with a healthy reward/risk.

    Put mid is ``0.25 * (strike - 88)`` (floored at 0.05) and delta grows
    toward the money, so high strikes are skipped on delta.
    """
    contracts: list[OptionContract] = []
    for dte in dtes:
        expiry = as_of.date() + timedelta(days=dte)
        for strike in strikes:
            mid = max(0.05, 0.25 * (strike - 88))
            contracts.append(
                make_put(
                    float(strike),
                    expiry,
                    bid=round(mid - 0.02, 4),
                    ask=round(mid + 0.02, 4),
                    delta=-round(0.05 * (strike - 88) + 0.05, 4),
                    iv=round(0.2 + 0.01 * (100 - strike), 4),
                )
            )
        contracts.append(make_call(price + 5, expiry))
    return OptionChain(symbol=symbol, as_of=as_of, contracts=tuple(contracts))


def simple_policy(**overrides: Any) -> dict[str, Any]:
    policy = {
        "name": "Test IPS",
        "factors": [
            {"key": "iv_rank", "weight": 0.6},
            {"key": "dte_mode", "weight": 0.4, "threshold": 14, "direction": "lte"},
        ],
    }
    policy.update(overrides)
    return policy


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(clock: FakeClock) -> FakeProvider:
    return FakeProvider(clock)


@pytest.fixture
def budget(clock: FakeClock) -> DailyBudget:
    return DailyBudget(limit=50_000, clock=clock)


@pytest.fixture
def gateway(provider: FakeProvider, budget: DailyBudget, clock: FakeClock) -> MarketDataGateway:
    return MarketDataGateway(
        provider,
        budget,
        quote_cache=QuoteCache(3 * 60 * 60, clock=clock, name="quotes"),
        chain_cache=QuoteCache(3 * 60 * 60, clock=clock, name="option_chains"),
        batch_size=5,
        batch_delay_ms=100,
        clock=clock,
    )


@pytest.fixture
def job_store(clock: FakeClock) -> InMemoryJobStore:
    return InMemoryJobStore(clock=clock)


@pytest.fixture
def candidate_repo() -> InMemoryCandidateRepository:
    return InMemoryCandidateRepository()


@pytest.fixture
def runner(
    job_store: InMemoryJobStore,
    gateway: MarketDataGateway,
    candidate_repo: InMemoryCandidateRepository,
    clock: FakeClock,
) -> JobRunner:
    return JobRunner(job_store, gateway, candidate_repo, clock=clock, timeout_seconds=5)


@pytest.fixture
def dispatcher(job_store: InMemoryJobStore, runner: JobRunner) -> JobDispatcher:
    return JobDispatcher(job_store, runner, stuck_after_seconds=60, max_symbols=100)

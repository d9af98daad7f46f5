"""Process-level wiring.

Each process (API server, Celery worker) builds one ``Container`` at startup
and passes it by reference. Nothing in the core reaches for module-level
instances of the cache, budget, gateway or stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ipsagent.cache.budget import BudgetGuard, DailyBudget, ValkeyDailyBudget
from ipsagent.cache.client import ValkeyConnector
from ipsagent.cache.quote_cache import QuoteCache
from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.config import Settings, get_settings
from ipsagent.core.logging import get_logger
from ipsagent.jobs.dispatch import JobDispatcher, Notifier
from ipsagent.jobs.runner import JobRunner
from ipsagent.jobs.store import InMemoryJobStore, JobStore
from ipsagent.repositories.candidates import CandidateRepository, InMemoryCandidateRepository
from ipsagent.services.data_providers.alpha_vantage import AlphaVantageClient
from ipsagent.services.data_providers.models import MarketDataProvider
from ipsagent.services.market_data import MarketDataGateway


logger = get_logger("container")


@dataclass
class Container:
    settings: Settings
    clock: Clock
    budget: BudgetGuard
    provider: MarketDataProvider
    gateway: MarketDataGateway
    job_store: JobStore
    candidates: CandidateRepository
    runner: JobRunner
    dispatcher: JobDispatcher
    valkey: Optional[ValkeyConnector] = None

    async def aclose(self) -> None:
        await self.dispatcher.stop()
        aclose = getattr(self.provider, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.valkey is not None:
            await self.valkey.aclose()


def _build_budget(
    settings: Settings, clock: Clock, valkey: Optional[ValkeyConnector]
) -> BudgetGuard:
    if valkey is not None:
        return ValkeyDailyBudget(valkey.client, settings.market_data_daily_budget, clock=clock)
    return DailyBudget(settings.market_data_daily_budget, clock=clock)


def _build_persistence(
    settings: Settings, clock: Clock
) -> tuple[JobStore, CandidateRepository]:
    if settings.job_store_backend == "memory":
        return InMemoryJobStore(clock=clock), InMemoryCandidateRepository()

    from ipsagent.repositories.candidates_orm import SqlAlchemyCandidateRepository
    from ipsagent.repositories.jobs_orm import SqlAlchemyJobStore

    return SqlAlchemyJobStore(clock=clock), SqlAlchemyCandidateRepository()


def build_container(
    settings: Optional[Settings] = None,
    *,
    clock: Optional[Clock] = None,
    provider: Optional[MarketDataProvider] = None,
    budget: Optional[BudgetGuard] = None,
    job_store: Optional[JobStore] = None,
    candidates: Optional[CandidateRepository] = None,
    notifier: Optional[Notifier] = None,
) -> Container:
    """Build every shared component once; explicit arguments override settings."""
    settings = settings or get_settings()
    clock = clock or system_clock

    if job_store is None or candidates is None:
        default_store, default_candidates = _build_persistence(settings, clock)
        job_store = job_store or default_store
        candidates = candidates or default_candidates

    valkey = None
    if settings.budget_backend == "valkey":
        valkey = ValkeyConnector.from_settings(settings)
    budget = budget or _build_budget(settings, clock, valkey)
    provider = provider or AlphaVantageClient.from_settings(settings, clock=clock)

    gateway = MarketDataGateway(
        provider,
        budget,
        quote_cache=QuoteCache(settings.quote_cache_ttl_seconds, clock=clock, name="quotes"),
        chain_cache=QuoteCache(settings.quote_cache_ttl_seconds, clock=clock, name="option_chains"),
        batch_size=settings.market_data_batch_size,
        batch_delay_ms=settings.market_data_batch_delay_ms,
        clock=clock,
    )
    runner = JobRunner(
        job_store,
        gateway,
        candidates,
        clock=clock,
        timeout_seconds=settings.job_timeout_seconds,
    )
    dispatcher = JobDispatcher(
        job_store,
        runner,
        stuck_after_seconds=settings.stuck_job_after_seconds,
        max_symbols=settings.max_symbols_per_job,
        notifier=notifier,
    )

    logger.info(
        f"Container built (jobs={settings.job_store_backend}, budget={settings.budget_backend})"
    )
    return Container(
        settings=settings,
        clock=clock,
        budget=budget,
        provider=provider,
        gateway=gateway,
        job_store=job_store,
        candidates=candidates,
        runner=runner,
        dispatcher=dispatcher,
        valkey=valkey,
    )

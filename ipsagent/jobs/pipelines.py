"""
Ordered pipelines per job kind.

A pipeline is a fixed list of named steps. The runner writes progress before
each step and checks for cancellation between steps; steps communicate through
``JobContext.state`` and the last step sets ``JobContext.result``.

agent_analysis:     fetch_data → score → select_candidates → persist → finalize
dashboard_refresh:  load_positions → fetch_data → evaluate_positions → finalize
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from ipsagent.analysis.candidates import TradeCandidate, generate_put_credit_spreads
from ipsagent.analysis.features import candidate_features, chain_features
from ipsagent.analysis.selection import select_tiered
from ipsagent.core.clock import Clock
from ipsagent.core.logging import get_logger
from ipsagent.repositories.candidates import CandidateRepository
from ipsagent.schemas.jobs import AgentAnalysisParams, DashboardRefreshParams
from ipsagent.scoring.scorer import score
from ipsagent.services.market_data import MarketDataGateway

from .models import Job, JobKind, JobProgress


logger = get_logger("jobs.pipelines")


@dataclass
class JobContext:
    """Everything a step may touch while a job runs."""

    job: Job
    gateway: MarketDataGateway
    candidates: CandidateRepository
    clock: Clock
    progress: JobProgress
    report: Callable[[JobProgress], Awaitable[Any]]
    state: dict[str, Any] = field(default_factory=dict)
    result: Optional[dict[str, Any]] = None

    async def update(self, **changes: Any) -> None:
        """Publish a progress change within the current step."""
        self.progress = self.progress.advance(**changes)
        await self.report(self.progress)


StepFn = Callable[[JobContext], Awaitable[None]]


@dataclass(frozen=True)
class Step:
    name: str
    message: str
    run: StepFn


@dataclass(frozen=True)
class Pipeline:
    kind: JobKind
    steps: tuple[Step, ...]

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def initial_progress(self, total_symbols: int = 0) -> JobProgress:
        return JobProgress(total_steps=self.total_steps, total_symbols=total_symbols)


# =============================================================================
# Agent analysis
# =============================================================================


def _agent_params(ctx: JobContext) -> AgentAnalysisParams:
    params = ctx.state.get("params")
    if params is None:
        params = AgentAnalysisParams.model_validate(ctx.job.params)
        ctx.state["params"] = params
    return params


async def fetch_market_data(ctx: JobContext) -> None:
    params = _agent_params(ctx)
    symbols = params.symbols
    await ctx.update(total_symbols=len(symbols), message=f"Fetching quotes for {len(symbols)} symbols")

    quotes = await ctx.gateway.get_quotes(symbols)
    priced = [s for s, q in quotes.available().items() if q.price > 0]
    await ctx.update(message=f"Fetching option chains for {len(priced)} symbols")

    chains = await ctx.gateway.get_option_chains(priced)
    chain_map = chains.available()

    ctx.state["market"] = {
        symbol: (quotes.by_symbol()[symbol].data, chain_map[symbol])
        for symbol in priced
        if symbol in chain_map
    }
    ctx.state["market_flags"] = {
        "rate_limited": quotes.rate_limited or chains.rate_limited,
        "budget_exceeded": quotes.budget_exceeded or chains.budget_exceeded,
        "budget_used": max(quotes.budget_used, chains.budget_used),
        "budget_limit": quotes.budget_limit,
    }
    await ctx.update(symbols_processed=len(symbols))
    logger.info(f"Market data ready for {len(ctx.state['market'])}/{len(symbols)} symbols")


async def score_candidates(ctx: JobContext) -> None:
    params = _agent_params(ctx)
    as_of = ctx.clock.now().date()
    scored: list[TradeCandidate] = []

    for symbol, (quote, chain) in ctx.state.get("market", {}).items():
        spreads = generate_put_credit_spreads(
            symbol,
            quote.price,
            chain,
            as_of=as_of,
            min_dte=params.policy.min_dte,
            max_dte=params.policy.max_dte,
        )
        if not spreads:
            continue

        chain_level = chain_features(chain, quote.price)
        for candidate in spreads:
            candidate.sector = params.sectors.get(symbol)
            candidate.features = candidate_features(
                candidate,
                chain_level,
                macro_regime=params.macro_regime,
                overrides=params.features.get(symbol),
            )
            result = score(params.policy, candidate.features)
            candidate.alignment = result.alignment
            candidate.breakdown = dict(result.breakdown)
            scored.append(candidate)

    ctx.state["scored"] = scored
    await ctx.update(candidates_found=len(scored), message=f"Scored {len(scored)} candidates")


async def select_candidates(ctx: JobContext) -> None:
    selected = select_tiered(ctx.state.get("scored", []))
    ctx.state["selected"] = selected
    await ctx.update(message=f"Selected {len(selected)} candidates")


async def persist_candidates(ctx: JobContext) -> None:
    saved = await ctx.candidates.save_candidates(ctx.job.id, ctx.state.get("selected", []))
    ctx.state["saved"] = saved


async def finalize_analysis(ctx: JobContext) -> None:
    params = _agent_params(ctx)
    selected: list[TradeCandidate] = ctx.state.get("selected", [])
    ctx.result = {
        "candidates": [c.to_dict() for c in selected],
        "stats": {
            "initial_symbols": len(params.symbols),
            "symbols_with_data": len(ctx.state.get("market", {})),
            "candidates_generated": len(ctx.state.get("scored", [])),
            "final_recommendations": len(selected),
        },
        "market_data": ctx.state.get("market_flags", {}),
        "mode": params.mode,
    }


AGENT_ANALYSIS = Pipeline(
    kind=JobKind.AGENT_ANALYSIS,
    steps=(
        Step("fetch_data", "Fetching market data", fetch_market_data),
        Step("score", "Scoring candidates against IPS", score_candidates),
        Step("select_candidates", "Selecting candidates", select_candidates),
        Step("persist", "Saving candidates", persist_candidates),
        Step("finalize", "Finalizing results", finalize_analysis),
    ),
)


# =============================================================================
# Dashboard refresh
# =============================================================================


async def load_positions(ctx: JobContext) -> None:
    params = DashboardRefreshParams.model_validate(ctx.job.params)
    symbols = list(dict.fromkeys(p.symbol for p in params.positions))
    ctx.state["positions"] = params.positions
    ctx.state["symbols"] = symbols
    await ctx.update(
        total_symbols=len(symbols),
        message=f"Loaded {len(params.positions)} positions across {len(symbols)} symbols",
    )


async def fetch_position_quotes(ctx: JobContext) -> None:
    symbols = ctx.state["symbols"]
    batch = await ctx.gateway.get_quotes(symbols)
    ctx.state["quotes"] = batch.by_symbol()
    ctx.state["market_flags"] = batch.meta
    await ctx.update(symbols_processed=len(symbols))


async def evaluate_positions(ctx: JobContext) -> None:
    quotes = ctx.state["quotes"]
    rows: list[dict[str, Any]] = []

    for position in ctx.state["positions"]:
        item = quotes.get(position.symbol)
        row: dict[str, Any] = {
            "id": position.id,
            "symbol": position.symbol,
            "success": bool(item and item.data is not None),
            "from_cache": bool(item and item.from_cache),
            "tag": item.tag if item else None,
            "current_price": None,
            "distance_to_short_pct": None,
        }
        if item and item.data is not None:
            price = item.data.price
            row["current_price"] = price
            if position.short_strike:
                row["distance_to_short_pct"] = round(
                    (price - position.short_strike) / position.short_strike * 100, 2
                )
        rows.append(row)

    ctx.state["rows"] = rows


async def finalize_refresh(ctx: JobContext) -> None:
    rows = ctx.state.get("rows", [])
    successful = sum(1 for r in rows if r["success"])
    ctx.result = {
        "total": len(rows),
        "successful": successful,
        "failed": len(rows) - successful,
        "positions": rows,
        "market_data": ctx.state.get("market_flags", {}),
    }


DASHBOARD_REFRESH = Pipeline(
    kind=JobKind.DASHBOARD_REFRESH,
    steps=(
        Step("load_positions", "Loading positions", load_positions),
        Step("fetch_data", "Refreshing market data", fetch_position_quotes),
        Step("evaluate_positions", "Processing results", evaluate_positions),
        Step("finalize", "Finalizing results", finalize_refresh),
    ),
)


PIPELINES: dict[JobKind, Pipeline] = {
    JobKind.AGENT_ANALYSIS: AGENT_ANALYSIS,
    JobKind.DASHBOARD_REFRESH: DASHBOARD_REFRESH,
}


def get_pipeline(kind: JobKind) -> Pipeline:
    return PIPELINES[JobKind(kind)]

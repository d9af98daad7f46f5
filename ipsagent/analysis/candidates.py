"""Put credit spread candidate generation."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from ipsagent.core.logging import get_logger
from ipsagent.services.data_providers.models import OptionChain, OptionContract


logger = get_logger("analysis.candidates")

MAX_EXPIRIES = 3
MAX_SHORT_STRIKES = 50
MAX_SHORT_DELTA = 0.5
MIN_RISK_REWARD = 0.15
DEFAULT_POP = 0.7
LONG_LEG_OFFSET = 2


@dataclass(frozen=True)
class SpreadLeg:
    """One leg of a vertical spread."""

    action: str  # SELL / BUY
    contract: OptionContract

    def to_dict(self) -> dict[str, Any]:
        c = self.contract
        return {
            "type": self.action,
            "right": c.option_type,
            "strike": c.strike,
            "expiry": c.expiry.isoformat(),
            "delta": c.delta,
            "theta": c.theta,
            "vega": c.vega,
            "iv": c.iv,
            "bid": c.bid,
            "ask": c.ask,
            "oi": c.open_interest,
            "volume": c.volume,
        }


@dataclass
class TradeCandidate:
    """A put credit spread with its economics, features and score."""

    symbol: str
    short_leg: SpreadLeg
    long_leg: SpreadLeg
    entry_mid: float
    max_profit: float
    max_loss: float
    breakeven: float
    est_pop: float
    dte: int
    strategy: str = "put_credit_spread"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    features: dict[str, Any] = field(default_factory=dict)
    alignment: Optional[float] = None
    breakdown: dict[str, float] = field(default_factory=dict)
    tier: Optional[str] = None
    sector: Optional[str] = None

    @property
    def expiry(self) -> date:
        return self.short_leg.contract.expiry

    @property
    def width(self) -> float:
        return self.short_leg.contract.strike - self.long_leg.contract.strike

    @property
    def risk_reward(self) -> float:
        return self.max_profit / self.max_loss if self.max_loss > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "strategy": self.strategy,
            "contract_legs": [self.short_leg.to_dict(), self.long_leg.to_dict()],
            "expiry": self.expiry.isoformat(),
            "dte": self.dte,
            "entry_mid": round(self.entry_mid, 4),
            "max_profit": round(self.max_profit, 4),
            "max_loss": round(self.max_loss, 4),
            "breakeven": round(self.breakeven, 4),
            "est_pop": round(self.est_pop, 4),
            "features": self.features,
            "alignment": self.alignment,
            "breakdown": self.breakdown,
            "tier": self.tier,
            "sector": self.sector,
        }


def _tradeable_puts(chain: OptionChain, expiry: date, price: float) -> list[OptionContract]:
    # OTM puts with a two-sided market, highest strike first
    puts = [
        p
        for p in chain.puts(expiry)
        if p.strike and p.bid and p.ask and p.strike < price
    ]
    return sorted(puts, key=lambda p: p.strike, reverse=True)


def _eligible_expiries(
    chain: OptionChain,
    as_of: date,
    min_dte: int | None,
    max_dte: int | None,
) -> list[date]:
    expiries = []
    for expiry in chain.expiries():
        dte = (expiry - as_of).days
        if dte < 0:
            continue
        if min_dte is not None and dte < min_dte:
            continue
        if max_dte is not None and dte > max_dte:
            continue
        if chain.puts(expiry):
            expiries.append(expiry)
    return expiries[:MAX_EXPIRIES]


def generate_put_credit_spreads(
    symbol: str,
    price: float,
    chain: OptionChain,
    *,
    as_of: date,
    min_dte: int | None = None,
    max_dte: int | None = None,
) -> list[TradeCandidate]:
    """Build put credit spreads from the nearest eligible expiries.

    The short leg walks down from the highest OTM strike; the long leg sits two
    strikes lower (or at the lowest strike). Spreads with no credit, no width or
    a reward/risk under 0.15 are skipped.
    """
    if not price or price <= 0:
        return []

    candidates: list[TradeCandidate] = []
    for expiry in _eligible_expiries(chain, as_of, min_dte, max_dte):
        puts = _tradeable_puts(chain, expiry, price)
        if len(puts) < 2:
            continue

        dte = (expiry - as_of).days
        for i in range(min(MAX_SHORT_STRIKES, len(puts) - 1)):
            short_put = puts[i]
            if abs(short_put.delta or 0) > MAX_SHORT_DELTA:
                continue

            idx = i + LONG_LEG_OFFSET
            long_put = puts[idx] if idx < len(puts) else puts[-1]

            width = short_put.strike - long_put.strike
            if width <= 0:
                continue

            entry_mid = short_put.mid - long_put.mid
            if entry_mid <= 0:
                continue

            max_loss = width - entry_mid
            if max_loss <= 0 or entry_mid / max_loss < MIN_RISK_REWARD:
                continue

            est_pop = 1 - abs(short_put.delta) if short_put.delta else DEFAULT_POP
            candidates.append(
                TradeCandidate(
                    symbol=symbol,
                    short_leg=SpreadLeg("SELL", short_put),
                    long_leg=SpreadLeg("BUY", long_put),
                    entry_mid=entry_mid,
                    max_profit=entry_mid,
                    max_loss=max_loss,
                    breakeven=short_put.strike - entry_mid,
                    est_pop=est_pop,
                    dte=dte,
                )
            )

    logger.debug(f"{symbol}: generated {len(candidates)} put credit spread candidates")
    return candidates

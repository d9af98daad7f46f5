"""Chain-derived feature maps for scoring.

All features are computed from a single chain snapshot: IV rank is the short
leg's percentile among every IV in the chain (no IV history is kept), skew
compares mean put and call IV within the expiry, and term slope compares ATM
IV between the nearest and farthest expiries.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from statistics import fmean
from typing import Any, Optional

from ipsagent.services.data_providers.models import OptionChain, OptionContract

from .candidates import TradeCandidate


@dataclass
class ChainFeatures:
    """Symbol-level features shared by every candidate from one chain."""

    ivs: list[float] = field(default_factory=list)
    put_skew: dict[date, Optional[float]] = field(default_factory=dict)
    term_slope: Optional[float] = None


def _ivs(contracts: list[OptionContract]) -> list[float]:
    return [c.iv for c in contracts if c.iv is not None and c.iv > 0]


def _atm_iv(contracts: list[OptionContract], price: float) -> Optional[float]:
    with_iv = [c for c in contracts if c.iv is not None and c.iv > 0]
    if not with_iv:
        return None
    return min(with_iv, key=lambda c: abs(c.strike - price)).iv


def _skew(chain: OptionChain, expiry: date) -> Optional[float]:
    put_ivs = _ivs(chain.puts(expiry))
    call_ivs = _ivs(chain.calls(expiry))
    if not put_ivs or not call_ivs:
        return None
    call_mean = fmean(call_ivs)
    return (fmean(put_ivs) - call_mean) / call_mean


def chain_features(chain: OptionChain, price: float) -> ChainFeatures:
    expiries = chain.expiries()
    result = ChainFeatures(
        ivs=sorted(_ivs(list(chain.contracts))),
        put_skew={expiry: _skew(chain, expiry) for expiry in expiries},
    )

    if len(expiries) >= 2:
        front = _atm_iv([c for c in chain.contracts if c.expiry == expiries[0]], price)
        back = _atm_iv([c for c in chain.contracts if c.expiry == expiries[-1]], price)
        if front and back:
            result.term_slope = (back - front) / front

    return result


def iv_percentile(iv: Optional[float], ivs: list[float]) -> Optional[float]:
    """Fraction of ``ivs`` at or below ``iv``."""
    if iv is None or not ivs:
        return None
    return sum(1 for v in ivs if v <= iv) / len(ivs)


def candidate_features(
    candidate: TradeCandidate,
    chain_level: ChainFeatures,
    *,
    macro_regime: Optional[str] = None,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Feature map for one candidate; explicit overrides win."""
    short = candidate.short_leg.contract
    oi = short.open_interest

    features: dict[str, Any] = {
        "iv_rank": iv_percentile(short.iv, chain_level.ivs),
        "dte_mode": candidate.dte,
        "volume_oi_ratio": (short.volume or 0) / oi if oi else None,
        "put_skew": chain_level.put_skew.get(candidate.expiry),
        "term_slope": chain_level.term_slope,
        "delta": abs(short.delta) if short.delta is not None else None,
        "est_pop": candidate.est_pop,
        "risk_reward": candidate.risk_reward,
        "credit": candidate.entry_mid,
        "macro_regime": macro_regime,
    }
    if overrides:
        features.update(overrides)
    return features

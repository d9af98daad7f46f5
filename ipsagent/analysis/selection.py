"""Tiered candidate selection with per-symbol and per-sector caps."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import Optional

from ipsagent.core.logging import get_logger

from .candidates import TradeCandidate


logger = get_logger("analysis.selection")

# (tier, minimum alignment, max picks), best tier first
TIERS: tuple[tuple[str, float, int], ...] = (
    ("elite", 0.90, 5),
    ("quality", 0.75, 10),
    ("speculative", 0.60, 5),
)
TIER_ORDER = {name: rank for rank, (name, _, _) in enumerate(TIERS)}

MAX_PER_SYMBOL = 2
MAX_PER_SECTOR = 3


def classify_tier(alignment: Optional[float]) -> Optional[str]:
    if alignment is None:
        return None
    for name, minimum, _ in TIERS:
        if alignment >= minimum:
            return name
    return None


def select_tiered(
    candidates: Iterable[TradeCandidate],
    *,
    max_per_symbol: int = MAX_PER_SYMBOL,
    max_per_sector: int = MAX_PER_SECTOR,
) -> list[TradeCandidate]:
    """Pick the best candidates per tier, then apply diversification caps.

    Candidates below the lowest tier are dropped. Output is ordered by tier,
    then by alignment descending.
    """
    ranked: list[TradeCandidate] = []
    for candidate in candidates:
        candidate.tier = classify_tier(candidate.alignment)
        if candidate.tier is not None:
            ranked.append(candidate)

    ranked.sort(key=lambda c: (TIER_ORDER[c.tier], -(c.alignment or 0.0)))

    combined: list[TradeCandidate] = []
    for name, _, limit in TIERS:
        combined.extend([c for c in ranked if c.tier == name][:limit])

    per_symbol: Counter[str] = Counter()
    per_sector: Counter[str] = Counter()
    selected: list[TradeCandidate] = []
    for candidate in combined:
        if per_symbol[candidate.symbol] >= max_per_symbol:
            continue
        if candidate.sector and per_sector[candidate.sector] >= max_per_sector:
            continue
        per_symbol[candidate.symbol] += 1
        if candidate.sector:
            per_sector[candidate.sector] += 1
        selected.append(candidate)

    tiers = Counter(c.tier for c in selected)
    logger.info(
        f"Selected {len(selected)} of {len(ranked)} tiered candidates "
        f"(elite={tiers['elite']}, quality={tiers['quality']}, speculative={tiers['speculative']})"
    )
    return selected

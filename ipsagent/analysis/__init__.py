"""Option trade analysis: candidates, features and selection."""

from .candidates import SpreadLeg, TradeCandidate, generate_put_credit_spreads
from .features import ChainFeatures, candidate_features, chain_features
from .selection import classify_tier, select_tiered


__all__ = [
    "ChainFeatures",
    "SpreadLeg",
    "TradeCandidate",
    "candidate_features",
    "chain_features",
    "classify_tier",
    "generate_put_credit_spreads",
    "select_tiered",
]

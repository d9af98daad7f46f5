"""IPS factor scoring."""

from .normalizers import normalize
from .policy import IPSFactor, IPSPolicy, parse_policy
from .scorer import FeatureMap, ScoreResult, passes_gate, score


__all__ = [
    "FeatureMap",
    "IPSFactor",
    "IPSPolicy",
    "ScoreResult",
    "normalize",
    "parse_policy",
    "passes_gate",
    "score",
]

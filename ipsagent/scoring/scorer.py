"""Weighted IPS alignment scoring.

Each enabled factor contributes ``normalized_value * normalized_weight``.
A factor with both a threshold and a direction is gated on the raw value;
a failed gate halves the normalized value rather than zeroing it. Missing raw
values always fail a gate.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .normalizers import as_number, normalize
from .policy import IPSFactor, IPSPolicy

FeatureMap = Mapping[str, Any]

FAILED_GATE_FACTOR = 0.5


@dataclass(frozen=True)
class ScoreResult:
    """Alignment in [0, 1] and per-factor contributions (4 dp)."""

    alignment: float
    breakdown: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "breakdown", MappingProxyType(dict(self.breakdown)))

    def to_dict(self) -> dict[str, Any]:
        return {"alignment": self.alignment, "breakdown": dict(self.breakdown)}


def passes_gate(factor: IPSFactor, raw: Any) -> bool:
    """Threshold check on the raw value; ungated factors always pass."""
    if not factor.gated:
        return True
    value = as_number(raw)
    if factor.direction == "gte":
        return (value if value is not None else -math.inf) >= factor.threshold
    return (value if value is not None else math.inf) <= factor.threshold


def score(policy: IPSPolicy, features: FeatureMap) -> ScoreResult:
    """Score ``features`` against ``policy``."""
    weights = policy.normalized_weights()
    breakdown: dict[str, float] = {}
    total = 0.0

    for factor in policy.enabled_factors:
        raw = features.get(factor.key)
        x = normalize(factor.key, raw)
        if not passes_gate(factor, raw):
            x *= FAILED_GATE_FACTOR
        contribution = x * weights[factor.key]
        breakdown[factor.key] = round(contribution, 4)
        total += contribution

    return ScoreResult(alignment=round(total, 4), breakdown=breakdown)

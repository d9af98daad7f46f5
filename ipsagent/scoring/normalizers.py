"""Raw feature → [0, 1] mappings, keyed by factor.

Unknown factors and missing or non-numeric values map to the neutral 0.5.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any, Optional

NEUTRAL = 0.5

MACRO_REGIME_SCORES = {
    "easing": 0.7,
    "neutral": 0.5,
    "tightening": 0.3,
}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def as_number(value: Any) -> Optional[float]:
    """Finite float for numeric input, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _identity(x: float) -> float:
    return clamp(x)


def _centered(x: float) -> float:
    # [-1, 1] → [0, 1]
    return clamp(x * 0.5 + 0.5)


def _dte_triangle(dte: float) -> float:
    # Peaks at 10 days, zero at 10 ± 14
    return clamp((14 - abs(dte - 10)) / 14)


NUMERIC_NORMALIZERS: dict[str, Callable[[float], float]] = {
    "iv_rank": _identity,
    "term_slope": _centered,
    "put_skew": _centered,
    "dte_mode": _dte_triangle,
    "volume_oi_ratio": _identity,
}


def normalize(factor_key: str, raw: Any) -> float:
    """Map a raw feature value to [0, 1]."""
    if raw is None:
        return NEUTRAL

    if factor_key == "macro_regime":
        return MACRO_REGIME_SCORES.get(str(raw), NEUTRAL)

    fn = NUMERIC_NORMALIZERS.get(factor_key)
    if fn is None:
        return NEUTRAL
    value = as_number(raw)
    if value is None:
        return NEUTRAL
    return fn(value)

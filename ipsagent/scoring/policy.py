"""IPS (investment policy statement) model.

A policy is a list of weighted factors. Only enabled factors take part in
scoring and their weights are rescaled to sum to 1. A policy with no enabled
factors (or whose enabled weights are all zero) is rejected.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ipsagent.core.exceptions import ValidationError


Direction = Literal["gte", "lte"]


class IPSFactor(BaseModel):
    """One scoring factor, optionally gated by a threshold."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: str = Field(min_length=1, max_length=100)
    weight: float = Field(ge=0)
    threshold: Optional[float] = None
    direction: Optional[Direction] = None
    enabled: bool = True
    display_name: Optional[str] = None

    @property
    def gated(self) -> bool:
        return self.threshold is not None and self.direction is not None


class IPSPolicy(BaseModel):
    """Scoring policy with weights normalized over enabled factors."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = "IPS"
    factors: list[IPSFactor]
    min_dte: Optional[int] = Field(default=None, ge=0)
    max_dte: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_enabled(self) -> IPSPolicy:
        enabled = [f for f in self.factors if f.enabled]
        if not enabled:
            raise ValueError("policy has no enabled factors")
        keys = [f.key for f in enabled]
        if len(set(keys)) != len(keys):
            raise ValueError("enabled factor keys must be unique")
        if sum(f.weight for f in enabled) <= 0:
            raise ValueError("enabled factor weights sum to zero")
        if self.min_dte is not None and self.max_dte is not None and self.min_dte > self.max_dte:
            raise ValueError("min_dte must not exceed max_dte")
        return self

    @property
    def enabled_factors(self) -> list[IPSFactor]:
        return [f for f in self.factors if f.enabled]

    def normalized_weights(self) -> dict[str, float]:
        """Enabled factor key → weight, summing to 1."""
        enabled = self.enabled_factors
        total = sum(f.weight for f in enabled)
        return {f.key: f.weight / total for f in enabled}

    @classmethod
    def from_scaled_weights(
        cls,
        rows: list[dict[str, Any]],
        *,
        name: str = "IPS",
        scale: float = 10.0,
        **extra: Any,
    ) -> IPSPolicy:
        """Build a policy from stored factor rows that use a 1..``scale`` weight scale."""
        factors = [
            {**row, "weight": float(row.get("weight") or 0) / scale}
            for row in rows
        ]
        return parse_policy({"name": name, "factors": factors, **extra})


def parse_policy(data: Any) -> IPSPolicy:
    """Validate raw policy data, raising the application ValidationError."""
    if isinstance(data, IPSPolicy):
        return data
    try:
        return IPSPolicy.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid IPS policy",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

"""Job request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ipsagent.jobs.models import Job, JobKind
from ipsagent.scoring.policy import IPSPolicy


MAX_SYMBOLS = 100

TradingMode = Literal["paper", "live", "backtest"]


def _normalize_symbols(v: Any) -> Any:
    if isinstance(v, str):
        v = v.split(",")
    if isinstance(v, list):
        seen: list[str] = []
        for raw in v:
            symbol = str(raw).upper().strip()
            if symbol and symbol not in seen:
                seen.append(symbol)
        return seen
    return v


# =============================================================================
# Job parameters (stored on the job, re-read by pipelines)
# =============================================================================


class AgentAnalysisParams(BaseModel):
    """Parameters for an agent analysis run."""

    symbols: list[str] = Field(..., min_length=1, max_length=MAX_SYMBOLS)
    policy: IPSPolicy
    mode: TradingMode = "paper"
    macro_regime: str | None = Field(default=None, description="easing, neutral or tightening")
    features: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-symbol feature overrides"
    )
    sectors: dict[str, str] = Field(default_factory=dict, description="Symbol → sector")

    @field_validator("symbols", mode="before")
    @classmethod
    def normalize_symbols(cls, v: Any) -> Any:
        return _normalize_symbols(v)

    @field_validator("features", "sectors", mode="before")
    @classmethod
    def normalize_keys(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k).upper().strip(): val for k, val in v.items()}
        return v


class PositionInput(BaseModel):
    """An open position to refresh."""

    id: str = Field(..., min_length=1, max_length=64)
    symbol: str = Field(..., min_length=1, max_length=20)
    short_strike: float | None = Field(default=None, gt=0)
    long_strike: float | None = Field(default=None, gt=0)
    credit: float | None = Field(default=None, ge=0)
    contracts: int = Field(default=1, ge=1)

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper().strip()
        return v


class DashboardRefreshParams(BaseModel):
    """Parameters for a dashboard refresh run."""

    positions: list[PositionInput] = Field(..., min_length=1)


PARAMS_BY_KIND: dict[JobKind, type[BaseModel]] = {
    JobKind.AGENT_ANALYSIS: AgentAnalysisParams,
    JobKind.DASHBOARD_REFRESH: DashboardRefreshParams,
}


# =============================================================================
# API
# =============================================================================


class JobSubmitRequest(BaseModel):
    """Submit a job. Fields not used by ``kind`` are ignored."""

    kind: JobKind = JobKind.AGENT_ANALYSIS
    symbols: list[str] = Field(default_factory=list)
    policy: dict[str, Any] | None = None
    mode: str = "paper"
    macro_regime: str | None = None
    features: dict[str, dict[str, Any]] = Field(default_factory=dict)
    sectors: dict[str, str] = Field(default_factory=dict)
    positions: list[dict[str, Any]] = Field(default_factory=list)

    def to_params(self) -> dict[str, Any]:
        if self.kind == JobKind.DASHBOARD_REFRESH:
            return {"positions": self.positions}
        return {
            "symbols": self.symbols,
            "policy": self.policy,
            "mode": self.mode,
            "macro_regime": self.macro_regime,
            "features": self.features,
            "sectors": self.sectors,
        }


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str


class JobProgressResponse(BaseModel):
    current_step: str
    total_steps: int
    completed_steps: int
    symbols_processed: int
    total_symbols: int
    candidates_found: int
    message: str


class JobErrorResponse(BaseModel):
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class JobResponse(BaseModel):
    """Job status."""

    id: str
    kind: str
    status: str
    progress: JobProgressResponse
    result: dict[str, Any] | None = None
    error: JobErrorResponse | None = None
    user_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        data = job.to_dict()
        data.pop("params", None)
        return cls.model_validate(data)


class ProcessRequest(BaseModel):
    job_id: str | None = None


class TriggerResponse(BaseModel):
    """Outcome of a manual worker trigger."""

    job_id: str | None = None
    message: str


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool

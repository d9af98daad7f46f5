"""Pydantic schemas for job parameters and API payloads."""

from .common import ErrorResponse, HealthResponse
from .jobs import (
    AgentAnalysisParams,
    DashboardRefreshParams,
    JobResponse,
    JobSubmitRequest,
    JobSubmitResponse,
    PositionInput,
)


__all__ = [
    "AgentAnalysisParams",
    "DashboardRefreshParams",
    "ErrorResponse",
    "HealthResponse",
    "JobResponse",
    "JobSubmitRequest",
    "JobSubmitResponse",
    "PositionInput",
]

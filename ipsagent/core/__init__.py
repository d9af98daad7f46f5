"""Core infrastructure: settings, logging, exceptions, clock."""

from .clock import Clock, system_clock, utc_day_key
from .config import Settings, get_settings, settings
from .exceptions import (
    AppException,
    BudgetExceeded,
    ClaimConflict,
    JobPipelineError,
    NotFoundError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamUnavailable,
    ValidationError,
)


__all__ = [
    "AppException",
    "BudgetExceeded",
    "ClaimConflict",
    "Clock",
    "JobPipelineError",
    "NotFoundError",
    "Settings",
    "UpstreamError",
    "UpstreamRateLimited",
    "UpstreamUnavailable",
    "ValidationError",
    "get_settings",
    "settings",
    "system_clock",
    "utc_day_key",
]

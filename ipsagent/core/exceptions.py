"""Custom exceptions and centralized exception handlers."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 problem+json style response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ValidationError(AppException):
    """Validation failed."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ClaimConflict(AppException):
    """A job could not be claimed because it is no longer pending."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CLAIM_CONFLICT"
    message = "Job is not pending"


class BudgetExceeded(AppException):
    """Daily upstream call budget is spent."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "BUDGET_EXCEEDED"
    message = "Daily market data budget exceeded"


# =============================================================================
# Upstream provider errors (absorbed by the market data gateway)
# =============================================================================


class UpstreamError(AppException):
    """Market data provider call failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "FETCH_FAILED"
    message = "Market data provider call failed"


class UpstreamRateLimited(UpstreamError):
    """Provider reported a rate limit or quota notice."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMIT"
    message = "Market data provider rate limit reached"


class UpstreamUnavailable(UpstreamError):
    """Provider unreachable or returned an unusable response."""

    error_code = "FETCH_FAILED"
    message = "Market data provider unavailable"


# =============================================================================
# Job errors
# =============================================================================


class JobPipelineError(AppException):
    """A pipeline step failed while running a job."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "JOB_PIPELINE_ERROR"
    message = "Job pipeline step failed"

    def __init__(self, step: str, message: str | None = None, **kwargs: Any):
        self.step = step
        super().__init__(message or f"Step '{step}' failed", **kwargs)


def register_exception_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        import logging

        logger = logging.getLogger("ipsagent.error")
        logger.exception(
            "Unhandled exception",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "method": request.method,
            },
        )

        from .config import settings

        if settings.debug:
            message = str(exc)
        else:
            message = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": message,
                "status": 500,
            },
            headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
        )

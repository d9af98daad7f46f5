"""Health check endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from ipsagent.api.dependencies import get_container
from ipsagent.container import Container
from ipsagent.core.logging import get_logger
from ipsagent.schemas.common import HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


async def _dependency_checks(container: Container) -> dict[str, bool]:
    """Only backends that are actually configured are checked."""
    checks: dict[str, bool] = {
        "workers": container.dispatcher.running_workers > 0
        or container.settings.dispatcher_workers == 0,
    }
    if container.settings.job_store_backend == "sql":
        from ipsagent.database.connection import database_healthcheck

        checks["database"] = await database_healthcheck()
    if container.valkey is not None:
        checks["cache"] = await container.valkey.ping()
    return checks


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check(container: Container = Depends(get_container)) -> HealthResponse:
    """
    Perform health check on API and dependencies.

    Returns overall health status and individual service checks.
    """
    checks = await _dependency_checks(container)

    if all(checks.values()):
        health = "healthy"
    elif checks.get("database", True):
        health = "degraded"  # jobs persist, but cache or workers are down
    else:
        health = "unhealthy"

    return HealthResponse(
        status=health,
        version=container.settings.app_version,
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the API is ready to accept traffic.",
)
async def readiness_check(container: Container = Depends(get_container)) -> dict:
    checks = await _dependency_checks(container)
    if not checks.get("database", True):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        )
    return {"status": "ready"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the API process is alive.",
)
async def liveness_check() -> dict:
    return {"status": "alive"}

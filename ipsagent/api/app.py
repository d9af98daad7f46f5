"""API application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from ipsagent.container import Container, build_container
from ipsagent.core.config import settings
from ipsagent.core.exceptions import register_exception_handlers
from ipsagent.core.logging import get_logger, request_id_var, setup_logging
from ipsagent.schemas.common import ErrorResponse

from .routes import health, jobs, market_data


logger = get_logger("api")


def _default_container() -> Container:
    from ipsagent.jobs.dispatch import enqueue_job_run

    return build_container(notifier=enqueue_job_run if settings.celery_notify else None)


def _make_lifespan(container: Optional[Container]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the container, start dispatcher workers, clean up on shutdown."""
        setup_logging()
        app.state.container = container or _default_container()
        if container is None and settings.job_store_backend == "sql" and settings.is_development:
            from ipsagent.database.connection import create_tables

            await create_tables()
        await app.state.container.dispatcher.start(app.state.container.settings.dispatcher_workers)

        yield

        try:
            await app.state.container.aclose()
            if app.state.container.settings.job_store_backend == "sql":
                from ipsagent.database.connection import close_sqlalchemy_engine

                await close_sqlalchemy_engine()
        except Exception as e:
            logger.warning(f"Resource cleanup failed: {e}")

    return lifespan


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request_id_var.set(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests (path only, never query strings)."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()

        response = await call_next(request)

        duration = time.monotonic() - start_time
        path = request.url.path

        logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration:.3f}s)",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": int(duration * 1000),
            },
        )

        return response


def create_api_app(container: Optional[Container] = None) -> FastAPI:
    """Create and configure the API application.

    Tests pass a prebuilt ``container``; otherwise one is built from settings
    when the app starts.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="IPS option trade analysis jobs and guarded market data",
        root_path=settings.root_path,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=_make_lifespan(container),
        responses={
            404: {"model": ErrorResponse, "description": "Not Found"},
            409: {"model": ErrorResponse, "description": "Conflict"},
            422: {"model": ErrorResponse, "description": "Validation Error"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
        },
    )

    # Add middlewares (order matters - first added is outermost)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-ID"],
        expose_headers=[
            "X-Request-ID",
            "X-Budget-Used",
            "X-Budget-Limit",
            "X-Budget-Exceeded",
            "X-RateLimited",
        ],
        max_age=600,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(jobs.router)
    app.include_router(market_data.router)

    return app

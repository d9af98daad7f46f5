"""API dependencies."""

from __future__ import annotations

from fastapi import Depends, Header, Request

from ipsagent.container import Container
from ipsagent.jobs.dispatch import JobDispatcher
from ipsagent.services.market_data import MarketDataGateway


__all__ = [
    "get_container",
    "get_dispatcher",
    "get_gateway",
    "get_user_id",
]


def get_container(request: Request) -> Container:
    """Container built by the app lifespan."""
    return request.app.state.container


def get_dispatcher(container: Container = Depends(get_container)) -> JobDispatcher:
    return container.dispatcher


def get_gateway(container: Container = Depends(get_container)) -> MarketDataGateway:
    return container.gateway


def get_user_id(x_user_id: str | None = Header(default=None, max_length=64)) -> str | None:
    """Caller identity forwarded by the gateway in front of the API (optional)."""
    return x_user_id or None

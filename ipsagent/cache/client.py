"""Valkey connector for the shared daily budget.

The API process and every Celery worker run their own event loop, and a
``redis.asyncio`` client is bound to the loop that opened it. The connector
hands out one client per loop and owns their shutdown.
"""

from __future__ import annotations

import asyncio

from redis.asyncio import Redis

from ipsagent.core.config import Settings
from ipsagent.core.logging import get_logger


logger = get_logger("cache.client")


def _loop_id() -> int:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return 0


class ValkeyConnector:
    """Lazily opens a Valkey client per event loop."""

    def __init__(self, url: str, *, max_connections: int = 10, timeout: float = 5.0):
        self.url = url
        self.max_connections = max_connections
        self.timeout = timeout
        self._clients: dict[int, Redis] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValkeyConnector":
        return cls(settings.valkey_url, max_connections=settings.valkey_max_connections)

    async def client(self) -> Redis:
        loop_id = _loop_id()
        client = self._clients.get(loop_id)
        if client is None:
            client = Redis.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
                socket_timeout=self.timeout,
                socket_connect_timeout=self.timeout,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self._clients[loop_id] = client
            logger.info("Valkey client opened", extra={"loop_id": loop_id})
        return client

    async def ping(self) -> bool:
        """True when Valkey answers within the socket timeout."""
        try:
            client = await self.client()
            result = await asyncio.wait_for(client.ping(), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"Valkey healthcheck failed: {e}")
            return False
        return result is True or result == "PONG"

    async def aclose(self) -> None:
        """Close the client owned by the current loop."""
        client = self._clients.pop(_loop_id(), None)
        if client is not None:
            await client.aclose()
            logger.info("Valkey client closed")

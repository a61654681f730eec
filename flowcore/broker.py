"""Redis connection lifecycle.

``BrokerClients`` owns the connection pool: created on first
``acquire()``, closed by ``aclose()``. The app lifespan holds one instance
and hands the client to the registry and pubsub; nothing else keeps a
module-level connection.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from flowcore.config.schemas.stream import BrokerConfig

if TYPE_CHECKING:
    import redis.asyncio as aioredis

log = logging.getLogger(__name__)


class BrokerUnavailableError(RuntimeError):
    """No broker URL configured."""


class BrokerClients:
    def __init__(self, cfg: BrokerConfig | None = None) -> None:
        self._cfg = cfg or BrokerConfig()
        self._client: "aioredis.Redis | None" = None
        self._lock = asyncio.Lock()

    @property
    def url(self) -> str | None:
        return self._cfg.redis_url or os.getenv("REDIS_URL")

    async def acquire(self) -> "aioredis.Redis":
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is None:
                url = self.url
                if not url:
                    raise BrokerUnavailableError(
                        "broker.redis_url or REDIS_URL is required"
                    )
                import redis.asyncio as aioredis

                self._client = aioredis.Redis.from_url(
                    url,
                    decode_responses=True,
                    socket_timeout=self._cfg.socket_timeout_s,
                )
                log.info("redis client created")
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.info("redis client closed")


__all__ = ["BrokerClients", "BrokerUnavailableError"]

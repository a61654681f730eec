"""Build the registry + pubsub pair selected by ``stream.backend``."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from flowcore.broker import BrokerClients
from flowcore.config.schemas.stream import BrokerConfig, StreamConfig
from flowcore.pubsub import MemoryPubSub, PubSub, RedisPubSub

from .redis_registry import RedisStreamRegistry
from .registry import MemoryStreamRegistry, StreamRegistry

log = logging.getLogger(__name__)


@dataclass
class StreamBackend:
    registry: StreamRegistry
    pubsub: PubSub
    broker: BrokerClients | None = None
    name: str = "memory"

    async def aclose(self) -> None:
        await self.pubsub.aclose()
        await self.registry.aclose()
        if self.broker is not None:
            await self.broker.aclose()


async def create_backend(
    stream_cfg: StreamConfig | None = None,
    broker_cfg: BrokerConfig | None = None,
) -> StreamBackend:
    cfg = stream_cfg or StreamConfig()
    if cfg.backend == "redis":
        broker = BrokerClients(broker_cfg)
        client = await broker.acquire()
        registry = RedisStreamRegistry(
            client,
            key_prefix=cfg.key_prefix,
            retention_s=cfg.retention_seconds,
            max_age_s=cfg.max_stream_age_seconds,
            read_block_ms=cfg.read_block_ms,
        )
        log.info("stream backend=redis")
        return StreamBackend(registry, RedisPubSub(client), broker, "redis")
    registry = MemoryStreamRegistry(
        retention_s=cfg.retention_seconds,
        max_age_s=cfg.max_stream_age_seconds,
    )
    log.info("stream backend=memory")
    return StreamBackend(registry, MemoryPubSub(), None, "memory")


__all__ = ["StreamBackend", "create_backend"]

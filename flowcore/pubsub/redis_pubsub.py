"""Redis-backed PubSub.

Publishing goes through the shared command client. Subscriptions share one
dedicated subscriber connection (a connection in subscribe mode cannot run
other commands); a single listener task fans incoming messages out to the
handlers registered for each channel.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List

from flowcore import metrics

from . import MessageHandler, PubSub, Unsubscribe

if TYPE_CHECKING:
    import redis.asyncio as aioredis

log = logging.getLogger(__name__)


class RedisPubSub(PubSub):
    def __init__(self, client: "aioredis.Redis") -> None:
        self._client = client
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._handlers: Dict[str, List[MessageHandler]] = {}
        self._lock = asyncio.Lock()
        self._listener: asyncio.Task[None] | None = None

    async def publish(self, channel: str, message: str) -> int:
        receivers = await self._client.publish(channel, message)
        metrics.inc("pubsub_published_total", {"backend": "redis"})
        return int(receivers or 0)

    async def subscribe(
        self, channel: str, handler: MessageHandler
    ) -> Unsubscribe:
        async with self._lock:
            handlers = self._handlers.setdefault(channel, [])
            first = not handlers
            handlers.append(handler)
            if first:
                try:
                    await self._pubsub.subscribe(channel)
                except Exception:
                    handlers.remove(handler)
                    if not handlers:
                        self._handlers.pop(channel, None)
                    raise
            if self._listener is None or self._listener.done():
                self._listener = asyncio.create_task(
                    self._listen(), name="redis-pubsub-listener"
                )

        async def _unsub() -> None:
            async with self._lock:
                current = self._handlers.get(channel, [])
                if handler in current:
                    current.remove(handler)
                if not current and channel in self._handlers:
                    self._handlers.pop(channel, None)
                    await self._pubsub.unsubscribe(channel)
        return _unsub

    async def _listen(self) -> None:
        while True:
            if not self._handlers:
                await asyncio.sleep(0.05)
                continue
            try:
                msg = await self._pubsub.get_message(timeout=1.0)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                log.exception("redis pubsub listener failed")
                metrics.inc("pubsub_listener_errors_total")
                await asyncio.sleep(1.0)
                continue
            if not msg or msg.get("type") != "message":
                continue
            channel = msg["channel"]
            data = msg["data"]
            if isinstance(channel, bytes):
                channel = channel.decode("utf-8")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            for h in list(self._handlers.get(channel, ())):
                try:
                    h(data)
                except Exception:  # noqa: BLE001
                    metrics.inc(
                        "pubsub_handler_errors_total", {"backend": "redis"}
                    )

    async def aclose(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._pubsub.aclose()


__all__ = ["RedisPubSub"]

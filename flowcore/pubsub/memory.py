"""Process-local PubSub: handlers are invoked synchronously on publish."""
from __future__ import annotations

from threading import RLock
from typing import Dict, List

from flowcore import metrics

from . import MessageHandler, PubSub, Unsubscribe


class MemoryPubSub(PubSub):
    def __init__(self) -> None:
        self._subs: Dict[str, List[MessageHandler]] = {}
        self._lock = RLock()

    async def publish(self, channel: str, message: str) -> int:
        with self._lock:
            handlers = list(self._subs.get(channel, ()))
        delivered = 0
        for h in handlers:
            try:
                h(message)
                delivered += 1
            except Exception:  # noqa: BLE001
                metrics.inc("pubsub_handler_errors_total", {"backend": "memory"})
        metrics.inc("pubsub_published_total", {"backend": "memory"})
        return delivered

    async def subscribe(
        self, channel: str, handler: MessageHandler
    ) -> Unsubscribe:
        with self._lock:
            self._subs.setdefault(channel, []).append(handler)

        async def _unsub() -> None:
            with self._lock:
                handlers = self._subs.get(channel, [])
                if handler in handlers:
                    handlers.remove(handler)
                if not handlers:
                    self._subs.pop(channel, None)
        return _unsub

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subs.get(channel, ()))


__all__ = ["MemoryPubSub"]

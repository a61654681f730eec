"""Keyed publish/subscribe channels.

Used only to deliver abort signals to whichever process holds the live
generation. ``MemoryPubSub`` is process-local (single-process deployments
and tests); ``RedisPubSub`` broadcasts across processes.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

MessageHandler = Callable[[str], None]
Unsubscribe = Callable[[], Awaitable[None]]


class PubSub(ABC):
    @abstractmethod
    async def publish(self, channel: str, message: str) -> int:
        """Publish *message*; returns the number of receivers reached
        (best effort, may be 0)."""

    @abstractmethod
    async def subscribe(
        self, channel: str, handler: MessageHandler
    ) -> Unsubscribe:
        """Register *handler* for *channel*; returns an async unsubscribe."""

    async def aclose(self) -> None:  # optional hook
        return None


from .memory import MemoryPubSub  # noqa: E402,F401
from .redis_pubsub import RedisPubSub  # noqa: E402,F401

__all__ = [
    "MessageHandler",
    "MemoryPubSub",
    "PubSub",
    "RedisPubSub",
    "Unsubscribe",
]

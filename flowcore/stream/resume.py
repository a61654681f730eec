"""Reattach a client to a chat's in-flight (or just finished) stream."""
from __future__ import annotations

import logging
from typing import AsyncIterator

from flowcore import metrics
from flowcore.events import StreamResumed, emit
from flowcore.store import ChatStore

from .exceptions import ChatNotFound
from .registry import StreamRegistry

log = logging.getLogger(__name__)


class ResumeHandler:
    def __init__(self, store: ChatStore, registry: StreamRegistry) -> None:
        self._store = store
        self._registry = registry

    async def resume(self, chat_id: str) -> AsyncIterator[str] | None:
        """Frames of the chat's active stream from the beginning.

        None means "nothing to resume": no pointer, or a pointer at a stream
        the registry already reclaimed (that pointer is cleared here).
        """
        chat = self._store.find_chat(chat_id)
        if chat is None:
            metrics.inc_resume("not-found")
            raise ChatNotFound(f"chat '{chat_id}' not found")
        stream_id = chat.active_stream_id
        if not stream_id:
            metrics.inc_resume("no-active")
            emit(StreamResumed(chat_id, None, "no-active"))
            return None
        frames = await self._registry.attach(stream_id)
        if frames is None:
            self._store.clear_active_stream(chat_id, expected=stream_id)
            metrics.inc_resume("stale")
            emit(StreamResumed(chat_id, stream_id, "stale"))
            log.info(
                "stale stream pointer cleared chat_id=%s stream_id=%s",
                chat_id,
                stream_id,
            )
            return None
        metrics.inc_resume("attached")
        emit(StreamResumed(chat_id, stream_id, "attached"))
        return frames


__all__ = ["ResumeHandler"]

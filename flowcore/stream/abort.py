"""Abort signalling and the abort request handler.

The signal is the literal ``ABORT`` published on
``{abort_channel_prefix}{chat_id}``. It is fire-and-forget: the handler
never waits for the run to stop, only for the publish (bounded by a
timeout), and always clears the chat's pointer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from flowcore import metrics
from flowcore.events import AbortRequested, emit
from flowcore.pubsub import PubSub, Unsubscribe
from flowcore.store import ChatStore

from .exceptions import BrokerUnavailable, ChatNotFound

log = logging.getLogger(__name__)

ABORT_MESSAGE = "ABORT"
DEFAULT_CHANNEL_PREFIX = "flowdesk:abort:"


def abort_channel(chat_id: str, prefix: str = DEFAULT_CHANNEL_PREFIX) -> str:
    return f"{prefix}{chat_id}"


async def publish_abort_signal(
    pubsub: PubSub, chat_id: str, prefix: str = DEFAULT_CHANNEL_PREFIX
) -> int:
    return await pubsub.publish(abort_channel(chat_id, prefix), ABORT_MESSAGE)


async def subscribe_abort_signal(
    pubsub: PubSub,
    chat_id: str,
    on_abort: Callable[[], None],
    prefix: str = DEFAULT_CHANNEL_PREFIX,
) -> Unsubscribe:
    """Invoke *on_abort* for every ``ABORT`` on the chat's channel."""

    def _handle(message: str) -> None:
        if message == ABORT_MESSAGE:
            on_abort()
        else:
            log.debug("ignoring message on abort channel: %r", message)

    return await pubsub.subscribe(abort_channel(chat_id, prefix), _handle)


@dataclass(slots=True)
class AbortOutcome:
    signalled: bool
    stream_id: str | None = None
    delivered: int = 0


class AbortHandler:
    def __init__(
        self,
        store: ChatStore,
        pubsub: PubSub,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
        publish_timeout_s: float = 2.0,
    ) -> None:
        self._store = store
        self._pubsub = pubsub
        self._prefix = channel_prefix
        self._timeout = publish_timeout_s

    async def abort(self, chat_id: str) -> AbortOutcome:
        """Signal the live run of *chat_id* to stop.

        Returns ``signalled=False`` when nothing is active. Raises
        ChatNotFound for unknown chats and BrokerUnavailable when the
        publish failed (the pointer is cleared in that case too).
        """
        chat = self._store.find_chat(chat_id)
        if chat is None:
            metrics.inc_abort("not-found")
            raise ChatNotFound(f"chat '{chat_id}' not found")
        stream_id = chat.active_stream_id
        if not stream_id:
            metrics.inc_abort("no-active")
            return AbortOutcome(signalled=False)

        failure: Exception | None = None
        delivered = 0
        try:
            delivered = await asyncio.wait_for(
                publish_abort_signal(self._pubsub, chat_id, self._prefix),
                timeout=self._timeout,
            )
        except Exception as e:  # noqa: BLE001
            failure = e
        # cleared even when the publish failed
        self._store.clear_active_stream(chat_id)

        if failure is not None:
            metrics.inc("abort_publish_failures_total")
            metrics.inc_abort("publish-failed")
            log.warning(
                "abort publish failed chat_id=%s stream_id=%s err=%r",
                chat_id,
                stream_id,
                failure,
            )
            raise BrokerUnavailable(
                f"abort signal for chat '{chat_id}' could not be published"
            ) from failure

        metrics.inc_abort("signalled")
        emit(AbortRequested(chat_id, stream_id, delivered > 0))
        log.info(
            "abort signalled chat_id=%s stream_id=%s delivered=%d",
            chat_id,
            stream_id,
            delivered,
        )
        return AbortOutcome(signalled=True, stream_id=stream_id, delivered=delivered)


__all__ = [
    "ABORT_MESSAGE",
    "AbortHandler",
    "AbortOutcome",
    "abort_channel",
    "publish_abort_signal",
    "subscribe_abort_signal",
]

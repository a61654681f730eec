"""Typed stream lifecycle events + any-subscriber bridge.

Events are dataclasses emitted through ``flowcore.eventbus`` (per-name
subscriptions) and to every handler registered with ``on``. A metrics
collector is always registered so counters exist even with no listeners.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from time import time
from typing import Any, Callable, Dict, List, Protocol

from flowcore import metrics as _metrics
from flowcore.eventbus import emit as _emit_bus

EventHandler = Callable[[str, Dict[str, Any]], None]


class SupportsEvent(Protocol):  # pragma: no cover
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        ...


@dataclass(slots=True)
class BaseEvent:
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        data = asdict(self)
        data["ts"] = data.get("ts") or time()
        return data


@dataclass(slots=True)
class GenerationStarted(BaseEvent):
    chat_id: str
    stream_id: str
    message_id: str
    agent_id: str
    history_len: int


@dataclass(slots=True)
class GenerationCompleted(BaseEvent):
    chat_id: str
    stream_id: str
    message_id: str
    finish_reason: str  # stop|length|tool-calls|...
    frames: int
    latency_ms: int
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass(slots=True)
class GenerationCancelled(BaseEvent):
    """Run stopped early (abort signal or shutdown)."""
    chat_id: str
    stream_id: str
    message_id: str
    reason: str  # user_abort|shutdown
    frames: int
    latency_ms: int


@dataclass(slots=True)
class GenerationFailed(BaseEvent):
    chat_id: str
    stream_id: str
    message_id: str
    error_type: str
    message: str | None = None


@dataclass(slots=True)
class StreamResumed(BaseEvent):
    chat_id: str
    stream_id: str | None
    result: str  # attached|no-active|stale


@dataclass(slots=True)
class AbortRequested(BaseEvent):
    chat_id: str
    stream_id: str
    delivered: bool


@dataclass(slots=True)
class CancelLatencyMeasured(BaseEvent):
    """Time from abort signal receipt to run finalisation.

    duration_ms: measured in the process that ran the generation.
    """
    chat_id: str
    stream_id: str
    duration_ms: int


_ANY_SUBS: List[EventHandler] = []


def _metrics_collector(
    name: str, payload: Dict[str, Any]
) -> None:  # noqa: D401
    gen_names = {
        "GenerationStarted",
        "GenerationCompleted",
        "GenerationCancelled",
        "GenerationFailed",
    }
    if name in gen_names:
        _metrics.inc("events_generation", {"type": name[10:].lower()})
    elif name == "CancelLatencyMeasured":
        _metrics.observe("cancel_latency_ms", payload.get("duration_ms", 0))
    elif name == "AbortRequested":
        _metrics.inc(
            "abort_requested_total",
            {"delivered": bool(payload.get("delivered"))},
        )


_ANY_SUBS.append(_metrics_collector)


def emit(ev: BaseEvent | SupportsEvent) -> None:
    name = ev.__class__.__name__
    payload = ev.to_event()
    _emit_bus(name, payload)
    for h in list(_ANY_SUBS):  # copy for isolation
        try:
            h(name, dict(payload))
        except Exception:  # noqa: BLE001
            _metrics.inc("handler_exceptions_total", {"event": name})


def on(handler: EventHandler) -> Callable[[], None]:
    _ANY_SUBS.append(handler)

    def _unsub() -> None:  # noqa: D401
        try:
            _ANY_SUBS.remove(handler)
        except ValueError:
            pass
    return _unsub


def reset_listeners_for_tests() -> None:  # pragma: no cover
    _ANY_SUBS.clear()
    _ANY_SUBS.append(_metrics_collector)


__all__ = [
    "emit",
    "on",
    "BaseEvent",
    "GenerationStarted",
    "GenerationCompleted",
    "GenerationCancelled",
    "GenerationFailed",
    "StreamResumed",
    "AbortRequested",
    "CancelLatencyMeasured",
    "reset_listeners_for_tests",
]

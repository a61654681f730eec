"""Stream session controller: owns one generation run per chat.

``start`` registers a fresh stream record, points the chat at it, wires
the abort subscription and launches the run as an asyncio task that is
independent of any HTTP response. The run pulls agent events, encodes them
as chunks, appends them to the registry and, exactly once at the end,
persists the assembled assistant message and clears the chat pointer.

Ordering guarantees:
    * the pointer is committed before the first frame is appended;
    * on abort, frames already appended are kept and persisted;
    * the pointer is cleared only after the message was persisted, and
      only while it still names this run's stream.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from flowcore import metrics
from flowcore.agent import (
    AgentEvent,
    AgentProvider,
    Finish,
    ReasoningDelta,
    TextDelta,
    ToolCall,
    ToolResult,
    Usage,
)
from flowcore.errors import map_exception
from flowcore.events import (
    CancelLatencyMeasured,
    GenerationCancelled,
    GenerationCompleted,
    GenerationFailed,
    GenerationStarted,
    emit,
)
from flowcore.pubsub import PubSub, Unsubscribe
from flowcore.store import ChatStore, Message
from flowcore.store.models import new_id

from .abort import DEFAULT_CHANNEL_PREFIX, subscribe_abort_signal
from .assembler import MessageAssembler
from .cancellation import CancellationToken
from .codec import encode_chunk, encode_done
from .exceptions import BrokerUnavailable, ChatNotFound, StreamAlreadyActive
from .registry import StreamRegistry

log = logging.getLogger(__name__)

_CANCELLED = object()


@dataclass(slots=True)
class RunOutcome:
    chat_id: str
    stream_id: str
    message_id: str
    finish_reason: str
    frames: int
    message: Message | None = None
    persisted: bool = False
    error_type: str | None = None


FinishHook = Callable[[Message, RunOutcome], Awaitable[None]]


@dataclass
class GenerationRun:
    chat_id: str
    stream_id: str
    message_id: str
    token: CancellationToken
    task: "asyncio.Task[RunOutcome] | None" = None
    started_at: float = field(default_factory=monotonic)

    async def wait(self) -> RunOutcome:
        if self.task is None:
            raise RuntimeError(f"run {self.stream_id} was never started")
        return await asyncio.shield(self.task)

    def cancel(self, reason: str = "user_abort") -> bool:
        """In-process cancellation (same effect as an abort signal)."""
        return self.token.cancel(reason)


class _ChunkWriter:
    """Encodes events as chunks and appends them, tracking open blocks."""

    def __init__(
        self, registry: StreamRegistry, stream_id: str, assembler: MessageAssembler
    ) -> None:
        self._registry = registry
        self._stream_id = stream_id
        self.assembler = assembler
        self._block: tuple[str, str] | None = None  # (kind, id)
        self.frames = 0

    async def emit(self, chunk: dict[str, Any]) -> None:
        await self._registry.append(self._stream_id, encode_chunk(chunk))
        # only chunks that reached the registry shape the stored message
        self.assembler.apply(chunk)
        self.frames += 1
        metrics.inc("stream_frames_total", {"kind": chunk["type"]})

    async def _open(self, kind: str) -> str:
        if self._block is not None and self._block[0] == kind:
            return self._block[1]
        await self.close_block()
        block_id = uuid.uuid4().hex[:16]
        await self.emit({"type": f"{kind}-start", "id": block_id})
        self._block = (kind, block_id)
        return block_id

    async def close_block(self) -> None:
        if self._block is None:
            return
        kind, block_id = self._block
        self._block = None
        await self.emit({"type": f"{kind}-end", "id": block_id})

    async def event(self, ev: AgentEvent) -> None:
        if isinstance(ev, TextDelta):
            block_id = await self._open("text")
            await self.emit({"type": "text-delta", "id": block_id, "delta": ev.delta})
        elif isinstance(ev, ReasoningDelta):
            block_id = await self._open("reasoning")
            await self.emit(
                {"type": "reasoning-delta", "id": block_id, "delta": ev.delta}
            )
        elif isinstance(ev, ToolCall):
            await self.close_block()
            await self.emit(
                {
                    "type": "tool-input-available",
                    "toolCallId": ev.tool_call_id,
                    "toolName": ev.tool_name,
                    "input": ev.input,
                }
            )
        elif isinstance(ev, ToolResult):
            await self.close_block()
            await self.emit(
                {
                    "type": "tool-output-available",
                    "toolCallId": ev.tool_call_id,
                    "output": ev.output,
                }
            )
        else:
            log.warning("unsupported agent event %r", ev)


@dataclass
class _RunState:
    run: GenerationRun
    messages: Sequence[dict[str, Any]]
    source: AgentProvider
    unsubscribe: Unsubscribe
    on_finish: FinishHook | None
    finalized: bool = False
    outcome: RunOutcome | None = None


class StreamSessionController:
    def __init__(
        self,
        store: ChatStore,
        registry: StreamRegistry,
        pubsub: PubSub,
        abort_channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
    ) -> None:
        self._store = store
        self._registry = registry
        self._pubsub = pubsub
        self._prefix = abort_channel_prefix
        self._runs: dict[str, GenerationRun] = {}

    # ------------------------------------------------------------------ API

    async def start(
        self,
        chat_id: str,
        messages: Sequence[dict[str, Any]],
        source: AgentProvider,
        message_id: str | None = None,
        on_finish: FinishHook | None = None,
    ) -> GenerationRun:
        """Begin a run for *chat_id*; returns once frames can be read.

        Raises ChatNotFound, StreamAlreadyActive when a live stream is
        registered for the chat, BrokerUnavailable when the abort
        subscription cannot be established.
        """
        chat = self._store.find_chat(chat_id)
        if chat is None:
            raise ChatNotFound(f"chat '{chat_id}' not found")
        current = chat.active_stream_id
        if current:
            if await self._registry.exists(current):
                raise StreamAlreadyActive(
                    f"chat '{chat_id}' already streams '{current}'"
                )
            self._store.clear_active_stream(chat_id, expected=current)
            log.info(
                "stale stream pointer cleared chat_id=%s stream_id=%s",
                chat_id,
                current,
            )

        stream_id = new_id()
        message_id = message_id or new_id()
        await self._registry.open(stream_id)
        self._store.set_active_stream(chat_id, stream_id)

        token = CancellationToken()
        run = GenerationRun(chat_id, stream_id, message_id, token)
        try:
            unsubscribe = await subscribe_abort_signal(
                self._pubsub,
                chat_id,
                lambda: self._on_abort_signal(run),
                prefix=self._prefix,
            )
        except Exception as e:  # noqa: BLE001
            self._store.clear_active_stream(chat_id, expected=stream_id)
            await self._registry.close(stream_id)
            raise BrokerUnavailable(
                f"abort subscription for chat '{chat_id}' failed"
            ) from e

        state = _RunState(run, messages, source, unsubscribe, on_finish)
        run.task = asyncio.create_task(
            self._drive(state), name=f"generation-{stream_id}"
        )
        self._runs[stream_id] = run
        run.task.add_done_callback(lambda _t: self._runs.pop(stream_id, None))

        metrics.inc("stream_started_total")
        emit(
            GenerationStarted(
                chat_id, stream_id, message_id, source.info().id, len(messages)
            )
        )
        log.info(
            "generation started chat_id=%s stream_id=%s message_id=%s",
            chat_id,
            stream_id,
            message_id,
        )
        return run

    async def run(
        self,
        chat_id: str,
        messages: Sequence[dict[str, Any]],
        source: AgentProvider,
        message_id: str | None = None,
        on_finish: FinishHook | None = None,
    ) -> RunOutcome:
        started = await self.start(chat_id, messages, source, message_id, on_finish)
        return await started.wait()

    def active_runs(self) -> list[GenerationRun]:
        return list(self._runs.values())

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel in-flight runs; each still finalises with reason abort."""
        runs = self.active_runs()
        if not runs:
            return
        log.info("cancelling %d in-flight generation(s)", len(runs))
        for run in runs:
            run.token.cancel("shutdown")
        tasks = [r.task for r in runs if r.task is not None]
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

    # ------------------------------------------------------------ internals

    def _on_abort_signal(self, run: GenerationRun) -> None:
        if run.token.cancel("user_abort"):
            log.info(
                "abort signal received chat_id=%s stream_id=%s",
                run.chat_id,
                run.stream_id,
            )

    async def _next_event(
        self, events: AsyncIterator[AgentEvent], token: CancellationToken
    ) -> Any:
        next_task = asyncio.ensure_future(events.__anext__())
        wait_task = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {next_task, wait_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            next_task.cancel()
            await asyncio.wait({next_task})
            raise
        finally:
            wait_task.cancel()
        if token.cancelled:
            if not next_task.done():
                next_task.cancel()
            await asyncio.wait({next_task})
            if not next_task.cancelled():
                next_task.exception()  # retrieved; the event is discarded
            return _CANCELLED
        return next_task.result()

    async def _drive(self, state: _RunState) -> RunOutcome:
        run = state.run
        assembler = MessageAssembler(run.message_id)
        writer = _ChunkWriter(self._registry, run.stream_id, assembler)
        finish_reason = "unknown"
        usage = Usage()
        error: BaseException | None = None
        events = state.source.stream(state.messages)
        try:
            await writer.emit({"type": "start", "messageId": run.message_id})
            while True:
                ev = await self._next_event(events, run.token)
                if ev is _CANCELLED:
                    break
                if isinstance(ev, Finish):
                    finish_reason = ev.reason
                    usage = ev.usage
                    break
                await writer.event(ev)
        except StopAsyncIteration:
            log.warning(
                "agent ended without finish stream_id=%s", run.stream_id
            )
        except asyncio.CancelledError:
            run.token.cancel("shutdown")
            await self._finalize(state, writer, "abort", usage, None)
            raise
        except Exception as e:  # noqa: BLE001
            error = e
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except RuntimeError:
                    log.debug("agent stream still running at close")

        if run.token.cancelled:
            finish_reason = "abort"
        elif error is not None:
            finish_reason = "error"
        return await self._finalize(state, writer, finish_reason, usage, error)

    async def _finalize(
        self,
        state: _RunState,
        writer: _ChunkWriter,
        finish_reason: str,
        usage: Usage,
        error: BaseException | None,
    ) -> RunOutcome:
        if state.finalized:
            if state.outcome is None:
                raise RuntimeError(
                    f"run {state.run.stream_id} finalised without an outcome"
                )
            return state.outcome
        state.finalized = True
        run = state.run
        error_type = map_exception(error, "generation") if error else None

        try:
            try:
                await state.unsubscribe()
            except Exception:  # noqa: BLE001
                log.exception("abort unsubscribe failed chat_id=%s", run.chat_id)

            try:
                await writer.close_block()
                if finish_reason == "abort":
                    await writer.emit({"type": "abort"})
                elif error is not None:
                    await writer.emit(
                        {"type": "error", "errorText": str(error) or error_type}
                    )
                await writer.emit(
                    {
                        "type": "finish",
                        "finishReason": finish_reason,
                        "usage": usage.to_dict(),
                    }
                )
                await self._registry.append(run.stream_id, encode_done())
            except Exception:  # noqa: BLE001
                log.exception(
                    "terminal frames not appended stream_id=%s", run.stream_id
                )
            finally:
                try:
                    await self._registry.close(run.stream_id)
                except Exception:  # noqa: BLE001
                    log.exception("stream close failed stream_id=%s", run.stream_id)
        finally:
            # also reached when the task is cancelled mid-finalise
            state.outcome = self._persist(
                run, writer, finish_reason, usage, error_type
            )
        outcome = state.outcome

        self._report(run, outcome, usage, error)
        if state.on_finish is not None:
            try:
                await state.on_finish(outcome.message, outcome)
            except Exception:  # noqa: BLE001
                metrics.inc("finish_hook_failures_total")
                log.exception("finish hook failed chat_id=%s", run.chat_id)
        return outcome

    def _persist(
        self,
        run: GenerationRun,
        writer: _ChunkWriter,
        finish_reason: str,
        usage: Usage,
        error_type: str | None,
    ) -> RunOutcome:
        message = Message(
            id=run.message_id,
            chat_id=run.chat_id,
            role="assistant",
            parts=[dict(p) for p in writer.assembler.parts],
            usage=usage.to_dict(),
            finish_reason=finish_reason,
        )
        outcome = RunOutcome(
            chat_id=run.chat_id,
            stream_id=run.stream_id,
            message_id=run.message_id,
            finish_reason=finish_reason,
            frames=writer.frames,
            message=message,
            error_type=error_type,
        )
        try:
            outcome.persisted = self._store.insert_message(message)
            if outcome.persisted:
                self._store.record_run(run.chat_id, usage, finish_reason)
        except Exception:  # noqa: BLE001
            outcome.error_type = outcome.error_type or "storage-error"
            log.exception("message persist failed message_id=%s", run.message_id)
        finally:
            self._store.clear_active_stream(run.chat_id, expected=run.stream_id)
        return outcome

    def _report(
        self,
        run: GenerationRun,
        outcome: RunOutcome,
        usage: Usage,
        error: BaseException | None,
    ) -> None:
        latency_ms = int((monotonic() - run.started_at) * 1000)
        metrics.inc_stream_finished(outcome.finish_reason)
        if outcome.finish_reason == "abort":
            emit(
                GenerationCancelled(
                    run.chat_id,
                    run.stream_id,
                    run.message_id,
                    run.token.reason or "user_abort",
                    outcome.frames,
                    latency_ms,
                )
            )
            if run.token.cancelled_at is not None:
                emit(
                    CancelLatencyMeasured(
                        run.chat_id,
                        run.stream_id,
                        int((monotonic() - run.token.cancelled_at) * 1000),
                    )
                )
        elif error is not None:
            emit(
                GenerationFailed(
                    run.chat_id,
                    run.stream_id,
                    run.message_id,
                    outcome.error_type or "generation-error",
                    str(error) or None,
                )
            )
        else:
            emit(
                GenerationCompleted(
                    run.chat_id,
                    run.stream_id,
                    run.message_id,
                    outcome.finish_reason,
                    outcome.frames,
                    latency_ms,
                    usage.prompt_tokens,
                    usage.completion_tokens,
                )
            )
        log.info(
            "generation finished chat_id=%s stream_id=%s reason=%s frames=%d",
            run.chat_id,
            run.stream_id,
            outcome.finish_reason,
            outcome.frames,
        )


__all__ = [
    "FinishHook",
    "GenerationRun",
    "RunOutcome",
    "StreamSessionController",
]

import asyncio

import pytest

from flowcore import metrics
from flowcore.agent import (
    AgentInfo,
    AgentProvider,
    Finish,
    MockAgentProvider,
    MockStep,
    ReasoningDelta,
    TextDelta,
    ToolCall,
    ToolResult,
    Usage,
)
from flowcore.events import on
from flowcore.pubsub import MemoryPubSub
from flowcore.store import MemoryChatStore
from flowcore.stream import (
    ChatNotFound,
    MemoryStreamRegistry,
    StreamAlreadyActive,
    StreamSessionController,
    abort_channel,
    decode_frames,
)


class _FuncProvider(AgentProvider):
    def __init__(self, fn):
        self._fn = fn

    def stream(self, messages):
        return self._fn(messages)

    def info(self):
        return AgentInfo(id="test", kind="test")


def _env():
    store = MemoryChatStore()
    project = store.create_project("P")
    chat = store.create_chat("Session 1", project_id=project.id)
    registry = MemoryStreamRegistry()
    pubsub = MemoryPubSub()
    controller = StreamSessionController(store, registry, pubsub)
    return store, chat, registry, pubsub, controller


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _history():
    return [{"role": "user", "parts": [{"type": "text", "text": "hi"}]}]


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_run_streams_and_persists_hello():  # noqa: D401
    store, chat, registry, _ps, controller = _env()

    async def gen(_messages):
        yield TextDelta("Hel")
        yield TextDelta("lo")
        yield Finish("stop", Usage(10, 2))

    outcome = await controller.run(chat.id, _history(), _FuncProvider(gen))
    assert outcome.finish_reason == "stop"
    assert outcome.persisted

    chunks = decode_frames(registry.frames(outcome.stream_id))
    assert [c["type"] for c in chunks] == [
        "start",
        "text-start",
        "text-delta",
        "text-delta",
        "text-end",
        "finish",
    ]
    assert chunks[-1]["usage"]["totalTokens"] == 12

    messages = store.list_messages(chat.id)
    assert len(messages) == 1
    assert messages[0].id == outcome.message_id
    assert messages[0].text == "Hello"
    assert messages[0].finish_reason == "stop"

    refreshed = store.find_chat(chat.id)
    assert refreshed.active_stream_id is None
    assert refreshed.total_tokens == 12
    assert refreshed.finish_reason == "stop"


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_pointer_set_before_first_frame_and_record_readable():  # noqa: D401
    store, chat, registry, _ps, controller = _env()
    gate = asyncio.Event()

    async def gen(_messages):
        await gate.wait()
        yield TextDelta("x")
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    assert store.find_chat(chat.id).active_stream_id == run.stream_id
    assert await registry.exists(run.stream_id)
    reader = await registry.attach(run.stream_id)
    gate.set()
    frames = [f async for f in reader]
    assert decode_frames(frames)[-1]["type"] == "finish"
    await run.wait()


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_abort_after_first_frame_keeps_partial_text():  # noqa: D401
    store, chat, registry, pubsub, controller = _env()
    never = asyncio.Event()
    latencies = []
    on(lambda name, p: latencies.append(p) if name == "CancelLatencyMeasured" else None)

    async def gen(_messages):
        yield TextDelta("Hel")
        await never.wait()
        yield TextDelta("lo")
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    await _wait_for(
        lambda: any('"Hel"' in f for f in registry.frames(run.stream_id))
    )
    assert await pubsub.publish(abort_channel(chat.id), "ABORT") == 1
    outcome = await run.wait()

    assert outcome.finish_reason == "abort"
    chunks = decode_frames(registry.frames(run.stream_id))
    types = [c["type"] for c in chunks]
    assert types[-2:] == ["abort", "finish"]
    assert chunks[-1]["finishReason"] == "abort"
    assert registry.frames(run.stream_id)[-1] == "data: [DONE]\n\n"

    messages = store.list_messages(chat.id)
    assert [m.text for m in messages] == ["Hel"]
    assert messages[0].finish_reason == "abort"
    assert store.find_chat(chat.id).active_stream_id is None
    assert pubsub.subscriber_count(abort_channel(chat.id)) == 0
    assert metrics.counter_value(
        "stream_finished_total", {"reason": "abort"}
    ) == 1
    assert len(latencies) == 1


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_source_failure_emits_error_and_persists_partial():  # noqa: D401
    store, chat, registry, _ps, controller = _env()

    async def gen(_messages):
        yield TextDelta("part")
        raise RuntimeError("model crashed")

    outcome = await controller.run(chat.id, _history(), _FuncProvider(gen))
    assert outcome.finish_reason == "error"
    assert outcome.error_type == "generation-error"
    chunks = decode_frames(registry.frames(outcome.stream_id))
    error = [c for c in chunks if c["type"] == "error"]
    assert error and error[0]["errorText"] == "model crashed"
    assert chunks[-1]["finishReason"] == "error"
    assert store.list_messages(chat.id)[0].text == "part"
    assert store.find_chat(chat.id).active_stream_id is None


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_source_ending_without_finish_is_terminal():  # noqa: D401
    store, chat, registry, _ps, controller = _env()

    async def gen(_messages):
        yield TextDelta("only")

    outcome = await controller.run(chat.id, _history(), _FuncProvider(gen))
    assert outcome.finish_reason == "unknown"
    assert store.list_messages(chat.id)[0].text == "only"


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_reasoning_and_tool_parts_assembled():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()

    async def gen(_messages):
        yield ReasoningDelta("think")
        yield TextDelta("Using tool")
        yield ToolCall("c1", "search", {"q": "x"})
        yield ToolResult("c1", "search", {"hits": 1})
        yield Finish("tool-calls")

    outcome = await controller.run(chat.id, _history(), _FuncProvider(gen))
    parts = store.list_messages(chat.id)[0].parts
    assert [p["type"] for p in parts] == ["reasoning", "text", "tool-search"]
    assert parts[0]["text"] == "think"
    assert parts[2]["state"] == "output-available"
    assert parts[2]["output"] == {"hits": 1}
    assert outcome.finish_reason == "tool-calls"


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_finalize_runs_once_even_when_awaited_twice():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()
    provider = MockAgentProvider(
        [MockStep("Hello World", Usage(1, 1))], chunk_delay_s=0
    )
    run = await controller.start(chat.id, _history(), provider)
    first = await run.wait()
    second = await run.wait()
    assert first is second
    assert len(store.list_messages(chat.id)) == 1
    assert store.find_chat(chat.id).total_tokens == 2


@pytest.mark.asyncio
async def test_start_rejects_second_live_stream():  # noqa: D401
    _store, chat, _reg, _ps, controller = _env()
    never = asyncio.Event()

    async def gen(_messages):
        await never.wait()
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    with pytest.raises(StreamAlreadyActive):
        await controller.start(chat.id, _history(), _FuncProvider(gen))
    run.cancel()
    outcome = await run.wait()
    assert outcome.finish_reason == "abort"


@pytest.mark.asyncio
async def test_start_heals_stale_pointer():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()
    store.set_active_stream(chat.id, "reclaimed-stream")
    provider = MockAgentProvider([MockStep("ok")], chunk_delay_s=0)
    outcome = await controller.run(chat.id, _history(), provider)
    assert outcome.finish_reason == "stop"
    assert store.find_chat(chat.id).active_stream_id is None


@pytest.mark.asyncio
async def test_start_unknown_chat():  # noqa: D401
    _store, _chat, _reg, _ps, controller = _env()
    provider = MockAgentProvider([MockStep("ok")], chunk_delay_s=0)
    with pytest.raises(ChatNotFound):
        await controller.start("nope", _history(), provider)


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_pointer_not_cleared_when_it_moved_on():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()
    gate = asyncio.Event()

    async def gen(_messages):
        await gate.wait()
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    store.set_active_stream(chat.id, "newer-stream")
    gate.set()
    await run.wait()
    assert store.find_chat(chat.id).active_stream_id == "newer-stream"


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_finish_hook_runs_after_persist_and_failures_are_contained():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()
    seen = []

    async def hook(message, outcome):
        seen.append((message.text, len(store.list_messages(chat.id))))
        raise RuntimeError("hook failed")

    provider = MockAgentProvider([MockStep("done now")], chunk_delay_s=0)
    outcome = await controller.run(
        chat.id, _history(), provider, on_finish=hook
    )
    assert outcome.finish_reason == "stop"
    assert seen == [("done now", 1)]
    assert store.find_chat(chat.id).active_stream_id is None
    assert metrics.counter_value("finish_hook_failures_total") == 1


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_shutdown_finalises_in_flight_runs():  # noqa: D401
    store, chat, _reg, _ps, controller = _env()
    never = asyncio.Event()

    async def gen(_messages):
        yield TextDelta("partial")
        await never.wait()
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    await _wait_for(lambda: len(controller.active_runs()) == 1)
    await asyncio.sleep(0.01)
    await controller.shutdown(timeout=1.0)
    outcome = await run.wait()
    assert outcome.finish_reason == "abort"
    assert controller.active_runs() == []
    assert store.list_messages(chat.id)[0].text == "partial"
    assert store.find_chat(chat.id).active_stream_id is None


class _SlowUnsubscribePubSub(MemoryPubSub):
    async def subscribe(self, channel, handler):
        inner = await super().subscribe(channel, handler)

        async def _slow():
            await asyncio.sleep(1.0)
            await inner()
        return _slow


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_hard_cancel_during_finalise_still_persists_and_clears_pointer():  # noqa: D401
    store = MemoryChatStore()
    project = store.create_project("P")
    chat = store.create_chat("Session 1", project_id=project.id)
    controller = StreamSessionController(
        store, MemoryStreamRegistry(), _SlowUnsubscribePubSub()
    )
    never = asyncio.Event()

    async def gen(_messages):
        yield TextDelta("Hel")
        await never.wait()
        yield Finish()

    run = await controller.start(chat.id, _history(), _FuncProvider(gen))
    await asyncio.sleep(0.02)
    await controller.shutdown(timeout=0.1)

    assert run.task.done()
    assert store.find_chat(chat.id).active_stream_id is None
    messages = store.list_messages(chat.id)
    assert len(messages) == 1
    assert messages[0].text == "Hel"
    assert messages[0].finish_reason == "abort"


@pytest.mark.asyncio
async def test_wait_on_unstarted_run_raises():  # noqa: D401
    from flowcore.stream import CancellationToken, GenerationRun

    run = GenerationRun("c", "s", "m", CancellationToken())
    with pytest.raises(RuntimeError):
        await run.wait()

import asyncio

import pytest

from flowcore import metrics
from flowcore.agent import MockAgentProvider, MockStep
from flowcore.pubsub import MemoryPubSub
from flowcore.store import MemoryChatStore
from flowcore.stream import (
    ChatNotFound,
    MemoryStreamRegistry,
    ResumeHandler,
    StreamSessionController,
    decode_frames,
)


def _env(**registry_kwargs):
    store = MemoryChatStore()
    project = store.create_project("P")
    chat = store.create_chat("Session 1", project_id=project.id)
    registry = MemoryStreamRegistry(**registry_kwargs)
    return store, chat, registry, ResumeHandler(store, registry)


@pytest.mark.asyncio
async def test_resume_unknown_chat():  # noqa: D401
    _store, _chat, _reg, handler = _env()
    with pytest.raises(ChatNotFound):
        await handler.resume("missing")
    assert metrics.counter_value("stream_resume_total", {"result": "not-found"}) == 1


@pytest.mark.asyncio
async def test_resume_without_active_stream_returns_none():  # noqa: D401
    _store, chat, _reg, handler = _env()
    assert await handler.resume(chat.id) is None
    assert metrics.counter_value("stream_resume_total", {"result": "no-active"}) == 1


@pytest.mark.asyncio
async def test_resume_stale_pointer_is_cleared():  # noqa: D401
    store, chat, _reg, handler = _env()
    store.set_active_stream(chat.id, "gone")
    assert await handler.resume(chat.id) is None
    assert store.find_chat(chat.id).active_stream_id is None
    assert metrics.counter_value("stream_resume_total", {"result": "stale"}) == 1


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_resume_mid_stream_replays_from_start():  # noqa: D401
    store, chat, registry, handler = _env()
    controller = StreamSessionController(store, registry, MemoryPubSub())
    provider = MockAgentProvider(
        [MockStep("one two three four")], chunk_delay_s=0.02
    )
    run = await controller.start(chat.id, [], provider)
    await asyncio.sleep(0.03)  # a few frames in

    frames = await handler.resume(chat.id)
    assert frames is not None
    replay = [f async for f in frames]
    await run.wait()

    chunks = decode_frames(replay)
    assert chunks[0] == {"type": "start", "messageId": run.message_id}
    text = "".join(c["delta"] for c in chunks if c["type"] == "text-delta")
    assert text == "one two three four"
    assert replay == registry.frames(run.stream_id)

import httpx
import pytest

from flowcore.stream import encode_chunk, encode_done
from flowdesk.client import FlowdeskClient, chunks_text


def _sse_body():
    return (
        encode_chunk({"type": "start", "messageId": "m1"})
        + encode_chunk({"type": "text-delta", "id": "t", "delta": "Hel"})
        + encode_chunk({"type": "text-delta", "id": "t", "delta": "lo"})
        + encode_done()
    ).encode("utf-8")


def _handler(request: httpx.Request) -> httpx.Response:
    if request.method == "POST" and request.url.path == "/api/agent":
        return httpx.Response(
            200,
            content=_sse_body(),
            headers={
                "content-type": "text/event-stream",
                "x-chat-id": "c1",
                "x-stream-id": "s1",
            },
        )
    if request.url.path == "/api/agent/idle/stream":
        return httpx.Response(204)
    if request.method == "DELETE":
        return httpx.Response(200, json={"success": True})
    if request.url.path == "/api/chats/c1/messages":
        return httpx.Response(200, json={"chatId": "c1", "messages": [{"id": "m1"}]})
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_client_send_decodes_chunks_and_headers():  # noqa: D401
    async with FlowdeskClient(transport=httpx.MockTransport(_handler)) as client:
        chunks = [c async for c in client.send({"type": "project"})]
        assert chunks_text(chunks) == "Hello"
        assert client.last_chat_id == "c1"
        assert client.last_stream_id == "s1"


@pytest.mark.asyncio
async def test_client_resume_idle_and_abort():  # noqa: D401
    async with FlowdeskClient(transport=httpx.MockTransport(_handler)) as client:
        assert [c async for c in client.resume("idle")] == []
        assert await client.abort("c1") is True
        assert await client.messages("c1") == [{"id": "m1"}]

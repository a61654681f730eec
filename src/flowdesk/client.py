"""Async HTTP client for the flowdesk streaming API.

Responses are decoded incrementally with ``FrameDecoder`` so chunks are
yielded as soon as their SSE record is complete.
"""
from __future__ import annotations

from typing import Any, AsyncIterator

import httpx

from flowcore.stream import FrameDecoder


class FlowdeskClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )
        self.last_chat_id: str | None = None
        self.last_stream_id: str | None = None

    async def __aenter__(self) -> "FlowdeskClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _chunks(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        decoder = FrameDecoder()
        async for piece in response.aiter_bytes():
            for chunk in decoder.feed(piece):
                yield chunk
            if decoder.done:
                return

    async def send(self, payload: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """POST /api/agent and yield the response chunks."""
        async with self._http.stream("POST", "/api/agent", json=payload) as resp:
            resp.raise_for_status()
            self.last_chat_id = resp.headers.get("x-chat-id")
            self.last_stream_id = resp.headers.get("x-stream-id")
            async for chunk in self._chunks(resp):
                yield chunk

    async def resume(self, chat_id: str) -> AsyncIterator[dict[str, Any]]:
        """Replay the chat's active stream; yields nothing when idle (204)."""
        async with self._http.stream("GET", f"/api/agent/{chat_id}/stream") as resp:
            if resp.status_code == 204:
                return
            resp.raise_for_status()
            async for chunk in self._chunks(resp):
                yield chunk

    async def abort(self, chat_id: str) -> bool:
        """True when a live stream was signalled, False when idle."""
        resp = await self._http.delete(f"/api/agent/{chat_id}/stream")
        if resp.status_code == 204:
            return False
        resp.raise_for_status()
        return True

    async def messages(self, chat_id: str) -> list[dict[str, Any]]:
        resp = await self._http.get(f"/api/chats/{chat_id}/messages")
        resp.raise_for_status()
        return resp.json()["messages"]


def chunks_text(chunks: list[dict[str, Any]]) -> str:
    return "".join(c.get("delta", "") for c in chunks if c.get("type") == "text-delta")


__all__ = ["FlowdeskClient", "chunks_text"]

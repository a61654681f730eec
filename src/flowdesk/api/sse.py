"""SSE response helpers."""
from __future__ import annotations

from typing import AsyncGenerator, AsyncIterator

from fastapi.responses import StreamingResponse

from flowcore.stream import STREAM_HEADERS


async def wrap_frames(
    frames: AsyncIterator[str],
) -> AsyncGenerator[bytes, None]:
    async for frame in frames:
        yield frame.encode("utf-8")


def event_stream_response(
    frames: AsyncIterator[str], headers: dict[str, str] | None = None
) -> StreamingResponse:
    """Stream already-encoded frames.

    Disconnecting the client only stops this reader; the generation run
    keeps appending to the registry.
    """
    merged = dict(STREAM_HEADERS)
    if headers:
        merged.update(headers)
    return StreamingResponse(
        wrap_frames(frames),
        media_type=STREAM_HEADERS["content-type"],
        headers=merged,
    )

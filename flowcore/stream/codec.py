"""Chunk framing: SSE records carrying one JSON chunk each.

Encoding::

    data: {"type":"text-delta","id":"t1","delta":"Hel"}\n\n
    ...
    data: [DONE]\n\n

Decoding reassembles records split across network reads. Only complete
records (terminated by a blank line) are emitted; ``[DONE]`` ends the
stream even if the transport keeps going.
"""
from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator, Iterable

DONE_MARKER = "[DONE]"

STREAM_HEADERS = {
    "content-type": "text/event-stream",
    "cache-control": "no-cache",
    "connection": "keep-alive",
    "x-accel-buffering": "no",
}


def format_event(event: str | None, data: str) -> str:
    lines = []
    if event:
        lines.append(f"event: {event}")
    # one data: line per payload line
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def encode_chunk(chunk: dict[str, Any]) -> str:
    if "type" not in chunk:
        raise ValueError("chunk requires a 'type'")
    return format_event(
        None, json.dumps(chunk, separators=(",", ":"), ensure_ascii=False)
    )


def encode_done() -> str:
    return format_event(None, DONE_MARKER)


def is_done_frame(frame: str) -> bool:
    return frame == encode_done()


class FrameDecoder:
    """Incremental SSE decoder.

    ``feed`` accepts bytes or text in arbitrary pieces and returns the
    chunks completed by that piece. After the terminal record ``done`` is
    True and further input is ignored. Data lines that are not valid JSON
    are skipped (counted in ``skipped``).
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._data: list[str] = []
        self.done = False
        self.skipped = 0

    def feed(self, piece: bytes | str) -> list[dict[str, Any]]:
        if self.done:
            return []
        if isinstance(piece, bytes):
            piece = self._utf8.decode(piece)
        self._buffer += piece
        out: list[dict[str, Any]] = []
        *lines, self._buffer = self._buffer.split("\n")
        for raw in lines:
            line = raw[:-1] if raw.endswith("\r") else raw
            if line == "":
                chunk = self._dispatch()
                if self.done:
                    break
                if chunk is not None:
                    out.append(chunk)
                continue
            if line.startswith(":"):
                continue  # comment / keep-alive
            field, _, value = line.partition(":")
            if field != "data":
                continue  # event:, id:, retry: carry nothing we use
            self._data.append(value[1:] if value.startswith(" ") else value)
        if self.done:
            self._buffer = ""
        return out

    def _dispatch(self) -> dict[str, Any] | None:
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data = []
        if data == DONE_MARKER:
            self.done = True
            return None
        try:
            chunk = json.loads(data)
        except ValueError:
            self.skipped += 1
            return None
        if not isinstance(chunk, dict):
            self.skipped += 1
            return None
        return chunk


def decode_frames(frames: Iterable[str | bytes]) -> list[dict[str, Any]]:
    """Decode a finite sequence of pieces (tests, transcript replay)."""
    decoder = FrameDecoder()
    out: list[dict[str, Any]] = []
    for piece in frames:
        out.extend(decoder.feed(piece))
        if decoder.done:
            break
    return out


async def decode_stream(
    source: AsyncIterable[bytes | str],
) -> AsyncIterator[dict[str, Any]]:
    """Yield chunks from a byte stream, stopping at the terminal record."""
    decoder = FrameDecoder()
    async for piece in source:
        for chunk in decoder.feed(piece):
            yield chunk
        if decoder.done:
            return


__all__ = [
    "DONE_MARKER",
    "STREAM_HEADERS",
    "FrameDecoder",
    "decode_frames",
    "decode_stream",
    "encode_chunk",
    "encode_done",
    "format_event",
    "is_done_frame",
]

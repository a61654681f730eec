"""Durable stream registry.

A stream record is an append-only sequence of encoded frames keyed by
stream id. One writer (the generation run) appends; any number of readers
attach and each receives every frame from the beginning, then follows
live appends until the record is closed.

Lifecycle::

    open -> append* -> close -> (retention) -> reclaimed

Records never closed are reclaimed after ``max_age_s``. Reclamation is
lazy (on open/attach/exists) plus a periodic ``sweep`` driven by the app.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from time import monotonic
from typing import AsyncIterable, AsyncIterator, Callable, Dict, List

from flowcore import metrics

from .exceptions import StreamNotFound

log = logging.getLogger(__name__)


class StreamRegistry(ABC):
    def __init__(self) -> None:
        self._pumps: set[asyncio.Task] = set()

    @abstractmethod
    async def open(self, stream_id: str) -> None:
        """Create an empty record; ValueError when the id is taken."""

    @abstractmethod
    async def append(self, stream_id: str, frame: str) -> None:
        """Append one frame; StreamNotFound for unknown or closed ids."""

    @abstractmethod
    async def close(self, stream_id: str) -> None:
        """Mark complete; readers drain and end. Starts retention."""

    @abstractmethod
    async def exists(self, stream_id: str) -> bool: ...

    @abstractmethod
    async def attach(self, stream_id: str) -> AsyncIterator[str] | None:
        """Reader over all frames from the start; None when unknown."""

    async def sweep(self) -> int:
        """Reclaim expired records; returns how many were dropped."""
        return 0

    async def aclose(self) -> None:
        return None

    async def create(
        self, stream_id: str, frames: AsyncIterable[str]
    ) -> AsyncIterator[str]:
        """Open *stream_id*, pump *frames* into it in the background and
        return a reader attached from the start.

        The pump closes the record when *frames* is exhausted or fails.
        """
        await self.open(stream_id)

        async def _pump() -> None:
            try:
                async for frame in frames:
                    await self.append(stream_id, frame)
            except Exception:  # noqa: BLE001
                log.exception("stream pump failed stream_id=%s", stream_id)
            finally:
                await self.close(stream_id)

        task = asyncio.create_task(_pump())
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)
        reader = await self.attach(stream_id)
        if reader is None:
            raise RuntimeError(f"stream '{stream_id}' vanished before attach")
        return reader


@dataclass
class _Record:
    created_at: float
    frames: List[str] = field(default_factory=list)
    closed_at: float | None = None
    reclaimed: bool = False
    cond: asyncio.Condition = field(default_factory=asyncio.Condition)

    @property
    def closed(self) -> bool:
        return self.closed_at is not None


class MemoryStreamRegistry(StreamRegistry):
    """Process-local registry. Frames live in a list per record.

    ``clock`` is injectable so tests can advance time without sleeping.
    """

    def __init__(
        self,
        retention_s: float = 60.0,
        max_age_s: float = 24 * 60 * 60,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        super().__init__()
        self._records: Dict[str, _Record] = {}
        self.retention_s = retention_s
        self.max_age_s = max_age_s
        self._clock = clock

    def _expired(self, rec: _Record, now: float) -> bool:
        if rec.closed_at is not None:
            return now - rec.closed_at >= self.retention_s
        return now - rec.created_at >= self.max_age_s

    async def _drop(self, stream_id: str) -> None:
        rec = self._records.pop(stream_id, None)
        if rec is None:
            return
        async with rec.cond:
            rec.reclaimed = True
            rec.cond.notify_all()
        metrics.inc("registry_reclaimed_total", {"backend": "memory"})
        log.debug("stream reclaimed stream_id=%s", stream_id)

    async def _live(self, stream_id: str) -> _Record | None:
        rec = self._records.get(stream_id)
        if rec is not None and self._expired(rec, self._clock()):
            await self._drop(stream_id)
            return None
        return rec

    async def open(self, stream_id: str) -> None:
        await self.sweep()
        if stream_id in self._records:
            raise ValueError(f"stream '{stream_id}' already exists")
        self._records[stream_id] = _Record(created_at=self._clock())

    async def append(self, stream_id: str, frame: str) -> None:
        rec = await self._live(stream_id)
        if rec is None or rec.closed:
            raise StreamNotFound(f"stream '{stream_id}' is not open")
        async with rec.cond:
            rec.frames.append(frame)
            rec.cond.notify_all()

    async def close(self, stream_id: str) -> None:
        rec = self._records.get(stream_id)
        if rec is None or rec.closed:
            return
        async with rec.cond:
            rec.closed_at = self._clock()
            rec.cond.notify_all()
        if self.retention_s <= 0:
            await self._drop(stream_id)

    async def exists(self, stream_id: str) -> bool:
        return await self._live(stream_id) is not None

    async def attach(self, stream_id: str) -> AsyncIterator[str] | None:
        rec = await self._live(stream_id)
        if rec is None:
            return None
        return self._read(rec)

    async def _read(self, rec: _Record) -> AsyncIterator[str]:
        cursor = 0
        while True:
            async with rec.cond:
                while (
                    cursor >= len(rec.frames)
                    and not rec.closed
                    and not rec.reclaimed
                ):
                    await rec.cond.wait()
                batch = rec.frames[cursor:]
                cursor += len(batch)
                finished = rec.closed or rec.reclaimed
            for frame in batch:
                yield frame
            if finished and cursor >= len(rec.frames):
                return

    async def sweep(self) -> int:
        now = self._clock()
        expired = [
            sid for sid, rec in self._records.items() if self._expired(rec, now)
        ]
        for sid in expired:
            await self._drop(sid)
        return len(expired)

    def frames(self, stream_id: str) -> list[str]:
        """Snapshot of a record's frames (diagnostics and tests)."""
        rec = self._records.get(stream_id)
        return list(rec.frames) if rec else []

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["MemoryStreamRegistry", "StreamRegistry"]

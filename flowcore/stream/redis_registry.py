"""Stream registry on Redis Streams.

One Redis stream per record (``{key_prefix}{stream_id}``). Entries carry a
``kind`` field: ``open`` (first entry), ``frame`` (with ``data``) and
``done`` (close marker). Readers XREAD from ``0-0`` so every attach sees
the full sequence, then block for live entries until ``done``.

Expiry is delegated to Redis: the key gets ``max_age_s`` TTL on open and
``retention_s`` on close, so there is nothing to sweep locally.
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, AsyncIterator

from flowcore import metrics

from .exceptions import StreamNotFound
from .registry import StreamRegistry

if TYPE_CHECKING:
    import redis.asyncio as aioredis

log = logging.getLogger(__name__)

_READ_COUNT = 100


def _ttl(seconds: float) -> int:
    return max(1, math.ceil(seconds))


class RedisStreamRegistry(StreamRegistry):
    def __init__(
        self,
        client: "aioredis.Redis",
        key_prefix: str = "flowdesk:streams:",
        retention_s: float = 60.0,
        max_age_s: float = 24 * 60 * 60,
        read_block_ms: int = 1000,
    ) -> None:
        super().__init__()
        self._client = client
        self._prefix = key_prefix
        self.retention_s = retention_s
        self.max_age_s = max_age_s
        self._block_ms = read_block_ms
        # ids opened (and not yet closed) by this process
        self._writable: set[str] = set()

    def key(self, stream_id: str) -> str:
        return f"{self._prefix}{stream_id}"

    async def open(self, stream_id: str) -> None:
        key = self.key(stream_id)
        if await self._client.exists(key):
            raise ValueError(f"stream '{stream_id}' already exists")
        await self._client.xadd(key, {"kind": "open"})
        await self._client.expire(key, _ttl(self.max_age_s))
        self._writable.add(stream_id)

    async def append(self, stream_id: str, frame: str) -> None:
        if stream_id not in self._writable:
            raise StreamNotFound(f"stream '{stream_id}' is not open")
        entry = await self._client.xadd(
            self.key(stream_id), {"kind": "frame", "data": frame}, nomkstream=True
        )
        if entry is None:
            # key expired underneath the writer
            self._writable.discard(stream_id)
            raise StreamNotFound(f"stream '{stream_id}' was reclaimed")

    async def close(self, stream_id: str) -> None:
        if stream_id not in self._writable:
            return
        self._writable.discard(stream_id)
        key = self.key(stream_id)
        await self._client.xadd(key, {"kind": "done"}, nomkstream=True)
        if self.retention_s <= 0:
            await self._client.delete(key)
        else:
            await self._client.expire(key, _ttl(self.retention_s))

    async def exists(self, stream_id: str) -> bool:
        return bool(await self._client.exists(self.key(stream_id)))

    async def attach(self, stream_id: str) -> AsyncIterator[str] | None:
        if not await self.exists(stream_id):
            return None
        return self._read(self.key(stream_id))

    async def _read(self, key: str) -> AsyncIterator[str]:
        last_id = "0-0"
        while True:
            resp = await self._client.xread(
                {key: last_id}, count=_READ_COUNT, block=self._block_ms
            )
            if not resp:
                if not await self._client.exists(key):
                    metrics.inc("registry_reclaimed_total", {"backend": "redis"})
                    log.warning("stream vanished while reading key=%s", key)
                    return
                continue
            for _key, entries in resp:
                for entry_id, fields in entries:
                    last_id = entry_id
                    kind = fields.get("kind")
                    if kind == "frame":
                        yield fields.get("data", "")
                    elif kind == "done":
                        return


__all__ = ["RedisStreamRegistry"]

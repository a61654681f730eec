"""Cooperative cancellation token for one generation run."""
from __future__ import annotations

import asyncio
from time import monotonic


class CancellationToken:
    """Set once; the first ``cancel`` wins and records its reason/time."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None
        self.cancelled_at: float | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "user_abort") -> bool:
        if self._event.is_set():
            return False
        self.reason = reason
        self.cancelled_at = monotonic()
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

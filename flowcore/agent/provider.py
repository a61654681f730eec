"""AgentProvider interface.

The streaming core treats an agent as an opaque token source: given the
message history it yields ``AgentEvent`` objects in order. Providers must
not allocate heavy resources on import.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Sequence

from .types import AgentEvent


@dataclass(frozen=True)
class AgentInfo:
    id: str
    kind: str
    metadata: Dict[str, Any] | None = None


class AgentProvider(ABC):
    @abstractmethod
    def stream(
        self, messages: Sequence[dict[str, Any]]
    ) -> AsyncIterator[AgentEvent]:
        """Yield incremental events for *messages* (UI message dicts)."""

    @abstractmethod
    def info(self) -> AgentInfo:
        """Return static agent information."""

"""Event types produced by an agent token source.

A source yields any number of deltas/tool events and terminates with exactly
one ``Finish`` (or by raising).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

FINISH_REASONS = frozenset(
    {
        "stop",
        "length",
        "content-filter",
        "tool-calls",
        "error",
        "other",
        "unknown",
        "abort",
    }
)


@dataclass(slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Usage":
        data = data or {}
        return Usage(
            prompt_tokens=int(data.get("promptTokens") or 0),
            completion_tokens=int(data.get("completionTokens") or 0),
        )


@dataclass(slots=True)
class TextDelta:
    delta: str


@dataclass(slots=True)
class ReasoningDelta:
    delta: str


@dataclass(slots=True)
class ToolCall:
    tool_call_id: str
    tool_name: str
    input: Any = None


@dataclass(slots=True)
class ToolResult:
    tool_call_id: str
    tool_name: str
    output: Any = None


@dataclass(slots=True)
class Finish:
    reason: str = "stop"
    usage: Usage = field(default_factory=Usage)

    def __post_init__(self) -> None:
        if self.reason not in FINISH_REASONS:
            raise ValueError(f"unknown finish reason '{self.reason}'")


AgentEvent = Union[TextDelta, ReasoningDelta, ToolCall, ToolResult, Finish]

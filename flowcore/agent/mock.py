"""Deterministic mock agent used in place of a real model.

Each call to ``stream`` plays the next scripted step (the last step repeats
once the script is exhausted). Text and reasoning parts are split on single
spaces: the first word is emitted as-is, every later word with a leading
space, so the concatenated deltas equal the step text.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

from .provider import AgentInfo, AgentProvider
from .types import (
    AgentEvent,
    Finish,
    ReasoningDelta,
    TextDelta,
    ToolCall,
    ToolResult,
    Usage,
)


@dataclass(slots=True)
class MockStep:
    """One scripted assistant turn.

    content: string or list of parts; parts use the UI message shapes
    ``{"type": "text", "text": ...}``, ``{"type": "reasoning", ...}``,
    ``{"type": "tool-call", "toolCallId", "toolName", "input"}``,
    ``{"type": "tool-result", "toolCallId", "toolName", "output"}``.
    """
    content: str | list[dict[str, Any]]
    usage: Usage = field(default_factory=Usage)

    def parts(self) -> list[dict[str, Any]]:
        if isinstance(self.content, str):
            return [{"type": "text", "text": self.content}]
        return list(self.content)

    def finish_reason(self) -> str:
        parts = self.parts()
        if parts and parts[-1].get("type") == "tool-call":
            return "tool-calls"
        return "stop"


def split_words(text: str) -> list[str]:
    words = text.split(" ")
    return [w if i == 0 else f" {w}" for i, w in enumerate(words)]


def step_to_events(step: MockStep) -> list[AgentEvent]:
    events: list[AgentEvent] = []
    for part in step.parts():
        kind = part.get("type")
        if kind == "text":
            events.extend(TextDelta(w) for w in split_words(part["text"]))
        elif kind == "reasoning":
            events.extend(
                ReasoningDelta(w) for w in split_words(part["text"])
            )
        elif kind == "tool-call":
            events.append(
                ToolCall(
                    tool_call_id=part["toolCallId"],
                    tool_name=part["toolName"],
                    input=part.get("input"),
                )
            )
        elif kind == "tool-result":
            events.append(
                ToolResult(
                    tool_call_id=part["toolCallId"],
                    tool_name=part["toolName"],
                    output=part.get("output") or {},
                )
            )
        # other part kinds (files, images) are not simulated
    events.append(Finish(reason=step.finish_reason(), usage=step.usage))
    return events


class MockAgentProvider(AgentProvider):
    def __init__(
        self,
        steps: Sequence[MockStep],
        chunk_delay_s: float = 0.1,
        agent_id: str = "mock",
        kind: str = "mock",
    ) -> None:
        if not steps:
            raise ValueError("at least one step required")
        self._steps = list(steps)
        self._current = 0
        self._delay = chunk_delay_s
        self._id = agent_id
        self._kind = kind

    def _next_step(self) -> MockStep:
        idx = min(self._current, len(self._steps) - 1)
        self._current += 1
        return self._steps[idx]

    async def stream(
        self, messages: Sequence[dict[str, Any]]
    ) -> AsyncIterator[AgentEvent]:
        for ev in step_to_events(self._next_step()):
            if self._delay:
                await asyncio.sleep(self._delay)
            yield ev

    def info(self) -> AgentInfo:
        return AgentInfo(
            id=self._id,
            kind=self._kind,
            metadata={"stub": True, "steps": len(self._steps)},
        )


__all__ = ["MockAgentProvider", "MockStep", "split_words", "step_to_events"]

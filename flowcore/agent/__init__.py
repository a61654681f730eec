"""Agent runtime collaborators (token sources)."""
from .types import (  # noqa: F401
    AgentEvent,
    Finish,
    FINISH_REASONS,
    ReasoningDelta,
    TextDelta,
    ToolCall,
    ToolResult,
    Usage,
)
from .provider import AgentInfo, AgentProvider  # noqa: F401
from .mock import MockAgentProvider, MockStep  # noqa: F401

__all__ = [
    "AgentEvent",
    "AgentInfo",
    "AgentProvider",
    "Finish",
    "FINISH_REASONS",
    "MockAgentProvider",
    "MockStep",
    "ReasoningDelta",
    "TextDelta",
    "ToolCall",
    "ToolResult",
    "Usage",
]

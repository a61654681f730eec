"""Agent construction from config.

All agents are mock providers for now; the factory is the single place a
real model-backed provider would be plugged in.
"""
from __future__ import annotations

from flowcore.config import get_config

from .mock import MockAgentProvider, MockStep
from .responses import mock_agent_response
from .types import Usage


def _usage() -> Usage:
    cfg = get_config().agent
    return Usage(
        prompt_tokens=cfg.prompt_tokens,
        completion_tokens=cfg.completion_tokens,
    )


def _delay_s() -> float:
    return get_config().agent.chunk_delay_ms / 1000.0


def get_chat_agent(kind: str = "project") -> MockAgentProvider:
    """Agent answering free-form chat in a project or task session."""
    text = get_config().agent.reply_text
    return MockAgentProvider(
        [MockStep(content=text, usage=_usage())],
        chunk_delay_s=_delay_s(),
        agent_id=f"{kind}-chat",
        kind=kind,
    )


def get_task_agent(
    agent_type: str, task_title: str, task_description: str | None
) -> tuple[MockAgentProvider, str]:
    """Agent that "works" a task; returns (provider, full reply text)."""
    reply = mock_agent_response(agent_type, task_title, task_description)
    provider = MockAgentProvider(
        [MockStep(content=reply, usage=_usage())],
        chunk_delay_s=_delay_s(),
        agent_id=f"task-{agent_type}",
        kind=agent_type,
    )
    return provider, reply


__all__ = ["get_chat_agent", "get_task_agent"]

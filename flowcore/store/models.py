"""Persistent records read/written by the streaming core."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from time import time
from typing import Any

TASK_STATUSES = ("todo", "processing", "in_review", "done", "cancel")
PROJECT_STATUSES = ("clarifying", "active", "completed", "archived")
MESSAGE_ROLES = ("user", "assistant", "system")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class Project:
    id: str
    name: str
    description: str | None = None
    status: str = "clarifying"
    created_at: float = field(default_factory=time)


@dataclass(slots=True)
class Task:
    id: str
    project_id: str
    title: str
    description: str | None = None
    status: str = "todo"
    assigned_agent: str | None = None
    output: str | None = None
    created_at: float = field(default_factory=time)
    updated_at: float = field(default_factory=time)


@dataclass(slots=True)
class Chat:
    """One conversation; owned by exactly one project or task.

    active_stream_id is the single source of truth for "is there something
    to resume".
    """
    id: str
    title: str
    project_id: str | None = None
    task_id: str | None = None
    active_stream_id: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    finish_reason: str | None = None
    created_at: float = field(default_factory=time)

    def __post_init__(self) -> None:
        if (self.project_id is None) == (self.task_id is None):
            raise ValueError("chat must belong to exactly one project or task")


@dataclass(slots=True)
class Message:
    id: str
    chat_id: str
    role: str  # user|assistant|system
    parts: list[dict[str, Any]]
    created_at: float = field(default_factory=time)
    usage: dict[str, int] | None = None
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        if self.role not in MESSAGE_ROLES:
            raise ValueError(f"invalid role '{self.role}'")

    @property
    def text(self) -> str:
        return "".join(
            p.get("text", "") for p in self.parts if p.get("type") == "text"
        )

    def to_ui(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": self.parts,
            "createdAt": self.created_at,
        }
        if self.usage is not None:
            data["usage"] = self.usage
        if self.finish_reason is not None:
            data["finishReason"] = self.finish_reason
        return data

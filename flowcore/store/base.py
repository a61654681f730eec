"""ChatStore contract.

Backends implement the primitive operations; session helpers that combine
them (get-or-create chats) live here so every backend behaves alike.

All operations are synchronous single-row updates; the streaming core
relies on ``set_active_stream`` being committed when it returns.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from flowcore.agent.types import Usage

from .models import Chat, Message, Project, Task


class ChatStore(ABC):
    # --- projects / tasks (collaborator surface used by the agent route)

    @abstractmethod
    def create_project(
        self,
        name: str,
        description: str | None = None,
        project_id: str | None = None,
    ) -> Project: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def create_task(
        self,
        project_id: str,
        title: str,
        description: str | None = None,
        task_id: str | None = None,
    ) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Task | None: ...

    @abstractmethod
    def update_task(self, task_id: str, **fields) -> Task | None:
        """Update status/description/assigned_agent/output fields."""

    # --- chats

    @abstractmethod
    def create_chat(
        self,
        title: str,
        project_id: str | None = None,
        task_id: str | None = None,
        chat_id: str | None = None,
    ) -> Chat: ...

    @abstractmethod
    def find_chat(self, chat_id: str) -> Chat | None: ...

    @abstractmethod
    def list_project_chats(self, project_id: str) -> list[Chat]:
        """Project-level chats, newest first."""

    @abstractmethod
    def find_task_chat(self, task_id: str) -> Chat | None: ...

    @abstractmethod
    def set_active_stream(self, chat_id: str, stream_id: str | None) -> bool:
        """Overwrite the pointer; False when the chat does not exist."""

    @abstractmethod
    def clear_active_stream(
        self, chat_id: str, expected: str | None = None
    ) -> bool:
        """Null the pointer.

        With *expected* the clear only applies while the pointer still
        equals it. Returns True when a non-null pointer was cleared.
        """

    @abstractmethod
    def record_run(
        self, chat_id: str, usage: Usage, finish_reason: str
    ) -> None:
        """Accumulate token usage and store the last finish reason."""

    # --- messages

    @abstractmethod
    def insert_message(self, message: Message) -> bool:
        """Insert unless a message with the same id exists.

        Returns False for the duplicate (no-op) case.
        """

    @abstractmethod
    def list_messages(self, chat_id: str) -> list[Message]:
        """Messages in creation order."""

    def close(self) -> None:  # optional hook
        return None

    # --- session helpers

    def get_or_create_project_chat(
        self, project_id: str, chat_id: str | None = None
    ) -> Chat:
        """Return *chat_id* when it belongs to the project, else the latest
        project chat, creating "Session 1" when there is none."""
        if chat_id:
            existing = self.find_chat(chat_id)
            if existing is not None and existing.project_id == project_id:
                return existing
        chats = self.list_project_chats(project_id)
        if chats:
            return chats[0]
        return self.create_chat("Session 1", project_id=project_id)

    def create_project_chat_session(self, project_id: str) -> Chat:
        number = len(self.list_project_chats(project_id)) + 1
        return self.create_chat(f"Session {number}", project_id=project_id)

    def get_or_create_task_chat(self, task_id: str, title: str) -> Chat:
        chat = self.find_task_chat(task_id)
        if chat is None:
            chat = self.create_chat(title, task_id=task_id)
        return chat

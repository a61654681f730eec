"""In-memory ChatStore (single process, default backend).

Thread-safe via a coarse lock; records are copied on the way out so callers
never mutate stored state.
"""
from __future__ import annotations

import copy
from threading import RLock
from time import time
from typing import Dict, List

from flowcore import metrics
from flowcore.agent.types import Usage

from .base import ChatStore
from .models import TASK_STATUSES, Chat, Message, Project, Task, new_id

_TASK_FIELDS = {"status", "description", "assigned_agent", "output", "title"}


class MemoryChatStore(ChatStore):
    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._tasks: Dict[str, Task] = {}
        self._chats: Dict[str, Chat] = {}
        self._chat_order: List[str] = []
        self._messages: Dict[str, List[Message]] = {}
        self._message_ids: set[str] = set()
        self._lock = RLock()

    def create_project(self, name, description=None, project_id=None):
        project = Project(
            id=project_id or new_id(), name=name, description=description
        )
        with self._lock:
            self._projects[project.id] = project
        return copy.copy(project)

    def get_project(self, project_id):
        with self._lock:
            project = self._projects.get(project_id)
            return copy.copy(project) if project else None

    def create_task(self, project_id, title, description=None, task_id=None):
        with self._lock:
            if project_id not in self._projects:
                raise KeyError(project_id)
            task = Task(
                id=task_id or new_id(),
                project_id=project_id,
                title=title,
                description=description,
            )
            self._tasks[task.id] = task
            return copy.copy(task)

    def get_task(self, task_id):
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.copy(task) if task else None

    def update_task(self, task_id, **fields):
        unknown = set(fields) - _TASK_FIELDS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")
        status = fields.get("status")
        if status is not None and status not in TASK_STATUSES:
            raise ValueError(f"invalid task status '{status}'")
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            for k, v in fields.items():
                setattr(task, k, v)
            task.updated_at = time()
            return copy.copy(task)

    def create_chat(self, title, project_id=None, task_id=None, chat_id=None):
        chat = Chat(
            id=chat_id or new_id(),
            title=title,
            project_id=project_id,
            task_id=task_id,
        )
        with self._lock:
            self._chats[chat.id] = chat
            self._chat_order.append(chat.id)
            self._messages.setdefault(chat.id, [])
        return copy.copy(chat)

    def find_chat(self, chat_id):
        with self._lock:
            chat = self._chats.get(chat_id)
            return copy.copy(chat) if chat else None

    def list_project_chats(self, project_id):
        with self._lock:
            return [
                copy.copy(self._chats[cid])
                for cid in reversed(self._chat_order)
                if self._chats[cid].project_id == project_id
                and self._chats[cid].task_id is None
            ]

    def find_task_chat(self, task_id):
        with self._lock:
            for cid in self._chat_order:
                if self._chats[cid].task_id == task_id:
                    return copy.copy(self._chats[cid])
        return None

    def set_active_stream(self, chat_id, stream_id):
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return False
            chat.active_stream_id = stream_id
            return True

    def clear_active_stream(self, chat_id, expected=None):
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None or chat.active_stream_id is None:
                return False
            if expected is not None and chat.active_stream_id != expected:
                metrics.inc("active_stream_clear_skipped_total")
                return False
            chat.active_stream_id = None
            return True

    def record_run(self, chat_id, usage: Usage, finish_reason: str):
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return
            chat.prompt_tokens += usage.prompt_tokens
            chat.completion_tokens += usage.completion_tokens
            chat.total_tokens += usage.total_tokens
            chat.finish_reason = finish_reason

    def insert_message(self, message):
        with self._lock:
            if message.id in self._message_ids:
                return False
            if message.chat_id not in self._chats:
                raise KeyError(message.chat_id)
            self._message_ids.add(message.id)
            self._messages[message.chat_id].append(copy.deepcopy(message))
            return True

    def list_messages(self, chat_id):
        with self._lock:
            return [copy.deepcopy(m) for m in self._messages.get(chat_id, [])]

    def stats(self) -> dict:
        with self._lock:
            return {
                "chats": len(self._chats),
                "messages": len(self._message_ids),
            }


__all__ = ["MemoryChatStore"]

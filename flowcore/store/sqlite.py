"""SQLite-backed ChatStore.

One short-lived connection per operation (safe across threads and the
event loop). The schema is created on first use and is idempotent
(``IF NOT EXISTS``). JSON columns (message parts/usage) are serialized on
write and parsed on read.

Usage::

    store = SqliteChatStore("data/flowdesk.db")
    chat = store.create_chat("Session 1", project_id=project.id)
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from time import time
from typing import Iterator

from flowcore import metrics
from flowcore.agent.types import Usage

from .base import ChatStore
from .models import TASK_STATUSES, Chat, Message, Project, Task, new_id

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS project (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'clarifying',
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS task (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES project(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    assigned_agent TEXT,
    output TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS task_project_idx ON task(project_id);
CREATE TABLE IF NOT EXISTS chat (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    project_id TEXT REFERENCES project(id) ON DELETE CASCADE,
    task_id TEXT REFERENCES task(id) ON DELETE CASCADE,
    active_stream_id TEXT,
    prompt_tokens INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    finish_reason TEXT,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS chat_project_idx ON chat(project_id);
CREATE INDEX IF NOT EXISTS chat_task_idx ON chat(task_id);
CREATE TABLE IF NOT EXISTS message (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL REFERENCES chat(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    parts TEXT NOT NULL,
    usage TEXT,
    finish_reason TEXT,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS message_chat_idx ON message(chat_id);
"""

_TASK_FIELDS = ("status", "description", "assigned_agent", "output", "title")


def _chat_from_row(row: sqlite3.Row) -> Chat:
    return Chat(
        id=row["id"],
        title=row["title"],
        project_id=row["project_id"],
        task_id=row["task_id"],
        active_stream_id=row["active_stream_id"],
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        total_tokens=row["total_tokens"],
        finish_reason=row["finish_reason"],
        created_at=row["created_at"],
    )


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        assigned_agent=row["assigned_agent"],
        output=row["output"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        chat_id=row["chat_id"],
        role=row["role"],
        parts=json.loads(row["parts"]),
        usage=json.loads(row["usage"]) if row["usage"] else None,
        finish_reason=row["finish_reason"],
        created_at=row["created_at"],
    )


class SqliteChatStore(ChatStore):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._path))
            try:
                conn.executescript(_SCHEMA)
                conn.commit()
            finally:
                conn.close()
            self._schema_ready = True
            logger.info("sqlite chat store ready at %s", self._path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        self._ensure_schema()
        conn = sqlite3.connect(str(self._path), timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- projects / tasks

    def create_project(self, name, description=None, project_id=None):
        project = Project(
            id=project_id or new_id(), name=name, description=description
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO project (id, name, description, status, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (
                    project.id,
                    project.name,
                    project.description,
                    project.status,
                    project.created_at,
                ),
            )
        return project

    def get_project(self, project_id):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project WHERE id = ?", (project_id,)
            ).fetchone()
        if row is None:
            return None
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            status=row["status"],
            created_at=row["created_at"],
        )

    def create_task(self, project_id, title, description=None, task_id=None):
        task = Task(
            id=task_id or new_id(),
            project_id=project_id,
            title=title,
            description=description,
        )
        with self._connect() as conn:
            if conn.execute(
                "SELECT 1 FROM project WHERE id = ?", (project_id,)
            ).fetchone() is None:
                raise KeyError(project_id)
            conn.execute(
                "INSERT INTO task (id, project_id, title, description, status,"
                " created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    task.id,
                    task.project_id,
                    task.title,
                    task.description,
                    task.status,
                    task.created_at,
                    task.updated_at,
                ),
            )
        return task

    def get_task(self, task_id):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM task WHERE id = ?", (task_id,)
            ).fetchone()
        return _task_from_row(row) if row else None

    def update_task(self, task_id, **fields):
        unknown = set(fields) - set(_TASK_FIELDS)
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")
        status = fields.get("status")
        if status is not None and status not in TASK_STATUSES:
            raise ValueError(f"invalid task status '{status}'")
        with self._connect() as conn:
            if fields:
                cols = ", ".join(f"{k} = ?" for k in fields)
                conn.execute(
                    f"UPDATE task SET {cols}, updated_at = ? WHERE id = ?",
                    (*fields.values(), time(), task_id),
                )
            row = conn.execute(
                "SELECT * FROM task WHERE id = ?", (task_id,)
            ).fetchone()
        return _task_from_row(row) if row else None

    # --- chats

    def create_chat(self, title, project_id=None, task_id=None, chat_id=None):
        chat = Chat(
            id=chat_id or new_id(),
            title=title,
            project_id=project_id,
            task_id=task_id,
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO chat (id, title, project_id, task_id, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (
                    chat.id,
                    chat.title,
                    chat.project_id,
                    chat.task_id,
                    chat.created_at,
                ),
            )
        return chat

    def find_chat(self, chat_id):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM chat WHERE id = ?", (chat_id,)
            ).fetchone()
        return _chat_from_row(row) if row else None

    def list_project_chats(self, project_id):
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chat WHERE project_id = ? AND task_id IS NULL"
                " ORDER BY created_at DESC, rowid DESC",
                (project_id,),
            ).fetchall()
        return [_chat_from_row(r) for r in rows]

    def find_task_chat(self, task_id):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM chat WHERE task_id = ? ORDER BY rowid LIMIT 1",
                (task_id,),
            ).fetchone()
        return _chat_from_row(row) if row else None

    def set_active_stream(self, chat_id, stream_id):
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE chat SET active_stream_id = ? WHERE id = ?",
                (stream_id, chat_id),
            )
            return cur.rowcount > 0

    def clear_active_stream(self, chat_id, expected=None):
        with self._connect() as conn:
            if expected is None:
                cur = conn.execute(
                    "UPDATE chat SET active_stream_id = NULL"
                    " WHERE id = ? AND active_stream_id IS NOT NULL",
                    (chat_id,),
                )
            else:
                cur = conn.execute(
                    "UPDATE chat SET active_stream_id = NULL"
                    " WHERE id = ? AND active_stream_id = ?",
                    (chat_id, expected),
                )
                if cur.rowcount == 0:
                    metrics.inc("active_stream_clear_skipped_total")
            return cur.rowcount > 0

    def record_run(self, chat_id, usage: Usage, finish_reason: str):
        with self._connect() as conn:
            conn.execute(
                "UPDATE chat SET prompt_tokens = prompt_tokens + ?,"
                " completion_tokens = completion_tokens + ?,"
                " total_tokens = total_tokens + ?, finish_reason = ?"
                " WHERE id = ?",
                (
                    usage.prompt_tokens,
                    usage.completion_tokens,
                    usage.total_tokens,
                    finish_reason,
                    chat_id,
                ),
            )

    # --- messages

    def insert_message(self, message):
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO message (id, chat_id, role, parts,"
                " usage, finish_reason, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.chat_id,
                    message.role,
                    json.dumps(message.parts),
                    json.dumps(message.usage) if message.usage else None,
                    message.finish_reason,
                    message.created_at,
                ),
            )
            return cur.rowcount > 0

    def list_messages(self, chat_id):
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM message WHERE chat_id = ?"
                " ORDER BY created_at, rowid",
                (chat_id,),
            ).fetchall()
        return [_message_from_row(r) for r in rows]


__all__ = ["SqliteChatStore"]

"""Chat/message persistence collaborators.

``ChatStore`` is the only interface the streaming core depends on; the
``memory`` and ``sqlite`` backends are selected by ``storage.backend``.
"""
from .models import (  # noqa: F401
    Chat,
    Message,
    Project,
    Task,
    TASK_STATUSES,
)
from .base import ChatStore  # noqa: F401
from .memory import MemoryChatStore  # noqa: F401
from .sqlite import SqliteChatStore  # noqa: F401


def create_store(cfg=None) -> ChatStore:
    """Build the configured store backend."""
    if cfg is None:
        from flowcore.config import get_config

        cfg = get_config().storage
    if cfg.backend == "sqlite":
        return SqliteChatStore(cfg.sqlite_path)
    return MemoryChatStore()


__all__ = [
    "Chat",
    "ChatStore",
    "MemoryChatStore",
    "Message",
    "Project",
    "SqliteChatStore",
    "Task",
    "TASK_STATUSES",
    "create_store",
]

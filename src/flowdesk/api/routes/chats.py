"""Read-side routes: persisted chat transcripts."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from flowcore.stream import ChatNotFound
from flowdesk.api.deps import Services, get_services

router = APIRouter(prefix="/api/chats")


@router.get("/{chat_id}")
def get_chat(chat_id: str, services: Services = Depends(get_services)):
    chat = services.store.find_chat(chat_id)
    if chat is None:
        raise ChatNotFound(f"chat '{chat_id}' not found")
    return {
        "id": chat.id,
        "title": chat.title,
        "projectId": chat.project_id,
        "taskId": chat.task_id,
        "activeStreamId": chat.active_stream_id,
        "usage": {
            "promptTokens": chat.prompt_tokens,
            "completionTokens": chat.completion_tokens,
            "totalTokens": chat.total_tokens,
        },
        "finishReason": chat.finish_reason,
    }


@router.get("/{chat_id}/messages")
def list_messages(chat_id: str, services: Services = Depends(get_services)):
    if services.store.find_chat(chat_id) is None:
        raise ChatNotFound(f"chat '{chat_id}' not found")
    return {
        "chatId": chat_id,
        "messages": [m.to_ui() for m in services.store.list_messages(chat_id)],
    }

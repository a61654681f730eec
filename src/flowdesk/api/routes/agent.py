"""/api/agent routes: start a generation, resume it, abort it."""
from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from flowcore.agent.factory import get_chat_agent, get_task_agent
from flowcore.store import Chat, ChatStore, Message
from flowcore.store.models import new_id
from flowcore.stream import ProjectNotFound, RunOutcome, TaskNotFound
from flowdesk.api.deps import Services, get_services
from flowdesk.api.sse import event_stream_response

router = APIRouter(prefix="/api/agent")
log = logging.getLogger(__name__)


class UIMessage(BaseModel):  # noqa: D401
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    role: Literal["user", "assistant", "system"]
    parts: list[dict[str, Any]] = Field(default_factory=list)


class ProjectMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["project"]
    project_id: str = Field(alias="projectId")
    chat_id: str | None = Field(None, alias="chatId")
    messages: list[UIMessage]


class TaskMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["task"]
    task_id: str = Field(alias="taskId")
    messages: list[UIMessage]


class StartTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["startTask"]
    task_id: str = Field(alias="taskId")
    agent_type: str = Field(alias="agentType")
    description: str | None = None


AgentRequest = Annotated[
    Union[ProjectMessageRequest, TaskMessageRequest, StartTaskRequest],
    Field(discriminator="type"),
]


def _save_user_message(store: ChatStore, chat: Chat, messages: list[UIMessage]):
    if not messages or messages[-1].role != "user":
        return
    last = messages[-1]
    store.insert_message(
        Message(
            id=last.id or new_id(),
            chat_id=chat.id,
            role="user",
            parts=last.parts,
        )
    )


def _history(messages: list[UIMessage]) -> list[dict[str, Any]]:
    return [m.model_dump(exclude_none=True) for m in messages]


async def _stream(services: Services, chat: Chat, history, source, on_finish=None):
    run = await services.controller.start(
        chat.id, history, source, on_finish=on_finish
    )
    frames = await services.backend.registry.attach(run.stream_id)
    if frames is None:  # pragma: no cover - record is opened by start()
        return Response(status_code=204)
    return event_stream_response(
        frames, {"x-chat-id": chat.id, "x-stream-id": run.stream_id}
    )


@router.post("")
async def agent(
    body: AgentRequest, services: Services = Depends(get_services)
):  # noqa: D401
    store = services.store
    if isinstance(body, ProjectMessageRequest):
        if store.get_project(body.project_id) is None:
            raise ProjectNotFound(f"project '{body.project_id}' not found")
        chat = store.get_or_create_project_chat(body.project_id, body.chat_id)
        _save_user_message(store, chat, body.messages)
        return await _stream(
            services, chat, _history(body.messages), get_chat_agent("project")
        )

    task = store.get_task(body.task_id)
    if task is None:
        raise TaskNotFound(f"task '{body.task_id}' not found")
    chat = store.get_or_create_task_chat(task.id, task.title)

    if isinstance(body, TaskMessageRequest):
        _save_user_message(store, chat, body.messages)
        return await _stream(
            services, chat, _history(body.messages), get_chat_agent("task")
        )

    fields: dict[str, Any] = {"status": "processing", "assigned_agent": body.agent_type}
    if body.description is not None:
        fields["description"] = body.description
    store.update_task(task.id, **fields)
    description = (
        body.description if body.description is not None else task.description
    )
    provider, reply = get_task_agent(body.agent_type, task.title, description)

    text = f"Please work on this task: {task.title}"
    if description:
        text += f"\n\nDescription: {description}"
    seed = Message(
        id=new_id(),
        chat_id=chat.id,
        role="user",
        parts=[{"type": "text", "text": text}],
    )
    store.insert_message(seed)

    async def _review(message: Message, outcome: RunOutcome) -> None:
        if outcome.finish_reason == "abort":
            log.info("task run aborted; status left processing task_id=%s", task.id)
            return
        store.update_task(task.id, status="in_review", output=reply)

    history = [{"id": seed.id, "role": "user", "parts": seed.parts}]
    return await _stream(services, chat, history, provider, on_finish=_review)


@router.get("/{chat_id}/stream")
async def resume_stream(
    chat_id: str, services: Services = Depends(get_services)
):  # noqa: D401
    frames = await services.resume.resume(chat_id)
    if frames is None:
        return Response(status_code=204)
    return event_stream_response(frames, {"x-chat-id": chat_id})


@router.delete("/{chat_id}/stream")
async def abort_stream(
    chat_id: str, services: Services = Depends(get_services)
):  # noqa: D401
    outcome = await services.abort.abort(chat_id)
    if not outcome.signalled:
        return Response(status_code=204)
    return JSONResponse(
        {
            "success": True,
            "streamId": outcome.stream_id,
            "delivered": outcome.delivered,
        }
    )

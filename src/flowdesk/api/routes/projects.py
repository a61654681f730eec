"""Project/task bootstrap routes used by the UI and the tail CLI."""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from flowcore.stream import ProjectNotFound, TaskNotFound
from flowdesk.api.deps import Services, get_services

router = APIRouter(prefix="/api/projects")


class CreateProjectRequest(BaseModel):  # noqa: D401
    name: str = Field(min_length=1)
    description: str | None = None


class CreateTaskRequest(BaseModel):  # noqa: D401
    title: str = Field(min_length=1)
    description: str | None = None


@router.post("", status_code=201)
def create_project(
    body: CreateProjectRequest, services: Services = Depends(get_services)
):
    project = services.store.create_project(body.name, body.description)
    return asdict(project)


@router.get("/{project_id}/chats")
def list_chats(project_id: str, services: Services = Depends(get_services)):
    if services.store.get_project(project_id) is None:
        raise ProjectNotFound(f"project '{project_id}' not found")
    return {
        "chats": [
            {"id": c.id, "title": c.title, "activeStreamId": c.active_stream_id}
            for c in services.store.list_project_chats(project_id)
        ]
    }


@router.post("/{project_id}/chats", status_code=201)
def new_chat_session(
    project_id: str, services: Services = Depends(get_services)
):
    if services.store.get_project(project_id) is None:
        raise ProjectNotFound(f"project '{project_id}' not found")
    chat = services.store.create_project_chat_session(project_id)
    return {"id": chat.id, "title": chat.title}


@router.post("/{project_id}/tasks", status_code=201)
def create_task(
    project_id: str,
    body: CreateTaskRequest,
    services: Services = Depends(get_services),
):
    if services.store.get_project(project_id) is None:
        raise ProjectNotFound(f"project '{project_id}' not found")
    task = services.store.create_task(project_id, body.title, body.description)
    return asdict(task)


@router.get("/{project_id}/tasks/{task_id}")
def get_task(
    project_id: str, task_id: str, services: Services = Depends(get_services)
):
    task = services.store.get_task(task_id)
    if task is None or task.project_id != project_id:
        raise TaskNotFound(f"task '{task_id}' not found")
    return asdict(task)

"""Per-application services created in the lifespan."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from flowcore.store import ChatStore
from flowcore.stream import (
    AbortHandler,
    ResumeHandler,
    StreamBackend,
    StreamSessionController,
)


@dataclass
class Services:
    store: ChatStore
    backend: StreamBackend
    controller: StreamSessionController
    resume: ResumeHandler
    abort: AbortHandler


def get_services(request: Request) -> Services:
    return request.app.state.services

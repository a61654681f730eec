"""Central error taxonomy.

Every ``error_type`` surfaced to a client (HTTP error body, ``error`` stream
chunk, event payload) must be one of the codes below.
"""
from __future__ import annotations

import asyncio

_ALLOWED_ERROR_TYPES = {
    # lookup
    "chat-not-found",
    "task-not-found",
    "project-not-found",
    "stream-not-found",
    # stream lifecycle
    "stream-conflict",
    "aborted",
    "timeout",
    "generation-error",
    # request
    "invalid-params",
    # infra
    "broker-unavailable",
    "storage-error",
    "event-handler-error",
    "config-out-of-range",
}


def validate_error_type(code: str) -> str:
    if code not in _ALLOWED_ERROR_TYPES:
        raise ValueError(f"Unknown error_type '{code}' (not in taxonomy)")
    return code


def map_exception(e: BaseException, phase: str) -> str:
    """Map an arbitrary exception to a taxonomy code for *phase*.

    phase: generation | broker | storage
    """
    error_type = getattr(e, "error_type", None)
    if isinstance(error_type, str) and error_type in _ALLOWED_ERROR_TYPES:
        return error_type
    name = e.__class__.__name__.lower()
    msg = str(e).lower()
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if phase == "generation":
        if isinstance(e, asyncio.CancelledError):
            return "aborted"
        if "abort" in name or "cancel" in name:
            return "aborted"
        if "timeout" in name or "timeout" in msg:
            return "timeout"
        return "generation-error"
    if phase == "broker":
        return "broker-unavailable"
    if phase == "storage":
        return "storage-error"
    return "generation-error"


__all__ = ["validate_error_type", "map_exception"]

"""Streaming exception hierarchy.

Each exception carries an ``error_type`` from ``flowcore.errors``; the API
layer maps it to an HTTP status. "Nothing to resume/abort" is a normal
result, not an exception.
"""


class StreamError(Exception):
    """Base streaming exception."""

    error_type = "generation-error"


class ChatNotFound(StreamError):
    error_type = "chat-not-found"


class TaskNotFound(StreamError):
    error_type = "task-not-found"


class ProjectNotFound(StreamError):
    error_type = "project-not-found"


class StreamNotFound(StreamError):
    """Append/close on a stream id the registry does not know (or closed)."""

    error_type = "stream-not-found"


class StreamAlreadyActive(StreamError):
    """A generation is already running for the chat."""

    error_type = "stream-conflict"


class BrokerUnavailable(StreamError):
    """Registry or pubsub transport failed.

    Raised after local side effects (pointer clear) were applied.
    """

    error_type = "broker-unavailable"

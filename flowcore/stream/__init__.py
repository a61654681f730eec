"""Resumable, abortable streaming core.

Components:
    codec       chunk framing (SSE ``data:`` records, ``[DONE]`` terminator)
    registry    durable stream records (memory / Redis Streams)
    controller  one generation run per chat, persisted exactly once
    resume      reattach to a chat's active stream
    abort       cross-process abort signal + handler
"""
from .exceptions import (  # noqa: F401
    BrokerUnavailable,
    ChatNotFound,
    ProjectNotFound,
    StreamAlreadyActive,
    StreamError,
    StreamNotFound,
    TaskNotFound,
)
from .codec import (  # noqa: F401
    DONE_MARKER,
    STREAM_HEADERS,
    FrameDecoder,
    decode_frames,
    decode_stream,
    encode_chunk,
    encode_done,
)
from .cancellation import CancellationToken  # noqa: F401
from .assembler import MessageAssembler  # noqa: F401
from .registry import MemoryStreamRegistry, StreamRegistry  # noqa: F401
from .redis_registry import RedisStreamRegistry  # noqa: F401
from .abort import (  # noqa: F401
    ABORT_MESSAGE,
    AbortHandler,
    AbortOutcome,
    abort_channel,
)
from .resume import ResumeHandler  # noqa: F401
from .controller import (  # noqa: F401
    GenerationRun,
    RunOutcome,
    StreamSessionController,
)
from .backend import StreamBackend, create_backend  # noqa: F401

__all__ = [
    "ABORT_MESSAGE",
    "AbortHandler",
    "AbortOutcome",
    "BrokerUnavailable",
    "CancellationToken",
    "ChatNotFound",
    "DONE_MARKER",
    "FrameDecoder",
    "GenerationRun",
    "MemoryStreamRegistry",
    "MessageAssembler",
    "ProjectNotFound",
    "RedisStreamRegistry",
    "ResumeHandler",
    "RunOutcome",
    "STREAM_HEADERS",
    "StreamAlreadyActive",
    "StreamBackend",
    "StreamError",
    "StreamNotFound",
    "StreamRegistry",
    "StreamSessionController",
    "TaskNotFound",
    "abort_channel",
    "create_backend",
    "decode_frames",
    "decode_stream",
    "encode_chunk",
    "encode_done",
]

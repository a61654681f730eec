"""Streaming schemas: registry/pubsub backend and broker connection."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StreamConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field("memory", pattern="^(memory|redis)$")
    key_prefix: str = "flowdesk:streams:"
    abort_channel_prefix: str = "flowdesk:abort:"
    # grace period a closed stream stays resumable
    retention_seconds: float = Field(60.0, ge=0)
    # hard cap for streams that were never closed (crashed producer)
    max_stream_age_seconds: float = Field(24 * 60 * 60, gt=0)
    sweep_interval_s: float = Field(30.0, gt=0)
    abort_publish_timeout_s: float = Field(2.0, gt=0)
    read_block_ms: int = Field(1000, gt=0)


class BrokerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # None -> REDIS_URL environment variable
    redis_url: str | None = None
    socket_timeout_s: float = Field(5.0, gt=0)

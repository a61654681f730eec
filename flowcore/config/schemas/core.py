"""Core/system schemas: storage and agent runtime."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field("memory", pattern="^(memory|sqlite)$")
    sqlite_path: str = "data/flowdesk.db"


class AgentConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_delay_ms: int = Field(100, ge=0)
    reply_text: str = "Hello World"
    prompt_tokens: int = Field(1000, ge=0)
    completion_tokens: int = Field(2000, ge=0)

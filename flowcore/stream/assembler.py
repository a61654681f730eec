"""Rebuild the assistant message from the chunks a run appended.

Applying exactly the chunks that reached the registry keeps the persisted
message identical to what every reader saw, including partial output of an
aborted run.
"""
from __future__ import annotations

from typing import Any

from flowcore.agent.types import Usage


class MessageAssembler:
    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        self.parts: list[dict[str, Any]] = []
        self._blocks: dict[str, dict[str, Any]] = {}
        self._tools: dict[str, dict[str, Any]] = {}
        self.finish_reason: str | None = None
        self.usage = Usage()
        self.error_text: str | None = None
        self.aborted = False

    def apply(self, chunk: dict[str, Any]) -> None:
        kind = chunk.get("type")
        if kind in ("text-start", "reasoning-start"):
            part = {"type": kind.split("-")[0], "text": ""}
            self._blocks[chunk["id"]] = part
            self.parts.append(part)
        elif kind in ("text-delta", "reasoning-delta"):
            part = self._blocks.get(chunk["id"])
            if part is None:
                # delta without start: open the block implicitly
                part = {"type": kind.split("-")[0], "text": ""}
                self._blocks[chunk["id"]] = part
                self.parts.append(part)
            part["text"] += chunk.get("delta", "")
        elif kind in ("text-end", "reasoning-end"):
            self._blocks.pop(chunk["id"], None)
        elif kind == "tool-input-available":
            part = {
                "type": f"tool-{chunk['toolName']}",
                "toolCallId": chunk["toolCallId"],
                "state": "input-available",
                "input": chunk.get("input"),
            }
            self._tools[chunk["toolCallId"]] = part
            self.parts.append(part)
        elif kind == "tool-output-available":
            part = self._tools.get(chunk["toolCallId"])
            if part is None:
                part = {
                    "type": f"tool-{chunk.get('toolName', 'unknown')}",
                    "toolCallId": chunk["toolCallId"],
                    "input": None,
                }
                self._tools[chunk["toolCallId"]] = part
                self.parts.append(part)
            part["state"] = "output-available"
            part["output"] = chunk.get("output")
        elif kind == "error":
            self.error_text = chunk.get("errorText")
        elif kind == "abort":
            self.aborted = True
        elif kind == "finish":
            self.finish_reason = chunk.get("finishReason")
            self.usage = Usage.from_dict(chunk.get("usage"))
        # "start" carries only the message id

    @property
    def text(self) -> str:
        return "".join(p["text"] for p in self.parts if p["type"] == "text")

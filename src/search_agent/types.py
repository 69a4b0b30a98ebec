"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union


@dataclass(slots=True)
class CanonicalResult:
    """A normalized upstream search hit."""

    source_id: str
    url: str
    title: str | None = None
    body_text: str | None = None
    published_at: datetime | None = None
    highlights: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    relevance: float | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.source_id, "url": self.url}
        if self.title is not None:
            payload["title"] = self.title
        if self.body_text is not None:
            payload["text"] = self.body_text
        if self.published_at is not None:
            payload["publishedDate"] = self.published_at.isoformat()
        payload["highlights"] = list(self.highlights)
        payload.update(self.extra)
        return payload


@dataclass(slots=True)
class ToolCall:
    """A tool invocation as emitted by the model, before validation."""

    tool_name: str
    raw_arguments: Any
    call_id: str


@dataclass(slots=True)
class ToolResult:
    """Outcome of a tool execution; `error` marks a degraded result."""

    payload: dict[str, Any]
    error: str | None = None

    @classmethod
    def success(cls, payload: dict[str, Any]) -> "ToolResult":
        return cls(payload=payload)

    @classmethod
    def failure(cls, message: str, payload: dict[str, Any] | None = None) -> "ToolResult":
        return cls(payload=payload if payload is not None else {"results": []}, error=message)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        if self.error is None:
            return dict(self.payload)
        return {**self.payload, "error": self.error}


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ToolCallEvent:
    call_id: str
    tool_name: str
    args: Any

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "tool-call",
            "callId": self.call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass(slots=True, frozen=True)
class ToolResultEvent:
    call_id: str
    tool_name: str
    result: dict[str, Any]
    args: Any = None

    def to_frame(self) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "type": "tool-result",
            "callId": self.call_id,
            "toolName": self.tool_name,
            "result": self.result,
        }
        if self.args is not None:
            frame["args"] = self.args
        return frame


@dataclass(slots=True, frozen=True)
class TextDeltaEvent:
    text: str

    def to_frame(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    message: str

    def to_frame(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


StreamEvent = Union[ToolCallEvent, ToolResultEvent, TextDeltaEvent, ErrorEvent]

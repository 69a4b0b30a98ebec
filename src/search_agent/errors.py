"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations

from typing import Any


class SearchAgentError(Exception):
    """Base class for all search agent failures."""


class ToolCallError(SearchAgentError):
    """A tool call could not be executed as emitted by the model."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class UnknownToolError(ToolCallError):
    """The model named a tool outside the registry or domain whitelist."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class ToolArgumentsError(ToolCallError):
    """Tool arguments failed schema validation and need repair."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(tool_name, f"Invalid arguments for {tool_name}: {message}")
        self.errors = errors or []


class ToolSelectionError(SearchAgentError):
    """Phase 1 produced no usable tool call."""


class UpstreamError(SearchAgentError):
    """An upstream provider returned an unusable response."""


class StreamClosedError(SearchAgentError):
    """The outbound stream no longer accepts writes."""


class RateLimitExceeded(SearchAgentError):
    """The caller has exhausted its request allowance."""

    def __init__(self, identity: str, retry_after_seconds: float) -> None:
        super().__init__(f"Rate limit exceeded for {identity}")
        self.identity = identity
        self.retry_after_seconds = retry_after_seconds

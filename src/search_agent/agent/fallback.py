"""Well-formed terminal frames for a turn that cannot complete."""

from __future__ import annotations

import structlog

from search_agent.agent.domains import DomainConfig
from search_agent.stream import StreamSink
from search_agent.types import TextDeltaEvent, ToolResultEvent

logger = structlog.get_logger(__name__)

FALLBACK_CALL_ID = "fallback-tool-call"
APOLOGY_TEXT = "I'm sorry, but I encountered an error processing your request. Please try again."


async def emit_fallback(sink: StreamSink, original_user_text: str, domain: DomainConfig) -> None:
    """Write an empty result for the domain's primary tool, then the apology.

    The tool name is a best guess so the client has a result frame to render;
    it does not mean the tool ran.
    """
    logger.info("orchestrator.fallback", domain=domain.domain_id, tool=domain.primary_tool)
    await sink.write(
        ToolResultEvent(
            call_id=FALLBACK_CALL_ID,
            tool_name=domain.primary_tool,
            result={"results": []},
            args={"query": original_user_text},
        )
    )
    await sink.write(TextDeltaEvent(text=APOLOGY_TEXT))

"""One-shot structured-output repair of invalid tool-call arguments."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date
from typing import Any

import structlog

from search_agent.agent.registry import ToolSpec
from search_agent.errors import ToolCallError, UnknownToolError
from search_agent.types import ToolCall

logger = structlog.get_logger(__name__)


class ArgumentRepairer:
    """Rewrites a tool call's arguments against the tool's declared schema.

    Repair is attempted once per call. Calls naming an unknown tool are never
    repaired; the caller reports them as tool-selection errors.
    """

    def __init__(self, *, llm: Any, today: Callable[[], date] = date.today) -> None:
        self.llm = llm
        self._today = today

    async def repair(
        self,
        tool_call: ToolCall,
        spec: ToolSpec | None,
        error: ToolCallError,
    ) -> dict[str, Any] | None:
        if isinstance(error, UnknownToolError) or spec is None:
            logger.info("tool.repair.skipped_unknown_tool", tool=tool_call.tool_name)
            return None

        logger.info("tool.repair.start", tool=tool_call.tool_name, error=str(error))
        try:
            repaired = await self.llm.generate_object(
                spec.args_schema,
                prompt=self._build_prompt(tool_call, spec),
            )
        except Exception as exc:
            logger.warning("tool.repair.failed", tool=tool_call.tool_name, error=str(exc))
            return None
        return repaired.model_dump(mode="json", exclude_none=True)

    def _build_prompt(self, tool_call: ToolCall, spec: ToolSpec) -> str:
        today = self._today()
        return "\n".join(
            [
                f'The model tried to call the tool "{tool_call.tool_name}" with the following arguments:',
                _dump_arguments(tool_call.raw_arguments),
                "The tool accepts the following schema:",
                json.dumps(spec.parameter_schema()),
                "Please fix the arguments.",
                f"Today's date is {today:%B} {today.day}, {today.year}",
            ]
        )


def _dump_arguments(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    return json.dumps(raw, default=str)

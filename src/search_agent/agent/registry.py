"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Iterable
from time import perf_counter
from typing import Any

import structlog
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from search_agent.errors import ToolArgumentsError, UnknownToolError
from search_agent.types import ToolResult, ToolTrace

logger = structlog.get_logger(__name__)

ToolObserver = Callable[[ToolTrace], None]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation.

    Fail-soft tools convert any handler exception into a `ToolResult` carrying
    `failure_message`; fail-loud tools let the exception propagate.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Awaitable[ToolResult]]
    tags: list[str] = Field(default_factory=list)
    fail_soft: bool = True
    failure_message: str = "The tool failed. Please try again later."

    def validate_arguments(self, payload: Any) -> BaseModel:
        if payload is None:
            payload = {}
        if isinstance(payload, str):
            try:
                payload = json.loads(payload) if payload.strip() else {}
            except json.JSONDecodeError as exc:
                raise ToolArgumentsError(self.name, f"arguments are not valid JSON ({exc.msg})") from exc
        try:
            return self.args_schema.model_validate(payload)
        except ValidationError as exc:
            raise ToolArgumentsError(
                self.name,
                str(exc),
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

    def parameter_schema(self) -> dict[str, Any]:
        return self.args_schema.model_json_schema()


class ToolRegistry:
    """Stores tool specs, validates arguments and runs handlers."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)
        return spec

    def has(self, name: str) -> bool:
        return name in self._tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def validate(self, name: str, payload: Any) -> BaseModel:
        return self.get(name).validate_arguments(payload)

    async def invoke(
        self,
        name: str,
        arguments: BaseModel,
        *,
        observer: ToolObserver | None = None,
    ) -> ToolResult:
        """Run an already-validated call. Fail-soft errors become `ToolResult`s."""
        spec = self.get(name)
        start = perf_counter()
        try:
            result = await spec.handler(arguments)
        except Exception as exc:
            if not spec.fail_soft:
                _notify(observer, spec, arguments, start, error=str(exc))
                raise
            logger.warning("tool.execute.failed", tool=name, error=str(exc))
            result = ToolResult.failure(spec.failure_message)

        _notify(observer, spec, arguments, start, result=result)
        return result

    async def execute(
        self,
        name: str,
        payload: Any,
        *,
        observer: ToolObserver | None = None,
    ) -> ToolResult:
        """Validate and run a call; invalid arguments raise `ToolArgumentsError`."""
        arguments = self.validate(name, payload)
        return await self.invoke(name, arguments, observer=observer)

    def tool_schemas(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """OpenAI-format tool definitions for `bind_tools`; calls still go through `execute`."""
        selected = self.specs() if names is None else [self.get(name) for name in names]
        schemas: list[dict[str, Any]] = []
        for spec in selected:
            schema = convert_to_openai_tool(spec.args_schema)
            schema["function"]["name"] = spec.name
            schema["function"]["description"] = spec.description
            schemas.append(schema)
        return schemas


def _notify(
    observer: ToolObserver | None,
    spec: ToolSpec,
    arguments: BaseModel,
    start: float,
    *,
    result: ToolResult | None = None,
    error: str | None = None,
) -> None:
    if observer is None:
        return
    observer(
        ToolTrace(
            name=spec.name,
            input_payload=arguments.model_dump(mode="json"),
            output_preview=json.dumps(result.to_payload(), default=str)[:320] if result else "",
            latency_ms=(perf_counter() - start) * 1000.0,
            error=result.error if result else error,
        )
    )

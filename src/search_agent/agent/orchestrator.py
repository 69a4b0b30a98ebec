"""Two-phase turn orchestration over a single outbound stream."""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

import structlog
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.messages import ToolMessage as LCToolMessage

from search_agent.agent import domains
from search_agent.agent.domains import DomainConfig
from search_agent.agent.fallback import emit_fallback
from search_agent.agent.registry import ToolRegistry
from search_agent.agent.repair import ArgumentRepairer
from search_agent.config import OrchestratorConfig
from search_agent.conversation import ConversationMessage, last_user_text, to_langchain_messages
from search_agent.errors import (
    StreamClosedError,
    ToolArgumentsError,
    ToolCallError,
    ToolSelectionError,
    UnknownToolError,
)
from search_agent.obs.tracing import Timer, TraceStore
from search_agent.stream import StreamSink, pace_words
from search_agent.types import (
    TextDeltaEvent,
    ToolCall,
    ToolCallEvent,
    ToolResult,
    ToolResultEvent,
    ToolTrace,
)

logger = structlog.get_logger(__name__)


class TurnState(str, Enum):
    AWAITING_TOOL_SELECTION = "awaiting_tool_selection"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_FINAL_ANSWER = "awaiting_final_answer"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(slots=True)
class TurnOutcome:
    """Summary of one request/response cycle."""

    domain: str
    state: TurnState
    fallback_used: bool
    tool_traces: list[ToolTrace]
    output_chars: int
    latency_ms: float
    trace_id: str | None = None


@dataclass(slots=True)
class _Turn:
    """Request-scoped mutable state; never shared across requests."""

    domain: DomainConfig
    history: list[BaseMessage]
    state: TurnState = TurnState.AWAITING_TOOL_SELECTION
    pending: dict[str, str] = field(default_factory=dict)
    tool_messages: list[BaseMessage] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    output_chars: int = 0

    def transition(self, state: TurnState) -> None:
        logger.debug("orchestrator.transition", source=self.state.value, target=state.value)
        self.state = state


class TurnOrchestrator:
    """Drives tool selection, tool execution and the streamed final answer.

    Phase 1 forces at least one call from the domain whitelist. Calls run
    concurrently; each result is written in the order the calls were
    received, as soon as it and every earlier call are done. Phase 2 streams
    a tool-free answer word by word. Any failure that leaves no usable
    context ends in the fallback frames, so the stream always terminates
    well-formed.
    """

    def __init__(
        self,
        *,
        llm: Any,
        tool_registry: ToolRegistry,
        repairer: ArgumentRepairer,
        config: OrchestratorConfig | None = None,
        trace_store: TraceStore | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.llm = llm
        self.tool_registry = tool_registry
        self.repairer = repairer
        self.config = config or OrchestratorConfig()
        self.trace_store = trace_store
        self._today = today

    async def run(
        self,
        messages: list[ConversationMessage],
        domain_id: str | None,
        sink: StreamSink,
    ) -> TurnOutcome:
        domain = domains.resolve(domain_id)
        turn = _Turn(domain=domain, history=to_langchain_messages(messages))
        question = last_user_text(messages)
        fallback_used = False

        with Timer() as timer:
            try:
                await asyncio.wait_for(
                    self._drive(turn, sink), timeout=self.config.request_timeout_seconds
                )
            except StreamClosedError:
                logger.info("orchestrator.stream_closed", state=turn.state.value)
                turn.transition(TurnState.ABORTED)
            except asyncio.TimeoutError:
                logger.warning(
                    "orchestrator.deadline_exceeded",
                    state=turn.state.value,
                    timeout_seconds=self.config.request_timeout_seconds,
                )
                fallback_used = await self._recover(turn, sink, question)
            except Exception:
                logger.exception("orchestrator.failed", state=turn.state.value)
                fallback_used = await self._recover(turn, sink, question)

        outcome = TurnOutcome(
            domain=domain.domain_id,
            state=turn.state,
            fallback_used=fallback_used,
            tool_traces=turn.tool_traces,
            output_chars=turn.output_chars,
            latency_ms=timer.elapsed_ms,
        )
        if self.trace_store is not None:
            record = self.trace_store.create_record(
                domain=outcome.domain,
                question=question,
                tool_traces=outcome.tool_traces,
                final_state=outcome.state.value,
                fallback_used=outcome.fallback_used,
                latency_ms=outcome.latency_ms,
                output_chars=outcome.output_chars,
            )
            outcome.trace_id = record.trace_id
        return outcome

    async def _drive(self, turn: _Turn, sink: StreamSink) -> None:
        today = self._today()
        domain = turn.domain

        turn.transition(TurnState.AWAITING_TOOL_SELECTION)
        response = await self.llm.select_tools(
            turn.history,
            tools=self.tool_registry.tool_schemas(domain.allowed_tool_names),
            system_prompt=domain.tool_system_prompt(today),
        )
        calls = parse_tool_calls(response)
        if not calls:
            raise ToolSelectionError("model returned no tool call")

        turn.transition(TurnState.EXECUTING_TOOLS)
        for call in calls:
            await sink.write(
                ToolCallEvent(call_id=call.call_id, tool_name=call.tool_name, args=call.raw_arguments)
            )
            turn.pending[call.call_id] = call.tool_name

        tasks = [
            asyncio.create_task(self._resolve_call(call, domain, turn.tool_traces.append))
            for call in calls
        ]
        try:
            await self._emit_results(calls, tasks, turn, sink)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        turn.tool_messages = _tool_messages(calls, [task.result() for task in tasks])

        turn.transition(TurnState.AWAITING_FINAL_ANSWER)
        chunks = self.llm.stream_text(
            [*turn.history, *turn.tool_messages],
            system_prompt=domain.answer_system_prompt(today),
        )

        turn.transition(TurnState.STREAMING)
        async for text in pace_words(chunks, delay_seconds=self.config.word_delay_ms / 1000.0):
            await sink.write(TextDeltaEvent(text=text))
            turn.output_chars += len(text)

        turn.transition(TurnState.DONE)

    async def _emit_results(
        self,
        calls: list[ToolCall],
        tasks: list[asyncio.Task[ToolResult]],
        turn: _Turn,
        sink: StreamSink,
    ) -> None:
        """Write results in call order; a failing call raises as soon as it fails."""
        next_index = 0
        running = set(tasks)
        while next_index < len(tasks):
            done, running = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
            while next_index < len(tasks) and tasks[next_index].done():
                call = calls[next_index]
                await sink.write(
                    ToolResultEvent(
                        call_id=call.call_id,
                        tool_name=call.tool_name,
                        result=tasks[next_index].result().to_payload(),
                    )
                )
                turn.pending.pop(call.call_id, None)
                next_index += 1

    async def _resolve_call(
        self,
        call: ToolCall,
        domain: DomainConfig,
        observer: Callable[[ToolTrace], None],
    ) -> ToolResult:
        """Validate, repair at most once, then execute a single call."""
        spec = None
        error: ToolCallError
        if call.tool_name not in domain.allowed_tool_names or not self.tool_registry.has(call.tool_name):
            error = UnknownToolError(call.tool_name)
        else:
            spec = self.tool_registry.get(call.tool_name)
            try:
                arguments = spec.validate_arguments(call.raw_arguments)
            except ToolArgumentsError as exc:
                error = exc
            else:
                return await self.tool_registry.invoke(call.tool_name, arguments, observer=observer)

        logger.info("orchestrator.tool_call_invalid", tool=call.tool_name, error=str(error))
        repaired = await self.repairer.repair(call, spec, error)
        if repaired is None:
            return ToolResult.failure(f"Tool selection error: {error}")

        try:
            return await self.tool_registry.execute(call.tool_name, repaired, observer=observer)
        except ToolArgumentsError as exc:
            logger.warning("orchestrator.repair_ineffective", tool=call.tool_name, error=str(exc))
            return ToolResult.failure(f"Tool arguments were still invalid after repair: {exc}")

    async def _recover(self, turn: _Turn, sink: StreamSink, question: str) -> bool:
        turn.transition(TurnState.FAILED)
        try:
            for call_id, tool_name in list(turn.pending.items()):
                await sink.write(
                    ToolResultEvent(
                        call_id=call_id,
                        tool_name=tool_name,
                        result=ToolResult.failure("The tool call did not complete.").to_payload(),
                    )
                )
            turn.pending.clear()
            await emit_fallback(sink, question, turn.domain)
        except StreamClosedError:
            logger.info("orchestrator.stream_closed_during_fallback")
            return False
        return True


def parse_tool_calls(message: AIMessage) -> list[ToolCall]:
    """Parsed calls first, then calls whose arguments were not valid JSON.

    Call ids are made unique so every call gets exactly one result frame.
    """
    calls: list[ToolCall] = []
    seen: set[str] = set()
    for entry in [*message.tool_calls, *message.invalid_tool_calls]:
        call_id = entry.get("id") or _new_call_id()
        if call_id in seen:
            call_id = _new_call_id()
        seen.add(call_id)
        calls.append(
            ToolCall(
                tool_name=entry.get("name") or "",
                raw_arguments=entry.get("args"),
                call_id=call_id,
            )
        )
    return calls


def _tool_messages(calls: list[ToolCall], results: list[ToolResult]) -> list[BaseMessage]:
    assistant = AIMessage(
        content="",
        tool_calls=[
            {
                "name": call.tool_name,
                "args": call.raw_arguments if isinstance(call.raw_arguments, dict) else {},
                "id": call.call_id,
            }
            for call in calls
        ],
    )
    replies: list[BaseMessage] = [
        LCToolMessage(
            content=json.dumps(result.to_payload(), ensure_ascii=False, default=str),
            tool_call_id=call.call_id,
        )
        for call, result in zip(calls, results, strict=True)
    ]
    return [assistant, *replies]


def _new_call_id() -> str:
    return f"call-{uuid.uuid4().hex[:12]}"

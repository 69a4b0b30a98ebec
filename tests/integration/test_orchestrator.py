import asyncio
import gc

import pytest
from langchain_core.messages import AIMessage
from pydantic import BaseModel

from conftest import CollectingSink, ScriptedLLM, youtube_search_item, youtube_video
from search_agent.agent.fallback import APOLOGY_TEXT, FALLBACK_CALL_ID
from search_agent.agent.orchestrator import TurnState, parse_tool_calls
from search_agent.agent.registry import ToolRegistry, ToolSpec
from search_agent.conversation import UserMessage
from search_agent.obs.tracing import TraceStore
from search_agent.types import ToolResult

QUESTION = "What are people saying about async Rust?"


def _messages(text: str = QUESTION) -> list[UserMessage]:
    return [UserMessage(role="user", content=text)]


def _call(name: str, args, call_id: str = "call-1") -> dict:
    return {"name": name, "args": args, "id": call_id}


def _types(frames: list[dict]) -> list[str]:
    return [frame["type"] for frame in frames]


def _assert_fallback_tail(frames: list[dict], tool_name: str) -> None:
    result, text = frames[-2:]
    assert result == {
        "type": "tool-result",
        "callId": FALLBACK_CALL_ID,
        "toolName": tool_name,
        "result": {"results": []},
        "args": {"query": QUESTION},
    }
    assert text == {"type": "text", "text": APOLOGY_TEXT}


class QueryInput(BaseModel):
    query: str


class TranslateInput(BaseModel):
    text: str
    to: str


def _fake_registry(youtube_handler, translate_handler, *, translate_fail_soft: bool = False) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(name="youtube_search", description="videos", args_schema=QueryInput, handler=youtube_handler)
    )
    registry.register(
        ToolSpec(
            name="text_translate",
            description="translate",
            args_schema=TranslateInput,
            handler=translate_handler,
            fail_soft=translate_fail_soft,
        )
    )
    return registry


@pytest.mark.asyncio
async def test_single_search_streams_call_result_and_answer(upstream, build_orchestrator) -> None:
    upstream.youtube_items = [youtube_search_item(f"video{n:04d}") for n in range(3)]
    upstream.video_details = {f"video{n:04d}": youtube_video(f"video{n:04d}") for n in range(3)}
    llm = ScriptedLLM(tool_calls=[_call("youtube_search", {"query": "async rust"})])
    sink = CollectingSink()

    outcome = await build_orchestrator(llm).run(_messages(), "youtube", sink)

    frames = sink.frames
    assert _types(frames[:2]) == ["tool-call", "tool-result"]
    assert frames[0] == {
        "type": "tool-call",
        "callId": "call-1",
        "toolName": "youtube_search",
        "args": {"query": "async rust"},
    }
    assert frames[1]["callId"] == "call-1"
    assert len(frames[1]["result"]["results"]) == 3
    assert "error" not in frames[1]["result"]
    assert set(_types(frames[2:])) == {"text"}
    assert "".join(frame["text"] for frame in frames[2:]) == "Here is what people are saying."
    assert outcome.state is TurnState.DONE
    assert not outcome.fallback_used
    assert llm.select_calls[0]["tools"] == ["youtube_search", "text_translate"]
    assert "Monday, October 19, 2026" in llm.select_calls[0]["system"]


@pytest.mark.asyncio
async def test_empty_search_is_not_an_error(build_orchestrator) -> None:
    llm = ScriptedLLM(tool_calls=[_call("youtube_search", {"query": "zzzz"})])
    sink = CollectingSink()

    await build_orchestrator(llm).run(_messages(), "youtube", sink)

    assert sink.frames[1]["result"] == {"results": []}
    assert "text" in _types(sink.frames)


@pytest.mark.asyncio
async def test_upstream_failure_is_reported_and_answer_still_streams(upstream, build_orchestrator) -> None:
    upstream.network_error = True
    llm = ScriptedLLM(tool_calls=[_call("youtube_search", {"query": "rust"})])
    sink = CollectingSink()

    outcome = await build_orchestrator(llm).run(_messages(), "youtube", sink)

    result = sink.frames[1]["result"]
    assert result["results"] == []
    assert result["error"]
    assert set(_types(sink.frames[2:])) == {"text"}
    assert outcome.state is TurnState.DONE
    # The degraded result is handed to the answer phase.
    tool_reply = llm.stream_calls[0]["messages"][-1]
    assert "error" in tool_reply.content


@pytest.mark.asyncio
async def test_tool_selection_past_deadline_emits_only_fallback(build_orchestrator) -> None:
    llm = ScriptedLLM(select_delay=1.0)
    sink = CollectingSink()

    outcome = await build_orchestrator(llm, timeout=0.05).run(_messages(), "youtube", sink)

    assert len(sink.frames) == 2
    _assert_fallback_tail(sink.frames, "youtube_search")
    assert outcome.state is TurnState.FAILED
    assert outcome.fallback_used


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "llm",
    [
        ScriptedLLM(select_error=RuntimeError("model unavailable")),
        ScriptedLLM(tool_calls=[]),
    ],
    ids=["selection-error", "no-tool-call"],
)
async def test_unusable_tool_selection_emits_only_fallback(llm, build_orchestrator) -> None:
    sink = CollectingSink()

    await build_orchestrator(llm).run(_messages(), None, sink)

    assert len(sink.frames) == 2
    _assert_fallback_tail(sink.frames, "hackernews_search")


@pytest.mark.asyncio
async def test_invalid_arguments_are_repaired_once(upstream, build_orchestrator) -> None:
    llm = ScriptedLLM(
        tool_calls=[_call("reddit_search", {"q": "uv"})],
        objects=[{"query": "uv"}],
    )
    sink = CollectingSink()

    await build_orchestrator(llm).run(_messages(), "reddit", sink)

    assert len(llm.object_calls) == 1
    assert sink.frames[1]["result"] == {"query": "uv", "results": [], "timeRange": "anytime"}
    # The client sees the arguments the model emitted.
    assert sink.frames[0]["args"] == {"q": "uv"}


@pytest.mark.asyncio
async def test_malformed_json_arguments_go_through_repair(build_orchestrator) -> None:
    llm = ScriptedLLM(
        invalid_tool_calls=[
            {"name": "reddit_search", "args": '{"query": "uv', "id": "call-7", "error": "bad json"}
        ],
        objects=[{"query": "uv"}],
    )
    sink = CollectingSink()

    await build_orchestrator(llm).run(_messages(), "reddit", sink)

    assert sink.frames[0]["callId"] == "call-7"
    assert sink.frames[1]["result"]["query"] == "uv"
    assert "error" not in sink.frames[1]["result"]


class CountingRepairer:
    def __init__(self, repaired) -> None:
        self.repaired = repaired
        self.calls = 0

    async def repair(self, tool_call, spec, error):
        self.calls += 1
        return self.repaired


@pytest.mark.asyncio
async def test_repair_that_is_still_invalid_is_not_retried(build_orchestrator) -> None:
    llm = ScriptedLLM(tool_calls=[_call("reddit_search", {"q": "uv"})])
    repairer = CountingRepairer({"q": "still wrong"})
    sink = CollectingSink()

    outcome = await build_orchestrator(llm, repairer=repairer).run(_messages(), "reddit", sink)

    assert repairer.calls == 1
    assert "still invalid after repair" in sink.frames[1]["result"]["error"]
    assert outcome.state is TurnState.DONE


@pytest.mark.asyncio
@pytest.mark.parametrize("tool_name", ["bing_search", "reddit_search"])
async def test_tools_outside_the_domain_are_selection_errors(tool_name, build_orchestrator) -> None:
    llm = ScriptedLLM(tool_calls=[_call(tool_name, {"query": "rust"})])
    sink = CollectingSink()

    outcome = await build_orchestrator(llm).run(_messages(), "youtube", sink)

    assert llm.object_calls == []
    result = sink.frames[1]["result"]
    assert result == {"results": [], "error": f"Tool selection error: Unknown tool: {tool_name}"}
    assert outcome.state is TurnState.DONE


@pytest.mark.asyncio
async def test_results_are_emitted_in_call_order(build_orchestrator) -> None:
    finished: list[str] = []

    async def slow_search(data: QueryInput) -> ToolResult:
        await asyncio.sleep(0.05)
        finished.append("youtube_search")
        return ToolResult.success({"results": [{"id": "v1"}]})

    async def fast_translate(data: TranslateInput) -> ToolResult:
        finished.append("text_translate")
        return ToolResult.success({"translatedText": "hola", "detectedLanguage": "en"})

    llm = ScriptedLLM(
        tool_calls=[
            _call("youtube_search", {"query": "rust"}, "call-a"),
            _call("text_translate", {"text": "hello", "to": "es"}, "call-b"),
        ]
    )
    registry = _fake_registry(slow_search, fast_translate)
    sink = CollectingSink()

    await build_orchestrator(llm, registry=registry).run(_messages(), "youtube", sink)

    assert finished == ["text_translate", "youtube_search"]
    head = [(frame["type"], frame["callId"]) for frame in sink.frames[:4]]
    assert head == [
        ("tool-call", "call-a"),
        ("tool-call", "call-b"),
        ("tool-result", "call-a"),
        ("tool-result", "call-b"),
    ]


@pytest.mark.asyncio
async def test_fail_loud_tool_closes_pending_calls_before_fallback(build_orchestrator) -> None:
    async def slow_search(data: QueryInput) -> ToolResult:
        await asyncio.sleep(10)
        return ToolResult.success({"results": []})

    async def broken_translate(data: TranslateInput) -> ToolResult:
        raise RuntimeError("translation model down")

    llm = ScriptedLLM(
        tool_calls=[
            _call("text_translate", {"text": "hello", "to": "es"}, "call-a"),
            _call("youtube_search", {"query": "rust"}, "call-b"),
        ]
    )
    sink = CollectingSink()

    outcome = await build_orchestrator(
        llm, registry=_fake_registry(slow_search, broken_translate)
    ).run(_messages(), "youtube", sink)

    frames = sink.frames
    assert _types(frames) == ["tool-call", "tool-call", "tool-result", "tool-result", "tool-result", "text"]
    assert [frame["callId"] for frame in frames[2:4]] == ["call-a", "call-b"]
    assert all(frame["result"]["error"] == "The tool call did not complete." for frame in frames[2:4])
    _assert_fallback_tail(frames, "youtube_search")
    assert outcome.state is TurnState.FAILED
    assert llm.stream_calls == []


@pytest.mark.asyncio
async def test_fail_loud_tool_behind_slow_call_fails_fast(build_orchestrator) -> None:
    loop = asyncio.get_running_loop()
    unhandled: list[str] = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _, context: unhandled.append(context["message"]))

    async def hanging_search(data: QueryInput) -> ToolResult:
        await asyncio.sleep(10)
        return ToolResult.success({"results": []})

    async def broken_translate(data: TranslateInput) -> ToolResult:
        raise RuntimeError("translation model down")

    llm = ScriptedLLM(
        tool_calls=[
            _call("youtube_search", {"query": "rust"}, "call-a"),
            _call("text_translate", {"text": "hello", "to": "es"}, "call-b"),
        ]
    )
    sink = CollectingSink()
    orchestrator = build_orchestrator(llm, registry=_fake_registry(hanging_search, broken_translate))

    try:
        outcome = await asyncio.wait_for(orchestrator.run(_messages(), "youtube", sink), timeout=2.0)
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(previous_handler)

    frames = sink.frames
    assert _types(frames) == ["tool-call", "tool-call", "tool-result", "tool-result", "tool-result", "text"]
    assert [frame["callId"] for frame in frames[2:4]] == ["call-a", "call-b"]
    _assert_fallback_tail(frames, "youtube_search")
    assert outcome.state is TurnState.FAILED
    assert outcome.latency_ms < 2000
    assert unhandled == []



@pytest.mark.asyncio
async def test_deadline_during_tool_execution_closes_pending_call(build_orchestrator) -> None:
    async def hanging_search(data: QueryInput) -> ToolResult:
        await asyncio.sleep(10)
        return ToolResult.success({"results": []})

    async def translate(data: TranslateInput) -> ToolResult:
        return ToolResult.success({})

    llm = ScriptedLLM(tool_calls=[_call("youtube_search", {"query": "rust"})])
    sink = CollectingSink()

    outcome = await build_orchestrator(
        llm, registry=_fake_registry(hanging_search, translate), timeout=0.1
    ).run(_messages(), "youtube", sink)

    assert _types(sink.frames) == ["tool-call", "tool-result", "tool-result", "text"]
    assert sink.frames[1]["callId"] == "call-1"
    assert sink.frames[1]["result"]["error"] == "The tool call did not complete."
    _assert_fallback_tail(sink.frames, "youtube_search")
    assert outcome.fallback_used


@pytest.mark.asyncio
async def test_answer_failure_mid_stream_appends_fallback(build_orchestrator) -> None:
    llm = ScriptedLLM(
        tool_calls=[_call("youtube_search", {"query": "rust"})],
        answer=["Partial ", "answer "],
        stream_error=RuntimeError("connection reset"),
    )
    sink = CollectingSink()

    outcome = await build_orchestrator(llm).run(_messages(), "youtube", sink)

    frames = sink.frames
    assert _types(frames) == ["tool-call", "tool-result", "text", "text", "tool-result", "text"]
    assert [frame["text"] for frame in frames[2:4]] == ["Partial ", "answer "]
    _assert_fallback_tail(frames, "youtube_search")
    assert outcome.state is TurnState.FAILED
    assert outcome.output_chars == len("Partial answer ")


@pytest.mark.asyncio
async def test_closed_stream_aborts_without_fallback(build_orchestrator) -> None:
    llm = ScriptedLLM(tool_calls=[_call("youtube_search", {"query": "rust"})])
    sink = CollectingSink(fail_after=1)

    outcome = await build_orchestrator(llm).run(_messages(), "youtube", sink)

    assert _types(sink.frames) == ["tool-call"]
    assert outcome.state is TurnState.ABORTED
    assert not outcome.fallback_used
    assert llm.stream_calls == []


@pytest.mark.asyncio
async def test_completed_turn_is_recorded_in_trace_store(build_orchestrator) -> None:
    store = TraceStore()
    llm = ScriptedLLM(tool_calls=[_call("hackernews_search", {"query": "sqlite"})])

    outcome = await build_orchestrator(llm, trace_store=store).run(_messages(), None, CollectingSink())

    record = store.get(outcome.trace_id)
    assert record.domain == "hackernews"
    assert record.question == QUESTION
    assert record.final_state == "done"
    assert [trace.name for trace in record.tool_traces] == ["hackernews_search"]
    assert record.output_chars == len("Here is what people are saying.")
    assert store.summary()["total_requests"] == 1


def test_parse_tool_calls_assigns_unique_ids() -> None:
    message = AIMessage(
        content="",
        tool_calls=[_call("a", {}, "same"), _call("b", {}, "same")],
        invalid_tool_calls=[{"name": "c", "args": "{", "id": None, "error": "bad json"}],
    )

    calls = parse_tool_calls(message)

    assert [call.tool_name for call in calls] == ["a", "b", "c"]
    assert calls[0].call_id == "same"
    assert len({call.call_id for call in calls}) == 3
    assert calls[2].raw_arguments == "{"

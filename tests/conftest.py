import asyncio
import json
from collections.abc import Callable
from datetime import date
from typing import Any

import httpx
import pytest
from langchain_core.messages import AIMessage

from search_agent.agent.orchestrator import TurnOrchestrator
from search_agent.agent.registry import ToolRegistry
from search_agent.agent.repair import ArgumentRepairer
from search_agent.agent.tools import register_search_tools
from search_agent.config import OrchestratorConfig, SearchConfig
from search_agent.errors import StreamClosedError
from search_agent.obs.tracing import TraceStore
from search_agent.retrieval.exa import ExaClient
from search_agent.retrieval.hackernews import HackerNewsClient
from search_agent.retrieval.youtube import YouTubeClient

TODAY = date(2026, 10, 19)


class ScriptedLLM:
    """Duck-typed stand-in for `LLMClient` with canned responses."""

    def __init__(
        self,
        *,
        tool_calls: list[dict[str, Any]] | None = None,
        invalid_tool_calls: list[dict[str, Any]] | None = None,
        answer: list[str] | None = None,
        objects: list[Any] | None = None,
        select_error: BaseException | None = None,
        stream_error: BaseException | None = None,
        select_delay: float = 0.0,
    ) -> None:
        self.tool_calls = tool_calls or []
        self.invalid_tool_calls = invalid_tool_calls or []
        self.answer = answer if answer is not None else ["Here is ", "what people ", "are saying."]
        self.objects = list(objects or [])
        self.select_error = select_error
        self.stream_error = stream_error
        self.select_delay = select_delay
        self.select_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.object_calls: list[dict[str, Any]] = []

    async def select_tools(self, messages, *, tools, system_prompt):
        self.select_calls.append(
            {"messages": list(messages), "tools": [tool["function"]["name"] for tool in tools], "system": system_prompt}
        )
        if self.select_delay:
            await asyncio.sleep(self.select_delay)
        if self.select_error is not None:
            raise self.select_error
        return AIMessage(
            content="",
            tool_calls=self.tool_calls,
            invalid_tool_calls=self.invalid_tool_calls,
        )

    async def stream_text(self, messages, *, system_prompt):
        self.stream_calls.append({"messages": list(messages), "system": system_prompt})
        for piece in self.answer:
            yield piece
        if self.stream_error is not None:
            raise self.stream_error

    async def generate_object(self, schema, *, prompt, system_prompt=None, history=(), temperature=None):
        self.object_calls.append(
            {"schema": schema, "prompt": prompt, "system": system_prompt, "temperature": temperature}
        )
        value = self.objects.pop(0)
        if isinstance(value, BaseException):
            raise value
        return schema.model_validate(value)


class CollectingSink:
    def __init__(self, *, fail_after: int | None = None) -> None:
        self.events: list[Any] = []
        self.fail_after = fail_after

    async def write(self, event) -> None:
        if self.fail_after is not None and len(self.events) >= self.fail_after:
            raise StreamClosedError("client went away")
        self.events.append(event)

    @property
    def frames(self) -> list[dict[str, Any]]:
        return [event.to_frame() for event in self.events]


class FakeUpstream:
    """Routes httpx requests to canned Exa, YouTube and HN responses."""

    def __init__(self) -> None:
        self.exa_results: list[dict[str, Any]] = []
        self.youtube_items: list[dict[str, Any]] = []
        self.video_details: dict[str, dict[str, Any]] = {}
        self.hn_items: dict[str, dict[str, Any]] = {}
        self.failing_ids: set[str] = set()
        self.network_error = False
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_error:
            raise httpx.ConnectError("connection refused", request=request)

        host, path = request.url.host, request.url.path
        if host == "api.exa.ai":
            return httpx.Response(200, json={"results": self.exa_results})
        if host == "www.googleapis.com" and path.endswith("/search"):
            return httpx.Response(200, json={"items": self.youtube_items})
        if host == "www.googleapis.com" and path.endswith("/videos"):
            video_id = request.url.params["id"]
            if video_id in self.failing_ids:
                return httpx.Response(500, json={"error": "backend"})
            details = self.video_details.get(video_id)
            return httpx.Response(200, json={"items": [details] if details else []})
        if host == "hacker-news.firebaseio.com":
            item_id = path.rsplit("/", 1)[-1].removesuffix(".json")
            if item_id in self.failing_ids:
                return httpx.Response(503)
            return httpx.Response(200, json=self.hn_items.get(item_id))
        return httpx.Response(404)

    def exa_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.host == "api.exa.ai"]


def youtube_search_item(video_id: str, title: str = "A video") -> dict[str, Any]:
    return {"id": {"kind": "youtube#video", "videoId": video_id}, "snippet": {"title": title}}


def youtube_video(video_id: str, *, description: str = "") -> dict[str, Any]:
    return {
        "id": video_id,
        "snippet": {
            "title": f"Video {video_id}",
            "channelTitle": "Rustacean Station",
            "channelId": "UC123",
            "description": description,
            "publishedAt": "2026-09-01T10:00:00Z",
            "thumbnails": {"medium": {"url": f"https://i.ytimg.com/{video_id}.jpg"}},
        },
        "statistics": {"viewCount": "1200", "likeCount": "80"},
        "contentDetails": {"duration": "PT12M3S"},
    }


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def build_registry(upstream: FakeUpstream) -> Callable[..., ToolRegistry]:
    def _build(llm: Any, config: SearchConfig | None = None) -> ToolRegistry:
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        registry = ToolRegistry()
        register_search_tools(
            registry,
            exa=ExaClient(http, "exa-key"),
            youtube=YouTubeClient(http, "yt-key"),
            hackernews=HackerNewsClient(http),
            llm=llm,
            config=config,
        )
        return registry

    return _build


@pytest.fixture
def build_orchestrator(build_registry) -> Callable[..., TurnOrchestrator]:
    def _build(
        llm: Any,
        *,
        registry: ToolRegistry | None = None,
        repairer: Any | None = None,
        timeout: float = 5.0,
        trace_store: TraceStore | None = None,
    ) -> TurnOrchestrator:
        return TurnOrchestrator(
            llm=llm,
            tool_registry=registry or build_registry(llm),
            repairer=repairer or ArgumentRepairer(llm=llm, today=lambda: TODAY),
            config=OrchestratorConfig(request_timeout_seconds=timeout, word_delay_ms=0),
            trace_store=trace_store,
            today=lambda: TODAY,
        )

    return _build

"""FastAPI entrypoint for streamed search, suggestions and trace endpoints."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

import httpx
import redis.asyncio as redis
import structlog
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from search_agent.agent import domains
from search_agent.agent.llm import LLMClient, create_chat_model
from search_agent.agent.orchestrator import TurnOrchestrator
from search_agent.agent.registry import ToolRegistry
from search_agent.agent.repair import ArgumentRepairer
from search_agent.agent.suggestions import suggest_questions
from search_agent.agent.tools import register_search_tools
from search_agent.config import Settings
from search_agent.conversation import ConversationMessage
from search_agent.errors import RateLimitExceeded
from search_agent.obs.logging_setup import configure_logging
from search_agent.obs.tracing import TraceStore
from search_agent.ratelimit import RateLimiter, RedisRateLimiter, enforce
from search_agent.retrieval.exa import ExaClient
from search_agent.retrieval.hackernews import HackerNewsClient
from search_agent.retrieval.youtube import YouTubeClient
from search_agent.stream import QueueSink
from search_agent.types import ErrorEvent

logger = structlog.get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class SearchRequest(BaseModel):
    messages: list[ConversationMessage] = Field(min_length=1)
    domain: str | None = None


class SuggestionRequest(BaseModel):
    messages: list[ConversationMessage] = Field(min_length=1)


def create_app(
    settings: Settings | None = None,
    *,
    llm: Any | None = None,
    http_client: httpx.AsyncClient | None = None,
    rate_limiter: RateLimiter | None = None,
    trace_store: TraceStore | None = None,
) -> FastAPI:
    """Build the application; missing credentials raise before anything starts."""

    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL, environment=settings.ENVIRONMENT)

    search_config = settings.search_config()
    http_client = http_client or httpx.AsyncClient(
        timeout=search_config.upstream_timeout_seconds
    )
    llm = llm or LLMClient(create_chat_model(settings))
    trace_store = trace_store or TraceStore()
    redis_client: redis.Redis | None = None
    if rate_limiter is None:
        redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        rate_limiter = RedisRateLimiter(redis_client, settings.rate_limit_config())

    registry = ToolRegistry()
    register_search_tools(
        registry,
        exa=ExaClient(
            http_client,
            settings.EXA_API_KEY,
            timeout_seconds=search_config.upstream_timeout_seconds,
        ),
        youtube=YouTubeClient(
            http_client,
            settings.YOUTUBE_API_KEY,
            timeout_seconds=search_config.upstream_timeout_seconds,
        ),
        hackernews=HackerNewsClient(
            http_client, timeout_seconds=search_config.upstream_timeout_seconds
        ),
        llm=llm,
        config=search_config,
    )
    orchestrator_config = settings.orchestrator_config()
    orchestrator = TurnOrchestrator(
        llm=llm,
        tool_registry=registry,
        repairer=ArgumentRepairer(llm=llm),
        config=orchestrator_config,
        trace_store=trace_store,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("app.startup", domains=domains.domain_ids(), model=settings.OPENAI_MODEL)
        try:
            yield
        finally:
            await http_client.aclose()
            if redis_client is not None:
                await redis_client.aclose()

    app = FastAPI(title="Search Agent", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(_: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded"},
            headers={"Retry-After": str(int(exc.retry_after_seconds))},
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "model": settings.OPENAI_MODEL,
            "domains": domains.domain_ids(),
            "tools": [spec.name for spec in registry.specs()],
            "trace_count": len(trace_store.list_recent(limit=1000)),
        }

    @app.post("/api/search")
    async def search(
        request: SearchRequest,
        x_user_id: str | None = Header(default=None),
    ) -> StreamingResponse:
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Unauthorized")
        await enforce(rate_limiter, x_user_id)

        request_id = uuid.uuid4().hex
        sink = QueueSink(maxsize=orchestrator_config.stream_buffer_size)

        async def _produce() -> None:
            structlog.contextvars.bind_contextvars(
                request_id=request_id, domain=request.domain or domains.DEFAULT_DOMAIN
            )
            try:
                await orchestrator.run(request.messages, request.domain, sink)
            except Exception:
                logger.exception("api.search.failed", request_id=request_id)
                if not sink.closed:
                    await sink.write(ErrorEvent(message="Internal error"))
            finally:
                sink.close()

        task = asyncio.create_task(_produce())

        async def _frames() -> AsyncIterator[str]:
            try:
                async for frame in sink.frames():
                    yield frame
            finally:
                sink.close()
                if not task.done():
                    logger.info("api.search.client_disconnected", request_id=request_id)
                    task.cancel()

        return StreamingResponse(
            _frames(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"X-Request-Id": request_id},
        )

    @app.post("/suggestions")
    async def suggestions(request: SuggestionRequest) -> dict[str, Any]:
        try:
            questions = await suggest_questions(llm, request.messages)
        except Exception as exc:
            logger.warning("api.suggestions.failed", error=str(exc))
            raise HTTPException(status_code=502, detail="Could not generate suggestions") from exc
        return {"questions": questions}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)

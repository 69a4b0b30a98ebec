"""Built-in retrieval and utility tools."""

from __future__ import annotations

from datetime import date
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, field_validator, model_validator

from search_agent.agent.registry import ToolRegistry, ToolSpec
from search_agent.config import SearchConfig
from search_agent.retrieval.exa import ExaClient
from search_agent.retrieval.hackernews import HackerNewsClient
from search_agent.retrieval.normalizers import (
    HackerNewsNormalizer,
    LinkedInNormalizer,
    RedditNormalizer,
    YouTubeNormalizer,
)
from search_agent.retrieval.youtube import YouTubeClient
from search_agent.types import CanonicalResult, ToolResult

logger = structlog.get_logger(__name__)


class DateRangeSearchInput(BaseModel):
    query: str = Field(min_length=1, description="The search query.")
    start_date: str | None = Field(
        default=None, description="Start of the date range in YYYY-MM-DD format."
    )
    end_date: str | None = Field(
        default=None, description="End of the date range in YYYY-MM-DD format."
    )

    @field_validator("start_date", "end_date")
    @classmethod
    def _iso_date(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return date.fromisoformat(value).isoformat()

    @model_validator(mode="after")
    def _ordered_range(self) -> "DateRangeSearchInput":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class HackerNewsSearchInput(DateRangeSearchInput):
    query: str = Field(min_length=1, description="The search query; similar posts are returned.")


class RedditSearchInput(DateRangeSearchInput):
    query: str = Field(
        min_length=1, description="The search query; use u/username to search for a user."
    )


class LinkedInSearchInput(DateRangeSearchInput):
    pass


class YouTubeSearchInput(BaseModel):
    query: str = Field(min_length=1, description="The search query for YouTube videos.")
    order: Literal["relevance", "date", "viewCount", "rating", "title"] | None = Field(
        default=None, description="Result ordering."
    )
    max_results: int | None = Field(
        default=None, ge=1, le=50, description="Number of videos to return."
    )


class TranslateInput(BaseModel):
    text: str = Field(min_length=1, description="The text to translate.")
    to: str = Field(
        min_length=2, description="The language to translate to (e.g., 'fr' for French)."
    )


class TranslationOutput(BaseModel):
    translatedText: str
    detectedLanguage: str


def register_search_tools(
    registry: ToolRegistry,
    *,
    exa: ExaClient,
    youtube: YouTubeClient,
    hackernews: HackerNewsClient,
    llm: Any,
    config: SearchConfig | None = None,
) -> None:
    """Register the default tool set.

    Tools:
    - `hackernews_search`: Exa search over news.ycombinator.com + HN item details.
    - `reddit_search`: Exa search over reddit.com.
    - `linkedin_search`: Exa search over linkedin.com.
    - `youtube_search`: YouTube Data API search + per-video details.
    - `text_translate`: structured-output LLM translation (fails loudly).
    """

    config = config or SearchConfig()
    threshold = config.min_highlight_score
    hn_normalizer = HackerNewsNormalizer(min_highlight_score=threshold)
    reddit_normalizer = RedditNormalizer(min_highlight_score=threshold)
    linkedin_normalizer = LinkedInNormalizer(min_highlight_score=threshold)
    youtube_normalizer = YouTubeNormalizer()

    async def _hackernews(input_data: HackerNewsSearchInput) -> ToolResult:
        raw = await exa.search_and_contents(
            input_data.query,
            include_domains=["news.ycombinator.com"],
            num_results=config.hackernews_num_results,
            start_published_date=input_data.start_date,
            end_published_date=input_data.end_date,
        )
        results = await hn_normalizer.normalize_with_details(raw, hackernews.item)
        return ToolResult.success({"results": _payloads(results)})

    async def _reddit(input_data: RedditSearchInput) -> ToolResult:
        # Exa date filters drop most reddit.com hits; the range is echoed only.
        raw = await exa.search_and_contents(
            input_data.query,
            include_domains=["reddit.com"],
            num_results=config.reddit_num_results,
        )
        results = reddit_normalizer.normalize(raw)
        time_range = (
            f"from {input_data.start_date} to {input_data.end_date}"
            if input_data.start_date and input_data.end_date
            else "anytime"
        )
        return ToolResult.success(
            {"query": input_data.query, "results": _payloads(results), "timeRange": time_range}
        )

    async def _linkedin(input_data: LinkedInSearchInput) -> ToolResult:
        raw = await exa.search_and_contents(
            input_data.query,
            include_domains=["linkedin.com"],
            num_results=config.linkedin_num_results,
            start_published_date=input_data.start_date,
            end_published_date=input_data.end_date,
        )
        return ToolResult.success({"results": _payloads(linkedin_normalizer.normalize(raw))})

    async def _youtube(input_data: YouTubeSearchInput) -> ToolResult:
        raw = await youtube.search_videos(
            input_data.query,
            max_results=input_data.max_results or config.youtube_max_results,
            order=input_data.order,
        )
        if not raw:
            logger.info("youtube_search.no_results", query_preview=input_data.query[:80])
            return ToolResult.success({"results": []})
        results = await youtube_normalizer.normalize_with_details(raw, youtube.video_details)
        return ToolResult.success({"results": _payloads(results)})

    async def _translate(input_data: TranslateInput) -> ToolResult:
        translation = await llm.generate_object(
            TranslationOutput,
            system_prompt="You are a helpful assistant that translates text from one language to another.",
            prompt=f"Translate the following text to {input_data.to} language: {input_data.text}",
        )
        return ToolResult.success(translation.model_dump())

    registry.register(
        ToolSpec(
            name="hackernews_search",
            description="Search Hacker News posts.",
            args_schema=HackerNewsSearchInput,
            handler=_hackernews,
            tags=["search", "hackernews"],
            failure_message="Failed to fetch Hacker News results. Please try again later.",
        )
    )
    registry.register(
        ToolSpec(
            name="reddit_search",
            description="Search Reddit posts.",
            args_schema=RedditSearchInput,
            handler=_reddit,
            tags=["search", "reddit"],
            failure_message="Failed to fetch Reddit results. Please try again later.",
        )
    )
    registry.register(
        ToolSpec(
            name="linkedin_search",
            description="Search LinkedIn posts.",
            args_schema=LinkedInSearchInput,
            handler=_linkedin,
            tags=["search", "linkedin"],
            failure_message="Failed to fetch LinkedIn results. Please try again later.",
        )
    )
    registry.register(
        ToolSpec(
            name="youtube_search",
            description="Search YouTube videos and get detailed video information.",
            args_schema=YouTubeSearchInput,
            handler=_youtube,
            tags=["search", "youtube"],
            failure_message="Failed to fetch YouTube results. Please try again later.",
        )
    )
    registry.register(
        ToolSpec(
            name="text_translate",
            description="Translate text from one language to another.",
            args_schema=TranslateInput,
            handler=_translate,
            tags=["nlp"],
            fail_soft=False,
        )
    )


def _payloads(results: list[CanonicalResult]) -> list[dict]:
    return [result.to_payload() for result in results]

"""Per-source adapters from raw upstream records to `CanonicalResult`.

Every adapter follows the same contract:

1. Extract a natural key from the record's canonical URL. Records without a
   key are dropped, never defaulted.
2. Deduplicate on that key, keeping the first occurrence in input order.
3. Apply the optional minimum highlight score, after deduplication.

Adapters that need an auxiliary detail fetch enrich each surviving record
independently, so a failed fetch degrades one record to its search-only
fields instead of failing the batch.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, ClassVar

import structlog

from search_agent.retrieval.timestamps import extract_timestamps
from search_agent.types import CanonicalResult

logger = structlog.get_logger(__name__)

DetailFetcher = Callable[[str], Awaitable[Mapping[str, Any] | None]]


class ResultNormalizer(ABC):
    """Base adapter: key extraction, first-wins dedup, score threshold."""

    source: ClassVar[str]
    key_pattern: ClassVar[re.Pattern[str]]

    def __init__(self, *, min_highlight_score: float | None = None) -> None:
        self.min_highlight_score = min_highlight_score

    def item_url(self, item: Mapping[str, Any]) -> str:
        return str(item.get("url") or "")

    def extract_key(self, item: Mapping[str, Any]) -> str | None:
        match = self.key_pattern.search(self.item_url(item))
        return match.group(1) if match else None

    @abstractmethod
    def build(self, key: str, item: Mapping[str, Any]) -> CanonicalResult:
        """Create the canonical record for a keyed raw item."""

    def normalize(self, raw_items: Sequence[Mapping[str, Any]]) -> list[CanonicalResult]:
        seen: set[str] = set()
        results: list[CanonicalResult] = []
        for item in raw_items:
            if not isinstance(item, Mapping):
                continue
            key = self.extract_key(item)
            if not key:
                logger.debug("normalize.key_missing", source=self.source, url=self.item_url(item))
                continue
            if key in seen:
                continue
            seen.add(key)
            try:
                results.append(self.build(key, item))
            except (KeyError, TypeError, ValueError):
                logger.warning("normalize.item_malformed", source=self.source, key=key)

        if self.min_highlight_score is None:
            return results
        return [
            result
            for result in results
            if result.relevance is None or result.relevance >= self.min_highlight_score
        ]


class DetailEnrichingNormalizer(ResultNormalizer):
    """Adapter whose records are completed by a per-item detail fetch."""

    @abstractmethod
    def merge_details(
        self, result: CanonicalResult, details: Mapping[str, Any]
    ) -> CanonicalResult:
        """Return `result` completed with fields from the detail payload."""

    async def normalize_with_details(
        self,
        raw_items: Sequence[Mapping[str, Any]],
        fetch_details: DetailFetcher,
    ) -> list[CanonicalResult]:
        results = self.normalize(raw_items)
        fetched = await asyncio.gather(
            *(fetch_details(result.source_id) for result in results),
            return_exceptions=True,
        )

        enriched: list[CanonicalResult] = []
        for result, details in zip(results, fetched, strict=True):
            if isinstance(details, Exception):
                logger.warning(
                    "normalize.detail_fetch_failed",
                    source=self.source,
                    key=result.source_id,
                    error=str(details),
                )
                enriched.append(result)
                continue
            if isinstance(details, BaseException):
                raise details
            if not details:
                enriched.append(result)
                continue
            try:
                enriched.append(self.merge_details(result, details))
            except (KeyError, TypeError, ValueError):
                logger.warning("normalize.detail_malformed", source=self.source, key=result.source_id)
                enriched.append(result)
        return enriched


class HackerNewsNormalizer(DetailEnrichingNormalizer):
    source = "hackernews"
    key_pattern = re.compile(r"news\.ycombinator\.com/item\?id=(\d+)")

    def build(self, key: str, item: Mapping[str, Any]) -> CanonicalResult:
        return CanonicalResult(
            source_id=key,
            url=self.item_url(item),
            title=_optional_str(item.get("title")),
            published_at=parse_timestamp(item.get("publishedDate")),
            highlights=_string_list(item.get("highlights")),
            relevance=_highlight_score(item),
        )

    def merge_details(
        self, result: CanonicalResult, details: Mapping[str, Any]
    ) -> CanonicalResult:
        published = details.get("time")
        return CanonicalResult(
            source_id=result.source_id,
            url=result.url,
            title=str(details.get("title") or result.title or ""),
            body_text=str(details.get("text") or ""),
            published_at=(
                datetime.fromtimestamp(int(published), tz=timezone.utc)
                if published
                else result.published_at
            ),
            highlights=result.highlights,
            extra={
                "score": int(details.get("score") or 0),
                "descendants": int(details.get("descendants") or 0),
                "comments": [int(kid) for kid in details.get("kids") or []],
                "author": str(details.get("by") or ""),
            },
            relevance=result.relevance,
        )


class RedditNormalizer(ResultNormalizer):
    source = "reddit"
    key_pattern = re.compile(r"reddit\.com/r/[^/]+/comments/([^/?#]+)")

    _community_in_url = re.compile(r"reddit\.com/r/([^/?#]+)", re.IGNORECASE)
    _community_in_text = re.compile(r"\br/([a-zA-Z0-9_]+)", re.IGNORECASE)

    def build(self, key: str, item: Mapping[str, Any]) -> CanonicalResult:
        url = self.item_url(item)
        title = str(item.get("title") or "")
        text = str(item.get("text") or title)
        return CanonicalResult(
            source_id=key,
            url=url,
            title=title,
            body_text=text,
            published_at=parse_timestamp(item.get("publishedDate")),
            highlights=_string_list(item.get("highlights")),
            extra={"community": self._community(url, text)},
            relevance=_highlight_score(item),
        )

    def _community(self, url: str, text: str) -> str:
        match = self._community_in_url.search(url) or self._community_in_text.search(text)
        return match.group(1) if match else ""


class LinkedInNormalizer(ResultNormalizer):
    source = "linkedin"
    key_pattern = re.compile(r"linkedin\.com/.*?activity[-:](\d+)")

    def build(self, key: str, item: Mapping[str, Any]) -> CanonicalResult:
        extra: dict[str, Any] = {"postId": key}
        if item.get("author"):
            extra["author"] = str(item["author"])
        if item.get("image"):
            extra["image"] = str(item["image"])
        return CanonicalResult(
            source_id=key,
            url=self.item_url(item),
            title=_optional_str(item.get("title")),
            body_text=_optional_str(item.get("text")),
            published_at=parse_timestamp(item.get("publishedDate")),
            highlights=_string_list(item.get("highlights")),
            extra=extra,
            relevance=_highlight_score(item),
        )


class YouTubeNormalizer(DetailEnrichingNormalizer):
    """Adapter for Data API search items (`{"id": {"videoId"}, "snippet"}`)."""

    source = "youtube"
    key_pattern = re.compile(r"[?&]v=([A-Za-z0-9_-]{6,})")

    def item_url(self, item: Mapping[str, Any]) -> str:
        identifier = item.get("id")
        video_id = identifier.get("videoId") if isinstance(identifier, Mapping) else None
        if not video_id:
            return ""
        return f"https://www.youtube.com/watch?v={video_id}"

    def build(self, key: str, item: Mapping[str, Any]) -> CanonicalResult:
        snippet = item.get("snippet") or {}
        return CanonicalResult(
            source_id=key,
            url=self.item_url(item),
            title=_optional_str(snippet.get("title")),
            published_at=parse_timestamp(snippet.get("publishedAt")),
            extra={"videoId": key},
        )

    def merge_details(
        self, result: CanonicalResult, details: Mapping[str, Any]
    ) -> CanonicalResult:
        snippet = details.get("snippet") or {}
        statistics = details.get("statistics") or {}
        content_details = details.get("contentDetails") or {}
        thumbnails = snippet.get("thumbnails") or {}
        channel_id = snippet.get("channelId")

        extra: dict[str, Any] = dict(result.extra)
        extra["details"] = {
            "title": str(snippet.get("title") or ""),
            "author_name": str(snippet.get("channelTitle") or ""),
            "author_url": (
                f"https://www.youtube.com/channel/{channel_id}" if channel_id else None
            ),
            "thumbnail_url": _best_thumbnail(thumbnails),
            "type": "video",
            "provider_name": "YouTube",
            "provider_url": "https://www.youtube.com",
        }
        if statistics:
            extra["views"] = str(statistics.get("viewCount") or "")
            extra["likes"] = str(statistics.get("likeCount") or "")
        if content_details.get("duration"):
            extra["duration"] = str(content_details["duration"])

        description = snippet.get("description")
        timestamps = extract_timestamps(description)
        if timestamps:
            extra["timestamps"] = timestamps

        return CanonicalResult(
            source_id=result.source_id,
            url=result.url,
            title=str(snippet.get("title") or result.title or ""),
            body_text=_optional_str(description),
            published_at=parse_timestamp(snippet.get("publishedAt")) or result.published_at,
            highlights=result.highlights,
            extra=extra,
            relevance=result.relevance,
        )


def parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(entry) for entry in value if entry]


def _highlight_score(item: Mapping[str, Any]) -> float | None:
    scores = item.get("highlightScores")
    if isinstance(scores, list):
        numeric = [float(score) for score in scores if isinstance(score, (int, float))]
        if numeric:
            return max(numeric)
    score = item.get("score")
    if isinstance(score, (int, float)):
        return float(score)
    return None


def _best_thumbnail(thumbnails: Mapping[str, Any]) -> str:
    for size in ("high", "medium", "default"):
        entry = thumbnails.get(size)
        if isinstance(entry, Mapping) and entry.get("url"):
            return str(entry["url"])
    return ""

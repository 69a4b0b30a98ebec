"""YouTube Data API v3 client."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from search_agent.errors import UpstreamError

logger = structlog.get_logger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"


class YouTubeClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        base_url: str = YOUTUBE_API_BASE,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    async def search_videos(
        self,
        query: str,
        *,
        max_results: int,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return raw `search.list` items (`{"id": {"videoId"}, "snippet"}`)."""
        params: dict[str, Any] = {
            "part": "id,snippet",
            "q": query,
            "maxResults": max_results,
            "type": "video",
        }
        if order:
            params["order"] = order
        data = await self._get("search", params)
        items = data.get("items") or []
        if not isinstance(items, list):
            raise UpstreamError("YouTube search response has a malformed items field")
        logger.info("youtube.search.complete", query_preview=query[:80], result_count=len(items))
        return [item for item in items if isinstance(item, dict)]

    async def video_details(self, video_id: str) -> dict[str, Any] | None:
        """Return the `videos.list` resource for one video, or None if unknown."""
        data = await self._get(
            "videos",
            {"part": "snippet,statistics,contentDetails", "id": video_id},
        )
        items = data.get("items") or []
        if not items or not isinstance(items[0], dict):
            return None
        return items[0]

    async def _get(self, resource: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self._http.get(
            f"{self._base_url}/{resource}",
            params={**params, "key": self._api_key},
            timeout=self._timeout,
        )
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(f"YouTube {resource} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise UpstreamError(f"YouTube {resource} returned an unexpected payload")
        return data

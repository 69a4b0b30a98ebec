"""Hacker News item API client (Firebase)."""

from __future__ import annotations

from typing import Any

import httpx

HN_ITEM_API = "https://hacker-news.firebaseio.com/v0/item"


class HackerNewsClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str = HN_ITEM_API,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    async def item(self, item_id: str) -> dict[str, Any] | None:
        response = await self._http.get(
            f"{self._base_url}/{item_id}.json", timeout=self._timeout
        )
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else None

"""Exa neural/keyword search client."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from search_agent.errors import UpstreamError

logger = structlog.get_logger(__name__)

EXA_SEARCH_URL = "https://api.exa.ai/search"


class ExaClient:
    """Async wrapper around Exa's `/search` endpoint with inline contents.

    Shares the long-lived `httpx.AsyncClient` owned by the application.
    Network and HTTP errors propagate to the caller.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        base_url: str = EXA_SEARCH_URL,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout_seconds

    async def search_and_contents(
        self,
        query: str,
        *,
        include_domains: list[str],
        num_results: int,
        sort_by: str = "date",
        sort_order: str = "desc",
        start_published_date: str | None = None,
        end_published_date: str | None = None,
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "query": query,
            "type": "auto",
            "numResults": num_results,
            "includeDomains": include_domains,
            "sortBy": sort_by,
            "sortOrder": sort_order,
            "contents": {"text": True, "highlights": True},
        }
        if start_published_date:
            payload["startPublishedDate"] = start_published_date
        if end_published_date:
            payload["endPublishedDate"] = end_published_date

        logger.info(
            "exa.search.start",
            query_preview=query[:80],
            include_domains=include_domains,
            num_results=num_results,
        )
        response = await self._http.post(
            self._base_url,
            headers={"x-api-key": self._api_key, "Content-Type": "application/json"},
            json=payload,
            timeout=self._timeout,
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("Exa returned a non-JSON body") from exc
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise UpstreamError("Exa response is missing a results list")

        items = [item for item in results if isinstance(item, dict)]
        logger.info("exa.search.complete", result_count=len(items))
        return items

from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from deepresearch.config import settings
from deepresearch.research_core.models.interfaces import SearchResult


async def search(
    query: str,
    *,
    max_results: int = 5,
    search_depth: str = "advanced",
    topic: str = "general",
    time_range: str | None = None,
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": topic,
    }
    if time_range:
        kwargs["time_range"] = time_range

    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", "") or "",
            url=r.get("url", "") or "",
            snippet=r.get("content", "") or "",
            score=float(r.get("score", 0.0) or 0.0),
        )
        for r in response.get("results", [])
    ]

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from deepresearch.config import settings
from deepresearch.research_core.models.interfaces import SearchResult
from deepresearch.tools import brave_search, tavily_search, web_utils


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search(query: str, *, max_results: int = 5) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        results = await tavily_search.search(query=query, max_results=max_results)
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(query=query, max_results=max_results)
            if results or not use_fallback:
                return SearchResponse(results=results, provider="brave")
            reason = "brave returned zero results"
        except Exception as e:
            if not use_fallback:
                raise
            reason = str(e)
        logger.warning(f"Brave search fell back to Tavily for '{query[:80]}': {reason}")
        fallback_results = await tavily_search.search(query=query, max_results=max_results)
        return SearchResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason=reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


class WebSearchProvider:
    """Search provider used by the orchestrator, backed by `search` above."""

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        response = await search(query, max_results=max_results)
        return [r for r in response.results if web_utils.is_valid_url(r.url)][:max_results]

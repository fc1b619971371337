from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from deepresearch.config import settings
from deepresearch.research_core.models.interfaces import ExtractionResult


class FirecrawlExtractor:
    """Prompt-guided structured extraction through Firecrawl's scrape endpoint.

    Each URL is requested independently; a failing URL yields an
    ExtractionResult with `error` set instead of failing the batch.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.firecrawl_base_url).strip()
        self.api_key = (api_key if api_key is not None else settings.firecrawl_api_key).strip()
        self.timeout = timeout or settings.extract_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _extract_one(self, client: httpx.AsyncClient, url: str, prompt: str) -> ExtractionResult:
        payload = {
            "url": url,
            "formats": ["json"],
            "jsonOptions": {"prompt": prompt},
            "onlyMainContent": True,
        }
        try:
            response = await client.post(
                self.base_url.rstrip("/") + "/v1/scrape",
                json=payload,
                headers=self._headers(),
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Firecrawl extraction failed for {url}: {exc}")
            return ExtractionResult(url=url, error=str(exc) or type(exc).__name__)

        if not isinstance(body, dict) or body.get("success") is False:
            error = body.get("error") if isinstance(body, dict) else None
            return ExtractionResult(url=url, error=str(error or "extraction unsuccessful"))

        data: Any = body.get("data", body)
        structured = data.get("json") if isinstance(data, dict) else None
        if not isinstance(structured, dict) or not structured:
            return ExtractionResult(url=url, error="response missing structured data")

        title = ""
        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            title = str(metadata.get("title") or "")
        return ExtractionResult(url=url, data=structured, title=title)

    async def extract(self, urls: list[str], prompt: str) -> list[ExtractionResult]:
        if not self.base_url:
            raise RuntimeError("FIRECRAWL_BASE_URL is not configured")
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            return list(
                await asyncio.gather(*(self._extract_one(client, url, prompt) for url in urls))
            )

from __future__ import annotations

import json

import httpx
import pytest

from deepresearch.tools.firecrawl_extract import FirecrawlExtractor


def make_extractor(handler, **kwargs) -> FirecrawlExtractor:
    options = {"base_url": "https://firecrawl.test", "api_key": "fc-key", "timeout": 5.0}
    options.update(kwargs)
    return FirecrawlExtractor(transport=httpx.MockTransport(handler), **options)


@pytest.mark.asyncio
async def test_extract_posts_prompt_and_returns_structured_data():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {"json": {"summary": f"about {body['url']}"}, "metadata": {"title": "Page title"}},
            },
        )

    extractor = make_extractor(handler)
    [result] = await extractor.extract(["https://example.com/a"], "Find the facts")

    assert result.ok
    assert result.data == {"summary": "about https://example.com/a"}
    assert result.title == "Page title"

    [request] = seen
    assert request.url == "https://firecrawl.test/v1/scrape"
    assert request.headers["Authorization"] == "Bearer fc-key"
    payload = json.loads(request.content)
    assert payload["formats"] == ["json"]
    assert payload["jsonOptions"] == {"prompt": "Find the facts"}


@pytest.mark.asyncio
async def test_per_url_failures_do_not_fail_the_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        url = json.loads(request.content)["url"]
        if url.endswith("/down"):
            return httpx.Response(502, json={"error": "bad gateway"})
        if url.endswith("/refused"):
            return httpx.Response(200, json={"success": False, "error": "blocked by robots"})
        if url.endswith("/empty"):
            return httpx.Response(200, json={"success": True, "data": {"markdown": "text only"}})
        return httpx.Response(200, json={"success": True, "data": {"json": {"summary": "ok"}}})

    urls = [
        "https://example.com/ok",
        "https://example.com/down",
        "https://example.com/refused",
        "https://example.com/empty",
    ]
    results = await make_extractor(handler).extract(urls, "prompt")

    assert [r.url for r in results] == urls
    assert [r.ok for r in results] == [True, False, False, False]
    assert results[2].error == "blocked by robots"
    assert results[3].error == "response missing structured data"


@pytest.mark.asyncio
async def test_no_authorization_header_without_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"success": True, "data": {"json": {"summary": "ok"}}})

    [result] = await make_extractor(handler, api_key="").extract(["https://example.com"], "p")
    assert result.ok


@pytest.mark.asyncio
async def test_missing_base_url_raises():
    extractor = FirecrawlExtractor(base_url="", api_key="")
    with pytest.raises(RuntimeError):
        await extractor.extract(["https://example.com"], "p")

"""Shared fakes for the research engine tests."""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from deepresearch.agents.orchestrator import ResearchOrchestrator
from deepresearch.models.events import EventType, SSEEvent
from deepresearch.research_core.models.interfaces import ExtractionResult, SearchResult

FINISH_PLAN = {"decision": "finish", "nextQueries": [], "rationale": "enough evidence"}


def continue_plan(*queries: str) -> dict[str, Any]:
    return {"decision": "continue", "nextQueries": list(queries), "rationale": "gaps remain"}


def hit(url: str, title: str = "", snippet: str = "") -> SearchResult:
    return SearchResult(title=title or f"Title of {url}", url=url, snippet=snippet)


class FakeClock:
    """Monotonic clock that advances `step` seconds on every read."""

    def __init__(self, step: float = 0.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSearchProvider:
    def __init__(
        self,
        results: dict[str, list[SearchResult]] | None = None,
        *,
        default: list[SearchResult] | None = None,
        error: Exception | None = None,
        on_call: Callable[[str], None] | None = None,
    ):
        self.results = results or {}
        self.default = default or []
        self.error = error
        self.on_call = on_call
        self.calls: list[str] = []

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        self.calls.append(query)
        if self.on_call is not None:
            self.on_call(query)
        if self.error is not None:
            raise self.error
        return list(self.results.get(query, self.default))[:max_results]


class FakeExtractProvider:
    def __init__(
        self,
        *,
        failing: set[str] | None = None,
        slow: set[str] | None = None,
        delay: float = 0.0,
        on_call: Callable[[str], None] | None = None,
    ):
        self.failing = failing or set()
        self.slow = slow or set()
        self.delay = delay
        self.on_call = on_call
        self.calls: list[str] = []
        self.prompts: list[str] = []
        self.active = 0
        self.max_active = 0

    async def extract(self, urls: list[str], prompt: str) -> list[ExtractionResult]:
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            results = []
            for url in urls:
                self.calls.append(url)
                if self.on_call is not None:
                    self.on_call(url)
                if self.delay:
                    await asyncio.sleep(self.delay)
                if url in self.slow:
                    await asyncio.sleep(5)
                if url in self.failing:
                    raise RuntimeError(f"blocked by {url}")
                results.append(
                    ExtractionResult(
                        url=url,
                        data={"summary": f"facts from {url}", "key_facts": ["fact one", "fact two"]},
                        title=f"Extracted {url}",
                    )
                )
            return results
        finally:
            self.active -= 1


class FakeEngine:
    """Reasoning engine double.

    Schema calls pop the next planner reply (dicts, strings, exceptions, or
    callables returning one of those); plain calls return `analysis`.
    """

    def __init__(
        self,
        plans: list[Any] | None = None,
        *,
        analysis: Any = "Running summary with findings",
        fragments: list[str] | None = None,
        stream_error: Exception | None = None,
    ):
        self.plans = list(plans or [])
        self.analysis = analysis
        self.fragments = ["# Report\n", "Answer with ", "citations."] if fragments is None else fragments
        self.stream_error = stream_error
        self.complete_calls: list[tuple[str, str]] = []
        self.stream_prompts: list[str] = []

    @property
    def planner_calls(self) -> list[str]:
        return [caller for caller, _ in self.complete_calls if caller.startswith("planner")]

    @property
    def analyzer_prompts(self) -> list[str]:
        return [prompt for caller, prompt in self.complete_calls if caller == "analyzer"]

    async def complete(self, prompt: str, response_schema: dict | None = None, *, caller: str = "") -> Any:
        self.complete_calls.append((caller, prompt))
        if response_schema is None:
            reply = self.analysis
        else:
            reply = self.plans.pop(0) if self.plans else FINISH_PLAN
        if callable(reply):
            reply = reply()
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, prompt: str, *, caller: str = ""):
        self.stream_prompts.append(prompt)
        for fragment in self.fragments:
            yield fragment
        if self.stream_error is not None:
            raise self.stream_error


def of_type(events: list[SSEEvent], event_type: EventType) -> list[dict[str, Any]]:
    return [e.data for e in events if e.event == event_type]


async def collect(orchestrator: ResearchOrchestrator, request: Any) -> list[SSEEvent]:
    return [event async for event in orchestrator.research(request)]


@pytest.fixture
def make_orchestrator():
    """Factory for orchestrators wired to fakes; unspecified parts get defaults."""

    def _make(
        *,
        engine: FakeEngine | None = None,
        search: FakeSearchProvider | None = None,
        extract: FakeExtractProvider | None = None,
        clock: Callable[[], float] | None = None,
        **kwargs: Any,
    ) -> ResearchOrchestrator:
        options: dict[str, Any] = {
            "engine": engine or FakeEngine(),
            "search_provider": search or FakeSearchProvider(),
            "extract_provider": extract or FakeExtractProvider(),
            "extract_top_k": 3,
            "extract_timeout": 2.0,
            "planner_max_retries": 2,
        }
        if clock is not None:
            options["clock"] = clock
        options.update(kwargs)
        return ResearchOrchestrator(**options)

    return _make

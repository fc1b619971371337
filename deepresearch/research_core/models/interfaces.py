from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol


@dataclass(slots=True)
class SearchResult:
    title: str
    url: str
    snippet: str
    score: float = 0.0


@dataclass(slots=True)
class ExtractionResult:
    url: str
    data: dict[str, Any] | None = None
    title: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.data)


class SearchProvider(Protocol):
    async def search(self, query: str, max_results: int) -> list[SearchResult]: ...


class ExtractProvider(Protocol):
    async def extract(self, urls: list[str], prompt: str) -> list[ExtractionResult]: ...


class ReasoningEngine(Protocol):
    async def complete(
        self,
        prompt: str,
        response_schema: dict[str, Any] | None = None,
        *,
        caller: str = "",
    ) -> str | dict[str, Any]: ...

    def stream(self, prompt: str, *, caller: str = "") -> AsyncIterator[str]: ...

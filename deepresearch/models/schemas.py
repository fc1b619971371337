from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# --- Requests ---


class ResearchRequest(BaseModel):
    """Core entry point payload.

    Values are validated by ResearchSession.from_request, not here.
    """

    query: Any = ""
    max_depth: Any = Field(default=None, alias="maxDepth")
    time_limit: Any = Field(default=None, alias="timeLimit")

    model_config = {"populate_by_name": True}


# --- Responses ---


class SourceSummary(BaseModel):
    url: str
    title: str


class FinishPayload(BaseModel):
    report: str
    elapsed: float
    iterations: int
    source_count: int = Field(alias="sourceCount")
    status: str
    sources: list[SourceSummary] = []

    model_config = {"populate_by_name": True}

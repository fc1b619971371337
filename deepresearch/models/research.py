from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from deepresearch.config import settings
from deepresearch.models.schemas import ResearchRequest
from deepresearch.research_core.budget import clamp_depth, clamp_time_limit


class InvalidRequestError(ValueError):
    """Raised when a research request cannot start a session."""


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class ActivityKind(str, Enum):
    SEARCH = "search"
    EXTRACT = "extract"
    ANALYZE = "analyze"
    PLAN = "plan"
    SYNTHESIZE = "synthesize"


class ActivityStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ActivityItem:
    id: str
    kind: ActivityKind
    status: ActivityStatus
    message: str
    depth: int
    timestamp: datetime
    outcome: str | None = None
    resolved_at: datetime | None = None

    @property
    def display_message(self) -> str:
        return self.outcome or self.message

    def to_dict(self) -> dict[str, Any]:
        ts = self.resolved_at or self.timestamp
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "message": self.display_message,
            "depth": self.depth,
            "timestamp": ts.isoformat(),
        }


@dataclass
class SourceItem:
    url: str
    canonical_url: str
    title: str = ""
    snippet: str | None = None
    extracted_content: str | None = None

    @property
    def content(self) -> str:
        return self.extracted_content or self.snippet or ""


def _parse_depth(value: Any) -> int:
    if value is None:
        return settings.research_default_max_depth
    if isinstance(value, bool):
        raise InvalidRequestError("maxDepth must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidRequestError(f"maxDepth must be an integer, got {value!r}")


def _parse_time_limit(value: Any) -> float:
    if value is None:
        return settings.research_default_time_limit_seconds
    if isinstance(value, bool):
        raise InvalidRequestError("timeLimit must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"timeLimit must be a number of seconds, got {value!r}") from None
    if not math.isfinite(seconds):
        raise InvalidRequestError("timeLimit must be finite")
    return seconds


@dataclass
class ResearchSession:
    """State of one research invocation, owned by a single orchestrator."""

    query: str
    max_depth: int
    time_limit: float
    current_depth: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _start_mono: float = field(init=False, repr=False)
    _cancelled: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._start_mono = self.clock()

    @classmethod
    def from_request(
        cls,
        request: ResearchRequest,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> "ResearchSession":
        """Validate a request and build a session with budgets clamped to the hard caps."""
        query = request.query
        if not isinstance(query, str) or not query.strip():
            raise InvalidRequestError("query must be a non-empty string")
        query = " ".join(query.split())
        if len(query) > settings.max_query_chars:
            raise InvalidRequestError(
                f"query is too long ({len(query)} > {settings.max_query_chars} characters)"
            )
        max_depth = clamp_depth(_parse_depth(request.max_depth))
        time_limit = clamp_time_limit(_parse_time_limit(request.time_limit))
        return cls(query=query, max_depth=max_depth, time_limit=time_limit, clock=clock)

    def elapsed(self) -> float:
        return max(self.clock() - self._start_mono, 0.0)

    def advance_depth(self) -> int:
        self.current_depth = min(self.current_depth + 1, self.max_depth)
        return self.current_depth

    def finish(self, status: SessionStatus) -> None:
        if self.status != SessionStatus.ACTIVE:
            raise RuntimeError(f"session {self.id} already finished as {self.status.value}")
        if status == SessionStatus.ACTIVE:
            raise ValueError("terminal status required")
        self.status = status

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

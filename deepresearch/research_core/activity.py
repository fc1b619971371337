from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable

from deepresearch.models.events import SSEEvent
from deepresearch.models.research import ActivityItem, ActivityKind, ActivityStatus
from deepresearch.services import logger as log_service
from deepresearch.services import streaming

Emit = Callable[[SSEEvent], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLog:
    """Ordered record of research steps.

    Every step is recorded as pending and later resolved exactly once; both
    transitions are emitted as activity-delta events carrying the same id.
    The entries double as the context for analysis and synthesis prompts.
    """

    def __init__(
        self,
        emit: Emit | None = None,
        *,
        session_id: str = "",
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._emit = emit
        self._session_id = session_id
        self._now = now
        self._entries: list[ActivityItem] = []
        self._by_id: dict[str, ActivityItem] = {}
        self._last_ts: datetime | None = None

    def _timestamp(self) -> datetime:
        ts = self._now()
        if self._last_ts is not None and ts < self._last_ts:
            ts = self._last_ts
        self._last_ts = ts
        return ts

    async def _publish(self, item: ActivityItem) -> None:
        log_service.log_research_step(
            self._session_id,
            item.kind.value,
            item.status.value,
            {"depth": item.depth, "message": item.display_message},
        )
        if self._emit is not None:
            await self._emit(streaming.activity_delta(item))

    async def record(self, kind: ActivityKind, depth: int, message: str = "") -> str:
        item = ActivityItem(
            id=uuid.uuid4().hex,
            kind=kind,
            status=ActivityStatus.PENDING,
            message=message,
            depth=depth,
            timestamp=self._timestamp(),
        )
        self._entries.append(item)
        self._by_id[item.id] = item
        await self._publish(item)
        return item.id

    async def resolve(self, handle: str, outcome: ActivityStatus, message: str | None = None) -> ActivityItem:
        item = self._by_id.get(handle)
        if item is None:
            raise KeyError(f"unknown activity handle: {handle}")
        if item.status != ActivityStatus.PENDING:
            raise ValueError(f"activity {handle} already resolved as {item.status.value}")
        if outcome == ActivityStatus.PENDING:
            raise ValueError("activity must resolve to complete or error")
        item.status = outcome
        item.outcome = message
        item.resolved_at = self._timestamp()
        await self._publish(item)
        return item

    def entries(self) -> list[ActivityItem]:
        return list(self._entries)

    def errors(self) -> list[ActivityItem]:
        return [item for item in self._entries if item.status == ActivityStatus.ERROR]

    def render(self, max_items: int | None = None) -> str:
        """Plain-text digest of the log, one line per entry."""
        items = self._entries if max_items is None else self._entries[-max_items:]
        return "\n".join(
            f"[depth {item.depth}] {item.kind.value} ({item.status.value}): {item.display_message}"
            for item in items
        )

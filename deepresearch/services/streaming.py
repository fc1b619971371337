from __future__ import annotations

from typing import TYPE_CHECKING

from deepresearch.models.events import EventType, SSEEvent
from deepresearch.models.schemas import FinishPayload, SourceSummary

if TYPE_CHECKING:
    from deepresearch.models.research import ActivityItem, SourceItem


def progress_init(estimated_total_steps: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.PROGRESS_INIT,
        data={"estimatedTotalSteps": estimated_total_steps},
    )


def depth_delta(depth: int, max_depth: int) -> SSEEvent:
    return SSEEvent(event=EventType.DEPTH_DELTA, data={"depth": depth, "maxDepth": max_depth})


def activity_delta(item: ActivityItem) -> SSEEvent:
    return SSEEvent(event=EventType.ACTIVITY_DELTA, data=item.to_dict())


def source_delta(item: SourceItem) -> SSEEvent:
    return SSEEvent(
        event=EventType.SOURCE_DELTA,
        data={"url": item.url, "title": item.title, "canonicalUrl": item.canonical_url},
    )


def text_delta(fragment: str) -> SSEEvent:
    return SSEEvent(event=EventType.TEXT_DELTA, data={"fragment": fragment})


def finish(
    report: str,
    *,
    elapsed: float,
    iterations: int,
    status: str,
    sources: list[SourceItem] | None = None,
) -> SSEEvent:
    items = sources or []
    payload = FinishPayload(
        report=report,
        elapsed=round(elapsed, 3),
        iterations=iterations,
        source_count=len(items),
        status=status,
        sources=[SourceSummary(url=s.url, title=s.title) for s in items],
    )
    return SSEEvent(event=EventType.FINISH, data=payload.model_dump(by_alias=True))

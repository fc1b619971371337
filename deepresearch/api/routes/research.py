from __future__ import annotations

import asyncio
import json as _json

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from deepresearch.agents.orchestrator import ResearchOrchestrator
from deepresearch.api.deps import get_orchestrator
from deepresearch.models.schemas import FinishPayload, ResearchRequest
from deepresearch.services import logger as log_service

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("/stream")
async def stream_research(
    request: ResearchRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """SSE endpoint that streams research progress events until `finish`."""

    async def event_generator():
        events = orchestrator.research(request)
        try:
            async for event in events:
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
        except asyncio.CancelledError:
            log_service.log_event(
                event_type="stream_disconnected",
                message="Client disconnected; research cancelled",
                session_id=orchestrator.session.id if orchestrator.session else None,
            )
            raise
        finally:
            await events.aclose()

    return EventSourceResponse(event_generator())


@router.post("", response_model=FinishPayload, response_model_by_alias=True)
async def run_research(
    request: ResearchRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Run research to completion and return only the finish payload."""
    finish: dict = {}
    async for event in orchestrator.research(request):
        if event.is_terminal:
            finish = event.data
    return FinishPayload.model_validate(finish)

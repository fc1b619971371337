from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from loguru import logger
from pydantic import ValidationError

from deepresearch.config import settings
from deepresearch.models.research import ActivityKind, ActivityStatus, ResearchSession, SourceItem
from deepresearch.models.research_plan import PLAN_RESPONSE_SCHEMA, ResearchPlan
from deepresearch.research_core.activity import ActivityLog
from deepresearch.research_core.budget import BudgetController
from deepresearch.research_core.models.interfaces import ReasoningEngine
from deepresearch.services.prompt_store import render_prompt


@dataclass(frozen=True)
class WellFormed:
    plan: ResearchPlan


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


@dataclass(frozen=True)
class Failed:
    error: Exception


PlannerResponse = Union[WellFormed, Malformed, Failed]


def extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def classify_response(raw: Any) -> WellFormed | Malformed:
    """Turn one raw engine reply into a usable plan or a malformed marker."""
    if isinstance(raw, dict):
        payload = raw
        raw_text = json.dumps(raw)
    elif isinstance(raw, str):
        raw_text = raw
        try:
            payload = extract_json_object(raw)
        except json.JSONDecodeError as exc:
            return Malformed(raw=raw_text, reason=f"not a JSON object: {exc.msg}")
    else:
        return Malformed(raw=repr(raw), reason=f"unexpected reply type {type(raw).__name__}")

    try:
        plan = ResearchPlan.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        return Malformed(raw=raw_text, reason=first.get("msg", "invalid plan"))
    return WellFormed(plan)


def _format_sources(sources: list[SourceItem], limit: int = 20) -> str:
    if not sources:
        return "(none yet)"
    return "\n".join(f"- {s.title} ({s.url})" for s in sources[:limit])


class Planner:
    """Decides after every iteration whether research should continue.

    The planner never raises: an engine error or repeated unusable replies
    produce the default finish plan, recorded as an error activity.
    """

    def __init__(
        self,
        engine: ReasoningEngine,
        *,
        max_retries: int | None = None,
        budget: BudgetController | None = None,
    ):
        self.engine = engine
        self.max_retries = max(
            settings.planner_max_retries if max_retries is None else int(max_retries), 0
        )
        self.budget = budget or BudgetController()

    def build_prompt(
        self,
        session: ResearchSession,
        activity_log: ActivityLog,
        sources: list[SourceItem],
        summary: str,
    ) -> str:
        remaining = self.budget.remaining(session)
        return render_prompt(
            "planner.prompt",
            query=session.query,
            summary=summary.strip() or "(nothing gathered yet)",
            activity=activity_log.render(max_items=40) or "(no steps yet)",
            sources=_format_sources(sources),
            source_count=len(sources),
            depth=session.current_depth + 1,
            max_depth=session.max_depth,
            remaining_depth=max(int(remaining["depth"]) - 1, 0),
            remaining_seconds=int(remaining["seconds"]),
        )

    async def _ask(self, prompt: str, attempt: int) -> PlannerResponse:
        try:
            raw = await self.engine.complete(
                prompt, PLAN_RESPONSE_SCHEMA, caller=f"planner.attempt_{attempt}"
            )
        except Exception as exc:
            return Failed(exc)
        return classify_response(raw)

    async def plan(
        self,
        session: ResearchSession,
        activity_log: ActivityLog,
        sources: list[SourceItem],
        *,
        summary: str = "",
    ) -> ResearchPlan:
        handle = await activity_log.record(
            ActivityKind.PLAN, session.current_depth + 1, "Planning next research step"
        )
        prompt = self.build_prompt(session, activity_log, sources, summary)

        response = await self._ask(prompt, attempt=0)
        retries = 0
        while isinstance(response, Malformed) and retries < self.max_retries:
            retries += 1
            logger.warning(
                f"Planner reply malformed ({response.reason}); retry {retries}/{self.max_retries}"
            )
            clarify = render_prompt(
                "planner.clarify_prompt",
                previous_prompt=prompt,
                raw=response.raw[:2000],
                reason=response.reason,
            )
            response = await self._ask(clarify, attempt=retries)

        if isinstance(response, WellFormed):
            plan = response.plan
            message = f"Decided to {plan.decision.value}: {plan.rationale}".strip()
            if plan.next_queries:
                message += f" (next: {'; '.join(plan.next_queries)})"
            await activity_log.resolve(handle, ActivityStatus.COMPLETE, message)
            return plan

        if isinstance(response, Failed):
            reason = f"reasoning engine error: {response.error}"
        else:
            reason = f"unusable reply after {retries + 1} attempt(s): {response.reason}"
        logger.error(f"Planning failed for session {session.id}: {reason}")
        await activity_log.resolve(handle, ActivityStatus.ERROR, f"Planning failed, {reason}")
        return ResearchPlan.fallback()

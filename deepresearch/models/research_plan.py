from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class PlanDecision(str, Enum):
    CONTINUE = "continue"
    FINISH = "finish"


PLANNING_FAILED_RATIONALE = "planning failed"


class ResearchPlan(BaseModel):
    """Next-step decision produced once per iteration by the planner."""

    decision: PlanDecision
    next_queries: list[str] = Field(default_factory=list, alias="nextQueries")
    rationale: str = ""

    model_config = {"populate_by_name": True}

    @field_validator("next_queries", mode="before")
    @classmethod
    def _normalize_queries(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("nextQueries must be a list of strings")
        cleaned: list[str] = []
        seen: set[str] = set()
        for item in value:
            if not isinstance(item, str):
                continue
            query = " ".join(item.split()).strip()
            key = query.lower()
            if not query or key in seen:
                continue
            seen.add(key)
            cleaned.append(query)
        return cleaned

    @model_validator(mode="after")
    def _queries_match_decision(self) -> "ResearchPlan":
        if self.decision == PlanDecision.CONTINUE and not self.next_queries:
            raise ValueError("a continue decision needs at least one next query")
        if self.decision == PlanDecision.FINISH:
            self.next_queries = []
        return self

    @property
    def is_fallback(self) -> bool:
        return self.decision == PlanDecision.FINISH and self.rationale == PLANNING_FAILED_RATIONALE

    @classmethod
    def fallback(cls) -> "ResearchPlan":
        return cls(decision=PlanDecision.FINISH, next_queries=[], rationale=PLANNING_FAILED_RATIONALE)


# JSON schema sent to the reasoning engine with every planning call.
PLAN_RESPONSE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "decision": {"type": "string", "enum": ["continue", "finish"]},
        "nextQueries": {"type": "array", "items": {"type": "string"}},
        "rationale": {"type": "string"},
    },
    "required": ["decision", "nextQueries", "rationale"],
    "additionalProperties": False,
}

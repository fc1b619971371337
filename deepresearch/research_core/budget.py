"""Depth and wall-clock budget for one research session."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deepresearch.models.research import ResearchSession

# Hard caps applied regardless of caller input or configuration.
MIN_DEPTH = 1
MAX_DEPTH_CAP = 7
MIN_TIME_LIMIT_SECONDS = 1.0
MAX_TIME_LIMIT_SECONDS = 270.0


def clamp_depth(value: int) -> int:
    return max(MIN_DEPTH, min(int(value), MAX_DEPTH_CAP))


def clamp_time_limit(seconds: float) -> float:
    return max(MIN_TIME_LIMIT_SECONDS, min(float(seconds), MAX_TIME_LIMIT_SECONDS))


class BudgetController:
    """Pure predicates over a session's depth counter and elapsed time.

    Checked at iteration boundaries only. A provider call already in flight
    is allowed to finish even if it carries the session past its time limit.
    """

    @staticmethod
    def depth_exhausted(session: ResearchSession) -> bool:
        return session.current_depth >= session.max_depth

    @staticmethod
    def time_exhausted(session: ResearchSession) -> bool:
        return session.elapsed() >= session.time_limit

    def should_start_iteration(self, session: ResearchSession) -> bool:
        return not (self.depth_exhausted(session) or self.time_exhausted(session))

    @staticmethod
    def remaining(session: ResearchSession) -> dict[str, float]:
        return {
            "depth": max(session.max_depth - session.current_depth, 0),
            "seconds": max(session.time_limit - session.elapsed(), 0.0),
        }

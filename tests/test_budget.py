from __future__ import annotations

import pytest

from conftest import FakeClock
from deepresearch.models.research import InvalidRequestError, ResearchSession, SessionStatus
from deepresearch.models.schemas import ResearchRequest
from deepresearch.research_core.budget import BudgetController, clamp_depth, clamp_time_limit


@pytest.mark.parametrize("raw,expected", [(0, 1), (-3, 1), (1, 1), (4, 4), (7, 7), (12, 7)])
def test_clamp_depth(raw, expected):
    assert clamp_depth(raw) == expected


@pytest.mark.parametrize("raw,expected", [(0.0, 1.0), (0.001, 1.0), (60, 60.0), (270, 270.0), (5000, 270.0)])
def test_clamp_time_limit(raw, expected):
    assert clamp_time_limit(raw) == expected


class TestBudgetController:
    def test_depth_budget(self):
        session = ResearchSession(query="q", max_depth=2, time_limit=100.0, clock=FakeClock())
        budget = BudgetController()

        assert budget.should_start_iteration(session)
        session.advance_depth()
        assert budget.should_start_iteration(session)
        session.advance_depth()
        assert budget.depth_exhausted(session)
        assert not budget.should_start_iteration(session)

    def test_time_budget(self):
        clock = FakeClock()
        session = ResearchSession(query="q", max_depth=5, time_limit=10.0, clock=clock)
        budget = BudgetController()

        clock.advance(9.5)
        assert budget.should_start_iteration(session)
        clock.advance(0.5)
        assert budget.time_exhausted(session)
        assert not budget.should_start_iteration(session)

    def test_remaining(self):
        clock = FakeClock()
        session = ResearchSession(query="q", max_depth=5, time_limit=10.0, clock=clock)
        session.advance_depth()
        clock.advance(4.0)

        assert BudgetController.remaining(session) == {"depth": 4, "seconds": 6.0}
        clock.advance(20.0)
        assert BudgetController.remaining(session)["seconds"] == 0.0


class TestResearchSession:
    def test_from_request_applies_defaults_and_caps(self):
        session = ResearchSession.from_request(ResearchRequest(query="  solar   sails  ", maxDepth=50, timeLimit=0))

        assert session.query == "solar sails"
        assert session.max_depth == 7
        assert session.time_limit == 1.0
        assert session.status == SessionStatus.ACTIVE

    def test_from_request_accepts_numeric_strings(self):
        session = ResearchSession.from_request(ResearchRequest(query="q", maxDepth="3", timeLimit="45.5"))
        assert session.max_depth == 3
        assert session.time_limit == 45.5

    @pytest.mark.parametrize("time_limit", [float("nan"), float("inf"), "later", False])
    def test_from_request_rejects_bad_time_limit(self, time_limit):
        with pytest.raises(InvalidRequestError):
            ResearchSession.from_request(ResearchRequest(query="q", timeLimit=time_limit))

    def test_advance_depth_never_exceeds_max(self):
        session = ResearchSession(query="q", max_depth=1, time_limit=5.0)
        assert session.advance_depth() == 1
        assert session.advance_depth() == 1

    def test_finish_is_terminal(self):
        session = ResearchSession(query="q", max_depth=1, time_limit=5.0)
        with pytest.raises(ValueError):
            session.finish(SessionStatus.ACTIVE)
        session.finish(SessionStatus.COMPLETED)
        with pytest.raises(RuntimeError):
            session.finish(SessionStatus.FAILED)

    def test_elapsed_is_never_negative(self):
        clock = FakeClock()
        clock.advance(100.0)
        session = ResearchSession(query="q", max_depth=1, time_limit=5.0, clock=clock)
        clock.now = 50.0
        assert session.elapsed() == 0.0

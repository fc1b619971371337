from __future__ import annotations

from deepresearch.agents.orchestrator import ResearchOrchestrator


def get_orchestrator() -> ResearchOrchestrator:
    """A fresh orchestrator per request; sessions never share state."""
    return ResearchOrchestrator()

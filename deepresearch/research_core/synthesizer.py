from __future__ import annotations

from typing import AsyncIterator

from deepresearch.config import settings
from deepresearch.models.research import ResearchSession, SourceItem
from deepresearch.research_core.activity import ActivityLog
from deepresearch.research_core.models.interfaces import ReasoningEngine
from deepresearch.services.prompt_store import render_prompt
from deepresearch.tools import web_utils


class Synthesizer:
    """Final report writer, invoked once per session."""

    def __init__(self, engine: ReasoningEngine, *, context_char_budget: int | None = None):
        self.engine = engine
        self.context_char_budget = max(
            context_char_budget or settings.synthesis_context_char_budget, 2000
        )

    def _source_context(self, sources: list[SourceItem]) -> str:
        parts: list[str] = []
        used = 0

        def append_with_budget(text: str) -> bool:
            nonlocal used
            remaining = self.context_char_budget - used
            if remaining <= 0:
                return False
            clipped = text if len(text) <= remaining else text[:remaining] + "..."
            parts.append(clipped)
            used += len(clipped)
            return True

        for index, source in enumerate(sources, 1):
            block = f"[{index}] {source.title}\nURL: {source.url}"
            content = web_utils.clean_content(source.content, max_length=4000) if source.content else ""
            if content:
                block += f"\n{content}"
            if not append_with_budget(block):
                break
        return "\n\n".join(parts) or "(no sources)"

    def build_prompt(
        self,
        activity_log: ActivityLog,
        sources: list[SourceItem],
        session: ResearchSession,
        *,
        summary: str = "",
        partial: bool = False,
    ) -> str:
        return render_prompt(
            "synthesis.prompt",
            query=session.query,
            scope_note=render_prompt("synthesis.partial_note" if partial else "synthesis.full_note"),
            summary=summary.strip() or "(no running summary)",
            activity=activity_log.render() or "(no steps recorded)",
            sources=self._source_context(sources),
        )

    async def synthesize(
        self,
        activity_log: ActivityLog,
        sources: list[SourceItem],
        session: ResearchSession,
        *,
        summary: str = "",
        partial: bool = False,
    ) -> AsyncIterator[str]:
        """Yield report fragments as the engine produces them."""
        if not sources and not summary.strip():
            yield render_prompt("reports.no_information", query=session.query)
            return

        prompt = self.build_prompt(activity_log, sources, session, summary=summary, partial=partial)
        async for fragment in self.engine.stream(prompt, caller="synthesis"):
            if fragment:
                yield fragment

    @staticmethod
    def fallback_report(session: ResearchSession, sources: list[SourceItem]) -> str:
        """Best-effort report built from source titles and snippets."""
        if not sources:
            return render_prompt("reports.no_information", query=session.query)
        lines = [render_prompt("reports.fallback_header", query=session.query), ""]
        for source in sources:
            line = f"- [{source.title}]({source.url})"
            snippet = web_utils.clean_content(source.snippet or source.content, max_length=300)
            if snippet:
                line += f": {snippet}"
            lines.append(line)
        return "\n".join(lines)

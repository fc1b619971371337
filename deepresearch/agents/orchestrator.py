from __future__ import annotations

import asyncio
import json
import time
from contextlib import suppress
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable

from loguru import logger

from deepresearch.config import settings
from deepresearch.llm_client import OpenRouterReasoningEngine
from deepresearch.models.events import SSEEvent
from deepresearch.models.research import (
    ActivityKind,
    ActivityStatus,
    InvalidRequestError,
    ResearchSession,
    SessionStatus,
    SourceItem,
)
from deepresearch.models.research_plan import PlanDecision
from deepresearch.models.schemas import ResearchRequest
from deepresearch.research_core.activity import ActivityLog
from deepresearch.research_core.budget import MIN_DEPTH, MIN_TIME_LIMIT_SECONDS, BudgetController
from deepresearch.research_core.models.interfaces import (
    ExtractionResult,
    ExtractProvider,
    ReasoningEngine,
    SearchProvider,
    SearchResult,
)
from deepresearch.research_core.planner import Planner
from deepresearch.research_core.sources import SourceRegistry
from deepresearch.research_core.synthesizer import Synthesizer
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.event_sink import EventSink
from deepresearch.services.prompt_store import render_prompt
from deepresearch.tools import web_utils
from deepresearch.tools.firecrawl_extract import FirecrawlExtractor
from deepresearch.tools.search_provider import WebSearchProvider

STEPS_PER_ITERATION = 4
ORPHAN_REPORT = "Research stopped because of an internal error. No further results are available."


class ResearchState(str, Enum):
    INIT = "init"
    SEARCHING = "searching"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class StopReason(str, Enum):
    PLANNER_FINISH = "planner_finish"
    PLANNING_FAILED = "planning_failed"
    DEPTH_EXHAUSTED = "depth_exhausted"
    TIME_EXHAUSTED = "time_exhausted"
    CANCELLED = "cancelled"
    INVALID_REQUEST = "invalid_request"
    INTERNAL_ERROR = "internal_error"


def structured_to_text(data: dict[str, Any]) -> str:
    """Flatten an extraction payload into prompt-friendly text."""
    lines: list[str] = []
    for key, value in data.items():
        if isinstance(value, str):
            rendered = value
        elif isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
            rendered = "; ".join(str(v) for v in value)
        else:
            rendered = json.dumps(value, ensure_ascii=False)
        if rendered.strip():
            lines.append(f"{key}: {rendered}")
    return "\n".join(lines)


class ResearchOrchestrator:
    """Drives one research session through its state machine.

    Flow:
      INIT -> SEARCHING -> EXTRACTING -> ANALYZING -> PLANNING
           -> (SEARCHING again | SYNTHESIZING) -> DONE

    Each state consults the budget and the cancellation flag before doing
    work. Provider failures are recorded as error activities and never end
    the session early. One instance serves exactly one session.
    """

    def __init__(
        self,
        *,
        engine: ReasoningEngine | None = None,
        search_provider: SearchProvider | None = None,
        extract_provider: ExtractProvider | None = None,
        budget: BudgetController | None = None,
        extract_top_k: int | None = None,
        extract_timeout: float | None = None,
        max_results_per_query: int | None = None,
        planner_max_retries: int | None = None,
        queue_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine or OpenRouterReasoningEngine()
        self.search_provider = search_provider or WebSearchProvider()
        self.extract_provider = extract_provider or FirecrawlExtractor()
        self.budget = budget or BudgetController()
        self.planner = Planner(self.engine, max_retries=planner_max_retries, budget=self.budget)
        self.synthesizer = Synthesizer(self.engine)
        self.extract_top_k = max(int(extract_top_k or settings.extract_top_k), 1)
        self.extract_timeout = float(extract_timeout or settings.extract_timeout_seconds)
        self.max_results_per_query = max(
            int(max_results_per_query or settings.search_max_results_per_query), 1
        )
        self.queue_size = int(queue_size or settings.event_queue_size)
        self._clock = clock

        self.session: ResearchSession | None = None
        self.registry = SourceRegistry()
        self.activity: ActivityLog | None = None
        self.summary = ""
        self.report = ""
        self.state = ResearchState.INIT
        self.transitions: list[ResearchState] = []
        self.stop_reason: StopReason | None = None

        self._request: ResearchRequest | None = None
        self._sink: EventSink | None = None
        self._started = False
        self._cancel_requested = False
        self._invalid_reason = ""
        self._queries: list[str] = []
        self._candidates: list[SearchResult] = []
        self._fresh: list[SourceItem] = []
        self._time_cap_reached = False

    # -- plumbing ---------------------------------------------------------

    async def _emit(self, event: SSEEvent) -> None:
        if self._sink is None:
            raise RuntimeError("orchestrator has no event sink")
        await self._sink.emit(event)

    def cancel(self) -> None:
        """Request cooperative cancellation; observed at the next state boundary."""
        self._cancel_requested = True
        if self.session is not None:
            self.session.cancel()

    def _claim(self) -> None:
        if self._started:
            raise RuntimeError("a ResearchOrchestrator runs a single session")
        self._started = True

    def _current_session(self) -> ResearchSession:
        if self.session is None:
            raise RuntimeError("research session has not been initialised")
        return self.session

    def _active(self) -> tuple[ResearchSession, ActivityLog]:
        session = self._current_session()
        if self.activity is None:
            raise RuntimeError(f"session {session.id} has no activity log")
        return session, self.activity

    def _iteration_depth(self) -> int:
        return self._current_session().current_depth + 1

    def _stop_for_budget(self) -> StopReason:
        if self.budget.time_exhausted(self._current_session()):
            return StopReason.TIME_EXHAUSTED
        return StopReason.DEPTH_EXHAUSTED

    # -- states -----------------------------------------------------------

    async def _enter_init(self) -> ResearchState:
        request = self._request or ResearchRequest()
        try:
            self.session = ResearchSession.from_request(request, clock=self._clock)
        except InvalidRequestError as exc:
            raw_query = request.query if isinstance(request.query, str) else ""
            self.session = ResearchSession(
                query=raw_query,
                max_depth=MIN_DEPTH,
                time_limit=MIN_TIME_LIMIT_SECONDS,
                clock=self._clock,
            )
            self._invalid_reason = str(exc)
            self.stop_reason = StopReason.INVALID_REQUEST
            logger.warning(f"Rejected research request: {exc}")
            return ResearchState.DONE

        if self._cancel_requested:
            self.session.cancel()
        self.activity = ActivityLog(self._emit, session_id=self.session.id)
        self._queries = [self.session.query]
        log_service.log_event(
            event_type="research_started",
            message="Research started",
            session_id=self.session.id,
            query=self.session.query[:100],
            max_depth=self.session.max_depth,
            time_limit=self.session.time_limit,
        )
        await self._emit(
            streaming.progress_init(self.session.max_depth * STEPS_PER_ITERATION + 1)
        )
        return ResearchState.SEARCHING

    async def _enter_searching(self) -> ResearchState:
        session, activity = self._active()
        if not self.budget.should_start_iteration(session):
            self.stop_reason = self._stop_for_budget()
            logger.info(f"Budget rejected iteration {session.current_depth + 1}: {self.stop_reason.value}")
            return ResearchState.SYNTHESIZING

        depth = self._iteration_depth()
        self._candidates = []
        self._fresh = []
        seen: set[str] = set()

        for query in self._queries:
            if session.cancelled:
                logger.info(f"Skipping remaining searches at depth {depth} after cancellation")
                break
            handle = await activity.record(ActivityKind.SEARCH, depth, f"Searching for '{query}'")
            try:
                results = await self.search_provider.search(query, self.max_results_per_query)
            except Exception as exc:
                logger.warning(f"Search failed for '{query}': {exc}")
                await activity.resolve(handle, ActivityStatus.ERROR, f"Search failed for '{query}': {exc}")
                continue

            if session.cancelled:
                await activity.resolve(
                    handle, ActivityStatus.COMPLETE, f"Search for '{query}' discarded after cancellation"
                )
                break

            new_count = 0
            for result in results:
                if not web_utils.is_valid_url(result.url):
                    continue
                if self.registry.contains(result.url):
                    self.registry.register(result.url, title=result.title, snippet=result.snippet)
                    continue
                key = web_utils.canonicalize_url(result.url)
                if key in seen:
                    continue
                seen.add(key)
                self._candidates.append(result)
                new_count += 1
            await activity.resolve(
                handle,
                ActivityStatus.COMPLETE,
                f"Found {len(results)} results for '{query}' ({new_count} new)",
            )

        logger.info(f"Search stage found {len(self._candidates)} new candidates at depth {depth}")
        return ResearchState.EXTRACTING

    async def _extract_one(
        self,
        candidate: SearchResult,
        handle: str,
        prompt: str,
        semaphore: asyncio.Semaphore,
    ) -> ExtractionResult | None:
        _, activity = self._active()
        error: str
        async with semaphore:
            try:
                results = await asyncio.wait_for(
                    self.extract_provider.extract([candidate.url], prompt),
                    timeout=self.extract_timeout,
                )
            except asyncio.TimeoutError:
                error = f"timed out after {self.extract_timeout:g}s"
                results = []
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                results = []
            else:
                error = "no structured data returned"

        result = next((r for r in results if r.ok), None)
        if result is None:
            failed = next((r for r in results if r.error), None)
            if failed is not None and failed.error:
                error = failed.error
            logger.warning(f"Extraction failed for {candidate.url}: {error}")
            await activity.resolve(
                handle, ActivityStatus.ERROR, f"Extraction failed for {candidate.url}: {error}"
            )
            return None

        await activity.resolve(
            handle,
            ActivityStatus.COMPLETE,
            f"Extracted {result.title or candidate.title or candidate.url}",
        )
        return result

    async def _enter_extracting(self) -> ResearchState:
        session, activity = self._active()
        selected = self._candidates[: self.extract_top_k]
        if not selected:
            return ResearchState.ANALYZING

        depth = self._iteration_depth()
        prompt = render_prompt("extract.prompt", query=session.query)
        semaphore = asyncio.Semaphore(self.extract_top_k)
        handles = [
            await activity.record(ActivityKind.EXTRACT, depth, f"Extracting {candidate.url}")
            for candidate in selected
        ]
        outcomes = await asyncio.gather(
            *(
                self._extract_one(candidate, handle, prompt, semaphore)
                for candidate, handle in zip(selected, handles)
            )
        )

        if session.cancelled:
            logger.info(f"Discarding {len(outcomes)} extraction result(s) after cancellation")
            return ResearchState.ANALYZING

        for candidate, outcome in zip(selected, outcomes):
            if outcome is None or outcome.data is None:
                continue
            content = web_utils.clean_content(
                structured_to_text(outcome.data),
                max_length=settings.analysis_content_chars_per_source,
            )
            registration = self.registry.register(
                candidate.url,
                title=outcome.title or candidate.title,
                snippet=candidate.snippet,
                extracted_content=content,
            )
            if registration.is_new:
                await self._emit(streaming.source_delta(registration.item))
            self._fresh.append(registration.item)

        logger.info(f"Extraction stage kept {len(self._fresh)}/{len(selected)} sources at depth {depth}")
        return ResearchState.ANALYZING

    async def _enter_analyzing(self) -> ResearchState:
        session, activity = self._active()
        depth = self._iteration_depth()
        handle = await activity.record(ActivityKind.ANALYZE, depth, "Analyzing new findings")
        if not self._fresh:
            await activity.resolve(handle, ActivityStatus.COMPLETE, "No new content to analyze")
            return ResearchState.PLANNING

        findings = "\n\n".join(
            f"Source: {source.title} ({source.url})\n{source.content}" for source in self._fresh
        )
        prompt = render_prompt(
            "analyzer.prompt",
            query=session.query,
            depth=depth,
            summary=self.summary.strip() or "(empty)",
            findings=findings,
        )
        try:
            updated = await self.engine.complete(prompt, caller="analyzer")
        except Exception as exc:
            logger.warning(f"Analysis failed at depth {depth}: {exc}")
            await activity.resolve(handle, ActivityStatus.ERROR, f"Analysis failed: {exc}")
            return ResearchState.PLANNING

        if session.cancelled:
            await activity.resolve(handle, ActivityStatus.COMPLETE, "Analysis discarded after cancellation")
            return ResearchState.PLANNING
        if not isinstance(updated, str) or not updated.strip():
            await activity.resolve(handle, ActivityStatus.ERROR, "Analysis returned no summary")
            return ResearchState.PLANNING

        self.summary = updated.strip()
        await activity.resolve(
            handle,
            ActivityStatus.COMPLETE,
            f"Updated running summary from {len(self._fresh)} source(s)",
        )
        return ResearchState.PLANNING

    async def _enter_planning(self) -> ResearchState:
        session, activity = self._active()
        plan = await self.planner.plan(
            session, activity, self.registry.all_sources(), summary=self.summary
        )
        depth = session.advance_depth()
        await self._emit(streaming.depth_delta(depth, session.max_depth))

        if plan.decision == PlanDecision.FINISH:
            self.stop_reason = (
                StopReason.PLANNING_FAILED if plan.is_fallback else StopReason.PLANNER_FINISH
            )
            return ResearchState.SYNTHESIZING
        if not self.budget.should_start_iteration(session):
            self.stop_reason = self._stop_for_budget()
            return ResearchState.SYNTHESIZING

        self._queries = list(plan.next_queries)
        return ResearchState.SEARCHING

    async def _enter_synthesizing(self) -> ResearchState:
        session, activity = self._active()
        self._time_cap_reached = self.budget.time_exhausted(session)
        partial = session.cancelled or (
            self.stop_reason != StopReason.PLANNER_FINISH
            and not self.budget.should_start_iteration(session)
        )
        sources = self.registry.all_sources()
        handle = await activity.record(
            ActivityKind.SYNTHESIZE,
            session.current_depth,
            f"Writing {'partial' if partial else 'final'} report from {len(sources)} source(s)",
        )

        fragments: list[str] = []
        failure: Exception | None = None
        try:
            async for fragment in self.synthesizer.synthesize(
                activity, sources, session, summary=self.summary, partial=partial
            ):
                fragments.append(fragment)
                await self._emit(streaming.text_delta(fragment))
        except Exception as exc:
            failure = exc
            logger.error(f"Synthesis failed for session {session.id}: {exc}")

        report = "".join(fragments)
        if failure is not None or not report.strip():
            fallback = self.synthesizer.fallback_report(session, sources)
            addition = f"\n\n{fallback}" if report.strip() else fallback
            await self._emit(streaming.text_delta(addition))
            report += addition
            await activity.resolve(
                handle,
                ActivityStatus.ERROR,
                f"Report generation failed ({failure or 'empty report'}); used best-effort report",
            )
        else:
            await activity.resolve(handle, ActivityStatus.COMPLETE, f"Report ready ({len(report)} characters)")

        self.report = report
        return ResearchState.DONE

    def _final_status(self) -> SessionStatus:
        """Terminal status; the time cap is judged when the loop stopped, not after synthesis."""
        session = self._current_session()
        if self.stop_reason in (StopReason.INVALID_REQUEST, StopReason.INTERNAL_ERROR):
            return SessionStatus.FAILED
        if session.cancelled and session.current_depth == 0 and len(self.registry) == 0:
            return SessionStatus.FAILED
        if self.stop_reason == StopReason.TIME_EXHAUSTED or self._time_cap_reached:
            return SessionStatus.TIMED_OUT
        return SessionStatus.COMPLETED

    async def _enter_done(self) -> None:
        session = self._current_session()
        if self.stop_reason == StopReason.INVALID_REQUEST:
            self.report = render_prompt("reports.invalid_request", reason=self._invalid_reason)
        elif self.stop_reason is None and session.cancelled:
            self.stop_reason = StopReason.CANCELLED

        status = self._final_status()
        session.finish(status)
        sources = self.registry.all_sources()
        log_service.log_event(
            event_type="research_finished",
            message="Research finished",
            session_id=session.id,
            status=status.value,
            stop_reason=self.stop_reason.value if self.stop_reason else None,
            iterations=session.current_depth,
            sources=len(sources),
            errors=len(self.activity.errors()) if self.activity else 0,
            elapsed=round(session.elapsed(), 3),
        )
        await self._emit(
            streaming.finish(
                self.report,
                elapsed=session.elapsed(),
                iterations=session.current_depth,
                status=status.value,
                sources=sources,
            )
        )

    # -- drivers ----------------------------------------------------------

    def _handlers(self) -> dict[ResearchState, Callable[[], Awaitable[ResearchState]]]:
        return {
            ResearchState.INIT: self._enter_init,
            ResearchState.SEARCHING: self._enter_searching,
            ResearchState.EXTRACTING: self._enter_extracting,
            ResearchState.ANALYZING: self._enter_analyzing,
            ResearchState.PLANNING: self._enter_planning,
            ResearchState.SYNTHESIZING: self._enter_synthesizing,
        }

    async def run(self, request: ResearchRequest, sink: EventSink) -> ResearchSession:
        """Run the state machine to DONE, emitting every event into `sink`."""
        self._claim()
        return await self._run(request, sink)

    async def _run(self, request: ResearchRequest, sink: EventSink) -> ResearchSession:
        self._request = request
        self._sink = sink
        handlers = self._handlers()
        state = ResearchState.INIT

        try:
            while state != ResearchState.DONE:
                if (
                    state not in (ResearchState.INIT, ResearchState.SYNTHESIZING)
                    and self.session is not None
                    and self.session.cancelled
                ):
                    logger.info(f"Cancellation observed before {state.value}; synthesizing partial result")
                    self.stop_reason = StopReason.CANCELLED
                    state = ResearchState.SYNTHESIZING
                self.state = state
                self.transitions.append(state)
                state = await handlers[state]()
            self.state = ResearchState.DONE
            self.transitions.append(ResearchState.DONE)
            await self._enter_done()
        except Exception as exc:
            logger.exception(f"Research orchestration crashed in state {self.state.value}: {exc}")
            await self._finish_after_crash()
        return self._current_session()

    async def _finish_after_crash(self) -> None:
        if self._sink is None or self._sink.finished:
            return
        query = self._request.query if self._request and isinstance(self._request.query, str) else ""
        if self.session is None:
            self.session = ResearchSession(
                query=query,
                max_depth=MIN_DEPTH,
                time_limit=MIN_TIME_LIMIT_SECONDS,
                clock=self._clock,
            )
        self.stop_reason = StopReason.INTERNAL_ERROR
        if self.session.status == SessionStatus.ACTIVE:
            self.session.finish(SessionStatus.FAILED)
        sources = self.registry.all_sources()
        if not self.report.strip():
            self.report = (
                self.synthesizer.fallback_report(self.session, sources)
                if sources
                else render_prompt("reports.internal_error", query=self.session.query)
            )
        await self._emit(
            streaming.finish(
                self.report,
                elapsed=self.session.elapsed(),
                iterations=self.session.current_depth,
                status=self.session.status.value,
                sources=sources,
            )
        )

    async def research(self, request: ResearchRequest | str) -> AsyncGenerator[SSEEvent, None]:
        """Stream the session's events; the last one is always `finish`.

        Closing the generator early cancels the session.
        """
        self._claim()
        if isinstance(request, str):
            request = ResearchRequest(query=request)
        sink = EventSink(self.queue_size)
        producer = asyncio.create_task(self._run(request, sink))
        delivered_finish = False
        try:
            while not delivered_finish:
                getter = asyncio.ensure_future(sink.get())
                try:
                    await asyncio.wait({getter, producer}, return_when=asyncio.FIRST_COMPLETED)
                    if not getter.done() and producer.done() and sink.qsize() == 0:
                        break
                    event = await getter
                finally:
                    if not getter.done():
                        getter.cancel()
                delivered_finish = event.is_terminal
                yield event
            if not delivered_finish:
                yield self._orphan_finish(producer)
        finally:
            if not producer.done():
                self.cancel()
                producer.cancel()
                with suppress(asyncio.CancelledError):
                    await producer

    def _orphan_finish(self, producer: asyncio.Task) -> SSEEvent:
        """Failed finish for a producer that stopped without emitting one."""
        error = None if producer.cancelled() else producer.exception()
        logger.error(f"Research producer stopped without a finish event: {error!r}")
        session = self.session
        if session is not None and session.status == SessionStatus.ACTIVE:
            session.finish(SessionStatus.FAILED)
        return streaming.finish(
            self.report or ORPHAN_REPORT,
            elapsed=session.elapsed() if session else 0.0,
            iterations=session.current_depth if session else 0,
            status=SessionStatus.FAILED.value,
            sources=self.registry.all_sources(),
        )

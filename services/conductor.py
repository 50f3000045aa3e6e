"""
Conductor: drives one brand-intelligence run from handle to UnifiedReport.

    Idle -> FetchingSources -> Aggregating -> Fingerprinting
         -> RunningAgents -> Synthesizing -> Done

Any stage may move to Failed. Idle -> Done happens only on a cache hit.
Cancellation is checked at every transition; a cancelled run ends Failed
with failure "cancelled" and whatever it had gathered is discarded.

Connector and agent failures never fail the run. The fatal outcomes
besides cancellation are InsufficientSignal (no source returned anything)
and an internal fault such as a broken cache, reported as "internal_error: ...".
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from config import Settings, settings
from database import ReportSink
from models.internal import (
    AgentConfig,
    AgentKind,
    AgentReport,
    Corpus,
    Fingerprint,
    RunContext,
    RunState,
    SourceResult,
)
from models.requests import normalize_handle
from models.responses import (
    LookupStatus,
    ReportLookup,
    RunOutcome,
    SourceSummary,
    UnifiedReport,
)
from services.agents.base import Agent, run_agent
from services.aggregator import RankingWeights, aggregate
from services.cache import InMemoryReportCache, ReportCache
from services.errors import InsufficientSignal, InvalidTransition, RunCancelled
from services.fingerprint import FingerprintParams, compute_fingerprint, summarize_fingerprint
from services.generation import TextGenerator
from services.sources.base import SourceConnector

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict], Awaitable[None]]

ALLOWED_TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.IDLE: {RunState.FETCHING_SOURCES, RunState.DONE, RunState.FAILED},
    RunState.FETCHING_SOURCES: {RunState.AGGREGATING, RunState.FAILED},
    RunState.AGGREGATING: {RunState.FINGERPRINTING, RunState.FAILED},
    RunState.FINGERPRINTING: {RunState.RUNNING_AGENTS, RunState.FAILED},
    RunState.RUNNING_AGENTS: {RunState.SYNTHESIZING, RunState.FAILED},
    RunState.SYNTHESIZING: {RunState.DONE, RunState.FAILED},
    RunState.DONE: set(),
    RunState.FAILED: set(),
}


class ConductorOptions(BaseModel):
    max_connector_concurrency: int = 4
    max_agent_concurrency: int = 4
    fetch_timeout_sec: float = 20.0
    connector_timeout_sec: float = 15.0
    agent_timeout_sec: float = 45.0
    agent_stage_timeout_sec: float = 60.0
    cache_ttl_sec: float = 3600.0
    items_per_source: int = 25
    max_corpus_items: int = 100
    fingerprint_params: FingerprintParams = FingerprintParams()
    ranking_weights: RankingWeights = RankingWeights()

    @classmethod
    def from_settings(cls, s: Settings) -> "ConductorOptions":
        return cls(
            max_connector_concurrency=s.max_connector_concurrency,
            max_agent_concurrency=s.max_agent_concurrency,
            fetch_timeout_sec=s.fetch_timeout_sec,
            connector_timeout_sec=s.connector_timeout_sec,
            agent_timeout_sec=s.agent_timeout_sec,
            agent_stage_timeout_sec=s.agent_stage_timeout_sec,
            cache_ttl_sec=s.cache_ttl_sec,
            items_per_source=s.items_per_source,
            max_corpus_items=s.max_corpus_items,
            fingerprint_params=FingerprintParams(min_corpus_size=s.min_corpus_size),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conductor:
    def __init__(
        self,
        connectors: List[SourceConnector],
        agents: List[Agent],
        agent_configs: Dict[AgentKind, AgentConfig],
        generator: TextGenerator,
        cache: Optional[ReportCache] = None,
        sink: Optional[ReportSink] = None,
        options: Optional[ConductorOptions] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.connectors = list(connectors)
        self.agents = list(agents)
        self.agent_configs = dict(agent_configs)
        self.generator = generator
        self.cache = cache if cache is not None else InMemoryReportCache()
        self.sink = sink
        self.options = options or ConductorOptions.from_settings(settings)
        self._clock = clock
        self._in_flight: Dict[str, int] = {}
        self._background: Set[asyncio.Task] = set()

    # ── Public API ──

    async def run(
        self,
        handle: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
        caller: Optional[str] = None,
    ) -> RunOutcome:
        """
        Run the whole pipeline for one handle.

        Always returns a RunOutcome in state Done or Failed; connector and
        agent problems show up inside the report, not as exceptions.
        Raises ValueError only for a malformed handle.
        """
        handle = normalize_handle(handle)
        ctx = RunContext(
            run_id=uuid.uuid4().hex[:12],
            handle=handle,
            caller=caller,
            cancel_event=cancel_event or asyncio.Event(),
        )

        async def emit(event_type: str, **kwargs):
            if on_progress:
                await on_progress(event_type, kwargs)

        start = time.monotonic()
        self._in_flight[handle] = self._in_flight.get(handle, 0) + 1
        logger.info(f"Run {ctx.run_id} started for '{handle}' (caller: {caller or 'anonymous'})")
        try:
            cached = await self.cache.get(handle)
            if cached is not None:
                await self._transition(ctx, RunState.DONE, emit, cache_hit=True)
                logger.info(f"Run {ctx.run_id}: cache hit for '{handle}'")
                return self._outcome(ctx, report=cached, from_cache=True)

            report = await self._execute(ctx, emit)
            logger.info(
                f"Run {ctx.run_id} done for '{handle}' in {time.monotonic() - start:.1f}s "
                f"(overall {report.overall_score}, degraded={report.degraded})"
            )
            return self._outcome(ctx, report=report)

        except RunCancelled:
            logger.info(f"Run {ctx.run_id} cancelled in state {ctx.state.value}")
            await self._fail(ctx, "cancelled", emit)
        except InsufficientSignal as e:
            logger.warning(f"Run {ctx.run_id} failed for '{handle}': no usable sources {e.failures}")
            await self._fail(ctx, "insufficient_signal", emit)
        except InvalidTransition as e:
            logger.error(f"Run {ctx.run_id} attempted an invalid transition: {e}")
            await self._fail(ctx, f"internal_error: {e}", emit)
        except Exception as e:
            logger.error(f"Run {ctx.run_id} failed in state {ctx.state.value}: {e}", exc_info=True)
            await self._fail(ctx, f"internal_error: {e}", emit)
        finally:
            self._in_flight[handle] -= 1
            if not self._in_flight[handle]:
                del self._in_flight[handle]

        return self._outcome(ctx)

    def start(
        self,
        handle: str,
        cancel_event: Optional[asyncio.Event] = None,
        caller: Optional[str] = None,
    ) -> asyncio.Task:
        """Launch a tracked background run; get_report reports it as in progress until it ends."""
        handle = normalize_handle(handle)
        # Register now so a lookup right after start() already sees the run
        self._in_flight[handle] = self._in_flight.get(handle, 0) + 1

        async def _tracked():
            try:
                return await self.run(handle, cancel_event=cancel_event, caller=caller)
            finally:
                self._in_flight[handle] -= 1
                if not self._in_flight[handle]:
                    del self._in_flight[handle]

        task = asyncio.create_task(_tracked())
        self._keep(task)
        return task

    async def get_report(self, handle: str) -> ReportLookup:
        handle = normalize_handle(handle)
        report = await self.cache.get(handle)
        if report is not None:
            return ReportLookup(handle=handle, status=LookupStatus.READY, report=report)
        if self._in_flight.get(handle):
            return ReportLookup(handle=handle, status=LookupStatus.IN_PROGRESS)
        return ReportLookup(handle=handle, status=LookupStatus.NOT_FOUND)

    async def stream(
        self,
        handle: str,
        cancel_event: Optional[asyncio.Event] = None,
        caller: Optional[str] = None,
    ) -> AsyncIterator[dict]:
        """
        Progress events for one run, as dicts with a "type" key:
        state, source, fingerprint, agent_report, then a final result or failed.
        Closing the iterator early cancels the run.
        """
        handle = normalize_handle(handle)
        cancel_event = cancel_event or asyncio.Event()
        progress_q: asyncio.Queue = asyncio.Queue()

        async def on_progress(event_type: str, data: dict):
            await progress_q.put({"type": event_type, **data})

        task = asyncio.create_task(
            self.run(handle, cancel_event=cancel_event, on_progress=on_progress, caller=caller)
        )
        try:
            while not task.done():
                try:
                    yield await asyncio.wait_for(progress_q.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    pass

            while not progress_q.empty():
                yield progress_q.get_nowait()

            outcome = task.result()
            if outcome.succeeded:
                yield {
                    "type": "result",
                    "from_cache": outcome.from_cache,
                    "report": outcome.report.model_dump(mode="json"),
                }
            else:
                yield {"type": "failed", "failure": outcome.failure, "history": [s.value for s in outcome.history]}
        finally:
            if not task.done():
                cancel_event.set()
                self._keep(task)

    # ── Pipeline ──

    async def _execute(self, ctx: RunContext, emit) -> UnifiedReport:
        await self._transition(ctx, RunState.FETCHING_SOURCES, emit)
        ctx.source_results = await self._fetch_sources(ctx.handle, emit)

        await self._transition(ctx, RunState.AGGREGATING, emit)
        ctx.corpus = aggregate(
            ctx.source_results,
            ctx.handle,
            max_items=self.options.max_corpus_items,
            weights=self.options.ranking_weights,
        )

        await self._transition(ctx, RunState.FINGERPRINTING, emit)
        ctx.fingerprint = compute_fingerprint(ctx.corpus, self.options.fingerprint_params)
        await emit(
            "fingerprint",
            fingerprint=ctx.fingerprint.model_dump(mode="json"),
            summary=summarize_fingerprint(ctx.fingerprint).model_dump(),
        )

        await self._transition(ctx, RunState.RUNNING_AGENTS, emit)
        ctx.agent_reports = await self._run_agents(ctx.corpus, ctx.fingerprint, emit)

        await self._transition(ctx, RunState.SYNTHESIZING, emit)
        report = self._synthesize(ctx)

        await self._transition(ctx, RunState.DONE, emit)
        await self.cache.set(ctx.handle, report, self.options.cache_ttl_sec)
        if self.sink is not None:
            self._keep(asyncio.create_task(self._store(ctx.handle, report)))
        return report

    async def _fetch_sources(self, handle: str, emit) -> List[SourceResult]:
        if not self.connectors:
            return []

        opts = self.options
        semaphore = asyncio.Semaphore(opts.max_connector_concurrency)

        async def _one(connector: SourceConnector) -> SourceResult:
            async with semaphore:
                result = await connector.fetch(handle, opts.items_per_source, opts.connector_timeout_sec)
            await emit(
                "source",
                source=result.source_kind.value,
                status=result.status.value,
                items=len(result.signals),
                cause=result.cause,
            )
            return result

        tasks = [asyncio.create_task(_one(c)) for c in self.connectors]
        _, pending = await asyncio.wait(tasks, timeout=opts.fetch_timeout_sec)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Fetch stage deadline hit for '{handle}': {len(pending)} connector(s) cancelled")

        results = []
        for connector, task in zip(self.connectors, tasks):
            if task in pending:
                results.append(SourceResult.unavailable(connector.kind, "timeout"))
            elif task.exception() is not None:
                logger.error(f"Connector {connector.kind.value} raised: {task.exception()!r}")
                results.append(SourceResult.unavailable(connector.kind, f"error: {task.exception()}"))
            else:
                results.append(task.result())
        return results

    async def _run_agents(self, corpus: Corpus, fingerprint: Fingerprint, emit) -> Dict[AgentKind, AgentReport]:
        opts = self.options
        enabled = [
            (agent, self.agent_configs.get(agent.kind, agent.default_config))
            for agent in self.agents
        ]
        enabled = [(agent, config) for agent, config in enabled if config.enabled]
        if not enabled:
            return {}

        semaphore = asyncio.Semaphore(opts.max_agent_concurrency)

        async def _one(agent: Agent, config: AgentConfig) -> AgentReport:
            async with semaphore:
                report = await run_agent(agent, corpus, fingerprint, config, self.generator, opts.agent_timeout_sec)
            await emit("agent_report", report=report.model_dump(mode="json"))
            return report

        tasks = {agent.kind: asyncio.create_task(_one(agent, config)) for agent, config in enabled}
        _, pending = await asyncio.wait(tasks.values(), timeout=opts.agent_stage_timeout_sec)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Agent stage deadline hit: {len(pending)} agent(s) cancelled")

        reports: Dict[AgentKind, AgentReport] = {}
        for kind, task in tasks.items():
            if task in pending:
                report = AgentReport.failed(kind, "timeout", opts.agent_stage_timeout_sec)
                await emit("agent_report", report=report.model_dump(mode="json"))
            elif task.exception() is not None:
                logger.error(f"Agent {kind.value} raised: {task.exception()!r}")
                report = AgentReport.failed(kind, f"internal error: {task.exception()}")
                await emit("agent_report", report=report.model_dump(mode="json"))
            else:
                report = task.result()
            reports[kind] = report
        return reports

    def _synthesize(self, ctx: RunContext) -> UnifiedReport:
        scores = [r.score for r in ctx.agent_reports.values() if r.succeeded]
        overall = round(sum(scores) / len(scores), 1) if scores else None
        degraded = any(not r.succeeded for r in ctx.agent_reports.values())

        sources = {
            r.source_kind.value: SourceSummary(status=r.status, items=len(r.signals), cause=r.cause)
            for r in ctx.source_results
        }
        return UnifiedReport(
            handle=ctx.handle,
            fingerprint=ctx.fingerprint,
            per_agent=ctx.agent_reports,
            overall_score=overall,
            degraded=degraded,
            generated_at=self._clock(),
            corpus_size=len(ctx.corpus),
            sources=sources,
        )

    # ── State machine ──

    async def _transition(self, ctx: RunContext, new_state: RunState, emit, cache_hit: bool = False) -> None:
        if new_state not in ALLOWED_TRANSITIONS[ctx.state]:
            raise InvalidTransition(f"{ctx.state.value} -> {new_state.value}")
        if ctx.state == RunState.IDLE and new_state == RunState.DONE and not cache_hit:
            raise InvalidTransition("idle -> done is only valid for a cache hit")
        if ctx.cancelled:
            raise RunCancelled(ctx.handle)

        ctx.state = new_state
        ctx.history.append(new_state)
        logger.debug(f"Run {ctx.run_id}: -> {new_state.value}")
        await emit("state", state=new_state.value)

    async def _fail(self, ctx: RunContext, reason: str, emit) -> None:
        ctx.state = RunState.FAILED
        ctx.history.append(RunState.FAILED)
        ctx.failure = reason
        await emit("state", state=RunState.FAILED.value, failure=reason)

    def _outcome(self, ctx: RunContext, report: Optional[UnifiedReport] = None, from_cache: bool = False) -> RunOutcome:
        return RunOutcome(
            handle=ctx.handle,
            state=ctx.state,
            report=report if ctx.state == RunState.DONE else None,
            failure=ctx.failure,
            from_cache=from_cache,
            history=list(ctx.history),
        )

    # ── Background work ──

    def _keep(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _store(self, handle: str, report: UnifiedReport) -> None:
        try:
            await self.sink.store(handle, report)
        except Exception as e:
            logger.warning(f"Report sink write failed for '{handle}': {e}")

    async def drain(self) -> None:
        """Wait for background runs and sink writes; used at shutdown and in tests."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

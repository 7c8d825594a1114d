"""
Orchestrator - End-to-end query pipeline.

Control flow per query:

    cache lookup -> [hit: return]
    -> complexity estimate -> decision (meta-prompt advice optional)
    -> execute / stream -> quality gate -> (escalate) -> cache store -> audit

Every query is an independent, cancellable operation. The caller always gets
an OrchestrationResult back: aborts and backend failures become a result
with a system-authored message instead of an exception.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import TYPE_CHECKING

from switchyard.adapters.llm.models import ChatMessage, ChatRequest, ChatRole
from switchyard.config.errors import BackendError, RequestAbortedError
from switchyard.domains.quality.contracts import AnswerValidator
from switchyard.domains.quality.patterns import detect_sensitive
from switchyard.domains.quality.validator import QualityGateValidator
from switchyard.domains.routing.complexity import ComplexityEstimator
from switchyard.domains.routing.contracts import ComplexityScorer
from switchyard.domains.routing.decision import DecisionEngine
from switchyard.domains.routing.meta_prompt import MetaPromptAdvisor
from switchyard.domains.routing.models import (
    ComplexityScore,
    OrchestrationDecision,
    Preferences,
)

from .audit import build_audit_record
from .cache import ResponseCache
from .contracts import AuditSink
from .executor import StrategyExecutor
from .metrics import MetricsCollector
from .models import (
    CacheEntry,
    ChunkMeta,
    MetricsHistory,
    OrchestrationMetrics,
    OrchestrationResult,
    OrchestrationStatus,
    PipelineStep,
    Query,
)
from .streaming import ChunkCallback, StreamingExecutor

if TYPE_CHECKING:
    from switchyard.adapters.llm import BackendRegistry
    from switchyard.domains.routing.models import DecisionRecord

logger = logging.getLogger(__name__)

__all__ = ["ABORTED_MESSAGE", "Orchestrator"]

ABORTED_MESSAGE = "Request aborted by user."


class _Steps:
    """Collects timed pipeline steps."""

    def __init__(self) -> None:
        self.items: list[PipelineStep] = []
        self._started = time.time()

    def mark(self, name: str, status: str = "completed", detail: str = "") -> None:
        now = time.time()
        self.items.append(
            PipelineStep(
                name=name,
                status=status,
                duration_ms=(now - self._started) * 1000,
                detail=detail,
            )
        )
        self._started = now


class Orchestrator:
    """
    Query orchestrator.

    Coordinates:
    - Backend-scoped response caching
    - Complexity estimation and strategy decisions
    - Strategy execution with quality gate and escalation
    - Streaming with live backend switch
    - Decision audit and metrics

    Example:
        >>> orchestrator = Orchestrator(registry)
        >>> result = await orchestrator.run(Query(text="What is 2+2?"))
        >>> result.backend, result.escalated
        ('local', False)
    """

    def __init__(
        self,
        registry: BackendRegistry,
        estimator: ComplexityScorer | None = None,
        engine: DecisionEngine | None = None,
        validator: AnswerValidator | None = None,
        cache: ResponseCache | None = None,
        executor: StrategyExecutor | None = None,
        streamer: StreamingExecutor | None = None,
        advisor: MetaPromptAdvisor | None = None,
        audit: AuditSink | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            registry: Backend registry
            estimator: Complexity estimator
            engine: Decision engine
            validator: Quality gate
            cache: Response cache
            executor: Non-streaming strategy executor
            streamer: Streaming executor
            advisor: Meta-prompt advisor (None = deterministic decisions only)
            audit: Decision audit sink
            metrics: Metrics collector
        """
        self._registry = registry
        self.estimator = estimator or ComplexityEstimator()
        self.engine = engine or DecisionEngine(registry)
        self.validator = validator or QualityGateValidator()
        self.cache = cache or ResponseCache()
        self._executor = executor or StrategyExecutor(registry, self.validator)
        self._streamer = streamer or StreamingExecutor(registry)
        self._advisor = advisor
        self._audit = audit
        self._metrics = metrics or MetricsCollector()
        self._pending: set[asyncio.Task[None]] = set()

    async def run(
        self,
        query: Query | str,
        preferences: Preferences | None = None,
        abort: asyncio.Event | None = None,
    ) -> OrchestrationResult:
        """
        Answer a query without streaming.

        Args:
            query: Query (or bare text)
            preferences: Caller preferences
            abort: Cancellation signal

        Returns:
            OrchestrationResult (status ok, aborted or failed)
        """
        query = _as_query(query)
        prefs = preferences or Preferences()
        steps = _Steps()
        started = time.time()
        complexity: ComplexityScore | None = None
        decision: OrchestrationDecision | None = None

        try:
            cached = await self._lookup(query, steps)
            if cached is not None:
                return self._finish(query, self._cached_result(query, cached, steps), started)

            complexity, decision = await self._plan(query, prefs, steps, abort)
            execution = await self._executor.execute(
                self._build_request(query), decision, query.text, abort
            )
            steps.mark(
                "execute",
                detail=f"{decision.strategy.value} via {' -> '.join(execution.attempts)}",
            )

            if not execution.degraded and (
                execution.escalated
                or (execution.quality is not None and execution.quality.passed)
                or not self._registry.get(execution.backend).is_local
            ):
                await self._store(query, execution.text, execution.backend, decision, steps)

            result = OrchestrationResult(
                query_id=query.id,
                text=execution.text,
                backend=execution.backend,
                decision=decision,
                complexity=complexity,
                escalated=execution.escalated,
                degraded=execution.degraded,
                quality=execution.quality,
                steps=steps.items,
                cost=execution.cost,
            )
        except Exception as e:
            result = self._error_result(query, e, decision, complexity, steps)

        return self._finish(query, result, started)

    async def stream(
        self,
        query: Query | str,
        preferences: Preferences | None = None,
        on_chunk: ChunkCallback | None = None,
        abort: asyncio.Event | None = None,
    ) -> OrchestrationResult:
        """
        Answer a query, forwarding chunks to ``on_chunk`` as they arrive.

        A cache hit is delivered as a single chunk.
        """
        query = _as_query(query)
        prefs = preferences or Preferences()
        steps = _Steps()
        started = time.time()
        complexity: ComplexityScore | None = None
        decision: OrchestrationDecision | None = None

        try:
            cached = await self._lookup(query, steps)
            if cached is not None:
                await _deliver(on_chunk, cached.response, ChunkMeta(index=0, backend=cached.backend))
                return self._finish(query, self._cached_result(query, cached, steps), started)

            complexity, decision = await self._plan(query, prefs, steps, abort)
            streamed = await self._streamer.run(
                self._build_request(query),
                decision,
                on_chunk=on_chunk,
                abort=abort,
                min_confidence=prefs.min_confidence,
            )
            steps.mark(
                "stream",
                detail=f"{streamed.chunk_count} chunks via {' -> '.join(streamed.backends_used)}",
            )

            quality = self.validator.validate(streamed.content, query.text)
            steps.mark("validate", detail=f"overall {quality.overall:.2f}")

            if not streamed.degraded and (
                quality.passed
                or streamed.switched
                or not self._registry.get(streamed.backend).is_local
            ):
                await self._store(query, streamed.content, streamed.backend, decision, steps)

            result = OrchestrationResult(
                query_id=query.id,
                text=streamed.text,
                backend=streamed.backend,
                decision=decision,
                complexity=complexity,
                escalated=streamed.switched,
                degraded=streamed.degraded,
                quality=quality,
                switch_points=streamed.switch_points,
                steps=steps.items,
                cost=streamed.cost,
            )
        except Exception as e:
            result = self._error_result(query, e, decision, complexity, steps)

        return self._finish(query, result, started)

    async def plan(
        self,
        query: Query | str,
        preferences: Preferences | None = None,
    ) -> tuple[ComplexityScore, OrchestrationDecision]:
        """Estimate and decide without executing."""
        return await self._plan(_as_query(query), preferences or Preferences(), _Steps())

    def metrics(self) -> OrchestrationMetrics:
        return self._metrics.snapshot()

    def metrics_history(self) -> MetricsHistory:
        return self._metrics.history()

    async def aclose(self) -> None:
        """Drain pending audit writes and stop the cache sweeper."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.cache.stop_sweeper()

    # --- Steps ---

    async def _lookup(self, query: Query, steps: _Steps) -> CacheEntry | None:
        """Backend-scoped cache lookup; sensitive queries only see local entries."""
        if query.context:
            steps.mark("cache", status="skipped", detail="query has prior turns")
            return None

        local_id = self._registry.local_id
        scopes = [local_id]
        if not _is_sensitive(query):
            scopes += self._registry.cloud_ids()

        for backend_id in scopes:
            entry = await self.cache.lookup(query.text, backend_id)
            if entry is not None:
                steps.mark("cache", detail=f"hit on {backend_id}")
                return entry

        steps.mark("cache", detail="miss")
        return None

    async def _plan(
        self,
        query: Query,
        prefs: Preferences,
        steps: _Steps,
        abort: asyncio.Event | None = None,
    ) -> tuple[ComplexityScore, OrchestrationDecision]:
        complexity = await self.estimator.score(query.text, query.context)
        steps.mark("estimate", detail=f"complexity {complexity.score:.2f}")

        try:
            if self._advisor is not None and not complexity.contains_sensitive_data:
                advice = await self._advisor.advise(query.text, prefs, sensitive=False, abort=abort)
                decision = self.engine.decide_with_advice(query.text, complexity, prefs, advice)
            else:
                decision = self.engine.decide(query.text, complexity, prefs)
        except RequestAbortedError:
            raise
        except Exception as e:
            logger.warning("Decision failed, using conservative default: %s", e)
            decision = self.engine.conservative_decision(query.text, complexity)

        steps.mark(
            "decide",
            detail=f"{decision.strategy.value} -> {decision.target_backend} ({decision.source})",
        )
        return complexity, decision

    async def _store(
        self,
        query: Query,
        text: str,
        backend: str,
        decision: OrchestrationDecision,
        steps: _Steps,
    ) -> None:
        if query.context:
            return
        await self.cache.set(
            query.text,
            text,
            backend,
            metadata={"strategy": decision.strategy.value, "confidence": decision.confidence},
        )
        steps.mark("cache_store", detail=backend)

    @staticmethod
    def _build_request(query: Query) -> ChatRequest:
        messages = [ChatMessage(role=ChatRole(turn.role), content=turn.content) for turn in query.context]
        messages.append(ChatMessage(role=ChatRole.USER, content=query.text))
        return ChatRequest(messages=messages)

    # --- Results ---

    @staticmethod
    def _cached_result(query: Query, entry: CacheEntry, steps: _Steps) -> OrchestrationResult:
        return OrchestrationResult(
            query_id=query.id,
            text=entry.response,
            backend=entry.backend,
            cache_hit=True,
            steps=steps.items,
        )

    @staticmethod
    def _error_result(
        query: Query,
        error: Exception,
        decision: OrchestrationDecision | None,
        complexity: ComplexityScore | None,
        steps: _Steps,
    ) -> OrchestrationResult:
        if isinstance(error, RequestAbortedError):
            logger.info("Query %s aborted by user", query.id)
            status, message = OrchestrationStatus.ABORTED, ABORTED_MESSAGE
            steps.mark("abort", status="failed")
        elif isinstance(error, BackendError):
            logger.error("Query %s failed on %s: %s", query.id, error.backend, error.message)
            status, message = OrchestrationStatus.FAILED, f"Unable to get a response: {error.message}"
            steps.mark("execute", status="failed", detail=error.message)
        else:
            logger.exception("Orchestration failed for query %s", query.id)
            status, message = OrchestrationStatus.FAILED, f"Unable to get a response: {error}"
            steps.mark("pipeline", status="failed", detail=str(error))

        return OrchestrationResult(
            query_id=query.id,
            status=status,
            system_message=message,
            decision=decision,
            complexity=complexity,
            steps=steps.items,
        )

    def _finish(self, query: Query, result: OrchestrationResult, started: float) -> OrchestrationResult:
        result = result.model_copy(update={"latency_ms": (time.time() - started) * 1000})
        self._metrics.record(result)
        if result.decision is not None and self._audit is not None:
            self._schedule_audit(build_audit_record(query.text, result.decision, result))
        return result

    def _schedule_audit(self, record: DecisionRecord) -> None:
        task = asyncio.create_task(self._write_audit(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_audit(self, record: DecisionRecord) -> None:
        assert self._audit is not None
        try:
            await self._audit.append(record)
        except Exception as e:
            logger.warning("Audit write failed: %s", e)


def _as_query(query: Query | str) -> Query:
    return query if isinstance(query, Query) else Query(text=query)


def _is_sensitive(query: Query) -> bool:
    if detect_sensitive(query.text):
        return True
    return any(detect_sensitive(turn.content) for turn in query.context)


async def _deliver(on_chunk: ChunkCallback | None, text: str, meta: ChunkMeta) -> None:
    if on_chunk is None:
        return
    outcome = on_chunk(text, meta)
    if inspect.isawaitable(outcome):
        await outcome

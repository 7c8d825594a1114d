"""
Strategy Executor - Non-streaming execution of a routing decision.

State machine:

    local-only   one local call; validated for reporting, never escalated
    delegate     one call to the chosen cloud backend; validated for reporting
    hybrid       local call -> quality gate -> escalate to fallback on failure
    iterative    hybrid, with up to N local improvement rounds before escalating

Backend errors switch to the decision's fallback backend. Sensitive-data
decisions carry no fallback, so they can never leave the device this way.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from switchyard.adapters.llm.cancellation import ensure_not_aborted, run_cancellable
from switchyard.adapters.llm.models import ChatMessage, ChatRequest, ChatResponse, ChatRole, Usage
from switchyard.config.errors import BackendError
from switchyard.domains.quality.contracts import AnswerValidator
from switchyard.domains.quality.models import QualityThresholds, QualityValidationResult
from switchyard.domains.routing.models import OrchestrationDecision, Strategy

from .models import ExecutionResult

if TYPE_CHECKING:
    from switchyard.adapters.llm import BackendRegistry

logger = logging.getLogger(__name__)

__all__ = ["IMPROVE_INSTRUCTION", "StrategyExecutor", "estimate_tokens"]

IMPROVE_INSTRUCTION = (
    "Your previous answer did not fully address the question. Rewrite it so it is "
    "complete, directly relevant and clearly structured."
)


def estimate_tokens(text: str) -> int:
    """Rough token count (4 characters per token)."""
    return math.ceil(len(text) / 4)


class StrategyExecutor:
    """
    Executes a decision against the backend registry.

    Example:
        >>> executor = StrategyExecutor(registry, QualityGateValidator())
        >>> result = await executor.execute(request, decision, "What is 2+2?")
        >>> result.backend, result.escalated
        ('local', False)
    """

    def __init__(
        self,
        registry: BackendRegistry,
        validator: AnswerValidator,
        iterative_local_retries: int = 1,
        thresholds: QualityThresholds | None = None,
    ) -> None:
        """
        Initialize executor.

        Args:
            registry: Backend registry (adapters and concurrency slots)
            validator: Quality gate
            iterative_local_retries: Local improvement rounds for ``iterative``
            thresholds: Quality thresholds passed to the validator
        """
        self._registry = registry
        self._validator = validator
        self._retries = iterative_local_retries
        self._thresholds = thresholds

    async def execute(
        self,
        request: ChatRequest,
        decision: OrchestrationDecision,
        query: str,
        abort: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """
        Run the decision's strategy.

        Args:
            request: Chat request (model is filled in per backend)
            decision: Routing decision
            query: Original query text, for validation
            abort: Cancellation signal

        Returns:
            ExecutionResult

        Raises:
            BackendError: Target and fallback both failed
            RequestAbortedError: The abort signal fired
        """
        run = _Run(decision.strategy)

        if decision.strategy in (Strategy.LOCAL_ONLY, Strategy.DELEGATE):
            text, backend = await self._call_with_fallback(
                run, decision.target_backend, decision.fallback_backend, request, abort
            )
            return run.result(text, backend, self._validate(text, query))

        return await self._local_first(run, request, decision, query, abort)

    async def _local_first(
        self,
        run: _Run,
        request: ChatRequest,
        decision: OrchestrationDecision,
        query: str,
        abort: asyncio.Event | None,
    ) -> ExecutionResult:
        target = decision.target_backend
        fallback = decision.fallback_backend

        try:
            text = await self._call(run, target, request, abort)
        except BackendError as e:
            if fallback is None:
                raise
            logger.warning("Backend %s failed (%s), using fallback %s", target, e.message, fallback)
            text = await self._call(run, fallback, request, abort)
            run.escalated = True
            return run.result(text, fallback, self._validate(text, query))

        quality = self._validate(text, query)

        rounds = self._retries if decision.strategy == Strategy.ITERATIVE else 0
        for attempt in range(1, rounds + 1):
            if quality.passed:
                break
            logger.info(
                "Local answer below gate (%.2f), improvement round %d/%d",
                quality.overall,
                attempt,
                rounds,
            )
            retry = request.with_messages(
                [
                    *request.messages,
                    ChatMessage(role=ChatRole.ASSISTANT, content=text),
                    ChatMessage(role=ChatRole.USER, content=IMPROVE_INSTRUCTION),
                ]
            )
            try:
                improved = await self._call(run, target, retry, abort)
            except BackendError as e:
                logger.warning("Improvement round failed on %s: %s", target, e.message)
                break
            improved_quality = self._validate(improved, query)
            if improved_quality.overall >= quality.overall:
                text, quality = improved, improved_quality

        if quality.passed or fallback is None:
            return run.result(text, target, quality)

        logger.info(
            "Escalating %s -> %s: %s",
            target,
            fallback,
            quality.reasoning,
        )
        try:
            escalated = await self._call(run, fallback, request, abort)
        except BackendError as e:
            logger.warning("Escalation to %s failed (%s), keeping local answer", fallback, e.message)
            run.degraded = True
            return run.result(text, target, quality)

        run.escalated = True
        return run.result(escalated, fallback, self._validate(escalated, query))

    async def _call_with_fallback(
        self,
        run: _Run,
        target: str,
        fallback: str | None,
        request: ChatRequest,
        abort: asyncio.Event | None,
    ) -> tuple[str, str]:
        try:
            return await self._call(run, target, request, abort), target
        except BackendError as e:
            if fallback is None:
                raise
            logger.warning("Backend %s failed (%s), using fallback %s", target, e.message, fallback)
            return await self._call(run, fallback, request, abort), fallback

    async def _call(
        self,
        run: _Run,
        backend_id: str,
        request: ChatRequest,
        abort: asyncio.Event | None,
    ) -> str:
        """One non-streaming call holding the backend's concurrency slot."""
        ensure_not_aborted(abort)
        backend = self._registry.get(backend_id)
        adapter = self._registry.adapter(backend_id)
        prepared = request.for_model(backend.model, stream=False)

        run.attempts.append(backend_id)
        async with self._registry.slot(backend_id):
            response: ChatResponse = await run_cancellable(adapter.query(prepared, abort), abort)

        text = response.text
        usage = response.usage or Usage(
            prompt_tokens=sum(estimate_tokens(m.content) for m in prepared.messages),
            completion_tokens=estimate_tokens(text),
        )
        total = usage.total_tokens or usage.prompt_tokens + usage.completion_tokens
        run.add_usage(usage, total, backend.estimate_cost(total))
        return text

    def _validate(self, answer: str, query: str) -> QualityValidationResult:
        return self._validator.validate(answer, query, self._thresholds)


class _Run:
    """Mutable bookkeeping for one execution."""

    def __init__(self, strategy: Strategy) -> None:
        self.strategy = strategy
        self.attempts: list[str] = []
        self.escalated = False
        self.degraded = False
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.cost = 0.0

    def add_usage(self, usage: Usage, total: int, cost: float) -> None:
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += total
        self.cost += cost

    def result(
        self,
        text: str,
        backend: str,
        quality: QualityValidationResult,
    ) -> ExecutionResult:
        return ExecutionResult(
            text=text,
            backend=backend,
            strategy=self.strategy,
            escalated=self.escalated,
            degraded=self.degraded,
            quality=quality,
            attempts=list(self.attempts),
            usage=Usage(
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens,
                total_tokens=self.total_tokens,
            ),
            cost=round(self.cost, 6),
        )

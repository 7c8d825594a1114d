"""
Decision Engine - Deterministic strategy and backend selection.

Maps a complexity score and caller preferences to an OrchestrationDecision:

1. Sensitive data forces ``local-only`` on the local backend (no fallback).
2. Thresholds (local < 0.4, hybrid < 0.7, cloud otherwise) shifted by the
   preference bias: ``cost`` +0.1 toward local, ``quality`` -0.1 toward cloud.
3. Cloud backends come from a per-category priority list intersected with
   the available backends; a fallback backend is always computed.
4. Cost and latency caps downgrade the choice.

Every decision is appended to the decision log; a log failure is logged
and never fails the decision.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .complexity import ComplexityEstimator
from .contracts import DecisionSink
from .models import (
    ComplexityScore,
    DecisionThresholds,
    MetaPromptAdvice,
    OrchestrationDecision,
    ParsedAdvice,
    ParseFailure,
    Preferences,
    Priority,
    Strategy,
    TaskCategory,
)

if TYPE_CHECKING:
    from switchyard.adapters.llm import Backend, BackendRegistry

logger = logging.getLogger(__name__)

__all__ = ["DecisionEngine", "DEFAULT_PRIORITIES"]

DEFAULT_PRIORITIES: dict[str, list[str]] = {
    TaskCategory.CODING.value: ["claude", "gpt4", "gemini"],
    TaskCategory.CREATIVE.value: ["gpt4", "claude", "gemini"],
    TaskCategory.MATH.value: ["gemini", "gpt4", "claude"],
    TaskCategory.GENERAL.value: ["claude", "gpt4", "gemini"],
}

# Expected completion size added to the prompt estimate for cost planning
EXPECTED_COMPLETION_TOKENS = 500
LATENCY_PER_COMPLEXITY_MS = 2000


class DecisionEngine:
    """
    Strategy selector.

    Example:
        >>> engine = DecisionEngine(registry)
        >>> decision = engine.decide("What is 2+2?", score)
        >>> decision.strategy
        <Strategy.LOCAL_ONLY: 'local-only'>
    """

    def __init__(
        self,
        registry: BackendRegistry,
        thresholds: DecisionThresholds | None = None,
        priorities: dict[str, list[str]] | None = None,
        default_cloud: str = "claude",
        decision_log: DecisionSink | None = None,
    ) -> None:
        """
        Initialize engine.

        Args:
            registry: Read-only backend registry
            thresholds: Complexity thresholds and preference bias
            priorities: Cloud backend priority list per task category
            default_cloud: Cloud backend used when no specialised one is available
            decision_log: Append-only sink receiving every decision
        """
        self._registry = registry
        self.thresholds = thresholds or DecisionThresholds()
        self._priorities = priorities or DEFAULT_PRIORITIES
        self._default_cloud = default_cloud
        self._log = decision_log

    def decide(
        self,
        query: str,
        complexity: ComplexityScore,
        preferences: Preferences | None = None,
    ) -> OrchestrationDecision:
        """
        Choose a strategy, target and fallback backend.

        Args:
            query: Query text (digested for the decision log)
            complexity: Complexity score of the query
            preferences: Caller preferences (defaults to balanced)

        Returns:
            Immutable decision
        """
        prefs = preferences or Preferences()
        decision = self._enforce_privacy(self._select(complexity, prefs), complexity)
        self._record(query, decision)
        return decision

    def decide_with_advice(
        self,
        query: str,
        complexity: ComplexityScore,
        preferences: Preferences | None,
        advice: MetaPromptAdvice,
    ) -> OrchestrationDecision:
        """
        Honour validated meta-prompt advice, else take the deterministic path.

        The sensitive-data rule is applied after parsing; the model's own
        claims can only make a decision more private, never less.
        """
        prefs = preferences or Preferences()

        if complexity.contains_sensitive_data:
            return self.decide(query, complexity, prefs)

        if isinstance(advice, ParseFailure):
            logger.warning("Meta-prompt advice rejected (%s), using thresholds", advice.reason)
            return self.decide(query, complexity, prefs)

        decision = self._from_advice(advice, complexity, prefs)
        if decision is None:
            return self.decide(query, complexity, prefs)

        decision = self._enforce_privacy(decision, complexity)
        self._record(query, decision)
        return decision

    def conservative_decision(
        self,
        query: str,
        complexity: ComplexityScore,
    ) -> OrchestrationDecision:
        """
        Safe default when deciding itself failed.

        ``delegate`` to the most trusted cloud backend, or ``local-only``
        when sensitive data was detected or no cloud backend is available.
        """
        local = self._registry.local()
        trusted = self._registry.most_trusted_cloud()

        if complexity.contains_sensitive_data or trusted is None:
            decision = self._local_decision(
                complexity,
                fallback=None,
                reasoning="Conservative default: stay on device",
                source="conservative",
            )
        else:
            others = sorted(
                (
                    self._registry.get(bid)
                    for bid in self._registry.cloud_ids()
                    if bid != trusted.id
                ),
                key=lambda b: b.trust_rank,
                reverse=True,
            )
            fallback = others[0].id if others else local.id
            decision = OrchestrationDecision(
                strategy=Strategy.DELEGATE,
                target_backend=trusted.id,
                fallback_backend=fallback,
                confidence=0.5,
                estimated_latency_ms=self._estimate_latency(trusted, complexity),
                estimated_cost=self._estimate_cost(trusted, complexity),
                reasoning=f"Conservative default: delegate to most trusted backend {trusted.id}",
                source="conservative",
            )

        self._record(query, decision)
        return decision

    def cloud_candidates(
        self,
        complexity: ComplexityScore,
        preferences: Preferences | None = None,
    ) -> list[str]:
        """Available cloud backends in priority order for the query's category."""
        prefs = preferences or Preferences()
        available = self._registry.cloud_ids()

        ordered = [
            bid
            for bid in self._priorities.get(complexity.task_category.value, [])
            if bid in available
        ]
        if self._default_cloud in available and self._default_cloud not in ordered:
            ordered.append(self._default_cloud)
        ordered.extend(bid for bid in available if bid not in ordered)

        if prefs.priority == Priority.LATENCY:
            ordered.sort(key=lambda bid: self._registry.get(bid).base_latency_ms)
        return ordered

    # --- Selection ---

    def _select(self, complexity: ComplexityScore, prefs: Preferences) -> OrchestrationDecision:
        if complexity.contains_sensitive_data:
            return self._local_decision(
                complexity,
                fallback=None,
                reasoning=(
                    "Sensitive data detected "
                    f"({', '.join(complexity.sensitive_kinds)}); query stays on device"
                ),
            )

        candidates = self.cloud_candidates(complexity, prefs)

        if prefs.strategy_override is not None:
            return self._override(prefs.strategy_override, complexity, candidates)

        if not candidates:
            return self._local_decision(
                complexity,
                fallback=None,
                reasoning=f"{complexity.reasoning}; no cloud backend available",
            )

        local_max, cloud_min = self.thresholds.adjusted(prefs.priority)
        score = complexity.score
        band = f"{complexity.reasoning}; thresholds {local_max:.2f}/{cloud_min:.2f}"

        if score < local_max:
            return self._local_decision(
                complexity,
                fallback=candidates[0],
                reasoning=f"{band}; simple query handled locally",
            )

        if prefs.max_cost_per_query is not None:
            affordable = [
                bid
                for bid in candidates
                if self._estimate_cost(self._registry.get(bid), complexity)
                <= prefs.max_cost_per_query
            ]
            if not affordable:
                cheapest = min(candidates, key=lambda bid: self._registry.get(bid).cost_per_1k_tokens)
                return self._hybrid_decision(
                    complexity,
                    cheapest,
                    reasoning=f"{band}; cloud cost exceeds cap, starting locally",
                )
            candidates = affordable

        if score < cloud_min:
            return self._hybrid_decision(
                complexity,
                candidates[0],
                reasoning=f"{band}; moderate query, local first with {candidates[0]} escalation",
            )

        decision = self._delegate_decision(
            complexity,
            candidates,
            reasoning=f"{band}; complex query delegated to {candidates[0]}",
        )

        if (
            prefs.max_latency_ms is not None
            and decision.estimated_latency_ms > prefs.max_latency_ms
            and self._estimate_latency(self._registry.local(), complexity) <= prefs.max_latency_ms
        ):
            return self._hybrid_decision(
                complexity,
                candidates[0],
                reasoning=f"{band}; cloud latency exceeds cap, starting locally",
            )
        return decision

    def _override(
        self,
        strategy: Strategy,
        complexity: ComplexityScore,
        candidates: list[str],
    ) -> OrchestrationDecision:
        reason = f"{complexity.reasoning}; strategy {strategy.value} requested by caller"
        if strategy == Strategy.LOCAL_ONLY or not candidates:
            return self._local_decision(
                complexity,
                fallback=candidates[0] if candidates else None,
                reasoning=reason if candidates else f"{reason}; no cloud backend available",
                source="override",
            )
        if strategy == Strategy.DELEGATE:
            decision = self._delegate_decision(complexity, candidates, reason)
        else:
            decision = self._hybrid_decision(complexity, candidates[0], reason, strategy)
        return decision.model_copy(update={"source": "override"})

    def _from_advice(
        self,
        advice: ParsedAdvice,
        complexity: ComplexityScore,
        prefs: Preferences,
    ) -> OrchestrationDecision | None:
        """Translate validated advice; None if it is inconsistent with the registry."""
        local_id = self._registry.local_id
        candidates = self.cloud_candidates(complexity, prefs)

        if advice.claims_sensitive or advice.strategy == Strategy.LOCAL_ONLY:
            decision = self._local_decision(
                complexity,
                fallback=None if advice.claims_sensitive else (candidates[0] if candidates else None),
                reasoning=f"Meta-prompt: {advice.reasoning}",
                source="meta-prompt",
            )
            return decision.model_copy(update={"confidence": advice.confidence})

        if not self._registry.is_available(advice.target_backend):
            logger.warning("Meta-prompt chose unavailable backend %s", advice.target_backend)
            return None

        if advice.strategy == Strategy.DELEGATE:
            if advice.target_backend == local_id:
                return None
            ordered = [advice.target_backend] + [c for c in candidates if c != advice.target_backend]
            decision = self._delegate_decision(complexity, ordered, f"Meta-prompt: {advice.reasoning}")
        else:
            if not candidates:
                return None
            escalation = advice.target_backend if advice.target_backend != local_id else candidates[0]
            decision = self._hybrid_decision(
                complexity, escalation, f"Meta-prompt: {advice.reasoning}", advice.strategy
            )

        return decision.model_copy(update={"confidence": advice.confidence, "source": "meta-prompt"})

    # --- Builders ---

    def _local_decision(
        self,
        complexity: ComplexityScore,
        fallback: str | None,
        reasoning: str,
        source: str = "deterministic",
    ) -> OrchestrationDecision:
        local = self._registry.local()
        confidence = ComplexityEstimator.agreement_confidence(complexity.factors)
        if complexity.contains_sensitive_data:
            confidence = max(confidence, 0.7)
        return OrchestrationDecision(
            strategy=Strategy.LOCAL_ONLY,
            target_backend=local.id,
            fallback_backend=fallback,
            confidence=confidence,
            estimated_latency_ms=self._estimate_latency(local, complexity),
            estimated_cost=self._estimate_cost(local, complexity),
            reasoning=reasoning,
            source=source,
        )

    def _hybrid_decision(
        self,
        complexity: ComplexityScore,
        escalation: str,
        reasoning: str,
        strategy: Strategy = Strategy.HYBRID,
    ) -> OrchestrationDecision:
        local = self._registry.local()
        return OrchestrationDecision(
            strategy=strategy,
            target_backend=local.id,
            fallback_backend=escalation,
            confidence=ComplexityEstimator.agreement_confidence(complexity.factors),
            estimated_latency_ms=self._estimate_latency(local, complexity),
            estimated_cost=self._estimate_cost(local, complexity),
            reasoning=reasoning,
        )

    def _delegate_decision(
        self,
        complexity: ComplexityScore,
        candidates: list[str],
        reasoning: str,
    ) -> OrchestrationDecision:
        target = self._registry.get(candidates[0])
        fallback = candidates[1] if len(candidates) > 1 else self._registry.local_id
        return OrchestrationDecision(
            strategy=Strategy.DELEGATE,
            target_backend=target.id,
            fallback_backend=fallback,
            confidence=ComplexityEstimator.agreement_confidence(complexity.factors),
            estimated_latency_ms=self._estimate_latency(target, complexity),
            estimated_cost=self._estimate_cost(target, complexity),
            reasoning=reasoning,
        )

    def _enforce_privacy(
        self,
        decision: OrchestrationDecision,
        complexity: ComplexityScore,
    ) -> OrchestrationDecision:
        """Sensitive queries are local-only on the local backend, whatever chose them."""
        if not complexity.contains_sensitive_data:
            return decision
        local_id = self._registry.local_id
        if (
            decision.strategy == Strategy.LOCAL_ONLY
            and decision.target_backend == local_id
            and decision.fallback_backend is None
        ):
            return decision
        logger.warning("Privacy override: %s decision forced to local-only", decision.source)
        return decision.model_copy(
            update={
                "strategy": Strategy.LOCAL_ONLY,
                "target_backend": local_id,
                "fallback_backend": None,
                "confidence": max(decision.confidence, 0.7),
                "estimated_cost": 0.0,
                "reasoning": f"{decision.reasoning}; sensitive data forces local-only",
            }
        )

    def _record(self, query: str, decision: OrchestrationDecision) -> None:
        logger.info(
            "Decision: strategy=%s target=%s fallback=%s confidence=%.2f source=%s",
            decision.strategy.value,
            decision.target_backend,
            decision.fallback_backend,
            decision.confidence,
            decision.source,
        )
        if self._log is None:
            return
        try:
            self._log.append(query, decision)
        except Exception as e:
            logger.warning("Decision log append failed: %s", e)

    @staticmethod
    def _estimate_latency(backend: Backend, complexity: ComplexityScore) -> float:
        return round(backend.base_latency_ms + complexity.score * LATENCY_PER_COMPLEXITY_MS, 2)

    @staticmethod
    def _estimate_cost(backend: Backend, complexity: ComplexityScore) -> float:
        tokens = complexity.estimated_tokens + EXPECTED_COMPLETION_TOKENS
        return round(backend.estimate_cost(tokens), 6)

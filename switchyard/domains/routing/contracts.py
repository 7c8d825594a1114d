"""
Routing Contracts - Interfaces for the routing domain.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from .models import (
    ComplexityScore,
    ContextTurn,
    DecisionRecord,
    MetaPromptAdvice,
    OrchestrationDecision,
    Preferences,
)


@runtime_checkable
class ComplexityScorer(Protocol):
    """Contract for query complexity estimation."""

    async def score(
        self,
        query: str,
        context: Sequence[ContextTurn | str] | None = None,
    ) -> ComplexityScore:
        """
        Score a query's difficulty and sensitivity.

        Args:
            query: Query text
            context: Prior conversation turns

        Returns:
            Complexity score; never raises for embedding failures
        """
        ...


@runtime_checkable
class DecisionMaker(Protocol):
    """Contract for strategy and backend selection."""

    def decide(
        self,
        query: str,
        complexity: ComplexityScore,
        preferences: Preferences | None = None,
    ) -> OrchestrationDecision:
        """
        Choose strategy, target and fallback backend for a query.

        Args:
            query: Query text (digested for the audit log)
            complexity: Complexity score of the query
            preferences: Caller preferences

        Returns:
            Immutable decision
        """
        ...


@runtime_checkable
class DecisionSink(Protocol):
    """Append-only sink for decisions."""

    def append(self, query: str, decision: OrchestrationDecision) -> DecisionRecord:
        """Record a decision."""
        ...


@runtime_checkable
class RoutingAdvisor(Protocol):
    """Contract for model-driven routing advice."""

    async def advise(
        self,
        query: str,
        preferences: Preferences,
        sensitive: bool,
        abort: asyncio.Event | None = None,
    ) -> MetaPromptAdvice:
        """Ask a model for routing advice; failures come back as ParseFailure."""
        ...

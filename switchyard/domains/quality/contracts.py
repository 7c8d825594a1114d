"""
Quality Contracts - Interfaces for the quality domain.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import QualityThresholds, QualityValidationResult, SwitchVerdict


@runtime_checkable
class AnswerValidator(Protocol):
    """Contract for the quality gate."""

    def validate(
        self,
        answer: str,
        query: str,
        thresholds: QualityThresholds | None = None,
    ) -> QualityValidationResult:
        """
        Score a candidate answer against the query that produced it.

        Args:
            answer: Candidate answer text
            query: Original user query
            thresholds: Optional per-call thresholds

        Returns:
            Validation result; never raises for a bad answer
        """
        ...


@runtime_checkable
class StreamQualityMonitor(Protocol):
    """Contract for cheap checks over a partially streamed answer."""

    def should_check(self, chunk_count: int) -> bool:
        """Whether a check is due after ``chunk_count`` chunks."""
        ...

    def evaluate(self, chunks: list[str], min_confidence: float | None = None) -> SwitchVerdict:
        """Decide whether the stream should switch backends."""
        ...

"""
Decision Log - Bounded, append-only in-process record of routing decisions.
"""

from __future__ import annotations

import hashlib
from collections import Counter, deque

from .models import DecisionRecord, OrchestrationDecision

__all__ = ["DecisionLog", "query_digest"]


def query_digest(query: str) -> str:
    """Stable digest used instead of raw query text in audit records."""
    return hashlib.sha256(query.encode("utf-8")).hexdigest()[:16]


class DecisionLog:
    """Append-only decision history (oldest records roll off past ``max_records``)."""

    def __init__(self, max_records: int = 10_000) -> None:
        self._records: deque[DecisionRecord] = deque(maxlen=max_records)

    def append(self, query: str, decision: OrchestrationDecision) -> DecisionRecord:
        record = DecisionRecord(query_digest=query_digest(query), decision=decision)
        self._records.append(record)
        return record

    def records(self) -> list[DecisionRecord]:
        return list(self._records)

    def counts_by_strategy(self) -> dict[str, int]:
        return dict(Counter(r.decision.strategy.value for r in self._records))

    def __len__(self) -> int:
        return len(self._records)

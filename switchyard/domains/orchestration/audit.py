"""
Audit - Decision audit records and an in-memory sink.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from switchyard.domains.routing.decision_log import query_digest
from switchyard.domains.routing.models import DecisionRecord, OrchestrationDecision

from .models import OrchestrationResult

__all__ = ["InMemoryAuditSink", "build_audit_record", "result_summary"]


def result_summary(result: OrchestrationResult) -> dict[str, Any]:
    """Compact, text-free summary of an orchestration result."""
    return {
        "status": result.status.value,
        "backend": result.backend,
        "escalated": result.escalated,
        "degraded": result.degraded,
        "cache_hit": result.cache_hit,
        "quality": result.quality.overall if result.quality else None,
        "passed": result.quality.passed if result.quality else None,
        "switches": len(result.switch_points),
        "latency_ms": round(result.latency_ms, 2),
        "cost": result.cost,
    }


def build_audit_record(
    query: str,
    decision: OrchestrationDecision,
    result: OrchestrationResult,
) -> DecisionRecord:
    return DecisionRecord(
        query_digest=query_digest(query),
        decision=decision,
        result=result_summary(result),
    )


class InMemoryAuditSink:
    """Bounded in-process audit sink."""

    def __init__(self, max_records: int = 10_000) -> None:
        self._records: deque[DecisionRecord] = deque(maxlen=max_records)

    async def append(self, record: DecisionRecord) -> None:
        self._records.append(record)

    def records(self) -> list[DecisionRecord]:
        return list(self._records)

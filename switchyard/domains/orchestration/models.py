"""
Orchestration Models - Data types for the orchestration domain.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from switchyard.adapters.llm.models import Usage
from switchyard.domains.quality.models import QualityValidationResult
from switchyard.domains.routing.models import (
    ComplexityScore,
    ContextTurn,
    OrchestrationDecision,
    Strategy,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Query(BaseModel):
    """User query plus prior turns. Immutable once submitted."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    text: str = Field(min_length=1)
    context: list[ContextTurn] = Field(default_factory=list)

    model_config = {"frozen": True}


class CacheEntry(BaseModel):
    """Memoized response, scoped to the backend that produced it."""

    key: str
    backend: str
    query_hash: str
    query: str
    normalized: str
    response: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    hits: int = 0


class CacheStats(BaseModel):
    """Cache diagnostics."""

    size: int
    capacity: int
    hits: int
    misses: int
    hit_rate: float
    total_entry_hits: int
    by_backend: dict[str, int] = Field(default_factory=dict)
    errors: int = 0
    last_error: str | None = None


class ChunkMeta(BaseModel):
    """Metadata passed alongside each streamed chunk."""

    index: int
    backend: str
    kind: Literal["content", "marker", "notice"] = "content"


class StreamingSwitchPoint(BaseModel):
    """Mid-stream escalation record."""

    timestamp: datetime = Field(default_factory=_utcnow)
    chunk_index: int
    reason: str
    quality_score: float
    from_backend: str
    to_backend: str
    succeeded: bool = True


class StreamingResult(BaseModel):
    """Outcome of one streamed execution."""

    text: str  # everything delivered, markers included
    content: str  # answer text only
    backend: str
    backends_used: list[str] = Field(default_factory=list)
    chunk_count: int = 0
    switch_points: list[StreamingSwitchPoint] = Field(default_factory=list)
    degraded: bool = False
    cost: float = 0.0

    @property
    def switched(self) -> bool:
        return any(p.succeeded for p in self.switch_points)


class ExecutionResult(BaseModel):
    """Outcome of one non-streamed strategy execution."""

    text: str
    backend: str
    strategy: Strategy
    escalated: bool = False
    degraded: bool = False
    quality: QualityValidationResult | None = None
    attempts: list[str] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    cost: float = 0.0


class OrchestrationStatus(str, Enum):
    OK = "ok"
    ABORTED = "aborted"
    FAILED = "failed"


class PipelineStep(BaseModel):
    """Single step in an orchestration run."""

    name: str
    status: str  # completed, skipped, failed
    duration_ms: float = 0.0
    detail: str = ""


class OrchestrationResult(BaseModel):
    """What the caller gets back for one query. Never an exception."""

    query_id: str
    status: OrchestrationStatus = OrchestrationStatus.OK
    text: str = ""
    system_message: str | None = None
    backend: str | None = None
    decision: OrchestrationDecision | None = None
    complexity: ComplexityScore | None = None
    escalated: bool = False
    degraded: bool = False
    cache_hit: bool = False
    quality: QualityValidationResult | None = None
    switch_points: list[StreamingSwitchPoint] = Field(default_factory=list)
    steps: list[PipelineStep] = Field(default_factory=list)
    latency_ms: float = 0.0
    cost: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == OrchestrationStatus.OK


class OrchestrationMetrics(BaseModel):
    """Aggregate counters since the orchestrator started."""

    total_queries: int = 0
    by_strategy: dict[str, int] = Field(default_factory=dict)
    by_backend: dict[str, int] = Field(default_factory=dict)
    escalations: int = 0
    stream_switches: int = 0
    cache_hits: int = 0
    aborted: int = 0
    failed: int = 0
    average_confidence: float = 0.0
    average_latency_ms: float = 0.0
    total_cost: float = 0.0
    cache_hit_rate: float = 0.0
    quality_pass_rate: float = 0.0


class MetricsSnapshot(BaseModel):
    """Cumulative metrics as they stood at the end of a time bucket."""

    timestamp: datetime
    metrics: OrchestrationMetrics


class MetricsHistory(BaseModel):
    """Trend view: one snapshot per hour, day and week bucket."""

    hourly: list[MetricsSnapshot] = Field(default_factory=list)
    daily: list[MetricsSnapshot] = Field(default_factory=list)
    weekly: list[MetricsSnapshot] = Field(default_factory=list)
    all_time: OrchestrationMetrics = Field(default_factory=OrchestrationMetrics)

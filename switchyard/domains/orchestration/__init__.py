"""
Orchestration Domain - Query execution and pipeline coordination.

This domain handles:
- Backend-scoped approximate response caching
- Strategy execution with quality gate and escalation
- Streaming with live mid-stream backend switch
- End-to-end query pipeline, audit and metrics
"""

from .audit import InMemoryAuditSink, build_audit_record, result_summary
from .cache import (
    InMemoryCacheStore,
    ResponseCache,
    cache_key,
    comparison_form,
    levenshtein,
    normalize_query,
    similarity,
)
from .contracts import AuditSink, CacheStore, QueryOrchestrator
from .executor import IMPROVE_INSTRUCTION, StrategyExecutor
from .metrics import MetricsCollector
from .models import (
    CacheEntry,
    CacheStats,
    ChunkMeta,
    ExecutionResult,
    MetricsHistory,
    MetricsSnapshot,
    OrchestrationMetrics,
    OrchestrationResult,
    OrchestrationStatus,
    PipelineStep,
    Query,
    StreamingResult,
    StreamingSwitchPoint,
)
from .pipeline import ABORTED_MESSAGE, Orchestrator
from .streaming import (
    CONTINUE_INSTRUCTION,
    DEGRADED_NOTICE,
    TRANSITION_MARKER,
    ChunkCallback,
    StreamingExecutor,
)

__all__ = [
    # Contracts
    "AuditSink",
    "CacheStore",
    "QueryOrchestrator",
    # Models
    "CacheEntry",
    "CacheStats",
    "ChunkMeta",
    "ExecutionResult",
    "MetricsHistory",
    "MetricsSnapshot",
    "OrchestrationMetrics",
    "OrchestrationResult",
    "OrchestrationStatus",
    "PipelineStep",
    "Query",
    "StreamingResult",
    "StreamingSwitchPoint",
    # Implementations
    "InMemoryAuditSink",
    "InMemoryCacheStore",
    "MetricsCollector",
    "Orchestrator",
    "ResponseCache",
    "StrategyExecutor",
    "StreamingExecutor",
    "ChunkCallback",
    "build_audit_record",
    "result_summary",
    "cache_key",
    "comparison_form",
    "levenshtein",
    "normalize_query",
    "similarity",
    "ABORTED_MESSAGE",
    "CONTINUE_INSTRUCTION",
    "DEGRADED_NOTICE",
    "IMPROVE_INSTRUCTION",
    "TRANSITION_MARKER",
]

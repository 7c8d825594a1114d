"""
API Dependencies - Dependency injection for FastAPI routes.

Provides singleton instances of the backend registry, storage and the
orchestrator, wired from application settings.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from switchyard.adapters.llm import BackendRegistry, Embedder
from switchyard.adapters.sqlite import SQLiteAuditLog, SQLiteCacheStore, SQLiteRepository
from switchyard.config import Settings, get_settings
from switchyard.domains.orchestration import (
    InMemoryAuditSink,
    Orchestrator,
    ResponseCache,
    StrategyExecutor,
    StreamingExecutor,
)
from switchyard.domains.quality import (
    QualityGateValidator,
    QualityThresholds,
    StreamMonitor,
    StreamMonitorConfig,
)
from switchyard.domains.routing import (
    ComplexityEstimator,
    DecisionEngine,
    DecisionLog,
    DecisionThresholds,
    MetaPromptAdvisor,
)

logger = logging.getLogger(__name__)


@lru_cache
def get_sqlite_repository() -> SQLiteRepository:
    """Get SQLite repository singleton."""
    settings = get_settings()
    return SQLiteRepository(settings.database_path)


@lru_cache
def get_registry() -> BackendRegistry:
    """Get backend registry singleton."""
    return BackendRegistry.from_settings(get_settings())


@lru_cache
def get_decision_log() -> DecisionLog:
    return DecisionLog()


@lru_cache
def get_orchestrator() -> Orchestrator:
    """Get orchestrator singleton."""
    settings = get_settings()
    repository = get_sqlite_repository() if settings.cache_persistent else None
    return create_orchestrator(settings, get_registry(), repository, get_decision_log())


def create_orchestrator(
    settings: Settings,
    registry: BackendRegistry,
    repository: SQLiteRepository | None = None,
    decision_log: DecisionLog | None = None,
) -> Orchestrator:
    """
    Wire an orchestrator from settings.

    Args:
        settings: Application settings
        registry: Backend registry
        repository: SQLite storage for cache and audit (None = in-memory)
        decision_log: In-process decision history

    Returns:
        Ready-to-use orchestrator
    """
    embedder: Embedder | None = None
    if settings.embeddings_enabled:
        local = registry.adapter(registry.local_id)
        if isinstance(local, Embedder):
            embedder = local
        else:
            logger.warning("Local backend cannot embed; embedding depth disabled")

    estimator = ComplexityEstimator(
        embedder=embedder,
        local_max=settings.local_threshold,
        cloud_min=settings.cloud_threshold,
    )
    engine = DecisionEngine(
        registry,
        thresholds=DecisionThresholds(
            local_max=settings.local_threshold,
            cloud_min=settings.cloud_threshold,
            preference_bias=settings.preference_bias,
        ),
        priorities=settings.routing_priorities,
        default_cloud=settings.default_cloud_backend,
        decision_log=decision_log,
    )
    validator = QualityGateValidator(
        QualityThresholds(
            overall=settings.quality_pass_threshold,
            coherence=settings.quality_coherence_min,
            completeness=settings.quality_completeness_min,
            relevance=settings.quality_relevance_min,
            accuracy=settings.quality_accuracy_min,
            safety=settings.quality_safety_min,
        )
    )
    monitor = StreamMonitor(
        StreamMonitorConfig(
            min_chunks=settings.stream_min_chunks,
            check_interval=settings.stream_check_interval,
            coherence_threshold=settings.stream_coherence_threshold,
            repetition_threshold=settings.stream_repetition_threshold,
            min_quality=settings.stream_min_quality,
            default_min_confidence=settings.stream_default_min_confidence,
        )
    )
    cache = ResponseCache(
        store=SQLiteCacheStore(repository) if repository else None,
        max_entries=settings.cache_max_entries,
        ttl_seconds=settings.cache_ttl_seconds,
        similarity_threshold=settings.cache_similarity_threshold,
    )
    audit = SQLiteAuditLog(repository) if repository else InMemoryAuditSink()

    return Orchestrator(
        registry,
        estimator=estimator,
        engine=engine,
        validator=validator,
        cache=cache,
        executor=StrategyExecutor(
            registry,
            validator,
            iterative_local_retries=settings.iterative_local_retries,
        ),
        streamer=StreamingExecutor(registry, monitor),
        advisor=MetaPromptAdvisor(registry) if settings.use_meta_prompt else None,
        audit=audit,
    )


async def init_services() -> None:
    """
    Initialize services on startup.

    This should be called from the FastAPI lifespan handler.
    """
    settings = get_settings()

    if settings.cache_persistent:
        await get_sqlite_repository().initialize()

    orchestrator = get_orchestrator()
    orchestrator.cache.start_sweeper(settings.cache_sweep_interval_seconds)


async def cleanup_services() -> None:
    """Cleanup services on shutdown."""
    settings = get_settings()

    await get_orchestrator().aclose()
    await get_registry().close()
    if settings.cache_persistent:
        await get_sqlite_repository().close()


async def build_orchestrator() -> Orchestrator:
    """Initialize services and return the shared orchestrator (library/CLI use)."""
    await init_services()
    return get_orchestrator()

"""
Health Routes - System health, status and metrics endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends

from switchyard import __version__
from switchyard.adapters.llm import BackendRegistry
from switchyard.domains.orchestration import MetricsHistory, OrchestrationMetrics, Orchestrator
from switchyard.interfaces.api.deps import get_orchestrator, get_registry

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "switchyard"}


@router.get("/api")
async def api_info(registry: BackendRegistry = Depends(get_registry)) -> dict[str, Any]:
    """API info endpoint, including which backends are usable."""
    return {
        "name": "Switchyard API",
        "version": __version__,
        "description": "Local-first LLM orchestration with quality-gated escalation",
        "docs": "/docs",
        "backends": [
            {
                "id": backend.id,
                "local": backend.is_local,
                "available": registry.is_available(backend.id),
            }
            for backend in registry.all()
        ],
    }


@router.get("/api/metrics", response_model=OrchestrationMetrics)
async def metrics(orchestrator: Orchestrator = Depends(get_orchestrator)) -> OrchestrationMetrics:
    """Aggregate routing and quality metrics since startup."""
    return orchestrator.metrics()


@router.get("/api/metrics/history", response_model=MetricsHistory)
async def metrics_history(orchestrator: Orchestrator = Depends(get_orchestrator)) -> MetricsHistory:
    """Hourly, daily and weekly trend snapshots."""
    return orchestrator.metrics_history()

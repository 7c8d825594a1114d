"""
Cache Routes - Response cache diagnostics and maintenance.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from switchyard.domains.orchestration import CacheStats, Orchestrator
from switchyard.interfaces.api.deps import get_orchestrator

router = APIRouter()


@router.get("/stats", response_model=CacheStats)
async def cache_stats(orchestrator: Orchestrator = Depends(get_orchestrator)) -> CacheStats:
    """Size, hit rate and per-backend entry counts."""
    return await orchestrator.cache.stats()


@router.post("/sweep")
async def sweep(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, int]:
    """Remove expired entries now instead of waiting for the sweeper."""
    removed = await orchestrator.cache.sweep_expired()
    return {"removed": removed}


@router.delete("")
async def clear(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, int]:
    removed = await orchestrator.cache.clear()
    return {"removed": removed}

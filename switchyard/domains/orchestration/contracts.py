"""
Orchestration Contracts - Interfaces for the orchestration domain.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol, runtime_checkable

from switchyard.domains.routing.models import DecisionRecord, Preferences

from .models import CacheEntry, OrchestrationResult, Query


@runtime_checkable
class CacheStore(Protocol):
    """
    Storage behind the response cache.

    Any durable key-value store that can scan by backend qualifies. The
    cache serialises access with its own lock, so stores need no locking.
    """

    async def get(self, key: str) -> CacheEntry | None:
        """Entry stored under ``key``."""
        ...

    async def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove an entry; True if it existed."""
        ...

    async def scan_backend(self, backend: str) -> list[CacheEntry]:
        """All entries produced by ``backend``."""
        ...

    async def oldest(self) -> CacheEntry | None:
        """Entry with the earliest ``created_at``."""
        ...

    async def count(self) -> int:
        ...

    async def increment_hits(self, key: str) -> int:
        """Bump the hit counter; returns the new count."""
        ...

    async def delete_expired(self, cutoff: datetime) -> int:
        """Remove entries created before ``cutoff``; returns how many."""
        ...

    async def clear(self) -> int:
        ...

    async def backend_counts(self) -> dict[str, int]:
        ...

    async def total_hits(self) -> int:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Append-only sink for decision audit records."""

    async def append(self, record: DecisionRecord) -> None:
        """Persist one record. Callers never wait on the outcome."""
        ...


@runtime_checkable
class QueryOrchestrator(Protocol):
    """Contract for the end-to-end query pipeline."""

    async def run(
        self,
        query: Query,
        preferences: Preferences | None = None,
        abort: asyncio.Event | None = None,
    ) -> OrchestrationResult:
        """
        Answer a query: cache, estimate, decide, execute, validate, escalate.

        Args:
            query: The incoming query
            preferences: Caller preferences
            abort: Cancellation signal

        Returns:
            Result with status ok, aborted or failed
        """
        ...

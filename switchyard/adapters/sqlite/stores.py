"""
SQLite Stores - Durable CacheStore and AuditSink over SQLiteRepository.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from switchyard.config.errors import ErrorCode, StorageError
from switchyard.domains.orchestration.models import CacheEntry
from switchyard.domains.routing.models import DecisionRecord, OrchestrationDecision

from .repository import SQLiteRepository, from_timestamp, to_timestamp

logger = logging.getLogger(__name__)

__all__ = ["SQLiteAuditLog", "SQLiteCacheStore"]


def _entry(row: dict[str, Any]) -> CacheEntry:
    return CacheEntry(
        key=row["key"],
        backend=row["backend"],
        query_hash=row["query_hash"],
        query=row["query"],
        normalized=row["normalized"],
        response=row["response"],
        metadata=row["metadata"],
        created_at=from_timestamp(row["created_at"]),
        hits=row["hits"],
    )


class SQLiteCacheStore:
    """Cache store persisting entries in the ``cache_entries`` table."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self.repository = repository

    async def get(self, key: str) -> CacheEntry | None:
        row = await self.repository.get_cache_entry(key)
        return _entry(row) if row else None

    async def put(self, entry: CacheEntry) -> None:
        row = entry.model_dump()
        row["created_at"] = to_timestamp(entry.created_at)
        await self.repository.upsert_cache_entry(row)

    async def delete(self, key: str) -> bool:
        return await self.repository.delete_cache_entry(key)

    async def scan_backend(self, backend: str) -> list[CacheEntry]:
        rows = await self.repository.cache_entries_for_backend(backend)
        return [_entry(row) for row in rows]

    async def oldest(self) -> CacheEntry | None:
        row = await self.repository.oldest_cache_entry()
        return _entry(row) if row else None

    async def count(self) -> int:
        return await self.repository.get_cache_count()

    async def increment_hits(self, key: str) -> int:
        return await self.repository.increment_cache_hits(key)

    async def delete_expired(self, cutoff: datetime) -> int:
        removed = await self.repository.delete_cache_entries_before(to_timestamp(cutoff))
        if removed:
            logger.debug("Deleted %d expired cache rows", removed)
        return removed

    async def clear(self) -> int:
        return await self.repository.clear_cache()

    async def backend_counts(self) -> dict[str, int]:
        return await self.repository.cache_counts_by_backend()

    async def total_hits(self) -> int:
        return await self.repository.cache_total_hits()


class SQLiteAuditLog:
    """
    Append-only audit sink writing to the ``decision_log`` table.

    Records carry a query digest, never the query text.
    """

    def __init__(self, repository: SQLiteRepository) -> None:
        self.repository = repository

    async def append(self, record: DecisionRecord) -> None:
        try:
            await self.repository.insert_decision(
                timestamp=to_timestamp(record.timestamp),
                query_digest=record.query_digest,
                strategy=record.decision.strategy.value,
                decision=record.decision.model_dump_json(),
                result=record.result,
            )
        except StorageError as e:
            raise StorageError(
                f"Audit write failed: {e.message}",
                code=ErrorCode.AUDIT_WRITE_FAILED,
                details={"storage_code": e.code.value},
            ) from e

    async def recent(self, limit: int = 100) -> list[DecisionRecord]:
        """Most recent records, newest first."""
        rows = await self.repository.recent_decisions(limit)
        return [
            DecisionRecord(
                timestamp=from_timestamp(row["timestamp"]),
                query_digest=row["query_digest"],
                decision=OrchestrationDecision.model_validate_json(row["decision"]),
                result=row["result"],
            )
            for row in rows
        ]

    async def counts_by_strategy(self) -> dict[str, int]:
        return await self.repository.decision_counts_by_strategy()

"""
SQLite Repository - Durable response cache and decision audit log.

Features:
- Async operations via aiosqlite
- Backend-scoped cache rows with hit counters
- Append-only decision log (query digests only, never raw text)
"""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from switchyard.config.errors import ErrorCode, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["SQLiteRepository", "to_timestamp", "from_timestamp"]


def to_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string; sorts chronologically as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _storage_op(code: ErrorCode) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Re-raise SQLite failures from the wrapped method as StorageError with ``code``."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except aiosqlite.Error as e:
                raise StorageError(f"{func.__name__} failed: {e}", code=code) from e

        return wrapper

    return decorator


_reads = _storage_op(ErrorCode.STORAGE_READ_FAILED)
_writes = _storage_op(ErrorCode.STORAGE_WRITE_FAILED)


class SQLiteRepository:
    """
    SQLite repository for cache entries and decision records.

    Example:
        >>> repo = SQLiteRepository("data/switchyard.db")
        >>> await repo.initialize()
        >>> await repo.upsert_cache_entry({...})
        >>> rows = await repo.cache_entries_for_backend("local")
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection: aiosqlite.Connection | None = None

    @_storage_op(ErrorCode.STORAGE_CONNECTION_FAILED)
    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(str(self.db_path))
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    @_writes
    async def initialize(self) -> None:
        """Initialize database schema."""
        conn = await self._get_connection()

        await conn.executescript("""
            -- Memoized responses, one row per (backend, normalized query)
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                backend TEXT NOT NULL,
                query_hash TEXT NOT NULL,
                query TEXT NOT NULL,
                normalized TEXT NOT NULL,
                response TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL,
                hits INTEGER NOT NULL DEFAULT 0
            );

            -- Routing decisions and their outcomes
            CREATE TABLE IF NOT EXISTS decision_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                query_digest TEXT NOT NULL,
                strategy TEXT NOT NULL,
                decision TEXT NOT NULL,
                result TEXT
            );

            -- Indexes
            CREATE INDEX IF NOT EXISTS idx_cache_backend ON cache_entries(backend);
            CREATE INDEX IF NOT EXISTS idx_cache_created ON cache_entries(created_at);
            CREATE INDEX IF NOT EXISTS idx_decision_timestamp ON decision_log(timestamp);
        """)

        await conn.commit()
        logger.info("Database initialized: %s", self.db_path)

    # --- Cache entries ---

    @_writes
    async def upsert_cache_entry(self, row: dict[str, Any]) -> None:
        """Insert or replace a cache row."""
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT OR REPLACE INTO cache_entries
            (key, backend, query_hash, query, normalized, response, metadata, created_at, hits)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                row["key"],
                row["backend"],
                row["query_hash"],
                row["query"],
                row["normalized"],
                row["response"],
                json.dumps(row["metadata"]) if row.get("metadata") else None,
                row["created_at"],
                row.get("hits", 0),
            ),
        )
        await conn.commit()

    @_reads
    async def get_cache_entry(self, key: str) -> dict[str, Any] | None:
        """Get cache row by key."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM cache_entries WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return self._cache_row(row) if row else None

    @_reads
    async def cache_entries_for_backend(self, backend: str) -> list[dict[str, Any]]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM cache_entries WHERE backend = ? ORDER BY created_at", (backend,)
        )
        rows = await cursor.fetchall()
        return [self._cache_row(row) for row in rows]

    @_reads
    async def oldest_cache_entry(self) -> dict[str, Any] | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM cache_entries ORDER BY created_at ASC LIMIT 1"
        )
        row = await cursor.fetchone()
        return self._cache_row(row) if row else None

    @_writes
    async def delete_cache_entry(self, key: str) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await conn.commit()
        return cursor.rowcount > 0

    @_writes
    async def delete_cache_entries_before(self, cutoff: str) -> int:
        """Delete rows created before ``cutoff``; returns how many."""
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM cache_entries WHERE created_at < ?", (cutoff,))
        await conn.commit()
        return cursor.rowcount

    @_writes
    async def clear_cache(self) -> int:
        count = await self.get_cache_count()
        conn = await self._get_connection()
        await conn.execute("DELETE FROM cache_entries")
        await conn.commit()
        return count

    @_writes
    async def increment_cache_hits(self, key: str) -> int:
        """Bump a row's hit counter; returns the new count (0 if missing)."""
        conn = await self._get_connection()
        await conn.execute("UPDATE cache_entries SET hits = hits + 1 WHERE key = ?", (key,))
        await conn.commit()
        cursor = await conn.execute("SELECT hits FROM cache_entries WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else 0

    @_reads
    async def get_cache_count(self) -> int:
        """Get total cache row count."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT COUNT(*) FROM cache_entries")
        row = await cursor.fetchone()
        return row[0] if row else 0

    @_reads
    async def cache_counts_by_backend(self) -> dict[str, int]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT backend, COUNT(*) FROM cache_entries GROUP BY backend"
        )
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    @_reads
    async def cache_total_hits(self) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT COALESCE(SUM(hits), 0) FROM cache_entries")
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _cache_row(row: aiosqlite.Row) -> dict[str, Any]:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"]) if data.get("metadata") else {}
        return data

    # --- Decision log ---

    @_writes
    async def insert_decision(
        self,
        timestamp: str,
        query_digest: str,
        strategy: str,
        decision: str,
        result: dict[str, Any] | None = None,
    ) -> int:
        """
        Append a decision record.

        Args:
            timestamp: UTC ISO timestamp
            query_digest: Digest of the query text
            strategy: Strategy value, stored separately for aggregation
            decision: Decision serialized as JSON
            result: Result summary

        Returns:
            Row ID
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO decision_log (timestamp, query_digest, strategy, decision, result)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                timestamp,
                query_digest,
                strategy,
                decision,
                json.dumps(result) if result else None,
            ),
        )
        await conn.commit()
        return cursor.lastrowid

    @_reads
    async def recent_decisions(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent decision rows, newest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM decision_log ORDER BY id DESC LIMIT ?", (limit,)
        )
        rows = await cursor.fetchall()
        decisions = []
        for row in rows:
            data = dict(row)
            data["result"] = json.loads(data["result"]) if data.get("result") else {}
            decisions.append(data)
        return decisions

    @_reads
    async def decision_counts_by_strategy(self) -> dict[str, int]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT strategy, COUNT(*) FROM decision_log GROUP BY strategy"
        )
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

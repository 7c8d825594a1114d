"""
Response Cache - Approximate-match memoization with TTL and FIFO eviction.

Provides:
- Exact lookup by hash of backend + normalized query
- Approximate lookup by normalized edit distance within the same backend
- TTL invalidation (expired entries are never served) and periodic sweep
- Capacity limit enforced by evicting the single oldest entry

A single asyncio.Lock makes lookup + hit increment and evict + insert
atomic. Store failures degrade to a miss (get) or a no-op (set) and are
counted in the stats as CacheError codes.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from switchyard.config.errors import CacheError, ErrorCode

from .contracts import CacheStore
from .models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

__all__ = [
    "InMemoryCacheStore",
    "ResponseCache",
    "cache_key",
    "comparison_form",
    "levenshtein",
    "normalize_query",
    "similarity",
]

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Courtesy prefixes/suffixes that do not change what is being asked
_FILLER_PREFIXES = (
    "please",
    "can you",
    "could you",
    "would you",
    "will you",
    "tell me",
    "i want to know",
    "hey",
    "hi",
)
_FILLER_SUFFIXES = ("please", "thanks", "thank you")


def normalize_query(text: str) -> str:
    """Lower-case, strip punctuation, collapse whitespace. Idempotent."""
    stripped = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def comparison_form(normalized: str) -> str:
    """Normalized query without leading/trailing courtesy words."""
    form = normalized
    changed = True
    while changed:
        changed = False
        for prefix in _FILLER_PREFIXES:
            if form.startswith(prefix + " "):
                form = form[len(prefix) + 1 :]
                changed = True
        for suffix in _FILLER_SUFFIXES:
            if form.endswith(" " + suffix):
                form = form[: -len(suffix) - 1]
                changed = True
    return form or normalized


def cache_key(normalized: str, backend: str) -> str:
    return hashlib.sha256(f"{backend}\x00{normalized}".encode()).hexdigest()


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert, delete, substitute)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """``1 - levenshtein / max_len`` in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(a, b) / longest


class InMemoryCacheStore:
    """Dict-backed cache store."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        return entry.model_copy() if entry else None

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry.model_copy()

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def scan_backend(self, backend: str) -> list[CacheEntry]:
        return [e.model_copy() for e in self._entries.values() if e.backend == backend]

    async def oldest(self) -> CacheEntry | None:
        if not self._entries:
            return None
        return min(self._entries.values(), key=lambda e: e.created_at).model_copy()

    async def count(self) -> int:
        return len(self._entries)

    async def increment_hits(self, key: str) -> int:
        entry = self._entries.get(key)
        if entry is None:
            return 0
        entry.hits += 1
        return entry.hits

    async def delete_expired(self, cutoff: datetime) -> int:
        expired = [k for k, e in self._entries.items() if e.created_at < cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    async def backend_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._entries.values():
            counts[entry.backend] = counts.get(entry.backend, 0) + 1
        return counts

    async def total_hits(self) -> int:
        return sum(e.hits for e in self._entries.values())


class ResponseCache:
    """
    Backend-scoped response cache.

    Example:
        >>> cache = ResponseCache()
        >>> await cache.set("explain recursion", "A function calling itself...", "local")
        >>> await cache.get("please explain recursion", "local")
        'A function calling itself...'
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        max_entries: int = 1000,
        ttl_seconds: int = 7 * 24 * 3600,
        similarity_threshold: float = 0.85,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize cache.

        Args:
            store: Storage backend (in-memory by default)
            max_entries: Capacity before the oldest entry is evicted
            ttl_seconds: Entry lifetime
            similarity_threshold: Minimum similarity for an approximate hit
            clock: Source of "now" (UTC)
        """
        self._store: CacheStore = store or InMemoryCacheStore()
        self.max_entries = max_entries
        self.ttl = timedelta(seconds=ttl_seconds)
        self.similarity_threshold = similarity_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._errors = 0
        self.last_error: CacheError | None = None
        self._sweeper: asyncio.Task[None] | None = None

    async def get(self, query: str, backend: str) -> str | None:
        """Cached response for ``query`` from ``backend``, or None."""
        entry = await self.lookup(query, backend)
        return entry.response if entry else None

    async def lookup(self, query: str, backend: str) -> CacheEntry | None:
        """
        Exact then approximate lookup; increments the hit counter on a hit.

        Args:
            query: Raw query text
            backend: Backend whose entries may be served

        Returns:
            The matching entry, or None
        """
        normalized = normalize_query(query)
        if not normalized:
            return None

        async with self._lock:
            try:
                entry = await self._store.get(cache_key(normalized, backend))
                if entry is not None and self._expired(entry):
                    entry = None
                if entry is None:
                    entry = await self._closest(normalized, backend)
                if entry is None:
                    self._misses += 1
                    return None
                entry.hits = await self._store.increment_hits(entry.key)
            except Exception as e:
                error = CacheError(f"Cache read failed: {e}", ErrorCode.CACHE_READ_FAILED)
                self._failed(error, "treating as miss")
                self._misses += 1
                return None

        self._hits += 1
        logger.debug("Cache hit on %s (entry hits: %d)", backend, entry.hits)
        return entry

    async def set(
        self,
        query: str,
        response: str,
        backend: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store ``response``, evicting the oldest entry when full."""
        normalized = normalize_query(query)
        if not normalized or not response.strip():
            return

        key = cache_key(normalized, backend)
        entry = CacheEntry(
            key=key,
            backend=backend,
            query_hash=hashlib.sha256(normalized.encode()).hexdigest(),
            query=query,
            normalized=normalized,
            response=response,
            metadata=metadata or {},
            created_at=self._clock(),
        )

        async with self._lock:
            try:
                existing = await self._store.get(key)
                if existing is None and await self._store.count() >= self.max_entries:
                    oldest = await self._store.oldest()
                    if oldest is not None:
                        await self._store.delete(oldest.key)
                        logger.debug("Evicted oldest cache entry (%s)", oldest.backend)
                await self._store.put(entry)
            except Exception as e:
                error = CacheError(f"Cache write failed: {e}", ErrorCode.CACHE_WRITE_FAILED)
                self._failed(error, "response not cached")
                return

        logger.debug("Cached response for %s", backend)

    async def sweep_expired(self) -> int:
        """Purge entries older than the TTL."""
        async with self._lock:
            removed = await self._store.delete_expired(self._clock() - self.ttl)
        if removed:
            logger.info("Swept %d expired cache entries", removed)
        return removed

    def start_sweeper(self, interval_seconds: float) -> None:
        """Run ``sweep_expired`` every ``interval_seconds`` in the background."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        async with self._lock:
            size = await self._store.count()
            by_backend = await self._store.backend_counts()
            total_entry_hits = await self._store.total_hits()
        return CacheStats(
            size=size,
            capacity=self.max_entries,
            hits=self._hits,
            misses=self._misses,
            hit_rate=round(self._hits / lookups, 4) if lookups else 0.0,
            total_entry_hits=total_entry_hits,
            by_backend=by_backend,
            errors=self._errors,
            last_error=self.last_error.code.value if self.last_error else None,
        )

    async def clear(self) -> int:
        async with self._lock:
            count = await self._store.clear()
        logger.info("Cleared %d cache entries", count)
        return count

    # --- Internals ---

    def _failed(self, error: CacheError, consequence: str) -> None:
        self._errors += 1
        self.last_error = error
        logger.warning("%s, %s [%s]", error.message, consequence, error.code.value)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at >= self.ttl

    def _length_gap_too_wide(self, a: str, b: str) -> bool:
        longest = max(len(a), len(b))
        return bool(longest) and abs(len(a) - len(b)) / longest > 1 - self.similarity_threshold

    async def _closest(self, normalized: str, backend: str) -> CacheEntry | None:
        form = comparison_form(normalized)
        best: CacheEntry | None = None
        best_score = 0.0

        for candidate in await self._store.scan_backend(backend):
            if self._expired(candidate):
                continue
            # Score on whichever of the full or filler-stripped pair agrees more
            pairs = [(normalized, candidate.normalized), (form, comparison_form(candidate.normalized))]
            pairs = [p for p in pairs if not self._length_gap_too_wide(*p)]
            if not pairs:
                continue
            score = max(similarity(a, b) for a, b in pairs)
            if score >= self.similarity_threshold and score > best_score:
                best, best_score = candidate, score

        if best is not None:
            logger.debug("Approximate cache match (similarity %.2f)", best_score)
        return best

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_expired()
            except Exception as e:
                logger.warning("Cache sweep failed: %s", e)

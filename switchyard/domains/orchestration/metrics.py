"""
Metrics - Running counters over orchestration results.

Besides the live counters, the collector keeps the latest cumulative
snapshot of every clock hour (UTC) for twelve weeks. Daily and weekly
trends are read off those hourly snapshots.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from .models import (
    MetricsHistory,
    MetricsSnapshot,
    OrchestrationMetrics,
    OrchestrationResult,
    OrchestrationStatus,
)

__all__ = ["MetricsCollector"]

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
WEEK = timedelta(weeks=1)
RETENTION = 12 * WEEK

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def bucket_start(moment: datetime, width: timedelta) -> datetime:
    """Start of the epoch-aligned bucket of ``width`` containing ``moment``."""
    return moment - (moment - _EPOCH) % width


class MetricsCollector:
    """Aggregates results into OrchestrationMetrics snapshots."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._total = 0
        self._strategies: Counter[str] = Counter()
        self._backends: Counter[str] = Counter()
        self._escalations = 0
        self._switches = 0
        self._cache_hits = 0
        self._aborted = 0
        self._failed = 0
        self._confidence_sum = 0.0
        self._decisions = 0
        self._latency_sum = 0.0
        self._cost = 0.0
        self._validated = 0
        self._passed = 0
        self._hourly: dict[datetime, OrchestrationMetrics] = {}

    def record(self, result: OrchestrationResult) -> None:
        self._total += 1
        self._latency_sum += result.latency_ms
        self._cost += result.cost

        if result.status == OrchestrationStatus.ABORTED:
            self._aborted += 1
        elif result.status == OrchestrationStatus.FAILED:
            self._failed += 1

        if result.cache_hit:
            self._cache_hits += 1
        if result.escalated:
            self._escalations += 1
        self._switches += sum(1 for p in result.switch_points if p.succeeded)

        if result.backend:
            self._backends[result.backend] += 1
        if result.decision is not None:
            self._decisions += 1
            self._strategies[result.decision.strategy.value] += 1
            self._confidence_sum += result.decision.confidence
        if result.quality is not None:
            self._validated += 1
            self._passed += int(result.quality.passed)

        self._keep_snapshot()

    def snapshot(self) -> OrchestrationMetrics:
        total = self._total
        return OrchestrationMetrics(
            total_queries=total,
            by_strategy=dict(self._strategies),
            by_backend=dict(self._backends),
            escalations=self._escalations,
            stream_switches=self._switches,
            cache_hits=self._cache_hits,
            aborted=self._aborted,
            failed=self._failed,
            average_confidence=round(self._confidence_sum / self._decisions, 4) if self._decisions else 0.0,
            average_latency_ms=round(self._latency_sum / total, 2) if total else 0.0,
            total_cost=round(self._cost, 6),
            cache_hit_rate=round(self._cache_hits / total, 4) if total else 0.0,
            quality_pass_rate=round(self._passed / self._validated, 4) if self._validated else 0.0,
        )

    def history(self) -> MetricsHistory:
        """
        Hourly (last 24 hours), daily (last 30 days) and weekly (last 12 weeks) trends.

        Each bucket holds the cumulative metrics at its last recorded query;
        buckets without queries are omitted.
        """
        now = self._clock()
        return MetricsHistory(
            hourly=self._buckets(HOUR, now - DAY),
            daily=self._buckets(DAY, now - 30 * DAY),
            weekly=self._buckets(WEEK, now - RETENTION),
            all_time=self.snapshot(),
        )

    def _keep_snapshot(self) -> None:
        now = self._clock()
        self._hourly[bucket_start(now, HOUR)] = self.snapshot()

        cutoff = now - RETENTION
        for hour in [h for h in self._hourly if h < cutoff]:
            del self._hourly[hour]

    def _buckets(self, width: timedelta, since: datetime) -> list[MetricsSnapshot]:
        latest: dict[datetime, OrchestrationMetrics] = {}
        for hour, metrics in sorted(self._hourly.items()):
            if hour + HOUR <= since:
                continue
            latest[bucket_start(hour, width)] = metrics
        return [MetricsSnapshot(timestamp=start, metrics=m) for start, m in sorted(latest.items())]

"""
Request metrics and health status.

Counts every terminal request outcome (endpoint, method, status, duration,
shop, error) and derives a health verdict from error rate and latency.
One collector per application, passed to whoever records requests.
Guarded by a lock; concurrent increments are never lost.
"""
from __future__ import annotations
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass
class RequestRecord:
    """One terminal request outcome."""
    endpoint: str
    method: str
    status: int
    duration_ms: float = 0.0
    shop: str | None = None
    error: str | None = None
    request_id: str | None = None


@dataclass
class _Stats:
    total: int = 0
    success: int = 0
    errors: int = 0
    by_status: Counter = field(default_factory=Counter)
    by_shop: Counter = field(default_factory=Counter)
    by_endpoint: Counter = field(default_factory=Counter)
    errors_by_type: Counter = field(default_factory=Counter)
    total_duration_ms: float = 0.0
    timed_requests: int = 0
    max_duration_ms: float = 0.0
    min_duration_ms: float | None = None


class MetricsCollector:
    """Thread-safe in-process request metrics."""

    def __init__(
        self,
        recent_error_limit: int = 10,
        summary_every: int = 100,
        degraded_error_rate: float = 5.0,
        unhealthy_error_rate: float = 10.0,
        slow_average_ms: float = 5000.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.recent_error_limit = recent_error_limit
        self.summary_every = summary_every
        self.degraded_error_rate = degraded_error_rate
        self.unhealthy_error_rate = unhealthy_error_rate
        self.slow_average_ms = slow_average_ms
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._stats = _Stats()
        self._recent_errors: deque[dict[str, Any]] = deque(maxlen=recent_error_limit)

    @classmethod
    def from_config(cls, health_config) -> "MetricsCollector":
        return cls(
            recent_error_limit=health_config.recent_error_limit,
            summary_every=health_config.summary_every,
            degraded_error_rate=health_config.degraded_error_rate,
            unhealthy_error_rate=health_config.unhealthy_error_rate,
            slow_average_ms=health_config.slow_average_ms,
        )

    @property
    def uptime_seconds(self) -> float:
        return self._clock() - self._started

    def record_request(self, record: RequestRecord) -> None:
        with self._lock:
            stats = self._stats
            stats.total += 1
            if 200 <= record.status < 300:
                stats.success += 1
            else:
                stats.errors += 1

            stats.by_status[str(record.status)] += 1
            if record.shop:
                stats.by_shop[record.shop] += 1
            stats.by_endpoint[f"{record.method} {record.endpoint}"] += 1

            if record.duration_ms:
                stats.timed_requests += 1
                stats.total_duration_ms += record.duration_ms
                stats.max_duration_ms = max(stats.max_duration_ms, record.duration_ms)
                stats.min_duration_ms = (
                    record.duration_ms
                    if stats.min_duration_ms is None
                    else min(stats.min_duration_ms, record.duration_ms)
                )

            if record.error:
                error_type = record.error.split(":")[0] or "Unknown"
                stats.errors_by_type[error_type] += 1
                self._recent_errors.appendleft({
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "error": record.error,
                    "endpoint": record.endpoint,
                    "method": record.method,
                    "status": record.status,
                    "shopId": record.shop,
                    "requestId": record.request_id,
                })

            due_summary = self.summary_every > 0 and stats.total % self.summary_every == 0

        if due_summary:
            self.log_summary()

    def _average_ms(self) -> float:
        stats = self._stats
        return stats.total_duration_ms / stats.timed_requests if stats.timed_requests else 0.0

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stats = self._stats
            return {
                "requests": {
                    "total": stats.total,
                    "success": stats.success,
                    "errors": stats.errors,
                    "byStatus": dict(stats.by_status),
                    "byShop": dict(stats.by_shop),
                    "byEndpoint": dict(stats.by_endpoint),
                },
                "performance": {
                    "totalDuration": round(stats.total_duration_ms, 3),
                    "averageDuration": round(self._average_ms(), 3),
                    "maxDuration": round(stats.max_duration_ms, 3),
                    "minDuration": round(stats.min_duration_ms or 0.0, 3),
                },
                "errors": {
                    "byType": dict(stats.errors_by_type),
                    "recent": list(self._recent_errors),
                },
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": round(self.uptime_seconds, 3),
            }

    def top_shops(self, limit: int = 5) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"shop": shop, "requests": count}
                for shop, count in self._stats.by_shop.most_common(limit)
            ]

    def get_health_status(self) -> dict[str, Any]:
        """healthy / degraded / unhealthy from error rate and mean latency."""
        with self._lock:
            total = self._stats.total
            error_rate = (self._stats.errors / total) * 100 if total else 0.0
            average_ms = self._average_ms()

        status = "healthy"
        issues = []
        if error_rate > self.unhealthy_error_rate:
            status = "unhealthy"
            issues.append(f"High error rate: {error_rate:.2f}%")
        elif error_rate > self.degraded_error_rate:
            status = "degraded"
            issues.append(f"Elevated error rate: {error_rate:.2f}%")

        if average_ms > self.slow_average_ms:
            status = "degraded" if status == "healthy" else "unhealthy"
            issues.append(f"High average response time: {average_ms:.0f}ms")

        return {
            "status": status,
            "errorRate": f"{error_rate:.2f}",
            "averageResponseTime": f"{average_ms:.0f}",
            "totalRequests": total,
            "issues": issues,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def log_summary(self) -> None:
        with self._lock:
            stats = self._stats
            total = stats.total
            success_rate = (stats.success / total) * 100 if total else 0.0
            average_ms = self._average_ms()
            top = stats.by_shop.most_common(5)
        logger.info(
            "Delivery estimate metrics total=%d success_rate=%.2f avg_ms=%.0f top_shops=%s",
            total, success_rate, average_ms, top,
        )

    def reset(self) -> None:
        with self._lock:
            self._stats = _Stats()
            self._recent_errors.clear()

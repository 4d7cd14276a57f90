#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Passive observer for the tiered cache. The coordinator, health monitor and
write-back queue call ``record_*`` on every notable event; nothing here feeds
back into caching decisions.

Two sinks:
- Prometheus metrics (module-level, scraped from /metrics)
- In-process aggregates for ``snapshot()`` (per tier, per domain, latency
  percentiles, recent health transitions)

Every record method swallows its own failures and logs them at warning
level; a broken metric must never fail the operation it observes.

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Histogram buckets for latency percentiles

Author: Senior Solution Architect
Date: 2025-12-05
"""

import functools
import threading
import time
from collections import Counter as TallyCounter
from collections import deque
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from tiercache.core.config.constants import LATENCY_SAMPLE_WINDOW, RECENT_TRANSITIONS_KEPT, Stage
from tiercache.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

CACHE_HITS = Counter(
    'tiercache_hits_total',
    'Cache hits by tier and domain',
    ['tier', 'domain']
)

CACHE_MISSES = Counter(
    'tiercache_misses_total',
    'Cache misses by tier and domain',
    ['tier', 'domain']
)

CACHE_WRITES = Counter(
    'tiercache_writes_total',
    'Tier writes by outcome (ok, rejected, failed)',
    ['tier', 'outcome']
)

TIER_ERRORS = Counter(
    'tiercache_tier_errors_total',
    'Transient tier failures absorbed by the coordinator',
    ['tier', 'operation']
)

EVICTIONS = Counter(
    'tiercache_evictions_total',
    'Entries evicted under capacity pressure',
    ['tier']
)

INVALIDATED_KEYS = Counter(
    'tiercache_invalidated_keys_total',
    'Keys removed by pattern invalidation',
    ['domain']
)

TIER_HEALTHY = Gauge(
    'tiercache_tier_healthy',
    'Tier health flag (1=healthy, 0=unhealthy)',
    ['tier']
)

HEALTH_TRANSITIONS = Counter(
    'tiercache_health_transitions_total',
    'Tier health transitions',
    ['tier', 'to_state']
)

OPERATION_LATENCY = Histogram(
    'tiercache_operation_duration_seconds',
    'Coordinator operation latency',
    ['operation'],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
)

WRITE_BACKS = Counter(
    'tiercache_write_backs_total',
    'Background write-back jobs by outcome',
    ['outcome']  # enqueued, dropped, completed, rejected, expired, superseded, failed
)


def swallow_errors(method):
    """Run a record method; log and drop any exception it raises."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger.warning(
                "Metric recording failed",
                stage=Stage.METRICS.value,
                metric=method.__name__,
                error=str(e),
            )
            return None

    return wrapper


class MetricsCollector:
    """
    Centralized metrics collector for one cache instance.

    STAGE-M: Metrics collection

    Usage:
        metrics = MetricsCollector()
        metrics.record_hit("memory", "search-results")
        metrics.record_latency("get", 0.0004)
        stats = metrics.snapshot()
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self, latency_window: int = LATENCY_SAMPLE_WINDOW):
        self._latency_window = latency_window
        self._lock = threading.Lock()
        self._reset_aggregates()
        logger.info("Metrics collector initialized", stage=Stage.METRICS.value)

    def _reset_aggregates(self) -> None:
        self._tier_hits: TallyCounter[str] = TallyCounter()
        self._tier_misses: TallyCounter[str] = TallyCounter()
        self._domain_hits: TallyCounter[str] = TallyCounter()
        self._domain_misses: TallyCounter[str] = TallyCounter()
        self._writes: dict[str, TallyCounter[str]] = {}
        self._tier_errors: TallyCounter[str] = TallyCounter()
        self._evictions: TallyCounter[str] = TallyCounter()
        self._invalidations: TallyCounter[str] = TallyCounter()
        self._write_backs: TallyCounter[str] = TallyCounter()
        self._latencies: deque[float] = deque(maxlen=self._latency_window)
        self._slowest: dict[str, Any] | None = None
        self._transitions: deque[dict[str, Any]] = deque(maxlen=RECENT_TRANSITIONS_KEPT)
        self._health: dict[str, bool] = {}
        self._since = time.time()

    # =========================================================================
    # Lookup Metrics
    # =========================================================================

    @swallow_errors
    def record_hit(self, tier: str, domain: str) -> None:
        """Record a live hit in ``tier``; also counts as a domain-level hit."""
        CACHE_HITS.labels(tier=tier, domain=domain).inc()
        with self._lock:
            self._tier_hits[tier] += 1
            self._domain_hits[domain] += 1

    @swallow_errors
    def record_tier_miss(self, tier: str, domain: str) -> None:
        """Record that one tier had nothing live for the key."""
        CACHE_MISSES.labels(tier=tier, domain=domain).inc()
        with self._lock:
            self._tier_misses[tier] += 1

    @swallow_errors
    def record_miss(self, domain: str) -> None:
        """Record a lookup that no tier could satisfy."""
        with self._lock:
            self._domain_misses[domain] += 1

    @swallow_errors
    def record_latency(self, operation: str, duration_seconds: float, **context) -> None:
        OPERATION_LATENCY.labels(operation=operation).observe(duration_seconds)
        with self._lock:
            self._latencies.append(duration_seconds)
            if self._slowest is None or duration_seconds > self._slowest["duration_ms"] / 1000:
                self._slowest = {
                    "operation": operation,
                    "duration_ms": round(duration_seconds * 1000, 3),
                    **context,
                }

    # =========================================================================
    # Write / Removal Metrics
    # =========================================================================

    @swallow_errors
    def record_write(self, tier: str, outcome: str) -> None:
        """outcome: ok, rejected or failed"""
        CACHE_WRITES.labels(tier=tier, outcome=outcome).inc()
        with self._lock:
            self._writes.setdefault(tier, TallyCounter())[outcome] += 1

    @swallow_errors
    def record_tier_error(self, tier: str, operation: str) -> None:
        TIER_ERRORS.labels(tier=tier, operation=operation).inc()
        with self._lock:
            self._tier_errors[tier] += 1

    @swallow_errors
    def record_eviction(self, tier: str) -> None:
        EVICTIONS.labels(tier=tier).inc()
        with self._lock:
            self._evictions[tier] += 1

    @swallow_errors
    def record_invalidation(self, domain: str, count: int) -> None:
        INVALIDATED_KEYS.labels(domain=domain).inc(count)
        with self._lock:
            self._invalidations[domain] += count

    @swallow_errors
    def record_write_back(self, outcome: str) -> None:
        WRITE_BACKS.labels(outcome=outcome).inc()
        with self._lock:
            self._write_backs[outcome] += 1

    # =========================================================================
    # Health Metrics
    # =========================================================================

    @swallow_errors
    def set_tier_health(self, tier: str, healthy: bool) -> None:
        TIER_HEALTHY.labels(tier=tier).set(1 if healthy else 0)
        with self._lock:
            self._health[tier] = healthy

    @swallow_errors
    def record_health_transition(self, tier: str, healthy: bool, at: float) -> None:
        to_state = "healthy" if healthy else "unhealthy"
        HEALTH_TRANSITIONS.labels(tier=tier, to_state=to_state).inc()
        TIER_HEALTHY.labels(tier=tier).set(1 if healthy else 0)
        with self._lock:
            self._health[tier] = healthy
            self._transitions.append({"tier": tier, "to": to_state, "at": at})

    # =========================================================================
    # Read API
    # =========================================================================

    @staticmethod
    def _rate(hits: int, misses: int) -> float:
        total = hits + misses
        return round(hits / total, 4) if total else 0.0

    @staticmethod
    def _percentile(ordered: list[float], pct: float) -> float:
        if not ordered:
            return 0.0
        index = min(int(len(ordered) * pct), len(ordered) - 1)
        return ordered[index]

    def snapshot(self) -> dict[str, Any]:
        """Aggregated counters and rates since start or the last reset."""
        with self._lock:
            tiers = sorted(set(self._tier_hits) | set(self._tier_misses) | set(self._writes) | set(self._tier_errors))
            domains = sorted(set(self._domain_hits) | set(self._domain_misses) | set(self._invalidations))
            ordered = sorted(self._latencies)
            avg = sum(ordered) / len(ordered) if ordered else 0.0

            return {
                "since": self._since,
                "tiers": {
                    tier: {
                        "hits": self._tier_hits[tier],
                        "misses": self._tier_misses[tier],
                        "hit_rate": self._rate(self._tier_hits[tier], self._tier_misses[tier]),
                        "writes": dict(self._writes.get(tier, {})),
                        "errors": self._tier_errors[tier],
                        "evictions": self._evictions[tier],
                    }
                    for tier in tiers
                },
                "domains": {
                    domain: {
                        "hits": self._domain_hits[domain],
                        "misses": self._domain_misses[domain],
                        "hit_rate": self._rate(self._domain_hits[domain], self._domain_misses[domain]),
                        "invalidated": self._invalidations[domain],
                    }
                    for domain in domains
                },
                "totals": {
                    "hits": sum(self._domain_hits.values()),
                    "misses": sum(self._domain_misses.values()),
                    "hit_rate": self._rate(sum(self._domain_hits.values()), sum(self._domain_misses.values())),
                    "evictions": sum(self._evictions.values()),
                    "invalidated": sum(self._invalidations.values()),
                },
                "latency_ms": {
                    "samples": len(ordered),
                    "avg": round(avg * 1000, 3),
                    "p95": round(self._percentile(ordered, 0.95) * 1000, 3),
                    "p99": round(self._percentile(ordered, 0.99) * 1000, 3),
                    "slowest": dict(self._slowest) if self._slowest else None,
                },
                "write_back": dict(self._write_backs),
                "health": dict(self._health),
                "health_transitions": list(self._transitions),
            }

    def reset(self) -> None:
        """Clear in-process aggregates. Prometheus counters are monotonic and untouched."""
        with self._lock:
            health = dict(self._health)
            self._reset_aggregates()
            self._health = health
        logger.info("Metrics reset", stage=Stage.METRICS.value)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """Prometheus text format for every tiercache metric."""
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

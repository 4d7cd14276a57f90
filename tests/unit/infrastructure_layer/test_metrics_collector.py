"""
Unit Tests for Metrics Collector

Tests hit rate aggregation, latency percentiles, error swallowing and
Prometheus export.
"""

from unittest.mock import patch

import pytest

from tiercache.infrastructure.monitoring import metrics_collector
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector


@pytest.mark.unit
class TestHitRates:
    """Test suite for hit/miss aggregation."""

    def test_tier_and_domain_rates(self):
        """Test per-tier and per-domain hit rates are computed separately."""
        metrics = MetricsCollector()

        metrics.record_tier_miss("memory", "search-results")
        metrics.record_hit("remote", "search-results")
        metrics.record_hit("memory", "search-results")
        metrics.record_tier_miss("memory", "qa-pairs")
        metrics.record_tier_miss("remote", "qa-pairs")
        metrics.record_miss("qa-pairs")

        snapshot = metrics.snapshot()

        assert snapshot["tiers"]["memory"]["hits"] == 1
        assert snapshot["tiers"]["memory"]["misses"] == 2
        assert snapshot["tiers"]["remote"]["hit_rate"] == 0.5
        assert snapshot["domains"]["search-results"]["hit_rate"] == 1.0
        assert snapshot["domains"]["qa-pairs"]["hit_rate"] == 0.0
        assert snapshot["totals"]["hits"] == 2
        assert snapshot["totals"]["misses"] == 1

    def test_empty_snapshot(self):
        """Test a fresh collector reports zero rates without dividing by zero."""
        snapshot = MetricsCollector().snapshot()

        assert snapshot["totals"]["hit_rate"] == 0.0
        assert snapshot["latency_ms"]["samples"] == 0
        assert snapshot["latency_ms"]["slowest"] is None

    def test_writes_errors_evictions(self):
        """Test write outcomes, errors and evictions land under their tier."""
        metrics = MetricsCollector()

        metrics.record_write("memory", "ok")
        metrics.record_write("remote", "failed")
        metrics.record_tier_error("remote", "set")
        metrics.record_eviction("memory")
        metrics.record_invalidation("generated-text", 2)

        snapshot = metrics.snapshot()

        assert snapshot["tiers"]["memory"]["writes"] == {"ok": 1}
        assert snapshot["tiers"]["memory"]["evictions"] == 1
        assert snapshot["tiers"]["remote"]["errors"] == 1
        assert snapshot["domains"]["generated-text"]["invalidated"] == 2
        assert snapshot["totals"]["invalidated"] == 2


@pytest.mark.unit
class TestLatency:
    """Test suite for latency tracking."""

    def test_percentiles(self):
        """Test average and tail percentiles over the sample window."""
        metrics = MetricsCollector()
        for ms in range(1, 101):
            metrics.record_latency("get", ms / 1000)

        latency = metrics.snapshot()["latency_ms"]

        assert latency["samples"] == 100
        assert latency["avg"] == 50.5
        assert latency["p95"] == 96.0
        assert latency["p99"] == 100.0

    def test_slowest_operation_tracked(self):
        """Test the slowest operation keeps its context."""
        metrics = MetricsCollector()

        metrics.record_latency("get", 0.001, domain="search-results")
        metrics.record_latency("invalidate", 0.2, domain="generated-text")
        metrics.record_latency("set", 0.01, domain="qa-pairs")

        slowest = metrics.snapshot()["latency_ms"]["slowest"]
        assert slowest["operation"] == "invalidate"
        assert slowest["domain"] == "generated-text"

    def test_window_bounded(self):
        """Test only the most recent samples are kept."""
        metrics = MetricsCollector(latency_window=10)
        for _ in range(50):
            metrics.record_latency("get", 0.001)

        assert metrics.snapshot()["latency_ms"]["samples"] == 10


@pytest.mark.unit
class TestPassiveBehaviour:
    """Test suite for error isolation and reset."""

    def test_recording_failure_swallowed(self):
        """Test a broken metric backend never raises into the caller."""
        metrics = MetricsCollector()

        with patch.object(metrics_collector.CACHE_HITS, "labels", side_effect=RuntimeError("registry broken")):
            assert metrics.record_hit("memory", "search-results") is None

        assert metrics.snapshot()["totals"]["hits"] == 0

    def test_reset_keeps_health(self):
        """Test reset clears counters but not the current health view."""
        metrics = MetricsCollector()
        metrics.record_hit("memory", "search-results")
        metrics.set_tier_health("remote", False)

        metrics.reset()
        snapshot = metrics.snapshot()

        assert snapshot["totals"]["hits"] == 0
        assert snapshot["health"] == {"remote": False}

    def test_health_transitions_history(self):
        """Test transitions are kept in order."""
        metrics = MetricsCollector()

        metrics.record_health_transition("remote", False, 10.0)
        metrics.record_health_transition("remote", True, 20.0)

        transitions = metrics.snapshot()["health_transitions"]
        assert [t["to"] for t in transitions] == ["unhealthy", "healthy"]


@pytest.mark.unit
class TestPrometheusExport:
    """Test suite for Prometheus exposition."""

    def test_export_contains_cache_metrics(self):
        """Test the text exposition includes tiercache series."""
        metrics = MetricsCollector()
        metrics.record_hit("memory", "search-results")

        output = metrics.get_prometheus_metrics()

        assert isinstance(output, bytes)
        assert b"tiercache_hits_total" in output
        assert metrics.get_content_type().startswith("text/plain")

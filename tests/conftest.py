"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests. All fixtures defined
here are automatically available to all test files.
"""

import asyncio
import os
import re
import sys

import pytest
from redis.exceptions import AuthenticationError, ConnectionError

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tiercache.core.config.settings import RedisSettings  # noqa: E402
from tiercache.infrastructure.cache.coordinator import TieredCache  # noqa: E402
from tiercache.infrastructure.cache.memory_tier import MemoryTier  # noqa: E402
from tiercache.infrastructure.cache.redis_client import RedisClient  # noqa: E402
from tiercache.infrastructure.cache.remote_tier import RemoteTier  # noqa: E402
from tiercache.infrastructure.monitoring.health_monitor import HealthMonitor  # noqa: E402
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector  # noqa: E402


# ============================================================================
# Time
# ============================================================================


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Redis stand-in
# ============================================================================


class InMemoryRedis:
    """
    In-memory stand-in for ``redis.asyncio.Redis``.

    Never expires keys on its own, which lets tests prove that envelope
    expiry is enforced even when the server still holds the bytes.

    Toggles:
        fail: every command raises redis ConnectionError
        hang: every command sleeps far past any operation timeout
        auth_error: PING raises AuthenticationError
        scan_delay: seconds each SCAN step takes
        fail_after_scans: SCAN steps that succeed before SCAN starts failing
    """

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.px: dict[str, int] = {}
        self.calls: list[str] = []
        self.fail = False
        self.hang = False
        self.auth_error = False
        self.closed = False
        self.scan_delay = 0.0
        self.fail_after_scans: int | None = None
        self._scan_snapshot: list[str] = []

    async def _enter(self, command: str) -> None:
        self.calls.append(command)
        if self.hang:
            await asyncio.sleep(10)
        if self.fail:
            raise ConnectionError("Connection refused")

    async def ping(self):
        if self.auth_error:
            raise AuthenticationError("invalid password")
        await self._enter("ping")
        return True

    async def get(self, key):
        await self._enter("get")
        return self.data.get(key)

    async def set(self, key, value, px=None, ex=None):
        await self._enter("set")
        self.data[key] = bytes(value)
        if px is not None:
            self.px[key] = px
        return True

    async def delete(self, *keys):
        await self._enter("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.px.pop(key, None)
        return removed

    async def unlink(self, *keys):
        await self._enter("unlink")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.px.pop(key, None)
        return removed

    async def scan(self, cursor=0, match=None, count=None):
        """Paged SCAN over a snapshot taken when the walk starts at cursor 0."""
        await self._enter("scan")
        if self.fail_after_scans is not None and self.calls.count("scan") > self.fail_after_scans:
            raise ConnectionError("Connection reset by peer")
        if self.scan_delay:
            await asyncio.sleep(self.scan_delay)
        if cursor == 0:
            prefix = re.sub(r"\\(.)", r"\1", match[:-1]) if match else ""
            self._scan_snapshot = sorted(key for key in self.data if key.startswith(prefix))
        page = count or 10
        batch = self._scan_snapshot[cursor:cursor + page]
        next_cursor = cursor + page if cursor + page < len(self._scan_snapshot) else 0
        return next_cursor, [key.encode("utf-8") for key in batch]

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def redis_settings():
    return RedisSettings(
        REDIS_OPERATION_TIMEOUT=0.05,
        REDIS_PROBE_TIMEOUT=0.02,
        REDIS_SOCKET_CONNECT_TIMEOUT=0.05,
        REDIS_CONNECT_RETRIES=1,
    )


@pytest.fixture
def remote_tier(fake_redis, redis_settings):
    return RemoteTier(RedisClient(redis_settings, client=fake_redis))


# ============================================================================
# Cache assemblies
# ============================================================================


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def memory_tier(clock):
    return MemoryTier(max_entries=100, max_bytes=64 * 1024, ttl_cap=1800, clock=clock)


@pytest.fixture
def health_monitor(remote_tier, metrics):
    return HealthMonitor(
        remote_tier,
        metrics=metrics,
        base_interval=5.0,
        backoff_factor=2.0,
        max_interval=60.0,
        failure_threshold=3,
        success_threshold=2,
    )


@pytest.fixture
async def tiered_cache(memory_tier, remote_tier, health_monitor, metrics, clock):
    """
    Memory + remote cache over the Redis stand-in.

    The probe loop is NOT started; tests drive health with ``probe_once``.
    Write-back workers are running.
    """
    cache = TieredCache(
        memory_tier,
        remote_tier,
        health_monitor=health_monitor,
        metrics=metrics,
        domain_ttls={"search-results": 3600, "generated-text": 86400},
        default_ttl=600,
        clock=clock,
    )
    await remote_tier.connect()
    await cache.write_back.start()
    yield cache
    await cache.close()


@pytest.fixture
async def memory_only_cache(memory_tier, metrics, clock):
    cache = TieredCache(memory_tier, metrics=metrics, clock=clock)
    await cache.write_back.start()
    yield cache
    await cache.close()

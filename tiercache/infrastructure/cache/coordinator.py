#!/usr/bin/env python3
"""
Tiered Cache Coordinator

Architecture:
    TieredCache (Public API)
        ├── MemoryTier      (always consulted first, always healthy)
        ├── RemoteTier      (consulted only while the HealthMonitor says healthy)
        ├── ClientPersistedTier (client context only, lowest priority)
        ├── WriteBackQueue  (bounded background population)
        └── MetricsCollector (passive observer)

Lookup:  memory → remote (if healthy) → client, first live entry wins.
         A hit in a slower tier back-fills every faster usable tier with the
         same envelope and its remaining TTL.
Write:   every usable tier; only "no tier accepted it" is an error.
Removal: every tier, healthy or not; never raises for tier failures.

Tier failures never cross this boundary as exceptions. They become misses
or no-ops, a metric, and one structured log line.

Performance Targets:
    - Memory hit: < 1ms
    - Remote hit: bounded by REDIS_OPERATION_TIMEOUT
    - Unhealthy remote: zero remote I/O on get/set

Author: System Architect
Date: 2025-12-13
"""

import asyncio
import contextlib
import hashlib
import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import orjson

from tiercache.core.config.constants import TIER_PRIORITY, HealthStatus, Stage, TierName
from tiercache.core.exceptions import CacheWriteError, TierOperationError
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger, log_stage
from tiercache.infrastructure.cache.client_tier import ClientPersistedTier
from tiercache.infrastructure.cache.entry import (
    CacheEntry,
    Clock,
    namespace_prefix,
    namespaced_key,
    system_clock,
)
from tiercache.infrastructure.cache.memory_tier import MemoryTier
from tiercache.infrastructure.cache.remote_tier import RemoteTier
from tiercache.infrastructure.cache.write_back import WriteBackJob, WriteBackQueue
from tiercache.infrastructure.monitoring.health_monitor import HealthMonitor
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


class TieredCache:
    """
    Health-aware multi-tier cache keyed by (domain, key).

    Usage:
        cache = build_tiered_cache(settings)
        await cache.start()

        await cache.set("search-results", "beach:page1", payload)
        payload = await cache.get("search-results", "beach:page1")
        removed = await cache.invalidate_pattern("generated-text", "claude:v1:")

        await cache.close()
    """

    def __init__(
        self,
        memory: MemoryTier,
        remote: RemoteTier | None = None,
        client: ClientPersistedTier | None = None,
        *,
        health_monitor: HealthMonitor | None = None,
        metrics: MetricsCollector | None = None,
        domain_ttls: Mapping[str, float] | None = None,
        default_ttl: float = 3600,
        write_through: bool = True,
        write_back_queue_size: int = 1000,
        write_back_workers: int = 2,
        drain_timeout: float = 5.0,
        purge_interval: float = 300.0,
        clock: Clock = system_clock,
    ):
        self._memory = memory
        self._remote = remote
        self._client = client
        by_name = {tier.name: tier for tier in (memory, remote, client) if tier is not None}
        self._tiers: tuple[CacheTier, ...] = tuple(by_name[name] for name in TIER_PRIORITY if name in by_name)

        self._monitor = health_monitor
        self._metrics = metrics or MetricsCollector()
        self._write_back = WriteBackQueue(
            maxsize=write_back_queue_size,
            workers=write_back_workers,
            metrics=self._metrics,
            clock=clock,
            on_tier_error=self._note_tier_failure,
            is_superseded=self._is_superseded,
        )
        self._domain_ttls = dict(domain_ttls or {})
        self._default_ttl = default_ttl
        self._write_through = write_through
        self._drain_timeout = drain_timeout
        self._purge_interval = purge_interval
        self._clock = clock

        # Write generations: a queued job older than its key's last change is dropped
        self._generation = 0
        self._key_generations: dict[str, int] = {}
        self._prefix_generations: dict[str, int] = {}
        self._reads_in_flight = 0

        self._inflight: dict[str, asyncio.Future] = {}
        self._background: set[asyncio.Task] = set()
        self._purge_task: asyncio.Task | None = None
        self._started = False

        log_stage(
            logger,
            Stage.INITIALIZATION,
            "Tiered cache initialized",
            tiers=[t.name.value for t in self._tiers],
            write_through=write_through,
        )

    # =========================================================================
    # Key and TTL policy
    # =========================================================================

    @staticmethod
    def namespaced_key(domain: str, key: str) -> str:
        return namespaced_key(domain, key)

    @staticmethod
    def generate_cache_key(*parts: Any) -> str:
        """
        Stable short key from arbitrary arguments.

        Uses MD5 for fast hashing (collision risk acceptable for cache).
        """
        data = ":".join(str(part) for part in parts)
        return hashlib.md5(data.encode()).hexdigest()

    def resolve_ttl(self, domain: str, ttl: float | None = None) -> float:
        """Per-call override, else the domain default, else the global default."""
        if ttl is not None:
            return ttl
        return self._domain_ttls.get(domain, self._default_ttl)

    # =========================================================================
    # Tier selection
    # =========================================================================

    @property
    def tiers(self) -> tuple[CacheTier, ...]:
        return self._tiers

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def health_monitor(self) -> HealthMonitor | None:
        return self._monitor

    @property
    def write_back(self) -> WriteBackQueue:
        return self._write_back

    def _is_usable(self, tier: CacheTier) -> bool:
        if tier.name is TierName.REMOTE and self._monitor is not None:
            return self._monitor.is_healthy
        return True

    def _usable_tiers(self) -> list[CacheTier]:
        return [tier for tier in self._tiers if self._is_usable(tier)]

    def _note_tier_failure(self, tier: CacheTier, error: Exception) -> None:
        if tier.name is TierName.REMOTE and self._monitor is not None:
            self._monitor.request_probe()

    def _tier_failed(self, tier: CacheTier, operation: str, error: Exception, **context) -> None:
        self._metrics.record_tier_error(tier.name.value, operation)
        self._note_tier_failure(tier, error)
        log_stage(
            logger,
            Stage.TIER_ERROR,
            f"Tier {operation} failed",
            level="warning",
            tier=tier.name.value,
            outcome="error",
            error=str(error),
            **context,
        )

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return max(deadline - asyncio.get_running_loop().time(), 0.0)

    # =========================================================================
    # Write generations
    # =========================================================================

    def _advance_generation(self, nkey: str | None = None, nprefix: str | None = None) -> None:
        """Mark nkey (or every key under nprefix) as changed after all earlier reads."""
        self._generation += 1
        if not self._write_back.outstanding and not self._reads_in_flight:
            # Nothing scheduled earlier can still be waiting to run
            self._key_generations.clear()
            self._prefix_generations.clear()
        if nkey is not None:
            self._key_generations[nkey] = self._generation
        if nprefix is not None:
            self._prefix_generations[nprefix] = self._generation

    def _is_superseded(self, job: WriteBackJob) -> bool:
        if self._key_generations.get(job.key, 0) > job.generation:
            return True
        return any(
            generation > job.generation and job.key.startswith(prefix)
            for prefix, generation in self._prefix_generations.items()
        )

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Get
    # =========================================================================

    async def get(self, domain: str, key: str, timeout: float | None = None) -> bytes | None:
        """
        Return the live value for (domain, key) or None.

        STAGE-TC.1: Tiered lookup

        Args:
            domain: Logical domain (selects namespace and TTL)
            key: Caller key within the domain
            timeout: Overall deadline in seconds for this lookup

        Raises:
            InvalidCacheKeyError: Domain or key cannot be namespaced
        """
        nkey = namespaced_key(domain, key)
        started = time.perf_counter()
        deadline = None if timeout is None else asyncio.get_running_loop().time() + timeout
        generation = self._generation
        self._reads_in_flight += 1

        faster: list[CacheTier] = []
        try:
            for tier in self._tiers:
                if not self._is_usable(tier):
                    continue

                entry = await self._read_tier(tier, nkey, domain, self._remaining(deadline))
                if entry is None:
                    faster.append(tier)
                    continue

                self._metrics.record_hit(tier.name.value, domain)
                if faster:
                    self._schedule_back_fill(faster, nkey, entry, generation)
                log_stage(logger, Stage.GET_TIER_HIT, "Cache hit", level="debug", tier=tier.name.value, domain=domain)
                return entry.value

            self._metrics.record_miss(domain)
            log_stage(logger, Stage.GET_MISS, "Cache miss", level="debug", domain=domain, key=key)
            return None
        finally:
            self._reads_in_flight -= 1
            self._metrics.record_latency("get", time.perf_counter() - started, domain=domain)

    async def _read_tier(
        self, tier: CacheTier, nkey: str, domain: str, timeout: float | None
    ) -> CacheEntry | None:
        """One tier lookup; every failure mode comes back as None."""
        tier_name = tier.name.value
        try:
            blob = await tier.get(nkey, timeout=timeout)
        except TierOperationError as e:
            self._tier_failed(tier, "get", e, domain=domain, key=nkey)
            self._metrics.record_tier_miss(tier_name, domain)
            return None

        if blob is None:
            self._metrics.record_tier_miss(tier_name, domain)
            return None

        try:
            entry = CacheEntry.decode(nkey, blob)
        except ValueError as e:
            logger.warning("Discarding unreadable cache entry", tier=tier_name, key=nkey, error=str(e))
            self._metrics.record_tier_miss(tier_name, domain)
            self._spawn(self._quiet_delete(tier, nkey))
            return None

        if entry.is_expired(self._clock()):
            log_stage(
                logger, Stage.GET_TIER_EXPIRED, "Expired entry skipped", level="debug", tier=tier_name, key=nkey
            )
            self._metrics.record_tier_miss(tier_name, domain)
            self._spawn(self._quiet_delete(tier, nkey))
            return None

        return entry

    def _schedule_back_fill(
        self, targets: Iterable[CacheTier], nkey: str, entry: CacheEntry, generation: int
    ) -> None:
        blob = entry.encode()
        for tier in targets:
            if not self._is_usable(tier):
                continue
            self._write_back.submit(
                WriteBackJob(
                    tier=tier,
                    key=nkey,
                    blob=blob,
                    expires_at=entry.expires_at,
                    domain=entry.domain,
                    reason="back_fill",
                    generation=generation,
                )
            )

    async def _quiet_delete(self, tier: CacheTier, nkey: str) -> None:
        try:
            await tier.delete(nkey)
        except TierOperationError as e:
            self._tier_failed(tier, "delete", e, key=nkey)

    # =========================================================================
    # Set
    # =========================================================================

    async def set(self, domain: str, key: str, value: bytes, ttl: float | None = None) -> None:
        """
        Store value under (domain, key) in every usable tier.

        STAGE-TC.2: Tiered write

        Raises:
            CacheWriteError: No tier accepted the write
            InvalidCacheKeyError: Domain or key cannot be namespaced
            TypeError / ValueError: value is not bytes, or TTL is not positive
        """
        nkey = namespaced_key(domain, key)
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"cache values must be bytes, got {type(value).__name__}")
        resolved_ttl = self.resolve_ttl(domain, ttl)
        if resolved_ttl <= 0:
            raise ValueError("ttl must be positive")

        started = time.perf_counter()
        self._advance_generation(nkey=nkey)
        generation = self._generation
        entry = CacheEntry.create(domain, key, bytes(value), resolved_ttl, self._clock())
        blob = entry.encode()
        targets = self._usable_tiers()

        try:
            if self._write_through or len(targets) == 1:
                results = await asyncio.gather(
                    *(self._write_tier(tier, nkey, blob, resolved_ttl, domain) for tier in targets)
                )
                stored = any(results)
            else:
                primary, slower = targets[0], targets[1:]
                stored = await self._write_tier(primary, nkey, blob, resolved_ttl, domain)
                if stored:
                    for tier in slower:
                        self._write_back.submit(
                            WriteBackJob(
                                tier,
                                nkey,
                                blob,
                                entry.expires_at,
                                domain,
                                reason="async_set",
                                generation=generation,
                            )
                        )
                else:
                    # Primary refused; wait for the rest so total failure is detectable
                    results = await asyncio.gather(
                        *(self._write_tier(tier, nkey, blob, resolved_ttl, domain) for tier in slower)
                    )
                    stored = any(results)
        finally:
            self._metrics.record_latency("set", time.perf_counter() - started, domain=domain)

        if not stored:
            log_stage(
                logger,
                Stage.SET_TOTAL_FAILURE,
                "Cache write failed on every tier",
                level="error",
                domain=domain,
                key=key,
                outcome="failed",
                tiers=[t.name.value for t in targets],
            )
            raise CacheWriteError(
                "Cache write failed on every tier",
                details={"domain": domain, "key": key, "tiers": [t.name.value for t in targets]},
            )
        log_stage(logger, Stage.SET, "Cache set", level="debug", domain=domain, key=key, ttl=resolved_ttl)

    async def _write_tier(self, tier: CacheTier, nkey: str, blob: bytes, ttl: float, domain: str) -> bool:
        tier_name = tier.name.value
        try:
            stored = await tier.set(nkey, blob, ttl)
        except TierOperationError as e:
            self._metrics.record_write(tier_name, "failed")
            self._tier_failed(tier, "set", e, domain=domain, key=nkey)
            return False

        self._metrics.record_write(tier_name, "ok" if stored else "rejected")
        if not stored:
            log_stage(
                logger,
                Stage.SET_TIER_FAILED,
                "Tier rejected write",
                level="info",
                tier=tier_name,
                domain=domain,
                key=nkey,
                outcome="rejected",
                size=len(blob),
            )
        return stored

    # =========================================================================
    # Delete / Invalidate
    # =========================================================================

    async def delete(self, domain: str, key: str) -> bool:
        """
        Remove (domain, key) from every tier, including an unhealthy remote.

        STAGE-TC.3: Delete

        Returns:
            True if any tier held the key. Tier failures never raise.
        """
        nkey = namespaced_key(domain, key)
        started = time.perf_counter()
        self._advance_generation(nkey=nkey)
        results = await asyncio.gather(*(self._delete_tier(tier, nkey, domain) for tier in self._tiers))
        self._metrics.record_latency("delete", time.perf_counter() - started, domain=domain)
        removed = any(results)
        log_stage(logger, Stage.DELETE, "Cache delete", level="debug", domain=domain, key=key, removed=removed)
        return removed

    async def _delete_tier(self, tier: CacheTier, nkey: str, domain: str) -> bool:
        try:
            return await tier.delete(nkey)
        except TierOperationError as e:
            self._tier_failed(tier, "delete", e, domain=domain, key=nkey)
            return False

    async def invalidate_pattern(self, domain: str, prefix: str = "") -> int:
        """
        Remove every key in ``domain`` starting with ``prefix`` from every tier.

        STAGE-TC.4: Pattern invalidation

        Intended for coarse invalidation; the remote tier walks SCAN and
        unlinks batch by batch. A tier that fails part-way keeps what it
        already removed and the outcome is logged as ``partial``.

        Returns:
            Number of distinct keys removed across all tiers
        """
        nprefix = namespace_prefix(domain, prefix)
        started = time.perf_counter()
        self._advance_generation(nprefix=nprefix)
        per_tier = await asyncio.gather(*(self._invalidate_tier(tier, nprefix, domain) for tier in self._tiers))
        removed = frozenset().union(*(keys for keys, _ in per_tier))
        count = len(removed)
        failed = [tier.name.value for tier, (_, complete) in zip(self._tiers, per_tier) if not complete]

        self._metrics.record_invalidation(domain, count)
        self._metrics.record_latency("invalidate", time.perf_counter() - started, domain=domain)
        log_stage(
            logger,
            Stage.INVALIDATE,
            "Prefix invalidated" if not failed else "Prefix partially invalidated",
            level="info" if not failed else "warning",
            domain=domain,
            prefix=prefix,
            outcome="ok" if not failed else "partial",
            removed=count,
            failed_tiers=failed,
            per_tier={tier.name.value: len(keys) for tier, (keys, _) in zip(self._tiers, per_tier)},
        )
        return count

    async def _invalidate_tier(self, tier: CacheTier, nprefix: str, domain: str) -> tuple[frozenset[str], bool]:
        """Keys the tier removed, and whether it finished the walk."""
        removed: list[str] = []
        try:
            async for keys in tier.delete_prefix(nprefix):
                removed.extend(keys)
        except TierOperationError as e:
            self._tier_failed(tier, "invalidate", e, domain=domain, prefix=nprefix, removed=len(removed))
            return frozenset(removed), False
        return frozenset(removed), True

    # =========================================================================
    # Cache-aside helpers
    # =========================================================================

    @staticmethod
    def _serialize(value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        return orjson.dumps(value)

    async def get_or_set(
        self,
        domain: str,
        key: str,
        compute: Callable[[], Any],
        ttl: float | None = None,
    ) -> Any:
        """
        Return the cached bytes, or compute, cache and return the value.

        STAGE-TC.5: Cache-aside with request de-duplication

        Concurrent callers for the same key share one computation. A computed
        value is returned as produced (not re-read from the cache); it is
        stored as bytes (str as UTF-8, other objects via orjson). Failing to
        cache the computed value is logged, not raised.
        """
        cached = await self.get(domain, key)
        if cached is not None:
            return cached

        nkey = namespaced_key(domain, key)
        pending = self._inflight.get(nkey)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[nkey] = future
        try:
            result = compute()
            if inspect.isawaitable(result):
                result = await result
            try:
                await self.set(domain, key, self._serialize(result), ttl)
            except CacheWriteError as e:
                logger.warning("Computed value not cached", domain=domain, key=key, error=str(e))
            future.set_result(result)
            return result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported twice
            future.exception()
            raise
        finally:
            self._inflight.pop(nkey, None)

    async def get_many(self, domain: str, keys: Iterable[str], timeout: float | None = None) -> dict[str, bytes | None]:
        keys = list(keys)
        values = await asyncio.gather(*(self.get(domain, key, timeout=timeout) for key in keys))
        return dict(zip(keys, values))

    async def set_many(self, domain: str, items: Mapping[str, bytes], ttl: float | None = None) -> dict[str, bool]:
        """Store several values; a key whose write failed everywhere maps to False."""

        async def _one(key: str, value: bytes) -> bool:
            try:
                await self.set(domain, key, value, ttl)
                return True
            except CacheWriteError:
                return False

        keys = list(items)
        results = await asyncio.gather(*(_one(key, items[key]) for key in keys))
        return dict(zip(keys, results))

    async def has(self, domain: str, key: str) -> bool:
        """
        True if any usable tier holds a live entry for (domain, key).

        Does not count a hit or miss and never back-fills.
        """
        nkey = namespaced_key(domain, key)
        now = self._clock()
        for tier in self._usable_tiers():
            try:
                blob = await tier.get(nkey)
            except TierOperationError as e:
                self._tier_failed(tier, "get", e, domain=domain, key=nkey)
                continue
            if blob is None:
                continue
            try:
                if not CacheEntry.decode(nkey, blob).is_expired(now):
                    return True
            except ValueError:
                continue
        return False

    async def warm(
        self,
        domain: str,
        fetchers: Mapping[str, Callable[[], Any]],
        ttl: float | None = None,
    ) -> dict[str, bool]:
        """
        Preload keys by calling each fetcher and caching what it returns.

        STAGE-TC.6: Warm

        Entries are independent. A fetcher that raises, or a value no tier
        accepts, is logged and reported as False; the rest still load.

        Raises:
            InvalidCacheKeyError: Domain cannot be namespaced
        """
        namespace_prefix(domain)

        async def _one(key: str, fetch: Callable[[], Any]) -> bool:
            try:
                value = fetch()
                if inspect.isawaitable(value):
                    value = await value
                await self.set(domain, key, self._serialize(value), ttl)
                return True
            except Exception as e:
                log_stage(
                    logger,
                    Stage.WARM,
                    "Cache warm entry failed",
                    level="warning",
                    domain=domain,
                    key=key,
                    outcome="failed",
                    error=str(e),
                )
                return False

        keys = list(fetchers)
        results = await asyncio.gather(*(_one(key, fetchers[key]) for key in keys))
        warmed = sum(results)
        log_stage(logger, Stage.WARM, "Cache warmed", domain=domain, warmed=warmed, failed=len(keys) - warmed)
        return dict(zip(keys, results))

    # =========================================================================
    # Expired-entry sweep
    # =========================================================================

    async def purge_expired(self) -> int:
        """Drop expired memory slots that no read has touched since they lapsed."""
        removed = await self._memory.purge_expired()
        log_stage(logger, Stage.PURGE, "Expired entries purged", level="debug", tier="memory", removed=removed)
        return removed

    async def _purge_loop(self) -> None:
        while True:
            await asyncio.sleep(self._purge_interval)
            try:
                await self.purge_expired()
            except Exception as e:
                logger.error("Expired-entry sweep failed", stage=Stage.PURGE.value, error=str(e), exc_info=True)

    # =========================================================================
    # Monitoring
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        """
        Snapshot for the operational status endpoint.

        Hit/miss counts and rates per tier and per domain, writes, errors,
        evictions, invalidations, latency, current health and memory usage.
        """
        snapshot = self._metrics.snapshot()
        snapshot["tier_order"] = [tier.name.value for tier in self._tiers]
        snapshot["current_health"] = self._current_health()
        snapshot["memory"] = self._memory.describe()
        snapshot["write_back_pending"] = self._write_back.pending
        snapshot["write_through"] = self._write_through
        return snapshot

    def _current_health(self) -> dict[str, Any]:
        health: dict[str, Any] = {TierName.MEMORY.value: {"status": HealthStatus.HEALTHY.value, "healthy": True}}
        if self._remote is not None:
            if self._monitor is not None:
                health[TierName.REMOTE.value] = self._monitor.health.to_dict()
            else:
                health[TierName.REMOTE.value] = {"status": HealthStatus.HEALTHY.value, "healthy": True}
        if self._client is not None:
            health[TierName.CLIENT.value] = {"status": HealthStatus.HEALTHY.value, "healthy": True}
        return health

    async def health_check(self) -> dict[str, Any]:
        """
        Per-tier status plus an overall verdict.

        healthy: every tier usable
        degraded: memory fine, some slower tier unusable
        """
        tiers = self._current_health()

        if self._remote is not None:
            tiers[TierName.REMOTE.value]["details"] = await self._remote.health_check()

        if self._client is not None:
            ok = await self._client.probe()
            tiers[TierName.CLIENT.value] = {
                "status": HealthStatus.HEALTHY.value if ok else HealthStatus.UNHEALTHY.value,
                "healthy": ok,
            }
            if ok:
                try:
                    tiers[TierName.CLIENT.value]["usage"] = await self._client.storage_usage()
                except TierOperationError as e:
                    tiers[TierName.CLIENT.value]["usage_error"] = str(e)

        overall = HealthStatus.HEALTHY
        if not all(info["healthy"] for info in tiers.values()):
            overall = HealthStatus.DEGRADED

        return {
            "status": overall.value,
            "tiers": tiers,
            "monitor_running": bool(self._monitor and self._monitor.is_running),
            "write_back_running": self._write_back.is_running,
        }

    def reset_stats(self) -> None:
        self._metrics.reset()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Connect tiers and start background work.

        STAGE-TC.0: Startup

        Raises:
            CacheConnectionError: A tier is misconfigured (fatal at startup)
        """
        if self._started:
            return

        for tier in self._tiers:
            await tier.connect()

        if self._remote is not None and self._monitor is not None and not self._remote.reachable_at_start:
            self._monitor.reset(healthy=False)

        await self._write_back.start()
        if self._monitor is not None:
            await self._monitor.start()
        if self._purge_interval > 0:
            self._purge_task = asyncio.create_task(self._purge_loop(), name="memory-purge")

        self._started = True
        log_stage(logger, Stage.INITIALIZATION, "Tiered cache started", tiers=[t.name.value for t in self._tiers])

    async def close(self) -> None:
        """
        Stop the sweep and the monitor, drain write-backs, close every tier.

        STAGE-TC.9: Cleanup
        """
        if self._purge_task is not None:
            self._purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._purge_task
            self._purge_task = None
        if self._monitor is not None:
            await self._monitor.stop()
        await self._write_back.close(drain_timeout=self._drain_timeout)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        for tier in reversed(self._tiers):
            try:
                await tier.close()
            except Exception as e:
                logger.error("Tier close failed", stage=Stage.CLEANUP.value, tier=tier.name.value, error=str(e))

        self._started = False
        log_stage(logger, Stage.CLEANUP, "Tiered cache closed")

    async def __aenter__(self) -> "TieredCache":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

"""
Tiered Cache Factory

Builds a TieredCache from Settings. Called once at application startup;
the result is handed to request handlers by dependency injection and
closed on shutdown. There is no module-level cache instance.

Tier selection is by configuration only:
- memory: always
- remote: CACHE_REMOTE_ENABLED
- client: CACHE_CLIENT_CONTEXT

Author: System Architect
Date: 2025-12-14
"""

from tiercache.core.config.constants import Stage
from tiercache.core.config.settings import Settings, get_settings
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.client_tier import ClientPersistedTier
from tiercache.infrastructure.cache.coordinator import TieredCache
from tiercache.infrastructure.cache.entry import Clock, system_clock
from tiercache.infrastructure.cache.memory_tier import MemoryTier
from tiercache.infrastructure.cache.redis_client import RedisClient
from tiercache.infrastructure.cache.remote_tier import RemoteTier
from tiercache.infrastructure.monitoring.health_monitor import HealthMonitor
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


def build_tiered_cache(
    settings: Settings | None = None,
    *,
    redis_client: RedisClient | None = None,
    metrics: MetricsCollector | None = None,
    clock: Clock = system_clock,
) -> TieredCache:
    """
    Assemble tiers, health monitor and metrics from configuration.

    Args:
        settings: Settings (defaults to the process settings)
        redis_client: Pre-built RedisClient (tests inject one over a fake server)
        metrics: Shared MetricsCollector
        clock: Wall clock used for entry expiry

    Returns:
        An unstarted TieredCache; call ``await cache.start()``
    """
    settings = settings or get_settings()
    cache_cfg = settings.cache
    health_cfg = settings.health
    metrics = metrics or MetricsCollector()

    memory = MemoryTier(
        max_entries=cache_cfg.CACHE_MEMORY_MAX_ENTRIES,
        max_bytes=cache_cfg.CACHE_MEMORY_MAX_BYTES,
        ttl_cap=cache_cfg.CACHE_MEMORY_TTL_CAP,
        clock=clock,
        on_evict=lambda tier, key: metrics.record_eviction(tier.value),
    )

    remote = None
    monitor = None
    if cache_cfg.CACHE_REMOTE_ENABLED:
        redis_cfg = settings.redis
        remote = RemoteTier(redis_client or RedisClient(redis_cfg))
        monitor = HealthMonitor(
            remote,
            metrics=metrics,
            base_interval=health_cfg.HEALTH_PROBE_INTERVAL,
            backoff_factor=health_cfg.HEALTH_BACKOFF_FACTOR,
            max_interval=health_cfg.HEALTH_MAX_INTERVAL,
            failure_threshold=health_cfg.HEALTH_FAILURE_THRESHOLD,
            success_threshold=health_cfg.HEALTH_SUCCESS_THRESHOLD,
            probe_timeout=redis_cfg.REDIS_PROBE_TIMEOUT,
        )

    client = None
    if cache_cfg.CACHE_CLIENT_CONTEXT:
        client = ClientPersistedTier(
            path=cache_cfg.CACHE_CLIENT_STORE_PATH,
            max_entries=cache_cfg.CACHE_CLIENT_MAX_ENTRIES,
            max_bytes=cache_cfg.CACHE_CLIENT_MAX_BYTES,
            clock=clock,
        )

    logger.info(
        "Building tiered cache",
        stage=Stage.INITIALIZATION.value,
        remote=remote is not None,
        client=client is not None,
        write_through=cache_cfg.CACHE_WRITE_THROUGH,
    )

    return TieredCache(
        memory,
        remote,
        client,
        health_monitor=monitor,
        metrics=metrics,
        domain_ttls=cache_cfg.CACHE_DOMAIN_TTLS,
        default_ttl=cache_cfg.CACHE_DEFAULT_TTL,
        write_through=cache_cfg.CACHE_WRITE_THROUGH,
        write_back_queue_size=cache_cfg.CACHE_WRITE_BACK_QUEUE_SIZE,
        write_back_workers=cache_cfg.CACHE_WRITE_BACK_WORKERS,
        drain_timeout=cache_cfg.CACHE_SHUTDOWN_DRAIN_TIMEOUT,
        purge_interval=cache_cfg.CACHE_PURGE_INTERVAL,
        clock=clock,
    )

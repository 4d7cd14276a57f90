"""
tiercache - tiered, health-aware cache

Memory → Redis → local client store, with background health probing of the
remote tier, write-back population of faster tiers and per-domain TTLs.

Usage:
    from tiercache import build_tiered_cache

    cache = build_tiered_cache()
    await cache.start()
    await cache.set("search-results", "beach:page1", payload)
    payload = await cache.get("search-results", "beach:page1")
    await cache.close()
"""

from tiercache.core.exceptions import (
    CacheConnectionError,
    CacheWriteError,
    InvalidCacheKeyError,
    TierCacheError,
)
from tiercache.infrastructure.cache import TieredCache, build_tiered_cache

__version__ = "1.0.0"

__all__ = [
    "CacheConnectionError",
    "CacheWriteError",
    "InvalidCacheKeyError",
    "TierCacheError",
    "TieredCache",
    "build_tiered_cache",
]

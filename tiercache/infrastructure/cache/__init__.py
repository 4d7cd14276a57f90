"""
Cache Module

Tiered caching: in-process memory, shared Redis, and an optional local
client store, coordinated by TieredCache.
"""

from .client_tier import ClientPersistedTier
from .coordinator import TieredCache
from .entry import CacheEntry, namespace_prefix, namespaced_key
from .factory import build_tiered_cache
from .memory_tier import MemoryTier
from .redis_client import RedisClient
from .remote_tier import RemoteTier
from .write_back import WriteBackJob, WriteBackQueue

__all__ = [
    "CacheEntry",
    "ClientPersistedTier",
    "MemoryTier",
    "RedisClient",
    "RemoteTier",
    "TieredCache",
    "WriteBackJob",
    "WriteBackQueue",
    "build_tiered_cache",
    "namespace_prefix",
    "namespaced_key",
]

"""
Memory Tier - in-process LRU storage

STAGE-2.1: Memory tier

Per-process, not shared across workers. Fastest tier and always healthy.

Implementation Details:
- OrderedDict for O(1) access and LRU ordering
- asyncio.Lock serializes every mutation
- Bounded by entry count AND total bytes; evicts least recently used first
- Stored TTL is min(requested, ttl_cap) so long-lived domains cannot pin memory

Author: System Architect
Date: 2025-12-13
"""

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from typing import Any

from tiercache.core.config.constants import TierName
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.entry import Clock, system_clock

logger = get_logger(__name__)

EvictionCallback = Callable[[TierName, str], None]


class MemoryTier(CacheTier):
    """
    Bounded LRU tier.

    Each slot holds ``(blob, native_expires_at)``. The native expiry is the
    clamped TTL; the envelope inside the blob still carries the authoritative
    ``expires_at`` which the coordinator checks.
    """

    name = TierName.MEMORY

    def __init__(
        self,
        max_entries: int = 1000,
        max_bytes: int = 64 * 1024 * 1024,
        ttl_cap: float = 1800,
        clock: Clock = system_clock,
        on_evict: EvictionCallback | None = None,
    ):
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._ttl_cap = ttl_cap
        self._clock = clock
        self._on_evict = on_evict
        self._store: OrderedDict[str, tuple[bytes, float]] = OrderedDict()
        self._bytes = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        async with self._lock:
            slot = self._store.get(key)
            if slot is None:
                return None
            blob, native_expires_at = slot
            if native_expires_at <= self._clock():
                self._remove(key)
                return None
            # Mark as recently used
            self._store.move_to_end(key)
            return blob

    async def set(self, key: str, value: bytes, ttl: float, timeout: float | None = None) -> bool:
        size = len(value)
        if size > self._max_bytes or ttl <= 0:
            return False

        native_ttl = min(ttl, self._ttl_cap)
        async with self._lock:
            if key in self._store:
                self._remove(key)
            self._store[key] = (value, self._clock() + native_ttl)
            self._bytes += size

            while len(self._store) > self._max_entries or self._bytes > self._max_bytes:
                evicted_key, _ = next(iter(self._store.items()))
                self._remove(evicted_key)
                self._notify_evicted(evicted_key)
        return True

    async def delete(self, key: str, timeout: float | None = None) -> bool:
        async with self._lock:
            if key in self._store:
                self._remove(key)
                return True
            return False

    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        async with self._lock:
            return [key for key in self._store if key.startswith(prefix)]

    async def probe(self) -> bool:
        return True

    async def purge_expired(self) -> int:
        """
        Drop every slot whose native TTL has passed.

        Returns:
            Number of slots removed
        """
        now = self._clock()
        async with self._lock:
            expired = [key for key, (_, exp) in self._store.items() if exp <= now]
            for key in expired:
                self._remove(key)
        if expired:
            logger.debug("Memory tier purged expired entries", count=len(expired))
        return len(expired)

    async def delete_prefix(self, prefix: str) -> AsyncIterator[list[str]]:
        async with self._lock:
            keys = [key for key in self._store if key.startswith(prefix)]
            for key in keys:
                self._remove(key)
        if keys:
            yield keys

    def _remove(self, key: str) -> None:
        # Caller holds the lock
        blob, _ = self._store.pop(key)
        self._bytes -= len(blob)

    def _notify_evicted(self, key: str) -> None:
        if self._on_evict is None:
            return
        try:
            self._on_evict(self.name, key)
        except Exception as e:
            logger.warning("Eviction callback failed", tier=self.name.value, error=str(e))

    @property
    def size(self) -> int:
        return len(self._store)

    @property
    def bytes_used(self) -> int:
        return self._bytes

    def describe(self) -> dict[str, Any]:
        return {
            "tier": self.name.value,
            "entries": len(self._store),
            "max_entries": self._max_entries,
            "bytes": self._bytes,
            "max_bytes": self._max_bytes,
            "utilization": round(len(self._store) / self._max_entries, 4) if self._max_entries else 0.0,
            "ttl_cap": self._ttl_cap,
        }

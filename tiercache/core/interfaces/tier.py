"""
Cache Tier Interface

Abstract base class for the three storage tiers (memory, remote, client).
Tiers only ever see final namespaced keys and opaque encoded entries; they
know nothing about domains or TTL policy.

Architectural Decision: closed set of variants behind one ABC
- The coordinator selects tiers by configuration, never by isinstance checks
- Each tier is testable in isolation
- Miss is ``None``; transient failure is TierOperationError

Author: System Architect
Date: 2025-12-08
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from tiercache.core.config.constants import TierName


class CacheTier(ABC):
    """
    Uniform storage contract implemented by every tier.

    Contract:
        get:          bytes on hit, None on miss; never raises on a miss
        set:          True if stored, False if the tier rejected the value
        delete:       idempotent, True if something was removed
        scan_prefix:  keys currently starting with prefix (not transactional)
        delete_prefix: removes keys under prefix, yielding each removed batch
        probe:        liveness with a hard timeout; never raises

    Transient failures of get/set/delete/scan_prefix/delete_prefix raise
    ``TierOperationError`` (or ``TierTimeoutError``). The coordinator turns
    these into misses and no-ops.
    """

    name: TierName

    async def connect(self) -> None:
        """Acquire resources. Default is a no-op for in-process tiers."""

    async def close(self) -> None:
        """Release resources. Default is a no-op for in-process tiers."""

    @abstractmethod
    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: float, timeout: float | None = None) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str, timeout: float | None = None) -> bool:
        ...

    @abstractmethod
    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        ...

    async def delete_prefix(self, prefix: str) -> AsyncIterator[list[str]]:
        """
        Remove every key starting with prefix, yielding each batch removed.

        Batches already yielded stay removed when a later step raises, so a
        caller can report partial progress. The default scans once and
        deletes key by key.
        """
        for key in await self.scan_prefix(prefix):
            if await self.delete(key):
                yield [key]

    @abstractmethod
    async def probe(self) -> bool:
        ...

    def describe(self) -> dict[str, Any]:
        """Static facts about the tier for stats output."""
        return {"tier": self.name.value}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name.value!r})"

"""
Remote Tier - shared Redis storage

STAGE-2.2: Remote tier

Shared across every application instance. Subject to partitions, timeouts
and overload, so every call is bounded by the operation timeout (or the
caller's tighter deadline) and the health monitor decides whether the
coordinator should call it at all.

Author: System Architect
Date: 2025-12-13
"""

import math
from collections.abc import AsyncIterator
from typing import Any

from tiercache.core.config.constants import Stage, TierName
from tiercache.core.exceptions import TierOperationError
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)


class RemoteTier(CacheTier):
    """
    CacheTier over RedisClient.

    Native expiry is set with PX (milliseconds) so a write-back carrying a
    fractional remaining TTL never rounds up past the envelope expiry.
    """

    name = TierName.REMOTE

    def __init__(self, client: RedisClient):
        self._client = client
        self._reachable_at_start = False

    async def connect(self) -> None:
        """
        Connect at startup.

        An unreachable server is tolerated (the tier starts unhealthy);
        rejected credentials propagate as CacheConnectionError.
        """
        try:
            await self._client.connect()
            self._reachable_at_start = True
        except TierOperationError as e:
            self._reachable_at_start = False
            logger.warning(
                "Remote tier starting degraded",
                stage=Stage.INITIALIZATION.value,
                tier=self.name.value,
                outcome="unreachable",
                error=str(e),
            )

    async def close(self) -> None:
        await self._client.disconnect()

    @property
    def reachable_at_start(self) -> bool:
        return self._reachable_at_start

    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        return await self._client.get(key, timeout=timeout)

    async def set(self, key: str, value: bytes, ttl: float, timeout: float | None = None) -> bool:
        # Floor to whole milliseconds; never extend lifetime
        ttl_ms = math.floor(ttl * 1000)
        if ttl_ms <= 0:
            return False
        return await self._client.set(key, value, ttl_ms, timeout=timeout)

    async def delete(self, key: str, timeout: float | None = None) -> bool:
        return await self._client.delete(key, timeout=timeout) > 0

    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        return await self._client.scan_prefix(prefix, timeout=timeout)

    async def delete_prefix(self, prefix: str) -> AsyncIterator[list[str]]:
        async for keys in self._client.delete_prefix(prefix):
            yield keys

    async def probe(self) -> bool:
        return await self._client.probe()

    async def health_check(self) -> dict[str, Any]:
        return await self._client.health_check()

    def describe(self) -> dict[str, Any]:
        return {"tier": self.name.value, "connected": self._client.is_connected()}

"""
Redis Client with Connection Pooling and Bounded Operations

Architecture:
    RedisClient (Public API)
        ├── ConnectionManager (Connection lifecycle, startup retry)
        ├── OperationExecutor (Deadline-bounded commands with error mapping)
        └── PoolMonitor (Ping latency and pool utilization)

Every command runs under ``asyncio.wait_for`` so a hung server can never
hold a caller past its deadline. Failures surface as TierOperationError /
TierTimeoutError; the remote tier decides what they mean.

Author: System Architect
Date: 2025-12-13
"""

import asyncio
import re
import time
from collections.abc import AsyncIterator
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import AuthenticationError, ConnectionError, RedisError, ResponseError, TimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from tiercache.core.config.settings import RedisSettings
from tiercache.core.exceptions import CacheConnectionError, TierOperationError, TierTimeoutError
from tiercache.core.logging.logger import get_logger

logger = get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(prefix: str) -> str:
    """Escape Redis glob metacharacters so a prefix matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# Handles connection lifecycle, pooling, and startup retry
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Startup policy:
    - Connection refused / timeout: retried with exponential backoff and
      jitter, then reported as TierOperationError (tier starts degraded)
    - Bad credentials / rejected configuration: CacheConnectionError
      immediately (fatal at startup)

    The client is kept even when the first ping fails; the pool reconnects
    lazily once the server comes back and the health monitor notices.
    """

    def __init__(self, settings: RedisSettings, client: redis.Redis | None = None):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = client
        self._is_connected = False

    def _build_client(self) -> redis.Redis:
        self._pool = ConnectionPool(
            host=self._settings.REDIS_HOST,
            port=self._settings.REDIS_PORT,
            db=self._settings.REDIS_DB,
            password=self._settings.REDIS_PASSWORD,
            max_connections=self._settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=self._settings.REDIS_OPERATION_TIMEOUT,
            decode_responses=False,  # Envelopes are raw bytes
        )
        return redis.Redis(connection_pool=self._pool)

    async def connect(self) -> redis.Redis:
        """
        Build the pool and verify it with PING.

        STAGE-REDIS.2: Connection establishment

        Raises:
            CacheConnectionError: Credentials or configuration rejected
            TierOperationError: Server unreachable after retries
        """
        if self._client is None:
            self._client = self._build_client()

        @retry(
            stop=stop_after_attempt(max(self._settings.REDIS_CONNECT_RETRIES, 1)),
            wait=wait_exponential_jitter(multiplier=0.1, max=2.0),
            retry=(
                retry_if_exception_type((ConnectionError, TimeoutError, OSError, asyncio.TimeoutError))
                & retry_if_not_exception_type(AuthenticationError)
            ),
            before_sleep=lambda retry_state: logger.info(
                "Redis connect retry",
                stage="REDIS.2",
                attempt=retry_state.attempt_number,
                delay=round(retry_state.idle_for, 3),
            ),
            reraise=True,
        )
        async def _ping_with_retry():
            await asyncio.wait_for(
                self._client.ping(), timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT
            )

        try:
            await _ping_with_retry()
        except (AuthenticationError, ResponseError) as e:
            logger.error("Redis rejected connection", stage="REDIS.2", error=str(e))
            raise CacheConnectionError.from_exception(
                e,
                message=f"Redis rejected connection: {e}",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
            ).with_suggestion("Check REDIS_PASSWORD and REDIS_DB")
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "Redis unreachable at startup",
                stage="REDIS.2",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                error=str(e),
            )
            raise TierOperationError.from_exception(
                e,
                message=f"Failed to connect to Redis: {e}",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
            )

        self._is_connected = True
        logger.info(
            "Redis connected successfully",
            stage="REDIS.2",
            host=self._settings.REDIS_HOST,
            port=self._settings.REDIS_PORT,
            max_connections=self._settings.REDIS_MAX_CONNECTIONS,
        )
        return self._client

    async def disconnect(self) -> None:
        """
        Close Redis client and pool.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._is_connected = False
        logger.info("Redis disconnected", stage="REDIS.3")

    def get_client(self) -> redis.Redis | None:
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        return self._pool

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# Executes Redis commands under a deadline with consistent error mapping
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent deadline and error handling.

    Error Handling Strategy:
    - asyncio / redis timeouts → TierTimeoutError
    - RedisError / OSError → TierOperationError
    - Each failure logged once with stage, operation and key
    """

    def __init__(self, client: redis.Redis, default_timeout: float, scan_count: int = 500):
        self._redis = client
        self._default_timeout = default_timeout
        self._scan_count = scan_count

    def _deadline(self, timeout: float | None) -> float:
        if timeout is None:
            return self._default_timeout
        return max(min(timeout, self._default_timeout), 0.0)

    async def _run(self, operation: str, awaitable, timeout: float | None, **context) -> Any:
        deadline = self._deadline(timeout)
        try:
            return await asyncio.wait_for(awaitable, timeout=deadline)
        except (asyncio.TimeoutError, TimeoutError) as e:
            logger.warning(
                f"Redis {operation.upper()} timed out",
                stage=f"REDIS.{operation.upper()}",
                timeout=deadline,
                **context,
            )
            raise TierTimeoutError(
                f"Redis {operation.upper()} timed out after {deadline}s",
                details={"tier": "remote", "operation": operation, "timeout": deadline, **context},
            ) from e
        except (RedisError, OSError) as e:
            logger.warning(
                f"Redis {operation.upper()} failed",
                stage=f"REDIS.{operation.upper()}",
                error=str(e),
                **context,
            )
            raise TierOperationError.from_exception(
                e,
                message=f"Redis {operation.upper()} failed: {e}",
                tier="remote",
                operation=operation,
                **context,
            ) from e

    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        """STAGE-REDIS.GET: Redis GET operation"""
        return await self._run("get", self._redis.get(key), timeout, key=key)

    async def set(self, key: str, value: bytes, ttl_ms: int, timeout: float | None = None) -> bool:
        """STAGE-REDIS.SET: Redis SET with PX expiry"""
        result = await self._run("set", self._redis.set(key, value, px=ttl_ms), timeout, key=key)
        return bool(result)

    async def delete(self, *keys: str, timeout: float | None = None) -> int:
        """STAGE-REDIS.DEL: Redis DELETE operation"""
        if not keys:
            return 0
        return await self._run("del", self._redis.delete(*keys), timeout, keys=len(keys))

    async def scan_batches(self, prefix: str, timeout: float | None = None) -> AsyncIterator[list[str]]:
        """
        Walk keys starting with prefix using SCAN (never KEYS).

        STAGE-REDIS.SCAN

        Each SCAN step gets its own deadline, so a large keyspace is walked
        in bounded steps instead of racing one deadline for the whole walk.
        """
        pattern = escape_glob(prefix) + "*"
        cursor = 0
        while True:
            cursor, raw_keys = await self._run(
                "scan",
                self._redis.scan(cursor=cursor, match=pattern, count=self._scan_count),
                timeout,
                prefix=prefix,
            )
            keys = [raw.decode("utf-8") if isinstance(raw, bytes) else raw for raw in raw_keys]
            if keys:
                yield keys
            if int(cursor) == 0:
                return

    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        found: list[str] = []
        async for keys in self.scan_batches(prefix, timeout=timeout):
            found.extend(keys)
        return found

    async def delete_prefix(self, prefix: str, timeout: float | None = None) -> AsyncIterator[list[str]]:
        """
        UNLINK each SCAN batch as it arrives.

        STAGE-REDIS.UNLINK

        Yields the keys of every batch removed. A failing step raises after
        earlier batches have been yielded.
        """
        async for keys in self.scan_batches(prefix, timeout=timeout):
            await self._run("unlink", self._redis.unlink(*keys), timeout, prefix=prefix, keys=len(keys))
            yield keys


# =============================================================================
# LAYER 3: POOL MONITORING
# Ping latency and connection pool utilization
# =============================================================================


class PoolMonitor:
    """
    Reports ping latency and pool utilization for the status endpoint.

    Pool exhaustion warning if >80% utilized.
    """

    def __init__(self, connection_manager: ConnectionManager, settings: RedisSettings):
        self._conn_mgr = connection_manager
        self._settings = settings

    async def probe(self, timeout: float) -> bool:
        """PING under a hard timeout. Never raises."""
        client = self._conn_mgr.get_client()
        if client is None:
            return False
        try:
            return bool(await asyncio.wait_for(client.ping(), timeout=timeout))
        except (asyncio.TimeoutError, RedisError, OSError) as e:
            logger.debug("Redis probe failed", stage="REDIS.PROBE", error=str(e))
            return False

    def pool_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "connected": self._conn_mgr.is_connected(),
            "host": self._settings.REDIS_HOST,
            "port": self._settings.REDIS_PORT,
            "pool_size": 0,
            "pool_in_use": 0,
            "pool_utilization_pct": 0.0,
            "pool_warning": False,
        }
        pool = self._conn_mgr.get_pool()
        if pool is None:
            return stats

        stats["pool_size"] = pool.max_connections
        in_use = len(getattr(pool, "_in_use_connections", ()))
        stats["pool_in_use"] = in_use
        if pool.max_connections:
            utilization = 100.0 * in_use / pool.max_connections
            stats["pool_utilization_pct"] = round(utilization, 1)
            if utilization > 80:
                stats["pool_warning"] = True
                logger.warning(
                    "Redis pool utilization high",
                    pool_utilization=utilization,
                    max_connections=pool.max_connections,
                )
        return stats


# =============================================================================
# LAYER 4: PUBLIC API
# Clean interface that coordinates all layers
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling and bounded operations.

    Usage:
        client = RedisClient(settings.redis)
        await client.connect()

        await client.set("generated-text:k", blob, ttl_ms=60_000)
        blob = await client.get("generated-text:k", timeout=0.2)

        await client.disconnect()

    Architecture:
        RedisClient (this class)
            ├── ConnectionManager (connection lifecycle)
            ├── OperationExecutor (command execution)
            └── PoolMonitor (probe and pool stats)
    """

    def __init__(self, settings: RedisSettings, client: redis.Redis | None = None):
        """
        STAGE-REDIS.1: Client initialization

        Args:
            settings: Redis settings
            client: Pre-built redis client (tests inject a fake here)
        """
        self._settings = settings
        self._conn_mgr = ConnectionManager(settings, client=client)
        self._pool_monitor = PoolMonitor(self._conn_mgr, settings)
        self._executor: OperationExecutor | None = None

    async def connect(self) -> None:
        """
        STAGE-REDIS.2: Connection establishment

        Raises:
            CacheConnectionError: Credentials or configuration rejected
            TierOperationError: Server unreachable after retries
        """
        try:
            await self._conn_mgr.connect()
        finally:
            # Executor exists even when degraded so the tier can recover
            client = self._conn_mgr.get_client()
            if client is not None and self._executor is None:
                self._executor = OperationExecutor(
                    client,
                    default_timeout=self._settings.REDIS_OPERATION_TIMEOUT,
                    scan_count=self._settings.REDIS_SCAN_COUNT,
                )

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._executor = None

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise TierOperationError("Redis client not connected", details={"tier": "remote"})
        return self._executor

    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        return await self._require_executor().get(key, timeout=timeout)

    async def set(self, key: str, value: bytes, ttl_ms: int, timeout: float | None = None) -> bool:
        return await self._require_executor().set(key, value, ttl_ms, timeout=timeout)

    async def delete(self, *keys: str, timeout: float | None = None) -> int:
        return await self._require_executor().delete(*keys, timeout=timeout)

    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        return await self._require_executor().scan_prefix(prefix, timeout=timeout)

    async def delete_prefix(self, prefix: str, timeout: float | None = None) -> AsyncIterator[list[str]]:
        async for keys in self._require_executor().delete_prefix(prefix, timeout=timeout):
            yield keys

    async def probe(self) -> bool:
        return await self._pool_monitor.probe(self._settings.REDIS_PROBE_TIMEOUT)

    async def health_check(self) -> dict[str, Any]:
        """
        STAGE-REDIS.HEALTH: Ping latency plus pool stats.
        """
        start = time.perf_counter()
        ok = await self.probe()
        health = self._pool_monitor.pool_stats()
        health["status"] = "healthy" if ok else "unhealthy"
        health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2) if ok else None
        return health

    def is_connected(self) -> bool:
        return self._conn_mgr.is_connected()

"""
Client-Persisted Tier - small local SQLite store

STAGE-2.3: Client tier

Only built when the cache runs inside an interactive client process
(CACHE_CLIENT_CONTEXT). Lowest priority and purely advisory: it shortens
repeat visits, it does not provide availability.

Like host-managed browser storage it has a hard quota. A write that would
exceed the quota is rejected after expired rows are purged; this tier never
chooses victims itself.

Implementation Details:
- stdlib sqlite3 on a single-worker ThreadPoolExecutor
- threading.Lock around the shared connection
- WAL journal, one table: key, value, stored_at, expires_at, size_bytes

Author: System Architect
Date: 2025-12-14
"""

import asyncio
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from tiercache.core.config.constants import Stage, TierName
from tiercache.core.exceptions import CacheConnectionError, TierOperationError
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.entry import Clock, system_clock

logger = get_logger(__name__)

IN_MEMORY_PATH = ":memory:"


class ClientPersistedTier(CacheTier):
    """CacheTier over a local SQLite file with a fixed quota."""

    name = TierName.CLIENT

    def __init__(
        self,
        path: str = IN_MEMORY_PATH,
        max_entries: int = 200,
        max_bytes: int = 5 * 1024 * 1024,
        clock: Clock = system_clock,
    ):
        self._path = path
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="client-tier")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _open(self) -> None:
        if self._path != IN_MEMORY_PATH:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        if self._path != IN_MEMORY_PATH:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                stored_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                size_bytes INTEGER NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_expires ON entries(expires_at)")
        conn.commit()
        self._conn = conn

    async def connect(self) -> None:
        """
        Open (or create) the store.

        Raises:
            CacheConnectionError: The store path cannot be opened
        """
        try:
            await self._call(self._open)
        except (sqlite3.Error, OSError) as e:
            raise CacheConnectionError.from_exception(
                e, message=f"Cannot open client store: {e}", path=self._path
            ).with_suggestion("Check CACHE_CLIENT_STORE_PATH is writable")
        logger.info("Client tier opened", stage=Stage.INITIALIZATION.value, path=self._path)

    def _close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    async def close(self) -> None:
        await self._call(self._close)
        self._executor.shutdown(wait=True)

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def _run(self, operation: str, fn, *args):
        try:
            return await self._call(fn, *args)
        except sqlite3.Error as e:
            logger.warning("Client tier operation failed", tier=self.name.value, operation=operation, error=str(e))
            raise TierOperationError.from_exception(e, tier=self.name.value, operation=operation) from e

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("client store is not open")
        return self._conn

    # -------------------------------------------------------------------------
    # Sync bodies (run on the executor thread)
    # -------------------------------------------------------------------------

    def _get_sync(self, key: str) -> bytes | None:
        with self._lock:
            conn = self._connection()
            row = conn.execute("SELECT value, expires_at FROM entries WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at <= self._clock():
                conn.execute("DELETE FROM entries WHERE key = ?", (key,))
                conn.commit()
                return None
            return bytes(value)

    def _purge_expired_locked(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("DELETE FROM entries WHERE expires_at <= ?", (self._clock(),))
        return cursor.rowcount

    def _set_sync(self, key: str, value: bytes, ttl: float) -> bool:
        size = len(value)
        if size > self._max_bytes:
            return False
        with self._lock:
            conn = self._connection()
            self._purge_expired_locked(conn)
            count, total = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM entries WHERE key != ?", (key,)
            ).fetchone()
            if count + 1 > self._max_entries or total + size > self._max_bytes:
                conn.commit()
                return False
            now = self._clock()
            conn.execute(
                "INSERT OR REPLACE INTO entries (key, value, stored_at, expires_at, size_bytes) "
                "VALUES (?, ?, ?, ?, ?)",
                (key, sqlite3.Binary(value), now, now + ttl, size),
            )
            conn.commit()
            return True

    def _delete_sync(self, key: str) -> bool:
        with self._lock:
            conn = self._connection()
            cursor = conn.execute("DELETE FROM entries WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    def _scan_sync(self, prefix: str) -> list[str]:
        with self._lock:
            rows = self._connection().execute(
                "SELECT key FROM entries WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
            ).fetchall()
            return [row[0] for row in rows]

    def _usage_sync(self) -> dict[str, Any]:
        with self._lock:
            count, total = self._connection().execute(
                "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM entries"
            ).fetchone()
        return {
            "entries": count,
            "bytes": total,
            "max_entries": self._max_entries,
            "max_bytes": self._max_bytes,
            "percentage": round(100.0 * total / self._max_bytes, 2) if self._max_bytes else 0.0,
        }

    # -------------------------------------------------------------------------
    # CacheTier
    # -------------------------------------------------------------------------

    async def get(self, key: str, timeout: float | None = None) -> bytes | None:
        return await self._run("get", self._get_sync, key)

    async def set(self, key: str, value: bytes, ttl: float, timeout: float | None = None) -> bool:
        if ttl <= 0:
            return False
        accepted = await self._run("set", self._set_sync, key, value, ttl)
        if not accepted:
            logger.info("Client tier quota exceeded", tier=self.name.value, key=key, size=len(value))
        return accepted

    async def delete(self, key: str, timeout: float | None = None) -> bool:
        return await self._run("delete", self._delete_sync, key)

    async def scan_prefix(self, prefix: str, timeout: float | None = None) -> list[str]:
        return await self._run("scan", self._scan_sync, prefix)

    async def probe(self) -> bool:
        return self._conn is not None

    async def storage_usage(self) -> dict[str, Any]:
        return await self._run("usage", self._usage_sync)

    def describe(self) -> dict[str, Any]:
        return {
            "tier": self.name.value,
            "path": self._path,
            "max_entries": self._max_entries,
            "max_bytes": self._max_bytes,
        }

"""
Unit Tests for the Client-Persisted Tier

Tests quota rejection, lazy expiry and prefix scans on an in-memory SQLite
store.
"""

import pytest

from tiercache.core.exceptions import CacheConnectionError
from tiercache.infrastructure.cache.client_tier import ClientPersistedTier


@pytest.fixture
async def client_tier(clock):
    tier = ClientPersistedTier(max_entries=3, max_bytes=100, clock=clock)
    await tier.connect()
    yield tier
    await tier.close()


@pytest.mark.unit
class TestClientTierOperations:
    """Test suite for client tier reads and writes."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, client_tier):
        """Test a stored blob round-trips through SQLite."""
        assert await client_tier.set("qa-pairs:k", b"\x00blob", 60) is True
        assert await client_tier.get("qa-pairs:k") == b"\x00blob"

        assert await client_tier.delete("qa-pairs:k") is True
        assert await client_tier.delete("qa-pairs:k") is False
        assert await client_tier.get("qa-pairs:k") is None

    @pytest.mark.asyncio
    async def test_expired_row_removed_on_read(self, client_tier, clock):
        """Test expired rows read as absent and are deleted."""
        await client_tier.set("qa-pairs:k", b"blob", 10)

        clock.advance(10)

        assert await client_tier.get("qa-pairs:k") is None
        usage = await client_tier.storage_usage()
        assert usage["entries"] == 0

    @pytest.mark.asyncio
    async def test_scan_prefix(self, client_tier):
        """Test only keys under the prefix are listed."""
        await client_tier.set("generated-text:claude:v1:a", b"1", 60)
        await client_tier.set("generated-text:claude:v2:a", b"2", 60)

        assert await client_tier.scan_prefix("generated-text:claude:v1:") == ["generated-text:claude:v1:a"]

    @pytest.mark.asyncio
    async def test_probe_reflects_open_store(self, clock):
        """Test probe is False until the store is opened."""
        tier = ClientPersistedTier(clock=clock)
        assert await tier.probe() is False

        await tier.connect()
        assert await tier.probe() is True
        await tier.close()


@pytest.mark.unit
class TestClientTierQuota:
    """Test suite for quota enforcement."""

    @pytest.mark.asyncio
    async def test_entry_quota_rejects(self, client_tier):
        """Test a write past the entry quota is refused, not evicting."""
        for i in range(3):
            assert await client_tier.set(f"d:{i}", b"x", 60) is True

        assert await client_tier.set("d:overflow", b"x", 60) is False
        assert await client_tier.get("d:0") == b"x"

    @pytest.mark.asyncio
    async def test_overwrite_within_quota(self, client_tier):
        """Test replacing an existing key does not count against the quota twice."""
        for i in range(3):
            await client_tier.set(f"d:{i}", b"x", 60)

        assert await client_tier.set("d:0", b"y", 60) is True
        assert await client_tier.get("d:0") == b"y"

    @pytest.mark.asyncio
    async def test_byte_quota_rejects(self, client_tier):
        """Test a write past the byte quota is refused."""
        assert await client_tier.set("d:a", b"x" * 80, 60) is True

        assert await client_tier.set("d:b", b"x" * 30, 60) is False

    @pytest.mark.asyncio
    async def test_expired_rows_free_quota(self, client_tier, clock):
        """Test expired rows are purged before the quota check."""
        for i in range(3):
            await client_tier.set(f"d:{i}", b"x", 10)

        clock.advance(11)

        assert await client_tier.set("d:fresh", b"x", 60) is True

    @pytest.mark.asyncio
    async def test_storage_usage(self, client_tier):
        """Test usage reports entries, bytes and percentage."""
        await client_tier.set("d:a", b"x" * 25, 60)

        usage = await client_tier.storage_usage()

        assert usage["entries"] == 1
        assert usage["bytes"] == 25
        assert usage["percentage"] == 25.0


@pytest.mark.unit
class TestClientTierStartup:
    """Test suite for opening the store."""

    @pytest.mark.asyncio
    async def test_unopenable_path_raises(self, tmp_path, clock):
        """Test an unusable store path is a startup error."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        tier = ClientPersistedTier(path=str(blocker / "store.sqlite3"), clock=clock)

        with pytest.raises(CacheConnectionError):
            await tier.connect()

    @pytest.mark.asyncio
    async def test_file_store_persists(self, tmp_path, clock):
        """Test entries survive reopening a file-backed store."""
        path = str(tmp_path / "client" / "store.sqlite3")

        first = ClientPersistedTier(path=path, clock=clock)
        await first.connect()
        await first.set("qa-pairs:k", b"kept", 60)
        await first.close()

        second = ClientPersistedTier(path=path, clock=clock)
        await second.connect()
        assert await second.get("qa-pairs:k") == b"kept"
        await second.close()

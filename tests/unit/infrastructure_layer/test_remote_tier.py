"""
Unit Tests for the Remote Tier and Redis Client

Tests deadline enforcement, error mapping, startup policy and literal
prefix scans against an in-memory Redis stand-in.
"""

import warnings

import pytest

from tiercache.core.exceptions import CacheConnectionError, TierOperationError, TierTimeoutError
from tiercache.infrastructure.cache.redis_client import RedisClient, escape_glob
from tiercache.infrastructure.cache.remote_tier import RemoteTier


@pytest.mark.unit
class TestEscapeGlob:
    """Test suite for glob escaping."""

    def test_plain_prefix_unchanged(self):
        """Test ordinary prefixes pass through."""
        assert escape_glob("generated-text:claude:v1:") == "generated-text:claude:v1:"

    def test_metacharacters_escaped(self):
        """Test glob metacharacters match literally."""
        assert escape_glob("d:a*b?[c]") == r"d:a\*b\?\[c\]"


@pytest.mark.unit
class TestRemoteTierOperations:
    """Test suite for remote tier reads and writes."""

    @pytest.mark.asyncio
    async def test_set_uses_millisecond_expiry(self, remote_tier, fake_redis):
        """Test native expiry is floored to whole milliseconds."""
        await remote_tier.connect()

        assert await remote_tier.set("search-results:k", b"blob", 1.9999) is True

        assert fake_redis.px["search-results:k"] == 1999
        assert await remote_tier.get("search-results:k") == b"blob"

    @pytest.mark.asyncio
    async def test_sub_millisecond_ttl_rejected(self, remote_tier, fake_redis):
        """Test a TTL that floors to zero is not written."""
        await remote_tier.connect()

        assert await remote_tier.set("search-results:k", b"blob", 0.0004) is False
        assert "search-results:k" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_delete_reports_presence(self, remote_tier):
        """Test delete is True only when the key existed."""
        await remote_tier.connect()
        await remote_tier.set("qa-pairs:k", b"1", 60)

        assert await remote_tier.delete("qa-pairs:k") is True
        assert await remote_tier.delete("qa-pairs:k") is False

    @pytest.mark.asyncio
    async def test_scan_prefix_literal(self, remote_tier):
        """Test scans return decoded keys under a literal prefix."""
        await remote_tier.connect()
        await remote_tier.set("generated-text:claude:v1:a", b"1", 60)
        await remote_tier.set("generated-text:claude:v2:a", b"2", 60)
        await remote_tier.set("generated-text:x*y", b"3", 60)

        assert await remote_tier.scan_prefix("generated-text:claude:v1:") == ["generated-text:claude:v1:a"]
        assert await remote_tier.scan_prefix("generated-text:x*") == ["generated-text:x*y"]

    @pytest.mark.asyncio
    async def test_delete_prefix_unlinks_batches(self, fake_redis, redis_settings):
        """Test prefix removal walks SCAN pages and unlinks each as it arrives."""
        tier = RemoteTier(RedisClient(redis_settings.model_copy(update={"REDIS_SCAN_COUNT": 2}), client=fake_redis))
        await tier.connect()
        for suffix in "abcde":
            await tier.set(f"generated-text:claude:v1:{suffix}", b"1", 60)
        await tier.set("generated-text:claude:v2:a", b"2", 60)

        batches = [batch async for batch in tier.delete_prefix("generated-text:claude:v1:")]

        assert [len(batch) for batch in batches] == [2, 2, 1]
        assert list(fake_redis.data) == ["generated-text:claude:v2:a"]
        assert fake_redis.calls.count("unlink") == 3

    @pytest.mark.asyncio
    async def test_delete_prefix_keeps_earlier_batches_on_failure(self, fake_redis, redis_settings):
        """Test a failing SCAN step raises after earlier batches were removed."""
        tier = RemoteTier(RedisClient(redis_settings.model_copy(update={"REDIS_SCAN_COUNT": 2}), client=fake_redis))
        await tier.connect()
        for suffix in "abcd":
            await tier.set(f"qa-pairs:{suffix}", b"1", 60)
        fake_redis.fail_after_scans = 1

        removed = []
        with pytest.raises(TierOperationError):
            async for batch in tier.delete_prefix("qa-pairs:"):
                removed.extend(batch)

        assert removed == ["qa-pairs:a", "qa-pairs:b"]
        assert sorted(fake_redis.data) == ["qa-pairs:c", "qa-pairs:d"]

    @pytest.mark.asyncio
    async def test_slow_scan_steps_each_get_a_deadline(self, fake_redis, redis_settings):
        """Test a walk longer than one operation timeout still completes."""
        tier = RemoteTier(RedisClient(redis_settings.model_copy(update={"REDIS_SCAN_COUNT": 2}), client=fake_redis))
        await tier.connect()
        for i in range(8):
            await tier.set(f"qa-pairs:{i}", b"1", 60)
        fake_redis.scan_delay = 0.02

        assert len(await tier.scan_prefix("qa-pairs:")) == 8

    @pytest.mark.asyncio
    async def test_failure_raises_operation_error(self, remote_tier, fake_redis):
        """Test redis errors surface as TierOperationError."""
        await remote_tier.connect()
        fake_redis.fail = True

        with pytest.raises(TierOperationError) as exc_info:
            await remote_tier.get("search-results:k")

        assert exc_info.value.details["operation"] == "get"
        assert exc_info.value.details["tier"] == "remote"

    @pytest.mark.asyncio
    async def test_hang_raises_timeout(self, remote_tier, fake_redis):
        """Test a hung server is cut off at the operation timeout."""
        await remote_tier.connect()
        fake_redis.hang = True

        with pytest.raises(TierTimeoutError):
            await remote_tier.get("search-results:k")

    @pytest.mark.asyncio
    async def test_caller_deadline_tightens_timeout(self, remote_tier, fake_redis):
        """Test a tighter caller deadline wins over the configured timeout."""
        await remote_tier.connect()
        fake_redis.hang = True

        with pytest.raises(TierTimeoutError) as exc_info:
            await remote_tier.get("search-results:k", timeout=0.01)

        assert exc_info.value.details["timeout"] == 0.01

    @pytest.mark.asyncio
    async def test_probe_never_raises(self, remote_tier, fake_redis):
        """Test a failing probe reports False."""
        await remote_tier.connect()
        assert await remote_tier.probe() is True

        fake_redis.fail = True
        assert await remote_tier.probe() is False

        fake_redis.fail = False
        fake_redis.hang = True
        assert await remote_tier.probe() is False


@pytest.mark.unit
class TestRemoteTierStartup:
    """Test suite for startup policy."""

    @pytest.mark.asyncio
    async def test_reachable_at_start(self, remote_tier):
        """Test a healthy server is recorded as reachable."""
        await remote_tier.connect()

        assert remote_tier.reachable_at_start is True
        assert remote_tier.describe() == {"tier": "remote", "connected": True}

    @pytest.mark.asyncio
    async def test_connect_retry_policy_not_deprecated(self, remote_tier):
        """Test building the connect retry policy emits no deprecation warning."""
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            await remote_tier.connect()

        deprecated = [w for w in caught if issubclass(w.category, DeprecationWarning) and "initial" in str(w.message)]
        assert deprecated == []
        assert remote_tier.reachable_at_start is True

    @pytest.mark.asyncio
    async def test_unreachable_tolerated(self, remote_tier, fake_redis):
        """Test an unreachable server degrades instead of failing startup."""
        fake_redis.fail = True

        await remote_tier.connect()

        assert remote_tier.reachable_at_start is False

        # Executor exists so the tier can recover once the server is back
        fake_redis.fail = False
        assert await remote_tier.set("search-results:k", b"1", 60) is True

    @pytest.mark.asyncio
    async def test_auth_failure_is_fatal(self, remote_tier, fake_redis):
        """Test rejected credentials raise CacheConnectionError."""
        fake_redis.auth_error = True

        with pytest.raises(CacheConnectionError) as exc_info:
            await remote_tier.connect()

        assert "suggestion" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_operations_before_connect_fail(self, fake_redis, redis_settings):
        """Test calls before connect are transient failures, not crashes."""
        tier = RemoteTier(RedisClient(redis_settings, client=fake_redis))

        with pytest.raises(TierOperationError):
            await tier.get("search-results:k")

    @pytest.mark.asyncio
    async def test_health_check_reports_ping(self, remote_tier):
        """Test health_check includes status and ping latency."""
        await remote_tier.connect()

        health = await remote_tier.health_check()

        assert health["status"] == "healthy"
        assert health["ping_latency_ms"] is not None

    @pytest.mark.asyncio
    async def test_close_closes_client(self, remote_tier, fake_redis):
        """Test close releases the redis client."""
        await remote_tier.connect()
        await remote_tier.close()

        assert fake_redis.closed is True

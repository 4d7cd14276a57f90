"""
Unit Tests for the Write-Back Queue

Tests bounded submission, TTL computed at execution time, failure handling
and draining on close.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tiercache.core.config.constants import TierName
from tiercache.core.exceptions import TierOperationError
from tiercache.infrastructure.cache.write_back import WriteBackJob, WriteBackQueue


def make_tier(name=TierName.MEMORY, result=True):
    tier = MagicMock()
    tier.name = name
    tier.set = AsyncMock(return_value=result)
    return tier


@pytest.mark.unit
class TestWriteBackJobs:
    """Test suite for executing single jobs."""

    @pytest.mark.asyncio
    async def test_ttl_is_remaining_lifetime(self, clock, metrics):
        """Test the TTL handed to the tier shrinks with queueing delay."""
        tier = make_tier()
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        job = WriteBackJob(tier, "d:k", b"blob", expires_at=clock() + 60, domain="d")

        clock.advance(15)
        assert await queue.run_job(job) is True

        tier.set.assert_awaited_once_with("d:k", b"blob", 45)
        assert metrics.snapshot()["write_back"]["completed"] == 1

    @pytest.mark.asyncio
    async def test_expired_job_skipped(self, clock, metrics):
        """Test a job whose entry already expired never reaches the tier."""
        tier = make_tier()
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        job = WriteBackJob(tier, "d:k", b"blob", expires_at=clock() + 5, domain="d")

        clock.advance(5)

        assert await queue.run_job(job) is False
        tier.set.assert_not_awaited()
        assert metrics.snapshot()["write_back"]["expired"] == 1

    @pytest.mark.asyncio
    async def test_tier_failure_contained(self, clock, metrics):
        """Test a failing tier is recorded and reported, not raised."""
        tier = make_tier(TierName.REMOTE)
        tier.set.side_effect = TierOperationError("connection reset")
        on_error = MagicMock()
        queue = WriteBackQueue(metrics=metrics, clock=clock, on_tier_error=on_error)
        job = WriteBackJob(tier, "d:k", b"blob", expires_at=clock() + 60, domain="d")

        assert await queue.run_job(job) is False

        on_error.assert_called_once()
        assert on_error.call_args.args[0] is tier
        snapshot = metrics.snapshot()
        assert snapshot["write_back"]["failed"] == 1
        assert snapshot["tiers"]["remote"]["errors"] == 1

    @pytest.mark.asyncio
    async def test_superseded_job_skipped(self, clock, metrics):
        """Test a job older than its key's last change never reaches the tier."""
        tier = make_tier()
        queue = WriteBackQueue(metrics=metrics, clock=clock, is_superseded=lambda job: job.generation < 3)

        stale = WriteBackJob(tier, "d:k", b"old", expires_at=clock() + 60, domain="d", generation=2)
        fresh = WriteBackJob(tier, "d:k", b"new", expires_at=clock() + 60, domain="d", generation=3)

        assert await queue.run_job(stale) is False
        assert await queue.run_job(fresh) is True
        tier.set.assert_awaited_once_with("d:k", b"new", 60)
        assert metrics.snapshot()["write_back"]["superseded"] == 1

    @pytest.mark.asyncio
    async def test_rejected_write_recorded(self, clock, metrics):
        """Test a tier refusing the write is counted as rejected."""
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        job = WriteBackJob(make_tier(result=False), "d:k", b"blob", expires_at=clock() + 60, domain="d")

        assert await queue.run_job(job) is False
        assert metrics.snapshot()["write_back"]["rejected"] == 1


@pytest.mark.unit
class TestWriteBackQueue:
    """Test suite for queueing and worker lifecycle."""

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, clock, metrics):
        """Test submissions beyond capacity are dropped, never blocking."""
        queue = WriteBackQueue(maxsize=1, metrics=metrics, clock=clock)
        job = WriteBackJob(make_tier(), "d:k", b"blob", expires_at=clock() + 60, domain="d")

        assert queue.submit(job) is True
        assert queue.submit(job) is False

        assert queue.pending == 1
        assert metrics.snapshot()["write_back"]["dropped"] == 1
        await queue.close(drain_timeout=0)

    @pytest.mark.asyncio
    async def test_workers_process_jobs(self, clock, metrics):
        """Test started workers run queued jobs."""
        tier = make_tier()
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        await queue.start()
        assert queue.is_running

        queue.submit(WriteBackJob(tier, "d:k", b"blob", expires_at=clock() + 60, domain="d"))
        await queue.join()

        tier.set.assert_awaited_once()
        await queue.close()
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_close_drains_pending(self, clock, metrics):
        """Test close lets queued jobs finish within the drain timeout."""
        tier = make_tier()
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        await queue.start()

        for i in range(5):
            queue.submit(WriteBackJob(tier, f"d:{i}", b"blob", expires_at=clock() + 60, domain="d"))
        await queue.close(drain_timeout=1.0)

        assert tier.set.await_count == 5
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_submit_after_close_dropped(self, clock, metrics):
        """Test a closed queue refuses new work."""
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        await queue.start()
        await queue.close()

        job = WriteBackJob(make_tier(), "d:k", b"blob", expires_at=clock() + 60, domain="d")

        assert queue.submit(job) is False

    @pytest.mark.asyncio
    async def test_abandoned_jobs_counted(self, clock, metrics):
        """Test jobs still queued when workers never ran are counted as dropped."""
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        job = WriteBackJob(make_tier(), "d:k", b"blob", expires_at=clock() + 60, domain="d")
        queue.submit(job)
        queue.submit(job)

        await queue.close(drain_timeout=0)

        assert queue.pending == 0
        assert metrics.snapshot()["write_back"]["dropped"] == 2

    @pytest.mark.asyncio
    async def test_outstanding_tracks_running_jobs(self, clock, metrics):
        """Test outstanding covers queued and running jobs until they finish."""
        queue = WriteBackQueue(metrics=metrics, clock=clock)
        job = WriteBackJob(make_tier(), "d:k", b"blob", expires_at=clock() + 60, domain="d")

        queue.submit(job)
        queue.submit(job)
        assert queue.outstanding == 2

        await queue.start()
        await queue.join()
        assert queue.outstanding == 0
        await queue.close()

"""
Write-Back Queue - bounded background tier population

STAGE-WB: Write-back

Copies an already-encoded entry into tiers the caller will not wait for:
- faster tiers after a hit in a slower one
- slower tiers after a set in async write mode

The queue is bounded. When it is full the job is dropped and counted;
write-back is an optimization, never part of correctness.

Each job carries the entry's absolute ``expires_at``. The TTL handed to the
tier is computed when the job runs, so queueing delay can only shorten an
entry's life.

Each job also carries the write generation observed when it was scheduled.
A job superseded by a later set, delete or invalidation of its key is
skipped, so a queued back-fill can never resurrect an older value.

Author: System Architect
Date: 2025-12-14
"""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass

from tiercache.core.config.constants import Stage
from tiercache.core.exceptions import TierOperationError
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger, log_stage
from tiercache.infrastructure.cache.entry import Clock, system_clock
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)

TierErrorCallback = Callable[[CacheTier, Exception], None]
SupersededCheck = Callable[["WriteBackJob"], bool]


@dataclass(frozen=True, slots=True)
class WriteBackJob:
    tier: CacheTier
    key: str
    blob: bytes
    expires_at: float
    domain: str
    reason: str = "back_fill"  # back_fill | async_set
    generation: int = 0


class WriteBackQueue:
    """
    Fire-and-forget tier writes served by a small pool of worker tasks.

    Usage:
        queue = WriteBackQueue(maxsize=1000, workers=2, metrics=metrics)
        await queue.start()
        queue.submit(WriteBackJob(memory_tier, key, blob, expires_at, domain))
        await queue.close(drain_timeout=5.0)
    """

    def __init__(
        self,
        maxsize: int = 1000,
        workers: int = 2,
        metrics: MetricsCollector | None = None,
        clock: Clock = system_clock,
        on_tier_error: TierErrorCallback | None = None,
        is_superseded: SupersededCheck | None = None,
    ):
        self._queue: asyncio.Queue[WriteBackJob] = asyncio.Queue(maxsize=maxsize)
        self._worker_count = max(workers, 1)
        self._metrics = metrics
        self._clock = clock
        self._on_tier_error = on_tier_error
        self._is_superseded = is_superseded
        self._outstanding = 0
        self._workers: list[asyncio.Task] = []
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def outstanding(self) -> int:
        """Jobs accepted but not yet finished (queued or running)."""
        return self._outstanding

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def submit(self, job: WriteBackJob) -> bool:
        """
        Enqueue without waiting.

        Returns:
            False if the queue is full or closed and the job was dropped
        """
        if self._closed:
            self._record("dropped")
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._record("dropped")
            logger.debug(
                "Write-back dropped (queue full)",
                stage=Stage.WRITE_BACK.value,
                tier=job.tier.name.value,
                domain=job.domain,
            )
            return False
        self._outstanding += 1
        self._record("enqueued")
        return True

    async def run_job(self, job: WriteBackJob) -> bool:
        """Execute one job inline. Never raises for tier failures."""
        tier_name = job.tier.name.value
        remaining = job.expires_at - self._clock()
        if remaining <= 0:
            self._record("expired")
            return False

        if self._is_superseded is not None and self._is_superseded(job):
            self._record("superseded")
            logger.debug(
                "Write-back superseded by a newer write",
                stage=Stage.WRITE_BACK.value,
                tier=tier_name,
                key=job.key,
                reason=job.reason,
            )
            return False

        try:
            stored = await job.tier.set(job.key, job.blob, remaining)
        except TierOperationError as e:
            self._record("failed")
            if self._metrics is not None:
                self._metrics.record_tier_error(tier_name, "write_back")
                self._metrics.record_write(tier_name, "failed")
            if self._on_tier_error is not None:
                self._on_tier_error(job.tier, e)
            log_stage(
                logger,
                Stage.WRITE_BACK,
                "Write-back failed",
                level="warning",
                tier=tier_name,
                domain=job.domain,
                key=job.key,
                outcome="failed",
                reason=job.reason,
                error=str(e),
            )
            return False

        if self._metrics is not None:
            self._metrics.record_write(tier_name, "ok" if stored else "rejected")
        self._record("completed" if stored else "rejected")
        return stored

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
            except Exception as e:
                logger.error(
                    "Write-back worker error",
                    stage=Stage.WRITE_BACK.value,
                    worker=index,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._outstanding -= 1
                self._queue.task_done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._closed = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"write-back-{i}") for i in range(self._worker_count)
        ]
        log_stage(logger, Stage.WRITE_BACK, "Write-back workers started", workers=self._worker_count)

    async def join(self) -> None:
        """Wait until every queued job has run."""
        await self._queue.join()

    async def close(self, drain_timeout: float = 5.0) -> None:
        """Stop accepting jobs, drain for up to ``drain_timeout``, then cancel workers."""
        self._closed = True
        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Write-back drain timed out",
                    stage=Stage.WRITE_BACK.value,
                    pending=self._queue.qsize(),
                )
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []

        abandoned = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            self._outstanding -= 1
            abandoned += 1
        if abandoned:
            for _ in range(abandoned):
                self._record("dropped")
        log_stage(logger, Stage.WRITE_BACK, "Write-back workers stopped", abandoned=abandoned)

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_write_back(outcome)

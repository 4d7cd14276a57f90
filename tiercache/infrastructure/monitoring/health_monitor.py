#!/usr/bin/env python3
"""
Remote Tier Health Monitor

Keeps the remote tier's health flag current without putting network I/O on
the request path. A background task probes the tier on an interval; the
coordinator only reads the flag.

Hysteresis:
- healthy → unhealthy after ``failure_threshold`` consecutive failed probes
- unhealthy → healthy after ``success_threshold`` consecutive good probes

Backoff:
- from the failure that marks the tier unhealthy onward, each failed probe
  multiplies the interval by ``backoff_factor`` up to ``max_interval``
- any successful probe resets the interval to ``base_interval``

The TierHealth record is immutable and swapped under a lock, so readers never
see a half-updated record. Only the monitor writes it.

Author: Senior Solution Architect
Date: 2025-12-05
"""

import asyncio
import contextlib
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable

from tiercache.core.config.constants import HealthStatus, Stage
from tiercache.core.interfaces.tier import CacheTier
from tiercache.core.logging.logger import get_logger, log_stage
from tiercache.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


@dataclass(frozen=True)
class TierHealth:
    """Point-in-time health of one tier."""

    healthy: bool = True
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_probe_at: float | None = None
    last_transition_at: float | None = None
    probe_interval: float = 5.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": HealthStatus.HEALTHY.value if self.healthy else HealthStatus.UNHEALTHY.value,
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_probe_at": self.last_probe_at,
            "last_transition_at": self.last_transition_at,
            "probe_interval": self.probe_interval,
        }


class HealthMonitor:
    """
    Background prober for one tier.

    STAGE-HM: Health monitoring

    Usage:
        monitor = HealthMonitor(remote_tier, metrics=metrics)
        await monitor.start()
        if monitor.is_healthy:
            ...
        await monitor.stop()
    """

    def __init__(
        self,
        tier: CacheTier,
        metrics: MetricsCollector | None = None,
        base_interval: float = 5.0,
        backoff_factor: float = 2.0,
        max_interval: float = 60.0,
        failure_threshold: int = 3,
        success_threshold: int = 2,
        probe_timeout: float | None = None,
        initially_healthy: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("health thresholds must be >= 1")

        self._tier = tier
        self._metrics = metrics
        self._base_interval = base_interval
        self._backoff_factor = backoff_factor
        self._max_interval = max_interval
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._probe_timeout = probe_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._health = TierHealth(
            healthy=initially_healthy,
            probe_interval=base_interval,
            last_transition_at=clock(),
        )
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._stopping = False

        if self._metrics is not None:
            self._metrics.set_tier_health(tier.name.value, initially_healthy)

    # =========================================================================
    # Read side (request path)
    # =========================================================================

    @property
    def health(self) -> TierHealth:
        with self._lock:
            return self._health

    @property
    def is_healthy(self) -> bool:
        return self.health.healthy

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request_probe(self) -> None:
        """
        Wake the loop early after a request-path failure.

        Ignored while unhealthy so backoff still applies.
        """
        if self.is_healthy:
            self._wake.set()

    # =========================================================================
    # Write side (monitor loop only)
    # =========================================================================

    def record_probe(self, success: bool) -> TierHealth:
        """
        Fold one probe result into the health record.

        Returns:
            The new TierHealth
        """
        now = self._clock()
        transitioned = False

        with self._lock:
            current = self._health
            if success:
                successes = current.consecutive_successes + 1
                healthy = current.healthy
                if not healthy and successes >= self._success_threshold:
                    healthy = True
                    transitioned = True
                updated = replace(
                    current,
                    healthy=healthy,
                    consecutive_failures=0,
                    consecutive_successes=successes,
                    last_probe_at=now,
                    probe_interval=self._base_interval,
                )
            else:
                failures = current.consecutive_failures + 1
                healthy = current.healthy
                interval = current.probe_interval
                if healthy and failures >= self._failure_threshold:
                    healthy = False
                    transitioned = True
                if not healthy:
                    interval = min(interval * self._backoff_factor, self._max_interval)
                updated = replace(
                    current,
                    healthy=healthy,
                    consecutive_failures=failures,
                    consecutive_successes=0,
                    last_probe_at=now,
                    probe_interval=interval,
                )
            if transitioned:
                updated = replace(updated, last_transition_at=now)
            self._health = updated

        if transitioned:
            self._on_transition(updated)
        return updated

    def _on_transition(self, health: TierHealth) -> None:
        log_stage(
            logger,
            Stage.HEALTH,
            "Tier health transition",
            level="warning" if not health.healthy else "info",
            tier=self._tier.name.value,
            outcome="healthy" if health.healthy else "unhealthy",
            consecutive_failures=health.consecutive_failures,
            consecutive_successes=health.consecutive_successes,
            probe_interval=health.probe_interval,
        )
        if self._metrics is not None:
            self._metrics.record_health_transition(
                self._tier.name.value, health.healthy, health.last_transition_at
            )

    async def probe_once(self) -> TierHealth:
        """Run one probe and record it. A probe that raises or times out is a failure."""
        try:
            if self._probe_timeout is not None:
                success = await asyncio.wait_for(self._tier.probe(), timeout=self._probe_timeout)
            else:
                success = await self._tier.probe()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("Probe raised", stage=Stage.HEALTH.value, tier=self._tier.name.value, error=str(e))
            success = False
        return self.record_probe(bool(success))

    def reset(self, healthy: bool) -> TierHealth:
        """
        Re-seed the record before the loop starts (e.g. tier unreachable at startup).

        Raises:
            RuntimeError: If the probe loop is already running
        """
        if self.is_running:
            raise RuntimeError("cannot reset health while the monitor is running")
        with self._lock:
            self._health = TierHealth(
                healthy=healthy,
                probe_interval=self._base_interval,
                last_transition_at=self._clock(),
            )
        if self._metrics is not None:
            self._metrics.set_tier_health(self._tier.name.value, healthy)
        return self.health

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _run(self) -> None:
        log_stage(logger, Stage.HEALTH, "Health monitor started", tier=self._tier.name.value)
        while not self._stopping:
            await self.probe_once()
            interval = self.health.probe_interval
            self._wake.clear()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=interval)

    async def start(self) -> None:
        if self.is_running:
            return
        self._stopping = False
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"health-monitor-{self._tier.name.value}")

    async def stop(self) -> None:
        """Stop probing. The last known health value stays readable."""
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log_stage(logger, Stage.HEALTH, "Health monitor stopped", tier=self._tier.name.value)

"""Metrics owner, snapshots, and the channel between them.

The component doing the work (watcher or commit loop) owns a
:class:`MetricsOwner` and is the only writer of its counters.  After each
iteration it publishes a frozen :class:`PerformanceMetrics` snapshot on a
:class:`SnapshotChannel`.  The telemetry task only ever reads snapshots it
received from the channel; it holds no reference to live counters.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

_FROZEN = ConfigDict(frozen=True)

EMA_ALPHA = 0.2


class PerformanceMetrics(BaseModel):
    model_config = _FROZEN

    component: str
    total_triggers: int = 0
    successful: int = 0
    failed: int = 0
    average_response_time_ms: float = 0.0
    uptime_seconds: float = 0.0
    last_health_check: datetime | None = None
    captured_at: datetime = Field(default_factory=datetime.now)


def compute_is_healthy(
    disk_free_pct: float,
    memory_used_pct: float,
    cpu_pct: float,
    min_disk_free_pct: float = 10.0,
    max_memory_used_pct: float = 90.0,
    max_cpu_pct: float = 90.0,
) -> bool:
    return (
        disk_free_pct > min_disk_free_pct
        and memory_used_pct < max_memory_used_pct
        and cpu_pct < max_cpu_pct
    )


class HealthSnapshot(BaseModel):
    model_config = _FROZEN

    disk_free_pct: float
    memory_used_pct: float
    cpu_pct: float
    min_disk_free_pct: float = 10.0
    max_memory_used_pct: float = 90.0
    max_cpu_pct: float = 90.0
    performance: PerformanceMetrics | None = None
    captured_at: datetime = Field(default_factory=datetime.now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_healthy(self) -> bool:
        return compute_is_healthy(
            self.disk_free_pct,
            self.memory_used_pct,
            self.cpu_pct,
            self.min_disk_free_pct,
            self.max_memory_used_pct,
            self.max_cpu_pct,
        )


class SnapshotChannel:
    """Latest-value channel: a new snapshot replaces an unread one."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PerformanceMetrics] = asyncio.Queue(maxsize=1)

    def publish(self, snapshot: PerformanceMetrics) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)

    def receive_latest(self) -> PerformanceMetrics | None:
        """Return the newest unread snapshot without waiting, or None."""
        latest: PerformanceMetrics | None = None
        while not self._queue.empty():
            latest = self._queue.get_nowait()
        return latest

    async def receive(self) -> PerformanceMetrics:
        return await self._queue.get()


class MetricsOwner:
    """Counters for one component.  Not shared: publish snapshots instead."""

    def __init__(
        self,
        component: str,
        channel: SnapshotChannel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.component = component
        self._channel = channel
        self._clock = clock
        self._started = clock()
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._avg_ms = 0.0
        self._last_health_check: datetime | None = None

    def record_success(self, response_ms: float | None = None) -> None:
        self._total += 1
        self._successful += 1
        self._observe(response_ms)

    def record_failure(self, response_ms: float | None = None) -> None:
        self._total += 1
        self._failed += 1
        self._observe(response_ms)

    def heartbeat(self) -> None:
        self._last_health_check = datetime.now()

    def snapshot(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            component=self.component,
            total_triggers=self._total,
            successful=self._successful,
            failed=self._failed,
            average_response_time_ms=round(self._avg_ms, 3),
            uptime_seconds=round(self._clock() - self._started, 3),
            last_health_check=self._last_health_check,
        )

    def publish(self) -> PerformanceMetrics:
        snap = self.snapshot()
        if self._channel is not None:
            self._channel.publish(snap)
        return snap

    def _observe(self, response_ms: float | None) -> None:
        if response_ms is None:
            return
        # Exponential moving average (α = 0.2)
        if self._avg_ms == 0.0:
            self._avg_ms = response_ms
        else:
            self._avg_ms = (1 - EMA_ALPHA) * self._avg_ms + EMA_ALPHA * response_ms

"""TelemetryRecorder — periodic performance and health records.

Runs as two asyncio tasks beside the main loop of a daemon:

  performance  every ``performance_interval_seconds`` (default 60)
  health       every ``health_interval_seconds`` (default 30)

Each tick appends one JSON line to a date-partitioned file::

    telemetry_dir/performance-2024-05-02.jsonl
    telemetry_dir/health-2024-05-02.jsonl

Files older than ``retention_days`` are removed once per day.  Any failure
inside a tick is logged and dropped; telemetry never reaches back into the
dispatch path.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import psutil
from pydantic import BaseModel

from trigger_relay.config import TelemetryConfig
from trigger_relay.logging import get_logger
from trigger_relay.telemetry.metrics import HealthSnapshot, PerformanceMetrics, SnapshotChannel

log = get_logger(__name__)

_PARTITION_RE = re.compile(r"^(performance|health)-(\d{4}-\d{2}-\d{2})\.jsonl$")


class SystemSampler:
    """Reads disk, memory and CPU gauges with psutil."""

    def __init__(self, disk_path: str = "/") -> None:
        self._disk_path = disk_path
        # The first cpu_percent(None) call only primes the counter.
        psutil.cpu_percent(interval=None)

    def sample(self) -> tuple[float, float, float]:
        """Return ``(disk_free_pct, memory_used_pct, cpu_pct)``."""
        disk = psutil.disk_usage(self._disk_path)
        return (
            round(100.0 - disk.percent, 2),
            psutil.virtual_memory().percent,
            psutil.cpu_percent(interval=None),
        )


class TelemetryRecorder:
    def __init__(
        self,
        channel: SnapshotChannel,
        config: TelemetryConfig,
        log_dir: Path,
        sampler: SystemSampler | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._channel = channel
        self._config = config
        self._dir = log_dir
        self._sampler = sampler
        self._clock = clock
        self._latest: PerformanceMetrics | None = None
        self._last_prune: date | None = None
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(
                self._loop(self._config.performance_interval_seconds, self.record_performance),
                name="telemetry_performance",
            ),
            asyncio.create_task(
                self._loop(self._config.health_interval_seconds, self.record_health),
                name="telemetry_health",
            ),
        ]
        log.debug("telemetry_started", directory=str(self._dir))

    async def stop(self) -> None:
        self._stop_event.set()
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        log.debug("telemetry_stopped")

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # ---------------------------------------------------------------------------
    # Ticks
    # ---------------------------------------------------------------------------

    def record_performance(self) -> PerformanceMetrics | None:
        """Append the newest received snapshot.  None until one arrives."""
        latest = self._refresh()
        if latest is None:
            return None
        self._append("performance", latest)
        return latest

    def record_health(self) -> HealthSnapshot:
        if self._sampler is None:
            self._sampler = SystemSampler(self._config.disk_path)
        disk_free, memory_used, cpu = self._sampler.sample()
        snapshot = HealthSnapshot(
            disk_free_pct=disk_free,
            memory_used_pct=memory_used,
            cpu_pct=cpu,
            min_disk_free_pct=self._config.min_disk_free_pct,
            max_memory_used_pct=self._config.max_memory_used_pct,
            max_cpu_pct=self._config.max_cpu_pct,
            performance=self._refresh(),
        )
        self._append("health", snapshot)
        if not snapshot.is_healthy:
            log.warning(
                "system_unhealthy",
                disk_free_pct=disk_free,
                memory_used_pct=memory_used,
                cpu_pct=cpu,
            )
        return snapshot

    def prune(self) -> list[Path]:
        """Delete partitions older than ``retention_days``."""
        cutoff = self._clock().date() - timedelta(days=self._config.retention_days)
        removed: list[Path] = []
        if not self._dir.is_dir():
            return removed
        for path in self._dir.iterdir():
            match = _PARTITION_RE.match(path.name)
            if match is None:
                continue
            if date.fromisoformat(match.group(2)) < cutoff:
                path.unlink(missing_ok=True)
                removed.append(path)
        if removed:
            log.info("telemetry_pruned", files=len(removed))
        return removed

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _refresh(self) -> PerformanceMetrics | None:
        received = self._channel.receive_latest()
        if received is not None:
            self._latest = received
        return self._latest

    def _append(self, kind: str, record: BaseModel) -> Path:
        today = self._clock().date()
        path = self._dir / f"{kind}-{today.isoformat()}.jsonl"
        self._dir.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
        if self._last_prune != today:
            self._last_prune = today
            self.prune()
        return path

    async def _loop(self, interval: float, tick: Callable[[], Any]) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                tick()
            except Exception as exc:
                log.warning("telemetry_tick_failed", tick=tick.__name__, error=str(exc))

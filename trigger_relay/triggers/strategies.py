"""Wait strategies — how the DirectoryWatcher paces its iterations.

PollingStrategy     — fixed-interval sleep (portable baseline)
FileEventStrategy   — wakes early on OS change notifications (watchfiles),
                      still wakes at least once per interval as a heartbeat

Contract
--------
- ``start()`` / ``stop()`` — acquire / release any background resources
- ``wait(stop_event)``     — block until the next iteration is due;
                             returns True when a stop was requested
"""

from __future__ import annotations

import asyncio
import fnmatch
from abc import ABC, abstractmethod
from pathlib import Path

from trigger_relay.config import WatcherConfig
from trigger_relay.logging import get_logger

log = get_logger(__name__)


class WaitStrategy(ABC):
    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval

    async def start(self) -> None:
        """Acquire background resources.  Default: nothing."""

    async def stop(self) -> None:
        """Release background resources.  Default: nothing."""

    @abstractmethod
    async def wait(self, stop_event: asyncio.Event) -> bool:
        """Block until the next iteration.  True means stop was requested."""


class PollingStrategy(WaitStrategy):
    async def wait(self, stop_event: asyncio.Event) -> bool:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False


class FileEventStrategy(WaitStrategy):
    """Wake on filesystem events for artifacts matching *pattern*.

    Requires ``watchfiles``.  If the event stream dies, the error is logged
    and the strategy keeps waking on the interval alone.
    """

    def __init__(self, directory: Path, interval: float, pattern: str = "trigger*.json") -> None:
        super().__init__(interval)
        self._directory = directory
        self._pattern = pattern
        self._changed = asyncio.Event()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.error: str | None = None

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._consume(), name="trigger_dir_events")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def wait(self, stop_event: asyncio.Event) -> bool:
        if self._changed.is_set():
            self._changed.clear()
            return stop_event.is_set()

        waiters = {
            asyncio.create_task(stop_event.wait()),
            asyncio.create_task(self._changed.wait()),
        }
        _, pending = await asyncio.wait(
            waiters, timeout=self.interval, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._changed.clear()
        return stop_event.is_set()

    async def _consume(self) -> None:
        from watchfiles import awatch

        try:
            async for changes in awatch(self._directory, stop_event=self._stop, recursive=False):
                if any(fnmatch.fnmatch(Path(p).name, self._pattern) for _, p in changes):
                    self._changed.set()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.error = str(exc)
            log.error("file_event_stream_failed", directory=str(self._directory), error=str(exc))


def build_strategy(config: WatcherConfig, directory: Path) -> WaitStrategy:
    if config.strategy == "events":
        return FileEventStrategy(directory, config.poll_interval_seconds, config.pattern)
    return PollingStrategy(config.poll_interval_seconds)

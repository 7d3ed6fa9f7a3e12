"""DirectoryWatcher — the consumer loop.

One iteration (``poll_once``)::

    retry deferred archive moves
        ↓
    list trigger*.json, sorted by name
        ↓  skip identities (name, mtime_ns) already seen
    claim → processing/          (vanished = claimed by another watcher)
        ↓
    parse + validate  ──fail──→ archive/error/   failed += 1
        ↓
    ActionDispatcher.dispatch    (bounded by handler_timeout_seconds)
        ↓
    success → archive/           handler failure → archive/error/
        ↓
    heartbeat + publish metrics snapshot

Artifacts are handled in filename order, which is creation order for
queue-mode names.  Every artifact found in a pass is processed; the loop
does not stop at the first one.

An exception while handling one artifact is logged and the loop moves on to
the next.  Only ``stop()`` ends the loop.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

from trigger_relay.config import WatcherConfig
from trigger_relay.exceptions import TriggerIOError, TriggerParseError, TriggerValidationError
from trigger_relay.logging import bind_trigger_context, clear_trigger_context, get_logger
from trigger_relay.telemetry.metrics import MetricsOwner
from trigger_relay.triggers.archive import ArchivalStore
from trigger_relay.triggers.dispatcher import ActionDispatcher
from trigger_relay.triggers.models import (
    ArchiveOutcome,
    ArchiveRecord,
    TriggerLifecycle,
)
from trigger_relay.triggers.schema import parse
from trigger_relay.triggers.strategies import PollingStrategy, WaitStrategy

log = get_logger(__name__)


@dataclass
class _DeferredArchive:
    claimed: Path
    record: ArchiveRecord
    attempts: int = 1


class DirectoryWatcher:
    """Polls the trigger directory and routes every artifact to a terminal state.

    Usage::

        watcher = DirectoryWatcher(store, dispatcher, settings.watcher, metrics)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(
        self,
        store: ArchivalStore,
        dispatcher: ActionDispatcher,
        config: WatcherConfig,
        metrics: MetricsOwner | None = None,
        strategy: WaitStrategy | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._config = config
        self._metrics = metrics or MetricsOwner("directory_watcher")
        self._strategy = strategy or PollingStrategy(config.poll_interval_seconds)
        self._seen: OrderedDict[tuple[str, int], None] = OrderedDict()
        self._deferred: list[_DeferredArchive] = []
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    def prepare(self) -> None:
        """Create directories and requeue crash leftovers.

        Raises:
            TriggerIOError: a directory cannot be created (fatal at startup).
        """
        self._store.prepare()
        if self._config.recover_on_start:
            self._store.recover()

    async def start(self) -> None:
        if self.is_running:
            return
        self.prepare()
        self._stop_event.clear()
        await self._strategy.start()
        self._task = asyncio.create_task(self.run(), name="directory_watcher")
        log.info(
            "watcher_started",
            directory=str(self._store.trigger_dir),
            pattern=self._config.pattern,
            interval=self._config.poll_interval_seconds,
            strategy=type(self._strategy).__name__,
        )

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            await self._task
        self._task = None
        await self._strategy.stop()
        log.info("watcher_stopped", pending_archives=len(self._deferred))

    def request_stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def metrics(self) -> MetricsOwner:
        return self._metrics

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    async def run(self) -> None:
        """Loop until a stop is requested.  Iteration errors never end it."""
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as exc:
                log.error("watcher_iteration_failed", error=str(exc))
            if await self._strategy.wait(self._stop_event):
                return

    # ---------------------------------------------------------------------------
    # One iteration
    # ---------------------------------------------------------------------------

    async def poll_once(self) -> list[ArchiveRecord]:
        """Process every new artifact once.  Returns the records produced."""
        records: list[ArchiveRecord] = []
        self._retry_deferred()
        for artifact in self._candidates():
            try:
                record = await self._process(artifact)
            except Exception as exc:
                log.error("trigger_processing_failed", trigger_id=artifact.stem, error=str(exc))
                continue
            if record is not None:
                records.append(record)
        self._metrics.heartbeat()
        self._metrics.publish()
        return records

    def _candidates(self) -> list[Path]:
        try:
            return sorted(
                p for p in self._store.trigger_dir.glob(self._config.pattern) if p.is_file()
            )
        except OSError as exc:
            log.error("trigger_dir_unreadable", directory=str(self._store.trigger_dir), error=str(exc))
            return []

    async def _process(self, artifact: Path) -> ArchiveRecord | None:
        try:
            identity = (artifact.name, artifact.stat().st_mtime_ns)
        except FileNotFoundError:
            return None
        if identity in self._seen:
            return None
        self._remember(identity)

        trigger_id = artifact.stem
        bind_trigger_context(trigger_id=trigger_id)
        try:
            self._transition(trigger_id, TriggerLifecycle.DETECTED)
            started = time.monotonic()

            try:
                claimed = self._store.claim(artifact)
            except TriggerIOError as exc:
                # Left in place; forget it so the next pass retries the claim.
                self._seen.pop(identity, None)
                log.error("trigger_claim_failed", trigger_id=trigger_id, error=exc.reason)
                return None
            if claimed is None:
                log.debug("trigger_claimed_elsewhere", trigger_id=trigger_id)
                return None

            try:
                message = parse(claimed.read_bytes(), artifact_id=trigger_id)
            except TriggerValidationError as exc:
                return self._reject(claimed, trigger_id, [e.as_dict() for e in exc.errors], started)
            except TriggerParseError as exc:
                return self._reject(claimed, trigger_id, [{"field": "$root", "reason": exc.message}], started)
            except OSError as exc:
                return self._reject(claimed, trigger_id, [{"field": "$file", "reason": str(exc)}], started)

            bind_trigger_context(commit_hash=message.short_hash)
            self._transition(trigger_id, TriggerLifecycle.VALIDATED)

            result = await self._dispatcher.dispatch(message)
            self._transition(trigger_id, TriggerLifecycle.DISPATCHED)
            elapsed_ms = (time.monotonic() - started) * 1000

            if result.success:
                self._metrics.record_success(elapsed_ms)
                outcome = ArchiveOutcome.ARCHIVED
            else:
                self._metrics.record_failure(elapsed_ms)
                outcome = ArchiveOutcome.ERROR_ARCHIVED

            record = ArchiveRecord(
                trigger_id=trigger_id,
                artifact_name=artifact.name,
                outcome=outcome,
                message=message,
                result=result,
            )
            self._finalize(claimed, record)
            return record
        finally:
            clear_trigger_context()

    def _reject(
        self,
        claimed: Path,
        trigger_id: str,
        errors: list[dict[str, str]],
        started: float,
    ) -> ArchiveRecord:
        self._transition(trigger_id, TriggerLifecycle.VALIDATION_FAILED)
        self._metrics.record_failure((time.monotonic() - started) * 1000)
        log.warning("trigger_validation_failed", trigger_id=trigger_id, errors=errors)
        record = ArchiveRecord(
            trigger_id=trigger_id,
            artifact_name=claimed.name,
            outcome=ArchiveOutcome.ERROR_ARCHIVED,
            errors=errors,
        )
        self._finalize(claimed, record)
        return record

    # ---------------------------------------------------------------------------
    # Archival
    # ---------------------------------------------------------------------------

    def _finalize(self, claimed: Path, record: ArchiveRecord) -> None:
        try:
            dest = self._store.finalize(claimed, record)
        except TriggerIOError as exc:
            self._deferred.append(_DeferredArchive(claimed, record))
            log.error(
                "trigger_archive_deferred",
                trigger_id=record.trigger_id,
                outcome=record.outcome.value,
                error=exc.reason,
            )
            return
        self._log_terminal(record, dest)

    def _retry_deferred(self) -> None:
        if not self._deferred:
            return
        remaining: list[_DeferredArchive] = []
        for item in self._deferred:
            try:
                dest = self._store.finalize(item.claimed, item.record)
            except TriggerIOError as exc:
                item.attempts += 1
                remaining.append(item)
                log.warning(
                    "trigger_archive_retry_failed",
                    trigger_id=item.record.trigger_id,
                    attempts=item.attempts,
                    error=exc.reason,
                )
                continue
            self._log_terminal(item.record, dest)
        self._deferred = remaining

    def _log_terminal(self, record: ArchiveRecord, dest: Path) -> None:
        if record.outcome == ArchiveOutcome.ARCHIVED:
            self._transition(record.trigger_id, TriggerLifecycle.ARCHIVED)
            log.info(
                "trigger_archived",
                trigger_id=record.trigger_id,
                path=str(dest),
                detail=record.result.detail if record.result else "",
            )
        else:
            self._transition(record.trigger_id, TriggerLifecycle.ERROR_ARCHIVED)
            log.warning(
                "trigger_error_archived",
                trigger_id=record.trigger_id,
                path=str(dest),
                status=record.result.status.value if record.result else "invalid",
                detail=record.result.detail if record.result else "",
                errors=record.errors,
            )

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _remember(self, identity: tuple[str, int]) -> None:
        self._seen[identity] = None
        while len(self._seen) > self._config.seen_capacity:
            self._seen.popitem(last=False)

    @staticmethod
    def _transition(trigger_id: str, state: TriggerLifecycle) -> None:
        log.debug("trigger_state", trigger_id=trigger_id, state=state.value)

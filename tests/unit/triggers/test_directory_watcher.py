"""Unit tests — triggers/watcher.py (DirectoryWatcher)."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from trigger_relay.config import WatcherConfig
from trigger_relay.exceptions import TriggerIOError
from trigger_relay.telemetry.metrics import MetricsOwner, SnapshotChannel
from trigger_relay.triggers.archive import RECORD_SUFFIX, ArchivalStore
from trigger_relay.triggers.dispatcher import ActionDispatcher
from trigger_relay.triggers.models import (
    ArchiveOutcome,
    ArchiveRecord,
    HandlerResult,
    HandlerStatus,
    TriggerAction,
)
from trigger_relay.triggers.strategies import PollingStrategy
from trigger_relay.triggers.watcher import DirectoryWatcher
from trigger_relay.triggers.writer import TriggerWriter


def _watcher(
    store: ArchivalStore,
    handler,
    config: WatcherConfig | None = None,
    metrics: MetricsOwner | None = None,
) -> DirectoryWatcher:
    config = config or WatcherConfig(poll_interval_seconds=0.05)
    dispatcher = ActionDispatcher({TriggerAction.ANALYZE_TEST_RESULTS: handler}, timeout=5)
    return DirectoryWatcher(
        store,
        dispatcher,
        config,
        metrics=metrics,
        strategy=PollingStrategy(config.poll_interval_seconds),
    )


def _archived(store: ArchivalStore) -> list[str]:
    return sorted(
        p.name for p in store.archive_dir.glob("*.json") if not p.name.endswith(RECORD_SUFFIX)
    )


def _error_archived(store: ArchivalStore) -> list[str]:
    return sorted(
        p.name for p in store.error_dir.glob("*.json") if not p.name.endswith(RECORD_SUFFIX)
    )


@pytest.mark.unit
class TestPollOnce:
    async def test_valid_artifact_dispatched_and_archived(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        path = writer.emit(**trigger_fields)
        watcher = _watcher(store, recording_handler)

        records = await watcher.poll_once()

        assert [r.outcome for r in records] == [ArchiveOutcome.ARCHIVED]
        assert recording_handler.ids == [path.stem]
        assert _archived(store) == [path.name]
        assert list(store.processing_dir.iterdir()) == []
        sidecar = store.archive_dir / f"{path.stem}{RECORD_SUFFIX}"
        record = ArchiveRecord.model_validate_json(sidecar.read_text())
        assert record.message is not None
        assert record.message.commit_hash == trigger_fields["commit_hash"]

    async def test_every_artifact_processed_in_filename_order(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        paths = [writer.emit(**trigger_fields) for _ in range(5)]
        watcher = _watcher(store, recording_handler)

        await watcher.poll_once()

        assert recording_handler.ids == sorted(p.stem for p in paths)
        assert len(_archived(store)) == 5

    async def test_each_artifact_dispatched_at_most_once(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        for _ in range(3):
            writer.emit(**trigger_fields)
        watcher = _watcher(store, recording_handler)

        await watcher.poll_once()
        await watcher.poll_once()
        await watcher.poll_once()

        assert len(recording_handler.calls) == 3
        assert len(set(recording_handler.ids)) == 3

    async def test_two_watchers_never_share_an_artifact(
        self, store, writer: TriggerWriter, trigger_fields, handler_factory
    ) -> None:
        class YieldingHandler(handler_factory):
            async def __call__(self, message):
                await asyncio.sleep(0)
                return await super().__call__(message)

        first, second = YieldingHandler(), YieldingHandler()
        for _ in range(6):
            writer.emit(**trigger_fields)

        await asyncio.gather(
            _watcher(store, first).poll_once(),
            _watcher(store, second).poll_once(),
        )

        ids = first.ids + second.ids
        assert len(ids) == 6
        assert len(set(ids)) == 6
        assert len(_archived(store)) == 6

    async def test_malformed_json_does_not_block_later_artifacts(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        broken = store.trigger_dir / "trigger_0000_broken.json"
        broken.write_text("{not json")
        good = writer.emit(**trigger_fields)
        watcher = _watcher(store, recording_handler)

        records = await watcher.poll_once()

        assert [r.outcome for r in records] == [ArchiveOutcome.ERROR_ARCHIVED, ArchiveOutcome.ARCHIVED]
        assert _error_archived(store) == [broken.name]
        assert _archived(store) == [good.name]
        assert recording_handler.ids == [good.stem]
        sidecar = store.error_dir / f"trigger_0000_broken{RECORD_SUFFIX}"
        record = ArchiveRecord.model_validate_json(sidecar.read_text())
        assert record.message is None
        assert record.errors[0]["field"] == "$root"

    async def test_schema_violation_error_archived(self, store, recording_handler) -> None:
        (store.trigger_dir / "trigger_bad_hash.json").write_text(
            '{"action": "analyze_test_results", "commitHash": "xyz", "commitMessage": "",'
            ' "timestamp": "2026-10-18T12:00:00", "timezone": "ET", "filesToCheck": ["*"]}'
        )
        watcher = _watcher(store, recording_handler)

        records = await watcher.poll_once()

        assert records[0].outcome == ArchiveOutcome.ERROR_ARCHIVED
        assert records[0].errors[0]["field"] == "commitHash"
        assert recording_handler.calls == []
        assert watcher.metrics.snapshot().failed == 1

    async def test_handler_failure_error_archived(
        self, store, writer: TriggerWriter, trigger_fields, handler_factory
    ) -> None:
        handler = handler_factory(HandlerResult(status=HandlerStatus.NO_RESULTS, detail="nothing"))
        path = writer.emit(**trigger_fields)
        watcher = _watcher(store, handler)

        records = await watcher.poll_once()

        assert records[0].outcome == ArchiveOutcome.ERROR_ARCHIVED
        assert records[0].result is not None
        assert records[0].result.status == HandlerStatus.NO_RESULTS
        assert _error_archived(store) == [path.name]

    async def test_unimplemented_action_error_archived(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        writer.emit(**{**trigger_fields, "action": "deploy_fixes"})
        records = await _watcher(store, recording_handler).poll_once()
        assert records[0].result is not None
        assert records[0].result.status == HandlerStatus.NOT_IMPLEMENTED
        assert records[0].outcome == ArchiveOutcome.ERROR_ARCHIVED

    async def test_non_matching_files_ignored(self, store, recording_handler) -> None:
        (store.trigger_dir / "notes.json").write_text("{}")
        (store.trigger_dir / ".trigger_x.json.abc.tmp").write_text("{")
        records = await _watcher(store, recording_handler).poll_once()
        assert records == []
        assert (store.trigger_dir / "notes.json").exists()

    async def test_metrics_counted_and_published(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        channel = SnapshotChannel()
        metrics = MetricsOwner("directory_watcher", channel)
        writer.emit(**trigger_fields)
        (store.trigger_dir / "trigger_0_bad.json").write_text("[]")

        await _watcher(store, recording_handler, metrics=metrics).poll_once()

        snapshot = channel.receive_latest()
        assert snapshot is not None
        assert snapshot.total_triggers == 2
        assert snapshot.successful == 1
        assert snapshot.failed == 1
        assert snapshot.last_health_check is not None


@pytest.mark.unit
class TestArchivalRetry:
    async def test_failed_move_retried_next_poll(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler, monkeypatch
    ) -> None:
        path = writer.emit(**trigger_fields)
        real_finalize = store.finalize
        attempts = {"n": 0}

        def flaky(claimed: Path, record: ArchiveRecord) -> Path:
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise TriggerIOError("archive", str(claimed), "disk full")
            return real_finalize(claimed, record)

        monkeypatch.setattr(store, "finalize", flaky)
        watcher = _watcher(store, recording_handler)

        await watcher.poll_once()
        assert watcher.deferred_count == 1
        assert (store.processing_dir / path.name).exists()

        await watcher.poll_once()
        assert watcher.deferred_count == 0
        assert _archived(store) == [path.name]
        assert len(recording_handler.calls) == 1


@pytest.mark.unit
class TestRecovery:
    async def test_stranded_artifact_requeued_on_prepare(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        path = writer.emit(**trigger_fields)
        path.rename(store.processing_dir / path.name)
        watcher = _watcher(store, recording_handler)

        watcher.prepare()
        await watcher.poll_once()

        assert recording_handler.ids == [path.stem]
        assert _archived(store) == [path.name]

    async def test_recovery_can_be_disabled(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        path = writer.emit(**trigger_fields)
        path.rename(store.processing_dir / path.name)
        config = WatcherConfig(poll_interval_seconds=0.05, recover_on_start=False)
        watcher = _watcher(store, recording_handler, config=config)

        watcher.prepare()
        await watcher.poll_once()

        assert recording_handler.calls == []
        assert (store.processing_dir / path.name).exists()


@pytest.mark.unit
class TestLifecycle:
    async def test_start_processes_and_stop_ends_loop(
        self, store, writer: TriggerWriter, trigger_fields, recording_handler
    ) -> None:
        watcher = _watcher(store, recording_handler)
        await watcher.start()
        assert watcher.is_running

        writer.emit(**trigger_fields)
        for _ in range(100):
            if recording_handler.calls:
                break
            await asyncio.sleep(0.02)

        await watcher.stop()
        assert not watcher.is_running
        assert len(recording_handler.calls) == 1

    async def test_iteration_error_does_not_stop_loop(
        self, store, recording_handler, monkeypatch
    ) -> None:
        watcher = _watcher(store, recording_handler)
        calls = {"n": 0}

        def exploding_retry() -> None:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("transient")

        monkeypatch.setattr(watcher, "_retry_deferred", exploding_retry)
        await watcher.start()
        for _ in range(100):
            if calls["n"] >= 2:
                break
            await asyncio.sleep(0.02)
        await watcher.stop()
        assert calls["n"] >= 2

    async def test_start_fails_when_directories_cannot_be_created(
        self, tmp_path: Path, recording_handler
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = ArchivalStore(blocker / "t", blocker / "p", blocker / "a", blocker / "e")
        with pytest.raises(TriggerIOError):
            await _watcher(store, recording_handler).start()

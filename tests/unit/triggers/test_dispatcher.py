"""Unit tests — triggers/dispatcher.py."""

from __future__ import annotations

import asyncio
import os
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from trigger_relay.exceptions import ExternalProcessError
from trigger_relay.triggers.dispatcher import (
    ActionDispatcher,
    AnalyzeTestResultsHandler,
    NotImplementedHandler,
    expand_patterns,
    select_newest,
)
from trigger_relay.triggers.models import HandlerStatus, TriggerAction
from trigger_relay.triggers.notify import AnalysisReadyNotification


def _touch(path: Path, mtime_ns: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{}")
    os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def _git(repo: Path, pull_ok: bool = True, output: str = "") -> MagicMock:
    git = MagicMock()
    git.repo_path = repo
    git.pull = AsyncMock(return_value=(pull_ok, output))
    return git


def _sink() -> MagicMock:
    sink = MagicMock()
    sink.send = AsyncMock()
    return sink


@pytest.mark.unit
class TestFileSelection:
    def test_recursive_glob(self, tmp_path: Path) -> None:
        _touch(tmp_path / "results" / "a" / "b" / "deep.json", 1_000)
        _touch(tmp_path / "results" / "top.json", 2_000)
        found = expand_patterns(tmp_path, ["results/**/*.json"])
        assert {p.name for p in found} == {"deep.json", "top.json"}

    def test_duplicates_across_patterns_removed(self, tmp_path: Path) -> None:
        _touch(tmp_path / "r.json", 1_000)
        assert len(expand_patterns(tmp_path, ["*.json", "r.*"])) == 1

    def test_newest_across_patterns(self, tmp_path: Path) -> None:
        _touch(tmp_path / "logs" / "old.log", 1_000_000_000)
        newest = _touch(tmp_path / "results" / "new.json", 3_000_000_000)
        _touch(tmp_path / "results" / "mid.json", 2_000_000_000)
        assert select_newest(tmp_path, ["logs/*.log", "results/*.json"]) == newest

    def test_mtime_tie_goes_to_greatest_path(self, tmp_path: Path) -> None:
        _touch(tmp_path / "a.json", 5_000_000_000)
        b = _touch(tmp_path / "b.json", 5_000_000_000)
        assert select_newest(tmp_path, ["*.json"]) == b

    def test_no_match(self, tmp_path: Path) -> None:
        assert select_newest(tmp_path, ["nothing/*.json"]) is None


@pytest.mark.unit
class TestAnalyzeTestResultsHandler:
    async def test_announces_newest_file(self, tmp_path: Path, make_message) -> None:
        _touch(tmp_path / "test-results" / "old.json", 1_000_000_000)
        newest = _touch(tmp_path / "test-results" / "new.json", 2_000_000_000)
        git, sink = _git(tmp_path), _sink()
        handler = AnalyzeTestResultsHandler(git, sink)

        result = await handler(make_message())

        assert result.success
        assert result.data["selected_file"] == str(newest)
        git.pull.assert_awaited_once()
        notification = sink.send.await_args.args[0]
        assert isinstance(notification, AnalysisReadyNotification)
        assert notification.selected_file == str(newest)
        assert notification.commit_hash == make_message().commit_hash

    async def test_no_match_is_no_results(self, tmp_path: Path, make_message) -> None:
        sink = _sink()
        result = await AnalyzeTestResultsHandler(_git(tmp_path), sink)(make_message())
        assert result.status == HandlerStatus.NO_RESULTS
        assert not result.success
        sink.send.assert_not_awaited()

    async def test_failed_pull_raises(self, tmp_path: Path, make_message) -> None:
        handler = AnalyzeTestResultsHandler(_git(tmp_path, pull_ok=False, output="conflict"), _sink())
        with pytest.raises(ExternalProcessError, match="conflict"):
            await handler(make_message())

    async def test_pull_can_be_disabled(self, tmp_path: Path, make_message) -> None:
        _touch(tmp_path / "test-results" / "r.json", 1_000)
        git = _git(tmp_path, pull_ok=False)
        result = await AnalyzeTestResultsHandler(git, _sink(), pull=False)(make_message())
        assert result.success
        git.pull.assert_not_awaited()

    async def test_file_search_runs_off_the_event_loop(
        self, tmp_path: Path, make_message, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        newest = _touch(tmp_path / "test-results" / "r.json", 1_000)
        threads: list[int] = []

        def _select(base_dir: Path, patterns) -> Path:
            threads.append(threading.get_ident())
            return newest

        monkeypatch.setattr("trigger_relay.triggers.dispatcher.select_newest", _select)
        result = await AnalyzeTestResultsHandler(_git(tmp_path), _sink(), pull=False)(make_message())

        assert result.success
        assert threads and threads[0] != threading.get_ident()


@pytest.mark.unit
class TestActionDispatcher:
    async def test_unregistered_actions_not_implemented(self, make_message) -> None:
        dispatcher = ActionDispatcher()
        for action in ("deploy_fixes", "run_tests", "custom"):
            result = await dispatcher.dispatch(make_message(action=action))
            assert result.status == HandlerStatus.NOT_IMPLEMENTED
            assert not result.success

    async def test_routes_to_registered_handler(self, make_message, recording_handler) -> None:
        dispatcher = ActionDispatcher({TriggerAction.ANALYZE_TEST_RESULTS: recording_handler})
        result = await dispatcher.dispatch(make_message())
        assert result.success
        assert len(recording_handler.calls) == 1

    async def test_register_replaces_handler(self, recording_handler) -> None:
        dispatcher = ActionDispatcher()
        assert isinstance(dispatcher.handler_for(TriggerAction.CUSTOM), NotImplementedHandler)
        dispatcher.register(TriggerAction.CUSTOM, recording_handler)
        assert dispatcher.handler_for(TriggerAction.CUSTOM) is recording_handler

    async def test_handler_exception_becomes_failed(self, make_message) -> None:
        async def broken(message):
            raise RuntimeError("kaboom")

        dispatcher = ActionDispatcher({TriggerAction.ANALYZE_TEST_RESULTS: broken})
        result = await dispatcher.dispatch(make_message())
        assert result.status == HandlerStatus.FAILED
        assert "kaboom" in result.detail

    async def test_external_process_error_becomes_failed(self, tmp_path: Path, make_message) -> None:
        handler = AnalyzeTestResultsHandler(_git(tmp_path, pull_ok=False, output="denied"), _sink())
        dispatcher = ActionDispatcher({TriggerAction.ANALYZE_TEST_RESULTS: handler})
        result = await dispatcher.dispatch(make_message())
        assert result.status == HandlerStatus.FAILED
        assert "denied" in result.detail

    async def test_timeout(self, make_message) -> None:
        async def slow(message):
            await asyncio.sleep(5)

        dispatcher = ActionDispatcher({TriggerAction.ANALYZE_TEST_RESULTS: slow}, timeout=0.05)
        result = await dispatcher.dispatch(make_message())
        assert result.status == HandlerStatus.TIMEOUT
        assert not result.success

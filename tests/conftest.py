"""Shared pytest fixtures for the trigger-relay test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from trigger_relay.config import PathsConfig, Settings, WatcherConfig
from trigger_relay.triggers.archive import ArchivalStore
from trigger_relay.triggers.models import HandlerResult, TriggerMessage
from trigger_relay.triggers.writer import TriggerWriter

VALID_HASH = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        paths={
            "trigger_dir": str(tmp_path / "triggers"),
            "repo_path": str(tmp_path / "repo"),
            "telemetry_dir": str(tmp_path / "telemetry"),
        },
        watcher={"poll_interval_seconds": 0.05, "pull_before_analysis": False},
        notify={"sink": "log"},
        logging={"level": "debug", "format": "console"},
    )


@pytest.fixture
def paths(tmp_path: Path) -> PathsConfig:
    return PathsConfig(trigger_dir=tmp_path / "triggers", repo_path=tmp_path / "repo")


@pytest.fixture
def watcher_config() -> WatcherConfig:
    return WatcherConfig(poll_interval_seconds=0.05)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@pytest.fixture
def writer(paths: PathsConfig) -> TriggerWriter:
    return TriggerWriter(paths.trigger_dir)


@pytest.fixture
def store(paths: PathsConfig) -> ArchivalStore:
    s = ArchivalStore.from_paths(paths)
    s.prepare()
    return s


@pytest.fixture
def trigger_fields() -> dict[str, Any]:
    return {
        "action": "analyze_test_results",
        "commit_hash": VALID_HASH,
        "commit_message": "Nightly test results",
        "files_to_check": ["test-results/*.json"],
        "priority": "normal",
        "source": "test_computer",
    }


@pytest.fixture
def make_message(writer: TriggerWriter, trigger_fields: dict[str, Any]) -> Callable[..., TriggerMessage]:
    def _make(**overrides: Any) -> TriggerMessage:
        return writer.build(**{**trigger_fields, **overrides})

    return _make


class RecordingHandler:
    """Async handler that remembers every message it was given."""

    def __init__(self, result: HandlerResult | None = None) -> None:
        self.calls: list[TriggerMessage] = []
        self.result = result or HandlerResult.completed("ok")

    async def __call__(self, message: TriggerMessage) -> HandlerResult:
        self.calls.append(message)
        return self.result

    @property
    def ids(self) -> list[str | None]:
        return [m.id for m in self.calls]


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 18, 12, 0, 0)


@pytest.fixture
def handler_factory() -> Callable[..., RecordingHandler]:
    return RecordingHandler

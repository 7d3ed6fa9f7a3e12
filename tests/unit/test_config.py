"""Unit tests — Settings.load and the config blocks."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from trigger_relay.config import PathsConfig, Settings


@pytest.mark.unit
class TestSettingsLoad:
    def test_load_defaults_when_no_files(self) -> None:
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.watcher.poll_interval_seconds == 2.0
        assert settings.watcher.handler_timeout_seconds == 300.0
        assert settings.commits.poll_interval_seconds == 30.0
        assert settings.commits.backoff_max_seconds == 300.0
        assert settings.telemetry.performance_interval_seconds == 60.0
        assert settings.telemetry.health_interval_seconds == 30.0
        assert settings.telemetry.retention_days == 14
        assert settings.writer.mode == "queue"

    def test_load_from_custom_config_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "watcher:\n  poll_interval_seconds: 0.5\n  strategy: events\n"
            f"paths:\n  trigger_dir: {tmp_path / 'in'}\n"
        )
        settings = Settings.load(config_file=config_file)
        assert settings.watcher.poll_interval_seconds == 0.5
        assert settings.watcher.strategy == "events"
        assert settings.paths.trigger_dir == tmp_path / "in"

    def test_malformed_yaml_falls_back_to_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("watcher: [unclosed\n")
        settings = Settings.load(config_file=config_file)
        assert settings.watcher.poll_interval_seconds == 2.0

    def test_non_mapping_yaml_ignored(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")
        assert Settings.load(config_file=config_file).watcher.pattern == "trigger*.json"

    def test_invalid_values_fall_back_to_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("watcher:\n  poll_interval_seconds: -1\n")
        assert Settings.load(config_file=config_file).watcher.poll_interval_seconds == 2.0

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("watcher:\n  poll_interval_seconds: 0.5\n  pattern: 'job*.json'\n")
        monkeypatch.setenv("TRIGGER_RELAY_WATCHER__POLL_INTERVAL_SECONDS", "7")
        settings = Settings.load(config_file=config_file)
        assert settings.watcher.poll_interval_seconds == 7
        assert settings.watcher.pattern == "job*.json"

    def test_invalid_env_falls_back_to_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRIGGER_RELAY_WATCHER__POLL_INTERVAL_SECONDS", "-1")
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.watcher.poll_interval_seconds == 2.0
        assert settings.paths.trigger_dir == Path.home() / ".trigger-relay" / "triggers"
        assert settings.with_overrides(watcher={"pattern": "job*.json"}).watcher.pattern == "job*.json"


@pytest.mark.unit
class TestSettingsModel:
    def test_frozen(self) -> None:
        settings = Settings()
        with pytest.raises(Exception):
            settings.watcher = settings.watcher  # type: ignore[misc]

    def test_with_overrides(self) -> None:
        settings = Settings().with_overrides(watcher={"poll_interval_seconds": 0.25})
        assert settings.watcher.poll_interval_seconds == 0.25
        assert settings.watcher.pattern == "trigger*.json"

    def test_derived_directories(self, tmp_path: Path) -> None:
        paths = PathsConfig(trigger_dir=tmp_path)
        assert paths.processing_dir == tmp_path / "processing"
        assert paths.archive_dir == tmp_path / "archive"
        assert paths.error_dir == tmp_path / "archive" / "error"

    def test_home_expanded(self) -> None:
        paths = PathsConfig()
        assert paths.trigger_dir == Path.home() / ".trigger-relay" / "triggers"
        assert paths.telemetry_dir == Path.home() / ".trigger-relay" / "telemetry"

    def test_home_expanded_in_loaded_defaults(self) -> None:
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.paths.trigger_dir.is_absolute()
        assert "~" not in str(settings.paths.telemetry_dir)


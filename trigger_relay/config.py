"""trigger-relay — Daemon configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/trigger-relay/config.yaml
    3. User config:   ~/.trigger-relay/config.yaml
    4. An explicit ``--config`` file
    5. Environment variables prefixed with TRIGGER_RELAY_

All settings are immutable after load.  Call ``Settings.load()`` once at
startup and pass the instance (or its sub-blocks) to the components
that need it.  Nothing reads configuration from module globals at runtime.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from trigger_relay.exceptions import ConfigError
from trigger_relay.logging import get_logger

log = get_logger(__name__)

_FROZEN = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Shared directories.  Derived locations hang off ``trigger_dir``."""

    model_config = _FROZEN

    trigger_dir: Path = Field(
        default=Path("~/.trigger-relay/triggers"),
        validate_default=True,
        description="Directory exchanged between producer and consumer.",
    )
    repo_path: Path = Field(
        default=Path("."),
        validate_default=True,
        description="Working copy of the watched repository.",
    )
    telemetry_dir: Path = Field(
        default=Path("~/.trigger-relay/telemetry"),
        validate_default=True,
        description="Directory for date-partitioned telemetry logs.",
    )

    @field_validator("trigger_dir", "repo_path", "telemetry_dir", mode="after")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def processing_dir(self) -> Path:
        return self.trigger_dir / "processing"

    @property
    def archive_dir(self) -> Path:
        return self.trigger_dir / "archive"

    @property
    def error_dir(self) -> Path:
        return self.trigger_dir / "archive" / "error"


class WriterConfig(BaseModel):
    model_config = _FROZEN

    mode: Literal["queue", "mailbox"] = Field(
        default="queue",
        description=(
            "queue   — one uniquely named artifact per trigger (default). "
            "mailbox — legacy single trigger.json slot; a second write before "
            "the first is consumed silently replaces it."
        ),
    )
    generator: str = Field(default="trigger-relay", description="Generator identity in metadata.")
    timezone: Literal["ET", "CT", "MT", "PT", "UTC"] = "ET"


class WatcherConfig(BaseModel):
    model_config = _FROZEN

    poll_interval_seconds: Annotated[float, Field(gt=0, le=3600)] = 2.0
    pattern: str = Field(default="trigger*.json", description="Glob matched against artifact names.")
    strategy: Literal["polling", "events"] = Field(
        default="polling",
        description="polling — fixed-interval sleep.  events — OS change notification (watchfiles).",
    )
    handler_timeout_seconds: Annotated[float, Field(gt=0, le=86_400)] = 300.0
    recover_on_start: bool = Field(
        default=True,
        description="Requeue artifacts left in processing/ by a crashed run.",
    )
    seen_capacity: Annotated[int, Field(ge=100, le=1_000_000)] = 10_000
    pull_before_analysis: bool = Field(
        default=True,
        description="Pull the repository before looking for result files.",
    )


class CommitConfig(BaseModel):
    model_config = _FROZEN

    poll_interval_seconds: Annotated[float, Field(gt=0, le=86_400)] = 30.0
    backoff_max_seconds: Annotated[float, Field(gt=0, le=86_400)] = 300.0
    remote: str = "origin"
    branch: str | None = None
    template: str = Field(default="test-analysis", description="Template applied to commit triggers.")
    source: Literal["test_computer", "dev_computer", "automated"] = "automated"
    trigger_on_start: bool = Field(
        default=False,
        description="Emit a trigger for the HEAD found at startup instead of only new commits.",
    )


class CIConfig(BaseModel):
    """Optional steps the commit loop runs before emitting a trigger."""

    model_config = _FROZEN

    cleanup_processes: list[str] = Field(
        default_factory=list,
        description="Process name patterns terminated before the test command runs.",
    )
    force_terminate: bool = False
    test_command: list[str] = Field(
        default_factory=list,
        description="Build/test command run from repo_path.  Empty = skip.",
    )
    test_timeout_seconds: Annotated[float, Field(gt=0, le=86_400)] = 1800.0


class TelemetryConfig(BaseModel):
    model_config = _FROZEN

    enabled: bool = True
    performance_interval_seconds: Annotated[float, Field(gt=0)] = 60.0
    health_interval_seconds: Annotated[float, Field(gt=0)] = 30.0
    retention_days: Annotated[int, Field(ge=1, le=3650)] = 14
    disk_path: str = "/"
    min_disk_free_pct: Annotated[float, Field(ge=0, le=100)] = 10.0
    max_memory_used_pct: Annotated[float, Field(ge=0, le=100)] = 90.0
    max_cpu_pct: Annotated[float, Field(ge=0, le=100)] = 90.0


class NotifyConfig(BaseModel):
    model_config = _FROZEN

    sink: Literal["console", "log", "file", "queue"] = "console"
    path: Path | None = Field(
        default=None,
        description="JSONL file for sink=file, directory for sink=queue.",
    )


class LoggingConfig(BaseModel):
    model_config = _FROZEN

    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TRIGGER_RELAY_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    paths: PathsConfig = Field(default_factory=PathsConfig)
    writer: WriterConfig = Field(default_factory=WriterConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    commits: CommitConfig = Field(default_factory=CommitConfig)
    ci: CIConfig = Field(default_factory=CIConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override values loaded from YAML files.
        return env_settings, init_settings, file_secret_settings

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from YAML files + environment variables.

        A malformed file is skipped with a warning.  If the merged values do
        not validate, documented defaults are used instead.
        """
        data: dict[str, Any] = {}

        candidates = [
            Path("/etc/trigger-relay/config.yaml"),
            Path.home() / ".trigger-relay" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if not path.exists():
                continue
            try:
                _deep_merge(data, _read_yaml(path))
            except ConfigError as exc:
                log.warning("config_file_ignored", path=exc.path, reason=exc.reason)

        try:
            return cls(**data)
        except ValidationError as exc:
            log.warning(
                "config_invalid_using_defaults",
                errors=[f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()],
            )
            # Built without sources so a bad environment variable cannot fail again.
            return cls.model_construct()

    def with_overrides(self, **blocks: dict[str, Any]) -> "Settings":
        """Return a copy with selected sub-block fields replaced.

        Usage::

            settings.with_overrides(watcher={"poll_interval_seconds": 0.5})
        """
        update: dict[str, Any] = {}
        for name, fields in blocks.items():
            current: BaseModel = getattr(self, name)
            update[name] = current.model_validate({**current.model_dump(), **fields})
        return self.model_copy(update=update)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open() as f:
            loaded = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(str(path), str(exc)) from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(str(path), f"expected a mapping, got {type(loaded).__name__}")
    return loaded


def _deep_merge(target: dict[str, Any], incoming: dict[str, Any]) -> None:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value

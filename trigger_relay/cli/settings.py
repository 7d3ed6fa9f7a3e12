"""Settings and logging setup shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

from trigger_relay.config import Settings
from trigger_relay.logging import configure_logging


def load_settings(config: Path | None = None, trigger_dir: Path | None = None) -> Settings:
    """Load settings, apply command-line path overrides."""
    settings = Settings.load(config_file=config)
    if trigger_dir is not None:
        settings = settings.with_overrides(paths={"trigger_dir": trigger_dir})
    return settings


def setup_logging(settings: Settings, verbose: bool = False, quiet: bool = False) -> None:
    level = settings.logging.level
    if verbose:
        level = "debug"
    elif quiet and level in ("debug", "info"):
        level = "warning"
    configure_logging(
        level=level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

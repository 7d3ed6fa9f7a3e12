"""Notification sinks for "analysis ready" events.

The consumer of these notifications (a person, an analysis agent, a queue
worker) is outside the relay.  Swap the destination by injecting a
different sink:

  - ConsoleSink         → rich panel on stdout (default)
  - LogSink             → structured log event only
  - JsonlFileSink       → one JSON line per notification, append-only
  - DirectoryQueueSink  → one JSON file per notification, atomically renamed

Unlike telemetry, a failing sink is a dispatch failure: the sink raises
``TriggerIOError`` and the artifact is error-archived.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from rich.console import Console
from rich.panel import Panel

from trigger_relay.config import NotifyConfig
from trigger_relay.exceptions import ConfigError, TriggerIOError
from trigger_relay.logging import get_logger
from trigger_relay.triggers.models import TimezoneTag, TriggerPriority

log = get_logger(__name__)


class AnalysisReadyNotification(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    trigger_id: str | None
    commit_hash: str
    selected_file: str
    timestamp: datetime
    timezone: TimezoneTag
    priority: TriggerPriority = TriggerPriority.NORMAL
    emitted_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class NotificationSink(ABC):
    @abstractmethod
    async def send(self, notification: AnalysisReadyNotification) -> None:
        """Deliver *notification*.  Raise ``TriggerIOError`` on failure."""


class LogSink(NotificationSink):
    async def send(self, notification: AnalysisReadyNotification) -> None:
        log.info(
            "analysis_ready",
            trigger_id=notification.trigger_id,
            commit=notification.commit_hash,
            file=notification.selected_file,
            timezone=notification.timezone.value,
        )


class ConsoleSink(NotificationSink):
    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def send(self, notification: AnalysisReadyNotification) -> None:
        stamp = f"{notification.timestamp:%Y-%m-%d %H:%M:%S} {notification.timezone.value}"
        body = (
            f"[bold]Commit:[/bold] {notification.commit_hash}\n"
            f"[bold]File:[/bold]   {notification.selected_file}\n"
            f"[bold]Time:[/bold]   {stamp}\n"
            f"[bold]Priority:[/bold] {notification.priority.value}"
        )
        self._console.print(Panel(body, title="Ready for analysis", border_style="green"))


class JsonlFileSink(NotificationSink):
    """Appends each notification as one JSON line.

    Usage::

        sink = JsonlFileSink(Path("~/.trigger-relay/analysis-ready.jsonl"))
    """

    def __init__(self, path: Path) -> None:
        self._path = path.expanduser()
        self._lock = asyncio.Lock()

    async def send(self, notification: AnalysisReadyNotification) -> None:
        line = notification.model_dump_json(by_alias=True) + "\n"
        async with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                raise TriggerIOError("append notification", str(self._path), str(exc)) from exc


class DirectoryQueueSink(NotificationSink):
    """Writes each notification as its own file for a downstream poller."""

    def __init__(self, directory: Path) -> None:
        self._dir = directory.expanduser()

    async def send(self, notification: AnalysisReadyNotification) -> None:
        name = f"ready_{notification.emitted_at:%Y%m%dT%H%M%S_%f}_{uuid.uuid4().hex[:8]}.json"
        final = self._dir / name
        staging = self._dir / f".{name}.tmp"
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            staging.write_text(notification.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            os.replace(staging, final)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise TriggerIOError("enqueue notification", str(final), str(exc)) from exc


def build_sink(config: NotifyConfig, console: Console | None = None) -> NotificationSink:
    """Return the sink selected by *config*.

    Raises:
        ConfigError: ``file`` or ``queue`` selected without ``notify.path``.
    """
    if config.sink == "log":
        return LogSink()
    if config.sink in ("file", "queue"):
        if config.path is None:
            raise ConfigError("notify.path", f"required for sink={config.sink!r}")
        if config.sink == "file":
            return JsonlFileSink(config.path)
        return DirectoryQueueSink(config.path)
    return ConsoleSink(console)

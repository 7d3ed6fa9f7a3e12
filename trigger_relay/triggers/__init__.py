"""trigger-relay — Trigger artifacts and their consumer.

Package structure
-----------------
triggers/
  models.py      — Data models: TriggerMessage, HandlerResult, ArchiveRecord
  schema.py      — Parse / validate / serialise artifacts, FieldError
  templates.py   — Named defaults for action, priority, filesToCheck
  writer.py      — TriggerWriter (atomic stage-then-rename)
  archive.py     — ArchivalStore: claim, archive, recover
  dispatcher.py  — ActionDispatcher + handlers
  notify.py      — "analysis ready" notification sinks
  strategies.py  — PollingStrategy, FileEventStrategy
  watcher.py     — DirectoryWatcher — the consumer loop
"""

from trigger_relay.triggers.archive import ArchivalStore
from trigger_relay.triggers.dispatcher import (
    ActionDispatcher,
    AnalyzeTestResultsHandler,
    NotImplementedHandler,
)
from trigger_relay.triggers.models import (
    ArchiveOutcome,
    ArchiveRecord,
    HandlerResult,
    HandlerStatus,
    TriggerAction,
    TriggerLifecycle,
    TriggerMessage,
    TriggerPriority,
    TriggerSource,
)
from trigger_relay.triggers.schema import FieldError, parse, serialize
from trigger_relay.triggers.watcher import DirectoryWatcher
from trigger_relay.triggers.writer import TriggerWriter

__all__ = [
    "ActionDispatcher",
    "AnalyzeTestResultsHandler",
    "ArchivalStore",
    "ArchiveOutcome",
    "ArchiveRecord",
    "DirectoryWatcher",
    "FieldError",
    "HandlerResult",
    "HandlerStatus",
    "NotImplementedHandler",
    "TriggerAction",
    "TriggerLifecycle",
    "TriggerMessage",
    "TriggerPriority",
    "TriggerSource",
    "TriggerWriter",
    "parse",
    "serialize",
]

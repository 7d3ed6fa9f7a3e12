"""trigger-relay — Structured logging configuration.

Uses structlog for structured, levelled logging with consistent key names
across producer and consumer daemons.  All log entries include:
    - timestamp (ISO-8601)
    - level
    - logger (Python logger name)
    - trigger_id / commit_hash (bound via context variables when available)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

# Context variables injected into log records when set.
_ctx_trigger_id: ContextVar[str | None] = ContextVar("trigger_id", default=None)
_ctx_commit_hash: ContextVar[str | None] = ContextVar("commit_hash", default=None)


def bind_trigger_context(
    trigger_id: str | None = None,
    commit_hash: str | None = None,
) -> None:
    """Bind the artifact being processed to the current task."""
    if trigger_id is not None:
        _ctx_trigger_id.set(trigger_id)
    if commit_hash is not None:
        _ctx_commit_hash.set(commit_hash)


def clear_trigger_context() -> None:
    _ctx_trigger_id.set(None)
    _ctx_commit_hash.set(None)


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


def _inject_context_vars(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """Add ContextVar values to every log record."""
    if (trigger_id := _ctx_trigger_id.get()) is not None:
        event_dict.setdefault("trigger_id", trigger_id)
    if (commit_hash := _ctx_commit_hash.get()) is not None:
        event_dict.setdefault("commit_hash", commit_hash)
    return event_dict


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Call once at daemon startup, before any log statements.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` for human-readable output, ``"json"`` for
                  machine-readable structured logs.
        log_file: Optional path to write logs to in addition to stderr.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = []

    # stderr keeps stdout free for CLI output and console notifications.
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())

    for noisy in ("asyncio", "watchfiles"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for *name*.

    Usage::

        log = get_logger(__name__)
        log.info("trigger_archived", trigger_id="trigger_2024...", outcome="archived")
    """
    return structlog.get_logger(name)

"""TriggerWriter — build, validate, and persist trigger artifacts.

Two storage modes
-----------------
queue (default)
    Every trigger gets its own file::

        trigger_20240502T140311_120000_000001_9f3c2a1b.json
                ^ timestamp (µs)       ^ counter ^ random

    Names sort in creation order for a single producer, so a fast producer
    can emit several triggers between two consumer polls without losing any.

mailbox (legacy)
    A single well-known ``trigger.json``.  LOSSY: a second write before the
    consumer picks up the first silently replaces it.  Kept only for
    consumers that still expect the fixed path.

Atomic visibility
-----------------
Content goes to a hidden staging file (``.<name>.<rand>.tmp``) in the same
directory, is flushed and fsync'ed, then ``os.replace``d onto the final
name.  The watcher pattern never matches staging files, so a consumer
cannot observe a half-written artifact.
"""

from __future__ import annotations

import itertools
import os
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from trigger_relay.exceptions import TriggerIOError, TriggerValidationError
from trigger_relay.logging import get_logger
from trigger_relay.triggers.models import SCHEMA_VERSION, TimezoneTag, TriggerMessage
from trigger_relay.triggers.schema import FieldError, serialize, validate_fields
from trigger_relay.triggers.templates import TEMPLATES, get_template

log = get_logger(__name__)

MAILBOX_NAME = "trigger.json"


class TriggerWriter:
    """Creates trigger artifacts in ``trigger_dir``.

    Usage::

        writer = TriggerWriter(settings.paths.trigger_dir)
        path = writer.emit(
            action="analyze_test_results",
            commit_hash="a1b2c3d",
            commit_message="Nightly results",
            files_to_check=["test-results/*.json"],
        )
    """

    def __init__(
        self,
        trigger_dir: Path,
        mode: Literal["queue", "mailbox"] = "queue",
        generator: str = "trigger-relay",
        timezone: str = "ET",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._dir = trigger_dir
        self._mode = mode
        self._generator = generator
        self._timezone = timezone
        self._clock = clock or wall_clock(timezone)
        self._counter = itertools.count(1)

    @property
    def trigger_dir(self) -> Path:
        return self._dir

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, **fields: Any) -> list[FieldError]:
        """Dry run of :meth:`build`.  Returns every violation; writes nothing."""
        try:
            self.build(**fields)
        except TriggerValidationError as exc:
            return exc.errors
        return []

    def build(
        self,
        *,
        commit_hash: str,
        commit_message: str,
        action: str | None = None,
        files_to_check: Sequence[str] | None = None,
        priority: str | None = None,
        source: str = "automated",
        custom_data: str | None = None,
        template: str | None = None,
        timestamp: datetime | None = None,
    ) -> TriggerMessage:
        """Merge template defaults with explicit fields and validate.

        Raises:
            TriggerValidationError: one or more fields are invalid.
        """
        errors: list[FieldError] = []
        tmpl = None
        if template is not None:
            tmpl = get_template(template)
            if tmpl is None:
                errors.append(
                    FieldError(
                        "template",
                        f"Unknown template '{template}'. Known: {', '.join(sorted(TEMPLATES))}",
                    )
                )

        now = self._clock()
        data: dict[str, Any] = {
            "commitHash": commit_hash,
            "commitMessage": commit_message,
            "timestamp": timestamp or now,
            "timezone": self._timezone,
            "source": source,
            "metadata": {
                "generator": self._generator,
                "template": template,
                "schemaVersion": SCHEMA_VERSION,
                "generatedAt": now,
            },
        }
        if action is not None:
            data["action"] = action
        elif tmpl is not None:
            data["action"] = tmpl.action
        if priority is not None:
            data["priority"] = priority
        elif tmpl is not None:
            data["priority"] = tmpl.priority
        if files_to_check is not None:
            data["filesToCheck"] = list(files_to_check)
        elif tmpl is not None:
            data["filesToCheck"] = list(tmpl.files_to_check)
        if custom_data is not None:
            data["customData"] = custom_data

        errors.extend(validate_fields(data))
        if errors:
            raise TriggerValidationError(errors)
        return TriggerMessage.model_validate(data)

    def write(self, message: TriggerMessage) -> Path:
        """Persist *message* atomically and return the artifact path.

        Raises:
            TriggerIOError: the directory cannot be created or the write failed.
        """
        self.ensure_directory()
        final = self._dir / self._next_name()

        if self._mode == "mailbox" and final.exists():
            log.warning("mailbox_overwrite_unconsumed", path=str(final))

        staging = self._dir / f".{final.name}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            with staging.open("w", encoding="utf-8") as f:
                f.write(serialize(message))
                f.flush()
                os.fsync(f.fileno())
            os.replace(staging, final)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise TriggerIOError("write", str(final), str(exc)) from exc

        log.info(
            "trigger_written",
            trigger_id=final.stem,
            action=message.action.value,
            priority=message.priority.value,
            commit=message.short_hash,
            mode=self._mode,
        )
        return final

    def emit(self, **fields: Any) -> Path:
        """:meth:`build` then :meth:`write`."""
        return self.write(self.build(**fields))

    def ensure_directory(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TriggerIOError("create directory", str(self._dir), str(exc)) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _next_name(self) -> str:
        if self._mode == "mailbox":
            return MAILBOX_NAME
        stamp = self._clock().strftime("%Y%m%dT%H%M%S_%f")
        return f"trigger_{stamp}_{next(self._counter):06d}_{uuid.uuid4().hex[:8]}.json"


def wall_clock(timezone: str) -> Callable[[], datetime]:
    """Clock returning naive local time in the zone named by *timezone*.

    Timestamps are written without an offset next to their tag, so the
    wall time must be read in the tagged zone, not the host's.
    """
    try:
        zone = TimezoneTag(timezone).zone
    except ValueError:
        # Unknown tag: build() reports it as a field error.
        return datetime.now
    return lambda: datetime.now(zone).replace(tzinfo=None)

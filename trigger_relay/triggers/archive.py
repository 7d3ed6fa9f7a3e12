"""ArchivalStore — claim, archive, and recover trigger artifacts.

Directory layout (all under the trigger directory)::

    trigger_dir/
      trigger_...json           pending artifacts (written by the producer)
      processing/               claimed by exactly one watcher
      archive/                  terminal, outcome = archived
        <name>.json
        <name>.record.json      ArchiveRecord, written once
        error/                  terminal, outcome = error-archived

Ownership moves with the file: every transition is an ``os.replace`` within
the same filesystem, so an artifact is always in exactly one place.  A failed
move leaves the file where it was; nothing is ever deleted.
"""

from __future__ import annotations

import os
from pathlib import Path

from trigger_relay.config import PathsConfig
from trigger_relay.exceptions import TriggerIOError
from trigger_relay.logging import get_logger
from trigger_relay.triggers.models import ArchiveOutcome, ArchiveRecord

log = get_logger(__name__)

RECORD_SUFFIX = ".record.json"


class ArchivalStore:
    def __init__(
        self,
        trigger_dir: Path,
        processing_dir: Path,
        archive_dir: Path,
        error_dir: Path,
    ) -> None:
        self.trigger_dir = trigger_dir
        self.processing_dir = processing_dir
        self.archive_dir = archive_dir
        self.error_dir = error_dir

    @classmethod
    def from_paths(cls, paths: PathsConfig) -> "ArchivalStore":
        return cls(
            trigger_dir=paths.trigger_dir,
            processing_dir=paths.processing_dir,
            archive_dir=paths.archive_dir,
            error_dir=paths.error_dir,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """Create every directory.  Failure here is fatal for a daemon."""
        for directory in (self.trigger_dir, self.processing_dir, self.archive_dir, self.error_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise TriggerIOError("create directory", str(directory), str(exc)) from exc

    def recover(self) -> list[Path]:
        """Move artifacts stranded in ``processing/`` back into the queue.

        Anything still in ``processing/`` at startup was claimed by a run
        that died before archiving it.  Requeued artifacts are dispatched
        again, so delivery is at-least-once across crashes.
        """
        requeued: list[Path] = []
        if not self.processing_dir.is_dir():
            return requeued
        for stranded in sorted(self.processing_dir.iterdir()):
            if not stranded.is_file():
                continue
            dest = _unique_destination(self.trigger_dir, stranded.name)
            try:
                os.replace(stranded, dest)
            except OSError as exc:
                log.error("trigger_recover_failed", path=str(stranded), error=str(exc))
                continue
            requeued.append(dest)
            log.warning("trigger_requeued_after_crash", trigger_id=dest.stem)
        return requeued

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claim(self, artifact: Path) -> Path | None:
        """Move *artifact* into ``processing/``.

        Returns the claimed path, or ``None`` if the artifact vanished
        (another watcher claimed it first).

        Raises:
            TriggerIOError: the move failed for any other reason.
        """
        dest = _unique_destination(self.processing_dir, artifact.name)
        try:
            os.replace(artifact, dest)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TriggerIOError("claim", str(artifact), str(exc)) from exc
        return dest

    def finalize(self, claimed: Path, record: ArchiveRecord) -> Path:
        """Move *claimed* to its terminal directory and write its record.

        Raises:
            TriggerIOError: the move failed; *claimed* is left in place.
        """
        target_dir = self.archive_dir if record.outcome == ArchiveOutcome.ARCHIVED else self.error_dir
        dest = _unique_destination(target_dir, claimed.name)
        try:
            os.replace(claimed, dest)
        except OSError as exc:
            raise TriggerIOError("archive", str(claimed), str(exc)) from exc

        record_path = dest.with_name(dest.stem + RECORD_SUFFIX)
        try:
            _write_once(record_path, record.model_dump_json(by_alias=True, indent=2))
        except OSError as exc:
            # The artifact itself is already terminal; only the sidecar is missing.
            log.error(
                "archive_record_write_failed",
                trigger_id=record.trigger_id,
                path=str(record_path),
                error=str(exc),
            )
        return dest

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def counts(self, pattern: str = "trigger*.json") -> dict[str, int]:
        def _count(directory: Path, glob: str) -> int:
            if not directory.is_dir():
                return 0
            return sum(
                1 for p in directory.glob(glob)
                if p.is_file() and not p.name.endswith(RECORD_SUFFIX)
            )

        return {
            "pending": _count(self.trigger_dir, pattern),
            "processing": _count(self.processing_dir, "*"),
            "archived": _count(self.archive_dir, "*.json"),
            "error_archived": _count(self.error_dir, "*.json"),
        }

    def records(self, outcome: ArchiveOutcome | None = None, limit: int = 20) -> list[ArchiveRecord]:
        """Most recent archive records first."""
        dirs = {
            ArchiveOutcome.ARCHIVED: [self.archive_dir],
            ArchiveOutcome.ERROR_ARCHIVED: [self.error_dir],
            None: [self.archive_dir, self.error_dir],
        }[outcome]
        paths = [p for d in dirs if d.is_dir() for p in d.glob(f"*{RECORD_SUFFIX}")]
        paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        records: list[ArchiveRecord] = []
        for path in paths[:limit]:
            try:
                records.append(ArchiveRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                log.warning("archive_record_unreadable", path=str(path), error=str(exc))
        return records


def _unique_destination(directory: Path, name: str) -> Path:
    """Return ``directory/name``, suffixed ``.1``, ``.2``… if already taken."""
    candidate = directory / name
    stem, suffix = os.path.splitext(name)
    n = 1
    while candidate.exists():
        candidate = directory / f"{stem}.{n}{suffix}"
        n += 1
    return candidate


def _write_once(path: Path, content: str) -> None:
    if path.exists():
        raise FileExistsError(f"{path} already exists")
    staging = path.with_name(f".{path.name}.tmp")
    try:
        staging.write_text(content, encoding="utf-8")
        os.replace(staging, path)
    finally:
        staging.unlink(missing_ok=True)

"""trigger-relay — Exception hierarchy.

All exceptions raised by the relay inherit from TriggerRelayError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    TriggerRelayError
    ├── TriggerValidationError
    ├── TriggerParseError
    ├── TriggerIOError
    ├── ExternalProcessError
    │   └── HandlerTimeoutError
    └── ConfigError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from trigger_relay.triggers.schema import FieldError


class TriggerRelayError(Exception):
    """Base exception for all trigger-relay errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Trigger artifacts
# ---------------------------------------------------------------------------


class TriggerValidationError(TriggerRelayError):
    """One or more trigger fields are malformed or out of range.

    ``errors`` is a list of :class:`FieldError` naming the wire key of each
    offending field.  Callers must not proceed with the trigger.
    """

    def __init__(self, errors: list[FieldError]) -> None:
        summary = "; ".join(f"{e.field}: {e.reason}" for e in errors)
        super().__init__(
            f"Trigger validation failed: {summary}",
            context={"errors": [e.as_dict() for e in errors]},
        )
        self.errors = errors

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]


class TriggerParseError(TriggerRelayError):
    """The artifact could not be decoded as a JSON object."""

    def __init__(self, message: str, raw_payload: str | None = None) -> None:
        super().__init__(message, context={"raw_payload": raw_payload})
        self.raw_payload = raw_payload


class TriggerIOError(TriggerRelayError):
    """Reading, writing, or moving an artifact failed on the filesystem."""

    def __init__(self, operation: str, path: str, reason: str) -> None:
        super().__init__(
            f"Cannot {operation} '{path}': {reason}",
            context={"operation": operation, "path": path, "reason": reason},
        )
        self.operation = operation
        self.path = path
        self.reason = reason


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ExternalProcessError(TriggerRelayError):
    """A collaborator command exited non-zero or did not finish in time."""

    def __init__(
        self,
        command: list[str],
        exit_code: int | None,
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        joined = " ".join(command)
        super().__init__(
            message or f"Command '{joined}' failed with exit code {exit_code}",
            context={"command": command, "exit_code": exit_code, "stderr": stderr[-2000:]},
        )
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class HandlerTimeoutError(ExternalProcessError):
    """A command or handler exceeded its time budget."""

    def __init__(self, command: list[str], timeout: float) -> None:
        super().__init__(
            command,
            exit_code=None,
            message=f"Command '{' '.join(command)}' timed out after {timeout}s",
        )
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(TriggerRelayError):
    """Configuration is missing or malformed.

    Recoverable: ``Settings.load`` logs a warning and falls back to defaults.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Invalid configuration in '{path}': {reason}",
            context={"path": path, "reason": reason},
        )
        self.path = path
        self.reason = reason

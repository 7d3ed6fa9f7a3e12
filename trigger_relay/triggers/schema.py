"""Trigger schema — parse, validate, and serialise TriggerMessage artifacts.

The declarative rules live on :class:`TriggerMessage`; this module only
converts between wire bytes, dicts, and typed messages and flattens Pydantic
errors into ``(field, reason)`` pairs keyed by wire name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from trigger_relay.exceptions import TriggerParseError, TriggerValidationError
from trigger_relay.triggers.models import TriggerMessage


@dataclass(frozen=True)
class FieldError:
    """A single rejected field, named by its wire key (e.g. ``commitHash``)."""

    field: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason}


def errors_from_pydantic(exc: ValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for err in exc.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", ())) or "$root"
        errors.append(FieldError(field=loc, reason=err.get("msg", "invalid")))
    return errors


def validate_fields(data: dict[str, Any]) -> list[FieldError]:
    """Return every violation in *data*; an empty list means valid."""
    try:
        TriggerMessage.model_validate(data)
    except ValidationError as exc:
        return errors_from_pydantic(exc)
    return []


def parse(raw: str | bytes | dict[str, Any], artifact_id: str | None = None) -> TriggerMessage:
    """Parse and validate *raw* into a :class:`TriggerMessage`.

    Args:
        raw:         JSON text, UTF-8 bytes, or an already-decoded dict.
        artifact_id: Identity derived from the artifact filename.

    Raises:
        TriggerParseError:      not JSON, or not a JSON object.
        TriggerValidationError: a field violates the schema.
    """
    data = _deserialise(raw)
    if artifact_id is not None:
        data = {**data, "id": artifact_id}
    try:
        return TriggerMessage.model_validate(data)
    except ValidationError as exc:
        raise TriggerValidationError(errors_from_pydantic(exc)) from exc


def serialize(message: TriggerMessage) -> str:
    """Render *message* as the JSON text stored in an artifact."""
    return message.model_dump_json(by_alias=True, indent=2)


def _deserialise(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise TriggerParseError(f"Artifact is not UTF-8: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TriggerParseError(f"Invalid JSON: {exc}", raw_payload=raw[:500]) from exc

    if not isinstance(data, dict):
        raise TriggerParseError(
            f"Expected a JSON object at the top level, got {type(data).__name__}.",
            raw_payload=str(raw)[:500],
        )
    return data

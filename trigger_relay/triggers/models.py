"""Trigger data models.

All shapes crossing the trigger directory are declared here and validated
through Pydantic v2.  Do not add business logic here — only data shapes and
their invariants.

Key classes
-----------
TriggerAction       — what the consumer should do with the artifact
TriggerPriority     — urgency classified from the commit message
TriggerSource       — which machine produced the artifact
TimezoneTag         — short timezone label stored next to the timestamp
TriggerLifecycle    — Created → Detected → Validated → Dispatched → Archived
TriggerMetadata     — generator identity, template, schema version
TriggerMessage      — the persisted unit of work (immutable)
HandlerResult       — outcome of one dispatch
ArchiveRecord       — terminal record written once per artifact

Wire format
-----------
Artifacts are JSON objects with camelCase keys::

    {
        "action": "analyze_test_results",
        "commitHash": "a1b2c3d",
        "commitMessage": "Test results from nightly run",
        "timestamp": "2024-05-02T14:03:11.120000",
        "timezone": "ET",
        "filesToCheck": ["test-results/**/*.json"],
        "priority": "normal",
        "source": "test_computer",
        "customData": null,
        "metadata": {"generator": "trigger-relay", "template": "test-analysis",
                     "schemaVersion": "1.0", "generatedAt": "..."}
    }

The artifact ``id`` is derived from its filename and is never serialised.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "1.0"
COMMIT_HASH_PATTERN = r"^[a-fA-F0-9]{7,40}$"
MAX_COMMIT_MESSAGE_LEN = 500
MAX_CUSTOM_DATA_LEN = 1000

_WIRE = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TriggerAction(str, Enum):
    ANALYZE_TEST_RESULTS = "analyze_test_results"
    DEPLOY_FIXES = "deploy_fixes"
    RUN_TESTS = "run_tests"
    CUSTOM = "custom"


class TriggerPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class TriggerSource(str, Enum):
    TEST_COMPUTER = "test_computer"
    DEV_COMPUTER = "dev_computer"
    AUTOMATED = "automated"


class TimezoneTag(str, Enum):
    """Zone of the wall-clock ``timestamp`` it is stored beside."""

    ET = "ET"
    CT = "CT"
    MT = "MT"
    PT = "PT"
    UTC = "UTC"

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(_ZONE_NAMES[self.value])


_ZONE_NAMES = {
    "ET": "America/New_York",
    "CT": "America/Chicago",
    "MT": "America/Denver",
    "PT": "America/Los_Angeles",
    "UTC": "UTC",
}


class TriggerLifecycle(str, Enum):
    """Lifecycle of one artifact.

    State machine::

        CREATED → DETECTED → VALIDATED → DISPATCHED → ARCHIVED
                                                    → ERROR_ARCHIVED
                           → VALIDATION_FAILED → ERROR_ARCHIVED

    ARCHIVED and ERROR_ARCHIVED are terminal.
    """

    CREATED = "created"
    DETECTED = "detected"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    DISPATCHED = "dispatched"
    ARCHIVED = "archived"
    ERROR_ARCHIVED = "error_archived"


class ArchiveOutcome(str, Enum):
    ARCHIVED = "archived"
    ERROR_ARCHIVED = "error-archived"


class HandlerStatus(str, Enum):
    """How a handler finished.

    ``not_implemented`` means nothing ran; ``no_results`` means the handler
    ran and found nothing to report.
    """

    COMPLETED = "completed"
    NO_RESULTS = "no_results"
    NOT_IMPLEMENTED = "not_implemented"
    FAILED = "failed"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# TriggerMessage
# ---------------------------------------------------------------------------

GlobPattern = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class TriggerMetadata(BaseModel):
    model_config = _WIRE

    generator: str = "trigger-relay"
    template: str | None = None
    schema_version: str = SCHEMA_VERSION
    generated_at: datetime = Field(default_factory=datetime.now)


class TriggerMessage(BaseModel):
    """One unit of work.  Frozen: replace or delete, never edit."""

    model_config = _WIRE

    id: str | None = Field(default=None, exclude=True)
    action: TriggerAction
    commit_hash: str = Field(pattern=COMMIT_HASH_PATTERN)
    commit_message: str = Field(max_length=MAX_COMMIT_MESSAGE_LEN)
    timestamp: datetime
    timezone: TimezoneTag
    files_to_check: tuple[GlobPattern, ...] = Field(min_length=1)
    priority: TriggerPriority = TriggerPriority.NORMAL
    source: TriggerSource = TriggerSource.AUTOMATED
    custom_data: str | None = Field(default=None, max_length=MAX_CUSTOM_DATA_LEN)
    metadata: TriggerMetadata = Field(default_factory=TriggerMetadata)

    @property
    def short_hash(self) -> str:
        return self.commit_hash[:7]


# ---------------------------------------------------------------------------
# Dispatch + archive records
# ---------------------------------------------------------------------------


class HandlerResult(BaseModel):
    model_config = _WIRE

    status: HandlerStatus
    detail: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == HandlerStatus.COMPLETED

    @classmethod
    def completed(cls, detail: str = "", **data: Any) -> "HandlerResult":
        return cls(status=HandlerStatus.COMPLETED, detail=detail, data=data)

    @classmethod
    def failed(cls, detail: str, **data: Any) -> "HandlerResult":
        return cls(status=HandlerStatus.FAILED, detail=detail, data=data)


class ArchiveRecord(BaseModel):
    """Terminal record for one artifact, written once beside the archived file."""

    model_config = _WIRE

    trigger_id: str
    artifact_name: str
    outcome: ArchiveOutcome
    processed_at: datetime = Field(default_factory=datetime.now)
    message: TriggerMessage | None = None
    result: HandlerResult | None = None
    errors: list[dict[str, str]] = Field(default_factory=list)

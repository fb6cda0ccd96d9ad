"""Pydantic schemas for the record synchronization pipeline.

Defines all structured types flowing through the pipeline:
- Enums: EntityType, Region, SyncStatus, TargetEntity, DataType, AuditStatus,
  ResolutionOutcome, RecordState
- Configuration: Credentials, SyncDefinition, FieldMapping and their
  Create/Update payloads for the configuration write surface
- Pipeline: SourceRecord, Resolution, DeliveryResponse, Classification
- Audit: AuditEntry, AuditWriteResult, AuditRecord, AuditLogFilter
- Dispatch: RecordOutcome, DispatchSummary
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class EntityType(str, Enum):
    """Source entity types with a dedicated audit reference column."""

    LEAD = "Lead"
    CONTACT = "Contact"
    ACCOUNT = "Account"
    OPPORTUNITY = "Opportunity"


class Region(str, Enum):
    """Engagement platform data-center regions."""

    IN = "IN"
    US = "US"
    EU = "EU"


class SyncStatus(str, Enum):
    """Status gate on a sync definition."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TargetEntity(str, Enum):
    """Engagement platform record kinds a definition can target."""

    PROFILE = "profile"
    EVENT = "event"


class DataType(str, Enum):
    """Declared data type of a mapped field (informational)."""

    TEXT = "Text"
    NUMBER = "Number"
    DATE = "Date"
    BOOLEAN = "Boolean"


class AuditStatus(str, Enum):
    """Resolved status written to the audit log."""

    SUCCESS = "Success"
    FAILED = "Failed"


class ResolutionOutcome(str, Enum):
    """What the mapping resolver decided for one record."""

    MAPPED = "mapped"
    SKIP = "skip"
    FAILED = "failed"


class RecordState(str, Enum):
    """Per-record dispatch state machine.

    Pending -> {Skipped | Failed | Dispatched} -> {Success | Failed}
    """

    PENDING = "pending"
    SKIPPED = "skipped"
    DISPATCHED = "dispatched"
    SUCCESS = "success"
    FAILED = "failed"


DEFAULT_SYNC_TYPE = "crm_to_engage"
MANDATORY_TARGET_FIELD = "customer_id"


# ── Credentials ─────────────────────────────────────────────────────────────


class Credentials(BaseModel):
    """Engagement platform connection settings."""

    id: str
    name: str
    developer_name: str | None = None
    api_base_url: str | None = None
    account_id: str
    passcode: str = Field(repr=False)
    region: Region | None = None
    is_active: bool = True

    def is_complete(self) -> bool:
        """True when every field needed to build a request is non-empty."""
        has_endpoint = bool(self.region) or bool((self.api_base_url or "").strip())
        return bool(self.account_id.strip()) and bool(self.passcode.strip()) and has_endpoint


class CredentialsCreate(BaseModel):
    """Schema for creating a credential set."""

    name: str
    developer_name: str | None = None
    api_base_url: str | None = None
    account_id: str
    passcode: str = Field(repr=False)
    region: Region | None = None
    is_active: bool = True


class CredentialsUpdate(BaseModel):
    """Schema for updating a credential set (all fields optional)."""

    name: str | None = None
    developer_name: str | None = None
    api_base_url: str | None = None
    account_id: str | None = None
    passcode: str | None = Field(default=None, repr=False)
    region: Region | None = None
    is_active: bool | None = None


# ── Sync Definitions ────────────────────────────────────────────────────────


class SyncDefinition(BaseModel):
    """Declares that one source entity type is mirrored to the platform."""

    id: str
    name: str
    sync_type: str = DEFAULT_SYNC_TYPE
    source_entity: str
    target_entity: TargetEntity = TargetEntity.PROFILE
    status: SyncStatus = SyncStatus.INACTIVE
    connection_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SyncStatus.ACTIVE


class SyncDefinitionCreate(BaseModel):
    """Schema for creating a sync definition. New definitions start Active."""

    name: str
    sync_type: str = DEFAULT_SYNC_TYPE
    source_entity: str
    target_entity: TargetEntity = TargetEntity.PROFILE
    status: SyncStatus = SyncStatus.ACTIVE
    connection_id: str | None = None


class SyncDefinitionUpdate(BaseModel):
    """Schema for updating a sync definition (all fields optional)."""

    name: str | None = None
    sync_type: str | None = None
    source_entity: str | None = None
    target_entity: TargetEntity | None = None
    status: SyncStatus | None = None


# ── Field Mappings ──────────────────────────────────────────────────────────


class FieldMapping(BaseModel):
    """One rule translating a source field to a target field."""

    id: str
    sync_definition_id: str
    target_field: str
    source_field: str
    data_type: DataType = DataType.TEXT
    is_mandatory: bool = False
    position: int = 0


class FieldMappingCreate(BaseModel):
    """One entry of a mapping set submitted for atomic replacement."""

    target_field: str
    source_field: str
    data_type: DataType = DataType.TEXT
    is_mandatory: bool = False


# ── Pipeline ────────────────────────────────────────────────────────────────


class SourceRecord(BaseModel):
    """A changed business record handed to the pipeline. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    entity_type: str
    fields: dict[str, Any] = Field(default_factory=dict)


class Resolution(BaseModel):
    """Mapping resolver result: a mapped payload, a skip, or a failure."""

    outcome: ResolutionOutcome
    payload: dict[str, Any] | None = None
    credentials: Credentials | None = None
    sync_definition_id: str | None = None
    reason: str | None = None

    @classmethod
    def skip(cls, reason: str) -> Resolution:
        return cls(outcome=ResolutionOutcome.SKIP, reason=reason)

    @classmethod
    def failed(cls, reason: str, sync_definition_id: str | None = None) -> Resolution:
        return cls(
            outcome=ResolutionOutcome.FAILED,
            reason=reason,
            sync_definition_id=sync_definition_id,
        )

    @classmethod
    def mapped(
        cls,
        payload: dict[str, Any],
        credentials: Credentials,
        sync_definition_id: str,
    ) -> Resolution:
        return cls(
            outcome=ResolutionOutcome.MAPPED,
            payload=payload,
            credentials=credentials,
            sync_definition_id=sync_definition_id,
        )


class DeliveryResponse(BaseModel):
    """Raw HTTP response from the engagement platform."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: str = ""


class Classification(BaseModel):
    """Outcome classifier verdict for one delivery attempt."""

    model_config = ConfigDict(frozen=True)

    status: AuditStatus
    diagnostic: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == AuditStatus.SUCCESS


# ── Audit ───────────────────────────────────────────────────────────────────


class AuditEntry(BaseModel):
    """One audit row ready to be appended to the sink."""

    status: AuditStatus
    response: str = ""
    entity_type: str | None = None
    references: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class AuditWriteResult(BaseModel):
    """Result of an audit write. Callers are free to discard it."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> AuditWriteResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> AuditWriteResult:
        return cls(ok=False, error=error)


class AuditRecord(BaseModel):
    """Persisted audit row as read back by the event log queries."""

    id: str
    status: AuditStatus
    response: str = ""
    entity_type: str | None = None
    lead_ref: str | None = None
    contact_ref: str | None = None
    account_ref: str | None = None
    opportunity_ref: str | None = None
    created_at: datetime | None = None


class AuditLogFilter(BaseModel):
    """Event log query filters."""

    status: AuditStatus | None = None
    days: int | None = Field(default=7, ge=1)
    limit: int = Field(default=50, ge=1, le=500)


# ── Dispatch ────────────────────────────────────────────────────────────────


class RecordOutcome(BaseModel):
    """Terminal state of one record within a dispatch batch."""

    record_id: str
    entity_type: str
    state: RecordState = RecordState.PENDING
    diagnostic: str | None = None


class DispatchSummary(BaseModel):
    """Summary of one batch run."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: list[RecordOutcome] = Field(default_factory=list)

    def add(self, outcome: RecordOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.state == RecordState.SUCCESS:
            self.succeeded += 1
        elif outcome.state == RecordState.SKIPPED:
            self.skipped += 1
        elif outcome.state == RecordState.FAILED:
            self.failed += 1

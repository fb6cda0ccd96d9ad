"""Sync persistence models -- configuration store and audit log tables.

Four SQLAlchemy models:
- CredentialModel: Engagement platform connection settings (one active row)
- SyncDefinitionModel: Per-entity-type sync definitions gated by status
- FieldMappingModel: Mapping rules owned by a sync definition
- AuditLogModel: Append-only per-attempt outcome rows

Column types are dialect-portable (Uuid, JSON, DateTime) so the same models
run on PostgreSQL in production and SQLite in tests. Referential integrity
between definitions and mappings is enforced by the repository.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.engage_sync.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialModel(Base):
    """Engagement platform credential set.

    At most one row is active; the repository deactivates the others when a
    row is saved as active.
    """

    __tablename__ = "engage_credentials"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    developer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_base_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    passcode: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )


class SyncDefinitionModel(Base):
    """Sync definition for one source entity type on one connection."""

    __tablename__ = "sync_definitions"
    __table_args__ = (
        Index("ix_sync_definitions_source_status", "source_entity", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(100), nullable=False)
    source_entity: Mapped[str] = mapped_column(String(100), nullable=False)
    target_entity: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="Active", nullable=False)
    connection_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )


class FieldMappingModel(Base):
    """Mapping rule: source field -> target field, with a mandatory flag."""

    __tablename__ = "field_mappings"
    __table_args__ = (
        Index("ix_field_mappings_sync_position", "sync_definition_id", "position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sync_definition_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    target_field: Mapped[str] = mapped_column(String(255), nullable=False)
    source_field: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(20), default="Text", nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class AuditLogModel(Base):
    """Append-only audit row for one dispatch attempt.

    The *_ref columns link the row to the originating record; entity types
    without a column carry the record id inside ``response`` instead.
    """

    __tablename__ = "sync_event_logs"
    __table_args__ = (
        Index("ix_sync_event_logs_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    response: Mapped[str] = mapped_column(Text, default="", nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lead_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    opportunity_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

"""Sync repositories -- SQLAlchemy implementations of the store and sink contracts.

SyncConfigRepository implements the ConfigurationStore read contract used by
the pipeline, plus the write contract used by the configuration surface
(credentials, sync definitions, atomic field-mapping replacement).

AuditLogRepository implements the AuditSink append contract plus the event
log queries (filtered listing and single-entry lookup).

Both take an async_sessionmaker. Host permission checks are injected as
async callables; when none is given, access is allowed.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.engage_sync.sync.errors import ConfigNotFoundError, ConfigValidationError
from src.engage_sync.sync.models import (
    AuditLogModel,
    CredentialModel,
    FieldMappingModel,
    SyncDefinitionModel,
)
from src.engage_sync.sync.schemas import (
    MANDATORY_TARGET_FIELD,
    AuditEntry,
    AuditLogFilter,
    AuditRecord,
    AuditStatus,
    Credentials,
    CredentialsCreate,
    CredentialsUpdate,
    DataType,
    FieldMapping,
    FieldMappingCreate,
    Region,
    SyncDefinition,
    SyncDefinitionCreate,
    SyncDefinitionUpdate,
    SyncStatus,
    TargetEntity,
)
from src.engage_sync.sync.store import AuditSink, ConfigurationStore

logger = structlog.get_logger(__name__)

PermissionCheck = Callable[[], Awaitable[bool]]


# ── Serialization Helpers ───────────────────────────────────────────────────


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def _model_to_credentials(model: CredentialModel) -> Credentials:
    """Convert CredentialModel to Credentials schema."""
    return Credentials(
        id=str(model.id),
        name=model.name,
        developer_name=model.developer_name,
        api_base_url=model.api_base_url,
        account_id=model.account_id,
        passcode=model.passcode,
        region=Region(model.region) if model.region else None,
        is_active=model.is_active,
    )


def _model_to_definition(model: SyncDefinitionModel) -> SyncDefinition:
    """Convert SyncDefinitionModel to SyncDefinition schema."""
    return SyncDefinition(
        id=str(model.id),
        name=model.name,
        sync_type=model.sync_type,
        source_entity=model.source_entity,
        target_entity=TargetEntity(model.target_entity),
        status=SyncStatus(model.status),
        connection_id=str(model.connection_id) if model.connection_id else None,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_mapping(model: FieldMappingModel) -> FieldMapping:
    """Convert FieldMappingModel to FieldMapping schema."""
    return FieldMapping(
        id=str(model.id),
        sync_definition_id=str(model.sync_definition_id),
        target_field=model.target_field,
        source_field=model.source_field,
        data_type=DataType(model.data_type),
        is_mandatory=model.is_mandatory,
        position=model.position,
    )


def _model_to_audit(model: AuditLogModel) -> AuditRecord:
    """Convert AuditLogModel to AuditRecord schema."""
    return AuditRecord(
        id=str(model.id),
        status=AuditStatus(model.status),
        response=model.response or "",
        entity_type=model.entity_type,
        lead_ref=model.lead_ref,
        contact_ref=model.contact_ref,
        account_ref=model.account_ref,
        opportunity_ref=model.opportunity_ref,
        created_at=model.created_at,
    )


# ── Validation ──────────────────────────────────────────────────────────────


def _validate_credentials(
    name: str, account_id: str, passcode: str, region: Region | None, api_base_url: str | None
) -> None:
    missing = [
        label
        for label, value in (("name", name), ("account_id", account_id), ("passcode", passcode))
        if not (value or "").strip()
    ]
    if missing:
        raise ConfigValidationError(f"Missing required credential fields: {', '.join(missing)}")
    if region is None and not (api_base_url or "").strip():
        raise ConfigValidationError("Either a region or an API base URL is required")


_NULLABLE_CREDENTIAL_FIELDS = frozenset({"developer_name", "api_base_url", "region"})


def _explicit_changes(
    data: CredentialsUpdate | SyncDefinitionUpdate, nullable: frozenset[str] = frozenset()
) -> dict:
    """Fields set on an update payload; None only counts for nullable columns."""
    return {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key in nullable
    }


def validate_mapping_set(mappings: Sequence[FieldMappingCreate]) -> None:
    """Check a mapping set before it replaces the stored one.

    Raises:
        ConfigValidationError: On blank names, a mandatory count other than
            one, a mandatory mapping not targeting the identifier field, or
            duplicate target names (case-insensitive).
    """
    seen: set[str] = set()
    mandatory = []

    for index, mapping in enumerate(mappings):
        target = mapping.target_field.strip()
        source = mapping.source_field.strip()
        if not target or not source:
            raise ConfigValidationError(
                f"Mapping #{index + 1} needs both a target and a source field"
            )

        key = target.lower()
        if key in seen:
            raise ConfigValidationError(
                f"Duplicate target field name '{target}' is not allowed"
            )
        seen.add(key)

        if mapping.is_mandatory:
            mandatory.append(mapping)

    if len(mandatory) != 1:
        raise ConfigValidationError(
            f"Exactly one mandatory mapping is required, got {len(mandatory)}"
        )
    if mandatory[0].target_field.strip().lower() != MANDATORY_TARGET_FIELD:
        raise ConfigValidationError(
            f"The mandatory mapping must target '{MANDATORY_TARGET_FIELD}'"
        )


async def _check_permission(check: PermissionCheck | None, event: str) -> bool:
    if check is None:
        return True
    try:
        return bool(await check())
    except Exception:
        logger.warning(event, exc_info=True)
        return False


# ── Configuration Store ─────────────────────────────────────────────────────


class SyncConfigRepository(ConfigurationStore):
    """Async configuration store backed by SQLAlchemy.

    Read methods never raise for missing data -- they return None or an
    empty list. Write methods raise ConfigValidationError for invalid input;
    every write runs in a single transaction.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
        read_permission: Optional async host check for read access.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        read_permission: PermissionCheck | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._read_permission = read_permission

    # ── Read contract ───────────────────────────────────────────────────────

    async def is_accessible(self) -> bool:
        return await _check_permission(self._read_permission, "config_store.permission_check_failed")

    async def get_active_credentials(self) -> Credentials | None:
        async with self._session_factory() as session:
            stmt = (
                select(CredentialModel)
                .where(CredentialModel.is_active.is_(True))
                .order_by(CredentialModel.created_at.desc())
            )
            models = (await session.execute(stmt)).scalars().all()
            if not models:
                return None
            if len(models) > 1:
                logger.warning(
                    "config_store.multiple_active_credentials",
                    count=len(models),
                    chosen=str(models[0].id),
                )
            return _model_to_credentials(models[0])

    async def get_credentials(self, connection_id: str) -> Credentials | None:
        conn_uuid = _parse_uuid(connection_id)
        if conn_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(CredentialModel, conn_uuid)
            return _model_to_credentials(model) if model else None

    async def get_active_sync_definition(
        self, entity_type: str, connection_id: str | None = None
    ) -> SyncDefinition | None:
        """Return the Active definition for an entity type.

        With a connection id, only that connection's definitions qualify.
        Without one, only unbound definitions and those bound to the active
        credential set qualify.
        """
        stmt = select(SyncDefinitionModel).where(
            SyncDefinitionModel.source_entity == entity_type,
            SyncDefinitionModel.status == SyncStatus.ACTIVE.value,
        )
        if connection_id is not None:
            conn_uuid = _parse_uuid(connection_id)
            if conn_uuid is None:
                return None
            stmt = stmt.where(SyncDefinitionModel.connection_id == conn_uuid)
        else:
            active_ids = select(CredentialModel.id).where(CredentialModel.is_active.is_(True))
            stmt = stmt.where(
                or_(
                    SyncDefinitionModel.connection_id.is_(None),
                    SyncDefinitionModel.connection_id.in_(active_ids),
                )
            )
        stmt = stmt.order_by(SyncDefinitionModel.created_at.desc())

        async with self._session_factory() as session:
            models = (await session.execute(stmt)).scalars().all()
            if not models:
                return None
            if len(models) > 1:
                logger.warning(
                    "config_store.multiple_active_definitions",
                    entity_type=entity_type,
                    connection_id=connection_id,
                    count=len(models),
                )
            return _model_to_definition(models[0])

    async def get_field_mappings(self, sync_definition_id: str) -> list[FieldMapping]:
        sync_uuid = _parse_uuid(sync_definition_id)
        if sync_uuid is None:
            return []
        async with self._session_factory() as session:
            stmt = (
                select(FieldMappingModel)
                .where(FieldMappingModel.sync_definition_id == sync_uuid)
                .order_by(FieldMappingModel.position)
            )
            result = await session.execute(stmt)
            return [_model_to_mapping(m) for m in result.scalars().all()]

    # ── Credentials ─────────────────────────────────────────────────────────

    async def list_credentials(self) -> list[Credentials]:
        async with self._session_factory() as session:
            stmt = select(CredentialModel).order_by(CredentialModel.name)
            result = await session.execute(stmt)
            return [_model_to_credentials(m) for m in result.scalars().all()]

    async def save_credentials(self, data: CredentialsCreate) -> Credentials:
        """Create a credential set.

        Saving an active set deactivates every other set in the same
        transaction, so at most one set is ever active.

        Raises:
            ConfigValidationError: If a mandatory field is blank.
        """
        _validate_credentials(
            data.name, data.account_id, data.passcode, data.region, data.api_base_url
        )
        async with self._session_factory() as session:
            async with session.begin():
                if data.is_active:
                    await session.execute(
                        update(CredentialModel).values(is_active=False)
                    )
                model = CredentialModel(
                    name=data.name.strip(),
                    developer_name=data.developer_name or data.name.strip(),
                    api_base_url=data.api_base_url,
                    account_id=data.account_id.strip(),
                    passcode=data.passcode.strip(),
                    region=data.region.value if data.region else None,
                    is_active=data.is_active,
                )
                session.add(model)
                await session.flush()
            logger.info("config_store.credentials_saved", credentials_id=str(model.id), name=model.name)
            return _model_to_credentials(model)

    async def update_credentials(
        self, credentials_id: str, data: CredentialsUpdate
    ) -> Credentials:
        """Update a credential set; activating it deactivates the others.

        An explicit None clears an optional field and leaves a required one
        unchanged.

        Raises:
            ConfigNotFoundError: If the credential set does not exist.
            ConfigValidationError: If the result would be incomplete.
        """
        cred_uuid = _parse_uuid(credentials_id)
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(CredentialModel, cred_uuid) if cred_uuid else None
                if model is None:
                    raise ConfigNotFoundError(f"Credentials {credentials_id} not found")

                changes = _explicit_changes(data, nullable=_NULLABLE_CREDENTIAL_FIELDS)
                if "region" in changes:
                    region = changes.pop("region")
                    model.region = region.value if region else None
                for field_name, value in changes.items():
                    setattr(model, field_name, value)

                _validate_credentials(
                    model.name,
                    model.account_id,
                    model.passcode,
                    Region(model.region) if model.region else None,
                    model.api_base_url,
                )

                if data.is_active:
                    await session.execute(
                        update(CredentialModel)
                        .where(CredentialModel.id != model.id)
                        .values(is_active=False)
                    )
                await session.flush()
            logger.info("config_store.credentials_updated", credentials_id=credentials_id)
            return _model_to_credentials(model)

    async def delete_credentials(self, credentials_id: str) -> bool:
        """Delete a credential set with its sync definitions and their mappings.

        Returns:
            True if a credential set was deleted, False if none matched.
        """
        cred_uuid = _parse_uuid(credentials_id)
        if cred_uuid is None:
            return False
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(CredentialModel, cred_uuid)
                if model is None:
                    return False

                definition_ids = (
                    await session.execute(
                        select(SyncDefinitionModel.id).where(
                            SyncDefinitionModel.connection_id == cred_uuid
                        )
                    )
                ).scalars().all()
                if definition_ids:
                    await session.execute(
                        delete(FieldMappingModel).where(
                            FieldMappingModel.sync_definition_id.in_(definition_ids)
                        )
                    )
                    await session.execute(
                        delete(SyncDefinitionModel).where(
                            SyncDefinitionModel.id.in_(definition_ids)
                        )
                    )
                await session.delete(model)
        logger.info(
            "config_store.credentials_deleted",
            credentials_id=credentials_id,
            definitions_deleted=len(definition_ids),
        )
        return True

    # ── Sync Definitions ────────────────────────────────────────────────────

    async def _ensure_single_active(
        self,
        session: AsyncSession,
        source_entity: str,
        connection_id: uuid.UUID | None,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = select(SyncDefinitionModel.id).where(
            SyncDefinitionModel.source_entity == source_entity,
            SyncDefinitionModel.status == SyncStatus.ACTIVE.value,
        )
        if connection_id is None:
            stmt = stmt.where(SyncDefinitionModel.connection_id.is_(None))
        else:
            stmt = stmt.where(SyncDefinitionModel.connection_id == connection_id)
        if exclude_id is not None:
            stmt = stmt.where(SyncDefinitionModel.id != exclude_id)

        if (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None:
            raise ConfigValidationError(
                f"An active sync definition for '{source_entity}' already exists "
                "on this connection"
            )

    async def create_sync_definition(self, data: SyncDefinitionCreate) -> SyncDefinition:
        """Create a sync definition.

        Raises:
            ConfigValidationError: On blank name/source entity, an unknown
                connection, or a second active definition for the same
                source entity on the same connection.
        """
        if not data.name.strip() or not data.source_entity.strip():
            raise ConfigValidationError("Sync definition needs a name and a source entity")

        conn_uuid = _parse_uuid(data.connection_id)
        if data.connection_id is not None and conn_uuid is None:
            raise ConfigValidationError(f"Invalid connection id '{data.connection_id}'")

        async with self._session_factory() as session:
            async with session.begin():
                if conn_uuid is not None and await session.get(CredentialModel, conn_uuid) is None:
                    raise ConfigNotFoundError(f"Connection {data.connection_id} not found")
                if data.status == SyncStatus.ACTIVE:
                    await self._ensure_single_active(session, data.source_entity, conn_uuid)

                model = SyncDefinitionModel(
                    name=data.name.strip(),
                    sync_type=data.sync_type,
                    source_entity=data.source_entity.strip(),
                    target_entity=data.target_entity.value,
                    status=data.status.value,
                    connection_id=conn_uuid,
                )
                session.add(model)
                await session.flush()
            logger.info(
                "config_store.sync_definition_created",
                sync_definition_id=str(model.id),
                source_entity=model.source_entity,
            )
            return _model_to_definition(model)

    async def update_sync_definition(
        self, sync_definition_id: str, data: SyncDefinitionUpdate
    ) -> SyncDefinition:
        """Update a sync definition.

        Raises:
            ConfigNotFoundError: If the definition does not exist.
            ConfigValidationError: If the update would leave two active
                definitions for one source entity on one connection.
        """
        sync_uuid = _parse_uuid(sync_definition_id)
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(SyncDefinitionModel, sync_uuid) if sync_uuid else None
                if model is None:
                    raise ConfigNotFoundError(f"Sync definition {sync_definition_id} not found")

                changes = _explicit_changes(data)
                for field_name, value in changes.items():
                    if isinstance(value, (SyncStatus, TargetEntity)):
                        value = value.value
                    setattr(model, field_name, value)

                if model.status == SyncStatus.ACTIVE.value:
                    await self._ensure_single_active(
                        session, model.source_entity, model.connection_id, exclude_id=model.id
                    )
                await session.flush()
            logger.info(
                "config_store.sync_definition_updated",
                sync_definition_id=sync_definition_id,
                status=model.status,
            )
            return _model_to_definition(model)

    async def update_sync_status(
        self, sync_definition_id: str, status: SyncStatus
    ) -> SyncDefinition:
        """Activate or deactivate a sync definition."""
        return await self.update_sync_definition(
            sync_definition_id, SyncDefinitionUpdate(status=status)
        )

    async def delete_sync_definition(self, sync_definition_id: str) -> bool:
        """Delete a sync definition and its mappings."""
        sync_uuid = _parse_uuid(sync_definition_id)
        if sync_uuid is None:
            return False
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(SyncDefinitionModel, sync_uuid)
                if model is None:
                    return False
                await session.execute(
                    delete(FieldMappingModel).where(
                        FieldMappingModel.sync_definition_id == sync_uuid
                    )
                )
                await session.delete(model)
        logger.info("config_store.sync_definition_deleted", sync_definition_id=sync_definition_id)
        return True

    async def get_sync_definition(self, sync_definition_id: str) -> SyncDefinition | None:
        sync_uuid = _parse_uuid(sync_definition_id)
        if sync_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(SyncDefinitionModel, sync_uuid)
            return _model_to_definition(model) if model else None

    async def list_sync_definitions(
        self, connection_id: str | None = None
    ) -> list[SyncDefinition]:
        stmt = select(SyncDefinitionModel)
        if connection_id is not None:
            stmt = stmt.where(SyncDefinitionModel.connection_id == _parse_uuid(connection_id))
        stmt = stmt.order_by(SyncDefinitionModel.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_model_to_definition(m) for m in result.scalars().all()]

    # ── Field Mappings ──────────────────────────────────────────────────────

    async def replace_field_mappings(
        self, sync_definition_id: str, mappings: Sequence[FieldMappingCreate]
    ) -> list[FieldMapping]:
        """Atomically replace the mapping set of a sync definition.

        Deletes every existing mapping and inserts the new set inside one
        transaction. Validation runs after the delete, so a rejected set
        rolls the delete back and the previous mappings survive.

        Raises:
            ConfigNotFoundError: If the definition does not exist.
            ConfigValidationError: If the new set is invalid.
        """
        sync_uuid = _parse_uuid(sync_definition_id)
        async with self._session_factory() as session:
            async with session.begin():
                definition = (
                    await session.get(SyncDefinitionModel, sync_uuid) if sync_uuid else None
                )
                if definition is None:
                    raise ConfigNotFoundError(f"Sync definition {sync_definition_id} not found")

                await session.execute(
                    delete(FieldMappingModel).where(
                        FieldMappingModel.sync_definition_id == sync_uuid
                    )
                )

                validate_mapping_set(mappings)

                models = [
                    FieldMappingModel(
                        sync_definition_id=sync_uuid,
                        target_field=m.target_field.strip(),
                        source_field=m.source_field.strip(),
                        data_type=m.data_type.value,
                        is_mandatory=m.is_mandatory,
                        position=position,
                    )
                    for position, m in enumerate(mappings)
                ]
                session.add_all(models)
                await session.flush()
            logger.info(
                "config_store.field_mappings_replaced",
                sync_definition_id=sync_definition_id,
                count=len(models),
            )
            return [_model_to_mapping(m) for m in models]


# ── Audit Sink ──────────────────────────────────────────────────────────────


class AuditLogRepository(AuditSink):
    """Append-only audit log backed by SQLAlchemy, plus event log queries.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
        create_permission: Optional async host check for create access.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        create_permission: PermissionCheck | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._create_permission = create_permission

    async def append(self, entry: AuditEntry) -> None:
        unknown = [name for name in entry.references if not self.has_field(name)]
        if unknown:
            raise ValueError(f"Unknown audit reference columns: {', '.join(unknown)}")

        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AuditLogModel(
                        status=entry.status.value,
                        response=entry.response,
                        entity_type=entry.entity_type,
                        created_at=entry.created_at,
                        **entry.references,
                    )
                )

    def has_field(self, field_name: str) -> bool:
        return field_name in AuditLogModel.__table__.columns

    async def can_create(self) -> bool:
        return await _check_permission(self._create_permission, "audit_log.permission_check_failed")

    async def list_entries(self, filters: AuditLogFilter | None = None) -> list[AuditRecord]:
        """List audit rows, newest first.

        Args:
            filters: Status, look-back window in days (None = all time) and
                row limit. Defaults to the last 7 days, 50 rows.
        """
        filters = filters or AuditLogFilter()
        stmt = select(AuditLogModel)
        if filters.status is not None:
            stmt = stmt.where(AuditLogModel.status == filters.status.value)
        if filters.days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=filters.days)
            stmt = stmt.where(AuditLogModel.created_at >= cutoff)
        stmt = stmt.order_by(AuditLogModel.created_at.desc()).limit(filters.limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_model_to_audit(m) for m in result.scalars().all()]

    async def get_entry(self, entry_id: str) -> AuditRecord | None:
        entry_uuid = _parse_uuid(entry_id)
        if entry_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(AuditLogModel, entry_uuid)
            return _model_to_audit(model) if model else None

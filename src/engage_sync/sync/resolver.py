"""Mapping resolver -- decides whether a record syncs and builds its mapped payload.

Precondition checks run in order and short-circuit to a Skip on the first
failure:
1. The configuration store is readable.
2. An Active sync definition exists for the record's entity type on the
   given connection, or (with no connection) unbound or bound to the
   active credential set.
3. Credentials resolve and are complete. Without a connection, only the
   active credential set is consulted.

Mapping then reads each rule's source field from the record. A missing
mandatory value fails the whole resolution; missing optional values are
omitted. Declared data types are informational; values pass through as-is.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.engage_sync.sync.errors import ConfigurationUnavailable, MappingValidationError
from src.engage_sync.sync.schemas import (
    Credentials,
    FieldMapping,
    Resolution,
    SourceRecord,
    SyncDefinition,
)
from src.engage_sync.sync.store import ConfigurationStore

logger = structlog.get_logger(__name__)

_MISSING = object()


def _lookup(fields: dict[str, Any], name: str) -> Any:
    """Find a source field by exact name, then case-insensitively."""
    if name in fields:
        return fields[name]
    lowered = name.lower()
    for key, value in fields.items():
        if key.lower() == lowered:
            return value
    return _MISSING


def _is_absent(value: Any, mandatory: bool) -> bool:
    if value is _MISSING or value is None:
        return True
    # A blank string cannot serve as the platform identifier
    return mandatory and isinstance(value, str) and not value.strip()


def apply_mappings(
    record: SourceRecord, mappings: list[FieldMapping]
) -> dict[str, Any]:
    """Apply mapping rules to a record's fields.

    Args:
        record: Source record (read only).
        mappings: Rules in position order.

    Returns:
        Dict of target field name -> source value.

    Raises:
        MappingValidationError: If a mandatory source field has no value.
    """
    payload: dict[str, Any] = {}
    for mapping in mappings:
        value = _lookup(record.fields, mapping.source_field)
        if _is_absent(value, mapping.is_mandatory):
            if mapping.is_mandatory:
                raise MappingValidationError(mapping.source_field, mapping.target_field)
            continue
        payload[mapping.target_field] = value
    return payload


class MappingResolver:
    """Resolves a source record against the configuration store.

    Args:
        store: Configuration store read contract.
    """

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    async def _credentials_for(
        self, definition: SyncDefinition, connection_id: str | None
    ) -> Credentials:
        if connection_id is not None:
            credentials = await self._store.get_credentials(
                definition.connection_id or connection_id
            )
        else:
            credentials = await self._store.get_active_credentials()
            # Without a connection, only the active set may send a bound definition
            if (
                credentials is not None
                and definition.connection_id is not None
                and definition.connection_id != credentials.id
            ):
                raise ConfigurationUnavailable(
                    "Sync definition belongs to a connection other than the active one"
                )
        if credentials is None or not credentials.is_complete():
            raise ConfigurationUnavailable("Credentials are missing or incomplete")
        return credentials

    async def _load_configuration(
        self, record: SourceRecord, connection_id: str | None
    ) -> tuple[SyncDefinition, Credentials, list[FieldMapping]]:
        """Run the precondition chain.

        Raises:
            ConfigurationUnavailable: On the first precondition that fails.
        """
        if not await self._store.is_accessible():
            raise ConfigurationUnavailable("Configuration store is not accessible")

        definition = await self._store.get_active_sync_definition(
            record.entity_type, connection_id
        )
        if definition is None:
            raise ConfigurationUnavailable(
                f"No active sync definition for entity type '{record.entity_type}'"
            )

        credentials = await self._credentials_for(definition, connection_id)
        mappings = await self._store.get_field_mappings(definition.id)
        return definition, credentials, mappings

    async def resolve(
        self, record: SourceRecord, connection_id: str | None = None
    ) -> Resolution:
        """Resolve one record to a mapped payload, a skip, or a failure.

        Never raises. Store errors while checking preconditions are treated
        as an unavailable configuration (skip).
        """
        log = logger.bind(record_id=record.id, entity_type=record.entity_type)

        try:
            definition, credentials, mappings = await self._load_configuration(
                record, connection_id
            )
        except ConfigurationUnavailable as exc:
            log.debug("resolver.skip", reason=str(exc), connection_id=connection_id)
            return Resolution.skip(str(exc))
        except Exception as exc:
            log.warning("resolver.skip_store_error", error=str(exc))
            return Resolution.skip(f"Configuration unavailable: {exc}")

        try:
            payload = apply_mappings(record, mappings)
        except MappingValidationError as exc:
            log.info(
                "resolver.mandatory_field_missing",
                source_field=exc.source_field,
                sync_definition_id=definition.id,
            )
            return Resolution.failed(str(exc), sync_definition_id=definition.id)

        log.debug("resolver.mapped", field_count=len(payload), sync_definition_id=definition.id)
        return Resolution.mapped(payload, credentials, definition.id)

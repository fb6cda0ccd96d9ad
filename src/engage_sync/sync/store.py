"""Abstract contracts the pipeline consumes -- configuration store and audit sink.

The pipeline only reads from a ConfigurationStore and only appends to an
AuditSink. SyncConfigRepository and AuditLogRepository (repository.py) are
the SQLAlchemy implementations; hosts may plug in their own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.engage_sync.sync.schemas import (
    AuditEntry,
    Credentials,
    FieldMapping,
    SyncDefinition,
)


class ConfigurationStore(ABC):
    """Read contract for sync configuration.

    Methods:
        is_accessible: Host permission check for reading configuration.
        get_active_credentials: The single active credential set, if any.
        get_credentials: Credential set by connection id.
        get_active_sync_definition: Active definition for an entity type.
        get_field_mappings: Ordered mapping rules for a definition.
    """

    @abstractmethod
    async def is_accessible(self) -> bool:
        """Return True if the caller may read sync configuration."""
        ...

    @abstractmethod
    async def get_active_credentials(self) -> Credentials | None:
        """Return the active credential set, or None."""
        ...

    @abstractmethod
    async def get_credentials(self, connection_id: str) -> Credentials | None:
        """Return the credential set for a connection id, or None."""
        ...

    @abstractmethod
    async def get_active_sync_definition(
        self, entity_type: str, connection_id: str | None = None
    ) -> SyncDefinition | None:
        """Return the Active definition for an entity type, or None.

        With a connection id, only definitions bound to that connection
        qualify. Without one, only unbound definitions and definitions bound
        to the active credential set qualify.
        """
        ...

    @abstractmethod
    async def get_field_mappings(self, sync_definition_id: str) -> list[FieldMapping]:
        """Return the mapping rules for a definition, in position order."""
        ...


class AuditSink(ABC):
    """Append-only contract for per-attempt audit rows."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        """Persist one audit row. May raise; the audit writer absorbs it."""
        ...

    @abstractmethod
    def has_field(self, field_name: str) -> bool:
        """Return True if the audit schema has a column with this name."""
        ...

    @abstractmethod
    async def can_create(self) -> bool:
        """Host permission check for creating audit rows."""
        ...

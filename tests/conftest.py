"""Shared test fixtures for the sync pipeline.

Provides:
- InMemoryConfigStore / InMemoryAuditSink: test doubles for the store and sink contracts
- lead_store: store with active credentials and an Active Lead definition
  mapping customer_id <- Email (mandatory) and name <- Name
- session_factory: async_sessionmaker over an in-memory SQLite database
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.engage_sync.sync.models  # noqa: F401
from src.engage_sync.core.database import Base
from src.engage_sync.sync.schemas import (
    AuditEntry,
    Credentials,
    FieldMapping,
    Region,
    SyncDefinition,
    SyncStatus,
)
from src.engage_sync.sync.store import AuditSink, ConfigurationStore


# ── In-memory test doubles ───────────────────────────────────────────────────


class InMemoryConfigStore(ConfigurationStore):
    """In-memory test double for the configuration store read contract."""

    def __init__(self) -> None:
        self.accessible = True
        self.credentials: dict[str, Credentials] = {}
        self.definitions: list[SyncDefinition] = []
        self.mappings: dict[str, list[FieldMapping]] = {}

    async def is_accessible(self) -> bool:
        return self.accessible

    async def get_active_credentials(self) -> Credentials | None:
        for creds in self.credentials.values():
            if creds.is_active:
                return creds
        return None

    async def get_credentials(self, connection_id: str) -> Credentials | None:
        return self.credentials.get(connection_id)

    async def get_active_sync_definition(
        self, entity_type: str, connection_id: str | None = None
    ) -> SyncDefinition | None:
        for definition in self.definitions:
            if definition.source_entity != entity_type or not definition.is_active:
                continue
            if connection_id is not None:
                if definition.connection_id != connection_id:
                    continue
            elif definition.connection_id is not None:
                bound = self.credentials.get(definition.connection_id)
                if bound is None or not bound.is_active:
                    continue
            return definition
        return None

    async def get_field_mappings(self, sync_definition_id: str) -> list[FieldMapping]:
        return sorted(self.mappings.get(sync_definition_id, []), key=lambda m: m.position)

    def add_credentials(self, **overrides) -> Credentials:
        defaults = {
            "id": str(uuid.uuid4()),
            "name": "Production",
            "account_id": "TEST-ACC-123",
            "passcode": "secret-passcode",
            "region": Region.IN,
            "is_active": True,
        }
        defaults.update(overrides)
        creds = Credentials(**defaults)
        self.credentials[creds.id] = creds
        return creds

    def add_definition(
        self,
        entity_type: str = "Lead",
        mappings: list[tuple[str, str, bool]] | None = None,
        **overrides,
    ) -> SyncDefinition:
        """Add a definition with (target, source, mandatory) mapping tuples."""
        defaults = {
            "id": str(uuid.uuid4()),
            "name": f"{entity_type} to profile",
            "source_entity": entity_type,
            "status": SyncStatus.ACTIVE,
        }
        defaults.update(overrides)
        definition = SyncDefinition(**defaults)
        self.definitions.append(definition)
        self.mappings[definition.id] = [
            FieldMapping(
                id=str(uuid.uuid4()),
                sync_definition_id=definition.id,
                target_field=target,
                source_field=source,
                is_mandatory=mandatory,
                position=position,
            )
            for position, (target, source, mandatory) in enumerate(mappings or [])
        ]
        return definition


class InMemoryAuditSink(AuditSink):
    """In-memory test double for the audit sink."""

    def __init__(self, fields: set[str] | None = None) -> None:
        self.entries: list[AuditEntry] = []
        self.fields = (
            fields
            if fields is not None
            else {"lead_ref", "contact_ref", "account_ref", "opportunity_ref"}
        )
        self.allow_create = True
        self.fail_with: Exception | None = None

    async def append(self, entry: AuditEntry) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.entries.append(entry)

    def has_field(self, field_name: str) -> bool:
        return field_name in self.fields

    async def can_create(self) -> bool:
        return self.allow_create


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def config_store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def lead_store(config_store: InMemoryConfigStore) -> InMemoryConfigStore:
    """Store with active credentials and an Active Lead definition."""
    config_store.add_credentials()
    config_store.add_definition(
        "Lead",
        [("customer_id", "Email", True), ("name", "Name", False)],
    )
    return config_store


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with all sync tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()

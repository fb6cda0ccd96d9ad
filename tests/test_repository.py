"""Tests for SyncConfigRepository and AuditLogRepository against in-memory SQLite."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.engage_sync.sync.errors import ConfigNotFoundError, ConfigValidationError
from src.engage_sync.sync.repository import AuditLogRepository, SyncConfigRepository
from src.engage_sync.sync.schemas import (
    AuditEntry,
    AuditLogFilter,
    AuditStatus,
    CredentialsCreate,
    CredentialsUpdate,
    DataType,
    FieldMappingCreate,
    Region,
    SyncDefinitionCreate,
    SyncDefinitionUpdate,
    SyncStatus,
    TargetEntity,
)


def _make_credentials(**overrides) -> CredentialsCreate:
    defaults = {
        "name": "Production",
        "account_id": "TEST-ACC-123",
        "passcode": "secret-passcode",
        "region": Region.IN,
    }
    defaults.update(overrides)
    return CredentialsCreate(**defaults)


def _make_definition(**overrides) -> SyncDefinitionCreate:
    defaults = {"name": "Leads to profiles", "source_entity": "Lead"}
    defaults.update(overrides)
    return SyncDefinitionCreate(**defaults)


def _make_mappings() -> list[FieldMappingCreate]:
    return [
        FieldMappingCreate(target_field="customer_id", source_field="Email", is_mandatory=True),
        FieldMappingCreate(target_field="name", source_field="Name"),
        FieldMappingCreate(target_field="score", source_field="Score", data_type=DataType.NUMBER),
    ]


@pytest.fixture
def repo(session_factory) -> SyncConfigRepository:
    return SyncConfigRepository(session_factory)


@pytest.fixture
def audit_repo(session_factory) -> AuditLogRepository:
    return AuditLogRepository(session_factory)


# ── Credentials ──────────────────────────────────────────────────────────────


class TestCredentials:
    async def test_save_and_read_active(self, repo):
        saved = await repo.save_credentials(_make_credentials())

        active = await repo.get_active_credentials()
        assert active.id == saved.id
        assert active.region == Region.IN
        assert active.is_complete()

    async def test_saving_active_set_deactivates_others(self, repo):
        first = await repo.save_credentials(_make_credentials(name="First"))
        second = await repo.save_credentials(_make_credentials(name="Second"))

        active = await repo.get_active_credentials()
        assert active.id == second.id
        assert (await repo.get_credentials(first.id)).is_active is False

    async def test_saving_inactive_set_keeps_active_one(self, repo):
        first = await repo.save_credentials(_make_credentials(name="First"))
        await repo.save_credentials(_make_credentials(name="Backup", is_active=False))

        assert (await repo.get_active_credentials()).id == first.id

    async def test_no_credentials_returns_none(self, repo):
        assert await repo.get_active_credentials() is None

    @pytest.mark.parametrize(
        "overrides",
        [{"name": " "}, {"account_id": ""}, {"passcode": ""}, {"region": None}],
    )
    async def test_incomplete_credentials_rejected(self, repo, overrides):
        with pytest.raises(ConfigValidationError):
            await repo.save_credentials(_make_credentials(**overrides))

    async def test_explicit_url_replaces_region(self, repo):
        saved = await repo.save_credentials(
            _make_credentials(region=None, api_base_url="https://sk1.api.clevertap.com/1/upload")
        )
        assert saved.region is None
        assert saved.is_complete()

    async def test_update_activates_and_deactivates_others(self, repo):
        first = await repo.save_credentials(_make_credentials(name="First"))
        second = await repo.save_credentials(_make_credentials(name="Second"))

        updated = await repo.update_credentials(
            first.id, CredentialsUpdate(is_active=True, region=Region.EU)
        )

        assert updated.region == Region.EU
        assert (await repo.get_active_credentials()).id == first.id
        assert (await repo.get_credentials(second.id)).is_active is False

    async def test_update_ignores_none_for_required_fields(self, repo):
        saved = await repo.save_credentials(_make_credentials())

        updated = await repo.update_credentials(
            saved.id,
            CredentialsUpdate(account_id=None, passcode=None, is_active=None, name="Renamed"),
        )

        assert updated.name == "Renamed"
        assert updated.account_id == "TEST-ACC-123"
        assert updated.is_active is True

    async def test_update_clears_optional_fields(self, repo):
        saved = await repo.save_credentials(_make_credentials(developer_name="ops"))
        updated = await repo.update_credentials(saved.id, CredentialsUpdate(developer_name=None))
        assert updated.developer_name is None

    async def test_update_to_blank_account_rejected(self, repo):
        saved = await repo.save_credentials(_make_credentials())
        with pytest.raises(ConfigValidationError):
            await repo.update_credentials(saved.id, CredentialsUpdate(account_id=""))
        assert (await repo.get_credentials(saved.id)).account_id == "TEST-ACC-123"

    async def test_update_unknown_raises_not_found(self, repo):
        with pytest.raises(ConfigNotFoundError):
            await repo.update_credentials(str(uuid.uuid4()), CredentialsUpdate(name="x"))

    async def test_delete_cascades_to_definitions_and_mappings(self, repo):
        creds = await repo.save_credentials(_make_credentials())
        definition = await repo.create_sync_definition(_make_definition(connection_id=creds.id))
        await repo.replace_field_mappings(definition.id, _make_mappings())

        assert await repo.delete_credentials(creds.id) is True

        assert await repo.get_sync_definition(definition.id) is None
        assert await repo.get_field_mappings(definition.id) == []
        assert await repo.list_credentials() == []

    async def test_delete_unknown_returns_false(self, repo):
        assert await repo.delete_credentials(str(uuid.uuid4())) is False

    async def test_read_permission_check(self, session_factory):
        denied = SyncConfigRepository(session_factory, read_permission=AsyncMock(return_value=False))
        broken = SyncConfigRepository(
            session_factory, read_permission=AsyncMock(side_effect=RuntimeError("host"))
        )
        assert await SyncConfigRepository(session_factory).is_accessible() is True
        assert await denied.is_accessible() is False
        assert await broken.is_accessible() is False


# ── Sync Definitions ─────────────────────────────────────────────────────────


class TestSyncDefinitions:
    async def test_new_definition_starts_active(self, repo):
        definition = await repo.create_sync_definition(_make_definition())

        assert definition.status == SyncStatus.ACTIVE
        assert definition.target_entity == TargetEntity.PROFILE
        found = await repo.get_active_sync_definition("Lead")
        assert found.id == definition.id

    async def test_second_active_definition_rejected(self, repo):
        await repo.create_sync_definition(_make_definition())
        with pytest.raises(ConfigValidationError):
            await repo.create_sync_definition(_make_definition(name="Duplicate"))

    async def test_inactive_duplicate_allowed(self, repo):
        await repo.create_sync_definition(_make_definition())
        inactive = await repo.create_sync_definition(
            _make_definition(name="Draft", status=SyncStatus.INACTIVE)
        )
        assert inactive.status == SyncStatus.INACTIVE

    async def test_activating_conflicting_definition_rejected(self, repo):
        await repo.create_sync_definition(_make_definition())
        draft = await repo.create_sync_definition(
            _make_definition(name="Draft", status=SyncStatus.INACTIVE)
        )
        with pytest.raises(ConfigValidationError):
            await repo.update_sync_status(draft.id, SyncStatus.ACTIVE)

    async def test_same_entity_on_different_connections(self, repo):
        first = await repo.save_credentials(_make_credentials(name="First"))
        second = await repo.save_credentials(_make_credentials(name="Second", is_active=False))
        a = await repo.create_sync_definition(_make_definition(connection_id=first.id))
        b = await repo.create_sync_definition(_make_definition(connection_id=second.id))

        assert (await repo.get_active_sync_definition("Lead", first.id)).id == a.id
        assert (await repo.get_active_sync_definition("Lead", second.id)).id == b.id
        assert [d.id for d in await repo.list_sync_definitions(second.id)] == [b.id]

    async def test_lookup_without_connection_ignores_inactive_connections(self, repo):
        first = await repo.save_credentials(_make_credentials(name="First"))
        second = await repo.save_credentials(_make_credentials(name="Second", is_active=False))
        a = await repo.create_sync_definition(_make_definition(connection_id=first.id))
        await repo.create_sync_definition(_make_definition(connection_id=second.id))

        assert (await repo.get_active_sync_definition("Lead")).id == a.id

        await repo.update_credentials(second.id, CredentialsUpdate(is_active=True))
        assert (await repo.get_active_sync_definition("Lead")).connection_id == second.id

    async def test_unknown_connection_rejected(self, repo):
        with pytest.raises(ConfigNotFoundError):
            await repo.create_sync_definition(_make_definition(connection_id=str(uuid.uuid4())))

    async def test_deactivate_hides_definition(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        await repo.update_sync_status(definition.id, SyncStatus.INACTIVE)
        assert await repo.get_active_sync_definition("Lead") is None

    async def test_update_fields(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        updated = await repo.update_sync_definition(
            definition.id, SyncDefinitionUpdate(name="Renamed", target_entity=TargetEntity.EVENT)
        )
        assert updated.name == "Renamed"
        assert updated.target_entity == TargetEntity.EVENT

    async def test_update_ignores_none_fields(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        updated = await repo.update_sync_definition(
            definition.id, SyncDefinitionUpdate(name=None, source_entity=None, status=None)
        )
        assert updated.name == "Leads to profiles"
        assert updated.source_entity == "Lead"
        assert updated.status == SyncStatus.ACTIVE

    async def test_delete_removes_mappings(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        await repo.replace_field_mappings(definition.id, _make_mappings())

        assert await repo.delete_sync_definition(definition.id) is True
        assert await repo.get_field_mappings(definition.id) == []
        assert await repo.delete_sync_definition(definition.id) is False


# ── Field Mappings ───────────────────────────────────────────────────────────


class TestFieldMappings:
    async def test_replace_stores_in_order(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        await repo.replace_field_mappings(definition.id, _make_mappings())

        mappings = await repo.get_field_mappings(definition.id)
        assert [m.target_field for m in mappings] == ["customer_id", "name", "score"]
        assert [m.position for m in mappings] == [0, 1, 2]
        assert mappings[0].is_mandatory
        assert mappings[2].data_type == DataType.NUMBER

    async def test_replace_drops_previous_set(self, repo):
        definition = await repo.create_sync_definition(_make_definition())
        await repo.replace_field_mappings(definition.id, _make_mappings())
        await repo.replace_field_mappings(
            definition.id,
            [FieldMappingCreate(target_field="customer_id", source_field="Id", is_mandatory=True)],
        )

        mappings = await repo.get_field_mappings(definition.id)
        assert [(m.target_field, m.source_field) for m in mappings] == [("customer_id", "Id")]

    @pytest.mark.parametrize(
        "mappings",
        [
            [FieldMappingCreate(target_field="name", source_field="Name")],
            [
                FieldMappingCreate(target_field="customer_id", source_field="Email", is_mandatory=True),
                FieldMappingCreate(target_field="Customer_ID", source_field="Id"),
            ],
            [
                FieldMappingCreate(target_field="customer_id", source_field="Email", is_mandatory=True),
                FieldMappingCreate(target_field="phone", source_field="Phone", is_mandatory=True),
            ],
            [FieldMappingCreate(target_field="email", source_field="Email", is_mandatory=True)],
            [FieldMappingCreate(target_field="customer_id", source_field=" ", is_mandatory=True)],
        ],
        ids=["no-mandatory", "duplicate-target", "two-mandatory", "wrong-target", "blank-source"],
    )
    async def test_invalid_set_rolls_back_delete(self, repo, mappings):
        definition = await repo.create_sync_definition(_make_definition())
        await repo.replace_field_mappings(definition.id, _make_mappings())

        with pytest.raises(ConfigValidationError):
            await repo.replace_field_mappings(definition.id, mappings)

        kept = await repo.get_field_mappings(definition.id)
        assert [m.target_field for m in kept] == ["customer_id", "name", "score"]

    async def test_unknown_definition_raises_not_found(self, repo):
        with pytest.raises(ConfigNotFoundError):
            await repo.replace_field_mappings(str(uuid.uuid4()), _make_mappings())


# ── Audit Log ────────────────────────────────────────────────────────────────


class TestAuditLog:
    async def test_append_and_read_back(self, audit_repo):
        await audit_repo.append(
            AuditEntry(
                status=AuditStatus.SUCCESS,
                response="Response: ok\nRequest: {}",
                entity_type="Lead",
                references={"lead_ref": "00Q1"},
            )
        )

        entries = await audit_repo.list_entries()
        assert len(entries) == 1
        assert entries[0].lead_ref == "00Q1"
        assert entries[0].status == AuditStatus.SUCCESS
        assert (await audit_repo.get_entry(entries[0].id)).response == "Response: ok\nRequest: {}"

    def test_has_field_introspects_table(self, audit_repo):
        assert audit_repo.has_field("lead_ref")
        assert audit_repo.has_field("opportunity_ref")
        assert not audit_repo.has_field("case_ref")

    async def test_append_rejects_unknown_reference(self, audit_repo):
        with pytest.raises(ValueError):
            await audit_repo.append(
                AuditEntry(status=AuditStatus.FAILED, references={"case_ref": "500x"})
            )

    async def test_create_permission_check(self, session_factory):
        denied = AuditLogRepository(session_factory, create_permission=AsyncMock(return_value=False))
        assert await denied.can_create() is False
        assert await AuditLogRepository(session_factory).can_create() is True

    async def test_filters_by_status_window_and_limit(self, audit_repo):
        now = datetime.now(timezone.utc)
        for i in range(3):
            await audit_repo.append(
                AuditEntry(
                    status=AuditStatus.SUCCESS,
                    response=f"ok {i}",
                    created_at=now - timedelta(minutes=i),
                )
            )
        await audit_repo.append(
            AuditEntry(status=AuditStatus.FAILED, response="recent failure", created_at=now)
        )
        await audit_repo.append(
            AuditEntry(
                status=AuditStatus.FAILED,
                response="old failure",
                created_at=now - timedelta(days=10),
            )
        )

        failed = await audit_repo.list_entries(AuditLogFilter(status=AuditStatus.FAILED))
        assert [e.response for e in failed] == ["recent failure"]

        all_failed = await audit_repo.list_entries(
            AuditLogFilter(status=AuditStatus.FAILED, days=None)
        )
        assert [e.response for e in all_failed] == ["recent failure", "old failure"]

        newest_two = await audit_repo.list_entries(
            AuditLogFilter(status=AuditStatus.SUCCESS, limit=2)
        )
        assert [e.response for e in newest_two] == ["ok 0", "ok 1"]

    async def test_get_unknown_entry(self, audit_repo):
        assert await audit_repo.get_entry(str(uuid.uuid4())) is None
        assert await audit_repo.get_entry("not-a-uuid") is None

"""Initial sync tables: credentials, sync definitions, field mappings, event logs.

Revision ID: 001_initial_sync_tables
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "engage_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("developer_name", sa.String(255), nullable=True),
        sa.Column("api_base_url", sa.String(500), nullable=True),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("passcode", sa.String(255), nullable=False),
        sa.Column("region", sa.String(10), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "sync_definitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sync_type", sa.String(100), nullable=False),
        sa.Column("source_entity", sa.String(100), nullable=False),
        sa.Column("target_entity", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), server_default="Active", nullable=False),
        sa.Column("connection_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_sync_definitions_source_status",
        "sync_definitions",
        ["source_entity", "status"],
    )

    op.create_table(
        "field_mappings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("sync_definition_id", sa.Uuid(), nullable=False),
        sa.Column("target_field", sa.String(255), nullable=False),
        sa.Column("source_field", sa.String(255), nullable=False),
        sa.Column("data_type", sa.String(20), server_default="Text", nullable=False),
        sa.Column("is_mandatory", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("position", sa.Integer(), server_default="0", nullable=False),
    )
    op.create_index(
        "ix_field_mappings_sync_position",
        "field_mappings",
        ["sync_definition_id", "position"],
    )

    op.create_table(
        "sync_event_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("response", sa.Text(), server_default="", nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=True),
        sa.Column("lead_ref", sa.String(255), nullable=True),
        sa.Column("contact_ref", sa.String(255), nullable=True),
        sa.Column("account_ref", sa.String(255), nullable=True),
        sa.Column("opportunity_ref", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_sync_event_logs_status_created",
        "sync_event_logs",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_sync_event_logs_status_created", table_name="sync_event_logs")
    op.drop_table("sync_event_logs")
    op.drop_index("ix_field_mappings_sync_position", table_name="field_mappings")
    op.drop_table("field_mappings")
    op.drop_index("ix_sync_definitions_source_status", table_name="sync_definitions")
    op.drop_table("sync_definitions")
    op.drop_table("engage_credentials")

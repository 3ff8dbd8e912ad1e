"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-09-28 10:12:41.318204

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM = sa.String(length=40)


def _typed_value_columns() -> list[sa.Column[object]]:
    return [
        sa.Column("data_type", ENUM, nullable=False),
        sa.Column("string_value", sa.Text(), nullable=True),
        sa.Column("int_value", sa.BigInteger(), nullable=True),
        sa.Column("bool_value", sa.Boolean(), nullable=True),
        sa.Column("datetime_value", sa.DateTime(timezone=True), nullable=True),
        sa.Column("binary_value", sa.LargeBinary(), nullable=True),
        sa.Column("guid_value", sa.Uuid(), nullable=True),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("unresolved_reference_value", sa.Text(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "connected_system",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("document", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_connected_system")),
        sa.UniqueConstraint("name", name=op.f("uq_connected_system_connected_system_name")),
    )
    op.create_table(
        "metaverse_object_type",
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("document", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("name", name=op.f("pk_metaverse_object_type")),
    )
    op.create_table(
        "sync_rule",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("connected_system_id", sa.Uuid(), nullable=False),
        sa.Column("cs_object_type", sa.String(length=200), nullable=False),
        sa.Column("mv_object_type", sa.String(length=200), nullable=False),
        sa.Column("direction", ENUM, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("rule_order", sa.Integer(), nullable=False),
        sa.Column("document", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_sync_rule")),
    )
    op.create_index(
        op.f("ix_sync_rule_connected_system_id"), "sync_rule", ["connected_system_id"]
    )
    op.create_index("ix_sync_rule_lookup", "sync_rule", ["direction", "mv_object_type"])

    op.create_table(
        "metaverse_object",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("object_type", sa.String(length=200), nullable=False),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("origin", ENUM, nullable=False),
        sa.Column("built_in", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_connector_disconnected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deletion_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_metaverse_object")),
    )
    op.create_index(
        op.f("ix_metaverse_object_object_type"), "metaverse_object", ["object_type"]
    )

    op.create_table(
        "connected_system_object",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("connected_system_id", sa.Uuid(), nullable=False),
        sa.Column("object_type", sa.String(length=200), nullable=False),
        sa.Column("external_id", sa.String(length=400), nullable=True),
        sa.Column("secondary_external_id", sa.String(length=400), nullable=True),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("join_type", ENUM, nullable=False),
        sa.Column("metaverse_object_id", sa.Uuid(), nullable=True),
        sa.Column("date_joined", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_connected_system_object")),
    )
    op.create_index(
        op.f("ix_connected_system_object_metaverse_object_id"),
        "connected_system_object",
        ["metaverse_object_id"],
    )
    op.create_index(
        "ix_connected_system_object_external_id",
        "connected_system_object",
        ["connected_system_id", "external_id"],
    )
    op.create_index(
        "ix_connected_system_object_secondary_external_id",
        "connected_system_object",
        ["connected_system_id", "secondary_external_id"],
    )

    op.create_table(
        "attribute_value",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_kind", ENUM, nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("attribute", sa.String(length=200), nullable=False),
        *_typed_value_columns(),
        sa.Column("contributed_by_system_id", sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_attribute_value")),
    )
    op.create_index("ix_attribute_value_owner", "attribute_value", ["owner_kind", "owner_id"])
    op.create_index(
        "ix_attribute_value_attribute", "attribute_value", ["attribute", "string_value"]
    )

    op.create_table(
        "pending_export",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("connected_system_id", sa.Uuid(), nullable=False),
        sa.Column("connected_system_object_id", sa.Uuid(), nullable=False),
        sa.Column("change_type", ENUM, nullable=False),
        sa.Column("source_metaverse_object_id", sa.Uuid(), nullable=True),
        sa.Column("sync_rule_id", sa.Uuid(), nullable=True),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("last_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_unresolved_references", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pending_export")),
        sa.UniqueConstraint(
            "connected_system_object_id",
            name=op.f("uq_pending_export_pending_export_connected_system_object_id"),
        ),
    )
    op.create_index(
        op.f("ix_pending_export_connected_system_id"), "pending_export", ["connected_system_id"]
    )

    op.create_table(
        "pending_export_change",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pending_export_id", sa.Uuid(), nullable=False),
        sa.Column("attribute", sa.String(length=200), nullable=False),
        sa.Column("change_type", ENUM, nullable=False),
        sa.Column("status", ENUM, nullable=False),
        *_typed_value_columns(),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_exported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_imported_value", sa.Text(), nullable=True),
        sa.Column("mismatch_count", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["pending_export_id"],
            ["pending_export.id"],
            name=op.f("fk_pending_export_change_pending_export_id_pending_export"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pending_export_change")),
    )
    op.create_index(
        op.f("ix_pending_export_change_pending_export_id"),
        "pending_export_change",
        ["pending_export_id"],
    )

    op.create_table(
        "deferred_reference",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("source_cso_id", sa.Uuid(), nullable=False),
        sa.Column("attribute_name", sa.String(length=200), nullable=False),
        sa.Column("target_mvo_id", sa.Uuid(), nullable=False),
        sa.Column("target_system_id", sa.Uuid(), nullable=False),
        sa.Column("sync_rule_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_deferred_reference")),
    )
    op.create_index(
        op.f("ix_deferred_reference_source_cso_id"), "deferred_reference", ["source_cso_id"]
    )
    op.create_index(
        "ix_deferred_reference_target",
        "deferred_reference",
        ["target_mvo_id", "target_system_id"],
    )

    op.create_table(
        "import_watermark",
        sa.Column("connected_system_id", sa.Uuid(), nullable=False),
        sa.Column("pagination_tokens", sa.Text(), nullable=False),
        sa.Column("persisted_connector_data", sa.Text(), nullable=True),
        sa.Column("last_full_import_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_delta_import_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("connected_system_id", name=op.f("pk_import_watermark")),
    )

    op.create_table(
        "activity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_kind", ENUM, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("connected_system_id", sa.Uuid(), nullable=True),
        sa.Column("run_profile_id", sa.Uuid(), nullable=True),
        sa.Column("run_type", ENUM, nullable=True),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stack_trace", sa.Text(), nullable=True),
        sa.Column("objects_processed", sa.Integer(), nullable=False),
        sa.Column("objects_changed", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activity")),
    )
    op.create_index(op.f("ix_activity_started_at"), "activity", ["started_at"])

    op.create_table(
        "activity_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("activity_id", sa.Uuid(), nullable=False),
        sa.Column("outcome", ENUM, nullable=False),
        sa.Column("connected_system_object_id", sa.Uuid(), nullable=True),
        sa.Column("metaverse_object_id", sa.Uuid(), nullable=True),
        sa.Column("pending_export_id", sa.Uuid(), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("error_type", ENUM, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stack_trace", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activity.id"],
            name=op.f("fk_activity_item_activity_id_activity"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activity_item")),
    )
    op.create_index(op.f("ix_activity_item_activity_id"), "activity_item", ["activity_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_activity_item_activity_id"), table_name="activity_item")
    op.drop_table("activity_item")
    op.drop_index(op.f("ix_activity_started_at"), table_name="activity")
    op.drop_table("activity")
    op.drop_table("import_watermark")
    op.drop_index("ix_deferred_reference_target", table_name="deferred_reference")
    op.drop_index(op.f("ix_deferred_reference_source_cso_id"), table_name="deferred_reference")
    op.drop_table("deferred_reference")
    op.drop_index(
        op.f("ix_pending_export_change_pending_export_id"), table_name="pending_export_change"
    )
    op.drop_table("pending_export_change")
    op.drop_index(op.f("ix_pending_export_connected_system_id"), table_name="pending_export")
    op.drop_table("pending_export")
    op.drop_index("ix_attribute_value_attribute", table_name="attribute_value")
    op.drop_index("ix_attribute_value_owner", table_name="attribute_value")
    op.drop_table("attribute_value")
    op.drop_index(
        "ix_connected_system_object_secondary_external_id", table_name="connected_system_object"
    )
    op.drop_index("ix_connected_system_object_external_id", table_name="connected_system_object")
    op.drop_index(
        op.f("ix_connected_system_object_metaverse_object_id"),
        table_name="connected_system_object",
    )
    op.drop_table("connected_system_object")
    op.drop_index(op.f("ix_metaverse_object_object_type"), table_name="metaverse_object")
    op.drop_table("metaverse_object")
    op.drop_index("ix_sync_rule_lookup", table_name="sync_rule")
    op.drop_index(op.f("ix_sync_rule_connected_system_id"), table_name="sync_rule")
    op.drop_table("sync_rule")
    op.drop_table("metaverse_object_type")
    op.drop_table("connected_system")

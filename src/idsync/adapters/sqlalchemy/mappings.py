"""SQLAlchemy mapping metadata for the idsync domain model.

Object state (CSOs, MVOs, values, pending exports, deferred references,
watermarks and activities) is mapped imperatively onto the domain dataclasses.
Configuration aggregates are immutable value objects; they live in plain Core
tables as validated JSON documents next to a few indexed lookup columns.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, Final, cast

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    and_,
    event,
    inspect,
    orm,
)
from sqlalchemy.orm import configure_mappers, object_session, relationship

from idsync.domain.model import (
    Activity,
    ActivityErrorType,
    ActivityItem,
    ActivityItemOutcome,
    ActivityStatus,
    AttributeChangeStatus,
    AttributeChangeType,
    AttributeDataType,
    AttributeValue,
    ConnectedSystemObject,
    ConnectedSystemObjectStatus,
    DeferredReference,
    ImportWatermark,
    JoinType,
    MetaverseObject,
    MetaverseObjectOrigin,
    MetaverseObjectStatus,
    PendingExport,
    PendingExportAttributeValueChange,
    PendingExportChangeType,
    PendingExportStatus,
    RunType,
    SyncRuleDirection,
    TaskKind,
    ValueOwner,
)

if TYPE_CHECKING:
    from enum import StrEnum

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]
ENUM_LENGTH: Final[int] = 40


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(enum_cls, native_enum=False, length=ENUM_LENGTH)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class StringListType(TypeDecorator[list[str]]):
    """Ordered list of strings stored as a JSON array."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps([str(item) for item in value])

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[str]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        items = cast(list[Any], loaded)
        return [item for item in items if isinstance(item, str)]


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _typed_value_columns() -> list[Column[Any]]:
    return [
        Column("data_type", _enum(AttributeDataType), nullable=False),
        Column("string_value", Text, nullable=True),
        Column("int_value", BigInteger, nullable=True),
        Column("bool_value", Boolean, nullable=True),
        Column("datetime_value", UTCDateTime(), nullable=True),
        Column("binary_value", LargeBinary, nullable=True),
        Column("guid_value", UUIDColumnType, nullable=True),
        Column("reference_id", UUIDColumnType, nullable=True),
        Column("unresolved_reference_value", Text, nullable=True),
    ]


# Configuration tables ----------------------------------------------------------

connected_system_table = Table(
    "connected_system",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("name", String(200), nullable=False, unique=True),
    Column("document", Text, nullable=False),
)

metaverse_object_type_table = Table(
    "metaverse_object_type",
    mapper_registry.metadata,
    Column("name", String(200), primary_key=True),
    Column("document", Text, nullable=False),
)

sync_rule_table = Table(
    "sync_rule",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("connected_system_id", UUIDColumnType, nullable=False, index=True),
    Column("cs_object_type", String(200), nullable=False),
    Column("mv_object_type", String(200), nullable=False),
    Column("direction", _enum(SyncRuleDirection), nullable=False),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("rule_order", Integer, nullable=False, default=0),
    Column("document", Text, nullable=False),
    Index("ix_sync_rule_lookup", "direction", "mv_object_type"),
)

# Object tables -----------------------------------------------------------------

metaverse_object_table = Table(
    "metaverse_object",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("object_type", String(200), nullable=False, index=True),
    Column("status", _enum(MetaverseObjectStatus), nullable=False),
    Column("origin", _enum(MetaverseObjectOrigin), nullable=False),
    Column("built_in", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime(), nullable=True),
    Column("last_updated", UTCDateTime(), nullable=True),
    Column("last_connector_disconnected_at", UTCDateTime(), nullable=True),
    Column("deletion_due_at", UTCDateTime(), nullable=True),
    Column("version", Integer, nullable=False),
)

connected_system_object_table = Table(
    "connected_system_object",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("connected_system_id", UUIDColumnType, nullable=False),
    Column("object_type", String(200), nullable=False),
    Column("external_id", String(400), nullable=True),
    Column("secondary_external_id", String(400), nullable=True),
    Column("status", _enum(ConnectedSystemObjectStatus), nullable=False),
    Column("join_type", _enum(JoinType), nullable=False),
    Column("metaverse_object_id", UUIDColumnType, nullable=True, index=True),
    Column("date_joined", UTCDateTime(), nullable=True),
    Column("created_at", UTCDateTime(), nullable=True),
    Column("last_updated", UTCDateTime(), nullable=True),
    Column("version", Integer, nullable=False),
    Index("ix_connected_system_object_external_id", "connected_system_id", "external_id"),
    Index(
        "ix_connected_system_object_secondary_external_id",
        "connected_system_id",
        "secondary_external_id",
    ),
)

attribute_value_table = Table(
    "attribute_value",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("owner_kind", _enum(ValueOwner), nullable=True),
    Column("owner_id", UUIDColumnType, nullable=True),
    Column("attribute", String(200), nullable=False),
    *_typed_value_columns(),
    Column("contributed_by_system_id", UUIDColumnType, nullable=True),
    Index("ix_attribute_value_owner", "owner_kind", "owner_id"),
    Index("ix_attribute_value_attribute", "attribute", "string_value"),
)

pending_export_table = Table(
    "pending_export",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("connected_system_id", UUIDColumnType, nullable=False, index=True),
    Column("connected_system_object_id", UUIDColumnType, nullable=False, unique=True),
    Column("change_type", _enum(PendingExportChangeType), nullable=False),
    Column("source_metaverse_object_id", UUIDColumnType, nullable=True),
    Column("sync_rule_id", UUIDColumnType, nullable=True),
    Column("status", _enum(PendingExportStatus), nullable=False),
    Column("error_count", Integer, nullable=False, default=0),
    Column("max_retries", Integer, nullable=False),
    Column("last_error_message", Text, nullable=True),
    Column("last_attempted_at", UTCDateTime(), nullable=True),
    Column("next_retry_at", UTCDateTime(), nullable=True),
    Column("has_unresolved_references", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime(), nullable=True),
    Column("version", Integer, nullable=False),
)

pending_export_change_table = Table(
    "pending_export_change",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "pending_export_id",
        UUIDColumnType,
        ForeignKey("pending_export.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("attribute", String(200), nullable=False),
    Column("change_type", _enum(AttributeChangeType), nullable=False),
    Column("status", _enum(AttributeChangeStatus), nullable=False),
    *_typed_value_columns(),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("last_exported_at", UTCDateTime(), nullable=True),
    Column("last_imported_value", Text, nullable=True),
    Column("mismatch_count", Integer, nullable=False, default=0),
)

deferred_reference_table = Table(
    "deferred_reference",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("source_cso_id", UUIDColumnType, nullable=False, index=True),
    Column("attribute_name", String(200), nullable=False),
    Column("target_mvo_id", UUIDColumnType, nullable=False),
    Column("target_system_id", UUIDColumnType, nullable=False),
    Column("sync_rule_id", UUIDColumnType, nullable=True),
    Column("created_at", UTCDateTime(), nullable=True),
    Column("resolved_at", UTCDateTime(), nullable=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("last_attempted_at", UTCDateTime(), nullable=True),
    Index("ix_deferred_reference_target", "target_mvo_id", "target_system_id"),
)

import_watermark_table = Table(
    "import_watermark",
    mapper_registry.metadata,
    Column("connected_system_id", UUIDColumnType, primary_key=True),
    Column("pagination_tokens", StringListType(), nullable=False, default=list),
    Column("persisted_connector_data", Text, nullable=True),
    Column("last_full_import_at", UTCDateTime(), nullable=True),
    Column("last_delta_import_at", UTCDateTime(), nullable=True),
    Column("last_sync_at", UTCDateTime(), nullable=True),
)

activity_table = Table(
    "activity",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("task_kind", _enum(TaskKind), nullable=False),
    Column("description", Text, nullable=False),
    Column("connected_system_id", UUIDColumnType, nullable=True),
    Column("run_profile_id", UUIDColumnType, nullable=True),
    Column("run_type", _enum(RunType), nullable=True),
    Column("status", _enum(ActivityStatus), nullable=False),
    Column("started_at", UTCDateTime(), nullable=True, index=True),
    Column("completed_at", UTCDateTime(), nullable=True),
    Column("error_message", Text, nullable=True),
    Column("error_stack_trace", Text, nullable=True),
    Column("objects_processed", Integer, nullable=False, default=0),
    Column("objects_changed", Integer, nullable=False, default=0),
    Column("error_count", Integer, nullable=False, default=0),
)

activity_item_table = Table(
    "activity_item",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "activity_id",
        UUIDColumnType,
        ForeignKey("activity.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("outcome", _enum(ActivityItemOutcome), nullable=False),
    Column("connected_system_object_id", UUIDColumnType, nullable=True),
    Column("metaverse_object_id", UUIDColumnType, nullable=True),
    Column("pending_export_id", UUIDColumnType, nullable=True),
    Column("detail", Text, nullable=True),
    Column("error_type", _enum(ActivityErrorType), nullable=True),
    Column("error_message", Text, nullable=True),
    Column("error_stack_trace", Text, nullable=True),
)

def _attribute_values_relationship(
    owner_table: Table, owner_kind: ValueOwner
) -> orm.RelationshipProperty[AttributeValue]:
    return relationship(
        AttributeValue,
        cascade="all",
        primaryjoin=and_(
            attribute_value_table.c.owner_id == owner_table.c.id,
            attribute_value_table.c.owner_kind == owner_kind,
        ),
        foreign_keys=[attribute_value_table.c.owner_id],
        overlaps="attribute_values",
        lazy="selectin",
    )


def _discard_removed_value(target: object, value: AttributeValue, initiator: object) -> None:
    """Values belong to exactly one holder; dropping one from its list deletes the row."""

    _ = target, initiator
    session = object_session(value)
    if session is None:
        return
    state = inspect(value)
    if state.persistent:
        session.delete(value)
    elif state.pending:
        session.expunge(value)


def _claim_appended_value(target: object, value: AttributeValue, initiator: object) -> None:
    _ = initiator
    value.owner_kind = cast("ConnectedSystemObject | MetaverseObject", target).OWNER_KIND


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(AttributeValue, attribute_value_table)

    mapper_registry.map_imperatively(
        ConnectedSystemObject,
        connected_system_object_table,
        properties={
            "attribute_values": _attribute_values_relationship(
                connected_system_object_table, ValueOwner.CONNECTED_SYSTEM_OBJECT
            ),
        },
        version_id_col=connected_system_object_table.c.version,
    )

    mapper_registry.map_imperatively(
        MetaverseObject,
        metaverse_object_table,
        properties={
            "attribute_values": _attribute_values_relationship(
                metaverse_object_table, ValueOwner.METAVERSE_OBJECT
            ),
        },
        version_id_col=metaverse_object_table.c.version,
    )

    mapper_registry.map_imperatively(PendingExportAttributeValueChange, pending_export_change_table)

    mapper_registry.map_imperatively(
        PendingExport,
        pending_export_table,
        properties={
            "attribute_changes": relationship(
                PendingExportAttributeValueChange,
                cascade="all, delete-orphan",
                lazy="selectin",
            ),
        },
        version_id_col=pending_export_table.c.version,
    )

    mapper_registry.map_imperatively(DeferredReference, deferred_reference_table)

    mapper_registry.map_imperatively(ImportWatermark, import_watermark_table)

    mapper_registry.map_imperatively(ActivityItem, activity_item_table)

    mapper_registry.map_imperatively(
        Activity,
        activity_table,
        properties={
            "items": relationship(
                ActivityItem,
                cascade="all, delete-orphan",
                lazy="selectin",
            ),
        },
    )

    for holder in (ConnectedSystemObject, MetaverseObject):
        event.listen(holder.attribute_values, "append", _claim_appended_value)
        event.listen(holder.attribute_values, "remove", _discard_removed_value)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)

"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete, func, or_, select

from idsync.adapters.config_file.schema import (
    ConnectedSystemDocument,
    MetaverseObjectTypeDocument,
    SyncRuleDocument,
)
from idsync.adapters.config_file.translator import (
    from_connected_system,
    from_metaverse_type,
    from_sync_rule,
    to_connected_system,
    to_metaverse_type,
    to_sync_rule,
)
from idsync.adapters.sqlalchemy.mappings import (
    activity_table,
    attribute_value_table,
    connected_system_object_table,
    connected_system_table,
    deferred_reference_table,
    metaverse_object_table,
    metaverse_object_type_table,
    pending_export_table,
    sync_rule_table,
)
from idsync.domain.model import (
    Activity,
    ConnectedSystemObject,
    DeferredReference,
    ImportWatermark,
    MetaverseObject,
    MetaverseObjectStatus,
    PendingExport,
    PendingExportStatus,
    SyncRuleDirection,
    ValueOwner,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy import ColumnElement
    from sqlalchemy.orm import Session

    from idsync.domain.model import (
        ConnectedSystem,
        MetaverseObjectTypeDefinition,
        RawValue,
        SyncRule,
    )


# Configuration ------------------------------------------------------------------


class SqlAlchemyConnectedSystemRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ConnectedSystem) -> None:
        document = from_connected_system(entity).model_dump_json()
        self.session.execute(
            delete(connected_system_table).where(connected_system_table.c.id == entity.id)
        )
        self.session.execute(
            connected_system_table.insert().values(
                id=entity.id, name=entity.name, document=document
            )
        )

    def get(self, connected_system_id: uuid.UUID) -> ConnectedSystem | None:
        stmt = select(connected_system_table.c.document).where(
            connected_system_table.c.id == connected_system_id
        )
        return self._load(self.session.execute(stmt).scalar_one_or_none())

    def get_by_name(self, name: str) -> ConnectedSystem | None:
        stmt = select(connected_system_table.c.document).where(
            connected_system_table.c.name == name
        )
        return self._load(self.session.execute(stmt).scalar_one_or_none())

    def list(self) -> list[ConnectedSystem]:
        stmt = select(connected_system_table.c.document).order_by(connected_system_table.c.name)
        return [
            to_connected_system(ConnectedSystemDocument.model_validate_json(document))
            for document in self.session.execute(stmt).scalars()
        ]

    def remove(self, connected_system_id: uuid.UUID) -> None:
        self.session.execute(
            delete(connected_system_table).where(
                connected_system_table.c.id == connected_system_id
            )
        )

    @staticmethod
    def _load(document: str | None) -> ConnectedSystem | None:
        if document is None:
            return None
        return to_connected_system(ConnectedSystemDocument.model_validate_json(document))


class SqlAlchemyMetaverseObjectTypeRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: MetaverseObjectTypeDefinition) -> None:
        document = from_metaverse_type(entity).model_dump_json()
        self.session.execute(
            delete(metaverse_object_type_table).where(
                metaverse_object_type_table.c.name == entity.name
            )
        )
        self.session.execute(
            metaverse_object_type_table.insert().values(name=entity.name, document=document)
        )

    def get(self, name: str) -> MetaverseObjectTypeDefinition | None:
        stmt = select(metaverse_object_type_table.c.document).where(
            metaverse_object_type_table.c.name == name
        )
        document = self.session.execute(stmt).scalar_one_or_none()
        if document is None:
            return None
        return to_metaverse_type(MetaverseObjectTypeDocument.model_validate_json(document))

    def list(self) -> list[MetaverseObjectTypeDefinition]:
        stmt = select(metaverse_object_type_table.c.document).order_by(
            metaverse_object_type_table.c.name
        )
        return [
            to_metaverse_type(MetaverseObjectTypeDocument.model_validate_json(document))
            for document in self.session.execute(stmt).scalars()
        ]


class SqlAlchemySyncRuleRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: SyncRule) -> None:
        document = from_sync_rule(entity).model_dump_json()
        self.remove(entity.id)
        self.session.execute(
            sync_rule_table.insert().values(
                id=entity.id,
                name=entity.name,
                connected_system_id=entity.connected_system_id,
                cs_object_type=entity.cs_object_type,
                mv_object_type=entity.mv_object_type,
                direction=entity.direction,
                enabled=entity.enabled,
                rule_order=entity.order,
                document=document,
            )
        )

    def get(self, sync_rule_id: uuid.UUID) -> SyncRule | None:
        stmt = select(sync_rule_table.c.document).where(sync_rule_table.c.id == sync_rule_id)
        rules = self._load(stmt)
        return rules[0] if rules else None

    def list(self) -> list[SyncRule]:
        return self._load(select(sync_rule_table.c.document))

    def remove(self, sync_rule_id: uuid.UUID) -> None:
        self.session.execute(delete(sync_rule_table).where(sync_rule_table.c.id == sync_rule_id))

    def import_rules_for(
        self, connected_system_id: uuid.UUID, cs_object_type: str
    ) -> list[SyncRule]:
        stmt = (
            select(sync_rule_table.c.document)
            .where(sync_rule_table.c.direction == SyncRuleDirection.IMPORT)
            .where(sync_rule_table.c.enabled.is_(True))
            .where(sync_rule_table.c.connected_system_id == connected_system_id)
            .where(sync_rule_table.c.cs_object_type == cs_object_type)
        )
        return self._load(stmt)

    def export_rules_for(self, mv_object_type: str) -> list[SyncRule]:
        stmt = (
            select(sync_rule_table.c.document)
            .where(sync_rule_table.c.direction == SyncRuleDirection.EXPORT)
            .where(sync_rule_table.c.enabled.is_(True))
            .where(sync_rule_table.c.mv_object_type == mv_object_type)
        )
        return self._load(stmt)

    def _load(self, stmt: Any) -> list[SyncRule]:
        stmt = stmt.order_by(sync_rule_table.c.rule_order, sync_rule_table.c.name)
        return [
            to_sync_rule(SyncRuleDocument.model_validate_json(document))
            for document in self.session.execute(stmt).scalars()
        ]


# Objects ------------------------------------------------------------------------


class SqlAlchemyConnectedSystemObjectRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ConnectedSystemObject) -> None:
        self.session.add(entity)

    def get(self, cso_id: uuid.UUID) -> ConnectedSystemObject | None:
        return self.session.get(ConnectedSystemObject, cso_id)

    def get_by_external_id(
        self, connected_system_id: uuid.UUID, external_id: str
    ) -> ConnectedSystemObject | None:
        return self._first(
            connected_system_object_table.c.connected_system_id == connected_system_id,
            connected_system_object_table.c.external_id == external_id,
        )

    def get_by_secondary_external_id(
        self, connected_system_id: uuid.UUID, secondary_external_id: str
    ) -> ConnectedSystemObject | None:
        return self._first(
            connected_system_object_table.c.connected_system_id == connected_system_id,
            connected_system_object_table.c.secondary_external_id == secondary_external_id,
        )

    def for_system(
        self, connected_system_id: uuid.UUID, *, changed_since: datetime | None = None
    ) -> list[ConnectedSystemObject]:
        stmt = (
            select(ConnectedSystemObject)
            .where(connected_system_object_table.c.connected_system_id == connected_system_id)
            .order_by(
                connected_system_object_table.c.created_at, connected_system_object_table.c.id
            )
        )
        if changed_since is not None:
            stmt = stmt.where(
                or_(
                    connected_system_object_table.c.last_updated.is_(None),
                    connected_system_object_table.c.last_updated >= changed_since,
                )
            )
        return list(self.session.execute(stmt).scalars())

    def joined_to(self, metaverse_object_id: uuid.UUID) -> list[ConnectedSystemObject]:
        stmt = select(ConnectedSystemObject).where(
            connected_system_object_table.c.metaverse_object_id == metaverse_object_id
        )
        return list(self.session.execute(stmt).scalars())

    def joined_in_system(
        self, metaverse_object_id: uuid.UUID, connected_system_id: uuid.UUID
    ) -> ConnectedSystemObject | None:
        return self._first(
            connected_system_object_table.c.metaverse_object_id == metaverse_object_id,
            connected_system_object_table.c.connected_system_id == connected_system_id,
        )

    def remove(self, cso: ConnectedSystemObject) -> None:
        self.session.delete(cso)

    def _first(self, *criteria: ColumnElement[bool]) -> ConnectedSystemObject | None:
        stmt = select(ConnectedSystemObject).where(*criteria).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()


def _value_criteria(values: list[RawValue], *, case_sensitive: bool) -> list[ColumnElement[bool]]:
    """Compare each raw value against the column that stores its Python type."""

    columns = attribute_value_table.c
    strings = [v for v in values if isinstance(v, str)]
    booleans = [v for v in values if isinstance(v, bool)]
    integers = [v for v in values if isinstance(v, int) and not isinstance(v, bool)]
    moments = [v for v in values if isinstance(v, datetime)]
    blobs = [v for v in values if isinstance(v, bytes)]
    guids = [v for v in values if isinstance(v, uuid.UUID)]

    criteria: list[ColumnElement[bool]] = []
    if strings:
        if case_sensitive:
            criteria.append(columns.string_value.in_(strings))
        else:
            criteria.append(func.lower(columns.string_value).in_([s.lower() for s in strings]))
    if booleans:
        criteria.append(columns.bool_value.in_(booleans))
    if integers:
        criteria.append(columns.int_value.in_(integers))
    if moments:
        criteria.append(columns.datetime_value.in_(moments))
    if blobs:
        criteria.append(columns.binary_value.in_(blobs))
    if guids:
        criteria.append(columns.guid_value.in_(guids))
        criteria.append(columns.reference_id.in_(guids))
    return criteria


class SqlAlchemyMetaverseObjectRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: MetaverseObject) -> None:
        self.session.add(entity)

    def get(self, mvo_id: uuid.UUID) -> MetaverseObject | None:
        return self.session.get(MetaverseObject, mvo_id)

    def find_by_attribute(
        self,
        object_type: str,
        attribute: str,
        values: Iterable[RawValue],
        *,
        case_sensitive: bool = False,
    ) -> list[MetaverseObject]:
        criteria = _value_criteria(list(values), case_sensitive=case_sensitive)
        if not criteria:
            return []
        owners = (
            select(attribute_value_table.c.owner_id)
            .where(attribute_value_table.c.owner_kind == ValueOwner.METAVERSE_OBJECT)
            .where(attribute_value_table.c.attribute == attribute)
            .where(or_(*criteria))
        )
        stmt = (
            select(MetaverseObject)
            .where(metaverse_object_table.c.object_type == object_type)
            .where(metaverse_object_table.c.id.in_(owners))
            .order_by(metaverse_object_table.c.created_at, metaverse_object_table.c.id)
        )
        return list(self.session.execute(stmt).scalars())

    def due_for_deletion(self, now: datetime) -> list[MetaverseObject]:
        stmt = (
            select(MetaverseObject)
            .where(metaverse_object_table.c.status == MetaverseObjectStatus.PENDING_DELETION)
            .where(metaverse_object_table.c.deletion_due_at <= now)
            .order_by(metaverse_object_table.c.deletion_due_at)
        )
        return list(self.session.execute(stmt).scalars())

    def remove(self, mvo: MetaverseObject) -> None:
        self.session.delete(mvo)


class SqlAlchemyPendingExportRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: PendingExport) -> None:
        self.session.add(entity)

    def get(self, pending_export_id: uuid.UUID) -> PendingExport | None:
        return self.session.get(PendingExport, pending_export_id)

    def for_cso(self, cso_id: uuid.UUID) -> PendingExport | None:
        stmt = select(PendingExport).where(
            pending_export_table.c.connected_system_object_id == cso_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def ready_for_execution(
        self, connected_system_id: uuid.UUID, now: datetime
    ) -> list[PendingExport]:
        columns = pending_export_table.c
        stmt = (
            select(PendingExport)
            .where(columns.connected_system_id == connected_system_id)
            .where(columns.status == PendingExportStatus.PENDING)
            .where(columns.error_count < columns.max_retries)
            .where(or_(columns.next_retry_at.is_(None), columns.next_retry_at <= now))
            .order_by(columns.created_at, columns.id)
        )
        return list(self.session.execute(stmt).scalars())

    def for_system(
        self, connected_system_id: uuid.UUID, *, status: PendingExportStatus | None = None
    ) -> list[PendingExport]:
        stmt = (
            select(PendingExport)
            .where(pending_export_table.c.connected_system_id == connected_system_id)
            .order_by(pending_export_table.c.created_at, pending_export_table.c.id)
        )
        if status is not None:
            stmt = stmt.where(pending_export_table.c.status == status)
        return list(self.session.execute(stmt).scalars())

    def remove(self, pending_export: PendingExport) -> None:
        self.session.delete(pending_export)


class SqlAlchemyDeferredReferenceRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: DeferredReference) -> None:
        self.session.add(entity)

    def find_unresolved(
        self,
        *,
        source_cso_id: uuid.UUID,
        attribute_name: str,
        target_mvo_id: uuid.UUID,
        target_system_id: uuid.UUID,
    ) -> DeferredReference | None:
        columns = deferred_reference_table.c
        stmt = (
            select(DeferredReference)
            .where(columns.resolved_at.is_(None))
            .where(columns.source_cso_id == source_cso_id)
            .where(columns.attribute_name == attribute_name)
            .where(columns.target_mvo_id == target_mvo_id)
            .where(columns.target_system_id == target_system_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def unresolved_for_target(
        self, target_mvo_id: uuid.UUID, target_system_id: uuid.UUID
    ) -> list[DeferredReference]:
        columns = deferred_reference_table.c
        stmt = (
            select(DeferredReference)
            .where(columns.resolved_at.is_(None))
            .where(columns.target_mvo_id == target_mvo_id)
            .where(columns.target_system_id == target_system_id)
            .order_by(columns.created_at, columns.id)
        )
        return list(self.session.execute(stmt).scalars())

    def unresolved(self, target_system_id: uuid.UUID | None = None) -> list[DeferredReference]:
        columns = deferred_reference_table.c
        stmt = (
            select(DeferredReference)
            .where(columns.resolved_at.is_(None))
            .order_by(columns.created_at, columns.id)
        )
        if target_system_id is not None:
            stmt = stmt.where(columns.target_system_id == target_system_id)
        return list(self.session.execute(stmt).scalars())

    def for_source(self, source_cso_id: uuid.UUID) -> list[DeferredReference]:
        stmt = select(DeferredReference).where(
            deferred_reference_table.c.source_cso_id == source_cso_id
        )
        return list(self.session.execute(stmt).scalars())

    def remove(self, deferred: DeferredReference) -> None:
        self.session.delete(deferred)


class SqlAlchemyImportWatermarkRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ImportWatermark) -> None:
        self.session.add(entity)

    def get(self, connected_system_id: uuid.UUID) -> ImportWatermark | None:
        return self.session.get(ImportWatermark, connected_system_id)

    def remove(self, watermark: ImportWatermark) -> None:
        self.session.delete(watermark)


class SqlAlchemyActivityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Activity) -> None:
        self.session.add(entity)

    def get(self, activity_id: uuid.UUID) -> Activity | None:
        return self.session.get(Activity, activity_id)

    def recent(self, limit: int = 20) -> list[Activity]:
        started_at = cast("ColumnElement[datetime]", activity_table.c.started_at)
        stmt = select(Activity).order_by(started_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())


if TYPE_CHECKING:
    from idsync.domain.ports.persistence import (
        ActivityRepository,
        ConnectedSystemObjectRepository,
        ConnectedSystemRepository,
        DeferredReferenceRepository,
        ImportWatermarkRepository,
        MetaverseObjectRepository,
        MetaverseObjectTypeRepository,
        PendingExportRepository,
        SyncRuleRepository,
    )

    _session_stub = cast("Session", object())
    _system_repo: ConnectedSystemRepository = SqlAlchemyConnectedSystemRepository(_session_stub)
    _type_repo: MetaverseObjectTypeRepository = SqlAlchemyMetaverseObjectTypeRepository(
        _session_stub
    )
    _rule_repo: SyncRuleRepository = SqlAlchemySyncRuleRepository(_session_stub)
    _cso_repo: ConnectedSystemObjectRepository = SqlAlchemyConnectedSystemObjectRepository(
        _session_stub
    )
    _mvo_repo: MetaverseObjectRepository = SqlAlchemyMetaverseObjectRepository(_session_stub)
    _export_repo: PendingExportRepository = SqlAlchemyPendingExportRepository(_session_stub)
    _deferred_repo: DeferredReferenceRepository = SqlAlchemyDeferredReferenceRepository(
        _session_stub
    )
    _watermark_repo: ImportWatermarkRepository = SqlAlchemyImportWatermarkRepository(
        _session_stub
    )
    _activity_repo: ActivityRepository = SqlAlchemyActivityRepository(_session_stub)

"""Ports for persisting domain aggregates and configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from idsync.domain.model import (
        Activity,
        ConnectedSystem,
        ConnectedSystemObject,
        DeferredReference,
        ImportWatermark,
        MetaverseObject,
        MetaverseObjectTypeDefinition,
        PendingExport,
        PendingExportStatus,
        RawValue,
        SyncRule,
    )


TEntity = TypeVar("TEntity", contravariant=True)


@runtime_checkable
class Repository(Protocol[TEntity]):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class ConnectedSystemRepository(Repository["ConnectedSystem"], Protocol):
    def get(self, connected_system_id: UUID) -> ConnectedSystem | None: ...

    def get_by_name(self, name: str) -> ConnectedSystem | None: ...

    def list(self) -> list[ConnectedSystem]: ...

    def remove(self, connected_system_id: UUID) -> None: ...


@runtime_checkable
class MetaverseObjectTypeRepository(Repository["MetaverseObjectTypeDefinition"], Protocol):
    def get(self, name: str) -> MetaverseObjectTypeDefinition | None: ...

    def list(self) -> list[MetaverseObjectTypeDefinition]: ...


@runtime_checkable
class SyncRuleRepository(Repository["SyncRule"], Protocol):
    """Sync rules; ``add`` replaces an existing rule with the same id."""

    def get(self, sync_rule_id: UUID) -> SyncRule | None: ...

    def list(self) -> list[SyncRule]: ...

    def remove(self, sync_rule_id: UUID) -> None: ...

    def import_rules_for(self, connected_system_id: UUID, cs_object_type: str) -> list[SyncRule]:
        """Enabled import rules for a connected-system object type, in precedence order."""
        ...

    def export_rules_for(self, mv_object_type: str) -> list[SyncRule]:
        """Enabled export rules for a metaverse object type, in precedence order."""
        ...


@runtime_checkable
class ConnectedSystemObjectRepository(Repository["ConnectedSystemObject"], Protocol):
    def get(self, cso_id: UUID) -> ConnectedSystemObject | None: ...

    def get_by_external_id(
        self, connected_system_id: UUID, external_id: str
    ) -> ConnectedSystemObject | None: ...

    def get_by_secondary_external_id(
        self, connected_system_id: UUID, secondary_external_id: str
    ) -> ConnectedSystemObject | None: ...

    def for_system(
        self, connected_system_id: UUID, *, changed_since: datetime | None = None
    ) -> list[ConnectedSystemObject]: ...

    def joined_to(self, metaverse_object_id: UUID) -> list[ConnectedSystemObject]: ...

    def joined_in_system(
        self, metaverse_object_id: UUID, connected_system_id: UUID
    ) -> ConnectedSystemObject | None: ...

    def remove(self, cso: ConnectedSystemObject) -> None: ...


@runtime_checkable
class MetaverseObjectRepository(Repository["MetaverseObject"], Protocol):
    def get(self, mvo_id: UUID) -> MetaverseObject | None: ...

    def find_by_attribute(
        self,
        object_type: str,
        attribute: str,
        values: Iterable[RawValue],
        *,
        case_sensitive: bool = False,
    ) -> list[MetaverseObject]:
        """Objects of ``object_type`` holding any of ``values`` for ``attribute``."""
        ...

    def due_for_deletion(self, now: datetime) -> list[MetaverseObject]: ...

    def remove(self, mvo: MetaverseObject) -> None: ...


@runtime_checkable
class PendingExportRepository(Repository["PendingExport"], Protocol):
    def get(self, pending_export_id: UUID) -> PendingExport | None: ...

    def for_cso(self, cso_id: UUID) -> PendingExport | None:
        """The outstanding export of a connected-system object, if any."""
        ...

    def ready_for_execution(self, connected_system_id: UUID, now: datetime) -> list[PendingExport]:
        """Executable exports ordered by creation time."""
        ...

    def for_system(
        self, connected_system_id: UUID, *, status: PendingExportStatus | None = None
    ) -> list[PendingExport]: ...

    def remove(self, pending_export: PendingExport) -> None: ...


@runtime_checkable
class DeferredReferenceRepository(Repository["DeferredReference"], Protocol):
    def find_unresolved(
        self,
        *,
        source_cso_id: UUID,
        attribute_name: str,
        target_mvo_id: UUID,
        target_system_id: UUID,
    ) -> DeferredReference | None: ...

    def unresolved_for_target(
        self, target_mvo_id: UUID, target_system_id: UUID
    ) -> list[DeferredReference]: ...

    def unresolved(self, target_system_id: UUID | None = None) -> list[DeferredReference]: ...

    def for_source(self, source_cso_id: UUID) -> list[DeferredReference]: ...

    def remove(self, deferred: DeferredReference) -> None: ...


@runtime_checkable
class ImportWatermarkRepository(Repository["ImportWatermark"], Protocol):
    def get(self, connected_system_id: UUID) -> ImportWatermark | None: ...

    def remove(self, watermark: ImportWatermark) -> None: ...


@runtime_checkable
class ActivityRepository(Repository["Activity"], Protocol):
    def get(self, activity_id: UUID) -> Activity | None: ...

    def recent(self, limit: int = 20) -> list[Activity]: ...

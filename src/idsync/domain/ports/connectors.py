"""Connector contracts the core depends on.

Concrete LDAP/SCIM/SQL/file connectors live outside the core; they only need to
satisfy these protocols. Every call receives the run's cancellation event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from idsync.domain.model.enums import ImportChangeType

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from threading import Event
    from uuid import UUID

    from idsync.domain.model import ConnectedSystem, PendingExport, RunProfile


@dataclass(slots=True, kw_only=True)
class ImportedObject:
    """One object as reported by an import source; values are raw and untyped."""

    object_type: str
    external_id: str | None
    attributes: dict[str, list[object]] = field(default_factory=dict[str, list[object]])
    change_type: ImportChangeType = ImportChangeType.UPDATE
    secondary_external_id: str | None = None


@dataclass(slots=True, kw_only=True)
class ImportResult:
    objects: list[ImportedObject] = field(default_factory=list[ImportedObject])
    pagination_tokens: list[str] = field(default_factory=list[str])
    persisted_connector_data: str | None = None


@dataclass(slots=True, kw_only=True)
class ExportResult:
    """Outcome of exporting one pending export.

    ``unconfirmed_attributes`` names attributes the target may have altered
    (server-generated or normalised values); those stay awaiting a confirming import.
    """

    pending_export_id: UUID
    success: bool
    error_message: str | None = None
    external_id: str | None = None
    secondary_external_id: str | None = None
    unconfirmed_attributes: frozenset[str] = frozenset()

    @classmethod
    def succeeded(
        cls,
        pending_export_id: UUID,
        *,
        external_id: str | None = None,
        secondary_external_id: str | None = None,
        unconfirmed_attributes: frozenset[str] = frozenset(),
    ) -> ExportResult:
        return cls(
            pending_export_id=pending_export_id,
            success=True,
            external_id=external_id,
            secondary_external_id=secondary_external_id,
            unconfirmed_attributes=unconfirmed_attributes,
        )

    @classmethod
    def failed(cls, pending_export_id: UUID, message: str) -> ExportResult:
        return cls(pending_export_id=pending_export_id, success=False, error_message=message)


@runtime_checkable
class CallImportConnector(Protocol):
    """Paged, call-based import source."""

    def import_objects(
        self,
        system: ConnectedSystem,
        run_profile: RunProfile,
        pagination_tokens: Sequence[str],
        persisted_data: str | None,
        cancel_event: Event | None,
    ) -> ImportResult: ...


@runtime_checkable
class FileImportConnector(Protocol):
    """Bulk import source returning every object at once."""

    def read_objects(
        self, system: ConnectedSystem, run_profile: RunProfile
    ) -> list[ImportedObject]: ...


@runtime_checkable
class ExportConnector(Protocol):
    """Export target; one connection per batch, always closed afterwards."""

    def open_export_connection(self, settings: Mapping[str, object]) -> None: ...

    def export(
        self, pending_exports: Sequence[PendingExport], cancel_event: Event | None
    ) -> list[ExportResult]: ...

    def close_export_connection(self) -> None: ...

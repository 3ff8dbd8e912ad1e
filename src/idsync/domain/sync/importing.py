"""Import ingestion: stage objects reported by a connector as CSOs.

Each imported object is validated against its connected-system object type and
written to its CSO in isolation; a malformed object is recorded on the activity
and the run carries on. Pages are committed one at a time and the unit of work
is cleared between pages.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from idsync.domain.errors import (
    ConnectorConfigurationError,
    MalformedImportError,
    MissingExternalIdError,
    OperationalError,
    OperationCancelledError,
)
from idsync.domain.model import (
    ActivityItem,
    ActivityItemOutcome,
    AttributeDataType,
    AttributeValue,
    ConnectedSystemObject,
    ConnectedSystemObjectStatus,
    ImportChangeType,
    ImportWatermark,
    RunType,
    coerce_value,
)
from idsync.domain.ports import CallImportConnector, FileImportConnector
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.confirmation import ConfirmationReconciler

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from threading import Event
    from uuid import UUID

    from idsync.domain.model import (
        Activity,
        AttributeDefinition,
        ConnectedSystem,
        ObjectTypeDefinition,
        RunProfile,
    )
    from idsync.domain.ports import ImportedObject, SyncRepositories, SyncUnitOfWork
    from idsync.domain.sync.clock import Clock

_default_log = logging.getLogger(__name__)


class ImportProcessor:
    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        *,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.clock = clock
        self.log = log or _default_log

    def run(
        self,
        system: ConnectedSystem,
        run_profile: RunProfile,
        connector: object,
        activity: Activity,
        *,
        cancel_event: Event | None = None,
    ) -> None:
        full = run_profile.run_type == RunType.FULL_IMPORT
        seen: set[UUID] = set()
        unresolved: set[UUID] = set()
        pages = 0

        with self.unit_of_work_factory() as uow:
            watermark = _watermark(uow.repositories, system.id)
            persisted_data = watermark.persisted_connector_data
            # Saved tokens mark where an interrupted delta import stopped.
            resume = [] if full else list(watermark.pagination_tokens)
            if resume:
                self.log.info("Resuming delta import from %s at a saved page", system.name)
            for objects, tokens, persisted_data in self._pages(
                system, run_profile, connector, resume, persisted_data, cancel_event
            ):
                pages += 1
                for imported in objects:
                    if cancel_event is not None and cancel_event.is_set():
                        uow.commit()
                        raise OperationCancelledError(f"Import from {system.name} cancelled")
                    activity.record(
                        self._process(uow.repositories, system, imported, seen, unresolved)
                    )
                if not full:
                    watermark = _watermark(uow.repositories, system.id)
                    watermark.pagination_tokens = list(tokens)
                    watermark.persisted_connector_data = persisted_data
                uow.commit()
                uow.detach_all()

            self._resolve_pending_references(uow.repositories, system, unresolved)
            if full:
                self._obsolete_unseen(uow.repositories, system, seen, activity)

            now = self.clock()
            watermark = _watermark(uow.repositories, system.id)
            watermark.pagination_tokens = []
            watermark.persisted_connector_data = persisted_data
            if full:
                watermark.last_full_import_at = now
            else:
                watermark.last_delta_import_at = now
            uow.commit()

        self.log.info(
            "Imported %d object(s) from %s in %d page(s), %d error(s)",
            len(seen),
            system.name,
            pages,
            activity.error_count,
        )

    def _pages(
        self,
        system: ConnectedSystem,
        run_profile: RunProfile,
        connector: object,
        resume: list[str],
        persisted_data: str | None,
        cancel_event: Event | None,
    ) -> Iterator[tuple[list[ImportedObject], list[str], str | None]]:
        if isinstance(connector, CallImportConnector):
            tokens = resume
            first = True
            while first or tokens:
                first = False
                result = connector.import_objects(
                    system, run_profile, tokens, persisted_data, cancel_event
                )
                tokens = list(result.pagination_tokens)
                if result.persisted_connector_data != persisted_data:
                    self.log.debug("Connector data for %s changed", system.name)
                    persisted_data = result.persisted_connector_data
                yield result.objects, tokens, persisted_data
        elif isinstance(connector, FileImportConnector):
            yield connector.read_objects(system, run_profile), [], persisted_data
        else:
            raise ConnectorConfigurationError(
                f"Connector for {system.name} does not support importing"
            )

    def _process(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        imported: ImportedObject,
        seen: set[UUID],
        unresolved: set[UUID],
    ) -> ActivityItem:
        try:
            return self._stage(repositories, system, imported, seen, unresolved)
        except OperationalError as exc:
            self.log.warning(
                "Skipping imported %s %r: %s", imported.object_type, imported.external_id, exc
            )
            return ActivityItem(
                outcome=ActivityItemOutcome.FAILED,
                detail=imported.external_id,
                error_type=exc.error_type,
                error_message=str(exc),
            )

    def _stage(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        imported: ImportedObject,
        seen: set[UUID],
        unresolved: set[UUID],
    ) -> ActivityItem:
        definition = system.object_type(imported.object_type)
        if definition is None:
            raise MalformedImportError(
                f"Object type '{imported.object_type}' is not defined for {system.name}"
            )
        if not imported.external_id:
            raise MissingExternalIdError(
                f"Imported {imported.object_type} has no external identifier"
            )
        typed = _validate(definition, imported)

        objects = repositories.connected_system_objects
        now = self.clock()
        cso = objects.get_by_external_id(system.id, imported.external_id)
        if cso is None and imported.secondary_external_id:
            provisioned = objects.get_by_secondary_external_id(
                system.id, imported.secondary_external_id
            )
            if (
                provisioned is not None
                and provisioned.status == ConnectedSystemObjectStatus.PENDING_PROVISIONING
            ):
                cso = provisioned

        if imported.change_type == ImportChangeType.DELETE:
            if cso is None or cso.status == ConnectedSystemObjectStatus.OBSOLETE:
                return ActivityItem(
                    outcome=ActivityItemOutcome.NO_CHANGE, detail=imported.external_id
                )
            cso.mark_obsolete(at=now)
            seen.add(cso.id)
            return ActivityItem(
                outcome=ActivityItemOutcome.DELETED,
                connected_system_object_id=cso.id,
                metaverse_object_id=cso.metaverse_object_id,
            )

        outcome = ActivityItemOutcome.UPDATED
        if cso is None:
            cso = ConnectedSystemObject(
                connected_system_id=system.id,
                object_type=imported.object_type,
                external_id=imported.external_id,
                created_at=now,
            )
            objects.add(cso)
            outcome = ActivityItemOutcome.ADDED
        changed = outcome == ActivityItemOutcome.ADDED
        if cso.status != ConnectedSystemObjectStatus.NORMAL:
            cso.status = ConnectedSystemObjectStatus.NORMAL
            changed = True
        if cso.external_id != imported.external_id:
            cso.external_id = imported.external_id
            changed = True
        if imported.secondary_external_id and (
            cso.secondary_external_id != imported.secondary_external_id
        ):
            cso.secondary_external_id = imported.secondary_external_id
            changed = True
        seen.add(cso.id)

        for attribute, (attribute_definition, raw_values) in typed.items():
            values = [
                self._to_value(repositories, system, attribute_definition, raw)
                for raw in raw_values
            ]
            added, removed = cso.replace_values(attribute, values)
            if added or removed:
                changed = True
        if any(v.is_unresolved_reference for v in cso.attribute_values):
            unresolved.add(cso.id)
        if changed:
            cso.last_updated = now

        ConfirmationReconciler(repositories, clock=self.clock, log=self.log).reconcile(cso)
        return ActivityItem(
            outcome=outcome if changed else ActivityItemOutcome.NO_CHANGE,
            connected_system_object_id=cso.id,
            metaverse_object_id=cso.metaverse_object_id,
        )

    def _to_value(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        definition: AttributeDefinition,
        raw: object,
    ) -> AttributeValue:
        if definition.data_type != AttributeDataType.REFERENCE:
            return AttributeValue.of(definition.name, definition.data_type, raw)
        value = AttributeValue(attribute=definition.name, data_type=AttributeDataType.REFERENCE)
        target = _find_reference_target(repositories, system.id, str(raw))
        if target is not None:
            value.reference_id = target
        else:
            value.unresolved_reference_value = str(raw)
        return value

    def _resolve_pending_references(
        self, repositories: SyncRepositories, system: ConnectedSystem, cso_ids: set[UUID]
    ) -> None:
        """Second pass for references to objects imported later in the same run."""

        remaining = 0
        for cso_id in cso_ids:
            cso = repositories.connected_system_objects.get(cso_id)
            if cso is None:
                continue
            for value in cso.attribute_values:
                if not value.is_unresolved_reference:
                    continue
                target = _find_reference_target(
                    repositories, system.id, value.unresolved_reference_value or ""
                )
                if target is None:
                    remaining += 1
                    continue
                value.reference_id = target
                value.unresolved_reference_value = None
        if remaining:
            self.log.info("%d reference value(s) from %s remain unresolved", remaining, system.name)

    def _obsolete_unseen(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        seen: set[UUID],
        activity: Activity,
    ) -> None:
        now = self.clock()
        for cso in repositories.connected_system_objects.for_system(system.id):
            if cso.id in seen or cso.status != ConnectedSystemObjectStatus.NORMAL:
                continue
            if cso.external_id is None:
                continue
            cso.mark_obsolete(at=now)
            activity.record(
                ActivityItem(
                    outcome=ActivityItemOutcome.DELETED,
                    connected_system_object_id=cso.id,
                    metaverse_object_id=cso.metaverse_object_id,
                    detail="not present in full import",
                )
            )


def _watermark(repositories: SyncRepositories, connected_system_id: UUID) -> ImportWatermark:
    watermark = repositories.watermarks.get(connected_system_id)
    if watermark is None:
        watermark = ImportWatermark(connected_system_id=connected_system_id)
        repositories.watermarks.add(watermark)
    return watermark


def _validate(
    definition: ObjectTypeDefinition, imported: ImportedObject
) -> dict[str, tuple[AttributeDefinition, list[object]]]:
    typed: dict[str, tuple[AttributeDefinition, list[object]]] = {}
    for name, raw_values in imported.attributes.items():
        attribute = definition.get_attribute(name)
        if attribute is None:
            raise MalformedImportError(f"'{name}' is not an attribute of {definition.name}")
        present = [raw for raw in raw_values if raw is not None and raw != ""]
        if len(present) > 1 and not attribute.is_multi_valued:
            raise MalformedImportError(
                f"Single-valued attribute '{name}' received {len(present)} values"
            )
        for raw in present:
            try:
                coerce_value(attribute.data_type, raw)
            except (TypeError, ValueError) as exc:
                raise MalformedImportError(
                    f"Value {raw!r} of '{name}' is not a valid {attribute.data_type}: {exc}"
                ) from exc
        typed[name] = (attribute, present)
    return typed


def _find_reference_target(
    repositories: SyncRepositories, connected_system_id: UUID, identifier: str
) -> UUID | None:
    objects = repositories.connected_system_objects
    target = objects.get_by_external_id(connected_system_id, identifier)
    if target is None:
        target = objects.get_by_secondary_external_id(connected_system_id, identifier)
    return target.id if target is not None else None

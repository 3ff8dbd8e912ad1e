"""Deferred reference resolution.

A reference whose target MVO has no exported CSO in the target system is left
out of the planned export and parked as a ``DeferredReference``. Once the target
exists, the source CSO is re-planned; the regenerated export carries the
reference. Unresolved rows stay until their target arrives, so ``sweep`` is safe
to run repeatedly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from idsync.domain.model import DEFAULT_MAX_RETRIES
from idsync.domain.sync.attribute_flow import AttributeFlowEvaluator
from idsync.domain.sync.catalog import SchemaCatalog
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.planning import ExportPlanner

if TYPE_CHECKING:
    from uuid import UUID

    from idsync.domain.model import DeferredReference, PendingExport
    from idsync.domain.ports import SyncUnitOfWork
    from idsync.domain.sync.clock import Clock
    from idsync.domain.sync.locking import KeyedLock

_default_log = logging.getLogger(__name__)


class DeferredReferenceResolver:
    def __init__(
        self,
        *,
        locks: KeyedLock | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.locks = locks
        self.max_retries = max_retries
        self.clock = clock
        self.log = log or _default_log

    def try_resolve(self, uow: SyncUnitOfWork, deferred: DeferredReference) -> bool:
        resolved, _ = self._resolve(uow, self._planner(uow), deferred)
        return resolved

    def resolve_for_target(
        self, uow: SyncUnitOfWork, metaverse_object_id: UUID, connected_system_id: UUID
    ) -> list[PendingExport]:
        """Re-plan every source waiting on ``metaverse_object_id`` in ``connected_system_id``."""

        pending = uow.repositories.deferred_references.unresolved_for_target(
            metaverse_object_id, connected_system_id
        )
        return self._resolve_all(uow, pending)

    def sweep(
        self, uow: SyncUnitOfWork, connected_system_id: UUID | None = None
    ) -> list[PendingExport]:
        pending = uow.repositories.deferred_references.unresolved(connected_system_id)
        regenerated = self._resolve_all(uow, pending)
        self.log.info(
            "Deferred reference sweep: %d unresolved, %d export(s) regenerated",
            len(pending),
            len(regenerated),
        )
        return regenerated

    def _resolve_all(
        self, uow: SyncUnitOfWork, pending: list[DeferredReference]
    ) -> list[PendingExport]:
        if not pending:
            return []
        planner = self._planner(uow)
        regenerated: list[PendingExport] = []
        for deferred in pending:
            _, export = self._resolve(uow, planner, deferred)
            if export is not None and all(export.id != e.id for e in regenerated):
                regenerated.append(export)
        return regenerated

    def _resolve(
        self, uow: SyncUnitOfWork, planner: ExportPlanner, deferred: DeferredReference
    ) -> tuple[bool, PendingExport | None]:
        if deferred.is_resolved:
            return True, None
        repositories = uow.repositories
        now = self.clock()
        target = repositories.connected_system_objects.joined_in_system(
            deferred.target_mvo_id, deferred.target_system_id
        )
        if target is None or not target.is_exported:
            deferred.record_retry(at=now)
            return False, None

        export: PendingExport | None = None
        source = repositories.connected_system_objects.get(deferred.source_cso_id)
        rule = (
            repositories.sync_rules.get(deferred.sync_rule_id)
            if deferred.sync_rule_id is not None
            else None
        )
        if source is not None and source.metaverse_object_id is not None and rule is not None:
            mvo = repositories.metaverse_objects.get(source.metaverse_object_id)
            if mvo is not None:
                export = planner.plan(mvo, source, rule)
        deferred.mark_resolved(at=now)
        self.log.debug(
            "Resolved %s of CSO %s to MVO %s",
            deferred.attribute_name,
            deferred.source_cso_id,
            deferred.target_mvo_id,
        )
        return True, export

    def _planner(self, uow: SyncUnitOfWork) -> ExportPlanner:
        catalog = SchemaCatalog.load(uow.repositories)
        return ExportPlanner(
            uow.repositories,
            catalog,
            AttributeFlowEvaluator(catalog, log=self.log),
            locks=self.locks,
            max_retries=self.max_retries,
            clock=self.clock,
            log=self.log,
        )

"""Export execution: push pending exports to a connected system in batches.

Batches run concurrently up to ``max_parallelism``, each on a worker thread with
its own unit of work and connector session. Items inside a batch keep their
order. A change is only confirmed once the connector call has returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final, TypeAlias

from idsync.config.export import DEFAULT_EXPORT_BATCH_SIZE, DEFAULT_EXPORT_MAX_PARALLELISM
from idsync.domain.errors import ConcurrencyConflictError, OperationCancelledError
from idsync.domain.model import (
    ActivityErrorType,
    ActivityItem,
    ActivityItemOutcome,
    AttributeChangeStatus,
    ConnectedSystemObjectStatus,
    PendingExportChangeType,
    PendingExportStatus,
)
from idsync.domain.ports import ExportResult
from idsync.domain.sync.backoff import RetryBackoff
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.references import DeferredReferenceResolver

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime
    from threading import Event
    from uuid import UUID

    from idsync.config.export import ExportConfig
    from idsync.domain.model import (
        Activity,
        ConnectedSystem,
        ConnectedSystemObject,
        PendingExport,
    )
    from idsync.domain.ports import ExportConnector, SyncRepositories, SyncUnitOfWork
    from idsync.domain.sync.clock import Clock

    ProgressCallback: TypeAlias = Callable[["ExportProgressInfo"], None]

_default_log = logging.getLogger(__name__)

MAX_CONFLICT_ATTEMPTS: Final[int] = 3


class SyncRunMode(StrEnum):
    PREVIEW_ONLY = "preview_only"
    PREVIEW_AND_SYNC = "preview_and_sync"


class ExportPhase(StrEnum):
    PREPARING = "preparing"
    EXECUTING = "executing"
    RESOLVING_REFERENCES = "resolving_references"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True, kw_only=True)
class ExportExecutionOptions:
    batch_size: int = DEFAULT_EXPORT_BATCH_SIZE
    max_parallelism: int = DEFAULT_EXPORT_MAX_PARALLELISM
    run_mode: SyncRunMode = SyncRunMode.PREVIEW_AND_SYNC

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_parallelism < 1:
            raise ValueError("max_parallelism must be at least 1")

    @classmethod
    def from_config(
        cls, config: ExportConfig, *, run_mode: SyncRunMode = SyncRunMode.PREVIEW_AND_SYNC
    ) -> ExportExecutionOptions:
        return cls(
            batch_size=config.batch_size,
            max_parallelism=config.max_parallelism,
            run_mode=run_mode,
        )


@dataclass(slots=True, kw_only=True)
class ExportProgressInfo:
    phase: ExportPhase = ExportPhase.PREPARING
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0
    regenerated_pending_export_ids: list[UUID] = field(default_factory=list["UUID"])

    @property
    def percentage(self) -> float:
        if not self.total:
            return 100.0 if self.phase == ExportPhase.COMPLETED else 0.0
        return round(100.0 * self.processed / self.total, 1)


@dataclass(slots=True)
class _BatchOutcome:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0
    created_metaverse_object_ids: list[UUID] = field(default_factory=list["UUID"])
    items: list[ActivityItem] = field(default_factory=list["ActivityItem"])


class ExportExecutor:
    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        connector_factory: Callable[[ConnectedSystem], ExportConnector],
        *,
        backoff: RetryBackoff | None = None,
        resolver: DeferredReferenceResolver | None = None,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.connector_factory = connector_factory
        self.backoff = backoff or RetryBackoff()
        self.clock = clock
        self.log = log or _default_log
        self.resolver = resolver or DeferredReferenceResolver(clock=clock, log=self.log)

    def execute(
        self,
        system: ConnectedSystem,
        options: ExportExecutionOptions | None = None,
        pending_export_ids: Sequence[UUID] | None = None,
        cancel_event: Event | None = None,
        progress: ProgressCallback | None = None,
        *,
        activity: Activity | None = None,
    ) -> ExportProgressInfo:
        """Synchronous facade over ``execute_async``."""

        return asyncio.run(
            self.execute_async(
                system, options, pending_export_ids, cancel_event, progress, activity=activity
            )
        )

    async def execute_async(
        self,
        system: ConnectedSystem,
        options: ExportExecutionOptions | None = None,
        pending_export_ids: Sequence[UUID] | None = None,
        cancel_event: Event | None = None,
        progress: ProgressCallback | None = None,
        *,
        activity: Activity | None = None,
    ) -> ExportProgressInfo:
        options = options or ExportExecutionOptions()
        info = ExportProgressInfo()
        _notify(progress, info)

        ids = self._select(system, pending_export_ids)
        info.total = len(ids)
        self.log.info("Exporting to %s: %d pending export(s) ready", system.name, info.total)
        if options.run_mode == SyncRunMode.PREVIEW_ONLY or not ids:
            info.phase = ExportPhase.COMPLETED
            _notify(progress, info)
            return info

        info.phase = ExportPhase.EXECUTING
        _notify(progress, info)
        batches = [ids[i : i + options.batch_size] for i in range(0, len(ids), options.batch_size)]
        semaphore = asyncio.Semaphore(options.max_parallelism)
        created: list[UUID] = []
        skipped = 0

        async def run(number: int, batch: list[UUID]) -> None:
            nonlocal skipped
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    skipped += len(batch)
                    return
                outcome = await asyncio.to_thread(
                    self._run_batch, system, number, batch, cancel_event
                )
            info.processed += outcome.processed
            info.succeeded += outcome.succeeded
            info.failed += outcome.failed
            info.deferred += outcome.deferred
            created.extend(outcome.created_metaverse_object_ids)
            if activity is not None:
                for item in outcome.items:
                    activity.record(item)
            _notify(progress, info)

        await asyncio.gather(*(run(number, batch) for number, batch in enumerate(batches, 1)))

        info.phase = ExportPhase.RESOLVING_REFERENCES
        _notify(progress, info)
        if created:
            info.regenerated_pending_export_ids = await asyncio.to_thread(
                self._resolve_references, system, created
            )

        if skipped:
            raise OperationCancelledError(
                f"Export to {system.name} cancelled; "
                f"{skipped} pending export(s) left for the next run"
            )
        info.phase = ExportPhase.COMPLETED
        _notify(progress, info)
        self.log.info(
            "Export to %s finished: %d succeeded, %d failed, %d regenerated",
            system.name,
            info.succeeded,
            info.failed,
            len(info.regenerated_pending_export_ids),
        )
        return info

    def retry_failed_exports(self, connected_system_id: UUID) -> int:
        """Return parked exports to the queue; returns how many were reset."""

        with self.unit_of_work_factory() as uow:
            parked = uow.repositories.pending_exports.for_system(
                connected_system_id, status=PendingExportStatus.EXPORT_NOT_IMPORTED
            )
            for pending in parked:
                pending.reset_for_retry()
            uow.commit()
        self.log.info("Reset %d failed export(s) for retry", len(parked))
        return len(parked)

    def failed_export_count(self, connected_system_id: UUID) -> int:
        with self.unit_of_work_factory() as uow:
            return len(
                uow.repositories.pending_exports.for_system(
                    connected_system_id, status=PendingExportStatus.EXPORT_NOT_IMPORTED
                )
            )

    def _select(
        self, system: ConnectedSystem, pending_export_ids: Sequence[UUID] | None
    ) -> list[UUID]:
        with self.unit_of_work_factory() as uow:
            ready = uow.repositories.pending_exports.ready_for_execution(system.id, self.clock())
            ids = [pending.id for pending in ready]
        if pending_export_ids is not None:
            wanted = set(pending_export_ids)
            ids = [i for i in ids if i in wanted]
        return ids

    def _run_batch(
        self,
        system: ConnectedSystem,
        number: int,
        ids: list[UUID],
        cancel_event: Event | None,
    ) -> _BatchOutcome:
        results: dict[UUID, ExportResult] | None = None
        for attempt in range(1, MAX_CONFLICT_ATTEMPTS + 1):
            try:
                with self.unit_of_work_factory() as uow:
                    exports = self._load(uow.repositories, ids)
                    if results is None:
                        results = self._call_connector(system, number, exports, cancel_event)
                    uow.change_tracking(enabled=False)
                    outcome = self._record(uow.repositories, system, exports, results)
                    uow.commit()
                return outcome
            except ConcurrencyConflictError as exc:
                if attempt == MAX_CONFLICT_ATTEMPTS:
                    return self._conflicted(number, ids, exc)
                self.log.warning(
                    "Batch %d: concurrent update while recording results; retrying (%d/%d)",
                    number,
                    attempt,
                    MAX_CONFLICT_ATTEMPTS,
                )
        raise AssertionError("unreachable")

    def _conflicted(
        self, number: int, ids: list[UUID], error: ConcurrencyConflictError
    ) -> _BatchOutcome:
        self.log.warning(
            "Batch %d: gave up recording results after %d concurrent update(s); "
            "%d export(s) left for the next run",
            number,
            MAX_CONFLICT_ATTEMPTS,
            len(ids),
        )
        message = f"{type(error).__name__}: {error}"
        outcome = _BatchOutcome(processed=len(ids), failed=len(ids))
        outcome.items = [
            ActivityItem(
                outcome=ActivityItemOutcome.FAILED,
                pending_export_id=pending_export_id,
                error_type=ActivityErrorType.EXPORT_FAILED,
                error_message=message,
            )
            for pending_export_id in ids
        ]
        return outcome

    def _load(self, repositories: SyncRepositories, ids: list[UUID]) -> list[PendingExport]:
        exports: list[PendingExport] = []
        for pending_export_id in ids:
            pending = repositories.pending_exports.get(pending_export_id)
            if pending is not None and pending.status == PendingExportStatus.PENDING:
                exports.append(pending)
        return exports

    def _call_connector(
        self,
        system: ConnectedSystem,
        number: int,
        exports: list[PendingExport],
        cancel_event: Event | None,
    ) -> dict[UUID, ExportResult]:
        if not exports:
            return {}
        connector = self.connector_factory(system)
        try:
            connector.open_export_connection(system.settings)
            try:
                returned = connector.export(exports, cancel_event)
            finally:
                connector.close_export_connection()
        except OperationCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.log.warning(
                "Batch %d: connector call to %s failed, failing %d item(s): %s",
                number,
                system.name,
                len(exports),
                exc,
            )
            message = f"{type(exc).__name__}: {exc}"
            return {p.id: ExportResult.failed(p.id, message) for p in exports}
        return {result.pending_export_id: result for result in returned}

    def _record(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        exports: list[PendingExport],
        results: dict[UUID, ExportResult],
    ) -> _BatchOutcome:
        now = self.clock()
        outcome = _BatchOutcome()
        for pending in exports:
            result = results.get(pending.id) or ExportResult.succeeded(pending.id)
            change_type = pending.change_type
            cso = repositories.connected_system_objects.get(pending.connected_system_object_id)
            outcome.processed += 1
            if pending.has_unresolved_references:
                outcome.deferred += 1
            if result.success:
                created = self._record_success(repositories, system, pending, cso, result, now)
                if created is not None:
                    outcome.created_metaverse_object_ids.append(created)
                outcome.succeeded += 1
                outcome.items.append(
                    ActivityItem(
                        outcome=ActivityItemOutcome.EXPORTED,
                        pending_export_id=pending.id,
                        connected_system_object_id=pending.connected_system_object_id,
                        metaverse_object_id=pending.source_metaverse_object_id,
                        detail=change_type,
                    )
                )
            else:
                self._record_failure(pending, result, now)
                outcome.failed += 1
                outcome.items.append(
                    ActivityItem(
                        outcome=ActivityItemOutcome.FAILED,
                        pending_export_id=pending.id,
                        connected_system_object_id=pending.connected_system_object_id,
                        metaverse_object_id=pending.source_metaverse_object_id,
                        error_type=ActivityErrorType.EXPORT_FAILED,
                        error_message=pending.last_error_message,
                    )
                )
        return outcome

    def _record_success(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        pending: PendingExport,
        cso: ConnectedSystemObject | None,
        result: ExportResult,
        now: datetime,
    ) -> UUID | None:
        for change in pending.attribute_changes:
            if change.status == AttributeChangeStatus.CONFIRMED:
                continue
            confirmed = change.attribute not in result.unconfirmed_attributes
            change.record_export(at=now, confirmed=confirmed)
            if confirmed and cso is not None:
                cso.apply_change(change)
        pending.error_count = 0
        pending.last_error_message = None
        pending.last_attempted_at = now
        pending.next_retry_at = None

        created: UUID | None = None
        if cso is not None:
            cso.last_updated = now
            match pending.change_type:
                case PendingExportChangeType.CREATE:
                    _record_identity(system, cso, result)
                    cso.status = ConnectedSystemObjectStatus.NORMAL
                    created = cso.metaverse_object_id or pending.source_metaverse_object_id
                    # The object exists now; anything still outstanding is an update.
                    pending.change_type = PendingExportChangeType.UPDATE
                case PendingExportChangeType.DELETE:
                    cso.mark_obsolete(at=now)
                    cso.disconnect()
                case PendingExportChangeType.UPDATE:
                    pass

        if pending.all_changes_confirmed:
            repositories.pending_exports.remove(pending)
        else:
            pending.status = PendingExportStatus.AWAITING_CONFIRMATION
        return created

    def _record_failure(self, pending: PendingExport, result: ExportResult, now: datetime) -> None:
        message = result.error_message or "export failed"
        pending.record_failure(
            message, at=now, next_retry_at=self.backoff.next_retry_at(now, pending.error_count + 1)
        )
        if pending.status == PendingExportStatus.EXPORT_NOT_IMPORTED:
            self.log.warning(
                "Pending export %s exhausted %d attempt(s) and needs attention: %s",
                pending.id,
                pending.max_retries,
                message,
            )

    def _resolve_references(self, system: ConnectedSystem, created: list[UUID]) -> list[UUID]:
        with self.unit_of_work_factory() as uow:
            regenerated: list[UUID] = []
            for metaverse_object_id in dict.fromkeys(created):
                regenerated_here = self.resolver.resolve_for_target(
                    uow, metaverse_object_id, system.id
                )
                for pending in regenerated_here:
                    if pending.id not in regenerated:
                        regenerated.append(pending.id)
            uow.commit()
        return regenerated


def _record_identity(
    system: ConnectedSystem, cso: ConnectedSystemObject, result: ExportResult
) -> None:
    """Store the identity the target assigned, falling back to the exported id attributes."""

    definition = system.object_type(cso.object_type)
    external_id = result.external_id
    secondary_external_id = result.secondary_external_id
    if definition is not None:
        if external_id is None and definition.external_id_attribute is not None:
            value = cso.get_value(definition.external_id_attribute.name)
            external_id = None if value is None else str(value)
        secondary = definition.secondary_external_id_attribute
        if secondary_external_id is None and secondary is not None:
            value = cso.get_value(secondary.name)
            secondary_external_id = None if value is None else str(value)
    if external_id is not None:
        cso.external_id = external_id
    if secondary_external_id is not None:
        cso.secondary_external_id = secondary_external_id


def _notify(progress: ProgressCallback | None, info: ExportProgressInfo) -> None:
    if progress is not None:
        progress(info)

"""Synchronisation runs: join staged CSOs, flow attributes inward, plan exports.

Every CSO is synchronised in its own unit of work, so one failing object never
rolls back another. Work on a single MVO is serialised through a ``KeyedLock``;
an optimistic concurrency conflict is retried by re-reading and recomputing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

from idsync.domain.errors import (
    ConcurrencyConflictError,
    MultipleMatchesError,
    OperationalError,
    OperationCancelledError,
)
from idsync.domain.model import (
    DEFAULT_MAX_RETRIES,
    ActivityErrorType,
    ActivityItem,
    ActivityItemOutcome,
    ConnectedSystemObjectStatus,
    DeletionRule,
    ImportWatermark,
    JoinType,
    MetaverseObjectStatus,
    PendingExportChangeType,
    RunType,
)
from idsync.domain.sync.attribute_flow import AttributeFlowEvaluator, Contribution
from idsync.domain.sync.catalog import SchemaCatalog
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.locking import KeyedLock
from idsync.domain.sync.matching import (
    OUT_OF_SCOPE,
    MatchingPolicy,
    MatchOutcomeKind,
    ObjectMatcher,
)
from idsync.domain.sync.planning import ExportPlanner
from idsync.domain.sync.scoping import is_in_scope

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from threading import Event
    from uuid import UUID

    from idsync.domain.model import (
        Activity,
        ConnectedSystem,
        ConnectedSystemObject,
        MetaverseObject,
        RunProfile,
    )
    from idsync.domain.ports import SyncRepositories, SyncUnitOfWork
    from idsync.domain.sync.clock import Clock

_default_log = logging.getLogger(__name__)

MAX_SYNC_ATTEMPTS: Final[int] = 3


class Synchroniser:
    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        *,
        locks: KeyedLock | None = None,
        policy: MatchingPolicy = MatchingPolicy.FIRST_MATCH,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.locks = locks or KeyedLock()
        self.policy = policy
        self.max_retries = max_retries
        self.clock = clock
        self.log = log or _default_log

    def run(
        self,
        system: ConnectedSystem,
        run_profile: RunProfile,
        activity: Activity,
        *,
        cancel_event: Event | None = None,
    ) -> None:
        full = run_profile.run_type == RunType.FULL_SYNCHRONISATION
        started = self.clock()
        with self.unit_of_work_factory() as uow:
            catalog = SchemaCatalog.load(uow.repositories)
            watermark = uow.repositories.watermarks.get(system.id)
            since = None if full or watermark is None else watermark.last_sync_at
            cso_ids = [
                cso.id
                for cso in uow.repositories.connected_system_objects.for_system(
                    system.id, changed_since=since
                )
            ]
        self.log.info(
            "%s synchronisation of %s: %d object(s)",
            "Full" if full else "Delta",
            system.name,
            len(cso_ids),
        )

        flow = AttributeFlowEvaluator(catalog, log=self.log)
        for cso_id in cso_ids:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(f"Synchronisation of {system.name} cancelled")
            activity.record(self._synchronise_with_retry(system, catalog, flow, cso_id))

        with self.unit_of_work_factory() as uow:
            watermark = uow.repositories.watermarks.get(system.id)
            if watermark is None:
                watermark = ImportWatermark(connected_system_id=system.id)
                uow.repositories.watermarks.add(watermark)
            watermark.last_sync_at = started
            uow.commit()

    def process_deletions(self, now: datetime | None = None) -> int:
        """Delete MVOs whose deletion is due; returns how many were deleted."""

        now = now or self.clock()
        with self.unit_of_work_factory() as uow:
            catalog = SchemaCatalog.load(uow.repositories)
            planner = self._planner(uow.repositories, catalog, AttributeFlowEvaluator(catalog))
            due = uow.repositories.metaverse_objects.due_for_deletion(now)
            for mvo in due:
                with self.locks.hold(mvo.id):
                    self._delete(uow.repositories, planner, mvo)
            uow.commit()
        if due:
            self.log.info("Deleted %d metaverse object(s)", len(due))
        return len(due)

    def _synchronise_with_retry(
        self,
        system: ConnectedSystem,
        catalog: SchemaCatalog,
        flow: AttributeFlowEvaluator,
        cso_id: UUID,
    ) -> ActivityItem:
        for attempt in range(1, MAX_SYNC_ATTEMPTS + 1):
            try:
                with self.unit_of_work_factory() as uow:
                    try:
                        item = self._synchronise(uow.repositories, system, catalog, flow, cso_id)
                    except OperationalError as exc:
                        uow.rollback()
                        return _error_item(cso_id, exc)
                    uow.commit()
                    return item
            except ConcurrencyConflictError as exc:
                self.log.warning(
                    "CSO %s changed concurrently (attempt %d/%d): %s",
                    cso_id,
                    attempt,
                    MAX_SYNC_ATTEMPTS,
                    exc,
                )
        return ActivityItem(
            outcome=ActivityItemOutcome.FAILED,
            connected_system_object_id=cso_id,
            error_type=ActivityErrorType.OPERATIONAL,
            error_message=f"Gave up after {MAX_SYNC_ATTEMPTS} concurrent update conflicts",
        )

    def _synchronise(
        self,
        repositories: SyncRepositories,
        system: ConnectedSystem,
        catalog: SchemaCatalog,
        flow: AttributeFlowEvaluator,
        cso_id: UUID,
    ) -> ActivityItem:
        cso = repositories.connected_system_objects.get(cso_id)
        if cso is None or cso.status == ConnectedSystemObjectStatus.PENDING_PROVISIONING:
            return _item(ActivityItemOutcome.NO_CHANGE, cso_id)
        planner = self._planner(repositories, catalog, flow)
        if cso.status == ConnectedSystemObjectStatus.OBSOLETE:
            return self._disconnect(repositories, catalog, flow, planner, system, cso)

        rules = [
            rule
            for rule in repositories.sync_rules.import_rules_for(system.id, cso.object_type)
            if rule.enabled
        ]
        outcome = ActivityItemOutcome.NO_CHANGE
        if not cso.is_joined:
            if not rules:
                return _item(ActivityItemOutcome.NO_CHANGE, cso.id)
            matcher = ObjectMatcher(
                repositories, catalog, policy=self.policy, clock=self.clock, log=self.log
            )
            out_of_scope = True
            for rule in rules:
                result = matcher.match(cso, rule)
                if result.is_new_join:
                    outcome = (
                        ActivityItemOutcome.PROJECTED
                        if result.kind == MatchOutcomeKind.PROJECTED
                        else ActivityItemOutcome.JOINED
                    )
                    break
                if result.reason != OUT_OF_SCOPE:
                    out_of_scope = False
            else:
                return ActivityItem(
                    outcome=ActivityItemOutcome.OUT_OF_SCOPE
                    if out_of_scope
                    else ActivityItemOutcome.NO_CHANGE,
                    connected_system_object_id=cso.id,
                )

        if cso.metaverse_object_id is None:
            return _item(outcome, cso.id)
        mvo = repositories.metaverse_objects.get(cso.metaverse_object_id)
        if mvo is None:
            self.log.warning("CSO %s was joined to a missing MVO; disconnecting", cso.id)
            cso.disconnect()
            return _item(ActivityItemOutcome.DISCONNECTED, cso.id)

        with self.locks.hold(mvo.id):
            return self._recompute(repositories, flow, planner, system, cso, mvo, outcome)

    def _recompute(
        self,
        repositories: SyncRepositories,
        flow: AttributeFlowEvaluator,
        planner: ExportPlanner,
        system: ConnectedSystem,
        cso: ConnectedSystemObject,
        mvo: MetaverseObject,
        outcome: ActivityItemOutcome,
    ) -> ActivityItem:
        result = flow.compute_attribute_flow(
            mvo,
            _contributions(repositories, mvo),
            translate_reference=_reference_translator(repositories),
        )
        if result.changed and outcome == ActivityItemOutcome.NO_CHANGE:
            outcome = ActivityItemOutcome.UPDATED
        exports = 0
        if outcome != ActivityItemOutcome.NO_CHANGE:
            mvo.last_updated = self.clock()
            exports = self._plan_exports(repositories, planner, mvo, source_system_id=system.id)
        item = ActivityItem(
            outcome=outcome,
            connected_system_object_id=cso.id,
            metaverse_object_id=mvo.id,
            detail=f"{exports} export(s) planned" if exports else None,
        )
        if result.errors:
            item.error_type = ActivityErrorType.MAPPING_EVALUATION
            item.error_message = "; ".join(
                f"{e.rule_name} -> {e.target}: {e}" for e in result.errors
            )
        return item

    def _plan_exports(
        self,
        repositories: SyncRepositories,
        planner: ExportPlanner,
        mvo: MetaverseObject,
        *,
        source_system_id: UUID | None = None,
    ) -> int:
        planned = 0
        for rule in repositories.sync_rules.export_rules_for(mvo.object_type):
            if planner.plan(mvo, None, rule, source_system_id=source_system_id) is not None:
                planned += 1
        return planned

    def _disconnect(
        self,
        repositories: SyncRepositories,
        catalog: SchemaCatalog,
        flow: AttributeFlowEvaluator,
        planner: ExportPlanner,
        system: ConnectedSystem,
        cso: ConnectedSystemObject,
    ) -> ActivityItem:
        if cso.metaverse_object_id is None:
            return _item(ActivityItemOutcome.NO_CHANGE, cso.id)
        mvo_id = cso.disconnect()
        mvo = repositories.metaverse_objects.get(mvo_id) if mvo_id is not None else None
        if mvo is None:
            return _item(ActivityItemOutcome.DISCONNECTED, cso.id)

        now = self.clock()
        with self.locks.hold(mvo.id):
            for value in mvo.values_contributed_by(system.id):
                mvo.attribute_values.remove(value)
            flow.compute_attribute_flow(
                mvo,
                _contributions(repositories, mvo),
                translate_reference=_reference_translator(repositories),
            )
            mvo.last_updated = now
            mv_type = catalog.mv_type(mvo.object_type)
            connectors = [
                c
                for c in repositories.connected_system_objects.joined_to(mvo.id)
                if c.id != cso.id and c.join_type != JoinType.PROVISIONED
            ]
            if (
                mv_type.deletion_rule == DeletionRule.WHEN_LAST_CONNECTOR_DISCONNECTED
                and not connectors
                and not mvo.built_in
            ):
                mvo.schedule_deletion(at=now, grace_period=mv_type.deletion_grace_period)
                if not mv_type.deletion_grace_period:
                    self._delete(repositories, planner, mvo)
            else:
                self._plan_exports(repositories, planner, mvo, source_system_id=system.id)
        return ActivityItem(
            outcome=ActivityItemOutcome.DISCONNECTED,
            connected_system_object_id=cso.id,
            metaverse_object_id=mvo.id,
        )

    def _delete(
        self, repositories: SyncRepositories, planner: ExportPlanner, mvo: MetaverseObject
    ) -> None:
        """Deprovision ``mvo`` from every target, then drop it from the metaverse."""

        mvo.status = MetaverseObjectStatus.OBSOLETE
        self._plan_exports(repositories, planner, mvo)
        exports = repositories.pending_exports
        for cso in repositories.connected_system_objects.joined_to(mvo.id):
            pending = exports.for_cso(cso.id)
            if pending is None or pending.change_type != PendingExportChangeType.DELETE:
                cso.disconnect()
        repositories.metaverse_objects.remove(mvo)
        self.log.info("Deleted MVO %s (%s)", mvo.id, mvo.object_type)

    def _planner(
        self, repositories: SyncRepositories, catalog: SchemaCatalog, flow: AttributeFlowEvaluator
    ) -> ExportPlanner:
        return ExportPlanner(
            repositories,
            catalog,
            flow,
            locks=self.locks,
            max_retries=self.max_retries,
            clock=self.clock,
            log=self.log,
        )


def _contributions(repositories: SyncRepositories, mvo: MetaverseObject) -> list[Contribution]:
    contributions: list[Contribution] = []
    for cso in repositories.connected_system_objects.joined_to(mvo.id):
        if cso.status != ConnectedSystemObjectStatus.NORMAL:
            continue
        rules = repositories.sync_rules.import_rules_for(cso.connected_system_id, cso.object_type)
        contributions.extend(
            Contribution(cso=cso, rule=rule)
            for rule in rules
            if rule.enabled
            and rule.mv_object_type == mvo.object_type
            and is_in_scope(cso, rule.scoping)
        )
    return contributions


def _reference_translator(repositories: SyncRepositories) -> Callable[[UUID], UUID | None]:
    def translate(cso_id: UUID) -> UUID | None:
        target = repositories.connected_system_objects.get(cso_id)
        return target.metaverse_object_id if target is not None else None

    return translate


def _error_item(cso_id: UUID, exc: OperationalError) -> ActivityItem:
    return ActivityItem(
        outcome=(
            ActivityItemOutcome.AMBIGUOUS
            if isinstance(exc, MultipleMatchesError)
            else ActivityItemOutcome.FAILED
        ),
        connected_system_object_id=cso_id,
        error_type=exc.error_type,
        error_message=str(exc),
        detail=(
            ", ".join(str(c) for c in exc.candidate_ids)
            if isinstance(exc, MultipleMatchesError)
            else None
        ),
    )


def _item(outcome: ActivityItemOutcome, cso_id: UUID) -> ActivityItem:
    return ActivityItem(outcome=outcome, connected_system_object_id=cso_id)

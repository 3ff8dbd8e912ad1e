"""Export planning: turn metaverse state into pending exports for one target system.

The CSO's attribute values are the last-confirmed exported state, so a plan is a
diff between what the export rule wants and what the target is known to hold.
Plans merge into the CSO's outstanding export; re-planning unchanged state yields
nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from idsync.domain.model import (
    DEFAULT_MAX_RETRIES,
    AttributeChangeStatus,
    AttributeChangeType,
    AttributeDataType,
    AttributeValue,
    ConnectedSystemObject,
    ConnectedSystemObjectStatus,
    DeferredReference,
    JoinType,
    OutboundDeprovisionAction,
    PendingExport,
    PendingExportAttributeValueChange,
    PendingExportChangeType,
    PendingExportStatus,
)
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.locking import KeyedLock
from idsync.domain.sync.scoping import is_in_scope

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from idsync.domain.model import AttributeDefinition, MetaverseObject, SyncRule
    from idsync.domain.ports import SyncRepositories
    from idsync.domain.sync.attribute_flow import AttributeFlowEvaluator
    from idsync.domain.sync.catalog import SchemaCatalog
    from idsync.domain.sync.clock import Clock

_default_log = logging.getLogger(__name__)


@dataclass(slots=True)
class _ResolvedAttribute:
    values: list[AttributeValue] = field(default_factory=list[AttributeValue])
    deferred: bool = False


class ExportPlanner:
    def __init__(
        self,
        repositories: SyncRepositories,
        catalog: SchemaCatalog,
        flow: AttributeFlowEvaluator,
        *,
        locks: KeyedLock | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.repositories = repositories
        self.catalog = catalog
        self.flow = flow
        self.locks = locks or KeyedLock()
        self.max_retries = max_retries
        self.clock = clock
        self.log = log or _default_log

    def plan(
        self,
        mvo: MetaverseObject,
        cso: ConnectedSystemObject | None,
        rule: SyncRule,
        *,
        source_system_id: UUID | None = None,
    ) -> PendingExport | None:
        """Plan the export of ``mvo`` to ``rule``'s system; ``None`` when nothing changes.

        ``source_system_id`` names the system whose import triggered the plan; a
        rule never exports back to it.
        """

        if not rule.is_export or not rule.enabled:
            return None
        if source_system_id is not None and source_system_id == rule.connected_system_id:
            return None
        with self.locks.hold(mvo.id):
            if cso is None:
                cso = self.repositories.connected_system_objects.joined_in_system(
                    mvo.id, rule.connected_system_id
                )
            now = self.clock()
            if not mvo.is_active or not is_in_scope(mvo, rule.scoping):
                return self._plan_deprovision(cso, rule, now)
            if cso is None:
                if not rule.provision_to_connected_system:
                    return None
                cso = self._provision(mvo, rule, now)
                change_type = PendingExportChangeType.CREATE
            elif cso.status == ConnectedSystemObjectStatus.PENDING_PROVISIONING:
                change_type = PendingExportChangeType.CREATE
            elif cso.status == ConnectedSystemObjectStatus.OBSOLETE:
                return None
            else:
                change_type = PendingExportChangeType.UPDATE
            return self._plan_changes(mvo, cso, rule, change_type, now)

    def _provision(
        self, mvo: MetaverseObject, rule: SyncRule, now: datetime
    ) -> ConnectedSystemObject:
        cso = ConnectedSystemObject(
            connected_system_id=rule.connected_system_id,
            object_type=rule.cs_object_type,
            status=ConnectedSystemObjectStatus.PENDING_PROVISIONING,
            created_at=now,
            last_updated=now,
        )
        cso.join(mvo.id, JoinType.PROVISIONED, at=now)
        self.repositories.connected_system_objects.add(cso)
        self.log.debug("Provisioning CSO %s for MVO %s via %s", cso.id, mvo.id, rule.name)
        return cso

    def _plan_deprovision(
        self, cso: ConnectedSystemObject | None, rule: SyncRule, now: datetime
    ) -> PendingExport | None:
        if cso is None or cso.status == ConnectedSystemObjectStatus.OBSOLETE:
            return None
        exports = self.repositories.pending_exports
        existing = exports.for_cso(cso.id)
        if not cso.is_exported:
            # Never reached the target: drop it together with its Create.
            if existing is not None:
                exports.remove(existing)
            for deferred in self.repositories.deferred_references.for_source(cso.id):
                self.repositories.deferred_references.remove(deferred)
            self.repositories.connected_system_objects.remove(cso)
            return None
        if rule.outbound_deprovision_action == OutboundDeprovisionAction.DISCONNECT:
            cso.disconnect()
            cso.last_updated = now
            if existing is not None and existing.status == PendingExportStatus.PENDING:
                exports.remove(existing)
            return None
        if existing is not None:
            if existing.change_type == PendingExportChangeType.DELETE:
                return None
            existing.change_type = PendingExportChangeType.DELETE
            existing.attribute_changes.clear()
            existing.status = PendingExportStatus.PENDING
            existing.has_unresolved_references = False
            return existing
        pending = PendingExport(
            connected_system_id=cso.connected_system_id,
            connected_system_object_id=cso.id,
            change_type=PendingExportChangeType.DELETE,
            source_metaverse_object_id=cso.metaverse_object_id,
            sync_rule_id=rule.id,
            max_retries=self.max_retries,
            created_at=now,
        )
        exports.add(pending)
        return pending

    def _plan_changes(
        self,
        mvo: MetaverseObject,
        cso: ConnectedSystemObject,
        rule: SyncRule,
        change_type: PendingExportChangeType,
        now: datetime,
    ) -> PendingExport | None:
        cs_type = self.catalog.cs_type(rule.connected_system_id, rule.cs_object_type)
        desired = self.flow.compute_export_attributes(mvo, cso, rule)
        for error in desired.errors:
            self.log.warning(
                "Export mapping %s -> %s failed for MVO %s: %s",
                error.rule_name,
                error.target,
                mvo.id,
                error,
            )

        has_unresolved = False
        planned: dict[str, list[PendingExportAttributeValueChange]] = {}
        for attribute, values in desired.values.items():
            definition = cs_type.get_attribute(attribute)
            if definition is None:
                continue
            if definition.is_reference:
                resolved = self._resolve_references(cso, attribute, values, rule, now)
                if resolved.deferred:
                    has_unresolved = True
                    if not definition.is_multi_valued:
                        continue
                values = resolved.values
            planned[attribute] = _diff(definition, cso.values_for(attribute), values)

        existing = self.repositories.pending_exports.for_cso(cso.id)
        if existing is not None:
            return self._merge(existing, planned, change_type, has_unresolved)

        changes = [change for attribute_changes in planned.values() for change in attribute_changes]
        if not changes and change_type == PendingExportChangeType.UPDATE:
            return None
        pending = PendingExport(
            connected_system_id=cso.connected_system_id,
            connected_system_object_id=cso.id,
            change_type=change_type,
            source_metaverse_object_id=mvo.id,
            sync_rule_id=rule.id,
            max_retries=self.max_retries,
            has_unresolved_references=has_unresolved,
            created_at=now,
            attribute_changes=changes,
        )
        self.repositories.pending_exports.add(pending)
        self.log.debug(
            "Planned %s export %s for CSO %s with %d change(s)",
            change_type,
            pending.id,
            cso.id,
            len(changes),
        )
        return pending

    def _resolve_references(
        self,
        cso: ConnectedSystemObject,
        attribute: str,
        values: Sequence[AttributeValue],
        rule: SyncRule,
        now: datetime,
    ) -> _ResolvedAttribute:
        """Translate referenced MVOs to their exported CSOs in the rule's system."""

        resolved = _ResolvedAttribute()
        objects = self.repositories.connected_system_objects
        deferred_references = self.repositories.deferred_references
        for value in values:
            target_mvo_id = value.reference_id
            if target_mvo_id is None:
                continue
            target = objects.joined_in_system(target_mvo_id, rule.connected_system_id)
            if target is not None and target.is_exported:
                resolved.values.append(
                    AttributeValue.of(attribute, AttributeDataType.REFERENCE, target.id)
                )
                continue
            resolved.deferred = True
            known = deferred_references.find_unresolved(
                source_cso_id=cso.id,
                attribute_name=attribute,
                target_mvo_id=target_mvo_id,
                target_system_id=rule.connected_system_id,
            )
            if known is None:
                deferred_references.add(
                    DeferredReference(
                        source_cso_id=cso.id,
                        attribute_name=attribute,
                        target_mvo_id=target_mvo_id,
                        target_system_id=rule.connected_system_id,
                        sync_rule_id=rule.id,
                        created_at=now,
                    )
                )
                self.log.debug(
                    "Deferred %s of CSO %s until MVO %s is exported",
                    attribute,
                    cso.id,
                    target_mvo_id,
                )
        return resolved

    def _merge(
        self,
        existing: PendingExport,
        planned: dict[str, list[PendingExportAttributeValueChange]],
        change_type: PendingExportChangeType,
        has_unresolved: bool,
    ) -> PendingExport | None:
        modified = False
        if existing.change_type == PendingExportChangeType.DELETE:
            existing.change_type = change_type
            existing.attribute_changes.clear()
            modified = True
        elif (
            existing.change_type == PendingExportChangeType.CREATE
            and change_type == PendingExportChangeType.UPDATE
        ):
            existing.change_type = change_type
            modified = True
        for attribute, changes in planned.items():
            superseded = [
                c
                for c in existing.changes_for(attribute)
                if c.status != AttributeChangeStatus.CONFIRMED
            ]
            if _same_changes(superseded, changes):
                continue
            for change in superseded:
                existing.remove_change(change)
            for change in changes:
                existing.add_change(change)
            modified = True
        if existing.has_unresolved_references != has_unresolved:
            existing.has_unresolved_references = has_unresolved
            modified = True
        if not modified:
            return None
        awaiting = existing.status == PendingExportStatus.AWAITING_CONFIRMATION
        if awaiting and existing.outstanding_changes:
            existing.status = PendingExportStatus.PENDING
        if (
            not existing.attribute_changes
            and existing.change_type == PendingExportChangeType.UPDATE
            and not existing.has_unresolved_references
        ):
            self.repositories.pending_exports.remove(existing)
            return None
        return existing


def _same_changes(
    old: Sequence[PendingExportAttributeValueChange],
    new: Sequence[PendingExportAttributeValueChange],
) -> bool:
    if len(old) != len(new):
        return False
    return all(any(n.describes_same_change(o) for o in old) for n in new)


def _diff(
    definition: AttributeDefinition,
    current: Sequence[AttributeValue],
    desired: Sequence[AttributeValue],
) -> list[PendingExportAttributeValueChange]:
    """Changes that turn ``current`` into ``desired`` for one attribute."""

    if not definition.is_multi_valued:
        wanted = desired[0] if desired else None
        if wanted is None:
            if not current:
                return []
            return [
                PendingExportAttributeValueChange.for_value(AttributeChangeType.REMOVE, current[0])
            ]
        if len(current) == 1 and current[0].same_value(wanted):
            return []
        return [PendingExportAttributeValueChange.for_value(AttributeChangeType.UPDATE, wanted)]

    if not desired:
        if not current:
            return []
        return [
            PendingExportAttributeValueChange(
                attribute=definition.name,
                data_type=definition.data_type,
                change_type=AttributeChangeType.REMOVE_ALL,
            )
        ]
    current_keys = {v.value_key() for v in current}
    desired_keys = {v.value_key() for v in desired}
    changes = [
        PendingExportAttributeValueChange.for_value(AttributeChangeType.ADD, value)
        for value in desired
        if value.value_key() not in current_keys
    ]
    changes.extend(
        PendingExportAttributeValueChange.for_value(AttributeChangeType.REMOVE, value)
        for value in current
        if value.value_key() not in desired_keys
    )
    return changes

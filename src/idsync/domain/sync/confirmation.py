"""Confirming-import reconciliation.

An export the target may have altered stays ``AWAITING_CONFIRMATION`` until the
next import shows the object. Each awaiting change is compared with what was
actually imported; a disagreement is recorded on the change and sent back for
re-export rather than counted as success.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from idsync.domain.model import (
    AttributeChangeStatus,
    PendingExportChangeType,
    PendingExportStatus,
)
from idsync.domain.sync.clock import utcnow

if TYPE_CHECKING:
    from idsync.domain.model import (
        ConnectedSystemObject,
        PendingExport,
        PendingExportAttributeValueChange,
    )
    from idsync.domain.ports import SyncRepositories
    from idsync.domain.sync.clock import Clock

_default_log = logging.getLogger(__name__)


class ConfirmationReconciler:
    def __init__(
        self,
        repositories: SyncRepositories,
        *,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.repositories = repositories
        self.clock = clock
        self.log = log or _default_log

    def reconcile(self, cso: ConnectedSystemObject) -> PendingExport | None:
        """Check ``cso``'s awaiting export against its imported values.

        Returns the export when it is still outstanding, ``None`` when there was
        nothing to confirm or everything has now been confirmed.
        """

        pending = self.repositories.pending_exports.for_cso(cso.id)
        if pending is None or pending.status != PendingExportStatus.AWAITING_CONFIRMATION:
            return pending
        if pending.change_type == PendingExportChangeType.CREATE:
            if cso.external_id is None:
                return pending
            pending.change_type = PendingExportChangeType.UPDATE

        mismatched: list[str] = []
        for change in pending.awaiting_confirmation:
            if change.is_satisfied_by(cso):
                change.status = AttributeChangeStatus.CONFIRMED
                continue
            self._record_mismatch(pending, change, cso)
            mismatched.append(change.attribute)

        if pending.all_changes_confirmed:
            self.repositories.pending_exports.remove(pending)
            self.log.debug("Export %s confirmed by import of CSO %s", pending.id, cso.id)
            return None

        if any(c.status == AttributeChangeStatus.FAILED for c in pending.attribute_changes):
            pending.status = PendingExportStatus.EXPORT_NOT_IMPORTED
        elif pending.outstanding_changes:
            pending.status = PendingExportStatus.PENDING
            pending.next_retry_at = None
        if mismatched:
            pending.last_error_message = (
                f"Confirming import disagreed on {', '.join(sorted(set(mismatched)))}"
            )
            pending.last_attempted_at = self.clock()
            self.log.warning(
                "CSO %s: confirming import disagreed with exported %s",
                cso.id,
                ", ".join(sorted(set(mismatched))),
            )
        return pending

    def _record_mismatch(
        self,
        pending: PendingExport,
        change: PendingExportAttributeValueChange,
        cso: ConnectedSystemObject,
    ) -> None:
        imported = [v.render() for v in cso.values_for(change.attribute)]
        change.last_imported_value = "; ".join(v for v in imported if v is not None) or None
        change.mismatch_count += 1
        change.status = (
            AttributeChangeStatus.FAILED
            if change.attempt_count >= pending.max_retries
            else AttributeChangeStatus.PENDING
        )

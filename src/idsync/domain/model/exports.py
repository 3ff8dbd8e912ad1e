"""Outbound work items: pending exports, their attribute changes and deferred references."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from idsync.domain.model.entity import Entity
from idsync.domain.model.enums import (
    AttributeChangeStatus,
    AttributeChangeType,
    PendingExportChangeType,
    PendingExportStatus,
)
from idsync.domain.model.values import AttributeValue, TypedValue

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from idsync.domain.model.objects import AttributeValueHolder


DEFAULT_MAX_RETRIES: Final[int] = 5


@dataclass(eq=False, kw_only=True)
class PendingExportAttributeValueChange(Entity, TypedValue):
    """One attribute mutation with its own confirmation state.

    ``last_imported_value`` holds what a confirming import actually observed when
    it disagreed with the exported value.
    """

    attribute: str
    change_type: AttributeChangeType
    status: AttributeChangeStatus = AttributeChangeStatus.PENDING
    attempt_count: int = 0
    last_exported_at: datetime | None = None
    last_imported_value: str | None = None
    mismatch_count: int = 0

    @classmethod
    def for_value(
        cls, change_type: AttributeChangeType, value: AttributeValue
    ) -> PendingExportAttributeValueChange:
        change = cls(attribute=value.attribute, data_type=value.data_type, change_type=change_type)
        change.copy_payload_from(value)
        return change

    @property
    def is_outstanding(self) -> bool:
        return self.status == AttributeChangeStatus.PENDING

    @property
    def is_confirmed(self) -> bool:
        return self.status == AttributeChangeStatus.CONFIRMED

    def describes_same_change(self, other: PendingExportAttributeValueChange) -> bool:
        return (
            self.attribute == other.attribute
            and self.change_type == other.change_type
            and self.value_key() == other.value_key()
        )

    def record_export(self, *, at: datetime, confirmed: bool) -> None:
        self.attempt_count += 1
        self.last_exported_at = at
        self.status = (
            AttributeChangeStatus.CONFIRMED
            if confirmed
            else AttributeChangeStatus.AWAITING_CONFIRMATION
        )

    def as_value(self) -> AttributeValue:
        value = AttributeValue(attribute=self.attribute, data_type=self.data_type)
        value.copy_payload_from(self)
        return value

    def apply_to(self, holder: AttributeValueHolder) -> None:
        """Mirror this change onto ``holder``, the last-known state of the target object."""

        match self.change_type:
            case AttributeChangeType.ADD:
                holder.add_value(self.as_value())
            case AttributeChangeType.UPDATE:
                holder.replace_values(self.attribute, [self.as_value()])
            case AttributeChangeType.REMOVE:
                holder.remove_value(self.attribute, self.value_key())
            case AttributeChangeType.REMOVE_ALL:
                holder.clear_attribute(self.attribute)

    def is_satisfied_by(self, holder: AttributeValueHolder) -> bool:
        """Whether ``holder`` (freshly imported) reflects this change."""

        keys = {v.value_key() for v in holder.values_for(self.attribute)}
        match self.change_type:
            case AttributeChangeType.ADD | AttributeChangeType.UPDATE:
                return self.value_key() in keys
            case AttributeChangeType.REMOVE:
                return self.value_key() not in keys
            case AttributeChangeType.REMOVE_ALL:
                return not keys


@dataclass(eq=False, kw_only=True)
class PendingExport(Entity):
    """A not-yet-confirmed outbound change for one connected-system object."""

    connected_system_id: UUID
    connected_system_object_id: UUID
    change_type: PendingExportChangeType
    source_metaverse_object_id: UUID | None = None
    sync_rule_id: UUID | None = None
    status: PendingExportStatus = PendingExportStatus.PENDING
    error_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    last_error_message: str | None = None
    last_attempted_at: datetime | None = None
    next_retry_at: datetime | None = None
    has_unresolved_references: bool = False
    created_at: datetime | None = None
    attribute_changes: list[PendingExportAttributeValueChange] = field(
        default_factory=list["PendingExportAttributeValueChange"]
    )
    version: int | None = field(default=None, repr=False)

    @property
    def retries_exhausted(self) -> bool:
        return self.error_count >= self.max_retries

    @property
    def outstanding_changes(self) -> list[PendingExportAttributeValueChange]:
        return [c for c in self.attribute_changes if c.is_outstanding]

    @property
    def awaiting_confirmation(self) -> list[PendingExportAttributeValueChange]:
        return [
            c
            for c in self.attribute_changes
            if c.status == AttributeChangeStatus.AWAITING_CONFIRMATION
        ]

    @property
    def all_changes_confirmed(self) -> bool:
        return all(c.is_confirmed for c in self.attribute_changes)

    def is_ready(self, now: datetime) -> bool:
        if self.status != PendingExportStatus.PENDING or self.retries_exhausted:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def changes_for(self, attribute: str) -> list[PendingExportAttributeValueChange]:
        return [c for c in self.attribute_changes if c.attribute == attribute]

    def add_change(self, change: PendingExportAttributeValueChange) -> None:
        self.attribute_changes.append(change)

    def remove_change(self, change: PendingExportAttributeValueChange) -> None:
        self.attribute_changes.remove(change)

    def record_failure(self, message: str, *, at: datetime, next_retry_at: datetime) -> None:
        """Count a rejected attempt; exhausting retries parks the export for an administrator."""

        self.error_count += 1
        self.last_error_message = message
        self.last_attempted_at = at
        self.next_retry_at = next_retry_at
        for change in self.attribute_changes:
            if change.status == AttributeChangeStatus.CONFIRMED:
                continue
            change.attempt_count += 1
            if self.retries_exhausted:
                change.status = AttributeChangeStatus.FAILED
        self.status = (
            PendingExportStatus.EXPORT_NOT_IMPORTED
            if self.retries_exhausted
            else PendingExportStatus.PENDING
        )

    def reset_for_retry(self) -> None:
        self.status = PendingExportStatus.PENDING
        self.error_count = 0
        self.next_retry_at = None
        for change in self.attribute_changes:
            if change.status == AttributeChangeStatus.FAILED:
                change.status = AttributeChangeStatus.PENDING


@dataclass(eq=False, kw_only=True)
class DeferredReference(Entity):
    """A reference attribute whose target MVO has no exported CSO in the target system yet.

    Unresolved -> Resolved is terminal; a failed attempt only bumps ``retry_count``.
    """

    source_cso_id: UUID
    attribute_name: str
    target_mvo_id: UUID
    target_system_id: UUID
    sync_rule_id: UUID | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    retry_count: int = 0
    last_attempted_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def mark_resolved(self, *, at: datetime) -> None:
        if self.resolved_at is None:
            self.resolved_at = at
        self.last_attempted_at = at

    def record_retry(self, *, at: datetime) -> None:
        if self.is_resolved:
            raise ValueError("a resolved deferred reference cannot return to unresolved")
        self.retry_count += 1
        self.last_attempted_at = at

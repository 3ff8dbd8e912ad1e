"""Connected-system objects (CSOs) and metaverse objects (MVOs).

Both hold a flat list of ``AttributeValue`` rows. Relations to other objects are
plain ids (``metaverse_object_id``, ``reference_id``) resolved through the
repositories, never embedded object pointers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from idsync.domain.model.entity import Entity
from idsync.domain.model.enums import (
    ConnectedSystemObjectStatus,
    JoinType,
    MetaverseObjectOrigin,
    MetaverseObjectStatus,
    ValueOwner,
)
from idsync.domain.model.values import AttributeValue

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Sequence
    from datetime import datetime, timedelta
    from uuid import UUID

    from idsync.domain.model.enums import AttributeDataType
    from idsync.domain.model.exports import PendingExportAttributeValueChange
    from idsync.domain.model.values import RawValue


@dataclass(eq=False, kw_only=True)
class AttributeValueHolder(Entity):
    """Capability: owns a set of typed attribute values, keyed by attribute name."""

    OWNER_KIND: ClassVar[ValueOwner]

    attribute_values: list[AttributeValue] = field(default_factory=list["AttributeValue"])

    def values_for(self, attribute: str) -> list[AttributeValue]:
        return [v for v in self.attribute_values if v.attribute == attribute]

    def raw_values(self, attribute: str) -> tuple[RawValue, ...]:
        return tuple(v.value for v in self.values_for(attribute) if v.value is not None)

    def get_value(self, attribute: str) -> RawValue | None:
        values = self.raw_values(attribute)
        return values[0] if values else None

    def attribute_names(self) -> set[str]:
        return {v.attribute for v in self.attribute_values}

    def add_value(self, value: AttributeValue) -> bool:
        """Add ``value`` unless an equal value is already held (set semantics)."""

        key = value.value_key()
        if any(v.value_key() == key for v in self.values_for(value.attribute)):
            return False
        value.owner_kind = self.OWNER_KIND
        value.owner_id = self.id
        self.attribute_values.append(value)
        return True

    def remove_value(self, attribute: str, key: Hashable) -> bool:
        for existing in self.values_for(attribute):
            if existing.value_key() == key:
                self.attribute_values.remove(existing)
                return True
        return False

    def clear_attribute(self, attribute: str) -> list[AttributeValue]:
        removed = self.values_for(attribute)
        for value in removed:
            self.attribute_values.remove(value)
        return removed

    def replace_values(
        self, attribute: str, values: Sequence[AttributeValue]
    ) -> tuple[list[AttributeValue], list[AttributeValue]]:
        """Make ``values`` the complete value set of ``attribute``.

        Returns the values added and removed; unchanged values keep their identity.
        """

        desired = {v.value_key(): v for v in values}
        removed = [v for v in self.values_for(attribute) if v.value_key() not in desired]
        for value in removed:
            self.attribute_values.remove(value)
        current = {v.value_key() for v in self.values_for(attribute)}
        added: list[AttributeValue] = []
        for key, value in desired.items():
            if key in current:
                continue
            self.add_value(value)
            added.append(value)
        return added, removed

    def set_values(
        self, attribute: str, data_type: AttributeDataType, raw_values: Iterable[object]
    ) -> bool:
        """Replace the value set of ``attribute`` from raw values; return whether it changed."""

        values = [
            AttributeValue.of(attribute, data_type, raw) for raw in raw_values if raw is not None
        ]
        added, removed = self.replace_values(attribute, values)
        return bool(added or removed)

    def apply_change(self, change: PendingExportAttributeValueChange) -> None:
        change.apply_to(self)


@dataclass(eq=False, kw_only=True)
class ConnectedSystemObject(AttributeValueHolder):
    """One object as seen through a specific connected system."""

    OWNER_KIND: ClassVar[ValueOwner] = ValueOwner.CONNECTED_SYSTEM_OBJECT

    connected_system_id: UUID
    object_type: str
    external_id: str | None = None
    secondary_external_id: str | None = None
    status: ConnectedSystemObjectStatus = ConnectedSystemObjectStatus.NORMAL
    join_type: JoinType = JoinType.NOT_JOINED
    metaverse_object_id: UUID | None = None
    date_joined: datetime | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None
    version: int | None = field(default=None, repr=False)

    @property
    def is_joined(self) -> bool:
        return self.metaverse_object_id is not None

    @property
    def is_exported(self) -> bool:
        """Whether the object exists in the connected system with a known identity."""

        return self.status == ConnectedSystemObjectStatus.NORMAL and (
            self.external_id is not None or self.secondary_external_id is not None
        )

    @property
    def export_identifier(self) -> str | None:
        return self.secondary_external_id or self.external_id

    def join(self, metaverse_object_id: UUID, join_type: JoinType, *, at: datetime) -> None:
        self.metaverse_object_id = metaverse_object_id
        self.join_type = join_type
        self.date_joined = at

    def disconnect(self) -> UUID | None:
        previous = self.metaverse_object_id
        self.metaverse_object_id = None
        self.join_type = JoinType.NOT_JOINED
        self.date_joined = None
        return previous

    def mark_obsolete(self, *, at: datetime) -> None:
        self.status = ConnectedSystemObjectStatus.OBSOLETE
        self.last_updated = at


@dataclass(eq=False, kw_only=True)
class MetaverseObject(AttributeValueHolder):
    """Canonical, connector-agnostic object."""

    OWNER_KIND: ClassVar[ValueOwner] = ValueOwner.METAVERSE_OBJECT

    object_type: str
    status: MetaverseObjectStatus = MetaverseObjectStatus.ACTIVE
    origin: MetaverseObjectOrigin = MetaverseObjectOrigin.PROJECTED
    built_in: bool = False
    created_at: datetime | None = None
    last_updated: datetime | None = None
    last_connector_disconnected_at: datetime | None = None
    deletion_due_at: datetime | None = None
    version: int | None = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == MetaverseObjectStatus.ACTIVE

    def values_contributed_by(self, connected_system_id: UUID) -> list[AttributeValue]:
        return [
            v for v in self.attribute_values if v.contributed_by_system_id == connected_system_id
        ]

    def schedule_deletion(self, *, at: datetime, grace_period: timedelta | None) -> None:
        self.last_connector_disconnected_at = at
        self.status = MetaverseObjectStatus.PENDING_DELETION
        self.deletion_due_at = at + grace_period if grace_period else at

    def cancel_deletion(self) -> None:
        if self.status == MetaverseObjectStatus.PENDING_DELETION:
            self.status = MetaverseObjectStatus.ACTIVE
        self.deletion_due_at = None

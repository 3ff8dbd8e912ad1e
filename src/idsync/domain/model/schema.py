"""Schema definitions for connected systems and metaverse object types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from idsync.domain.model.enums import (
    AttributeDataType,
    AttributePlurality,
    DeletionRule,
    RunType,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import timedelta
    from uuid import UUID


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeDefinition:
    name: str
    data_type: AttributeDataType = AttributeDataType.TEXT
    plurality: AttributePlurality = AttributePlurality.SINGLE_VALUED
    is_external_id: bool = False
    is_secondary_external_id: bool = False

    @property
    def is_multi_valued(self) -> bool:
        return self.plurality == AttributePlurality.MULTI_VALUED

    @property
    def is_reference(self) -> bool:
        return self.data_type == AttributeDataType.REFERENCE


@dataclass(frozen=True, slots=True, kw_only=True)
class ObjectTypeDefinition:
    name: str
    attributes: Mapping[str, AttributeDefinition] = field(default_factory=dict)

    def get_attribute(self, name: str) -> AttributeDefinition | None:
        return self.attributes.get(name)

    @property
    def external_id_attribute(self) -> AttributeDefinition | None:
        return next((a for a in self.attributes.values() if a.is_external_id), None)

    @property
    def secondary_external_id_attribute(self) -> AttributeDefinition | None:
        return next((a for a in self.attributes.values() if a.is_secondary_external_id), None)


@dataclass(frozen=True, slots=True, kw_only=True)
class MetaverseObjectTypeDefinition(ObjectTypeDefinition):
    deletion_rule: DeletionRule = DeletionRule.MANUAL
    deletion_grace_period: timedelta | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class RunProfile:
    id: UUID
    name: str
    run_type: RunType
    page_size: int | None = None
    file_path: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ConnectedSystem:
    """A configured external system and the connector used to reach it.

    ``connector`` is an import path of the form ``"package.module:factory"``.
    """

    id: UUID
    name: str
    connector: str
    settings: Mapping[str, object] = field(default_factory=dict)
    object_types: Mapping[str, ObjectTypeDefinition] = field(default_factory=dict)
    run_profiles: tuple[RunProfile, ...] = ()

    def object_type(self, name: str) -> ObjectTypeDefinition | None:
        return self.object_types.get(name)

    def run_profile(self, run_profile_id: UUID) -> RunProfile | None:
        return next((p for p in self.run_profiles if p.id == run_profile_id), None)

"""Read-through view of the configured schema for one run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from idsync.domain.errors import ConnectorConfigurationError, SchemaError

if TYPE_CHECKING:
    from uuid import UUID

    from idsync.domain.model import (
        AttributeDefinition,
        ConnectedSystem,
        MetaverseObjectTypeDefinition,
        ObjectTypeDefinition,
    )
    from idsync.domain.ports import SyncRepositories


@dataclass(slots=True)
class SchemaCatalog:
    systems: dict[UUID, ConnectedSystem] = field(default_factory=dict["UUID", "ConnectedSystem"])
    metaverse_types: dict[str, MetaverseObjectTypeDefinition] = field(
        default_factory=dict[str, "MetaverseObjectTypeDefinition"]
    )

    @classmethod
    def load(cls, repositories: SyncRepositories) -> SchemaCatalog:
        return cls(
            systems={s.id: s for s in repositories.connected_systems.list()},
            metaverse_types={t.name: t for t in repositories.metaverse_types.list()},
        )

    def system(self, connected_system_id: UUID) -> ConnectedSystem:
        system = self.systems.get(connected_system_id)
        if system is None:
            raise ConnectorConfigurationError(f"Unknown connected system {connected_system_id}")
        return system

    def cs_type(self, connected_system_id: UUID, name: str) -> ObjectTypeDefinition:
        system = self.system(connected_system_id)
        definition = system.object_type(name)
        if definition is None:
            raise SchemaError(f"Object type '{name}' is not defined for {system.name}")
        return definition

    def mv_type(self, name: str) -> MetaverseObjectTypeDefinition:
        definition = self.metaverse_types.get(name)
        if definition is None:
            raise SchemaError(f"Metaverse object type '{name}' is not defined")
        return definition

    def multi_valued_cs(self, connected_system_id: UUID, name: str) -> frozenset[str]:
        return _multi_valued(self.cs_type(connected_system_id, name))

    def multi_valued_mv(self, name: str) -> frozenset[str]:
        return _multi_valued(self.mv_type(name))


def _multi_valued(definition: ObjectTypeDefinition) -> frozenset[str]:
    return frozenset(a.name for a in definition.attributes.values() if a.is_multi_valued)


def require_attribute(definition: ObjectTypeDefinition, name: str) -> AttributeDefinition:
    attribute = definition.get_attribute(name)
    if attribute is None:
        raise SchemaError(f"Attribute '{name}' is not defined on '{definition.name}'")
    return attribute

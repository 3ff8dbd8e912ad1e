"""Translate configuration documents into domain definitions and back.

Ids omitted from a document are derived from names, so loading the same file
twice updates the stored definitions instead of duplicating them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final
from uuid import UUID, uuid5

from idsync.domain.model import (
    AttributeDefinition,
    ConnectedSystem,
    MetaverseObjectTypeDefinition,
    ObjectMatchingRule,
    ObjectTypeDefinition,
    RunProfile,
    ScopingCriteriaGroup,
    ScopingCriterion,
    SyncRule,
    SyncRuleMapping,
    SyncRuleMappingSource,
)

from .schema import (
    AttributeDocument,
    ConnectedSystemDocument,
    MappingDocument,
    MappingSourceDocument,
    MatchingRuleDocument,
    MetaverseObjectTypeDocument,
    ObjectTypeDocument,
    RunProfileDocument,
    ScopingCriterionDocument,
    ScopingGroupDocument,
    SyncRuleDocument,
)

if TYPE_CHECKING:
    from .schema import EngineConfigDocument

CONFIG_NAMESPACE: Final[UUID] = UUID("5c0b8a3e-6f0c-4b7e-9a51-1d2f7c9e4a10")


def stable_id(explicit: UUID | None, *names: str) -> UUID:
    return explicit or uuid5(CONFIG_NAMESPACE, "/".join(names))


@dataclass(frozen=True, slots=True)
class EngineConfiguration:
    connected_systems: tuple[ConnectedSystem, ...] = ()
    metaverse_types: tuple[MetaverseObjectTypeDefinition, ...] = ()
    sync_rules: tuple[SyncRule, ...] = ()


def translate_config(document: EngineConfigDocument) -> EngineConfiguration:
    systems = tuple(to_connected_system(doc) for doc in document.connected_systems)
    ids_by_name = {system.name: system.id for system in systems}
    rules = tuple(
        to_sync_rule(doc, ids_by_name[doc.connected_system])
        if doc.connected_system is not None
        else to_sync_rule(doc)
        for doc in document.sync_rules
    )
    return EngineConfiguration(
        connected_systems=systems,
        metaverse_types=tuple(to_metaverse_type(doc) for doc in document.metaverse_object_types),
        sync_rules=rules,
    )


# Documents -> domain ----------------------------------------------------------


def _attributes(docs: list[AttributeDocument]) -> dict[str, AttributeDefinition]:
    return {
        doc.name: AttributeDefinition(
            name=doc.name,
            data_type=doc.data_type,
            plurality=doc.plurality,
            is_external_id=doc.is_external_id,
            is_secondary_external_id=doc.is_secondary_external_id,
        )
        for doc in docs
    }


def to_object_type(doc: ObjectTypeDocument) -> ObjectTypeDefinition:
    return ObjectTypeDefinition(name=doc.name, attributes=_attributes(doc.attributes))


def to_metaverse_type(doc: MetaverseObjectTypeDocument) -> MetaverseObjectTypeDefinition:
    return MetaverseObjectTypeDefinition(
        name=doc.name,
        attributes=_attributes(doc.attributes),
        deletion_rule=doc.deletion_rule,
        deletion_grace_period=doc.deletion_grace_period,
    )


def to_connected_system(doc: ConnectedSystemDocument) -> ConnectedSystem:
    system_id = stable_id(doc.id, "connected_system", doc.name)
    return ConnectedSystem(
        id=system_id,
        name=doc.name,
        connector=doc.connector,
        settings=dict(doc.settings),
        object_types={t.name: to_object_type(t) for t in doc.object_types},
        run_profiles=tuple(
            RunProfile(
                id=stable_id(profile.id, "run_profile", str(system_id), profile.name),
                name=profile.name,
                run_type=profile.run_type,
                page_size=profile.page_size,
                file_path=profile.file_path,
            )
            for profile in doc.run_profiles
        ),
    )


def _source(doc: MappingSourceDocument) -> SyncRuleMappingSource:
    return SyncRuleMappingSource(
        order=doc.order,
        attribute=doc.attribute,
        constant=doc.constant,
        expression=doc.expression,
    )


def _mapping(doc: MappingDocument) -> SyncRuleMapping:
    return SyncRuleMapping(
        target=doc.target,
        priority=doc.priority,
        sources=tuple(_source(s) for s in doc.sources),
    )


def _scoping_group(doc: ScopingGroupDocument) -> ScopingCriteriaGroup:
    return ScopingCriteriaGroup(
        group_type=doc.group_type,
        criteria=tuple(
            ScopingCriterion(attribute=c.attribute, comparison=c.comparison, value=c.value)
            for c in doc.criteria
        ),
        child_groups=tuple(_scoping_group(child) for child in doc.child_groups),
    )


def to_sync_rule(doc: SyncRuleDocument, connected_system_id: UUID | None = None) -> SyncRule:
    system_id = connected_system_id or doc.connected_system_id
    if system_id is None:
        raise ValueError(f"sync rule '{doc.name}' has no connected system id")
    return SyncRule(
        id=stable_id(doc.id, "sync_rule", doc.name),
        name=doc.name,
        connected_system_id=system_id,
        cs_object_type=doc.cs_object_type,
        mv_object_type=doc.mv_object_type,
        direction=doc.direction,
        order=doc.order,
        enabled=doc.enabled,
        project_to_metaverse=doc.project_to_metaverse,
        provision_to_connected_system=doc.provision_to_connected_system,
        outbound_deprovision_action=doc.outbound_deprovision_action,
        mappings=tuple(_mapping(m) for m in doc.mappings),
        scoping=tuple(_scoping_group(g) for g in doc.scoping),
        matching_rules=tuple(
            ObjectMatchingRule(
                order=m.order,
                target_attribute=m.target_attribute,
                source_attribute=m.source_attribute,
                source_expression=m.source_expression,
                case_sensitive=m.case_sensitive,
            )
            for m in doc.matching_rules
        ),
    )


# Domain -> documents ----------------------------------------------------------


def _attribute_documents(definition: ObjectTypeDefinition) -> list[AttributeDocument]:
    return [
        AttributeDocument(
            name=a.name,
            data_type=a.data_type,
            plurality=a.plurality,
            is_external_id=a.is_external_id,
            is_secondary_external_id=a.is_secondary_external_id,
        )
        for a in definition.attributes.values()
    ]


def from_metaverse_type(definition: MetaverseObjectTypeDefinition) -> MetaverseObjectTypeDocument:
    return MetaverseObjectTypeDocument(
        name=definition.name,
        attributes=_attribute_documents(definition),
        deletion_rule=definition.deletion_rule,
        deletion_grace_period=definition.deletion_grace_period,
    )


def from_connected_system(system: ConnectedSystem) -> ConnectedSystemDocument:
    return ConnectedSystemDocument(
        id=system.id,
        name=system.name,
        connector=system.connector,
        settings=dict(system.settings),
        object_types=[
            ObjectTypeDocument(name=t.name, attributes=_attribute_documents(t))
            for t in system.object_types.values()
        ],
        run_profiles=[
            RunProfileDocument(
                id=p.id,
                name=p.name,
                run_type=p.run_type,
                page_size=p.page_size,
                file_path=p.file_path,
            )
            for p in system.run_profiles
        ],
    )


def _scoping_document(group: ScopingCriteriaGroup) -> ScopingGroupDocument:
    return ScopingGroupDocument(
        group_type=group.group_type,
        criteria=[
            ScopingCriterionDocument(attribute=c.attribute, comparison=c.comparison, value=c.value)
            for c in group.criteria
        ],
        child_groups=[_scoping_document(child) for child in group.child_groups],
    )


def from_sync_rule(rule: SyncRule) -> SyncRuleDocument:
    return SyncRuleDocument(
        id=rule.id,
        name=rule.name,
        connected_system_id=rule.connected_system_id,
        cs_object_type=rule.cs_object_type,
        mv_object_type=rule.mv_object_type,
        direction=rule.direction,
        order=rule.order,
        enabled=rule.enabled,
        project_to_metaverse=rule.project_to_metaverse,
        provision_to_connected_system=rule.provision_to_connected_system,
        outbound_deprovision_action=rule.outbound_deprovision_action,
        mappings=[
            MappingDocument(
                target=m.target,
                priority=m.priority,
                sources=[
                    MappingSourceDocument(
                        order=s.order,
                        attribute=s.attribute,
                        constant=s.constant,
                        expression=s.expression,
                    )
                    for s in m.sources
                ],
            )
            for m in rule.mappings
        ],
        scoping=[_scoping_document(g) for g in rule.scoping],
        matching_rules=[
            MatchingRuleDocument(
                order=m.order,
                target_attribute=m.target_attribute or "",
                source_attribute=m.source_attribute,
                source_expression=m.source_expression,
                case_sensitive=m.case_sensitive,
            )
            for m in rule.matching_rules
        ],
    )

"""Declarative synchronisation rules.

A ``SyncRule`` binds a connected-system object type to a metaverse object type
in one direction and owns ordered mappings. Each mapping targets one attribute
with a priority (lower = more authoritative) and one or more sources.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from idsync.domain.model.enums import (
    OutboundDeprovisionAction,
    ScopingComparison,
    ScopingGroupType,
    SyncRuleDirection,
)

if TYPE_CHECKING:
    from uuid import UUID


class MappingSourceKind(StrEnum):
    ATTRIBUTE = "attribute"
    CONSTANT = "constant"
    EXPRESSION = "expression"


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRuleMappingSource:
    """Exactly one of ``attribute``, ``constant`` or ``expression`` is set."""

    order: int = 0
    attribute: str | None = None
    constant: object | None = None
    expression: str | None = None

    def __post_init__(self) -> None:
        provided = [x for x in (self.attribute, self.constant, self.expression) if x is not None]
        if len(provided) != 1:
            raise ValueError(
                "a mapping source needs exactly one of attribute, constant or expression"
            )

    @property
    def kind(self) -> MappingSourceKind:
        if self.attribute is not None:
            return MappingSourceKind.ATTRIBUTE
        if self.expression is not None:
            return MappingSourceKind.EXPRESSION
        return MappingSourceKind.CONSTANT


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRuleMapping:
    target: str
    sources: tuple[SyncRuleMappingSource, ...]
    priority: int = 0

    @property
    def ordered_sources(self) -> tuple[SyncRuleMappingSource, ...]:
        return tuple(sorted(self.sources, key=lambda s: s.order))


@dataclass(frozen=True, slots=True, kw_only=True)
class ObjectMatchingRule:
    """Match a CSO attribute (or expression) against an MVO attribute."""

    order: int = 0
    target_attribute: str | None = None
    source_attribute: str | None = None
    source_expression: str | None = None
    case_sensitive: bool = False

    @property
    def is_valid(self) -> bool:
        has_source = self.source_attribute is not None or self.source_expression is not None
        return has_source and self.target_attribute is not None


@dataclass(frozen=True, slots=True, kw_only=True)
class ScopingCriterion:
    attribute: str
    comparison: ScopingComparison
    value: object


@dataclass(frozen=True, slots=True, kw_only=True)
class ScopingCriteriaGroup:
    group_type: ScopingGroupType = ScopingGroupType.ALL
    criteria: tuple[ScopingCriterion, ...] = ()
    child_groups: tuple[ScopingCriteriaGroup, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRule:
    id: UUID
    name: str
    connected_system_id: UUID
    cs_object_type: str
    mv_object_type: str
    direction: SyncRuleDirection
    order: int = 0
    enabled: bool = True
    project_to_metaverse: bool = False
    provision_to_connected_system: bool = False
    outbound_deprovision_action: OutboundDeprovisionAction = OutboundDeprovisionAction.DISCONNECT
    mappings: tuple[SyncRuleMapping, ...] = ()
    scoping: tuple[ScopingCriteriaGroup, ...] = ()
    matching_rules: tuple[ObjectMatchingRule, ...] = ()

    @property
    def is_import(self) -> bool:
        return self.direction == SyncRuleDirection.IMPORT

    @property
    def is_export(self) -> bool:
        return self.direction == SyncRuleDirection.EXPORT

    @property
    def precedence(self) -> tuple[int, str]:
        return (self.order, self.name)

    def mappings_for(self, target: str) -> tuple[SyncRuleMapping, ...]:
        return tuple(m for m in self.mappings if m.target == target)

    def targets(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(m.target for m in self.mappings))

    def ordered_matching_rules(self) -> tuple[ObjectMatchingRule, ...]:
        return tuple(sorted(self.matching_rules, key=lambda r: r.order))

"""Pydantic models describing the declarative engine configuration document."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from idsync.domain.errors import ExpressionError
from idsync.domain.model import (
    AttributeDataType,
    AttributePlurality,
    DeletionRule,
    OutboundDeprovisionAction,
    RunType,
    ScopingComparison,
    ScopingGroupType,
    SyncRuleDirection,
)
from idsync.domain.sync.expressions import compile_expression


def _check_expression(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        compile_expression(value)
    except ExpressionError as exc:
        raise ValueError(f"invalid expression {value!r}: {exc}") from exc
    return value


def _unique_names(names: list[str], what: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate {what} '{name}'")
        seen.add(name)


class ConfigBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class AttributeDocument(ConfigBaseModel):
    name: str = Field(min_length=1)
    data_type: AttributeDataType = AttributeDataType.TEXT
    plurality: AttributePlurality = AttributePlurality.SINGLE_VALUED
    is_external_id: bool = Field(default=False, alias="external_id")
    is_secondary_external_id: bool = Field(default=False, alias="secondary_external_id")


class ObjectTypeDocument(ConfigBaseModel):
    name: str = Field(min_length=1)
    attributes: list[AttributeDocument] = Field(default_factory=list[AttributeDocument])

    @model_validator(mode="after")
    def _check_attributes(self) -> Self:
        _unique_names([a.name for a in self.attributes], f"attribute of {self.name}")
        if sum(a.is_external_id for a in self.attributes) > 1:
            raise ValueError(f"{self.name} declares more than one external id attribute")
        if sum(a.is_secondary_external_id for a in self.attributes) > 1:
            raise ValueError(f"{self.name} declares more than one secondary external id attribute")
        return self


class MetaverseObjectTypeDocument(ObjectTypeDocument):
    deletion_rule: DeletionRule = DeletionRule.MANUAL
    deletion_grace_period: timedelta | None = None


class RunProfileDocument(ConfigBaseModel):
    id: UUID | None = None
    name: str = Field(min_length=1)
    run_type: RunType
    page_size: int | None = Field(default=None, ge=1)
    file_path: str | None = None


class ConnectedSystemDocument(ConfigBaseModel):
    id: UUID | None = None
    name: str = Field(min_length=1)
    connector: str = Field(min_length=1)
    settings: dict[str, Any] = Field(default_factory=dict[str, Any])
    object_types: list[ObjectTypeDocument] = Field(default_factory=list[ObjectTypeDocument])
    run_profiles: list[RunProfileDocument] = Field(default_factory=list[RunProfileDocument])

    @model_validator(mode="after")
    def _check_names(self) -> Self:
        _unique_names([t.name for t in self.object_types], f"object type of {self.name}")
        _unique_names([p.name for p in self.run_profiles], f"run profile of {self.name}")
        return self


class MappingSourceDocument(ConfigBaseModel):
    order: int = 0
    attribute: str | None = None
    constant: Any = None
    expression: str | None = None

    _validate_expression = field_validator("expression")(_check_expression)

    @model_validator(mode="after")
    def _exactly_one_source(self) -> Self:
        provided = [x for x in (self.attribute, self.constant, self.expression) if x is not None]
        if len(provided) != 1:
            raise ValueError(
                "a mapping source needs exactly one of attribute, constant or expression"
            )
        return self


class MappingDocument(ConfigBaseModel):
    target: str = Field(min_length=1)
    priority: int = 0
    sources: list[MappingSourceDocument] = Field(min_length=1)


class MatchingRuleDocument(ConfigBaseModel):
    order: int = 0
    target_attribute: str
    source_attribute: str | None = None
    source_expression: str | None = None
    case_sensitive: bool = False

    _validate_expression = field_validator("source_expression")(_check_expression)

    @model_validator(mode="after")
    def _one_source(self) -> Self:
        if (self.source_attribute is None) == (self.source_expression is None):
            raise ValueError("a matching rule needs either source_attribute or source_expression")
        return self


class ScopingCriterionDocument(ConfigBaseModel):
    attribute: str
    comparison: ScopingComparison
    value: Any


class ScopingGroupDocument(ConfigBaseModel):
    group_type: ScopingGroupType = ScopingGroupType.ALL
    criteria: list[ScopingCriterionDocument] = Field(
        default_factory=list[ScopingCriterionDocument]
    )
    child_groups: list[ScopingGroupDocument] = Field(default_factory=list["ScopingGroupDocument"])


class SyncRuleDocument(ConfigBaseModel):
    """A sync rule; the file refers to its system by name, storage by id."""

    id: UUID | None = None
    name: str = Field(min_length=1)
    connected_system: str | None = None
    connected_system_id: UUID | None = None
    cs_object_type: str
    mv_object_type: str
    direction: SyncRuleDirection
    order: int = 0
    enabled: bool = True
    project_to_metaverse: bool = False
    provision_to_connected_system: bool = False
    outbound_deprovision_action: OutboundDeprovisionAction = OutboundDeprovisionAction.DISCONNECT
    mappings: list[MappingDocument] = Field(default_factory=list[MappingDocument])
    scoping: list[ScopingGroupDocument] = Field(default_factory=list[ScopingGroupDocument])
    matching_rules: list[MatchingRuleDocument] = Field(default_factory=list[MatchingRuleDocument])

    @model_validator(mode="after")
    def _check_direction(self) -> Self:
        if self.connected_system is None and self.connected_system_id is None:
            raise ValueError(f"sync rule '{self.name}' does not name its connected system")
        if self.direction == SyncRuleDirection.EXPORT and self.project_to_metaverse:
            raise ValueError(f"export rule '{self.name}' cannot project to the metaverse")
        if self.direction == SyncRuleDirection.IMPORT and self.provision_to_connected_system:
            raise ValueError(f"import rule '{self.name}' cannot provision to its system")
        return self


class EngineConfigDocument(ConfigBaseModel):
    connected_systems: list[ConnectedSystemDocument] = Field(
        default_factory=list[ConnectedSystemDocument]
    )
    metaverse_object_types: list[MetaverseObjectTypeDocument] = Field(
        default_factory=list[MetaverseObjectTypeDocument]
    )
    sync_rules: list[SyncRuleDocument] = Field(default_factory=list[SyncRuleDocument])

    @model_validator(mode="after")
    def _check_references(self) -> Self:
        _unique_names([s.name for s in self.connected_systems], "connected system")
        _unique_names([t.name for t in self.metaverse_object_types], "metaverse object type")
        _unique_names([r.name for r in self.sync_rules], "sync rule")

        systems = {s.name: s for s in self.connected_systems}
        mv_types = {t.name: t for t in self.metaverse_object_types}
        for rule in self.sync_rules:
            if rule.connected_system is None:
                # Refers to an already stored system by id.
                continue
            system = systems.get(rule.connected_system)
            if system is None:
                raise ValueError(
                    f"sync rule '{rule.name}' refers to unknown system '{rule.connected_system}'"
                )
            cs_type = next((t for t in system.object_types if t.name == rule.cs_object_type), None)
            if cs_type is None:
                raise ValueError(
                    f"sync rule '{rule.name}': {system.name} has no object type "
                    f"'{rule.cs_object_type}'"
                )
            mv_type = mv_types.get(rule.mv_object_type)
            if mv_type is None:
                raise ValueError(
                    f"sync rule '{rule.name}' refers to unknown metaverse object type "
                    f"'{rule.mv_object_type}'"
                )
            target_type = cs_type if rule.direction == SyncRuleDirection.EXPORT else mv_type
            known = {a.name for a in target_type.attributes}
            for mapping in rule.mappings:
                if mapping.target not in known:
                    raise ValueError(
                        f"sync rule '{rule.name}' maps to unknown attribute '{mapping.target}'"
                    )
        return self

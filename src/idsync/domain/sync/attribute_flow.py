"""Attribute flow: computing attribute values on one side from the other.

Inbound flow recomputes an MVO from every joined CSO's import rule; outbound flow
computes the values a target CSO should hold according to one export rule.

Precedence is the same both ways. For one target attribute, candidate mappings
are ordered by ``(priority, rule.order, rule.name)``; within a mapping, sources
are tried in order and the first one yielding a non-null value wins. A mapping
that yields nothing falls back to the next candidate; a mapping that raises is
reported and skipped without affecting any other attribute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeAlias

from idsync.domain.errors import ExpressionError, MappingEvaluationError
from idsync.domain.model import AttributeDataType, AttributeValue, MappingSourceKind
from idsync.domain.sync.expressions import AttributeAccessor, compile_expression

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from uuid import UUID

    from idsync.domain.model import (
        AttributeDefinition,
        AttributeValueHolder,
        ConnectedSystemObject,
        MetaverseObject,
        SyncRule,
        SyncRuleMapping,
    )
    from idsync.domain.sync.catalog import SchemaCatalog

    ReferenceTranslator: TypeAlias = Callable[[UUID], UUID | None]


_default_log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Contribution:
    """A joined CSO together with the import rule that flows it into the metaverse."""

    cso: ConnectedSystemObject
    rule: SyncRule


@dataclass(slots=True, kw_only=True)
class AttributeFlowResult:
    added: list[str] = field(default_factory=list[str])
    removed: list[str] = field(default_factory=list[str])
    unchanged: list[str] = field(default_factory=list[str])
    errors: list[MappingEvaluationError] = field(default_factory=list[MappingEvaluationError])
    values_added: int = 0
    values_removed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.values_added or self.values_removed)


@dataclass(slots=True, kw_only=True)
class DesiredAttributes:
    """Outbound result: target values per attribute plus per-mapping failures.

    Attributes whose every candidate mapping failed are absent, so callers never
    mistake a failure for "no value".
    """

    values: dict[str, list[AttributeValue]] = field(
        default_factory=dict[str, list[AttributeValue]]
    )
    errors: list[MappingEvaluationError] = field(default_factory=list[MappingEvaluationError])


@dataclass(frozen=True, slots=True)
class _Candidate:
    mapping: SyncRuleMapping
    rule: SyncRule
    source: AttributeValueHolder
    mv: AttributeAccessor
    cs: AttributeAccessor
    contributor: UUID | None

    @property
    def precedence(self) -> tuple[int, int, str]:
        return (self.mapping.priority, *self.rule.precedence)


class AttributeFlowEvaluator:
    def __init__(self, catalog: SchemaCatalog, *, log: logging.Logger | None = None) -> None:
        self.catalog = catalog
        self.log = log or _default_log

    def compute_attribute_flow(
        self,
        mvo: MetaverseObject,
        contributions: Sequence[Contribution],
        *,
        translate_reference: ReferenceTranslator | None = None,
    ) -> AttributeFlowResult:
        """Recompute ``mvo`` from its contributing CSOs, applying the result in place."""

        mv_type = self.catalog.mv_type(mvo.object_type)
        mv_accessor = AttributeAccessor(mvo, self.catalog.multi_valued_mv(mvo.object_type))
        candidates: dict[str, list[_Candidate]] = {}
        for contribution in contributions:
            cso = contribution.cso
            cs_accessor = AttributeAccessor(
                cso, self.catalog.multi_valued_cs(cso.connected_system_id, cso.object_type)
            )
            for mapping in contribution.rule.mappings:
                candidates.setdefault(mapping.target, []).append(
                    _Candidate(
                        mapping=mapping,
                        rule=contribution.rule,
                        source=cso,
                        mv=mv_accessor,
                        cs=cs_accessor,
                        contributor=cso.connected_system_id,
                    )
                )

        result = AttributeFlowResult()
        for target in sorted(candidates):
            definition = mv_type.get_attribute(target)
            if definition is None:
                result.errors.extend(
                    MappingEvaluationError(
                        f"'{target}' is not an attribute of {mv_type.name}",
                        rule_name=c.rule.name,
                        target=target,
                    )
                    for c in candidates[target]
                )
                continue
            outcome = self._resolve(
                candidates[target], definition, result.errors, translate_reference
            )
            if outcome is None:
                result.unchanged.append(target)
                continue
            values, contributor = outcome
            for value in values:
                value.contributed_by_system_id = contributor
            added, removed = mvo.replace_values(target, values)
            for kept in mvo.values_for(target):
                kept.contributed_by_system_id = contributor
            if added:
                result.added.append(target)
                result.values_added += len(added)
            if removed:
                result.removed.append(target)
                result.values_removed += len(removed)
            if not added and not removed:
                result.unchanged.append(target)

        for error in result.errors:
            self.log.warning(
                "Mapping %s -> %s failed for MVO %s: %s",
                error.rule_name,
                error.target,
                mvo.id,
                error,
            )
        return result

    def compute_export_attributes(
        self,
        mvo: MetaverseObject,
        target_cso: ConnectedSystemObject | None,
        rule: SyncRule,
    ) -> DesiredAttributes:
        """Values the target CSO should hold per ``rule``; references carry MVO ids."""

        cs_type = self.catalog.cs_type(rule.connected_system_id, rule.cs_object_type)
        mv_accessor = AttributeAccessor(mvo, self.catalog.multi_valued_mv(mvo.object_type))
        cs_accessor = AttributeAccessor(
            target_cso, self.catalog.multi_valued_cs(rule.connected_system_id, rule.cs_object_type)
        )
        desired = DesiredAttributes()
        for target in rule.targets():
            definition = cs_type.get_attribute(target)
            if definition is None:
                desired.errors.append(
                    MappingEvaluationError(
                        f"'{target}' is not an attribute of {cs_type.name}",
                        rule_name=rule.name,
                        target=target,
                    )
                )
                continue
            candidates = [
                _Candidate(
                    mapping=mapping,
                    rule=rule,
                    source=mvo,
                    mv=mv_accessor,
                    cs=cs_accessor,
                    contributor=None,
                )
                for mapping in rule.mappings_for(target)
            ]
            outcome = self._resolve(candidates, definition, desired.errors, None)
            if outcome is not None:
                desired.values[target] = outcome[0]
        return desired

    def _resolve(
        self,
        candidates: Sequence[_Candidate],
        definition: AttributeDefinition,
        errors: list[MappingEvaluationError],
        translate_reference: ReferenceTranslator | None,
    ) -> tuple[list[AttributeValue], UUID | None] | None:
        """First candidate yielding values wins; ``None`` when every candidate failed."""

        failed = 0
        for candidate in sorted(candidates, key=lambda c: c.precedence):
            try:
                values = self._evaluate(candidate, definition, translate_reference)
            except MappingEvaluationError as exc:
                errors.append(exc)
                failed += 1
                continue
            if values:
                return values, candidate.contributor
        if candidates and failed == len(candidates):
            return None
        return [], None

    def _evaluate(
        self,
        candidate: _Candidate,
        definition: AttributeDefinition,
        translate_reference: ReferenceTranslator | None,
    ) -> list[AttributeValue]:
        mapping = candidate.mapping
        try:
            for source in mapping.ordered_sources:
                match source.kind:
                    case MappingSourceKind.ATTRIBUTE:
                        raw = _attribute_values(
                            candidate.source, source.attribute or "", translate_reference
                        )
                    case MappingSourceKind.CONSTANT:
                        raw = _flatten(source.constant)
                    case MappingSourceKind.EXPRESSION:
                        compiled = compile_expression(source.expression or "")
                        raw = _flatten(compiled.evaluate(mv=candidate.mv, cs=candidate.cs))
                if not raw:
                    continue
                values = _to_values(mapping.target, definition, raw)
                return values if definition.is_multi_valued else values[:1]
        except (ExpressionError, ValueError, TypeError) as exc:
            raise MappingEvaluationError(
                f"{type(exc).__name__}: {exc}", rule_name=candidate.rule.name, target=mapping.target
            ) from exc
        return []


def _attribute_values(
    holder: AttributeValueHolder,
    attribute: str,
    translate_reference: ReferenceTranslator | None,
) -> list[object]:
    raw: list[object] = []
    for value in holder.values_for(attribute):
        if value.data_type == AttributeDataType.REFERENCE:
            if value.reference_id is None:
                continue
            target = (
                translate_reference(value.reference_id)
                if translate_reference
                else value.reference_id
            )
            if target is not None:
                raw.append(target)
        elif value.value is not None:
            raw.append(value.value)
    return raw


def _flatten(result: object) -> list[object]:
    if result is None:
        return []
    if isinstance(result, (tuple, list, set, frozenset)):
        return [item for item in result if item is not None and item != ""]
    if result == "":
        return []
    return [result]


def _to_values(
    target: str, definition: AttributeDefinition, raw: list[object]
) -> list[AttributeValue]:
    values: list[AttributeValue] = []
    seen: set[object] = set()
    for item in raw:
        value = AttributeValue.of(target, definition.data_type, item)
        key = value.value_key()
        if key in seen:
            continue
        seen.add(key)
        values.append(value)
    return values

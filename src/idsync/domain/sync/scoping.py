"""Scoping criteria evaluation.

Top-level groups are ORed; inside a group, ``ALL`` requires every criterion and
child group to pass, ``ANY`` requires one. A rule without scoping groups is
unscoped and includes every object. Text comparisons are case-insensitive;
numbers and datetimes compare by value.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from idsync.domain.model import (
    AttributeDataType,
    ScopingComparison,
    ScopingGroupType,
    coerce_value,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from idsync.domain.model import (
        AttributeValueHolder,
        ScopingCriteriaGroup,
        ScopingCriterion,
    )


_NEGATED = {
    ScopingComparison.NOT_EQUALS: ScopingComparison.EQUALS,
    ScopingComparison.NOT_STARTS_WITH: ScopingComparison.STARTS_WITH,
    ScopingComparison.NOT_ENDS_WITH: ScopingComparison.ENDS_WITH,
    ScopingComparison.NOT_CONTAINS: ScopingComparison.CONTAINS,
}

_ORDERING = frozenset(
    {
        ScopingComparison.LESS_THAN,
        ScopingComparison.LESS_THAN_OR_EQUAL,
        ScopingComparison.GREATER_THAN,
        ScopingComparison.GREATER_THAN_OR_EQUAL,
    }
)


def is_in_scope(obj: AttributeValueHolder, groups: Sequence[ScopingCriteriaGroup]) -> bool:
    if not groups:
        return True
    return any(_group_matches(obj, group) for group in groups)


def _group_matches(obj: AttributeValueHolder, group: ScopingCriteriaGroup) -> bool:
    results = [_criterion_matches(obj, c) for c in group.criteria]
    results.extend(_group_matches(obj, child) for child in group.child_groups)
    if not results:
        return True
    if group.group_type == ScopingGroupType.ANY:
        return any(results)
    return all(results)


def _criterion_matches(obj: AttributeValueHolder, criterion: ScopingCriterion) -> bool:
    values = obj.values_for(criterion.attribute)
    positive = _NEGATED.get(criterion.comparison)
    if positive is not None:
        return not any(_compare(v.value, positive, criterion.value, v.data_type) for v in values)
    return any(
        _compare(v.value, criterion.comparison, criterion.value, v.data_type) for v in values
    )


def _compare(
    actual: object,
    comparison: ScopingComparison,
    expected: object,
    data_type: AttributeDataType,
) -> bool:
    if actual is None:
        return False
    if comparison in _ORDERING:
        return _compare_ordered(actual, comparison, expected, data_type)
    if data_type in (AttributeDataType.TEXT, AttributeDataType.REFERENCE) or isinstance(
        actual, str
    ):
        left = str(actual).casefold()
        right = "" if expected is None else str(expected).casefold()
        match comparison:
            case ScopingComparison.EQUALS:
                return left == right
            case ScopingComparison.STARTS_WITH:
                return left.startswith(right)
            case ScopingComparison.ENDS_WITH:
                return left.endswith(right)
            case ScopingComparison.CONTAINS:
                return right in left
            case _:
                return False
    if comparison != ScopingComparison.EQUALS:
        return False
    try:
        return actual == coerce_value(data_type, expected)
    except (TypeError, ValueError):
        return False


def _as_number(value: object) -> float | None:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _compare_ordered(
    actual: object,
    comparison: ScopingComparison,
    expected: object,
    data_type: AttributeDataType,
) -> bool:
    if data_type not in (
        AttributeDataType.NUMBER,
        AttributeDataType.LONG_NUMBER,
        AttributeDataType.DATETIME,
    ):
        return False
    try:
        bound = coerce_value(data_type, expected)
    except (TypeError, ValueError):
        return False
    left = _as_number(actual)
    right = _as_number(bound)
    if left is None or right is None:
        return False
    match comparison:
        case ScopingComparison.LESS_THAN:
            return left < right
        case ScopingComparison.LESS_THAN_OR_EQUAL:
            return left <= right
        case ScopingComparison.GREATER_THAN:
            return left > right
        case _:
            return left >= right

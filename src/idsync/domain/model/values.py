"""Typed attribute values.

A value is a single struct discriminated by ``data_type`` with one optional field
per storage type, rather than a class per type. Metaverse and connected-system
values share the same struct and table; ``owner_kind``/``owner_id`` record which
object holds the value.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeAlias, cast
from uuid import UUID

from idsync.domain.model.entity import Entity
from idsync.domain.model.enums import AttributeDataType, ValueOwner

if TYPE_CHECKING:
    from collections.abc import Hashable


RawValue: TypeAlias = str | int | bool | datetime | bytes | UUID


_TRUE_STRINGS = frozenset({"true", "1", "yes", "y"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n"})


def _coerce_datetime(raw: object) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    else:
        raise TypeError(f"cannot interpret {raw!r} as a datetime")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _coerce_bool(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw != 0
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"cannot interpret {raw!r} as a boolean")


def _coerce_int(raw: object) -> int:
    if isinstance(raw, bool):
        raise TypeError("booleans are not numbers")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        return int(raw.strip())
    raise TypeError(f"cannot interpret {raw!r} as a number")


def _coerce_binary(raw: object) -> bytes:
    if isinstance(raw, bytes):
        return raw
    if isinstance(raw, str):
        try:
            return base64.b64decode(raw, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    raise TypeError(f"cannot interpret {raw!r} as binary")


def coerce_value(data_type: AttributeDataType, raw: object) -> RawValue:
    """Convert a loosely typed value into the storage type of ``data_type``.

    Raises ``ValueError``/``TypeError`` when the value cannot be represented.
    """

    match data_type:
        case AttributeDataType.TEXT:
            return raw if isinstance(raw, str) else str(raw)
        case AttributeDataType.NUMBER | AttributeDataType.LONG_NUMBER:
            return _coerce_int(raw)
        case AttributeDataType.BOOLEAN:
            return _coerce_bool(raw)
        case AttributeDataType.DATETIME:
            return _coerce_datetime(raw)
        case AttributeDataType.BINARY:
            return _coerce_binary(raw)
        case AttributeDataType.GUID:
            return raw if isinstance(raw, UUID) else UUID(str(raw))
        case AttributeDataType.REFERENCE:
            if isinstance(raw, UUID):
                return raw
            return str(raw)


@dataclass(eq=False, kw_only=True)
class TypedValue:
    """Discriminated value payload shared by attribute values and export changes."""

    data_type: AttributeDataType
    string_value: str | None = None
    int_value: int | None = None
    bool_value: bool | None = None
    datetime_value: datetime | None = None
    binary_value: bytes | None = None
    guid_value: UUID | None = None
    reference_id: UUID | None = None
    unresolved_reference_value: str | None = None

    @property
    def value(self) -> RawValue | None:
        match self.data_type:
            case AttributeDataType.TEXT:
                return self.string_value
            case AttributeDataType.NUMBER | AttributeDataType.LONG_NUMBER:
                return self.int_value
            case AttributeDataType.BOOLEAN:
                return self.bool_value
            case AttributeDataType.DATETIME:
                return self.datetime_value
            case AttributeDataType.BINARY:
                return self.binary_value
            case AttributeDataType.GUID:
                return self.guid_value
            case AttributeDataType.REFERENCE:
                return self.reference_id or self.unresolved_reference_value

    @property
    def has_value(self) -> bool:
        return self.value is not None

    @property
    def is_unresolved_reference(self) -> bool:
        return (
            self.data_type == AttributeDataType.REFERENCE
            and self.reference_id is None
            and self.unresolved_reference_value is not None
        )

    def value_key(self) -> Hashable:
        """Key used for set semantics; datetimes compare in UTC."""

        value = self.value
        if isinstance(value, datetime):
            value = value.astimezone(UTC)
        return (self.data_type, value)

    def same_value(self, other: TypedValue) -> bool:
        return self.value_key() == other.value_key()

    def assign(self, raw: object) -> None:
        """Store ``raw`` in the field matching ``data_type``."""

        self._clear()
        if raw is None:
            return
        coerced = coerce_value(self.data_type, raw)
        match self.data_type:
            case AttributeDataType.TEXT:
                self.string_value = str(coerced)
            case AttributeDataType.NUMBER | AttributeDataType.LONG_NUMBER:
                self.int_value = cast("int", coerced)
            case AttributeDataType.BOOLEAN:
                self.bool_value = bool(coerced)
            case AttributeDataType.DATETIME:
                self.datetime_value = cast("datetime", coerced)
            case AttributeDataType.BINARY:
                self.binary_value = cast("bytes", coerced)
            case AttributeDataType.GUID:
                self.guid_value = cast("UUID", coerced)
            case AttributeDataType.REFERENCE:
                if isinstance(coerced, UUID):
                    self.reference_id = coerced
                else:
                    self.unresolved_reference_value = str(coerced)

    def copy_payload_from(self, other: TypedValue) -> None:
        self.data_type = other.data_type
        self.string_value = other.string_value
        self.int_value = other.int_value
        self.bool_value = other.bool_value
        self.datetime_value = other.datetime_value
        self.binary_value = other.binary_value
        self.guid_value = other.guid_value
        self.reference_id = other.reference_id
        self.unresolved_reference_value = other.unresolved_reference_value

    def render(self) -> str | None:
        """Human readable rendering, used for audit and mismatch records."""

        value = self.value
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, bytes):
            return base64.b64encode(value).decode("ascii")
        return str(value)

    def _clear(self) -> None:
        self.string_value = None
        self.int_value = None
        self.bool_value = None
        self.datetime_value = None
        self.binary_value = None
        self.guid_value = None
        self.reference_id = None
        self.unresolved_reference_value = None


@dataclass(eq=False, kw_only=True)
class AttributeValue(Entity, TypedValue):
    """One value of one attribute held by a CSO or an MVO."""

    attribute: str
    contributed_by_system_id: UUID | None = None
    owner_kind: ValueOwner | None = None
    owner_id: UUID | None = None

    @classmethod
    def of(
        cls,
        attribute: str,
        data_type: AttributeDataType,
        raw: object,
        *,
        contributed_by_system_id: UUID | None = None,
    ) -> AttributeValue:
        value = cls(
            attribute=attribute,
            data_type=data_type,
            contributed_by_system_id=contributed_by_system_id,
        )
        value.assign(raw)
        return value

    def detached_copy(self, *, attribute: str | None = None) -> AttributeValue:
        """Copy the payload into a new value that belongs to no object yet."""

        copy = AttributeValue(attribute=attribute or self.attribute, data_type=self.data_type)
        copy.copy_payload_from(self)
        return copy

"""Exception families raised by the synchronisation core.

``OperationalError`` subclasses describe expected, administrator-actionable
conditions. They are recorded on the audit trail with their message only and
never abort unrelated objects of the same run. Anything else escaping a run is
treated as a bug: logged with its stack trace and the run is marked failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from idsync.domain.model.enums import ActivityErrorType

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID


class OperationalError(Exception):
    """Expected, user-actionable failure."""

    error_type: ActivityErrorType = ActivityErrorType.OPERATIONAL


class MissingExternalIdError(OperationalError):
    error_type = ActivityErrorType.MISSING_EXTERNAL_ID


class MultipleMatchesError(OperationalError):
    """More than one metaverse object matched a single matching rule."""

    error_type = ActivityErrorType.AMBIGUOUS_MATCH

    def __init__(self, message: str, candidate_ids: Iterable[UUID]) -> None:
        super().__init__(message)
        self.candidate_ids: tuple[UUID, ...] = tuple(candidate_ids)


class JoinConflictError(OperationalError):
    """The matched metaverse object is already joined to another object of the system."""

    error_type = ActivityErrorType.JOIN_CONFLICT


class MalformedImportError(OperationalError):
    error_type = ActivityErrorType.MALFORMED_IMPORT


class ConnectorConfigurationError(OperationalError):
    error_type = ActivityErrorType.CONNECTOR


class ConnectorCommunicationError(OperationalError):
    error_type = ActivityErrorType.CONNECTOR


class UnsupportedTaskError(OperationalError):
    pass


class OperationCancelledError(OperationalError):
    pass


class ExpressionError(Exception):
    """Base class for expression compilation and evaluation failures."""

    def __init__(self, message: str, expression: str) -> None:
        super().__init__(message)
        self.expression = expression


class ExpressionSyntaxError(ExpressionError):
    """The expression is not valid or uses constructs outside the sandbox."""


class ExpressionEvaluationError(ExpressionError):
    """The expression compiled but raised while being evaluated."""


class MappingEvaluationError(OperationalError):
    """A single sync-rule mapping failed; only that mapping is skipped."""

    error_type = ActivityErrorType.MAPPING_EVALUATION

    def __init__(self, message: str, *, rule_name: str, target: str) -> None:
        super().__init__(message)
        self.rule_name = rule_name
        self.target = target


class ConcurrencyConflictError(RuntimeError):
    """A concurrent writer changed a persisted object; re-read and recompute."""


class SchemaError(OperationalError):
    """An object type or attribute is not defined in the configured schema."""

    error_type = ActivityErrorType.SCHEMA

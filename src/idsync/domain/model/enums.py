"""Domain-level enumerations shared across the model."""

from __future__ import annotations

from enum import StrEnum


class AttributeDataType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    LONG_NUMBER = "long_number"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BINARY = "binary"
    GUID = "guid"
    REFERENCE = "reference"


class AttributePlurality(StrEnum):
    SINGLE_VALUED = "single_valued"
    MULTI_VALUED = "multi_valued"


class ValueOwner(StrEnum):
    CONNECTED_SYSTEM_OBJECT = "connected_system_object"
    METAVERSE_OBJECT = "metaverse_object"


class ConnectedSystemObjectStatus(StrEnum):
    NORMAL = "normal"
    PENDING_PROVISIONING = "pending_provisioning"
    OBSOLETE = "obsolete"


class JoinType(StrEnum):
    NOT_JOINED = "not_joined"
    PROJECTED = "projected"
    JOINED = "joined"
    PROVISIONED = "provisioned"


class MetaverseObjectStatus(StrEnum):
    ACTIVE = "active"
    OBSOLETE = "obsolete"
    PENDING_DELETION = "pending_deletion"


class MetaverseObjectOrigin(StrEnum):
    PROJECTED = "projected"
    INTERNAL = "internal"


class DeletionRule(StrEnum):
    MANUAL = "manual"
    WHEN_LAST_CONNECTOR_DISCONNECTED = "when_last_connector_disconnected"


class SyncRuleDirection(StrEnum):
    IMPORT = "import"
    EXPORT = "export"


class OutboundDeprovisionAction(StrEnum):
    DISCONNECT = "disconnect"
    DELETE = "delete"


class ScopingGroupType(StrEnum):
    ALL = "all"
    ANY = "any"


class ScopingComparison(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    STARTS_WITH = "starts_with"
    NOT_STARTS_WITH = "not_starts_with"
    ENDS_WITH = "ends_with"
    NOT_ENDS_WITH = "not_ends_with"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"


class RunType(StrEnum):
    FULL_IMPORT = "full_import"
    DELTA_IMPORT = "delta_import"
    FULL_SYNCHRONISATION = "full_synchronisation"
    DELTA_SYNCHRONISATION = "delta_synchronisation"
    EXPORT = "export"


class ImportChangeType(StrEnum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class PendingExportChangeType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingExportStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXPORT_NOT_IMPORTED = "export_not_imported"


class AttributeChangeType(StrEnum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    REMOVE_ALL = "remove_all"


class AttributeChangeStatus(StrEnum):
    PENDING = "pending"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TaskKind(StrEnum):
    RUN_PROFILE = "run_profile"
    DATA_GENERATION = "data_generation"
    DELETE_CONNECTED_SYSTEM = "delete_connected_system"
    CLEAR_CONNECTED_SYSTEM = "clear_connected_system"


class ActivityStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    COMPLETE_WITH_WARNING = "complete_with_warning"
    FAILED = "failed"


class ActivityItemOutcome(StrEnum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"
    PROJECTED = "projected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"
    AMBIGUOUS = "ambiguous"
    OUT_OF_SCOPE = "out_of_scope"
    EXPORTED = "exported"
    DEFERRED = "deferred"
    NO_CHANGE = "no_change"
    FAILED = "failed"


class ActivityErrorType(StrEnum):
    AMBIGUOUS_MATCH = "ambiguous_match"
    JOIN_CONFLICT = "join_conflict"
    MISSING_EXTERNAL_ID = "missing_external_id"
    MALFORMED_IMPORT = "malformed_import"
    MAPPING_EVALUATION = "mapping_evaluation"
    EXPORT_FAILED = "export_failed"
    CONNECTOR = "connector"
    SCHEMA = "schema"
    OPERATIONAL = "operational"
    UNHANDLED = "unhandled"

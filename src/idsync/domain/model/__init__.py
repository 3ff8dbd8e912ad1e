"""Public domain model surface."""

from __future__ import annotations

from idsync.domain.model.activity import Activity, ActivityItem
from idsync.domain.model.entity import Entity, new_id
from idsync.domain.model.enums import (
    ActivityErrorType,
    ActivityItemOutcome,
    ActivityStatus,
    AttributeChangeStatus,
    AttributeChangeType,
    AttributeDataType,
    AttributePlurality,
    ConnectedSystemObjectStatus,
    DeletionRule,
    ImportChangeType,
    JoinType,
    MetaverseObjectOrigin,
    MetaverseObjectStatus,
    OutboundDeprovisionAction,
    PendingExportChangeType,
    PendingExportStatus,
    RunType,
    ScopingComparison,
    ScopingGroupType,
    SyncRuleDirection,
    TaskKind,
    ValueOwner,
)
from idsync.domain.model.exports import (
    DEFAULT_MAX_RETRIES,
    DeferredReference,
    PendingExport,
    PendingExportAttributeValueChange,
)
from idsync.domain.model.objects import (
    AttributeValueHolder,
    ConnectedSystemObject,
    MetaverseObject,
)
from idsync.domain.model.rules import (
    MappingSourceKind,
    ObjectMatchingRule,
    ScopingCriteriaGroup,
    ScopingCriterion,
    SyncRule,
    SyncRuleMapping,
    SyncRuleMappingSource,
)
from idsync.domain.model.schema import (
    AttributeDefinition,
    ConnectedSystem,
    MetaverseObjectTypeDefinition,
    ObjectTypeDefinition,
    RunProfile,
)
from idsync.domain.model.tasks import (
    ClearConnectedSystemTask,
    DataGenerationTask,
    DeleteConnectedSystemTask,
    RunProfileTask,
    WorkerTask,
)
from idsync.domain.model.values import AttributeValue, RawValue, TypedValue, coerce_value
from idsync.domain.model.watermark import ImportWatermark

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "Activity",
    "ActivityErrorType",
    "ActivityItem",
    "ActivityItemOutcome",
    "ActivityStatus",
    "AttributeChangeStatus",
    "AttributeChangeType",
    "AttributeDataType",
    "AttributeDefinition",
    "AttributePlurality",
    "AttributeValue",
    "AttributeValueHolder",
    "ClearConnectedSystemTask",
    "ConnectedSystem",
    "ConnectedSystemObject",
    "ConnectedSystemObjectStatus",
    "DataGenerationTask",
    "DeferredReference",
    "DeleteConnectedSystemTask",
    "DeletionRule",
    "Entity",
    "ImportChangeType",
    "ImportWatermark",
    "JoinType",
    "MappingSourceKind",
    "MetaverseObject",
    "MetaverseObjectOrigin",
    "MetaverseObjectStatus",
    "MetaverseObjectTypeDefinition",
    "ObjectMatchingRule",
    "ObjectTypeDefinition",
    "OutboundDeprovisionAction",
    "PendingExport",
    "PendingExportAttributeValueChange",
    "PendingExportChangeType",
    "PendingExportStatus",
    "RawValue",
    "RunProfile",
    "RunProfileTask",
    "RunType",
    "ScopingComparison",
    "ScopingCriteriaGroup",
    "ScopingCriterion",
    "ScopingGroupType",
    "SyncRule",
    "SyncRuleDirection",
    "SyncRuleMapping",
    "SyncRuleMappingSource",
    "TaskKind",
    "TypedValue",
    "ValueOwner",
    "WorkerTask",
    "coerce_value",
    "new_id",
]

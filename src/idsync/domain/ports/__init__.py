"""Domain port definitions for adapters."""

from __future__ import annotations

from .connectors import (
    CallImportConnector,
    ExportConnector,
    ExportResult,
    FileImportConnector,
    ImportedObject,
    ImportResult,
)
from .persistence import (
    ActivityRepository,
    ConnectedSystemObjectRepository,
    ConnectedSystemRepository,
    DeferredReferenceRepository,
    ImportWatermarkRepository,
    MetaverseObjectRepository,
    MetaverseObjectTypeRepository,
    PendingExportRepository,
    Repository,
    SyncRuleRepository,
)
from .unit_of_work import (
    RepositoryCollection,
    SyncRepositories,
    SyncUnitOfWork,
    UnitOfWork,
)

__all__ = [
    "ActivityRepository",
    "CallImportConnector",
    "ConnectedSystemObjectRepository",
    "ConnectedSystemRepository",
    "DeferredReferenceRepository",
    "ExportConnector",
    "ExportResult",
    "FileImportConnector",
    "ImportResult",
    "ImportWatermarkRepository",
    "ImportedObject",
    "MetaverseObjectRepository",
    "MetaverseObjectTypeRepository",
    "PendingExportRepository",
    "Repository",
    "RepositoryCollection",
    "SyncRepositories",
    "SyncRuleRepository",
    "SyncUnitOfWork",
    "UnitOfWork",
]

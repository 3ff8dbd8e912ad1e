"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeAlias, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from idsync.domain.ports.persistence import (
        ActivityRepository,
        ConnectedSystemObjectRepository,
        ConnectedSystemRepository,
        DeferredReferenceRepository,
        ImportWatermarkRepository,
        MetaverseObjectRepository,
        MetaverseObjectTypeRepository,
        PendingExportRepository,
        SyncRuleRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


TRepositories = TypeVar("TRepositories", bound=RepositoryCollection, covariant=True)


@runtime_checkable
class UnitOfWork(Protocol[TRepositories]):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None:
        """Persist pending changes; raises ``ConcurrencyConflictError`` on a stale write."""
        ...

    def rollback(self) -> None: ...

    def detach_all(self) -> None:
        """Forget every tracked entity so long batch loops do not grow without bound."""
        ...

    def change_tracking(self, *, enabled: bool) -> None:
        """Toggle automatic change-tracking scans (autoflush) for explicit state transitions."""
        ...


@dataclass(slots=True)
class SyncRepositories(RepositoryCollection):
    """Repositories required by the synchronisation core."""

    connected_systems: ConnectedSystemRepository
    metaverse_types: MetaverseObjectTypeRepository
    sync_rules: SyncRuleRepository
    connected_system_objects: ConnectedSystemObjectRepository
    metaverse_objects: MetaverseObjectRepository
    pending_exports: PendingExportRepository
    deferred_references: DeferredReferenceRepository
    watermarks: ImportWatermarkRepository
    activities: ActivityRepository


SyncUnitOfWork: TypeAlias = UnitOfWork[SyncRepositories]

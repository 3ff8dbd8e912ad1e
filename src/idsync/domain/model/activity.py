"""Audit records describing one unit of work and its per-object outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from idsync.domain.model.entity import Entity
from idsync.domain.model.enums import ActivityItemOutcome, ActivityStatus

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from idsync.domain.model.enums import ActivityErrorType, RunType, TaskKind


@dataclass(eq=False, kw_only=True)
class ActivityItem(Entity):
    outcome: ActivityItemOutcome
    connected_system_object_id: UUID | None = None
    metaverse_object_id: UUID | None = None
    pending_export_id: UUID | None = None
    detail: str | None = None
    error_type: ActivityErrorType | None = None
    error_message: str | None = None
    error_stack_trace: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error_type is not None


@dataclass(eq=False, kw_only=True)
class Activity(Entity):
    task_kind: TaskKind
    description: str
    connected_system_id: UUID | None = None
    run_profile_id: UUID | None = None
    run_type: RunType | None = None
    status: ActivityStatus = ActivityStatus.IN_PROGRESS
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    error_stack_trace: str | None = None
    objects_processed: int = 0
    objects_changed: int = 0
    error_count: int = 0
    items: list[ActivityItem] = field(default_factory=list["ActivityItem"])

    def record(self, item: ActivityItem) -> ActivityItem:
        self.items.append(item)
        self.objects_processed += 1
        if item.is_error:
            self.error_count += 1
        elif item.outcome not in (ActivityItemOutcome.NO_CHANGE, ActivityItemOutcome.OUT_OF_SCOPE):
            self.objects_changed += 1
        return item

    def complete(self, *, at: datetime) -> None:
        self.completed_at = at
        self.status = (
            ActivityStatus.COMPLETE_WITH_WARNING if self.error_count else ActivityStatus.COMPLETE
        )

    def fail(self, message: str, *, at: datetime, stack_trace: str | None = None) -> None:
        self.completed_at = at
        self.status = ActivityStatus.FAILED
        self.error_message = message
        self.error_stack_trace = stack_trace

"""Units of work handed to the engine by an external worker loop.

A tagged union: every variant carries its ``kind`` discriminant and only the
payload it needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, TypeAlias

from idsync.domain.model.enums import TaskKind

if TYPE_CHECKING:
    from uuid import UUID


@dataclass(frozen=True, slots=True, kw_only=True)
class RunProfileTask:
    connected_system_id: UUID
    run_profile_id: UUID
    kind: Literal[TaskKind.RUN_PROFILE] = TaskKind.RUN_PROFILE


@dataclass(frozen=True, slots=True, kw_only=True)
class DataGenerationTask:
    template_id: UUID
    kind: Literal[TaskKind.DATA_GENERATION] = TaskKind.DATA_GENERATION


@dataclass(frozen=True, slots=True, kw_only=True)
class DeleteConnectedSystemTask:
    connected_system_id: UUID
    kind: Literal[TaskKind.DELETE_CONNECTED_SYSTEM] = TaskKind.DELETE_CONNECTED_SYSTEM


@dataclass(frozen=True, slots=True, kw_only=True)
class ClearConnectedSystemTask:
    connected_system_id: UUID
    kind: Literal[TaskKind.CLEAR_CONNECTED_SYSTEM] = TaskKind.CLEAR_CONNECTED_SYSTEM


WorkerTask: TypeAlias = (
    RunProfileTask | DataGenerationTask | DeleteConnectedSystemTask | ClearConnectedSystemTask
)

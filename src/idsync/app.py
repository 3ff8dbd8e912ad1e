"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from idsync.adapters.config_file import apply_engine_config, load_engine_config
from idsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, is_started, startup
from idsync.config import ConfigurationError, get_export_config
from idsync.domain.model import ActivityStatus, PendingExportStatus, RunProfileTask
from idsync.domain.ports.unit_of_work import SyncUnitOfWork
from idsync.domain.sync import ConnectorRegistry, SyncEngine

if TYPE_CHECKING:
    from pathlib import Path
    from threading import Event

    from idsync.adapters.config_file import EngineConfiguration
    from idsync.config import ExportConfig
    from idsync.domain.model import Activity, ConnectedSystem

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]


log = getLogger(__name__)


@dataclass(slots=True)
class ExportStatusReport:
    system_name: str
    counts: dict[PendingExportStatus, int] = field(default_factory=dict[PendingExportStatus, int])

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def failed(self) -> int:
        return self.counts.get(PendingExportStatus.EXPORT_NOT_IMPORTED, 0)


def initialise_database(*, database_uri: str | None = None) -> None:
    """Bind the storage adapter and bring the schema up to date."""

    if is_started():
        return
    startup(database_uri=database_uri)


def _unit_of_work_factory(factory: UnitOfWorkFactory | None) -> UnitOfWorkFactory:
    if factory is not None:
        return factory
    initialise_database()
    return SqlAlchemySyncUnitOfWork


def build_engine(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    connectors: ConnectorRegistry | None = None,
    export_config: ExportConfig | None = None,
) -> SyncEngine:
    return SyncEngine(
        _unit_of_work_factory(unit_of_work_factory),
        connectors or ConnectorRegistry(),
        export_config=export_config or get_export_config(),
    )


def load_configuration(
    path: Path, *, unit_of_work_factory: UnitOfWorkFactory | None = None
) -> EngineConfiguration:
    """Validate a configuration file and store its definitions."""

    config = load_engine_config(path)
    with _unit_of_work_factory(unit_of_work_factory)() as uow:
        apply_engine_config(uow, config)
        uow.commit()
    log.info("Stored configuration from %s", path)
    return config


def _system_by_name(factory: UnitOfWorkFactory, system_name: str) -> ConnectedSystem:
    with factory() as uow:
        system = uow.repositories.connected_systems.get_by_name(system_name)
    if system is None:
        raise ConfigurationError(f"Unknown connected system '{system_name}'")
    return system


def run_profile(
    system_name: str,
    profile_name: str,
    *,
    engine: SyncEngine | None = None,
    cancel_event: Event | None = None,
) -> Activity:
    """Run a named run profile of a named connected system."""

    effective_engine = engine or build_engine()
    system = _system_by_name(effective_engine.unit_of_work_factory, system_name)
    profile = next((p for p in system.run_profiles if p.name == profile_name), None)
    if profile is None:
        raise ConfigurationError(f"{system_name} has no run profile named '{profile_name}'")

    activity = effective_engine.execute(
        RunProfileTask(connected_system_id=system.id, run_profile_id=profile.id),
        cancel_event=cancel_event,
    )
    log.info(
        f"Finished {activity.description}: status={activity.status}, "
        f"processed={activity.objects_processed}, changed={activity.objects_changed}, "
        f"errors={activity.error_count}"
    )
    if activity.status == ActivityStatus.FAILED:
        log.error("Run failed: %s", activity.error_message)
    return activity


def export_status(
    system_name: str, *, unit_of_work_factory: UnitOfWorkFactory | None = None
) -> ExportStatusReport:
    factory = _unit_of_work_factory(unit_of_work_factory)
    system = _system_by_name(factory, system_name)
    report = ExportStatusReport(system_name=system.name)
    with factory() as uow:
        for pending in uow.repositories.pending_exports.for_system(system.id):
            report.counts[pending.status] = report.counts.get(pending.status, 0) + 1
    return report


def retry_failed_exports(system_name: str, *, engine: SyncEngine | None = None) -> int:
    """Return exports parked after exhausting their retries to the queue."""

    effective_engine = engine or build_engine()
    system = _system_by_name(effective_engine.unit_of_work_factory, system_name)
    return effective_engine.executor.retry_failed_exports(system.id)


def sweep_references(system_name: str | None = None, *, engine: SyncEngine | None = None) -> int:
    effective_engine = engine or build_engine()
    system_id = None
    if system_name is not None:
        system_id = _system_by_name(effective_engine.unit_of_work_factory, system_name).id
    regenerated = effective_engine.sweep_references(system_id)
    log.info("Reference sweep regenerated %d pending export(s)", regenerated)
    return regenerated


def process_deletions(*, engine: SyncEngine | None = None) -> int:
    return (engine or build_engine()).process_deletions()

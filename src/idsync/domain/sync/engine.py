"""Task dispatch: run one worker task and report it as an ``Activity``.

The engine is driven from outside (a worker loop or the CLI); it holds no
threads of its own. Operational failures end the activity with their message
only, anything else is logged with its stack trace and fails the activity. Work
committed before a failure stays committed.
"""

from __future__ import annotations

import importlib
import logging
import traceback
from typing import TYPE_CHECKING, TypeAlias

from idsync.config.export import ExportConfig
from idsync.domain.errors import (
    ConnectorConfigurationError,
    OperationalError,
    UnsupportedTaskError,
)
from idsync.domain.model import (
    Activity,
    ActivityItem,
    ActivityItemOutcome,
    ClearConnectedSystemTask,
    DataGenerationTask,
    DeleteConnectedSystemTask,
    RunProfileTask,
    RunType,
)
from idsync.domain.ports import ExportConnector
from idsync.domain.sync.backoff import RetryBackoff
from idsync.domain.sync.clock import utcnow
from idsync.domain.sync.execution import ExportExecutionOptions, ExportExecutor, SyncRunMode
from idsync.domain.sync.importing import ImportProcessor
from idsync.domain.sync.locking import KeyedLock
from idsync.domain.sync.matching import MatchingPolicy
from idsync.domain.sync.references import DeferredReferenceResolver
from idsync.domain.sync.synchronising import Synchroniser

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from threading import Event
    from uuid import UUID

    from idsync.domain.model import ConnectedSystem, RunProfile, WorkerTask
    from idsync.domain.ports import SyncRepositories, SyncUnitOfWork
    from idsync.domain.sync.clock import Clock

    ConnectorFactory: TypeAlias = Callable[[ConnectedSystem], object]

_default_log = logging.getLogger(__name__)


class ConnectorRegistry:
    """Resolves ``ConnectedSystem.connector`` to a connector instance.

    Explicitly registered factories win; otherwise the name is imported as
    ``"package.module:factory"`` and the factory is called with the system.
    """

    def __init__(self, factories: Mapping[str, ConnectorFactory] | None = None) -> None:
        self._factories: dict[str, ConnectorFactory] = dict(factories or {})

    def register(self, name: str, factory: ConnectorFactory) -> None:
        self._factories[name] = factory

    def create(self, system: ConnectedSystem) -> object:
        factory = self._factories.get(system.connector)
        if factory is None:
            factory = _import_factory(system.connector)
            self._factories[system.connector] = factory
        return factory(system)

    def export_connector(self, system: ConnectedSystem) -> ExportConnector:
        connector = self.create(system)
        if not isinstance(connector, ExportConnector):
            raise ConnectorConfigurationError(
                f"Connector '{system.connector}' of {system.name} does not support exporting"
            )
        return connector


def _import_factory(path: str) -> ConnectorFactory:
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConnectorConfigurationError(
            f"Connector '{path}' must be given as 'package.module:factory'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConnectorConfigurationError(
            f"Cannot import connector module '{module_name}': {exc}"
        ) from exc
    factory = getattr(module, attribute, None)
    if factory is None or not callable(factory):
        raise ConnectorConfigurationError(
            f"'{attribute}' in '{module_name}' is not a connector factory"
        )
    return factory


class SyncEngine:
    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        connectors: ConnectorRegistry,
        *,
        export_config: ExportConfig | None = None,
        policy: MatchingPolicy = MatchingPolicy.FIRST_MATCH,
        clock: Clock = utcnow,
        log: logging.Logger | None = None,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.connectors = connectors
        self.export_config = export_config or ExportConfig()
        self.clock = clock
        self.log = log or _default_log
        self.locks = KeyedLock()
        max_retries = self.export_config.max_retries
        self.resolver = DeferredReferenceResolver(
            locks=self.locks, max_retries=max_retries, clock=clock, log=self.log
        )
        self.importer = ImportProcessor(unit_of_work_factory, clock=clock, log=self.log)
        self.synchroniser = Synchroniser(
            unit_of_work_factory,
            locks=self.locks,
            policy=policy,
            max_retries=max_retries,
            clock=clock,
            log=self.log,
        )
        self.executor = ExportExecutor(
            unit_of_work_factory,
            connectors.export_connector,
            backoff=RetryBackoff.from_config(self.export_config),
            resolver=self.resolver,
            clock=clock,
            log=self.log,
        )

    def execute(
        self,
        task: WorkerTask,
        *,
        cancel_event: Event | None = None,
        run_mode: SyncRunMode = SyncRunMode.PREVIEW_AND_SYNC,
    ) -> Activity:
        activity = Activity(
            task_kind=task.kind,
            description=task.kind.replace("_", " "),
            connected_system_id=getattr(task, "connected_system_id", None),
            started_at=self.clock(),
        )
        try:
            match task:
                case RunProfileTask():
                    self._run_profile(task, activity, cancel_event, run_mode)
                case DeleteConnectedSystemTask():
                    self._remove_system_objects(task.connected_system_id, activity, delete=True)
                case ClearConnectedSystemTask():
                    self._remove_system_objects(task.connected_system_id, activity, delete=False)
                case DataGenerationTask():
                    raise UnsupportedTaskError(
                        f"Data generation template {task.template_id} cannot be run by the engine"
                    )
        except OperationalError as exc:
            self.log.warning("%s failed: %s", activity.description, exc)
            activity.fail(str(exc), at=self.clock())
        except Exception as exc:
            self.log.exception("Unexpected error during %s", activity.description)
            activity.fail(
                f"{type(exc).__name__}: {exc}", at=self.clock(), stack_trace=traceback.format_exc()
            )
        else:
            activity.complete(at=self.clock())
        self._save(activity)
        return activity

    def sweep_references(self, connected_system_id: UUID | None = None) -> int:
        with self.unit_of_work_factory() as uow:
            regenerated = self.resolver.sweep(uow, connected_system_id)
            uow.commit()
        return len(regenerated)

    def process_deletions(self) -> int:
        return self.synchroniser.process_deletions()

    def _run_profile(
        self,
        task: RunProfileTask,
        activity: Activity,
        cancel_event: Event | None,
        run_mode: SyncRunMode,
    ) -> None:
        system, run_profile = self._lookup(task.connected_system_id, task.run_profile_id)
        activity.run_profile_id = run_profile.id
        activity.run_type = run_profile.run_type
        activity.description = f"{run_profile.name} ({run_profile.run_type}) on {system.name}"
        self.log.info("Starting %s", activity.description)
        match run_profile.run_type:
            case RunType.FULL_IMPORT | RunType.DELTA_IMPORT:
                connector = self.connectors.create(system)
                self.importer.run(
                    system, run_profile, connector, activity, cancel_event=cancel_event
                )
            case RunType.FULL_SYNCHRONISATION | RunType.DELTA_SYNCHRONISATION:
                self.synchroniser.run(system, run_profile, activity, cancel_event=cancel_event)
            case RunType.EXPORT:
                options = ExportExecutionOptions.from_config(self.export_config, run_mode=run_mode)
                self.executor.execute(
                    system, options, cancel_event=cancel_event, activity=activity
                )

    def _lookup(
        self, connected_system_id: UUID, run_profile_id: UUID
    ) -> tuple[ConnectedSystem, RunProfile]:
        with self.unit_of_work_factory() as uow:
            system = uow.repositories.connected_systems.get(connected_system_id)
        if system is None:
            raise ConnectorConfigurationError(f"Unknown connected system {connected_system_id}")
        run_profile = system.run_profile(run_profile_id)
        if run_profile is None:
            raise ConnectorConfigurationError(
                f"Run profile {run_profile_id} is not defined for {system.name}"
            )
        return system, run_profile

    def _remove_system_objects(
        self, connected_system_id: UUID, activity: Activity, *, delete: bool
    ) -> None:
        """Clear a system's staged objects; ``delete`` also drops the system itself."""

        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            system = repositories.connected_systems.get(connected_system_id)
            if system is None:
                raise ConnectorConfigurationError(f"Unknown connected system {connected_system_id}")
            activity.description = f"{'Delete' if delete else 'Clear'} {system.name}"
            for cso in repositories.connected_system_objects.for_system(connected_system_id):
                _remove_cso(repositories, connected_system_id, cso.id, disconnect=delete)
                activity.record(
                    ActivityItem(
                        outcome=ActivityItemOutcome.DELETED,
                        connected_system_object_id=cso.id,
                        metaverse_object_id=cso.metaverse_object_id,
                    )
                )
            for pending in repositories.pending_exports.for_system(connected_system_id):
                repositories.pending_exports.remove(pending)
            if delete:
                for deferred in repositories.deferred_references.unresolved(connected_system_id):
                    repositories.deferred_references.remove(deferred)
                watermark = repositories.watermarks.get(connected_system_id)
                if watermark is not None:
                    repositories.watermarks.remove(watermark)
                for rule in repositories.sync_rules.list():
                    if rule.connected_system_id == connected_system_id:
                        repositories.sync_rules.remove(rule.id)
                repositories.connected_systems.remove(connected_system_id)
            uow.commit()

    def _save(self, activity: Activity) -> None:
        with self.unit_of_work_factory() as uow:
            uow.repositories.activities.add(activity)
            uow.commit()


def _remove_cso(
    repositories: SyncRepositories, connected_system_id: UUID, cso_id: UUID, *, disconnect: bool
) -> None:
    cso = repositories.connected_system_objects.get(cso_id)
    if cso is None:
        return
    if disconnect and cso.metaverse_object_id is not None:
        mvo = repositories.metaverse_objects.get(cso.metaverse_object_id)
        if mvo is not None:
            for value in mvo.values_contributed_by(connected_system_id):
                mvo.attribute_values.remove(value)
        cso.disconnect()
    for deferred in repositories.deferred_references.for_source(cso.id):
        repositories.deferred_references.remove(deferred)
    repositories.connected_system_objects.remove(cso)

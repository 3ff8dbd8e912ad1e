from __future__ import annotations

import dataclasses
from threading import Event
from typing import TYPE_CHECKING

import pytest

from idsync.config.export import ExportConfig
from idsync.domain.errors import ConnectorConfigurationError
from idsync.domain.model import (
    ActivityItemOutcome,
    ActivityStatus,
    ClearConnectedSystemTask,
    ConnectedSystemObjectStatus,
    DataGenerationTask,
    DeleteConnectedSystemTask,
    RunProfileTask,
    RunType,
    new_id,
)
from idsync.domain.ports import ImportResult
from idsync.domain.sync.engine import ConnectorRegistry, SyncEngine
from idsync.domain.sync.execution import SyncRunMode
from tests.helpers.fakes import FileConnector, FixedClock, InMemoryStore, MockConnector
from tests.helpers.identity import Scenario, imported_person, seed_scenario

if TYPE_CHECKING:
    from idsync.domain.model import Activity, ConnectedSystem


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def scenario(store: InMemoryStore) -> Scenario:
    return seed_scenario(store)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def hr_connector() -> MockConnector:
    return MockConnector(
        [
            ImportResult(
                objects=[
                    imported_person(
                        "42", firstName="Ada", lastName="Lovelace", email="ada@example.test"
                    ),
                    imported_person(
                        "77", firstName="Grace", lastName="Hopper", email="grace@example.test"
                    ),
                ]
            )
        ]
    )


@pytest.fixture
def directory_connector() -> MockConnector:
    return MockConnector()


@pytest.fixture
def engine(
    store: InMemoryStore,
    scenario: Scenario,
    clock: FixedClock,
    hr_connector: MockConnector,
    directory_connector: MockConnector,
) -> SyncEngine:
    def connector_for(system: ConnectedSystem) -> MockConnector:
        return hr_connector if system.id == scenario.hr.id else directory_connector

    return SyncEngine(
        store.unit_of_work,
        ConnectorRegistry({"mock": connector_for}),
        export_config=ExportConfig(batch_size=10),
        clock=clock,
    )


def _run(
    engine: SyncEngine,
    scenario: Scenario,
    system: ConnectedSystem,
    run_type: RunType,
    *,
    cancel_event: Event | None = None,
    run_mode: SyncRunMode = SyncRunMode.PREVIEW_AND_SYNC,
) -> Activity:
    task = RunProfileTask(
        connected_system_id=system.id, run_profile_id=scenario.profile(system, run_type).id
    )
    return engine.execute(task, cancel_event=cancel_event, run_mode=run_mode)


def test_import_sync_and_export_end_to_end(
    engine: SyncEngine,
    store: InMemoryStore,
    scenario: Scenario,
    directory_connector: MockConnector,
) -> None:
    imported = _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)
    synced = _run(engine, scenario, scenario.hr, RunType.FULL_SYNCHRONISATION)
    exported = _run(engine, scenario, scenario.directory, RunType.EXPORT)

    assert imported.status == ActivityStatus.COMPLETE
    assert imported.description == "Full Import (full_import) on HR"
    assert imported.run_type == RunType.FULL_IMPORT
    assert imported.objects_changed == 2
    assert {i.outcome for i in synced.items} == {ActivityItemOutcome.PROJECTED}
    assert [i.outcome for i in exported.items] == [ActivityItemOutcome.EXPORTED] * 2
    assert exported.status == ActivityStatus.COMPLETE

    users = store.csos_in(scenario.directory.id)
    assert {u.status for u in users} == {ConnectedSystemObjectStatus.NORMAL}
    assert sorted(u.secondary_external_id or "" for u in users) == ["u42", "u77"]
    assert len(directory_connector.export_calls) == 1
    assert store.pending_exports == {}
    assert set(store.activities) == {imported.id, synced.id, exported.id}


def test_preview_run_mode_leaves_exports_in_place(
    engine: SyncEngine,
    store: InMemoryStore,
    scenario: Scenario,
    directory_connector: MockConnector,
) -> None:
    _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)
    _run(engine, scenario, scenario.hr, RunType.FULL_SYNCHRONISATION)

    preview = _run(
        engine, scenario, scenario.directory, RunType.EXPORT, run_mode=SyncRunMode.PREVIEW_ONLY
    )

    assert preview.status == ActivityStatus.COMPLETE
    assert directory_connector.export_calls == []
    assert len(store.pending_exports) == 2


def test_unknown_run_profile_fails_without_stack_trace(
    engine: SyncEngine, scenario: Scenario, clock: FixedClock
) -> None:
    activity = engine.execute(
        RunProfileTask(connected_system_id=scenario.hr.id, run_profile_id=new_id())
    )

    assert activity.status == ActivityStatus.FAILED
    assert activity.error_message is not None
    assert "is not defined for HR" in activity.error_message
    assert activity.error_stack_trace is None
    assert activity.completed_at == clock.now


def test_unexpected_error_fails_with_stack_trace(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    def broken(system: ConnectedSystem) -> object:
        raise RuntimeError("connector exploded")

    engine = SyncEngine(store.unit_of_work, ConnectorRegistry({"mock": broken}), clock=clock)

    activity = _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)

    assert activity.status == ActivityStatus.FAILED
    assert activity.error_message == "RuntimeError: connector exploded"
    assert activity.error_stack_trace is not None
    assert "connector exploded" in activity.error_stack_trace
    assert activity.id in store.activities


def test_data_generation_is_not_supported(engine: SyncEngine) -> None:
    activity = engine.execute(DataGenerationTask(template_id=new_id()))

    assert activity.status == ActivityStatus.FAILED
    assert activity.error_message is not None
    assert activity.error_message.startswith("Data generation template")


def test_cancelled_run_fails_but_keeps_committed_work(
    engine: SyncEngine, store: InMemoryStore, scenario: Scenario
) -> None:
    _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)
    cancel_event = Event()
    cancel_event.set()

    activity = _run(
        engine, scenario, scenario.hr, RunType.FULL_SYNCHRONISATION, cancel_event=cancel_event
    )

    assert activity.status == ActivityStatus.FAILED
    assert activity.error_message == "Synchronisation of HR cancelled"
    assert len(store.csos_in(scenario.hr.id)) == 2


def test_clear_removes_objects_but_keeps_the_system(
    engine: SyncEngine, store: InMemoryStore, scenario: Scenario
) -> None:
    _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)
    _run(engine, scenario, scenario.hr, RunType.FULL_SYNCHRONISATION)

    activity = engine.execute(ClearConnectedSystemTask(connected_system_id=scenario.directory.id))

    assert activity.status == ActivityStatus.COMPLETE
    assert activity.description == "Clear Directory"
    assert [i.outcome for i in activity.items] == [ActivityItemOutcome.DELETED] * 2
    assert store.csos_in(scenario.directory.id) == []
    assert store.pending_exports == {}
    assert scenario.directory.id in store.systems
    assert len(store.mvos) == 2


def test_delete_drops_the_system_and_its_contributions(
    engine: SyncEngine, store: InMemoryStore, scenario: Scenario
) -> None:
    _run(engine, scenario, scenario.hr, RunType.FULL_IMPORT)
    _run(engine, scenario, scenario.hr, RunType.FULL_SYNCHRONISATION)

    activity = engine.execute(DeleteConnectedSystemTask(connected_system_id=scenario.hr.id))

    assert activity.status == ActivityStatus.COMPLETE
    assert scenario.hr.id not in store.systems
    assert scenario.hr.id not in store.watermarks
    assert scenario.import_rule.id not in store.sync_rules
    assert store.csos_in(scenario.hr.id) == []
    for mvo in store.mvos.values():
        assert mvo.values_contributed_by(scenario.hr.id) == []


def test_sweep_and_deletions_with_nothing_to_do(engine: SyncEngine) -> None:
    assert engine.sweep_references() == 0
    assert engine.process_deletions() == 0


def test_connector_path_must_name_module_and_factory(scenario: Scenario) -> None:
    registry = ConnectorRegistry()

    with pytest.raises(ConnectorConfigurationError, match="package.module:factory"):
        registry.create(dataclasses.replace(scenario.hr, connector="no_factory"))
    with pytest.raises(ConnectorConfigurationError, match="Cannot import"):
        registry.create(dataclasses.replace(scenario.hr, connector="idsync_missing_module:make"))
    with pytest.raises(ConnectorConfigurationError, match="not a connector factory"):
        registry.create(dataclasses.replace(scenario.hr, connector="idsync.domain.sync:missing"))


def test_export_requires_an_export_capable_connector(scenario: Scenario) -> None:
    registry = ConnectorRegistry({"mock": lambda system: FileConnector([])})

    with pytest.raises(ConnectorConfigurationError, match="does not support exporting"):
        registry.export_connector(scenario.directory)

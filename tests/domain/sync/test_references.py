from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from idsync.domain.model import (
    AttributeChangeType,
    AttributeValue,
    ConnectedSystemObjectStatus,
    PendingExportChangeType,
)
from idsync.domain.sync.attribute_flow import AttributeFlowEvaluator
from idsync.domain.sync.catalog import SchemaCatalog
from idsync.domain.sync.execution import ExportExecutor
from idsync.domain.sync.planning import ExportPlanner
from idsync.domain.sync.references import DeferredReferenceResolver
from tests.helpers.fakes import FixedClock, InMemoryStore, MockConnector
from tests.helpers.identity import REFERENCE, Scenario, make_person, seed_scenario

if TYPE_CHECKING:
    from idsync.domain.model import MetaverseObject, PendingExport


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def scenario(store: InMemoryStore) -> Scenario:
    return seed_scenario(store)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


def _people(store: InMemoryStore) -> tuple[MetaverseObject, MetaverseObject]:
    manager = make_person("77", displayName="Grace Hopper")
    employee = make_person("42", displayName="Ada Lovelace")
    employee.add_value(AttributeValue.of("manager", REFERENCE, manager.id))
    store.mvos[manager.id] = manager
    store.mvos[employee.id] = employee
    return manager, employee


def _plan(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock, mvo: MetaverseObject
) -> PendingExport:
    repositories = store.unit_of_work().repositories
    catalog = SchemaCatalog.load(repositories)
    planner = ExportPlanner(repositories, catalog, AttributeFlowEvaluator(catalog), clock=clock)
    pending = planner.plan(mvo, None, scenario.export_rule)
    assert pending is not None
    return pending


def test_reference_is_exported_once_its_target_exists(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    manager, employee = _people(store)
    connector = MockConnector()
    executor = ExportExecutor(store.unit_of_work, lambda system: connector, clock=clock)

    employee_create = _plan(store, scenario, clock, employee)
    assert employee_create.has_unresolved_references
    assert "manager" not in {c.attribute for c in employee_create.attribute_changes}
    (deferred,) = store.deferred_references.values()
    executor.execute(scenario.directory)
    assert not deferred.is_resolved

    manager_create = _plan(store, scenario, clock, manager)
    info = executor.execute(scenario.directory)

    manager_user = store.csos[manager_create.connected_system_object_id]
    employee_user = store.csos[employee_create.connected_system_object_id]
    assert deferred.is_resolved
    (regenerated_id,) = info.regenerated_pending_export_ids
    regenerated = store.pending_exports[regenerated_id]
    assert regenerated.connected_system_object_id == employee_user.id
    assert regenerated.change_type == PendingExportChangeType.UPDATE
    assert not regenerated.has_unresolved_references
    (change,) = regenerated.attribute_changes
    assert change.attribute == "manager"
    assert change.change_type == AttributeChangeType.UPDATE
    assert change.reference_id == manager_user.id

    executor.execute(scenario.directory)

    (manager_value,) = employee_user.values_for("manager")
    assert manager_value.reference_id == manager_user.id
    assert store.pending_exports == {}


def test_sweep_waits_for_target_then_regenerates(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    manager, employee = _people(store)
    employee_create = _plan(store, scenario, clock, employee)
    manager_create = _plan(store, scenario, clock, manager)
    resolver = DeferredReferenceResolver(clock=clock)
    (deferred,) = store.deferred_references.values()

    assert resolver.sweep(store.unit_of_work(), scenario.directory.id) == []
    assert deferred.retry_count == 1
    assert deferred.last_attempted_at == clock.now

    manager_user = store.csos[manager_create.connected_system_object_id]
    manager_user.status = ConnectedSystemObjectStatus.NORMAL
    manager_user.external_id = "ext-77"
    clock.advance(minutes=5)

    regenerated = resolver.sweep(store.unit_of_work(), scenario.directory.id)

    assert regenerated == [employee_create]
    assert employee_create.change_type == PendingExportChangeType.CREATE
    assert not employee_create.has_unresolved_references
    (change,) = employee_create.changes_for("manager")
    assert change.reference_id == manager_user.id
    assert deferred.resolved_at == clock.now
    assert resolver.sweep(store.unit_of_work()) == []


def test_try_resolve_reports_unresolved_target(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    _, employee = _people(store)
    _plan(store, scenario, clock, employee)
    (deferred,) = store.deferred_references.values()

    resolved = DeferredReferenceResolver(clock=clock).try_resolve(store.unit_of_work(), deferred)

    assert not resolved
    assert deferred.retry_count == 1

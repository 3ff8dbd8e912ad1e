from __future__ import annotations

from datetime import timedelta
from threading import Event
from typing import TYPE_CHECKING

import pytest

from idsync.domain.errors import OperationCancelledError
from idsync.domain.model import (
    Activity,
    ActivityErrorType,
    ActivityItemOutcome,
    ConnectedSystemObjectStatus,
    DeletionRule,
    JoinType,
    MetaverseObjectStatus,
    PendingExportChangeType,
    RunType,
    ScopingComparison,
    ScopingCriteriaGroup,
    ScopingCriterion,
    TaskKind,
)
from idsync.domain.sync.synchronising import MAX_SYNC_ATTEMPTS, Synchroniser
from tests.helpers.fakes import FixedClock, InMemoryStore
from tests.helpers.identity import (
    Scenario,
    make_hr_cso,
    make_person,
    make_person_type,
    seed_scenario,
    set_text,
)

if TYPE_CHECKING:
    from idsync.domain.model import ConnectedSystemObject, MetaverseObject


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def scenario(store: InMemoryStore) -> Scenario:
    return seed_scenario(store)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


def _sync(
    store: InMemoryStore,
    scenario: Scenario,
    clock: FixedClock,
    run_type: RunType = RunType.FULL_SYNCHRONISATION,
    *,
    cancel_event: Event | None = None,
) -> Activity:
    activity = Activity(task_kind=TaskKind.RUN_PROFILE, description="HR synchronisation")
    Synchroniser(store.unit_of_work, clock=clock).run(
        scenario.hr, scenario.profile(scenario.hr, run_type), activity, cancel_event=cancel_event
    )
    return activity


def _staged(store: InMemoryStore, scenario: Scenario, employee_id: str) -> ConnectedSystemObject:
    cso = make_hr_cso(
        scenario.hr,
        employee_id,
        firstName="Ada",
        lastName="Lovelace",
        email=f"{employee_id}@example.test",
        department="Research",
    )
    store.csos[cso.id] = cso
    return cso


def _joined_person(store: InMemoryStore, cso: ConnectedSystemObject) -> MetaverseObject:
    assert cso.metaverse_object_id is not None
    return store.mvos[cso.metaverse_object_id]


def test_new_object_is_projected_and_provisioned(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    cso = _staged(store, scenario, "42")

    activity = _sync(store, scenario, clock)

    (item,) = activity.items
    assert item.outcome == ActivityItemOutcome.PROJECTED
    assert item.detail == "1 export(s) planned"
    mvo = _joined_person(store, cso)
    assert item.metaverse_object_id == mvo.id
    assert cso.join_type == JoinType.PROJECTED
    assert mvo.get_value("displayName") == "Ada Lovelace"
    assert mvo.get_value("email") == "42@example.test"
    assert {v.contributed_by_system_id for v in mvo.attribute_values} == {scenario.hr.id}

    (user,) = store.csos_in(scenario.directory.id)
    assert user.status == ConnectedSystemObjectStatus.PENDING_PROVISIONING
    assert user.metaverse_object_id == mvo.id
    pending = store.exports_for(user.id)
    assert pending is not None
    assert pending.change_type == PendingExportChangeType.CREATE
    assert pending.changes_for("accountName")[0].string_value == "u42"
    assert store.watermarks[scenario.hr.id].last_sync_at == clock.now


def test_existing_person_is_joined_and_updated(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    mvo = make_person("42", displayName="A. Lovelace")
    store.mvos[mvo.id] = mvo
    cso = _staged(store, scenario, "42")

    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.JOINED
    assert cso.metaverse_object_id == mvo.id
    assert mvo.get_value("displayName") == "Ada Lovelace"
    assert len(store.mvos) == 1


def test_resync_without_changes_is_no_change(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    _staged(store, scenario, "42")
    _sync(store, scenario, clock)
    planned = len(store.pending_exports)

    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.NO_CHANGE
    assert len(store.pending_exports) == planned


def test_delta_sync_only_visits_objects_changed_since_last_run(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    quiet = _staged(store, scenario, "1")
    busy = _staged(store, scenario, "2")
    quiet.last_updated = busy.last_updated = clock.now - timedelta(days=1)
    _sync(store, scenario, clock)

    clock.advance(hours=1)
    set_text(busy, department="Sales")
    busy.last_updated = clock.now
    activity = _sync(store, scenario, clock, RunType.DELTA_SYNCHRONISATION)

    (item,) = activity.items
    assert item.connected_system_object_id == busy.id
    assert item.outcome == ActivityItemOutcome.UPDATED
    assert _joined_person(store, busy).get_value("department") == "Sales"


def test_out_of_scope_object_is_reported(store: InMemoryStore, clock: FixedClock) -> None:
    sales_only = ScopingCriteriaGroup(
        criteria=(
            ScopingCriterion(
                attribute="department", comparison=ScopingComparison.EQUALS, value="Sales"
            ),
        )
    )
    scenario = seed_scenario(store, import_overrides={"scoping": (sales_only,)})
    cso = _staged(store, scenario, "42")

    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.OUT_OF_SCOPE
    assert not cso.is_joined
    assert store.mvos == {}


def test_ambiguous_match_is_recorded_and_rolled_back(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    first, second = make_person("42"), make_person("42")
    store.mvos.update({first.id: first, second.id: second})
    cso = _staged(store, scenario, "42")

    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.AMBIGUOUS
    assert item.error_type == ActivityErrorType.AMBIGUOUS_MATCH
    assert item.detail is not None
    assert str(first.id) in item.detail
    assert str(second.id) in item.detail
    assert not cso.is_joined
    assert store.rollbacks >= 1


def test_obsolete_object_schedules_deletion_after_grace_period(
    store: InMemoryStore, clock: FixedClock
) -> None:
    person_type = make_person_type(
        deletion_rule=DeletionRule.WHEN_LAST_CONNECTOR_DISCONNECTED,
        grace_period=timedelta(days=7),
    )
    scenario = seed_scenario(store, person_type=person_type)
    cso = _staged(store, scenario, "42")
    _sync(store, scenario, clock)
    mvo = _joined_person(store, cso)

    cso.mark_obsolete(at=clock.advance(hours=1))
    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.DISCONNECTED
    assert not cso.is_joined
    assert mvo.status == MetaverseObjectStatus.PENDING_DELETION
    assert mvo.deletion_due_at == clock.now + timedelta(days=7)
    assert mvo.values_contributed_by(scenario.hr.id) == []

    synchroniser = Synchroniser(store.unit_of_work, clock=clock)
    assert synchroniser.process_deletions(clock.now + timedelta(days=6)) == 0
    assert synchroniser.process_deletions(clock.now + timedelta(days=7)) == 1

    assert mvo.id not in store.mvos
    assert store.csos_in(scenario.directory.id) == []
    assert store.pending_exports == {}


def test_manual_deletion_rule_keeps_the_person(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    cso = _staged(store, scenario, "42")
    _sync(store, scenario, clock)
    mvo = _joined_person(store, cso)

    cso.mark_obsolete(at=clock.now)
    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.DISCONNECTED
    assert mvo.id in store.mvos
    assert mvo.status == MetaverseObjectStatus.ACTIVE
    assert mvo.deletion_due_at is None
    assert mvo.get_value("firstName") is None


def test_gives_up_after_repeated_conflicts(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    cso = _staged(store, scenario, "42")
    store.pending_conflicts = MAX_SYNC_ATTEMPTS

    (item,) = _sync(store, scenario, clock).items

    assert item.outcome == ActivityItemOutcome.FAILED
    assert item.connected_system_object_id == cso.id
    assert item.error_message == f"Gave up after {MAX_SYNC_ATTEMPTS} concurrent update conflicts"
    assert store.rollbacks == MAX_SYNC_ATTEMPTS


def test_cancelled_sync_stops_before_next_object(
    store: InMemoryStore, scenario: Scenario, clock: FixedClock
) -> None:
    cso = _staged(store, scenario, "42")
    cancel_event = Event()
    cancel_event.set()

    with pytest.raises(OperationCancelledError):
        _sync(store, scenario, clock, cancel_event=cancel_event)

    assert not cso.is_joined
    assert scenario.hr.id not in store.watermarks

"""Tests for SQLAlchemy repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session  # noqa: TC002

from idsync.adapters.sqlalchemy.repositories import (
    SqlAlchemyActivityRepository,
    SqlAlchemyConnectedSystemObjectRepository,
    SqlAlchemyConnectedSystemRepository,
    SqlAlchemyDeferredReferenceRepository,
    SqlAlchemyMetaverseObjectRepository,
    SqlAlchemyPendingExportRepository,
    SqlAlchemySyncRuleRepository,
)
from idsync.domain.model import (
    Activity,
    DeferredReference,
    MetaverseObjectStatus,
    PendingExport,
    PendingExportChangeType,
    PendingExportStatus,
    TaskKind,
    new_id,
)
from tests.helpers.identity import (
    make_directory_system,
    make_export_rule,
    make_hr_cso,
    make_hr_system,
    make_import_rule,
    make_person,
)

if TYPE_CHECKING:
    from uuid import UUID

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


def _export(connected_system_id: UUID, **fields: Any) -> PendingExport:
    return PendingExport(
        connected_system_id=connected_system_id,
        connected_system_object_id=new_id(),
        change_type=PendingExportChangeType.UPDATE,
        **fields,
    )


def test_connected_systems_are_stored_as_documents(sqlite_session: Session) -> None:
    repository = SqlAlchemyConnectedSystemRepository(sqlite_session)
    hr, directory = make_hr_system(), make_directory_system()

    repository.add(hr)
    repository.add(directory)
    repository.add(directory)

    assert repository.get(directory.id) == directory
    assert repository.get_by_name("HR") == hr
    assert [s.name for s in repository.list()] == ["Directory", "HR"]

    repository.remove(hr.id)

    assert repository.get(hr.id) is None
    assert repository.get_by_name("Nobody") is None


def test_sync_rules_are_selected_by_direction_and_type(sqlite_session: Session) -> None:
    repository = SqlAlchemySyncRuleRepository(sqlite_session)
    hr, directory = make_hr_system(), make_directory_system()
    import_rule = make_import_rule(hr)
    disabled = make_import_rule(hr, id=new_id(), name="Disabled in", enabled=False)
    export_rule = make_export_rule(directory)
    for rule in (import_rule, disabled, export_rule):
        repository.add(rule)

    assert repository.get(import_rule.id) == import_rule
    assert repository.import_rules_for(hr.id, "person") == [import_rule]
    assert repository.import_rules_for(directory.id, "person") == []
    assert repository.export_rules_for("person") == [export_rule]
    assert len(repository.list()) == 3


def test_objects_are_found_by_external_ids(sqlite_session: Session) -> None:
    repository = SqlAlchemyConnectedSystemObjectRepository(sqlite_session)
    hr = make_hr_system()
    cso = make_hr_cso(hr, "42")
    cso.secondary_external_id = "u42"
    repository.add(cso)
    sqlite_session.flush()

    assert repository.get_by_external_id(hr.id, "42") is cso
    assert repository.get_by_secondary_external_id(hr.id, "u42") is cso
    assert repository.get_by_external_id(new_id(), "42") is None


def test_delta_selection_includes_only_recently_changed_objects(sqlite_session: Session) -> None:
    repository = SqlAlchemyConnectedSystemObjectRepository(sqlite_session)
    hr = make_hr_system()
    old, recent = make_hr_cso(hr, "1"), make_hr_cso(hr, "2")
    old.created_at = old.last_updated = NOW - timedelta(days=3)
    recent.created_at = NOW - timedelta(days=2)
    recent.last_updated = NOW
    repository.add(old)
    repository.add(recent)
    sqlite_session.flush()

    assert repository.for_system(hr.id) == [old, recent]
    assert repository.for_system(hr.id, changed_since=NOW - timedelta(hours=1)) == [recent]


def test_joined_objects_are_listed_per_metaverse_object(sqlite_session: Session) -> None:
    repository = SqlAlchemyConnectedSystemObjectRepository(sqlite_session)
    hr, directory = make_hr_system(), make_directory_system()
    person = make_person("42")
    source = make_hr_cso(hr, "42")
    source.metaverse_object_id = person.id
    repository.add(source)
    sqlite_session.flush()

    assert repository.joined_to(person.id) == [source]
    assert repository.joined_in_system(person.id, hr.id) is source
    assert repository.joined_in_system(person.id, directory.id) is None


def test_find_by_attribute_ignores_case_unless_asked(sqlite_session: Session) -> None:
    repository = SqlAlchemyMetaverseObjectRepository(sqlite_session)
    ada = make_person("E42", email="Ada@Example.test")
    grace = make_person("E77", email="grace@example.test")
    repository.add(ada)
    repository.add(grace)
    sqlite_session.flush()

    assert repository.find_by_attribute("person", "email", ["ada@example.test"]) == [ada]
    assert (
        repository.find_by_attribute(
            "person", "email", ["ada@example.test"], case_sensitive=True
        )
        == []
    )
    both = repository.find_by_attribute("person", "employeeId", ["E42", "E77"])
    assert {p.id for p in both} == {ada.id, grace.id}
    assert repository.find_by_attribute("group", "email", ["ada@example.test"]) == []
    assert repository.find_by_attribute("person", "email", []) == []


def test_due_for_deletion_respects_the_deadline(sqlite_session: Session) -> None:
    repository = SqlAlchemyMetaverseObjectRepository(sqlite_session)
    due, later, active = make_person("1"), make_person("2"), make_person("3")
    due.schedule_deletion(at=NOW - timedelta(days=8), grace_period=timedelta(days=7))
    later.schedule_deletion(at=NOW, grace_period=timedelta(days=7))
    for person in (due, later, active):
        repository.add(person)
    sqlite_session.flush()

    assert due.status == MetaverseObjectStatus.PENDING_DELETION
    assert repository.due_for_deletion(NOW) == [due]
    assert repository.due_for_deletion(NOW + timedelta(days=7)) == [due, later]


def test_ready_for_execution_skips_waiting_parked_and_foreign_exports(
    sqlite_session: Session,
) -> None:
    repository = SqlAlchemyPendingExportRepository(sqlite_session)
    system_id = new_id()
    ready = _export(system_id, created_at=NOW - timedelta(minutes=2))
    retry_due = _export(system_id, next_retry_at=NOW, created_at=NOW - timedelta(minutes=1))
    waiting = _export(system_id, next_retry_at=NOW + timedelta(minutes=5))
    exhausted = _export(system_id, error_count=5, max_retries=5)
    awaiting = _export(system_id, status=PendingExportStatus.AWAITING_CONFIRMATION)
    foreign = _export(new_id())
    for pending in (ready, retry_due, waiting, exhausted, awaiting, foreign):
        repository.add(pending)
    sqlite_session.flush()

    assert repository.ready_for_execution(system_id, NOW) == [ready, retry_due]
    assert len(repository.for_system(system_id)) == 5
    assert repository.for_system(system_id, status=PendingExportStatus.AWAITING_CONFIRMATION) == [
        awaiting
    ]
    assert repository.for_cso(waiting.connected_system_object_id) is waiting


def test_deferred_references_are_looked_up_while_unresolved(sqlite_session: Session) -> None:
    repository = SqlAlchemyDeferredReferenceRepository(sqlite_session)
    source_id, target_id, system_id = new_id(), new_id(), new_id()
    deferred = DeferredReference(
        source_cso_id=source_id,
        attribute_name="manager",
        target_mvo_id=target_id,
        target_system_id=system_id,
        created_at=NOW,
    )
    repository.add(deferred)
    sqlite_session.flush()

    found = repository.find_unresolved(
        source_cso_id=source_id,
        attribute_name="manager",
        target_mvo_id=target_id,
        target_system_id=system_id,
    )
    assert found is deferred
    assert repository.unresolved_for_target(target_id, system_id) == [deferred]
    assert repository.unresolved(system_id) == [deferred]

    deferred.mark_resolved(at=NOW)
    sqlite_session.flush()

    assert repository.unresolved() == []
    assert repository.for_source(source_id) == [deferred]


def test_recent_activities_are_newest_first(sqlite_session: Session) -> None:
    repository = SqlAlchemyActivityRepository(sqlite_session)
    older = Activity(task_kind=TaskKind.RUN_PROFILE, description="older", started_at=NOW)
    newer = Activity(
        task_kind=TaskKind.RUN_PROFILE,
        description="newer",
        started_at=NOW + timedelta(minutes=5),
    )
    repository.add(older)
    repository.add(newer)
    sqlite_session.flush()

    assert repository.recent() == [newer, older]
    assert repository.recent(limit=1) == [newer]

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from idsync.domain.model import (
    Activity,
    ActivityErrorType,
    ActivityItem,
    ActivityItemOutcome,
    ActivityStatus,
    AttributeChangeStatus,
    AttributeChangeType,
    AttributeDataType,
    AttributeValue,
    ConnectedSystemObject,
    DeferredReference,
    MetaverseObject,
    PendingExport,
    PendingExportAttributeValueChange,
    PendingExportChangeType,
    PendingExportStatus,
    SyncRuleMappingSource,
    TaskKind,
    ValueOwner,
    coerce_value,
    new_id,
)

TEXT = AttributeDataType.TEXT
NOW = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


def test_coerce_value_normalises_datetimes_to_utc() -> None:
    value = coerce_value(AttributeDataType.DATETIME, "2025-03-01T10:00:00+02:00")

    assert value == datetime(2025, 3, 1, 8, 0, tzinfo=UTC)
    assert coerce_value(AttributeDataType.DATETIME, "2025-03-01T08:00:00Z") == value


def test_coerce_value_rejects_unknown_boolean_text() -> None:
    assert coerce_value(AttributeDataType.BOOLEAN, "Yes") is True

    with pytest.raises(ValueError, match="boolean"):
        coerce_value(AttributeDataType.BOOLEAN, "maybe")


def test_coerce_value_refuses_booleans_as_numbers() -> None:
    assert coerce_value(AttributeDataType.NUMBER, " 42 ") == 42

    with pytest.raises(TypeError):
        coerce_value(AttributeDataType.NUMBER, True)


def test_reference_without_identifier_stays_unresolved() -> None:
    value = AttributeValue.of("manager", AttributeDataType.REFERENCE, "77")

    assert value.is_unresolved_reference
    assert value.reference_id is None
    assert value.unresolved_reference_value == "77"

    target = new_id()
    resolved = AttributeValue.of("manager", AttributeDataType.REFERENCE, target)
    assert not resolved.is_unresolved_reference
    assert resolved.value == target


def test_datetime_values_compare_in_utc() -> None:
    noon = datetime(2025, 1, 1, 12, tzinfo=UTC)
    first = AttributeValue.of("start", AttributeDataType.DATETIME, noon)
    second = AttributeValue.of("start", AttributeDataType.DATETIME, "2025-01-01T13:00:00+01:00")

    assert first.same_value(second)


def test_add_value_keeps_set_semantics() -> None:
    mvo = MetaverseObject(object_type="person")

    assert mvo.add_value(AttributeValue.of("groups", TEXT, "staff"))
    assert not mvo.add_value(AttributeValue.of("groups", TEXT, "staff"))

    (value,) = mvo.values_for("groups")
    assert mvo.raw_values("groups") == ("staff",)
    assert value.owner_kind == ValueOwner.METAVERSE_OBJECT
    assert value.owner_id == mvo.id


def test_replace_values_keeps_identity_of_unchanged_values() -> None:
    cso = ConnectedSystemObject(connected_system_id=new_id(), object_type="person")
    cso.set_values("groups", TEXT, ["a", "b"])
    kept = next(v for v in cso.values_for("groups") if v.value == "a")

    added, removed = cso.replace_values(
        "groups",
        [AttributeValue.of("groups", TEXT, "a"), AttributeValue.of("groups", TEXT, "c")],
    )

    assert [v.value for v in added] == ["c"]
    assert [v.value for v in removed] == ["b"]
    assert any(v is kept for v in cso.values_for("groups"))
    assert sorted(str(v) for v in cso.raw_values("groups")) == ["a", "c"]


def test_set_values_reports_whether_anything_changed() -> None:
    cso = ConnectedSystemObject(connected_system_id=new_id(), object_type="person")

    assert cso.set_values("mail", TEXT, ["ada@example.test"])
    assert not cso.set_values("mail", TEXT, ["ada@example.test"])
    assert cso.set_values("mail", TEXT, [])
    assert cso.get_value("mail") is None


def test_mapping_source_requires_exactly_one_kind() -> None:
    with pytest.raises(ValueError, match="exactly one"):
        SyncRuleMappingSource()
    with pytest.raises(ValueError, match="exactly one"):
        SyncRuleMappingSource(attribute="mail", constant="x")


def _pending_update(max_retries: int) -> PendingExport:
    change = PendingExportAttributeValueChange.for_value(
        AttributeChangeType.UPDATE, AttributeValue.of("mail", TEXT, "ada@example.test")
    )
    return PendingExport(
        connected_system_id=new_id(),
        connected_system_object_id=new_id(),
        change_type=PendingExportChangeType.UPDATE,
        max_retries=max_retries,
        attribute_changes=[change],
    )


def test_pending_export_waits_for_its_retry_time() -> None:
    pending = _pending_update(max_retries=2)

    pending.record_failure("ldap down", at=NOW, next_retry_at=NOW + timedelta(minutes=2))

    assert pending.status == PendingExportStatus.PENDING
    assert pending.error_count == 1
    assert pending.last_error_message == "ldap down"
    assert not pending.is_ready(NOW)
    assert pending.is_ready(NOW + timedelta(minutes=2))


def test_pending_export_is_parked_when_retries_run_out() -> None:
    pending = _pending_update(max_retries=2)
    later = NOW + timedelta(minutes=2)

    pending.record_failure("ldap down", at=NOW, next_retry_at=later)
    pending.record_failure("ldap still down", at=later, next_retry_at=later)

    assert pending.status == PendingExportStatus.EXPORT_NOT_IMPORTED
    assert pending.attribute_changes[0].status == AttributeChangeStatus.FAILED
    assert not pending.is_ready(NOW + timedelta(days=1))

    pending.reset_for_retry()

    assert pending.status == PendingExportStatus.PENDING
    assert pending.error_count == 0
    assert pending.attribute_changes[0].status == AttributeChangeStatus.PENDING
    assert pending.is_ready(NOW)


def test_change_mirrors_onto_holder() -> None:
    cso = ConnectedSystemObject(connected_system_id=new_id(), object_type="user")
    cso.set_values("memberOf", TEXT, ["staff", "old"])

    remove = PendingExportAttributeValueChange.for_value(
        AttributeChangeType.REMOVE, AttributeValue.of("memberOf", TEXT, "old")
    )
    cso.apply_change(remove)

    assert cso.raw_values("memberOf") == ("staff",)
    assert remove.is_satisfied_by(cso)


def test_resolved_deferred_reference_is_terminal() -> None:
    deferred = DeferredReference(
        source_cso_id=new_id(),
        attribute_name="manager",
        target_mvo_id=new_id(),
        target_system_id=new_id(),
    )
    deferred.record_retry(at=NOW)
    deferred.mark_resolved(at=NOW)

    assert deferred.is_resolved
    assert deferred.retry_count == 1
    with pytest.raises(ValueError, match="resolved"):
        deferred.record_retry(at=NOW)


def test_activity_counts_outcomes() -> None:
    activity = Activity(task_kind=TaskKind.RUN_PROFILE, description="HR full import")

    activity.record(ActivityItem(outcome=ActivityItemOutcome.ADDED))
    activity.record(ActivityItem(outcome=ActivityItemOutcome.NO_CHANGE))
    activity.record(
        ActivityItem(
            outcome=ActivityItemOutcome.FAILED,
            error_type=ActivityErrorType.MALFORMED_IMPORT,
            error_message="unknown attribute",
        )
    )
    activity.complete(at=NOW)

    assert activity.objects_processed == 3
    assert activity.objects_changed == 1
    assert activity.error_count == 1
    assert activity.status == ActivityStatus.COMPLETE_WITH_WARNING
    assert activity.completed_at == NOW

"""Loading and validating the declarative engine configuration."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from idsync.adapters.config_file import (
    SyncRuleDocument,
    apply_engine_config,
    from_sync_rule,
    load_engine_config,
    parse_engine_config,
    to_sync_rule,
)
from idsync.config import ConfigurationError
from idsync.domain.model import (
    AttributeDataType,
    DeletionRule,
    OutboundDeprovisionAction,
    RunType,
    ScopingComparison,
    SyncRuleDirection,
)
from tests.helpers.fakes import InMemoryStore

CONFIG_PATH = Path(__file__).parents[2] / "data" / "engine_config.json"


@pytest.fixture
def document() -> dict[str, Any]:
    return json.loads(CONFIG_PATH.read_text())


def test_configuration_file_loads() -> None:
    config = load_engine_config(CONFIG_PATH)

    hr, directory = config.connected_systems
    assert (hr.name, directory.name) == ("HR", "Directory")
    person = hr.object_type("person")
    assert person is not None
    assert person.external_id_attribute is not None
    assert person.external_id_attribute.name == "employeeId"
    manager = person.get_attribute("manager")
    assert manager is not None
    assert manager.data_type == AttributeDataType.REFERENCE
    assert [p.run_type for p in hr.run_profiles] == [
        RunType.FULL_IMPORT,
        RunType.FULL_SYNCHRONISATION,
    ]
    assert directory.settings["host"] == "ldap.example.test"

    (person_type,) = config.metaverse_types
    assert person_type.deletion_rule == DeletionRule.WHEN_LAST_CONNECTOR_DISCONNECTED
    assert person_type.deletion_grace_period == timedelta(days=7)

    inbound, outbound = config.sync_rules
    assert inbound.connected_system_id == hr.id
    assert inbound.direction == SyncRuleDirection.IMPORT
    assert outbound.connected_system_id == directory.id
    assert outbound.outbound_deprovision_action == OutboundDeprovisionAction.DELETE
    assert outbound.scoping[0].criteria[0].comparison == ScopingComparison.STARTS_WITH


def test_ids_are_stable_across_loads() -> None:
    first = load_engine_config(CONFIG_PATH)
    second = load_engine_config(CONFIG_PATH)

    assert [s.id for s in first.connected_systems] == [s.id for s in second.connected_systems]
    assert [r.id for r in first.sync_rules] == [r.id for r in second.sync_rules]
    assert first.connected_systems[0].run_profiles == second.connected_systems[0].run_profiles


def test_applying_twice_replaces_stored_definitions() -> None:
    store = InMemoryStore()
    config = load_engine_config(CONFIG_PATH)

    for _ in range(2):
        with store.unit_of_work() as uow:
            apply_engine_config(uow, config)
            uow.commit()

    assert len(store.systems) == 2
    assert list(store.metaverse_types) == ["person"]
    assert len(store.sync_rules) == 2


def test_invalid_expression_is_rejected(document: dict[str, Any]) -> None:
    document["sync_rules"][0]["mappings"][1]["sources"][0]["expression"] = "__import__('os')"

    with pytest.raises(ConfigurationError, match="invalid expression"):
        parse_engine_config(json.dumps(document))


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda d: d["sync_rules"][0].update(connected_system="Payroll"), "unknown system"),
        (lambda d: d["sync_rules"][1]["mappings"][0].update(target="cn"), "unknown attribute"),
        (lambda d: d["sync_rules"][1].update(project_to_metaverse=True), "cannot project"),
        (lambda d: d["connected_systems"].append(d["connected_systems"][0]), "duplicate"),
        (lambda d: d["sync_rules"][0]["mappings"][0]["sources"][0].update(constant="x"), "exactly"),
        (lambda d: d["metaverse_object_types"][0].update(colour="blue"), "colour"),
    ],
)
def test_inconsistent_document_is_rejected(
    document: dict[str, Any], mutate: Any, message: str
) -> None:
    mutate(document)

    with pytest.raises(ConfigurationError, match=message):
        parse_engine_config(json.dumps(document), source="engine_config.json")


def test_unreadable_file_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Cannot read configuration file"):
        load_engine_config(tmp_path / "missing.json")


def test_stored_rule_document_translates_back() -> None:
    config = load_engine_config(CONFIG_PATH)
    rule = config.sync_rules[1]

    document = SyncRuleDocument.model_validate_json(from_sync_rule(rule).model_dump_json())

    assert to_sync_rule(document) == rule

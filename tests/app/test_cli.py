from __future__ import annotations

from pathlib import Path
from threading import Event
from typing import TYPE_CHECKING

import pytest

from idsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, shutdown
from idsync.config import ConfigurationError
from idsync.domain.model import Activity, ActivityStatus, TaskKind
from idsync.ui import cli

if TYPE_CHECKING:
    from collections.abc import Iterator

CONFIG_PATH = Path(__file__).parents[1] / "data" / "engine_config.json"


@pytest.fixture(autouse=True)
def reset_adapter_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(cli, "_cancel_event", Event())
    shutdown()
    yield
    shutdown()


@pytest.fixture
def no_database(monkeypatch: pytest.MonkeyPatch) -> list[str | None]:
    seen: list[str | None] = []

    def fake_initialise(*, database_uri: str | None = None) -> None:
        seen.append(database_uri)

    monkeypatch.setattr(cli, "initialise_database", fake_initialise)
    return seen


def _exit_code(argv: list[str]) -> object:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)
    return excinfo.value.code


def _activity(status: ActivityStatus) -> Activity:
    return Activity(task_kind=TaskKind.RUN_PROFILE, description="Full Import on HR", status=status)


def test_run_passes_names_and_succeeds(
    monkeypatch: pytest.MonkeyPatch, no_database: list[str | None]
) -> None:
    captured: dict[str, object] = {}

    def fake_run(system: str, profile: str, *, cancel_event: Event) -> Activity:
        captured.update(system=system, profile=profile, cancel_event=cancel_event)
        return _activity(ActivityStatus.COMPLETE_WITH_WARNING)

    monkeypatch.setattr(cli, "run_profile", fake_run)

    code = _exit_code(["--database-uri", "sqlite:///x.db", "run", "HR", "Full Import"])

    assert code == 0
    assert no_database == ["sqlite:///x.db"]
    assert captured["system"] == "HR"
    assert captured["profile"] == "Full Import"
    assert captured["cancel_event"] is cli._cancel_event


def test_failed_run_exits_with_error(
    monkeypatch: pytest.MonkeyPatch, no_database: list[str | None]
) -> None:
    monkeypatch.setattr(cli, "run_profile", lambda *_, **__: _activity(ActivityStatus.FAILED))

    assert _exit_code(["run", "HR", "Full Import"]) == 1


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ConfigurationError("Unknown connected system 'Payroll'"), 2),
        (ValueError("bad request"), 2),
        (RuntimeError("database went away"), 1),
    ],
)
def test_errors_map_to_exit_codes(
    monkeypatch: pytest.MonkeyPatch,
    no_database: list[str | None],
    error: Exception,
    expected: int,
) -> None:
    def failing(*_: object, **__: object) -> int:
        raise error

    monkeypatch.setattr(cli, "process_deletions", failing)

    assert _exit_code(["deletions", "process"]) == expected


def test_missing_command_is_a_usage_error() -> None:
    assert _exit_code([]) == 2


def test_load_config_stores_definitions(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'idsync.db'}"

    assert _exit_code(["--database-uri", uri, "load-config", str(CONFIG_PATH)]) == 0

    with SqlAlchemySyncUnitOfWork() as uow:
        assert uow.repositories.connected_systems.get_by_name("HR") is not None


def test_run_with_unimportable_connector_fails(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'idsync.db'}"
    assert _exit_code(["--database-uri", uri, "load-config", str(CONFIG_PATH)]) == 0

    assert _exit_code(["--database-uri", uri, "run", "HR", "Full Import"]) == 1

    with SqlAlchemySyncUnitOfWork() as uow:
        (activity,) = uow.repositories.activities.recent()
    assert activity.status == ActivityStatus.FAILED
    assert activity.error_message is not None
    assert "Cannot import connector module 'idsync_connectors.csv'" in activity.error_message


def test_first_interrupt_cancels_and_second_quits() -> None:
    cli.sigint_handler(2, None)
    assert cli._cancel_event.is_set()

    with pytest.raises(SystemExit) as excinfo:
        cli.sigint_handler(2, None)
    assert excinfo.value.code == 0

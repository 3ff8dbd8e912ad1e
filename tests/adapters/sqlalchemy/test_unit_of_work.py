from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from idsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from idsync.domain.errors import ConcurrencyConflictError
from idsync.domain.model import ConnectedSystemObjectStatus, ImportWatermark
from tests.helpers.identity import make_hr_cso, make_hr_system, make_person_type

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_sqlalchemy_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemySyncUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_unit_of_work_persists_configuration_and_objects(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    system = make_hr_system()
    person_type = make_person_type()

    with SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.connected_systems.add(system)
        uow.repositories.metaverse_types.add(person_type)
        cso = make_hr_cso(system, "42", firstName="Ada")
        uow.repositories.connected_system_objects.add(cso)
        uow.repositories.watermarks.add(
            ImportWatermark(connected_system_id=system.id, pagination_tokens=["p2", "p3"])
        )
        uow.commit()

    with SqlAlchemySyncUnitOfWork() as uow:
        repos = uow.repositories
        assert repos.connected_systems.get(system.id) == system
        assert repos.metaverse_types.get("person") == person_type
        loaded = repos.connected_system_objects.get_by_external_id(system.id, "42")
        assert loaded is not None
        assert loaded.get_value("firstName") == "Ada"
        watermark = repos.watermarks.get(system.id)
        assert watermark is not None
        assert watermark.pagination_tokens == ["p2", "p3"]


def test_leaving_with_an_error_discards_uncommitted_work(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    system = make_hr_system()

    with pytest.raises(RuntimeError), SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.connected_system_objects.add(make_hr_cso(system, "42"))
        uow.session.flush()
        raise RuntimeError("boom")

    with SqlAlchemySyncUnitOfWork() as uow:
        assert uow.repositories.connected_system_objects.for_system(system.id) == []


def test_concurrent_update_raises_conflict(tmp_path: Path) -> None:
    startup(database_uri=f"sqlite+pysqlite:///{tmp_path / 'idsync.db'}", force=True)
    system = make_hr_system()
    cso = make_hr_cso(system, "42")
    with SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.connected_system_objects.add(cso)
        uow.commit()

    with SqlAlchemySyncUnitOfWork() as first, SqlAlchemySyncUnitOfWork() as second:
        mine = first.repositories.connected_system_objects.get(cso.id)
        theirs = second.repositories.connected_system_objects.get(cso.id)
        assert mine is not None
        assert theirs is not None

        theirs.status = ConnectedSystemObjectStatus.PENDING_PROVISIONING
        second.commit()

        mine.status = ConnectedSystemObjectStatus.OBSOLETE
        with pytest.raises(ConcurrencyConflictError):
            first.commit()

    with SqlAlchemySyncUnitOfWork() as uow:
        stored = uow.repositories.connected_system_objects.get(cso.id)
        assert stored is not None
        assert stored.status == ConnectedSystemObjectStatus.PENDING_PROVISIONING
        assert stored.version == 2

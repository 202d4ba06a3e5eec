from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tenantsync.adapters.sqlalchemy.migrations import upgrade_head
from tenantsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncStateUnitOfWork,
    shutdown,
    startup,
)

from tests.helpers.directory import ScriptedDirectory
from tests.helpers.identity_store import FakeIdentityStore

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemySyncStateUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemySyncStateUnitOfWork:
        return SqlAlchemySyncStateUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def identity_store() -> FakeIdentityStore:
    return FakeIdentityStore()


@pytest.fixture
def directory() -> ScriptedDirectory:
    return ScriptedDirectory()

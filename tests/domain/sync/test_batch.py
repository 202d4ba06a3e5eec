from __future__ import annotations

import logging
import threading

import pytest

from tenantsync.domain.model import DEFAULT_TENANT, LockLostError, SyncPhase
from tenantsync.domain.ports import IdentityRepositories
from tenantsync.domain.sync import BatchProcessor, SyncContext, chunked

from tests.helpers.identity_store import FakeIdentityStore, FakeIdentityUnitOfWork

CONTEXT = SyncContext(
    tenant=DEFAULT_TENANT,
    source_id="ldap1",
    source_ids=("ldap1",),
    phase=SyncPhase.PERSON_UPSERT,
)


class RecordingFactory:
    def __init__(self) -> None:
        self.store = FakeIdentityStore()
        self.units_of_work: list[FakeIdentityUnitOfWork] = []
        self._lock = threading.Lock()

    def __call__(self) -> FakeIdentityUnitOfWork:
        uow = FakeIdentityUnitOfWork(self.store)
        with self._lock:
            self.units_of_work.append(uow)
        return uow


def test_chunked_splits_lazily() -> None:
    assert list(chunked(range(7), 3)) == [[0, 1, 2], [3, 4, 5], [6]]
    assert list(chunked([], 3)) == []


def test_every_unit_is_processed_in_committed_batches() -> None:
    factory = RecordingFactory()
    seen: list[int] = []
    lock = threading.Lock()

    def worker(unit: int, repositories: IdentityRepositories) -> None:
        assert repositories.people is factory.store
        with lock:
            seen.append(unit)

    processed = BatchProcessor(factory, worker_threads=4, batch_size=7).run(
        CONTEXT, iter(range(100)), worker
    )

    assert processed == 100
    assert sorted(seen) == list(range(100))
    assert len(factory.units_of_work) == 15
    assert all(uow.committed for uow in factory.units_of_work)


def test_empty_phase_processes_nothing() -> None:
    factory = RecordingFactory()

    def worker(_unit: int, _repositories: IdentityRepositories) -> None:
        raise AssertionError("no units expected")

    assert BatchProcessor(factory).run(CONTEXT, [], worker) == 0
    assert factory.units_of_work == []


def test_failing_batch_stops_the_phase() -> None:
    factory = RecordingFactory()
    seen: list[int] = []
    lock = threading.Lock()

    def worker(unit: int, _repositories: IdentityRepositories) -> None:
        if unit == 15:
            raise ValueError("cannot apply unit 15")
        with lock:
            seen.append(unit)

    processor = BatchProcessor(factory, worker_threads=1, batch_size=10)
    with pytest.raises(ValueError, match="unit 15"):
        processor.run(CONTEXT, range(100), worker)

    failed = [uow for uow in factory.units_of_work if uow.rolled_back]
    assert len(failed) == 1
    assert not failed[0].committed
    assert max(seen) < 40


def test_lost_lock_stops_submission() -> None:
    factory = RecordingFactory()
    calls = 0

    def should_continue() -> bool:
        nonlocal calls
        calls += 1
        return calls <= 2

    def worker(_unit: int, _repositories: IdentityRepositories) -> None:
        return None

    processor = BatchProcessor(
        factory, worker_threads=1, batch_size=5, should_continue=should_continue
    )
    with pytest.raises(LockLostError, match="lock lost"):
        processor.run(CONTEXT, range(50), worker)

    assert len(factory.units_of_work) <= 2


def test_progress_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    factory = RecordingFactory()

    def worker(_unit: int, _repositories: IdentityRepositories) -> None:
        return None

    processor = BatchProcessor(factory, worker_threads=2, batch_size=5, logging_interval=10)
    with caplog.at_level(logging.INFO, logger="tenantsync.domain.sync.batch"):
        processor.run(CONTEXT, range(30), worker)

    messages = [record.getMessage() for record in caplog.records]
    assert "-default-/ldap1 4 User Update and Creation: 10 unit(s) processed" in messages
    assert "-default-/ldap1 4 User Update and Creation: completed, 30 unit(s) processed" in messages

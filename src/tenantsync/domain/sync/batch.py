"""Parallel, transactional batch execution of one sync phase."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import islice
from typing import TYPE_CHECKING

from tenantsync.domain.model import LockLostError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from tenantsync.domain.ports import IdentityRepositories, IdentityUnitOfWork
    from tenantsync.domain.sync.context import SyncContext

log = logging.getLogger(__name__)

type Worker[T] = Callable[[T, IdentityRepositories], None]


def chunked[T](units: Iterable[T], size: int) -> Iterator[list[T]]:
    iterator = iter(units)
    while batch := list(islice(iterator, size)):
        yield batch


class BatchProcessor:
    """Feed a lazy unit sequence to a worker pool, one transaction per batch.

    Units are read on the calling thread while earlier batches run, with at
    most two batches per worker in flight. The first failing batch stops
    submission and its exception propagates once running batches settle.
    ``should_continue`` is polled before every submission; when it turns
    false the phase stops with ``LockLostError``.
    """

    def __init__(
        self,
        unit_of_work_factory: Callable[[], IdentityUnitOfWork],
        *,
        worker_threads: int = 2,
        batch_size: int = 20,
        logging_interval: int = 100,
        should_continue: Callable[[], bool] | None = None,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._worker_threads = max(1, worker_threads)
        self._batch_size = max(1, batch_size)
        self._logging_interval = logging_interval
        self._should_continue = should_continue or (lambda: True)

    def run[T](self, context: SyncContext, units: Iterable[T], worker: Worker[T]) -> int:
        """Process every unit and return how many were processed."""

        label = f"{context.label} {context.phase.title if context.phase else 'batch'}"
        processed = 0
        in_flight: set[Future[int]] = set()
        max_in_flight = self._worker_threads * 2

        with ThreadPoolExecutor(
            max_workers=self._worker_threads, thread_name_prefix="tenantsync-worker"
        ) as executor:
            try:
                for batch in chunked(units, self._batch_size):
                    if not self._should_continue():
                        raise LockLostError(f"{label}: lock lost, not submitting further batches")
                    in_flight.add(executor.submit(self._run_batch, batch, worker))
                    if len(in_flight) >= max_in_flight:
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        processed = self._collect(done, processed, label)
                done, in_flight = wait(in_flight)
                processed = self._collect(done, processed, label)
            except BaseException:
                for future in in_flight:
                    future.cancel()
                raise

        log.info("%s: completed, %s unit(s) processed", label, processed)
        return processed

    def _run_batch[T](self, batch: list[T], worker: Worker[T]) -> int:
        with self._unit_of_work_factory() as uow:
            for unit in batch:
                worker(unit, uow.repositories)
            uow.commit()
        return len(batch)

    def _collect(self, done: set[Future[int]], processed: int, label: str) -> int:
        for future in done:
            before = processed
            processed += future.result()
            interval = self._logging_interval
            if interval > 0 and processed // interval > before // interval:
                log.info("%s: %s unit(s) processed", label, processed)
        return processed

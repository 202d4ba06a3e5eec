"""Cluster-wide tenant lock on the ``sync_lock`` table."""

from __future__ import annotations

import logging
import socket
import threading
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantsync.adapters.sqlalchemy.repositories import LockRow
from tenantsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncStateUnitOfWork
from tenantsync.domain.model import LockAcquisitionError

if TYPE_CHECKING:
    from tenantsync.domain.ports import LockRefreshCallback

log = logging.getLogger(__name__)

type SyncStateUnitOfWorkFactory = Callable[[], SqlAlchemySyncStateUnitOfWork]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Heartbeat(threading.Thread):
    """Renews a held lock every half TTL while the callback reports it active."""

    def __init__(
        self,
        service: SqlAlchemyLockService,
        *,
        token: str,
        lock_name: str,
        ttl: float,
        callback: LockRefreshCallback,
    ) -> None:
        super().__init__(name=f"lock-heartbeat-{lock_name}", daemon=True)
        self._service = service
        self._token = token
        self._lock_name = lock_name
        self._ttl = ttl
        self._callback = callback
        self.stopped = threading.Event()

    def run(self) -> None:
        interval = max(self._ttl / 2, 0.01)
        while not self.stopped.wait(interval):
            if not self._callback.is_active():
                return
            try:
                renewed = self._service.extend(self._token, self._lock_name, self._ttl)
            except SQLAlchemyError as exc:
                log.warning("Renewing lock %s failed: %s", self._lock_name, exc)
                renewed = False
            if not renewed:
                log.warning("Lock %s is no longer held by this process", self._lock_name)
                self._callback.lock_released()
                return


class SqlAlchemyLockService:
    """Named, time-boxed locks; an expired holder may be taken over."""

    def __init__(
        self,
        unit_of_work_factory: SyncStateUnitOfWorkFactory | None = None,
        *,
        owner: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory or SqlAlchemySyncStateUnitOfWork
        self._owner = owner or socket.gethostname()
        self._clock = clock
        self._sleep = sleep
        self._heartbeats: dict[str, _Heartbeat] = {}
        self._heartbeats_lock = threading.Lock()

    def acquire(self, name: str, ttl: float, retry_wait: float, retries: int) -> str:
        token = uuid.uuid4().hex
        for attempt in range(retries + 1):
            if self._try_acquire(name, token, ttl):
                log.debug("Acquired lock %s (token %s)", name, token)
                return token
            if attempt < retries:
                log.info("Lock %s is held elsewhere; retrying in %.1fs", name, retry_wait)
                self._sleep(retry_wait)
        raise LockAcquisitionError(f"Lock {name} is held by {self._holder(name) or 'another run'}")

    def refresh(self, token: str, name: str, ttl: float, callback: LockRefreshCallback) -> None:
        heartbeat = _Heartbeat(self, token=token, lock_name=name, ttl=ttl, callback=callback)
        with self._heartbeats_lock:
            previous = self._heartbeats.pop(token, None)
            self._heartbeats[token] = heartbeat
        if previous is not None:
            previous.stopped.set()
        heartbeat.start()

    def extend(self, token: str, name: str, ttl: float) -> bool:
        with self._unit_of_work_factory() as uow:
            renewed = uow.repositories.locks.extend(
                name, token, self._clock() + timedelta(seconds=ttl)
            )
            uow.commit()
        return renewed

    def release(self, token: str, name: str) -> bool:
        with self._heartbeats_lock:
            heartbeat = self._heartbeats.pop(token, None)
        if heartbeat is not None:
            heartbeat.stopped.set()
            if heartbeat is not threading.current_thread():
                heartbeat.join()
        with self._unit_of_work_factory() as uow:
            released = uow.repositories.locks.delete(name, token)
            uow.commit()
        if not released:
            log.warning("Lock %s was no longer held when released", name)
        return released

    def _try_acquire(self, name: str, token: str, ttl: float) -> bool:
        now = self._clock()
        lock = LockRow(
            name=name, token=token, owner=self._owner, expires_at=now + timedelta(seconds=ttl)
        )
        try:
            with self._unit_of_work_factory() as uow:
                locks = uow.repositories.locks
                if locks.get(name) is None:
                    locks.insert(lock)
                elif not locks.take_over(lock, expired_before=now):
                    return False
                uow.commit()
        except IntegrityError:
            log.debug("Another process created lock %s first", name)
            return False
        return True

    def _holder(self, name: str) -> str | None:
        with self._unit_of_work_factory() as uow:
            current = uow.repositories.locks.get(name)
        return current.owner if current is not None else None


if TYPE_CHECKING:
    from tenantsync.domain.ports import LockService

    _lock_check: LockService = SqlAlchemyLockService()

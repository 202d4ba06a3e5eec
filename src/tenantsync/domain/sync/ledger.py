"""Run status and watermark bookkeeping on top of a ``CheckpointStore``."""

from __future__ import annotations

import socket
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from tenantsync.domain.model import EntityClass, SyncCheckpoint, SyncStatus, latest
from tenantsync.domain.ports import TENANT_SCOPE, AttributeKey

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tenantsync.domain.model import SourceRunSummary
    from tenantsync.domain.ports import CheckpointStore


class LedgerAttribute(StrEnum):
    STATUS = "STATUS"
    START_TIME = "START_TIME"
    END_TIME = "END_TIME"
    LAST_RUN_HOST = "LAST_RUN_HOST"
    LAST_ERROR = "LAST_ERROR"
    SUMMARY = "SUMMARY"
    GROUP_LAST_MODIFIED = "GROUP_LAST_MODIFIED"
    PERSON_LAST_MODIFIED = "PERSON_LAST_MODIFIED"


_WATERMARKS = {
    EntityClass.GROUP: LedgerAttribute.GROUP_LAST_MODIFIED,
    EntityClass.PERSON: LedgerAttribute.PERSON_LAST_MODIFIED,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _encode_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _decode_time(value: object | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def describe_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class SyncLedger:
    """Tenant- and source-scoped run metadata.

    A run clears the previous run's status, times, errors and summaries for
    the tenant and every source in one write, so nothing stale survives.
    Watermarks only ever move forward.
    """

    _RUN_ATTRIBUTES = (
        LedgerAttribute.STATUS,
        LedgerAttribute.START_TIME,
        LedgerAttribute.END_TIME,
        LedgerAttribute.LAST_ERROR,
        LedgerAttribute.SUMMARY,
    )

    def __init__(
        self,
        store: CheckpointStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        host: str | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._host = host or socket.gethostname()

    # -- watermarks --------------------------------------------------------------

    def watermark(self, tenant: str, source_id: str, entity: EntityClass) -> datetime | None:
        return _decode_time(self._store.get(AttributeKey(tenant, _WATERMARKS[entity], source_id)))

    # -- run lifecycle -----------------------------------------------------------

    def start_run(self, tenant: str, source_ids: Iterable[str]) -> None:
        updates: dict[AttributeKey, object | None] = {
            AttributeKey(tenant, LedgerAttribute.STATUS): SyncStatus.IN_PROGRESS.value,
            AttributeKey(tenant, LedgerAttribute.START_TIME): _encode_time(self._clock()),
            AttributeKey(tenant, LedgerAttribute.LAST_RUN_HOST): self._host,
        }
        for source_id in source_ids:
            updates[AttributeKey(tenant, LedgerAttribute.STATUS, source_id)] = (
                SyncStatus.WAITING.value
            )
        self._store.write(updates, clear=[(tenant, name) for name in self._RUN_ATTRIBUTES])

    def start_source(self, tenant: str, source_id: str) -> None:
        self._store.write(
            {
                AttributeKey(tenant, LedgerAttribute.STATUS, source_id): (
                    SyncStatus.IN_PROGRESS.value
                ),
                AttributeKey(tenant, LedgerAttribute.START_TIME, source_id): _encode_time(
                    self._clock()
                ),
            }
        )

    def complete_source(self, tenant: str, summary: SourceRunSummary) -> None:
        source_id = summary.source_id
        updates: dict[AttributeKey, object | None] = {
            AttributeKey(tenant, LedgerAttribute.STATUS, source_id): SyncStatus.COMPLETE.value,
            AttributeKey(tenant, LedgerAttribute.END_TIME, source_id): _encode_time(self._clock()),
            AttributeKey(tenant, LedgerAttribute.SUMMARY, source_id): summary.describe(),
        }
        observed = {
            EntityClass.GROUP: summary.group_last_modified,
            EntityClass.PERSON: summary.person_last_modified,
        }
        for entity, value in observed.items():
            if value is None:
                continue
            previous = self.watermark(tenant, source_id, entity)
            updates[AttributeKey(tenant, _WATERMARKS[entity], source_id)] = _encode_time(
                latest(previous, value)
            )
        self._store.write(updates)

    def fail_source(self, tenant: str, source_id: str, error: BaseException) -> None:
        self._store.write(
            {
                AttributeKey(tenant, LedgerAttribute.STATUS, source_id): (
                    SyncStatus.COMPLETE_ERROR.value
                ),
                AttributeKey(tenant, LedgerAttribute.END_TIME, source_id): _encode_time(
                    self._clock()
                ),
                AttributeKey(tenant, LedgerAttribute.LAST_ERROR, source_id): describe_error(error),
            }
        )

    def complete_run(self, tenant: str) -> None:
        self._store.write(
            {
                AttributeKey(tenant, LedgerAttribute.STATUS): SyncStatus.COMPLETE.value,
                AttributeKey(tenant, LedgerAttribute.END_TIME): _encode_time(self._clock()),
            }
        )

    def fail_run(self, tenant: str, error: BaseException) -> None:
        self._store.write(
            {
                AttributeKey(tenant, LedgerAttribute.STATUS): SyncStatus.COMPLETE_ERROR.value,
                AttributeKey(tenant, LedgerAttribute.END_TIME): _encode_time(self._clock()),
                AttributeKey(tenant, LedgerAttribute.LAST_ERROR): describe_error(error),
            }
        )

    # -- reads -------------------------------------------------------------------

    def checkpoint(self, tenant: str, source_id: str | None = None) -> SyncCheckpoint:
        scope = source_id or TENANT_SCOPE

        def read(name: LedgerAttribute) -> object | None:
            return self._store.get(AttributeKey(tenant, name, scope))

        status = read(LedgerAttribute.STATUS)
        last_error = read(LedgerAttribute.LAST_ERROR)
        summary = read(LedgerAttribute.SUMMARY)
        host = read(LedgerAttribute.LAST_RUN_HOST)
        return SyncCheckpoint(
            tenant=tenant,
            source_id=source_id,
            status=SyncStatus(str(status)) if status is not None else None,
            start_time=_decode_time(read(LedgerAttribute.START_TIME)),
            end_time=_decode_time(read(LedgerAttribute.END_TIME)),
            last_error=str(last_error) if last_error is not None else None,
            summary=str(summary) if summary is not None else None,
            last_run_host=str(host) if host is not None else None,
            group_last_modified=_decode_time(read(LedgerAttribute.GROUP_LAST_MODIFIED)),
            person_last_modified=_decode_time(read(LedgerAttribute.PERSON_LAST_MODIFIED)),
        )

"""Tenant-level synchronization: locking, source precedence and phase ordering."""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import TYPE_CHECKING

from tenantsync.domain.model import (
    DEFAULT_TENANT,
    PROP_USER_NAME,
    ZONE_APP_DEFAULT,
    ZONE_AUTH_DEFAULT,
    AuthorityKind,
    EntityClass,
    LockAcquisitionError,
    SourceRunSummary,
    SyncDiagnostic,
    SyncPhase,
    SyncRunResult,
    qualify_user,
    source_zone,
)
from tenantsync.domain.sync.analyzer import GroupAnalyzer
from tenantsync.domain.sync.batch import BatchProcessor
from tenantsync.domain.sync.containment import ContainmentCache
from tenantsync.domain.sync.context import SyncContext
from tenantsync.domain.sync.ledger import SyncLedger
from tenantsync.domain.sync.mutations import MutationSet
from tenantsync.domain.sync.persons import PersonWorker
from tenantsync.domain.sync.workers import (
    AuthorityDeleter,
    GroupCreationAndParentRemovalWorker,
    GroupParentAdditionWorker,
    UserParentWorker,
)

if TYPE_CHECKING:
    from datetime import datetime

    from tenantsync.config.sync import SyncConfig
    from tenantsync.domain.model import SyncCheckpoint
    from tenantsync.domain.ports import CheckpointStore, IdentityUnitOfWorkFactory, LockService
    from tenantsync.domain.sync.sources import SourceHandle, SourceRegistry

log = logging.getLogger(__name__)

LOCK_NAME = "TenantSynchronizer"


def lock_name_for(tenant: str) -> str:
    if tenant == DEFAULT_TENANT:
        return LOCK_NAME
    return f"{LOCK_NAME}@{tenant}"


class RunLockCallback:
    """Tells the lock heartbeat whether the run still needs the lock."""

    def __init__(self) -> None:
        self._active = threading.Event()
        self._active.set()
        self._released = threading.Event()

    def is_active(self) -> bool:
        return self._active.is_set()

    def lock_released(self) -> None:
        self._released.set()

    def finish(self) -> None:
        self._active.clear()

    @property
    def lost(self) -> bool:
        return self._released.is_set() and self._active.is_set()


class TenantSynchronizer:
    """Synchronize a tenant's identity store with its directory sources.

    Sources are processed in registration order. For each one the six phases
    run in sequence, each as parallel batch transactions: group analysis,
    group creation and parent removal, group parent addition, person upsert,
    user parent association and, on full runs, authority deletion.
    Every identity-store access opens a unit of work for the tenant being
    synchronized, so one tenant never sees or deletes another tenant's
    authorities.
    """

    def __init__(
        self,
        *,
        registry: SourceRegistry,
        unit_of_work_factory: IdentityUnitOfWorkFactory,
        checkpoints: CheckpointStore,
        locks: LockService,
        config: SyncConfig,
        ledger: SyncLedger | None = None,
    ) -> None:
        self._registry = registry
        self._unit_of_work_factory = unit_of_work_factory
        self._locks = locks
        self._config = config
        self._ledger = ledger or SyncLedger(checkpoints)

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    # -- runs --------------------------------------------------------------------

    def synchronize(
        self,
        tenant: str = DEFAULT_TENANT,
        *,
        force_full_sync: bool = False,
        is_full_sync: bool = False,
        wait_for_lock: bool = False,
    ) -> SyncRunResult:
        """Run one synchronization of ``tenant``.

        ``force_full_sync`` ignores stored watermarks and ``is_full_sync``
        enables the deletion phase. Without ``wait_for_lock`` a contended lock
        makes the call return at once with ``lock_acquired=False``.
        """

        config = self._config
        lock_name = lock_name_for(tenant)
        retry_wait, retries = (0.0, 0)
        if wait_for_lock:
            retry_wait, retries = (config.lock_retry_wait, config.lock_retries)
        try:
            token = self._locks.acquire(lock_name, config.lock_ttl, retry_wait, retries)
        except LockAcquisitionError as exc:
            log.warning("Skipping synchronization of tenant %s: %s", tenant, exc)
            return SyncRunResult(tenant=tenant, lock_acquired=False)

        callback = RunLockCallback()
        result = SyncRunResult(tenant=tenant, lock_acquired=True)
        try:
            self._locks.refresh(token, lock_name, config.lock_ttl, callback)
            self._run(
                tenant,
                result,
                callback,
                force_full_sync=force_full_sync,
                is_full_sync=is_full_sync,
            )
        finally:
            callback.finish()
            self._locks.release(token, lock_name)
        return result

    def _run(
        self,
        tenant: str,
        result: SyncRunResult,
        callback: RunLockCallback,
        *,
        force_full_sync: bool,
        is_full_sync: bool,
    ) -> None:
        chain = self._registry.chain(tenant)
        source_ids = tuple(handle.source_id for handle in chain)
        log.info(
            "Starting %s synchronization of tenant %s: sources=%s, force_full_sync=%s",
            "full" if is_full_sync else "differential",
            tenant,
            list(source_ids),
            force_full_sync,
        )
        self._ledger.start_run(tenant, source_ids)

        visited: list[str] = []
        try:
            for handle in chain:
                if not handle.is_active_for(tenant):
                    log.debug("Source %s is not active for tenant %s", handle.source_id, tenant)
                    continue
                context = SyncContext(
                    tenant=tenant,
                    source_id=handle.source_id,
                    source_ids=source_ids,
                    visited_source_ids=frozenset(visited),
                    allow_deletions=self._config.allow_deletions,
                    is_full_sync=is_full_sync,
                )
                result.sources.append(
                    self._synchronize_source(
                        handle, context, callback, force_full_sync=force_full_sync
                    )
                )
                visited.append(handle.source_id)
        except Exception as exc:
            log.error("Synchronization of tenant %s failed: %s", tenant, exc)
            self._ledger.fail_run(tenant, exc)
            raise

        self._ledger.complete_run(tenant)
        log.info("Finished synchronization of tenant %s", tenant)

    def _synchronize_source(
        self,
        handle: SourceHandle,
        context: SyncContext,
        callback: RunLockCallback,
        *,
        force_full_sync: bool,
    ) -> SourceRunSummary:
        self._ledger.start_source(context.tenant, context.source_id)
        try:
            summary = self._apply_source(handle, context, callback, force_full_sync=force_full_sync)
        except Exception as exc:
            self._ledger.fail_source(context.tenant, context.source_id, exc)
            raise
        self._ledger.complete_source(context.tenant, summary)
        log.info("%s: %s", context.label, summary.describe())
        return summary

    def _apply_source(
        self,
        handle: SourceHandle,
        context: SyncContext,
        callback: RunLockCallback,
        *,
        force_full_sync: bool,
    ) -> SourceRunSummary:
        client = handle.client
        group_since = self._since(context, EntityClass.GROUP, force_full_sync=force_full_sync)
        person_since = self._since(context, EntityClass.PERSON, force_full_sync=force_full_sync)

        mutations = MutationSet(
            user_names_case_sensitive=self._user_names_case_sensitive(context.tenant)
        )
        containment = ContainmentCache()
        processor = BatchProcessor(
            partial(self._unit_of_work_factory, context.tenant),
            worker_threads=self._config.worker_threads,
            batch_size=self._config.batch_size,
            logging_interval=self._config.logging_interval,
            should_continue=lambda: not callback.lost,
        )
        summary = SourceRunSummary(source_id=context.source_id)

        phase = context.in_phase(SyncPhase.GROUP_ANALYSIS)
        summary.groups_processed = processor.run(
            phase, client.groups(group_since), GroupAnalyzer(phase, mutations, containment).process
        )

        phase = context.in_phase(SyncPhase.GROUP_CREATE_AND_PARENT_REMOVAL)
        processor.run(
            phase,
            mutations.group_creation_units(),
            GroupCreationAndParentRemovalWorker(phase, mutations).process,
        )

        phase = context.in_phase(SyncPhase.GROUP_PARENT_ADDITION)
        processor.run(
            phase,
            mutations.group_parents_to_add.children(),
            GroupParentAdditionWorker(phase, mutations).process,
        )

        phase = context.in_phase(SyncPhase.PERSON_UPSERT)
        interpreter = self._registry.account_interpreter_for(context.tenant, handle)
        summary.persons_processed = processor.run(
            phase,
            client.persons(person_since),
            PersonWorker(phase, mutations, account_interpreter=interpreter).process,
        )

        phase = context.in_phase(SyncPhase.USER_PARENT_ASSOCIATION)
        processor.run(
            phase, mutations.user_association_units(), UserParentWorker(phase, mutations).process
        )

        if context.is_full_sync and self._config.sync_delete:
            phase = context.in_phase(SyncPhase.AUTHORITY_DELETION)
            stale_groups, stale_persons = self._stale_authorities(handle, phase)
            deleter = AuthorityDeleter(phase)
            summary.groups_deleted = processor.run(phase, stale_groups, deleter.process)
            summary.persons_deleted = processor.run(phase, stale_persons, deleter.process)

        summary.group_last_modified = mutations.group_watermark.value
        summary.person_last_modified = mutations.person_watermark.value
        return summary

    def _since(
        self, context: SyncContext, entity: EntityClass, *, force_full_sync: bool
    ) -> datetime | None:
        if force_full_sync:
            return None
        return self._ledger.watermark(context.tenant, context.source_id, entity)

    def _user_names_case_sensitive(self, tenant: str) -> bool:
        with self._unit_of_work_factory(tenant) as uow:
            return uow.repositories.people.user_names_case_sensitive

    def _stale_authorities(
        self, handle: SourceHandle, context: SyncContext
    ) -> tuple[list[str], list[str]]:
        """Authorities tagged with this source's zone but no longer in the directory."""

        with self._unit_of_work_factory(context.tenant) as uow:
            authorities = uow.repositories.authorities
            zone_groups = authorities.get_all_authorities_in_zone(context.zone, AuthorityKind.GROUP)
            zone_users = authorities.get_all_authorities_in_zone(context.zone, AuthorityKind.USER)
            case_sensitive = uow.repositories.people.user_names_case_sensitive

        group_names = handle.client.group_names()
        stale_groups = sorted(name for name in zone_groups if name not in group_names)

        def fold(name: str) -> str:
            return name if case_sensitive else name.lower()

        person_names = {fold(context.qualify(name)) for name in handle.client.person_names()}
        stale_persons = sorted(name for name in zone_users if fold(name) not in person_names)
        log.info(
            "%s: %s group(s) and %s user(s) no longer in the directory",
            context.label,
            len(stale_groups),
            len(stale_persons),
        )
        return stale_groups, stale_persons

    # -- on-demand operations ----------------------------------------------------

    def create_missing_person(self, tenant: str, user_name: str) -> bool:
        """Make sure ``user_name`` exists, syncing or creating it as configured."""

        qualified = qualify_user(user_name, tenant)
        if self._person_exists(tenant, qualified):
            return True

        if self._config.sync_when_missing_people_log_in:
            try:
                self.synchronize(tenant, wait_for_lock=True)
            except Exception:  # noqa: BLE001
                log.warning(
                    "On-demand synchronization for %s in tenant %s failed",
                    qualified,
                    tenant,
                    exc_info=True,
                )
            if self._person_exists(tenant, qualified):
                return True

        if not self._config.auto_create_people_on_login:
            return False
        with self._unit_of_work_factory(tenant) as uow:
            uow.repositories.people.create_person(
                {PROP_USER_NAME: qualified}, {ZONE_AUTH_DEFAULT, ZONE_APP_DEFAULT}
            )
            uow.commit()
        log.info("Created person %s on login", qualified)
        return True

    def _person_exists(self, tenant: str, user_name: str) -> bool:
        with self._unit_of_work_factory(tenant) as uow:
            return uow.repositories.people.person_exists(user_name)

    def person_mapped_properties(self, tenant: str, user_name: str) -> frozenset[str]:
        """Properties of ``user_name`` owned by its source and not editable locally."""

        qualified = qualify_user(user_name, tenant)
        with self._unit_of_work_factory(tenant) as uow:
            zones = uow.repositories.authorities.get_authority_zones(qualified)
        if not zones:
            return frozenset()
        for handle in self._registry.chain(tenant):
            if handle.is_active_for(tenant) and source_zone(handle.source_id) in zones:
                return handle.client.person_property_names
        return frozenset()

    def test_synchronize(self, tenant: str, source_id: str) -> SyncDiagnostic:
        """Exercise one source read-only and report what it would deliver."""

        handle = self._registry.get(tenant, source_id)
        group_since = self._ledger.watermark(tenant, source_id, EntityClass.GROUP)
        person_since = self._ledger.watermark(tenant, source_id, EntityClass.PERSON)
        changed_groups = sum(1 for _ in handle.client.groups(group_since))
        changed_persons = sum(1 for _ in handle.client.persons(person_since))
        log.info(
            "Test synchronization of %s/%s: %s changed group(s), %s changed person(s)",
            tenant,
            source_id,
            changed_groups,
            changed_persons,
        )
        return SyncDiagnostic(
            source_id=source_id,
            active=handle.is_active_for(tenant),
            group_names=frozenset(handle.client.group_names()),
            person_names=frozenset(handle.client.person_names()),
            group_last_synced=group_since,
            person_last_synced=person_since,
        )

    def checkpoint(
        self, tenant: str = DEFAULT_TENANT, source_id: str | None = None
    ) -> SyncCheckpoint:
        return self._ledger.checkpoint(tenant, source_id)

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

import pytest

from tenantsync.config import SyncConfig
from tenantsync.domain.directory import DirectoryLayout, LdapAccountInterpreter
from tenantsync.domain.model import (
    DEFAULT_TENANT,
    PROP_ENABLED,
    PROP_USER_NAME,
    ZONE_APP_DEFAULT,
    ZONE_AUTH_DEFAULT,
    DirectoryUnavailableError,
    EntityClass,
    LockLostError,
    SyncStatus,
    UnknownSourceError,
)
from tenantsync.domain.sync import (
    LOCK_NAME,
    SourceCapabilities,
    SourceHandle,
    SourceRegistry,
    SyncLedger,
    TenantPolicy,
    TenantSynchronizer,
    lock_name_for,
)

from tests.helpers.directory import (
    ScriptedDirectory,
    directory_layout,
    group_dn,
    group_row,
    person_dn,
    person_row,
)
from tests.helpers.identity_store import FakeIdentityStore, TenantIdentityStores
from tests.helpers.sync_state import FakeLockService, InMemoryCheckpointStore

JANUARY = datetime(2024, 1, 1, tzinfo=UTC)
CONFIG = SyncConfig(
    worker_threads=2,
    batch_size=5,
    logging_interval=50,
    lock_ttl=60.0,
    lock_retry_wait=1.5,
    lock_retries=3,
)


def zones_of(source_id: str) -> set[str]:
    return {ZONE_APP_DEFAULT, f"AUTH.EXT.{source_id}"}


@dataclass
class Harness:
    store: FakeIdentityStore = field(default_factory=FakeIdentityStore)
    registry: SourceRegistry = field(default_factory=SourceRegistry)
    checkpoints: InMemoryCheckpointStore = field(default_factory=InMemoryCheckpointStore)
    locks: FakeLockService = field(default_factory=FakeLockService)
    config: SyncConfig = CONFIG
    stores: TenantIdentityStores = field(init=False)

    def __post_init__(self) -> None:
        self.stores = TenantIdentityStores({DEFAULT_TENANT: self.store})

    def add_source(
        self,
        source_id: str,
        directory: ScriptedDirectory,
        *,
        tenant: str = DEFAULT_TENANT,
        layout: DirectoryLayout | None = None,
        active: bool = True,
        capabilities: SourceCapabilities | None = None,
    ) -> None:
        self.registry.register(
            tenant,
            SourceHandle(
                source_id=source_id,
                client=directory.client(layout),
                active=active,
                capabilities=capabilities or SourceCapabilities(),
            ),
        )

    @property
    def synchronizer(self) -> TenantSynchronizer:
        return TenantSynchronizer(
            registry=self.registry,
            unit_of_work_factory=self.stores.unit_of_work,
            checkpoints=self.checkpoints,
            locks=self.locks,
            config=self.config,
            ledger=SyncLedger(self.checkpoints, host="node-1"),
        )


def _company() -> ScriptedDirectory:
    directory = ScriptedDirectory()
    directory.add(
        group_row("staff", [person_dn("jdoe"), group_dn("eng")], description=["All staff"]),
        group_row("eng", [person_dn("asmith")]),
        person_row("jdoe", givenName=["Jane"], sn=["Doe"], mail=["jdoe@example.com"]),
        person_row("asmith", givenName=["Alex"], sn=["Smith"]),
    )
    return directory


def test_initial_sync_builds_groups_people_and_memberships() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())

    result = harness.synchronizer.synchronize()

    store = harness.store
    assert result.lock_acquired
    assert [summary.source_id for summary in result.sources] == ["ldap1"]
    assert result.sources[0].groups_processed == 2
    assert result.sources[0].persons_processed == 2
    assert store.authority_names == {"GROUP_staff", "GROUP_eng", "jdoe", "asmith"}
    assert store.get_authority_display_name("GROUP_staff") == "All staff"
    assert store.get_authority_display_name("GROUP_eng") == "eng"
    assert store.parents_of("GROUP_eng") == {"GROUP_staff"}
    assert store.parents_of("jdoe") == {"GROUP_staff"}
    assert store.parents_of("asmith") == {"GROUP_eng"}
    assert all(store.zones_of(name) == zones_of("ldap1") for name in store.authority_names)
    assert store.person("jdoe") == {
        PROP_USER_NAME: "jdoe",
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jdoe@example.com",
    }
    assert store.person("asmith")["email"] is None


def test_run_records_status_and_watermarks() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())
    synchronizer = harness.synchronizer

    synchronizer.synchronize()

    tenant = synchronizer.checkpoint()
    source = synchronizer.checkpoint(DEFAULT_TENANT, "ldap1")
    assert tenant.status is SyncStatus.COMPLETE
    assert tenant.last_run_host == "node-1"
    assert source.status is SyncStatus.COMPLETE
    assert source.summary == "2 user(s) and 2 group(s) processed"
    assert source.group_last_modified == JANUARY
    assert source.person_last_modified == JANUARY
    assert harness.locks.acquired == [(LOCK_NAME, 60.0, 0.0, 0)]
    assert harness.locks.released == [LOCK_NAME]


def test_repeated_sync_changes_nothing() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())
    harness.synchronizer.synchronize()
    before = harness.store.total_mutations

    harness.synchronizer.synchronize(force_full_sync=True)
    harness.synchronizer.synchronize()

    assert harness.store.total_mutations == before


def test_differential_sync_reads_only_changed_entries() -> None:
    directory = _company()
    directory.add(person_row("late", modified="20240201000000Z"))
    harness = Harness()
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()

    directory.add(person_row("newcomer", modified="20240301000000Z"))
    result = harness.synchronizer.synchronize()

    assert result.sources[0].persons_processed == 2
    assert harness.store.person_exists("newcomer")
    watermark = harness.synchronizer.checkpoint(DEFAULT_TENANT, "ldap1").person_last_modified
    assert watermark == datetime(2024, 3, 1, tzinfo=UTC)


def test_forced_sync_ignores_watermarks() -> None:
    directory = _company()
    directory.add(person_row("late", modified="20240201000000Z"))
    harness = Harness()
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()

    result = harness.synchronizer.synchronize(force_full_sync=True)

    assert result.sources[0].persons_processed == 3


def test_person_query_resumes_after_session_loss() -> None:
    directory = ScriptedDirectory()
    directory.add(*(person_row(f"user{index:03d}") for index in range(250)))
    # searches: group id scan, group query, person pages
    directory.fail_searches = {4}
    harness = Harness()
    harness.add_source("ldap1", directory)

    result = harness.synchronizer.synchronize()

    assert result.sources[0].persons_processed == 250
    assert harness.store.mutations["create_person"] == 250


def test_earlier_source_takes_precedence() -> None:
    first = ScriptedDirectory()
    first.add(group_row("staff", [person_dn("jdoe")]), person_row("jdoe", givenName=["Jane"]))
    second = ScriptedDirectory()
    second.add(
        group_row("staff", [person_dn("bob")]),
        person_row("jdoe", givenName=["Janet"]),
        person_row("bob"),
    )
    harness = Harness()
    harness.add_source("ldapA", first)
    harness.add_source("ldapB", second)

    harness.synchronizer.synchronize()

    store = harness.store
    assert store.zones_of("GROUP_staff") == zones_of("ldapA")
    assert store.parents_of("jdoe") == {"GROUP_staff"}
    assert store.parents_of("bob") == set()
    assert store.person("jdoe")["firstName"] == "Jane"
    assert store.zones_of("bob") == zones_of("ldapB")


def test_precedence_follows_registration_order() -> None:
    first = ScriptedDirectory()
    first.add(group_row("staff", [person_dn("jdoe")]), person_row("jdoe"))
    second = ScriptedDirectory()
    second.add(group_row("staff", [person_dn("bob")]), person_row("bob"))
    harness = Harness()
    harness.add_source("ldapB", second)
    harness.add_source("ldapA", first)

    harness.synchronizer.synchronize()

    assert harness.store.zones_of("GROUP_staff") == zones_of("ldapB")
    assert harness.store.parents_of("bob") == {"GROUP_staff"}
    assert harness.store.parents_of("jdoe") == set()


def test_authority_of_later_source_is_recreated() -> None:
    first = ScriptedDirectory()
    first.add(group_row("staff", [person_dn("jdoe")]), person_row("jdoe"))
    harness = Harness()
    harness.store.seed_group("staff", {"AUTH.EXT.ldapB"})
    harness.store.seed_person("stale", {"AUTH.EXT.ldapB"})
    harness.store.seed_link("GROUP_staff", "stale")
    harness.add_source("ldapA", first)
    harness.add_source("ldapB", ScriptedDirectory())

    harness.synchronizer.synchronize()

    assert harness.store.mutations["delete_authority"] == 1
    assert harness.store.zones_of("GROUP_staff") == zones_of("ldapA")
    assert harness.store.parents_of("jdoe") == {"GROUP_staff"}
    assert harness.store.parents_of("stale") == set()


def _legacy_store() -> FakeIdentityStore:
    store = FakeIdentityStore()
    store.seed_group("staff", {"AUTH.EXT.legacy", ZONE_APP_DEFAULT})
    store.seed_person("old", {"AUTH.EXT.legacy"})
    store.seed_person("jdoe", {"AUTH.EXT.legacy"}, phone="123")
    store.seed_link("GROUP_staff", "old")
    return store


@pytest.mark.parametrize("allow_deletions", [True, False])
def test_authority_of_removed_source_is_taken_over(
    allow_deletions: bool,  # noqa: FBT001
) -> None:
    directory = ScriptedDirectory()
    directory.add(group_row("staff", [person_dn("jdoe")]), person_row("jdoe", givenName=["Jane"]))
    harness = Harness(
        store=_legacy_store(), config=replace(CONFIG, allow_deletions=allow_deletions)
    )
    harness.add_source("ldapA", directory)

    harness.synchronizer.synchronize()

    store = harness.store
    assert store.mutations["delete_authority"] == 0
    assert store.mutations["delete_person"] == 0
    assert store.zones_of("GROUP_staff") == zones_of("ldapA")
    assert store.zones_of("jdoe") == zones_of("ldapA")
    assert store.person("jdoe")["phone"] == "123"
    assert store.person("jdoe")["firstName"] == "Jane"
    assert store.parents_of("old") == set()
    assert store.parents_of("jdoe") == {"GROUP_staff"}


def _shrink(directory: ScriptedDirectory) -> None:
    directory.entries = [
        entry
        for entry in directory.entries
        if entry.dn not in {group_dn("eng"), person_dn("asmith")}
    ]


def test_full_sync_deletes_authorities_gone_from_directory() -> None:
    directory = _company()
    harness = Harness()
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()
    _shrink(directory)

    result = harness.synchronizer.synchronize(is_full_sync=True)

    assert result.sources[0].groups_deleted == 1
    assert result.sources[0].persons_deleted == 1
    assert harness.store.authority_names == {"GROUP_staff", "jdoe"}
    assert "1 user(s) and 1 group(s) removed" in result.sources[0].describe()


def test_differential_sync_never_deletes() -> None:
    directory = _company()
    harness = Harness()
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()
    _shrink(directory)

    harness.synchronizer.synchronize()

    assert harness.store.authority_names == {"GROUP_staff", "GROUP_eng", "jdoe", "asmith"}


def test_full_sync_without_deletions_hands_authorities_over() -> None:
    directory = _company()
    harness = Harness(config=replace(CONFIG, allow_deletions=False))
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()
    _shrink(directory)

    harness.synchronizer.synchronize(is_full_sync=True)

    assert harness.store.zones_of("GROUP_eng") == {ZONE_APP_DEFAULT, ZONE_AUTH_DEFAULT}
    assert harness.store.zones_of("asmith") == {ZONE_APP_DEFAULT, ZONE_AUTH_DEFAULT}


def test_contended_lock_skips_the_run() -> None:
    harness = Harness(locks=FakeLockService(held=True))
    harness.add_source("ldap1", _company())

    result = harness.synchronizer.synchronize()
    harness.synchronizer.synchronize(wait_for_lock=True)

    assert not result.lock_acquired
    assert result.sources == []
    assert harness.store.total_mutations == 0
    assert harness.checkpoints.writes == 0
    assert harness.locks.acquired == [(LOCK_NAME, 60.0, 0.0, 0), (LOCK_NAME, 60.0, 1.5, 3)]
    assert harness.locks.released == []


def test_failed_source_marks_run_as_failed() -> None:
    directory = _company()
    directory.fail_searches = set(range(1, 20))
    harness = Harness()
    harness.add_source("ldap1", directory)
    synchronizer = harness.synchronizer

    with pytest.raises(DirectoryUnavailableError):
        synchronizer.synchronize()

    tenant = synchronizer.checkpoint()
    source = synchronizer.checkpoint(DEFAULT_TENANT, "ldap1")
    assert tenant.status is SyncStatus.COMPLETE_ERROR
    assert tenant.last_error is not None
    assert tenant.last_error.startswith("DirectoryUnavailableError")
    assert source.status is SyncStatus.COMPLETE_ERROR
    assert source.group_last_modified is None
    assert harness.locks.released == [LOCK_NAME]

    directory.fail_searches = set()
    synchronizer.synchronize()

    assert synchronizer.checkpoint().status is SyncStatus.COMPLETE
    assert synchronizer.checkpoint().last_error is None


def test_lost_lock_aborts_the_run() -> None:
    harness = Harness(locks=FakeLockService(lose_on_refresh=True))
    harness.add_source("ldap1", _company())

    with pytest.raises(LockLostError):
        harness.synchronizer.synchronize()

    assert harness.store.total_mutations == 0
    assert harness.synchronizer.checkpoint().status is SyncStatus.COMPLETE_ERROR
    assert harness.locks.released == [LOCK_NAME]


def test_inactive_and_tenant_unaware_sources_are_skipped() -> None:
    directory = ScriptedDirectory()
    directory.add(group_row("staff", [person_dn("jdoe")]), person_row("jdoe"))
    harness = Harness()
    harness.add_source(
        "acmeldap",
        directory,
        tenant="acme",
        capabilities=SourceCapabilities(tenant_aware=True),
    )
    harness.add_source("plain", _company(), tenant="acme")
    harness.add_source("off", _company(), tenant="acme", active=False)

    result = harness.synchronizer.synchronize("acme")

    assert [summary.source_id for summary in result.sources] == ["acmeldap"]
    acme = harness.stores["acme"]
    assert acme.authority_names == {"GROUP_staff", "jdoe@acme"}
    assert acme.parents_of("jdoe@acme") == {"GROUP_staff"}
    assert harness.store.authority_names == set()
    assert harness.locks.acquired[0][0] == lock_name_for("acme") == "TenantSynchronizer@acme"


def test_tenants_sharing_a_source_id_keep_separate_stores() -> None:
    home = ScriptedDirectory()
    home.add(group_row("ops", [person_dn("jdoe")]), person_row("jdoe"))
    acme_directory = ScriptedDirectory()
    acme_directory.add(group_row("staff", [person_dn("asmith")]), person_row("asmith"))
    harness = Harness()
    harness.add_source("ldap", home)
    harness.add_source(
        "ldap",
        acme_directory,
        tenant="acme",
        capabilities=SourceCapabilities(tenant_aware=True),
    )
    synchronizer = harness.synchronizer
    synchronizer.synchronize()
    before = harness.store.total_mutations
    harness.stores.opened.clear()

    result = synchronizer.synchronize("acme", is_full_sync=True)

    assert result.sources[0].groups_deleted == 0
    assert result.sources[0].persons_deleted == 0
    assert set(harness.stores.opened) == {"acme"}
    assert harness.store.total_mutations == before
    assert harness.store.authority_names == {"GROUP_ops", "jdoe"}
    assert harness.store.parents_of("jdoe") == {"GROUP_ops"}
    acme = harness.stores["acme"]
    assert acme.authority_names == {"GROUP_staff", "asmith@acme"}
    assert acme.zones_of("GROUP_staff") == zones_of("ldap")


def test_controlling_source_sets_account_status() -> None:
    layout = directory_layout()
    persons = replace(
        layout.persons,
        attribute_mapping={
            **layout.persons.attribute_mapping,
            "userAccountStatusProperty": "accountStatus",
        },
    )
    directory = ScriptedDirectory()
    directory.add(
        person_row("jdoe", accountStatus=["disabled"]),
        person_row("asmith", accountStatus=["active"]),
    )
    harness = Harness()
    harness.registry.set_policy(
        DEFAULT_TENANT,
        TenantPolicy(external_user_control=True, external_user_control_source="ldap1"),
    )
    harness.add_source(
        "ldap1",
        directory,
        layout=replace(layout, persons=persons),
        capabilities=SourceCapabilities(
            account_interpreter=LdapAccountInterpreter(disabled_value="disabled")
        ),
    )

    harness.synchronizer.synchronize()

    assert harness.store.person("jdoe")[PROP_ENABLED] is False
    assert harness.store.person("asmith")[PROP_ENABLED] is True


def test_membership_cycles_are_kept() -> None:
    directory = ScriptedDirectory()
    directory.add(group_row("a", [group_dn("b")]), group_row("b", [group_dn("a")]))
    harness = Harness()
    harness.add_source("ldap1", directory)

    harness.synchronizer.synchronize()
    harness.synchronizer.synchronize(force_full_sync=True)

    assert harness.store.parents_of("GROUP_a") == {"GROUP_b"}
    assert harness.store.parents_of("GROUP_b") == {"GROUP_a"}


def test_existing_person_needs_no_sync() -> None:
    harness = Harness()
    harness.store.seed_person("jdoe", {ZONE_AUTH_DEFAULT})
    harness.add_source("ldap1", _company())

    assert harness.synchronizer.create_missing_person(DEFAULT_TENANT, "jdoe")
    assert harness.locks.acquired == []


def test_missing_person_is_synchronized_on_login() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())

    assert harness.synchronizer.create_missing_person(DEFAULT_TENANT, "jdoe")

    assert harness.store.zones_of("jdoe") == zones_of("ldap1")
    assert harness.locks.acquired == [(LOCK_NAME, 60.0, 1.5, 3)]


def test_unknown_person_is_created_locally_on_login() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())

    assert harness.synchronizer.create_missing_person("acme", "visitor")

    acme = harness.stores["acme"]
    assert acme.person("visitor@acme") == {PROP_USER_NAME: "visitor@acme"}
    assert acme.zones_of("visitor@acme") == {ZONE_AUTH_DEFAULT, ZONE_APP_DEFAULT}
    assert not harness.store.person_exists("visitor@acme")


def test_failed_login_sync_falls_back_to_local_creation() -> None:
    directory = _company()
    directory.fail_searches = set(range(1, 20))
    harness = Harness()
    harness.add_source("ldap1", directory)

    assert harness.synchronizer.create_missing_person(DEFAULT_TENANT, "jdoe")

    assert harness.store.zones_of("jdoe") == {ZONE_AUTH_DEFAULT, ZONE_APP_DEFAULT}


def test_login_creation_can_be_disabled() -> None:
    config = replace(
        CONFIG, sync_when_missing_people_log_in=False, auto_create_people_on_login=False
    )
    harness = Harness(config=config)
    harness.add_source("ldap1", _company())

    assert not harness.synchronizer.create_missing_person(DEFAULT_TENANT, "jdoe")
    assert harness.store.total_mutations == 0
    assert harness.locks.acquired == []


def test_person_mapped_properties_follow_the_owning_source() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())
    harness.synchronizer.synchronize()
    harness.store.seed_person("local", {ZONE_AUTH_DEFAULT})
    synchronizer = harness.synchronizer

    assert synchronizer.person_mapped_properties(DEFAULT_TENANT, "jdoe") == {
        PROP_USER_NAME,
        "firstName",
        "lastName",
        "email",
    }
    assert synchronizer.person_mapped_properties(DEFAULT_TENANT, "local") == frozenset()
    assert synchronizer.person_mapped_properties(DEFAULT_TENANT, "nobody") == frozenset()


def test_test_synchronize_reports_without_writing() -> None:
    harness = Harness()
    harness.add_source("ldap1", _company())
    synchronizer = harness.synchronizer

    diagnostic = synchronizer.test_synchronize(DEFAULT_TENANT, "ldap1")

    assert diagnostic.active
    assert diagnostic.group_names == {"GROUP_staff", "GROUP_eng"}
    assert diagnostic.person_names == {"jdoe", "asmith"}
    assert diagnostic.group_last_synced is None
    assert harness.store.total_mutations == 0
    assert harness.checkpoints.writes == 0
    assert harness.locks.acquired == []

    synchronizer.synchronize()
    assert synchronizer.test_synchronize(DEFAULT_TENANT, "ldap1").person_last_synced == JANUARY
    assert synchronizer.checkpoint(DEFAULT_TENANT, "ldap1").person_last_modified == JANUARY
    with pytest.raises(UnknownSourceError):
        synchronizer.test_synchronize(DEFAULT_TENANT, "missing")


def test_watermark_lookup_uses_entity_class() -> None:
    harness = Harness()
    directory = ScriptedDirectory()
    directory.add(group_row("staff", modified="20240201000000Z"), person_row("jdoe"))
    harness.add_source("ldap1", directory)
    harness.synchronizer.synchronize()

    ledger = SyncLedger(harness.checkpoints)

    assert ledger.watermark(DEFAULT_TENANT, "ldap1", EntityClass.GROUP) == datetime(
        2024, 2, 1, tzinfo=UTC
    )
    assert ledger.watermark(DEFAULT_TENANT, "ldap1", EntityClass.PERSON) == JANUARY

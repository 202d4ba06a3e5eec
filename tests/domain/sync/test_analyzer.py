from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from tenantsync.domain.model import (
    DEFAULT_TENANT,
    PROP_AUTHORITY_DISPLAY_NAME,
    DirectoryEntry,
    SyncPhase,
)
from tenantsync.domain.ports import IdentityRepositories
from tenantsync.domain.sync import ContainmentCache, GroupAnalyzer, MutationSet, SyncContext

from tests.helpers.identity_store import FakeIdentityStore

OWN = {"APP.DEFAULT", "AUTH.EXT.ldap1"}
STAMP = datetime(2024, 5, 1, tzinfo=UTC)


def _context(tenant: str = DEFAULT_TENANT, *, visited: frozenset[str] = frozenset()) -> SyncContext:
    return SyncContext(
        tenant=tenant,
        source_id="ldap1",
        source_ids=("ldap1", "ldap2"),
        visited_source_ids=visited,
        phase=SyncPhase.GROUP_ANALYSIS,
    )


def _group(name: str, *children: str, display_name: str | None = None) -> DirectoryEntry:
    properties = {PROP_AUTHORITY_DISPLAY_NAME: display_name} if display_name else {}
    return DirectoryEntry(
        source_id=f"cn={name},ou=groups,dc=example,dc=com",
        id=f"GROUP_{name}",
        properties=properties,
        last_modified=STAMP,
        child_associations=children,
    )


def _analyze(
    store: FakeIdentityStore,
    entry: DirectoryEntry,
    context: SyncContext | None = None,
) -> MutationSet:
    mutations = MutationSet(user_names_case_sensitive=store.user_names_case_sensitive)
    analyzer = GroupAnalyzer(context or _context(), mutations, ContainmentCache())
    analyzer.process(entry, IdentityRepositories(authorities=store, people=store))
    return mutations


def test_new_group_is_scheduled_not_created(identity_store: FakeIdentityStore) -> None:
    mutations = _analyze(identity_store, _group("staff", "jdoe", "GROUP_eng"))

    assert mutations.groups_to_create == {"GROUP_staff": "staff"}
    assert mutations.user_parents_to_add.parents("jdoe") == {"GROUP_staff"}
    assert mutations.group_parents_to_add.parents("GROUP_eng") == {"GROUP_staff"}
    assert mutations.group_watermark.value == STAMP
    assert identity_store.total_mutations == 0


def test_members_are_qualified_for_the_tenant(identity_store: FakeIdentityStore) -> None:
    mutations = _analyze(identity_store, _group("staff", "jdoe"), _context("acme"))

    assert mutations.user_parents_to_add.children() == ["jdoe@acme"]


def test_update_diffs_membership(identity_store: FakeIdentityStore) -> None:
    identity_store.seed_group("staff", OWN, display_name="Old name")
    identity_store.seed_group("old", OWN)
    identity_store.seed_group("new", OWN)
    identity_store.seed_person("jdoe", OWN)
    identity_store.seed_person("gone", OWN)
    identity_store.seed_link("GROUP_staff", "GROUP_old")
    identity_store.seed_link("GROUP_staff", "jdoe")
    identity_store.seed_link("GROUP_staff", "gone")

    mutations = _analyze(
        identity_store,
        _group("staff", "jdoe", "asmith", "GROUP_new", display_name="Staff"),
    )

    assert identity_store.calls == [("set_authority_display_name", "GROUP_staff", "Staff")]
    assert mutations.groups_to_create == {}
    assert mutations.group_parents_to_remove.children() == ["GROUP_old"]
    assert mutations.user_parents_to_remove.children() == ["gone"]
    assert mutations.group_parents_to_add.children() == ["GROUP_new"]
    assert mutations.user_parents_to_add.children() == ["asmith"]


def test_update_ignores_user_name_case(identity_store: FakeIdentityStore) -> None:
    identity_store.seed_group("staff", OWN, display_name="staff")
    identity_store.seed_person("JDoe", OWN)
    identity_store.seed_link("GROUP_staff", "JDoe")

    mutations = _analyze(identity_store, _group("staff", "jdoe"))

    assert len(mutations.user_parents_to_add) == 0
    assert len(mutations.user_parents_to_remove) == 0


def test_group_owned_by_visited_source_is_skipped(identity_store: FakeIdentityStore) -> None:
    identity_store.seed_group("staff", {"AUTH.EXT.ldap2"})
    context = _context(visited=frozenset({"ldap2"}))

    mutations = _analyze(identity_store, _group("staff", "jdoe"), context)

    assert identity_store.total_mutations == 0
    assert len(mutations.user_parents_to_add) == 0
    assert mutations.group_watermark.value == STAMP


def test_group_of_lower_precedence_source_is_recreated(identity_store: FakeIdentityStore) -> None:
    identity_store.seed_group("staff", {"AUTH.EXT.ldap2"})
    identity_store.seed_person("gone", {"AUTH.EXT.ldap2"})
    identity_store.seed_link("GROUP_staff", "gone")

    mutations = _analyze(identity_store, _group("staff", "jdoe"))

    assert not identity_store.authority_exists("GROUP_staff")
    assert identity_store.parents_of("gone") == set()
    assert mutations.groups_to_create == {"GROUP_staff": "staff"}
    assert mutations.user_parents_to_add.children() == ["jdoe"]


def test_group_of_unconfigured_source_is_rezoned_and_updated(
    identity_store: FakeIdentityStore,
) -> None:
    identity_store.seed_group("staff", {"AUTH.EXT.legacy"}, display_name="staff")

    mutations = _analyze(identity_store, _group("staff", "jdoe"))

    assert identity_store.zones_of("GROUP_staff") == OWN
    assert identity_store.mutations["delete_authority"] == 0
    assert mutations.groups_to_create == {}
    assert mutations.user_parents_to_add.children() == ["jdoe"]


def test_cycle_is_reported_but_recorded(
    identity_store: FakeIdentityStore, caplog: pytest.LogCaptureFixture
) -> None:
    identity_store.seed_group("a", OWN, display_name="a")
    identity_store.seed_group("b", OWN, display_name="b")
    identity_store.seed_link("GROUP_a", "GROUP_b")

    with caplog.at_level(logging.WARNING):
        mutations = _analyze(identity_store, _group("b", "GROUP_a"))

    assert "closes a membership cycle" in caplog.text
    assert mutations.group_parents_to_add.parents("GROUP_a") == {"GROUP_b"}

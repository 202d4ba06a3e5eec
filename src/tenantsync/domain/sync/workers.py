"""Apply phases driven by the ``MutationSet`` and the deletion phase."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tenantsync.domain.model import (
    ZONE_AUTH_DEFAULT,
    AuthorityKind,
    authority_kind,
    short_name,
)
from tenantsync.domain.sync.zones import update_zones

if TYPE_CHECKING:
    from tenantsync.domain.ports import IdentityRepositories
    from tenantsync.domain.sync.context import SyncContext
    from tenantsync.domain.sync.mutations import MutationSet

log = logging.getLogger(__name__)


class GroupCreationAndParentRemovalWorker:
    """Phase 2: create recorded groups, then drop stale parent edges of existing ones."""

    def __init__(self, context: SyncContext, mutations: MutationSet) -> None:
        self._context = context
        self._mutations = mutations

    def process(self, name: str, repositories: IdentityRepositories) -> None:
        authorities = repositories.authorities
        display_name = self._mutations.display_name_to_create(name)
        if display_name is not None:
            if authorities.authority_exists(name):
                log.debug("%s: %s already exists", self._context.label, name)
                return
            authorities.create_authority(
                AuthorityKind.GROUP,
                short_name(name),
                display_name,
                self._context.target_zones,
            )
            return

        current = authorities.get_containing_authorities(AuthorityKind.GROUP, name, immediate=True)
        for parent in self._mutations.group_parents_to_remove.parents(name):
            if parent in current:
                authorities.remove_authority(parent, name)


class GroupParentAdditionWorker:
    """Phase 3: add recorded group-to-group edges."""

    def __init__(self, context: SyncContext, mutations: MutationSet) -> None:
        self._context = context
        self._mutations = mutations

    def process(self, name: str, repositories: IdentityRepositories) -> None:
        authorities = repositories.authorities
        if not authorities.authority_exists(name):
            log.warning("%s: member group %s does not exist; skipping", self._context.label, name)
            return
        current = authorities.get_containing_authorities(AuthorityKind.GROUP, name, immediate=True)
        for parent in sorted(self._mutations.group_parents_to_add.parents(name)):
            if parent in current:
                continue
            if not authorities.authority_exists(parent):
                log.warning("%s: parent group %s does not exist", self._context.label, parent)
                continue
            authorities.add_authority(parent, name)


class UserParentWorker:
    """Phase 5: add, then remove, user-to-group edges."""

    def __init__(self, context: SyncContext, mutations: MutationSet) -> None:
        self._context = context
        self._mutations = mutations

    def process(self, user_name: str, repositories: IdentityRepositories) -> None:
        authorities = repositories.authorities
        if not repositories.people.person_exists(user_name):
            log.warning(
                "%s: member %s is not a known person; skipping", self._context.label, user_name
            )
            return
        current = authorities.get_containing_authorities(
            AuthorityKind.GROUP, user_name, immediate=True
        )
        for parent in sorted(self._mutations.user_parents_to_add.parents(user_name)):
            if parent in current:
                continue
            if not authorities.authority_exists(parent):
                log.warning("%s: parent group %s does not exist", self._context.label, parent)
                continue
            authorities.add_authority(parent, user_name)
        for parent in sorted(self._mutations.user_parents_to_remove.parents(user_name)):
            if parent in current:
                authorities.remove_authority(parent, user_name)


class AuthorityDeleter:
    """Phase 6: delete authorities gone from the source, or hand them to the neutral zone."""

    def __init__(self, context: SyncContext) -> None:
        self._context = context

    def process(self, name: str, repositories: IdentityRepositories) -> None:
        authorities = repositories.authorities
        is_user = authority_kind(name) is AuthorityKind.USER
        if self._context.allow_deletions:
            if is_user:
                if repositories.people.person_exists(name):
                    repositories.people.delete_person(name)
            elif authorities.authority_exists(name):
                authorities.delete_authority(name)
            return

        zones = authorities.get_authority_zones(name)
        if zones is None:
            return
        update_zones(authorities, name, zones, {ZONE_AUTH_DEFAULT})

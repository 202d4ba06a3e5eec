"""Phase 4: create or update people read from a source."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tenantsync.domain.model import (
    PROP_ACCOUNT_STATUS,
    PROP_AVATAR,
    PROP_ENABLED,
    PROP_USER_NAME,
    AvatarBlob,
)
from tenantsync.domain.sync.zones import ZoneDecision, decide, update_zones

if TYPE_CHECKING:
    from tenantsync.domain.directory import AccountInterpreter
    from tenantsync.domain.model import DirectoryEntry
    from tenantsync.domain.ports import IdentityRepositories, PersonRepository
    from tenantsync.domain.sync.context import SyncContext
    from tenantsync.domain.sync.mutations import MutationSet

log = logging.getLogger(__name__)


class PersonWorker:
    """Upsert one person, following the same provenance rules as groups.

    ``account_interpreter`` is only passed for the source that controls
    account status; it turns the raw status attribute into ``enabled``.
    """

    def __init__(
        self,
        context: SyncContext,
        mutations: MutationSet,
        *,
        account_interpreter: AccountInterpreter | None = None,
    ) -> None:
        self._context = context
        self._mutations = mutations
        self._account_interpreter = account_interpreter

    def process(self, entry: DirectoryEntry, repositories: IdentityRepositories) -> None:
        people = repositories.people
        authorities = repositories.authorities

        properties = dict(entry.properties)
        avatar = properties.pop(PROP_AVATAR, None)
        user_name = self._context.qualify(entry.id)
        properties[PROP_USER_NAME] = user_name
        if self._account_interpreter is not None:
            disabled = self._account_interpreter.is_disabled(properties.get(PROP_ACCOUNT_STATUS))
            if disabled is not None:
                properties[PROP_ENABLED] = not disabled

        zones = authorities.get_authority_zones(user_name)
        decision = decide(zones, self._context)
        if decision is ZoneDecision.CREATE:
            people.create_person(properties, self._context.target_zones)
        elif decision is ZoneDecision.UPDATE:
            self._update(user_name, properties, people)
        elif decision is ZoneDecision.REZONE:
            log.info("%s: taking over person %s", self._context.label, user_name)
            update_zones(authorities, user_name, zones or set(), self._context.target_zones)
            self._update(user_name, properties, people)
        elif decision is ZoneDecision.RECREATE:
            log.info(
                "%s: recreating person %s created by a lower precedence source",
                self._context.label,
                user_name,
            )
            people.delete_person(user_name)
            people.create_person(properties, self._context.target_zones)
        else:
            log.debug("%s: %s belongs to a source with precedence", self._context.label, user_name)

        if decision is not ZoneDecision.SKIP and isinstance(avatar, AvatarBlob):
            self._sync_avatar(user_name, avatar, people)
        self._mutations.person_watermark.observe(entry.last_modified)

    def _update(
        self,
        user_name: str,
        properties: dict[str, object],
        people: PersonRepository,
    ) -> None:
        current = people.get_person(user_name) or {}
        changed = {key: value for key, value in properties.items() if current.get(key) != value}
        changed.pop(PROP_USER_NAME, None)
        if changed:
            people.set_person_properties(user_name, changed)

    def _sync_avatar(self, user_name: str, avatar: AvatarBlob, people: PersonRepository) -> None:
        existing = people.get_avatar(user_name)
        if existing is not None and AvatarBlob(existing).digest == avatar.digest:
            return
        people.set_avatar(user_name, avatar)

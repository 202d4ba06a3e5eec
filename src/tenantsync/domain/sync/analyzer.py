"""Phase 1: decide what happens to every group read from a source."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tenantsync.domain.model import (
    PROP_AUTHORITY_DISPLAY_NAME,
    AuthorityKind,
    authority_kind,
    short_name,
)
from tenantsync.domain.sync.zones import ZoneDecision, decide, update_zones

if TYPE_CHECKING:
    from tenantsync.domain.model import DirectoryEntry
    from tenantsync.domain.ports import AuthorityRepository, IdentityRepositories
    from tenantsync.domain.sync.containment import ContainmentCache
    from tenantsync.domain.sync.context import SyncContext
    from tenantsync.domain.sync.mutations import MutationSet

log = logging.getLogger(__name__)


class GroupAnalyzer:
    """Apply group-local changes and record membership deltas for later phases.

    Display names and zones are written immediately; creations and parent
    edges are only recorded in the ``MutationSet``.
    """

    def __init__(
        self,
        context: SyncContext,
        mutations: MutationSet,
        containment: ContainmentCache,
    ) -> None:
        self._context = context
        self._mutations = mutations
        self._containment = containment

    def process(self, entry: DirectoryEntry, repositories: IdentityRepositories) -> None:
        authorities = repositories.authorities
        name = entry.id
        zones = authorities.get_authority_zones(name)
        decision = decide(zones, self._context)

        if decision is ZoneDecision.CREATE:
            self._schedule_creation(entry)
        elif decision is ZoneDecision.UPDATE:
            self._update(entry, authorities)
        elif decision is ZoneDecision.REZONE:
            log.info(
                "%s: taking over %s from zones %s", self._context.label, name, sorted(zones or ())
            )
            update_zones(authorities, name, zones or set(), self._context.target_zones)
            self._update(entry, authorities)
        elif decision is ZoneDecision.RECREATE:
            log.info(
                "%s: recreating %s created by a lower precedence source", self._context.label, name
            )
            authorities.delete_authority(name)
            self._containment.forget(name)
            self._schedule_creation(entry)
        else:
            log.debug("%s: %s belongs to a source with precedence", self._context.label, name)

        self._mutations.group_watermark.observe(entry.last_modified)

    def _display_name(self, entry: DirectoryEntry) -> str:
        display_name = entry.properties.get(PROP_AUTHORITY_DISPLAY_NAME)
        if isinstance(display_name, str) and display_name:
            return display_name
        return short_name(entry.id)

    def _desired_children(self, entry: DirectoryEntry) -> list[str]:
        return [self._context.qualify(child) for child in entry.child_associations]

    def _schedule_creation(self, entry: DirectoryEntry) -> None:
        self._mutations.record_group_creation(entry.id, self._display_name(entry))
        for child in self._desired_children(entry):
            self._mutations.record_parent_addition(child, entry.id)

    def _update(self, entry: DirectoryEntry, authorities: AuthorityRepository) -> None:
        name = entry.id
        display_name = self._display_name(entry)
        if authorities.get_authority_display_name(name) != display_name:
            authorities.set_authority_display_name(name, display_name)

        stored = self._containment.children(name, authorities)
        current = {self._key(child): child for child in stored}
        desired = {self._key(child): child for child in self._desired_children(entry)}

        for key, child in current.items():
            if key in desired:
                continue
            self._mutations.record_parent_removal(child, name)
            if authority_kind(child) is AuthorityKind.GROUP:
                self._containment.discard(name, child)

        for key, child in desired.items():
            if key in current:
                continue
            if self._containment.would_create_cycle(name, child, authorities):
                log.warning(
                    "%s: adding %s to %s closes a membership cycle",
                    self._context.label,
                    child,
                    name,
                )
            self._mutations.record_parent_addition(child, name)

    def _key(self, authority_name: str) -> str:
        if self._mutations.user_names_case_sensitive:
            return authority_name
        if authority_kind(authority_name) is AuthorityKind.GROUP:
            return authority_name
        return authority_name.lower()

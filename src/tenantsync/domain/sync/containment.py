"""Run-scoped memo of group containment in the identity store."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from tenantsync.domain.model import AuthorityKind, authority_kind

if TYPE_CHECKING:
    from tenantsync.domain.ports import AuthorityRepository


class ContainmentCache:
    """Immediate members of each group, read from the store at most once per run.

    Lookups for different groups proceed in parallel; concurrent lookups of the
    same group wait for the first one. Traversals keep a visited set, so a
    cyclic group graph terminates.
    """

    def __init__(self) -> None:
        self._children: dict[str, set[str]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def children(self, name: str, authorities: AuthorityRepository) -> set[str]:
        """Return a copy of the immediate members of ``name``."""

        with self._lock_for(name):
            cached = self._children.get(name)
            if cached is None:
                cached = set(authorities.get_contained_authorities(None, name, immediate=True))
                self._children[name] = cached
            return set(cached)

    def transitive_members(self, name: str, authorities: AuthorityRepository) -> set[str]:
        members: set[str] = set()
        visited = {name}
        stack = [name]
        while stack:
            current = stack.pop()
            for child in self.children(current, authorities):
                members.add(child)
                if authority_kind(child) is AuthorityKind.GROUP and child not in visited:
                    visited.add(child)
                    stack.append(child)
        return members

    def would_create_cycle(self, parent: str, child: str, authorities: AuthorityRepository) -> bool:
        if authority_kind(child) is not AuthorityKind.GROUP:
            return False
        return parent == child or parent in self.transitive_members(child, authorities)

    def discard(self, parent: str, child: str) -> None:
        with self._lock_for(parent):
            cached = self._children.get(parent)
            if cached is not None:
                cached.discard(child)

    def forget(self, name: str) -> None:
        with self._lock_for(name):
            self._children.pop(name, None)

    def __len__(self) -> int:
        return len(self._children)

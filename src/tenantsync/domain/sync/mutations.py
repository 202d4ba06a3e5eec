"""Run-scoped accumulator of membership and creation decisions."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tenantsync.domain.model import AuthorityKind, authority_kind

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(slots=True)
class _Parents:
    name: str
    parents: set[str] = field(default_factory=set[str])
    lock: threading.Lock = field(default_factory=threading.Lock)


class ParentsMap:
    """Thread-safe ``child -> parents`` map with per-key synchronization.

    When ``case_sensitive`` is false, children differing only in case share an
    entry keyed by the first spelling recorded.
    """

    def __init__(self, *, case_sensitive: bool = True) -> None:
        self._case_sensitive = case_sensitive
        self._entries: dict[str, _Parents] = {}
        self._guard = threading.Lock()

    def _key(self, child: str) -> str:
        return child if self._case_sensitive else child.lower()

    def add(self, child: str, parent: str) -> None:
        key = self._key(child)
        entry = self._entries.get(key)
        if entry is None:
            with self._guard:
                entry = self._entries.get(key)
                if entry is None:
                    entry = _Parents(child)
                    self._entries[key] = entry
        with entry.lock:
            entry.parents.add(parent)

    def parents(self, child: str) -> frozenset[str]:
        entry = self._entries.get(self._key(child))
        if entry is None:
            return frozenset()
        with entry.lock:
            return frozenset(entry.parents)

    def children(self) -> list[str]:
        with self._guard:
            return [entry.name for entry in self._entries.values()]

    def __contains__(self, child: object) -> bool:
        return isinstance(child, str) and self._key(child) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class Watermark:
    """Thread-safe maximum of observed ``last_modified`` values."""

    def __init__(self) -> None:
        self._value: datetime | None = None
        self._lock = threading.Lock()

    def observe(self, value: datetime | None) -> None:
        if value is None:
            return
        with self._lock:
            if self._value is None or value > self._value:
                self._value = value

    @property
    def value(self) -> datetime | None:
        return self._value


class MutationSet:
    """Decisions recorded by the analysis phases and consumed by the apply phases."""

    def __init__(self, *, user_names_case_sensitive: bool = True) -> None:
        self.user_names_case_sensitive = user_names_case_sensitive
        self._groups_to_create: dict[str, str] = {}
        self._create_lock = threading.Lock()
        self.group_parents_to_add = ParentsMap()
        self.group_parents_to_remove = ParentsMap()
        self.user_parents_to_add = ParentsMap(case_sensitive=user_names_case_sensitive)
        self.user_parents_to_remove = ParentsMap(case_sensitive=user_names_case_sensitive)
        self.group_watermark = Watermark()
        self.person_watermark = Watermark()

    def record_group_creation(self, name: str, display_name: str) -> None:
        with self._create_lock:
            self._groups_to_create.setdefault(name, display_name)

    def display_name_to_create(self, name: str) -> str | None:
        return self._groups_to_create.get(name)

    @property
    def groups_to_create(self) -> dict[str, str]:
        with self._create_lock:
            return dict(self._groups_to_create)

    def record_parent_addition(self, child: str, parent: str) -> None:
        if authority_kind(child) is AuthorityKind.GROUP:
            self.group_parents_to_add.add(child, parent)
        else:
            self.user_parents_to_add.add(child, parent)

    def record_parent_removal(self, child: str, parent: str) -> None:
        if authority_kind(child) is AuthorityKind.GROUP:
            self.group_parents_to_remove.add(child, parent)
        else:
            self.user_parents_to_remove.add(child, parent)

    def group_creation_units(self) -> list[str]:
        """Groups to create followed by groups losing parents, each once."""

        units = dict.fromkeys(self.groups_to_create)
        units.update(dict.fromkeys(self.group_parents_to_remove.children()))
        return list(units)

    def user_association_units(self) -> list[str]:
        units = dict.fromkeys(self.user_parents_to_add.children())
        for child in self.user_parents_to_remove.children():
            if child not in self.user_parents_to_add:
                units[child] = None
        return list(units)

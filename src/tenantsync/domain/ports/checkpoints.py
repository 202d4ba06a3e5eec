"""Port for the tenant and source scoped attribute store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

TENANT_SCOPE = ""


@dataclass(frozen=True, slots=True)
class AttributeKey:
    tenant: str
    name: str
    source: str = TENANT_SCOPE


@runtime_checkable
class CheckpointStore(Protocol):
    def get(self, key: AttributeKey) -> object | None: ...

    def write(
        self,
        updates: Mapping[AttributeKey, object | None],
        *,
        clear: Iterable[tuple[str, str]] = (),
    ) -> None:
        """Apply ``updates`` atomically; ``None`` removes a key.

        ``clear`` holds ``(tenant, name)`` pairs removed for the tenant and
        every source before the updates are applied.
        """
        ...

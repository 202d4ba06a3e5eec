from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tenantsync.domain.model import LockAcquisitionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from tenantsync.domain.ports import AttributeKey, LockRefreshCallback


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self.values: dict[AttributeKey, object] = {}
        self.writes = 0
        self._lock = threading.Lock()

    def get(self, key: AttributeKey) -> object | None:
        with self._lock:
            return self.values.get(key)

    def write(
        self,
        updates: Mapping[AttributeKey, object | None],
        *,
        clear: Iterable[tuple[str, str]] = (),
    ) -> None:
        with self._lock:
            self.writes += 1
            cleared = set(clear)
            for key in [key for key in self.values if (key.tenant, key.name) in cleared]:
                del self.values[key]
            for key, value in updates.items():
                if value is None:
                    self.values.pop(key, None)
                else:
                    self.values[key] = value


@dataclass
class FakeLockService:
    """Lock service double.

    ``held`` simulates another node owning every lock and ``lose_on_refresh``
    a heartbeat that fails straight away.
    """

    held: bool = False
    lose_on_refresh: bool = False
    acquired: list[tuple[str, float, float, int]] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    callbacks: list[LockRefreshCallback] = field(default_factory=list)

    def acquire(self, name: str, ttl: float, retry_wait: float, retries: int) -> str:
        self.acquired.append((name, ttl, retry_wait, retries))
        if self.held:
            raise LockAcquisitionError(f"Lock {name} is held by another node")
        return f"token-{len(self.acquired)}"

    def refresh(self, token: str, name: str, ttl: float, callback: LockRefreshCallback) -> None:
        self.callbacks.append(callback)
        if self.lose_on_refresh:
            callback.lock_released()

    def release(self, token: str, name: str) -> bool:
        self.released.append(name)
        return True


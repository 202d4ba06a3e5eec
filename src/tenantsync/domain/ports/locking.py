"""Port for the cluster-wide, time-boxed tenant lock."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LockRefreshCallback(Protocol):
    def is_active(self) -> bool: ...

    def lock_released(self) -> None: ...


@runtime_checkable
class LockService(Protocol):
    def acquire(self, name: str, ttl: float, retry_wait: float, retries: int) -> str:
        """Return a lock token or raise ``LockAcquisitionError``."""
        ...

    def refresh(self, token: str, name: str, ttl: float, callback: LockRefreshCallback) -> None: ...

    def release(self, token: str, name: str) -> bool: ...

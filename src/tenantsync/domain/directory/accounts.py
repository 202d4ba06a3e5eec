"""Interpreters turning a raw account status attribute into a disabled flag."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

AD_ACCOUNTDISABLE = 0x2


@runtime_checkable
class AccountInterpreter(Protocol):
    def is_disabled(self, value: object) -> bool | None:
        """Return ``None`` when the value says nothing about the account state."""
        ...


@dataclass(frozen=True, slots=True)
class ActiveDirectoryAccountInterpreter:
    """Reads the ``ACCOUNTDISABLE`` bit of ``userAccountControl``."""

    def is_disabled(self, value: object) -> bool | None:
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        try:
            flags = int(str(value).strip())
        except ValueError as exc:
            raise ValueError(f"Invalid userAccountControl value: {value!r}") from exc
        return bool(flags & AD_ACCOUNTDISABLE)


@dataclass(frozen=True, slots=True)
class LdapAccountInterpreter:
    disabled_value: str
    accept_null: bool = False

    def is_disabled(self, value: object) -> bool | None:
        if value is None:
            return False if self.accept_null else None
        if isinstance(value, bytes):
            value = value.decode()
        return str(value).strip().lower() == self.disabled_value.strip().lower()

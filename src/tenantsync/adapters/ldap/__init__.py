"""ldap3 adapter for directory sources."""

from __future__ import annotations

from .schema import LdapOperationResult, LdapSearchRow
from .session import Ldap3DirectorySession, Ldap3SessionProvider

__all__ = [
    "Ldap3DirectorySession",
    "Ldap3SessionProvider",
    "LdapOperationResult",
    "LdapSearchRow",
]

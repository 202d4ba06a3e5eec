"""ldap3-backed directory sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ldap3 import BASE, NONE, ROUND_ROBIN, SUBTREE, Connection, Server, ServerPool
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPException,
    LDAPSessionTerminatedByServerError,
    LDAPSocketOpenError,
)

from tenantsync.domain.model import DirectoryCommunicationError, DirectoryError
from tenantsync.domain.ports import RawEntry, SearchPage

from .schema import LdapOperationResult, LdapSearchRow

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from tenantsync.config import ConnectionSettings
    from tenantsync.domain.ports import SearchRequest

log = logging.getLogger(__name__)

type ConnectionFactory = Callable[[], Any]

# result codes that mean "nothing there" rather than failure
_RESULT_SUCCESS = 0
_RESULT_NO_SUCH_OBJECT = 32

_TRANSPORT_ERRORS = (
    LDAPCommunicationError,
    LDAPSocketOpenError,
    LDAPSessionTerminatedByServerError,
)


def _translate(exc: LDAPException, action: str) -> DirectoryError:
    if isinstance(exc, _TRANSPORT_ERRORS):
        return DirectoryCommunicationError(f"{action}: {exc}")
    return DirectoryError(f"{action}: {exc}")


class Ldap3DirectorySession:
    """One bound ldap3 connection.

    Attribute values arrive as raw bytes; they are decoded as UTF-8 except for
    the configured binary attributes, which are handed on untouched.
    """

    def __init__(self, connection: Any, *, binary_attributes: Iterable[str] = ()) -> None:
        self._connection = connection
        self._binary_attributes = {name.lower() for name in binary_attributes}

    def search_page(self, request: SearchRequest, cookie: bytes | None) -> SearchPage:
        kwargs: dict[str, object] = {}
        if request.page_size > 0:
            kwargs["paged_size"] = request.page_size
            kwargs["paged_cookie"] = cookie
        try:
            self._connection.search(
                search_base=request.base,
                search_filter=request.filter,
                search_scope=SUBTREE,
                attributes=list(request.attributes),
                **kwargs,
            )
        except LDAPException as exc:
            raise _translate(exc, f"search {request.filter} under {request.base}") from exc

        result = self._result(f"search {request.filter} under {request.base}")
        return SearchPage(entries=self._entries(), cookie=result.cookie)

    def read_entry(self, dn: str, attributes: Sequence[str]) -> RawEntry | None:
        try:
            self._connection.search(
                search_base=dn,
                search_filter="(objectClass=*)",
                search_scope=BASE,
                attributes=list(attributes),
            )
        except LDAPException as exc:
            raise _translate(exc, f"read {dn}") from exc

        result = self._result(f"read {dn}")
        if result.result == _RESULT_NO_SUCH_OBJECT:
            return None
        entries = self._entries()
        return entries[0] if entries else None

    def close(self) -> None:
        try:
            self._connection.unbind()
        except LDAPException as exc:
            raise _translate(exc, "unbind") from exc

    def _result(self, action: str) -> LdapOperationResult:
        result = LdapOperationResult.model_validate(self._connection.result or {})
        if result.result not in (_RESULT_SUCCESS, _RESULT_NO_SUCH_OBJECT):
            raise DirectoryError(
                f"{action} failed with {result.result} {result.description}: {result.message}"
            )
        return result

    def _entries(self) -> tuple[RawEntry, ...]:
        rows = (LdapSearchRow.model_validate(item) for item in self._connection.response or ())
        return tuple(
            RawEntry(
                dn=row.dn,
                attributes={
                    name: self._decode(name, values) for name, values in row.raw_attributes.items()
                },
            )
            for row in rows
            if row.is_entry
        )

    def _decode(self, name: str, values: list[bytes]) -> list[object]:
        base_name = name.split(";", 1)[0].lower()
        if base_name in self._binary_attributes:
            return list(values)
        return [value.decode("utf-8", errors="replace") for value in values]


class Ldap3SessionProvider:
    """Opens bound ldap3 connections against a pool of directory servers."""

    def __init__(
        self,
        settings: ConnectionSettings,
        *,
        binary_attributes: Iterable[str] = (),
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._settings = settings
        self._binary_attributes = tuple(binary_attributes)
        self._connection_factory = connection_factory or self._connect

    def open_session(self) -> Ldap3DirectorySession:
        try:
            connection = self._connection_factory()
        except LDAPException as exc:
            raise _translate(exc, f"connect to {', '.join(self._settings.urls)}") from exc
        return Ldap3DirectorySession(connection, binary_attributes=self._binary_attributes)

    def _connect(self) -> Connection:
        settings = self._settings
        servers = [
            Server(
                url,
                use_ssl=settings.use_ssl,
                connect_timeout=settings.connect_timeout,
                get_info=NONE,
            )
            for url in settings.urls
        ]
        pool = ServerPool(servers, ROUND_ROBIN, active=True, exhaust=True)
        password = settings.password.get_secret_value() if settings.password else None
        log.debug("Binding to %s as %s", settings.urls, settings.bind_dn or "anonymous")
        return Connection(
            pool,
            user=settings.bind_dn,
            password=password,
            auto_bind=True,
            read_only=True,
            receive_timeout=settings.receive_timeout,
            raise_exceptions=False,
        )

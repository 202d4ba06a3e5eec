"""Resumable paged iteration over one directory query.

The iteration position is an explicit ``PagingState``. Transport failures move
it through the pure ``resume`` transition: the query is reissued with the
cookie of the page being consumed and the rows of that page already handed on
are skipped by position. Rows sharing an id are told apart by their offset.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from tenantsync.domain.model import DirectoryCommunicationError, DirectoryUnavailableError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from tenantsync.domain.ports import (
        DirectorySession,
        DirectorySessionProvider,
        RawEntry,
        SearchRequest,
    )

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResumePolicy:
    max_attempts: int = 3
    backoff_factor: float = 0.5

    def delay(self, attempt: int) -> float:
        return self.backoff_factor * attempt


@dataclass(frozen=True, slots=True)
class PagingState:
    """Position of a paged query.

    ``page_cookie`` requested the page currently being consumed, so reissuing it
    replays that page. ``offset`` counts the rows of that page already handed
    on and ``last_key`` is the id of the last one.
    """

    page_cookie: bytes | None = None
    offset: int = 0
    last_key: str | None = None
    failures: int = 0
    pages: int = 0


def next_page(state: PagingState, cookie: bytes) -> PagingState:
    return replace(state, page_cookie=cookie, offset=0, failures=0, pages=state.pages + 1)


def row_delivered(state: PagingState, key: str | None) -> PagingState:
    return replace(state, offset=state.offset + 1, last_key=key or state.last_key)


def resume(state: PagingState) -> PagingState:
    """Transition taken after a transport failure.

    Cookie and offset are kept: the reissued page skips ``offset`` rows.
    """

    return replace(state, failures=state.failures + 1)


class ResumableQuery[T]:
    """Lazy, single-use sequence of processed rows for one search request.

    ``process`` runs with the live session so it can issue follow-up reads; a
    ``DirectoryCommunicationError`` raised there is recovered like one raised
    by the page fetch itself.
    """

    def __init__(
        self,
        provider: DirectorySessionProvider,
        request: SearchRequest,
        *,
        row_key: Callable[[RawEntry], str | None],
        process: Callable[[RawEntry, DirectorySession], T | None],
        policy: ResumePolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        label: str = "query",
    ) -> None:
        self._provider = provider
        self._request = request
        self._row_key = row_key
        self._process = process
        self._policy = policy or ResumePolicy()
        self._sleep = sleep
        self._label = label
        self.state = PagingState()

    def __iter__(self) -> Iterator[T]:
        self.state = PagingState()
        session: DirectorySession | None = None
        try:
            while True:
                try:
                    if session is None:
                        session = self._provider.open_session()
                    page = session.search_page(self._request, self.state.page_cookie)
                    for row in page.entries[self.state.offset :]:
                        item = self._process(row, session)
                        self.state = row_delivered(self.state, self._row_key(row))
                        if item is not None:
                            yield item
                except DirectoryCommunicationError as exc:
                    self.state = resume(self.state)
                    if self.state.failures > self._policy.max_attempts:
                        raise DirectoryUnavailableError(
                            f"{self._label}: giving up after {self.state.failures - 1} "
                            f"resume attempt(s): {exc}"
                        ) from exc
                    log.warning(
                        "%s: directory communication failed (%s); resuming after %s "
                        "(row %s of page %s, attempt %s)",
                        self._label,
                        exc,
                        self.state.last_key,
                        self.state.offset,
                        self.state.pages + 1,
                        self.state.failures,
                    )
                    self._close(session)
                    session = None
                    self._sleep(self._policy.delay(self.state.failures))
                    continue

                if not page.cookie:
                    return
                self.state = next_page(self.state, page.cookie)
        finally:
            self._close(session)

    def _close(self, session: DirectorySession | None) -> None:
        if session is None:
            return
        try:
            session.close()
        except DirectoryCommunicationError as exc:
            log.debug("%s: ignoring failure while closing session: %s", self._label, exc)

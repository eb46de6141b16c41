"""
Paged LDAP searches.

Two ways to consume a search are provided:

* :py:func:`search` runs the search to completion and returns every entry in
  one list.
* :py:func:`search_streaming` hands each entry to a caller supplied transform
  as it arrives, and does not ask the server for the next page until every
  transform for the current page has finished.  Memory use is then bounded by
  the page size instead of the size of the result set.

Both are built on :py:func:`search_events`, an async generator which drives
the RFC 2696 simple paged results exchange and only requests page N+1 when its
consumer asks for the event after page N's :py:class:`PageEnd`.
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from functools import wraps
from typing import Any

from ldapcatalog import ldap

from .conf import get_positive_float
from .exceptions import (
    LdapCatalogError,
    SearchError,
    TransformError,
    error_string,
)
from .models import SearchEntry, SearchRequest
from .session import LdapSession
from .typing import ReferralHandler, Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchReference:
    """
    A search result reference (referral) sent by the server.  We never chase
    these.
    """

    #: The LDAP URLs the server pointed us at
    urls: tuple[str, ...]


@dataclass(frozen=True)
class PageEnd:
    """
    Marks the end of one page of results.
    """

    #: 1-based page number
    number: int
    #: ``True`` if the server has no more pages for us
    last: bool


SearchEvent = SearchEntry | SearchReference | PageEnd


def _get_pctrls(serverctrls: list[Any] | None) -> list[Any]:
    """
    Lookup the paged results response controls among the returned controls.
    These carry the cookie we need to ask for the next page.
    """
    return [
        c
        for c in serverctrls or []
        if c.controlType == ldap.SimplePagedResultsControl.controlType
    ]


async def search_events(
    session: LdapSession, dn: str, request: SearchRequest
) -> AsyncIterator[SearchEvent]:
    """
    Run a search and yield what the server sends, in the order it sends it.

    The request for the next page is sent only when the consumer resumes the
    generator after a :py:class:`PageEnd`.  Close the generator (e.g. with
    :py:func:`contextlib.aclosing`) if you stop early, so that an outstanding
    request gets abandoned.

    Args:
        session: the session to search on
        dn: the base DN
        request: what to search for

    Raises:
        ldap.LDAPError: the transport failed or the server ended a page with
            a non-success result code
        SearchError: the server sent a response we did not expect

    Yields:
        :py:class:`ldapcatalog.models.SearchEntry`,
        :py:class:`SearchReference` and :py:class:`PageEnd` objects.

    """
    # Each search gets its own control object, because the cookie on it changes
    # from page to page.
    serverctrls: list[Any] = []
    paging = None
    if request.page_size is not None:
        paging = ldap.SimplePagedResultsControl(True, size=request.page_size, cookie="")  # noqa: FBT003
        serverctrls = [paging]

    page = 0
    while True:
        page += 1
        logger.debug('Requesting page %d of search at DN "%s"', page, dn)
        msgid = session.send_search(dn, request, serverctrls)
        pending = True
        try:
            while True:
                try:
                    rtype, rdata, _, rctrls = await session.result(msgid)
                except ldap.LDAPError:  # type: ignore[attr-defined]
                    pending = False
                    raise
                for entry_dn, attrs in rdata or []:
                    if rtype == ldap.RES_SEARCH_REFERENCE or not isinstance(attrs, dict):  # type: ignore[attr-defined]
                        yield SearchReference(tuple(attrs or ()))
                    else:
                        yield SearchEntry.from_ldap(entry_dn, attrs)
                if rtype == ldap.RES_SEARCH_RESULT:  # type: ignore[attr-defined]
                    pending = False
                    break
                if rtype not in (ldap.RES_SEARCH_ENTRY, ldap.RES_SEARCH_REFERENCE):  # type: ignore[attr-defined]
                    pending = False
                    msg = f"Unexpected response type {rtype!r} to search request"
                    raise SearchError(dn, msg)
        finally:
            if pending:
                session.abandon(msgid)

        cookie = b""
        if paging is not None:
            paged_controls = _get_pctrls(rctrls)
            # No paged control back means the server ignored paging, e.g. for a
            # base scope search.
            if paged_controls and paged_controls[0].cookie:
                cookie = paged_controls[0].cookie
        last = not cookie
        yield PageEnd(number=page, last=last)
        if last:
            return
        paging.cookie = cookie  # type: ignore[union-attr]


def wrap_search_errors(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """
    Decorator that turns anything a search raises into a
    :py:class:`ldapcatalog.exceptions.SearchError` naming the base DN.
    :py:class:`ldapcatalog.exceptions.LdapCatalogError` subclasses and
    cancellation pass through untouched.

    The wrapped coroutine function must take ``(session, dn, ...)``.
    """

    @wraps(func)
    async def wrapper(session: LdapSession, dn: str, *args, **kwargs) -> Any:
        try:
            return await func(session, dn, *args, **kwargs)
        except LdapCatalogError:
            raise
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            raise SearchError.from_ldap_error(dn, e) from e
        except Exception as e:
            raise SearchError(dn, error_string(e)) from e

    return wrapper


def handle_referral(
    dn: str, reference: SearchReference, on_referral: ReferralHandler | None
) -> None:
    """
    Log a referral and pass it on to ``on_referral``, if given.
    """
    logger.warning(
        'Received unsupported search referral at DN "%s": %s',
        dn,
        ", ".join(reference.urls) or "(no URLs)",
    )
    if on_referral is not None:
        on_referral(list(reference.urls))


async def _log_progress(output: list[SearchEntry], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        logger.debug("Read %d LDAP entries so far...", len(output))


@wrap_search_errors
async def search(
    session: LdapSession,
    dn: str,
    request: SearchRequest,
    on_referral: ReferralHandler | None = None,
) -> list[SearchEntry]:
    """
    Perform a search and return every entry it finds.

    Args:
        session: the session to search on
        dn: the fully qualified base DN to search within
        request: the search options
        on_referral: called with the URLs of each referral the server sends;
            referrals are logged and skipped either way

    Raises:
        SearchError: the search failed

    Returns:
        The entries, in the order the server sent them.

    """
    output: list[SearchEntry] = []
    progress = asyncio.create_task(
        _log_progress(output, get_positive_float("PROGRESS_INTERVAL"))
    )
    try:
        async with aclosing(search_events(session, dn, request)) as events:
            async for event in events:
                if isinstance(event, SearchEntry):
                    output.append(event)
                elif isinstance(event, SearchReference):
                    handle_referral(dn, event, on_referral)
    finally:
        progress.cancel()
    return output


class PageWork:
    """
    The transform calls still outstanding for the current page of a streaming
    search.

    Args:
        dn: the base DN of the search, for error messages

    """

    def __init__(self, dn: str) -> None:
        self.dn = dn
        self.tasks: set[asyncio.Future] = set()
        self.failure: BaseException | None = None

    def _record(self, task: asyncio.Future) -> None:
        if task.cancelled():
            error: BaseException | None = asyncio.CancelledError("transform was cancelled")
        else:
            # Retrieve every exception, even once we already have a failure,
            # so asyncio does not log the siblings as never retrieved.
            error = task.exception()
        if error is not None and self.failure is None:
            self.failure = error

    def check(self) -> None:
        """
        Raise if any transform has failed so far.

        Raises:
            TransformError: a transform failed

        """
        if self.failure is not None:
            self.cancel()
            raise TransformError(self.dn, self.failure) from self.failure

    def submit(self, transform: Transform, entry: SearchEntry) -> None:
        """
        Hand ``entry`` to ``transform``, tracking the result if it is
        awaitable.

        Raises:
            TransformError: an earlier transform failed, or this one raised

        """
        self.check()
        try:
            result = transform(entry)
        except Exception as e:
            self.failure = e
            self.cancel()
            raise TransformError(self.dn, e) from e
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self.tasks.add(task)
            task.add_done_callback(self._record)

    async def settle(self) -> None:
        """
        Wait until every tracked transform has finished, or one has failed.

        Raises:
            TransformError: a transform failed

        """
        if self.tasks:
            done, _ = await asyncio.wait(self.tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                self._record(task)
            self.tasks -= done
        self.check()

    def cancel(self) -> None:
        """
        Cancel every transform still running.
        """
        for task in self.tasks:
            task.cancel()
        self.tasks.clear()


@wrap_search_errors
async def search_streaming(
    session: LdapSession,
    dn: str,
    request: SearchRequest,
    transform: Transform,
    on_referral: ReferralHandler | None = None,
) -> None:
    """
    Perform a search, calling ``transform`` on each entry to limit memory use.

    ``transform`` may be a plain function or return an awaitable.  Awaitables
    run concurrently while the rest of the page arrives; the next page is not
    requested until all of them have finished.  Once a transform fails, no
    more entries are handed out, the transforms still running are cancelled,
    and the search is abandoned.

    Args:
        session: the session to search on
        dn: the fully qualified base DN to search within
        request: the search options
        transform: the callback to call on each search entry
        on_referral: called with the URLs of each referral the server sends;
            referrals are logged and skipped either way

    Raises:
        TransformError: ``transform`` raised
        SearchError: the search failed

    """
    work = PageWork(dn)
    try:
        async with aclosing(search_events(session, dn, request)) as events:
            async for event in events:
                if isinstance(event, SearchEntry):
                    work.submit(transform, event)
                elif isinstance(event, SearchReference):
                    handle_referral(dn, event, on_referral)
                else:
                    await work.settle()
    finally:
        work.cancel()

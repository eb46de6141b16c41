"""
The transport session: one ``python-ldap`` connection, its TLS setup and its
bind.

``python-ldap`` is a blocking library, but its asynchronous message API lets
us send a request, get a message id back, and later poll for the responses to
that message id without blocking.  :py:class:`LdapSession` wraps that API so
that every round trip to the server is an ``await`` point on the asyncio event
loop.  The few calls that have no asynchronous form (StartTLS, the bind,
unbind) are run in a worker thread.
"""

import asyncio
import logging
import os
from pathlib import Path
from types import TracebackType
from typing import Any

from ldapcatalog import ldap

from .conf import get_positive_float
from .exceptions import (
    BindError,
    ConnectError,
    LdapCatalogError,
    error_string,
    is_transport_error,
)
from .models import BindConfig, SearchRequest, TLSConfig
from .typing import ErrorObserver, Result3

logger = logging.getLogger(__name__)


def check_tls_files(target: str, tls: TLSConfig) -> None:
    """
    Make sure every file named in ``tls`` exists and is readable.  libldap
    is handed the paths and reads the files itself, so we don't.

    Args:
        target: the LDAP URL, for error messages
        tls: the TLS configuration

    Raises:
        ConnectError: a file does not exist, is not a file, or can't be read

    """
    for name, path in tls.files.items():
        tls_file = Path(path)
        if not tls_file.exists():
            msg = f"TLS {name} file does not exist: {path}"
            raise ConnectError(target, msg)
        if not tls_file.is_file():
            msg = f"TLS {name} file is not a file: {path}"
            raise ConnectError(target, msg)
        if not os.access(tls_file, os.R_OK):
            msg = f"TLS {name} file is not readable: {path}"
            raise ConnectError(target, msg)


class LdapSession:
    """
    An open, possibly bound, connection to one LDAP server.

    Don't instantiate this directly; use :py:meth:`LdapSession.connect`.

    Faults that are not tied to an operation somebody is waiting on (an
    ``abandon`` that fails after its search already failed, an unbind that
    fails on close) go to ``observer`` instead of being raised.  Faults that
    happen while an operation is pending fail that operation.

    Args:
        target: the LDAP URL we are connected to
        connection: the ``python-ldap`` connection object
        observer: called with every fault that has no pending operation to
            fail

    Keyword Args:
        poll_interval: seconds to sleep between polls for a pending response

    """

    def __init__(
        self,
        target: str,
        connection: Any,
        observer: ErrorObserver,
        poll_interval: float | None = None,
    ) -> None:
        self.target = target
        self.observer = observer
        self.poll_interval: float = (
            poll_interval
            if poll_interval is not None
            else get_positive_float("POLL_INTERVAL")
        )
        self.bound_dn: str | None = None
        self.closed: bool = False
        self._connection = connection

    @classmethod
    async def connect(  # noqa: PLR0913
        cls,
        target: str,
        *,
        observer: ErrorObserver,
        bind: BindConfig | None = None,
        tls: TLSConfig | None = None,
        start_tls: bool = False,
        timeout: float = 15.0,
        follow_referrals: bool = False,
        poll_interval: float | None = None,
    ) -> "LdapSession":
        """
        Open a session to ``target``.

        Args:
            target: an LDAP URL, e.g. ``ldap://ldap.example.com`` or
                ``ldaps://ldap.example.com:636``

        Keyword Args:
            observer: the fault observer for this session; see
                :py:class:`LdapSession`
            bind: credentials to bind with; ``None`` for an anonymous session
            tls: TLS material and verification policy
            start_tls: negotiate StartTLS before binding
            timeout: network timeout in seconds
            follow_referrals: let libldap chase referrals itself
            poll_interval: seconds to sleep between polls for a response

        Raises:
            ConnectError: a TLS file is missing or unreadable, or the server
                could not be reached
            BindError: the server rejected our credentials

        Returns:
            A ready to use session.

        """
        if tls is not None:
            check_tls_files(target, tls)
        try:
            connection = ldap.initialize(target)  # type: ignore[attr-defined]
            connection.set_option(
                ldap.OPT_REFERRALS,  # type: ignore[attr-defined]
                1 if follow_referrals else 0,
            )
            connection.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
            if tls is not None:
                cls._configure_tls(connection, tls)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            raise ConnectError(target, error_string(e)) from e

        session = cls(target, connection, observer, poll_interval=poll_interval)
        try:
            if start_tls:
                await session._start_tls()
            # libldap only opens the socket on the first operation, so even an
            # anonymous session binds here to reach the server.
            await session._bind(bind)
        except LdapCatalogError:
            await session._discard()
            raise
        return session

    @staticmethod
    def _configure_tls(connection: Any, tls: TLSConfig) -> None:
        if tls.reject_unauthorized:
            connection.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            connection.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        if tls.cafile:
            connection.set_option(ldap.OPT_X_TLS_CACERTFILE, tls.cafile)  # type: ignore[attr-defined]
        if tls.certfile:
            connection.set_option(ldap.OPT_X_TLS_CERTFILE, tls.certfile)  # type: ignore[attr-defined]
        if tls.keyfile:
            connection.set_option(ldap.OPT_X_TLS_KEYFILE, tls.keyfile)  # type: ignore[attr-defined]
        # Must come last: libldap builds the TLS context from the options above
        connection.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]

    async def _start_tls(self) -> None:
        try:
            await asyncio.to_thread(self._connection.start_tls_s)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            raise ConnectError(self.target, error_string(e)) from e

    async def _bind(self, bind: BindConfig | None) -> None:
        if bind is None:
            who, args = "(anonymous)", ()
        else:
            who, args = bind.dn, (bind.dn, bind.secret)
        try:
            await asyncio.to_thread(self._connection.simple_bind_s, *args)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            if is_transport_error(e):
                raise ConnectError(self.target, error_string(e)) from e
            raise BindError(who, error_string(e)) from e
        if bind is not None:
            self.bound_dn = bind.dn
        logger.debug("Bound to %s as %s", self.target, who)

    async def _discard(self) -> None:
        """
        Drop a connection that failed to come up.
        """
        self.closed = True
        try:
            await asyncio.to_thread(self._connection.unbind_s)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self.report(e)

    def report(self, error: BaseException) -> None:
        """
        Hand ``error`` to the fault observer.  An observer that raises is
        logged and otherwise ignored.
        """
        try:
            self.observer(error)
        except Exception:
            logger.exception("LDAP error observer for %s raised", self.target)

    def send_search(self, dn: str, request: SearchRequest, serverctrls: list[Any]) -> int:
        """
        Send one search request.

        Args:
            dn: the base DN
            request: what to search for
            serverctrls: request controls for this round trip

        Raises:
            ldap.LDAPError: the request could not be sent

        Returns:
            The message id of the request.

        """
        return self._connection.search_ext(
            dn,
            request.scope.value,
            request.filterstr,
            request.attrlist,
            serverctrls=serverctrls,
            sizelimit=request.size_limit,
        )

    async def result(self, msgid: int) -> Result3:
        """
        Wait for the next response message to ``msgid``.

        Each poll is non-blocking; between empty polls we sleep
        :py:attr:`poll_interval` seconds so other tasks can run.

        Raises:
            ldap.LDAPError: the server ended the operation with an error
                result code, or the transport failed

        Returns:
            A ``python-ldap`` ``result3`` 4-tuple.

        """
        while True:
            rtype, rdata, rmsgid, serverctrls = self._connection.result3(msgid, 0, 0)
            if rtype is not None:
                return rtype, rdata, rmsgid, serverctrls
            await asyncio.sleep(self.poll_interval)

    def abandon(self, msgid: int) -> None:
        """
        Tell the server we no longer want responses to ``msgid``.
        """
        try:
            self._connection.abandon_ext(msgid)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self.report(e)

    async def close(self) -> None:
        """
        Unbind and drop the connection.  Calling this more than once is
        harmless.
        """
        if self.closed:
            return
        self.closed = True
        try:
            await asyncio.to_thread(self._connection.unbind_s)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self.report(e)

    async def __aenter__(self) -> "LdapSession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

"""
The public entry point of ldapcatalog.

:py:class:`LdapClient` ties a :py:class:`ldapcatalog.session.LdapSession`
to the search executors and the vendor detector::

    from ldapcatalog import LdapClient, SearchRequest

    async with await LdapClient.from_settings("corp") as client:
        vendor = await client.get_vendor()
        users = await client.search(
            "ou=people,dc=example,dc=com",
            SearchRequest(filter="(objectClass=person)", page_size=500),
        )
"""

import logging
from types import TracebackType
from typing import Any

from .conf import get_server_config
from .exceptions import error_string
from .models import BindConfig, SearchEntry, SearchRequest, TLSConfig
from .search import search, search_streaming
from .server_capabilities import ServerCapabilities
from .session import LdapSession
from .typing import ReferralHandler, Transform
from .vendors import LdapVendor

logger = logging.getLogger("ldapcatalog")


class LdapClient:
    """
    Read-only LDAP client: connecting, binding, paging and vendor detection.

    Use :py:meth:`create` or :py:meth:`from_settings` to get one.

    Args:
        session: an open session
        logger: where to log

    """

    def __init__(self, session: LdapSession, logger: logging.Logger = logger) -> None:
        self.session = session
        self.logger = logger
        self.capabilities = ServerCapabilities(session)

    @classmethod
    async def create(
        cls,
        target: str,
        bind: BindConfig | None = None,
        tls: TLSConfig | None = None,
        *,
        logger: logging.Logger = logger,
        **session_options: Any,
    ) -> "LdapClient":
        """
        Connect to ``target``, binding if ``bind`` is given.

        Faults on the connection that no pending operation is waiting on are
        logged as warnings on ``logger``.

        Args:
            target: an LDAP URL
            bind: credentials; ``None`` for an anonymous client
            tls: TLS material and verification policy

        Keyword Args:
            logger: where to log
            **session_options: passed through to
                :py:meth:`ldapcatalog.session.LdapSession.connect`

        Raises:
            ConnectError: the server could not be reached
            BindError: the server rejected ``bind``

        Returns:
            A connected client.

        """

        def observer(error: BaseException) -> None:
            logger.warning("LDAP client threw an error, %s", error_string(error))

        session = await LdapSession.connect(
            target, observer=observer, bind=bind, tls=tls, **session_options
        )
        return cls(session, logger=logger)

    @classmethod
    async def from_settings(cls, key: str, **kwargs: Any) -> "LdapClient":
        """
        Connect to the server configured as ``settings.LDAP_SERVERS[key]``.

        Raises:
            ImproperlyConfigured: the server is not configured properly

        """
        config = get_server_config(key)
        return await cls.create(config.url, **config.session_options(), **kwargs)

    async def search(
        self,
        dn: str,
        request: SearchRequest,
        on_referral: ReferralHandler | None = None,
    ) -> list[SearchEntry]:
        """
        Performs an LDAP search operation.

        See :py:func:`ldapcatalog.search.search`.
        """
        return await search(self.session, dn, request, on_referral=on_referral)

    async def search_streaming(
        self,
        dn: str,
        request: SearchRequest,
        transform: Transform,
        on_referral: ReferralHandler | None = None,
    ) -> None:
        """
        Performs an LDAP search operation, calls ``transform`` on each entry to
        limit memory usage.

        See :py:func:`ldapcatalog.search.search_streaming`.
        """
        await search_streaming(
            self.session, dn, request, transform, on_referral=on_referral
        )

    async def get_vendor(self) -> LdapVendor:
        """
        Get the server vendor.
        """
        return await self.capabilities.get_vendor()

    async def get_root_dse(self) -> SearchEntry | None:
        """
        Get the root DSE.
        """
        return await self.capabilities.get_root_dse()

    async def close(self) -> None:
        await self.session.close()

    async def __aenter__(self) -> "LdapClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

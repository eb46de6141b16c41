"""
LDAP server vendor detection and caching.

This module provides the ServerCapabilities class, which reads the root DSE
of the server behind an :py:class:`ldapcatalog.session.LdapSession` and
decides which :py:class:`ldapcatalog.vendors.LdapVendor` we are talking to.
"""

import asyncio
import logging

from ldap_filter import Filter

from .models import Scope, SearchEntry, SearchRequest
from .search import search
from .session import LdapSession
from .vendors import (
    ActiveDirectoryVendor,
    AEDirVendor,
    DefaultLdapVendor,
    FreeIpaVendor,
    LdapVendor,
)

logger = logging.getLogger(__name__)


class ServerCapabilities:
    """
    Handles detection and caching of the vendor of an LDAP server.

    The vendor is looked up at most once per session: concurrent callers of
    :py:meth:`get_vendor` share one root DSE search.  If that search fails the
    cache is emptied again, so the next call retries instead of replaying the
    failure.

    Args:
        session: the session whose server we are inspecting

    """

    #: The search that fetches the root DSE
    ROOT_DSE_REQUEST = SearchRequest(
        filter=Filter.attribute("objectclass").present(),
        scope=Scope.BASE,
    )

    def __init__(self, session: LdapSession) -> None:
        self.session = session
        #: The lookup in progress, or done; ``None`` until the first lookup
        self._vendor: asyncio.Future[LdapVendor] | None = None

    async def get_root_dse(self) -> SearchEntry | None:
        """
        Get the root DSE.

        See https://ldapwiki.com/wiki/RootDSE

        Raises:
            SearchError: the search failed

        Returns:
            The root DSE entry, or ``None`` if the server did not return
            exactly one entry.

        """
        result = await search(self.session, "", self.ROOT_DSE_REQUEST)
        if len(result) == 1:
            return result[0]
        logger.warning(
            "LDAP server %s returned %d root DSE entries, expected 1",
            self.session.target,
            len(result),
        )
        return None

    @staticmethod
    def detect_vendor(root_dse: SearchEntry | None) -> LdapVendor:
        """
        Classify a server by its root DSE.

        Priority:
        1. Active Directory (``forestFunctionality`` is definitive)
        2. FreeIPA (``ipaDomainLevel``)
        3. AE-DIR (``aeRoot``)
        4. Everything else, including a missing root DSE

        Args:
            root_dse: the root DSE entry, or ``None``

        Returns:
            The detected vendor.

        """
        if root_dse is None:
            return DefaultLdapVendor
        if root_dse.get("forestFunctionality"):
            return ActiveDirectoryVendor
        if root_dse.get("ipaDomainLevel"):
            return FreeIpaVendor
        if root_dse.has_attribute("aeRoot"):
            return AEDirVendor
        return DefaultLdapVendor

    async def _resolve_vendor(self) -> LdapVendor:
        vendor = self.detect_vendor(await self.get_root_dse())
        logger.info("LDAP server %s looks like %s", self.session.target, vendor.name)
        return vendor

    def _forget_failure(self, lookup: "asyncio.Future[LdapVendor]") -> None:
        if lookup.cancelled() or lookup.exception() is not None:
            if self._vendor is lookup:
                self._vendor = None

    async def get_vendor(self) -> LdapVendor:
        """
        Get the server vendor, looking it up on first use.

        Raises:
            SearchError: the root DSE search failed

        Returns:
            The detected vendor.

        """
        lookup = self._vendor
        if lookup is None:
            lookup = asyncio.ensure_future(self._resolve_vendor())
            lookup.add_done_callback(self._forget_failure)
            self._vendor = lookup
        # One caller being cancelled must not cancel the lookup the others
        # are waiting on.
        return await asyncio.shield(lookup)

    def clear_cache(self) -> None:
        """
        Forget the cached vendor, so that the next :py:meth:`get_vendor` call
        looks it up again.
        """
        self._vendor = None

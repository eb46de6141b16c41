"""
Value objects shared by the session, the search executors and the vendor
detector.

Everything here is immutable: a :py:class:`SearchRequest` may be reused across
any number of concurrent searches, and a :py:class:`SearchEntry` handed to a
caller can't be changed behind its back.
"""

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ldapcatalog import ldap


class Scope(enum.Enum):
    """
    How far below the base DN a search reaches.
    """

    #: The base entry only
    BASE = ldap.SCOPE_BASE  # type: ignore[attr-defined]
    #: Immediate children of the base entry
    ONELEVEL = ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
    #: The base entry and everything below it
    SUBTREE = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]

    @classmethod
    def parse(cls, value: "Scope | str | int") -> "Scope":
        """
        Accept a :py:class:`Scope`, a ``python-ldap`` ``SCOPE_*`` constant, or
        one of the names ``base``, ``one``, ``onelevel``, ``sub``, ``subtree``.

        Raises:
            ValueError: ``value`` is not a known scope

        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return _SCOPE_NAMES[value.lower()]
            except KeyError as e:
                msg = f"Unknown search scope: {value!r}"
                raise ValueError(msg) from e
        return cls(value)


_SCOPE_NAMES: dict[str, Scope] = {
    "base": Scope.BASE,
    "one": Scope.ONELEVEL,
    "onelevel": Scope.ONELEVEL,
    "sub": Scope.SUBTREE,
    "subtree": Scope.SUBTREE,
}


@dataclass(frozen=True)
class BindConfig:
    """
    Credentials for a simple bind.
    """

    #: The DN to bind as
    dn: str
    #: The password for ``dn``
    secret: str = field(repr=False)


@dataclass(frozen=True)
class TLSConfig:
    """
    TLS material for a session.  The files are checked when the session is
    created, so a missing or unreadable file fails session construction rather
    than the first search.
    """

    #: Path to our client certificate, in PEM format
    certfile: str | None = None
    #: Path to the private key for ``certfile``, in PEM format
    keyfile: str | None = None
    #: Path to the CA bundle used to verify the server certificate
    cafile: str | None = None
    #: Refuse servers whose certificate does not verify
    reject_unauthorized: bool = True

    @property
    def files(self) -> dict[str, str]:
        """
        The configured files, keyed by what they are.
        """
        named = {
            "certificate": self.certfile,
            "key": self.keyfile,
            "CA certificate": self.cafile,
        }
        return {name: path for name, path in named.items() if path}


@dataclass(frozen=True)
class SearchRequest:
    """
    Describes one search, minus the base DN which is passed alongside it.

    Example:
        .. code-block:: python

            from ldap_filter import Filter

            request = SearchRequest(
                filter=Filter.attribute("objectClass").equal_to("person"),
                scope=Scope.SUBTREE,
                attributes=("uid", "cn", "mail"),
                page_size=500,
            )

    Raises:
        ValueError: ``page_size`` is not a positive integer, ``size_limit``
            is negative, or ``scope`` is unknown

    """

    #: The search filter, either as a string or as an :py:mod:`ldap_filter` filter
    filter: Any = "(objectClass=*)"
    #: The search scope
    scope: Scope = Scope.SUBTREE
    #: The attributes to return, or ``None`` for all user attributes
    attributes: tuple[str, ...] | None = None
    #: Entries per page, or ``None`` to not use the paged results control
    page_size: int | None = None
    #: Stop after this many entries; 0 means no limit
    size_limit: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope", Scope.parse(self.scope))
        if self.attributes is not None:
            object.__setattr__(self, "attributes", tuple(self.attributes))
        if self.page_size is not None and (
            isinstance(self.page_size, bool)
            or not isinstance(self.page_size, int)
            or self.page_size <= 0
        ):
            msg = f"page_size must be a positive integer, not {self.page_size!r}"
            raise ValueError(msg)
        if self.size_limit < 0:
            msg = f"size_limit must not be negative, not {self.size_limit!r}"
            raise ValueError(msg)

    @property
    def filterstr(self) -> str:
        """
        The filter rendered as an RFC 4515 string.
        """
        if hasattr(self.filter, "to_string"):
            return self.filter.to_string()
        return str(self.filter)

    @property
    def attrlist(self) -> list[str] | None:
        """
        A fresh attribute list for ``python-ldap``.
        """
        if self.attributes is None:
            return None
        return list(self.attributes)


@dataclass(frozen=True)
class SearchEntry:
    """
    One entry returned by a search.  Attribute values are the raw bytes the
    server sent.
    """

    #: The DN of the entry
    dn: str
    #: Attribute name to values
    attributes: Mapping[str, tuple[bytes, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_ldap(cls, dn: str, attrs: Mapping[str, Iterable[bytes]]) -> "SearchEntry":
        """
        Build an entry from a ``python-ldap`` ``(dn, attrs)`` result tuple.
        """
        return cls(
            dn=dn,
            attributes=MappingProxyType(
                {name: tuple(values) for name, values in attrs.items()}
            ),
        )

    def _key(self, name: str) -> str | None:
        if name in self.attributes:
            return name
        lowered = name.lower()
        for key in self.attributes:
            if key.lower() == lowered:
                return key
        return None

    def has_attribute(self, name: str) -> bool:
        """
        Return ``True`` if the entry has attribute ``name``.  Attribute names
        are compared case-insensitively.
        """
        return self._key(name) is not None

    def get(self, name: str) -> tuple[bytes, ...]:
        """
        Return the values of attribute ``name``, or an empty tuple.
        """
        key = self._key(name)
        if key is None:
            return ()
        return self.attributes[key]

    def first(self, name: str) -> bytes | None:
        """
        Return the first value of attribute ``name``, or ``None``.
        """
        values = self.get(name)
        return values[0] if values else None

    def strings(self, name: str) -> list[str]:
        """
        Return the values of attribute ``name`` decoded as UTF-8.
        """
        return [value.decode("utf-8") for value in self.get(name)]

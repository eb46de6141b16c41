"""
Exceptions raised by ldapcatalog.

Every failure that reaches a caller is one of the classes below, chained to
the underlying ``python-ldap`` (or caller) exception with ``raise ... from``.
Callers can tell a broken server or transport (:py:class:`SearchError`)
apart from their own broken per-entry logic (:py:class:`TransformError`).
"""

from typing import Any

from ldapcatalog import ldap


def error_string(error: BaseException) -> str:
    """
    Render an exception as a single diagnostic line.

    ``python-ldap`` raises :py:class:`ldap.LDAPError` subclasses whose first
    argument is a dict with ``result``, ``desc`` and sometimes ``info`` keys;
    those are flattened to ``code=<result> <desc>: <info>``.  Anything else is
    rendered as ``<ClassName>: <message>``.

    Args:
        error: the exception to describe

    Returns:
        A human readable description of ``error``.

    """
    details = ldap_error_details(error)
    if details is not None:
        text = f"code={details.get('result', '?')} {details.get('desc', type(error).__name__)}"
        if details.get("info"):
            text = f"{text}: {details['info']}"
        return text
    message = str(error)
    if message:
        return f"{type(error).__name__}: {message}"
    return type(error).__name__


def ldap_error_details(error: BaseException) -> dict[str, Any] | None:
    """
    Return the ``python-ldap`` error dict carried by ``error``, if any.
    """
    if isinstance(error, ldap.LDAPError) and error.args:
        details = error.args[0]
        if isinstance(details, dict):
            return details
    return None


def is_transport_error(error: BaseException) -> bool:
    """
    Return ``True`` if ``error`` describes the connection rather than an
    operation result code.
    """
    return isinstance(
        error,
        (ldap.SERVER_DOWN, ldap.CONNECT_ERROR, ldap.TIMEOUT),  # type: ignore[attr-defined]
    )


class LdapCatalogError(Exception):
    """
    Base class for all ldapcatalog errors.
    """


class ConnectError(LdapCatalogError):
    """
    The channel to the LDAP server could not be established, either because
    TLS material could not be loaded or the server could not be reached.

    Args:
        target: the LDAP URL we tried to reach
        message: what went wrong

    """

    def __init__(self, target: str, message: str) -> None:
        self.target = target
        super().__init__(f"LDAP connection to {target} failed, {message}")


class BindError(LdapCatalogError):
    """
    The server rejected our bind.

    Args:
        dn: the DN we tried to bind as
        diagnostic: the server's diagnostic message

    """

    def __init__(self, dn: str, diagnostic: str) -> None:
        self.dn = dn
        self.diagnostic = diagnostic
        super().__init__(f"LDAP bind failed for {dn}, {diagnostic}")


class SearchError(LdapCatalogError):
    """
    A search failed: the transport broke, the server ended the search with a
    non-success result code, or the server sent something we did not expect.

    Args:
        dn: the base DN of the failed search
        message: what went wrong

    Keyword Args:
        status: the LDAP result code, when the server sent one

    """

    def __init__(self, dn: str, message: str, status: int | None = None) -> None:
        self.dn = dn
        self.status = status
        self.reason = message
        super().__init__(f'LDAP search at DN "{dn}" failed, {message}')

    @classmethod
    def from_ldap_error(cls, dn: str, error: BaseException) -> "SearchError":
        """
        Build a :py:class:`SearchError` from a ``python-ldap`` exception,
        keeping the result code if the server sent one.
        """
        details = ldap_error_details(error)
        if details is not None and not is_transport_error(error):
            status = details.get("result")
            if isinstance(status, int):
                message = f"Got status {status}: {details.get('desc', '')}"
                if details.get("info"):
                    message = f"{message} ({details['info']})"
                return cls(dn, message, status=status)
        return cls(dn, error_string(error))


class TransformError(LdapCatalogError):
    """
    A caller supplied transform raised while we were streaming search results.

    The original exception is available as ``__cause__``.

    Args:
        dn: the base DN of the search being streamed
        error: the exception the transform raised

    """

    def __init__(self, dn: str, error: BaseException) -> None:
        self.dn = dn
        super().__init__(
            f'LDAP search at DN "{dn}" failed, '
            f"Transform function threw an exception, {error_string(error)}"
        )

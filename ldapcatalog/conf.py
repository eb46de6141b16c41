"""
Configuration for ldapcatalog.

Server connection details live in ``settings.LDAP_SERVERS``, keyed by a
server name::

    LDAP_SERVERS = {
        "corp": {
            "url": "ldaps://ldap.example.com",
            "user": "cn=reader,dc=example,dc=com",
            "password": "secret",
            "use_starttls": False,
            "tls_verify": "always",
            "tls_ca_certfile": "/etc/ssl/certs/ca.pem",
            "timeout": 15.0,
            "follow_referrals": False,
        },
    }

Tuning knobs are plain settings with an ``LDAPCATALOG_`` prefix.  When Django
settings have not been configured at all (ldapcatalog used outside of a Django
project), the defaults are used.
"""

from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .models import BindConfig, TLSConfig

#: Default values for the ``LDAPCATALOG_*`` settings
DEFAULTS: dict[str, Any] = {
    "PROGRESS_INTERVAL": 5.0,
    "POLL_INTERVAL": 0.01,
}


def get_setting(setting_name: str, default_value: Any = None) -> Any:
    """
    Get configuration value from Django settings with fallback.

    Args:
        setting_name: Name of the setting (without LDAPCATALOG_ prefix)
        default_value: Default value if setting not found; if ``None``, the
            value from :py:data:`DEFAULTS` is used

    Returns:
        Configuration value from settings or default

    """
    if default_value is None:
        default_value = DEFAULTS.get(setting_name)
    if not settings.configured:
        return default_value
    return getattr(settings, f"LDAPCATALOG_{setting_name}", default_value)


def get_positive_float(setting_name: str) -> float:
    """
    Get a setting that must be a positive number of seconds.

    Raises:
        ImproperlyConfigured: the setting is not a positive number

    """
    value = get_setting(setting_name)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        msg = f"LDAPCATALOG_{setting_name} ({value!r}) must be a number"
        raise ImproperlyConfigured(msg) from e
    if number <= 0:
        msg = f"LDAPCATALOG_{setting_name} ({value!r}) must be positive"
        raise ImproperlyConfigured(msg)
    return number


@dataclass(frozen=True)
class ServerConfig:
    """
    Everything needed to open an :py:class:`ldapcatalog.session.LdapSession`,
    resolved from ``settings.LDAP_SERVERS``.
    """

    #: The LDAP URL of the server
    url: str
    #: Bind credentials, or ``None`` for an anonymous session
    bind: BindConfig | None = None
    #: TLS material, or ``None`` to use the libldap defaults
    tls: TLSConfig | None = None
    #: Negotiate StartTLS after connecting
    start_tls: bool = False
    #: Network timeout in seconds
    timeout: float = 15.0
    #: Let libldap chase referrals
    follow_referrals: bool = False

    def session_options(self) -> dict[str, Any]:
        """
        Return the keyword arguments for
        :py:meth:`ldapcatalog.session.LdapSession.connect`.
        """
        return {
            "bind": self.bind,
            "tls": self.tls,
            "start_tls": self.start_tls,
            "timeout": self.timeout,
            "follow_referrals": self.follow_referrals,
        }


def get_server_config(key: str) -> ServerConfig:
    """
    Look up ``settings.LDAP_SERVERS[key]`` and turn it into a
    :py:class:`ServerConfig`.

    Args:
        key: the name of the server in ``settings.LDAP_SERVERS``

    Raises:
        ImproperlyConfigured: ``settings.LDAP_SERVERS`` does not exist, has no
            entry named ``key``, or that entry has no ``url``
        ValueError: the ``tls_verify`` value in the configuration is invalid

    Returns:
        The resolved server configuration.

    """
    try:
        config: dict[str, Any] = settings.LDAP_SERVERS[key]
    except AttributeError as e:
        msg = "settings.LDAP_SERVERS does not exist!"
        raise ImproperlyConfigured(msg) from e
    except KeyError as e:
        msg = f"settings.LDAP_SERVERS has no key '{key}'"
        raise ImproperlyConfigured(msg) from e
    try:
        url = config["url"]
    except KeyError as e:
        msg = f"settings.LDAP_SERVERS['{key}'] has no 'url' key"
        raise ImproperlyConfigured(msg) from e

    bind = None
    if config.get("user"):
        bind = BindConfig(dn=config["user"], secret=config.get("password") or "")

    tls_verify = config.get("tls_verify", "never")
    if tls_verify not in ("never", "always"):
        msg = f"Invalid tls_verify value: {tls_verify}"
        raise ValueError(msg)
    tls = TLSConfig(
        certfile=config.get("tls_certfile"),
        keyfile=config.get("tls_keyfile"),
        cafile=config.get("tls_ca_certfile"),
        reject_unauthorized=tls_verify == "always",
    )

    return ServerConfig(
        url=url,
        bind=bind,
        tls=tls,
        start_tls=config.get("use_starttls", False),
        timeout=float(config.get("timeout", 15.0)),
        follow_referrals=config.get("follow_referrals", False),
    )

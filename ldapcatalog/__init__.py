from .client import LdapClient
from .exceptions import (
    BindError,
    ConnectError,
    LdapCatalogError,
    SearchError,
    TransformError,
)
from .models import BindConfig, Scope, SearchEntry, SearchRequest, TLSConfig
from .search import search, search_streaming
from .server_capabilities import ServerCapabilities
from .session import LdapSession
from .vendors import (
    ActiveDirectoryVendor,
    AEDirVendor,
    DefaultLdapVendor,
    FreeIpaVendor,
    LdapVendor,
)

__version__ = "0.1.0"

__all__ = [
    "ActiveDirectoryVendor",
    "AEDirVendor",
    "BindConfig",
    "BindError",
    "ConnectError",
    "DefaultLdapVendor",
    "FreeIpaVendor",
    "LdapCatalogError",
    "LdapClient",
    "LdapSession",
    "LdapVendor",
    "Scope",
    "SearchEntry",
    "SearchError",
    "SearchRequest",
    "ServerCapabilities",
    "TLSConfig",
    "TransformError",
    "search",
    "search_streaming",
]

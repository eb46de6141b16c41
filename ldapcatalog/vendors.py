"""
LDAP server vendors.

Directory servers disagree on which attribute holds an entry's DN and which
holds its stable unique id, and Active Directory stores some identifiers as
binary blobs.  Each :py:class:`LdapVendor` captures those conventions for one
server implementation.

See https://ldapwiki.com/wiki/Determine%20LDAP%20Server%20Vendor
"""

import struct
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from .models import SearchEntry


def decode_utf8(entry: SearchEntry, name: str) -> list[str]:
    """
    Decode every value of attribute ``name`` as UTF-8.
    """
    return entry.strings(name)


def format_guid(value: bytes) -> str:
    """
    Render an Active Directory ``objectGUID`` (a little-endian GUID) in its
    usual string form.
    """
    return str(uuid.UUID(bytes_le=value))


def format_sid(value: bytes) -> str:
    """
    Render an Active Directory ``objectSid`` as ``S-1-5-21-...``.

    Raises:
        ValueError: ``value`` is too short to be a SID

    """
    if len(value) < 8:  # noqa: PLR2004
        msg = f"SID is too short: {len(value)} bytes"
        raise ValueError(msg)
    revision = value[0]
    count = value[1]
    authority = int.from_bytes(value[2:8], "big")
    if len(value) < 8 + 4 * count:
        msg = f"SID claims {count} sub-authorities but has {len(value)} bytes"
        raise ValueError(msg)
    subs = struct.unpack(f"<{count}I", value[8 : 8 + 4 * count])
    return "-".join(["S", str(revision), str(authority), *(str(s) for s in subs)])


def decode_active_directory(entry: SearchEntry, name: str) -> list[str]:
    """
    Decode attribute ``name`` of an Active Directory entry, rendering the
    binary ``objectGUID`` and ``objectSid`` attributes as strings.
    """
    lowered = name.lower()
    if lowered == "objectguid":
        return [format_guid(value) for value in entry.get(name)]
    if lowered == "objectsid":
        return [format_sid(value) for value in entry.get(name)]
    return decode_utf8(entry, name)


@dataclass(frozen=True)
class LdapVendor:
    """
    The attribute conventions of one LDAP server implementation.
    """

    #: Short name of the vendor
    name: str
    #: The attribute that holds an entry's DN
    dn_attribute_name: str
    #: The attribute that holds an entry's stable unique id
    uuid_attribute_name: str
    #: Decodes the values of one attribute of an entry into strings
    decoder: Callable[[SearchEntry, str], list[str]] = field(
        default=decode_utf8, repr=False, compare=False
    )

    def decode_string_attribute(self, entry: SearchEntry, name: str) -> list[str]:
        """
        Return the values of attribute ``name`` of ``entry`` as strings.

        Args:
            entry: the entry to read from
            name: the attribute name

        Returns:
            The decoded values; an empty list if ``entry`` lacks ``name``.

        """
        return self.decoder(entry, name)


DefaultLdapVendor = LdapVendor(
    name="default",
    dn_attribute_name="entryDN",
    uuid_attribute_name="entryUUID",
)

ActiveDirectoryVendor = LdapVendor(
    name="active_directory",
    dn_attribute_name="distinguishedName",
    uuid_attribute_name="objectGUID",
    decoder=decode_active_directory,
)

FreeIpaVendor = LdapVendor(
    name="freeipa",
    dn_attribute_name="dn",
    uuid_attribute_name="ipaUniqueID",
)

AEDirVendor = LdapVendor(
    name="aedir",
    dn_attribute_name="entryDN",
    uuid_attribute_name="entryUUID",
)

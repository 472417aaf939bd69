"""
Attribute View

Read-only typed access to the attributes of a decoded pyrad packet.
"""

import logging
import re
from typing import Iterable, Optional

from pyrad import packet

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(
    r'([0-9A-Fa-f]{2})[:\-.]?([0-9A-Fa-f]{2})[:\-.]?([0-9A-Fa-f]{2})[:\-.]?'
    r'([0-9A-Fa-f]{2})[:\-.]?([0-9A-Fa-f]{2})[:\-.]?([0-9A-Fa-f]{2})'
)


class AttributeView:
    """
    Read-only accessor over a decoded RADIUS packet.

    Lookups are by dictionary attribute name. A missing attribute, or a name
    the packet dictionary does not know, is reported as absent (None); callers
    decide whether the attribute is required.
    """

    def __init__(self, pkt: packet.Packet):
        self._packet = pkt

    def __contains__(self, name: str) -> bool:
        return self._raw_values(name) is not None

    @property
    def authenticator(self) -> Optional[bytes]:
        return getattr(self._packet, 'authenticator', None)

    def get_string(self, name: str) -> Optional[str]:
        """
        Get the decoded value of the first occurrence of an attribute.

        Integers, IP addresses and named VALUEs are rendered as strings.
        """
        try:
            values = self._packet.get(name)
        except Exception as e:
            logger.debug(f"Error decoding attribute {name}: {e}")
            return None
        if not values:
            return None
        value = values[0]
        if isinstance(value, bytes):
            return value.decode('utf-8', errors='replace')
        return str(value)

    def get_bytes(self, name: str) -> Optional[bytes]:
        """Get the raw payload of the first occurrence of an attribute."""
        values = self._raw_values(name)
        if not values:
            return None
        return values[0]

    def mac_address(self, sources: Iterable[str]) -> Optional[str]:
        """
        Find a MAC address in the first source attribute that carries one.

        Sources may hold a bare MAC (Calling-Station-Id) or a composite value
        such as H3C-Ip-Host-Addr ("10.0.0.2 00:11:22:33:44:55").
        """
        for name in sources:
            value = self.get_string(name)
            if not value:
                continue
            match = MAC_PATTERN.search(value)
            if match:
                return ':'.join(match.groups()).lower()
        return None

    def _raw_values(self, name: str) -> Optional[list]:
        try:
            key = self._packet._EncodeKey(name)
        except KeyError:
            return None
        # Integer/tuple keys bypass pyrad's value decoding
        return self._packet.get(key)

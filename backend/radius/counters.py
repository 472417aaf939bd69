"""
Counter Decoder

Accounting octet counters are 32-bit and wrap; the matching Gigawords
attribute counts the wraps (RFC 2869 section 5.1/5.2).
"""

import struct
from typing import Optional, Tuple

from radius.attributes import AttributeView
from radius.exceptions import MalformedAttribute

GIGAWORD = 1 << 32


def _unpack_uint32(name: str, payload: Optional[bytes]) -> int:
    if payload is None:
        return 0
    if len(payload) != 4:
        raise MalformedAttribute(
            f"{name} must be a 4 byte integer, got {len(payload)} bytes",
            attribute=name,
            value=payload
        )
    return struct.unpack('!I', payload)[0]


def decode_counter(octets: Optional[bytes], gigawords: Optional[bytes],
                   octets_name: str = 'octets', gigawords_name: str = 'gigawords') -> int:
    """
    Combine an octet counter and its gigawords counter into a byte count.

    Args:
        octets: Raw big-endian payload of the octet counter, or None
        gigawords: Raw big-endian payload of the gigawords counter, or None
        octets_name: Attribute name used in error reports
        gigawords_name: Attribute name used in error reports

    Returns:
        octets + gigawords * 2^32
    """
    return (_unpack_uint32(octets_name, octets)
            + _unpack_uint32(gigawords_name, gigawords) * GIGAWORD)


def decode_traffic(view: AttributeView) -> Tuple[int, int]:
    """
    Decode the upstream (input) and downstream (output) byte counts of a packet.
    """
    upstream = decode_counter(
        view.get_bytes('Acct-Input-Octets'),
        view.get_bytes('Acct-Input-Gigawords'),
        'Acct-Input-Octets', 'Acct-Input-Gigawords'
    )
    downstream = decode_counter(
        view.get_bytes('Acct-Output-Octets'),
        view.get_bytes('Acct-Output-Gigawords'),
        'Acct-Output-Octets', 'Acct-Output-Gigawords'
    )
    return upstream, downstream

"""
IPv6 address arithmetic on plain 128-bit integers.

Bit ranges are numbered MSB-first (network order): bit 0 is the first bit of
the address, so a prefix length of N covers bits 0..N-1. Text only enters and
leaves through the parse_*/format_* helpers, which use the ipaddress module.

RFC 6052 IPv4-embedded IPv6 address layout::

    +--+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+
    |PL| 0-------------32--40--48--56--64--72--80--88--96--104---------|
    +--+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+
    |32|     prefix    |v4(32)         | u | suffix                    |
    |40|     prefix        |v4(24)     | u |(8)| suffix                |
    |48|     prefix            |v4(16) | u | (16)  | suffix            |
    |56|     prefix                |(8)| u |  v4(24)   | suffix        |
    |64|     prefix                    | u |   v4(32)      | suffix    |
    |96|     prefix                                    |    v4(32)     |
    +--+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+---+
"""

import ipaddress
from typing import Union

from clat.errors import InvalidAddress, InvalidPrefix


ADDRESS_BITS = 128
ALL_ONES = (1 << ADDRESS_BITS) - 1

# Prefix lengths permitted by RFC 6052 section 2.2
RFC6052_PREFIX_LENGTHS = (32, 40, 48, 56, 64, 96)

# The "u" octet, always zero in an IPv4-embedded address
U_OCTET_OFFSET = 64
U_OCTET_BITS = 8


# ---------------------------------------------------------------------------
# Bit arithmetic
# ---------------------------------------------------------------------------

def _check_range(offset: int, width: int) -> None:
    if offset < 0 or width < 0 or offset + width > ADDRESS_BITS:
        raise ValueError(f"Bit range {offset}+{width} outside a {ADDRESS_BITS}-bit address")


def prefix_mask(prefixlen: int) -> int:
    """Return the network mask for ``prefixlen`` as an integer."""
    _check_range(0, prefixlen)
    return ALL_ONES ^ ((1 << (ADDRESS_BITS - prefixlen)) - 1)


def mask(addr: int, prefixlen: int) -> int:
    """Zero every bit of ``addr`` beyond ``prefixlen``."""
    return addr & prefix_mask(prefixlen)


def xor_distance(a: int, b: int) -> int:
    """
    Bitwise XOR of two addresses, used as a similarity score.

    The smaller the result, the longer the common prefix of ``a`` and ``b``.
    """
    return a ^ b


def get_bits(addr: int, offset: int, width: int) -> int:
    """Extract ``width`` bits starting at MSB-first bit ``offset``."""
    _check_range(offset, width)
    shift = ADDRESS_BITS - offset - width
    return (addr >> shift) & ((1 << width) - 1)


def set_bits(addr: int, offset: int, width: int, value: int) -> int:
    """
    Replace ``width`` bits starting at MSB-first bit ``offset`` with ``value``.

    Raises:
        ValueError: if ``value`` does not fit in ``width`` bits.
    """
    _check_range(offset, width)
    if value < 0 or value >> width:
        raise ValueError(f"Value {value:#x} does not fit in {width} bits")
    shift = ADDRESS_BITS - offset - width
    field_mask = ((1 << width) - 1) << shift
    return (addr & ~field_mask & ALL_ONES) | (value << shift)


# ---------------------------------------------------------------------------
# RFC 6052 embedding
# ---------------------------------------------------------------------------

def _embedding_spans(prefixlen: int):
    """
    Yield (offset, width, ipv4_shift) spans where the IPv4 bits are written.

    The IPv4 address starts right after the prefix and skips the u octet.
    """
    if prefixlen not in RFC6052_PREFIX_LENGTHS:
        raise InvalidPrefix(f"/{prefixlen} is not an RFC 6052 prefix length")

    if prefixlen + 32 <= U_OCTET_OFFSET or prefixlen > U_OCTET_OFFSET:
        # /32 ends right before the u octet, /96 starts well after it
        yield prefixlen, 32, 0
        return

    if prefixlen == U_OCTET_OFFSET:
        yield U_OCTET_OFFSET + U_OCTET_BITS, 32, 0
        return

    # /40, /48 and /56 are split around the u octet
    head = U_OCTET_OFFSET - prefixlen
    tail = 32 - head
    yield prefixlen, head, tail
    yield U_OCTET_OFFSET + U_OCTET_BITS, tail, 0


def embed_ipv4(prefix: int, prefixlen: int, ipv4: int) -> int:
    """
    Embed a 32-bit IPv4 address into an IPv6 prefix (RFC 6052 section 2.2).

    Args:
        prefix: IPv6 prefix as an integer (host bits are ignored).
        prefixlen: One of RFC6052_PREFIX_LENGTHS.
        ipv4: IPv4 address as an integer.

    Returns:
        The IPv4-embedded IPv6 address as an integer, with a zero suffix.

    Example:
        embed_ipv4(int(IPv6Address("64:ff9b::")), 96, int(IPv4Address("192.0.0.170")))
        -> int(IPv6Address("64:ff9b::c000:aa"))
    """
    addr = mask(prefix, prefixlen)
    for offset, width, ipv4_shift in _embedding_spans(prefixlen):
        chunk = (ipv4 >> ipv4_shift) & ((1 << width) - 1)
        addr = set_bits(addr, offset, width, chunk)
    return addr


def embedding_mask(prefixlen: int) -> int:
    """Mask covering exactly the bits embed_ipv4() writes for ``prefixlen``."""
    result = 0
    for offset, width, _ in _embedding_spans(prefixlen):
        result = set_bits(result, offset, width, (1 << width) - 1)
    return result


# ---------------------------------------------------------------------------
# Parsing boundary
# ---------------------------------------------------------------------------

def parse_ipv6(text: Union[str, int, ipaddress.IPv6Address]) -> int:
    """Parse an IPv6 address (an optional /len or %scope is dropped)."""
    if isinstance(text, int):
        if not 0 <= text <= ALL_ONES:
            raise InvalidAddress(f"Integer {text} is not a 128-bit address")
        return text
    try:
        clean = str(text).strip().split('/')[0].split('%')[0]
        return int(ipaddress.IPv6Address(clean))
    except ValueError as e:
        raise InvalidAddress(f"Invalid IPv6 address '{text}': {e}") from e


def parse_ipv4(text: str) -> ipaddress.IPv4Address:
    """Parse an IPv4 address (an optional /len is dropped)."""
    try:
        return ipaddress.IPv4Address(str(text).strip().split('/')[0])
    except ValueError as e:
        raise InvalidAddress(f"Invalid IPv4 address '{text}': {e}") from e


def make_prefix(addr: int, prefixlen: int) -> ipaddress.IPv6Network:
    """Build an RFC 6052 prefix from an address, clearing the host bits."""
    if prefixlen not in RFC6052_PREFIX_LENGTHS:
        raise InvalidPrefix(
            f"/{prefixlen} is not an RFC 6052 prefix length "
            f"(expected one of {', '.join(str(p) for p in RFC6052_PREFIX_LENGTHS)})"
        )
    return ipaddress.IPv6Network((mask(addr, prefixlen), prefixlen))


def parse_ipv6_prefix(text: str) -> ipaddress.IPv6Network:
    """
    Parse a NAT64 prefix such as "64:ff9b::/96".

    Host bits must be zero and the length must be an RFC 6052 length.
    """
    try:
        network = ipaddress.IPv6Network(str(text).strip())
    except ValueError as e:
        raise InvalidPrefix(f"Invalid IPv6 prefix '{text}': {e}") from e
    return make_prefix(int(network.network_address), network.prefixlen)


def format_ipv6(addr: int) -> str:
    """Canonical textual form of an integer IPv6 address."""
    return str(ipaddress.IPv6Address(addr))

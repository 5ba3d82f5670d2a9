"""
Selection of a source address and derivation of the CLAT IPv6 address.

When the uplink has a SLAAC address built from the MAC address (modified
EUI-64), the CLAT address is that address with the ff:fe marker replaced by
c1:a7. The low 24 bits are kept, so the CLAT address shares the solicited-node
multicast group of its source and proxy-ND needs no extra group membership.
Otherwise a random interface identifier is drawn within the source prefix.
"""

import ipaddress
import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from clat.addrmath import (
    ADDRESS_BITS,
    format_ipv6,
    get_bits,
    mask,
    parse_ipv6,
    set_bits,
    xor_distance,
)
from clat.errors import NoCandidateAddress


logger = logging.getLogger(__name__)

# Interface identifier bits 24..39 (address bits 88..103)
EUI64_MARKER_OFFSET = 64 + 24
EUI64_MARKER_BITS = 16
EUI64_MARKER = 0xFFFE
CLAT_MARKER = 0xC1A7

# Leaves at least 8 random bits for the fallback identifier
MAX_SOURCE_PREFIXLEN = 120


@dataclass(frozen=True)
class CandidateAddress:
    """A global IPv6 address found on a local interface."""
    address: int
    prefixlen: int
    interface: str
    is_eui64: bool

    @classmethod
    def from_text(cls, text: str, prefixlen: int, interface: str) -> "CandidateAddress":
        addr = parse_ipv6(text)
        return cls(addr, prefixlen, interface, is_eui64(addr))

    def __str__(self):
        kind = "EUI-64" if self.is_eui64 else "non-EUI-64"
        return f"{format_ipv6(self.address)}/{self.prefixlen} on {self.interface} ({kind})"


def is_eui64(addr: int) -> bool:
    """True when the interface identifier carries the ff:fe marker."""
    return get_bits(addr, EUI64_MARKER_OFFSET, EUI64_MARKER_BITS) == EUI64_MARKER


def _score(candidate: CandidateAddress, plat_prefix: ipaddress.IPv6Network) -> int:
    masked = mask(candidate.address, plat_prefix.prefixlen)
    return xor_distance(masked, int(plat_prefix.network_address))


def select_source(
    candidates: Sequence[CandidateAddress],
    plat_prefix: ipaddress.IPv6Network
) -> CandidateAddress:
    """
    Choose the address the CLAT address is derived from.

    EUI-64 addresses are preferred over everything else; within a class the
    one closest to the PLAT prefix wins and ties keep the earlier candidate.

    Raises:
        NoCandidateAddress: no candidate is usable.
    """
    best: Optional[CandidateAddress] = None
    best_score = 0
    seen_eui64 = False

    for candidate in candidates:
        if candidate.prefixlen > MAX_SOURCE_PREFIXLEN:
            logger.debug(f"Skipping {candidate}: prefix longer than /{MAX_SOURCE_PREFIXLEN}")
            continue

        score = _score(candidate, plat_prefix)

        if candidate.is_eui64 and not seen_eui64:
            seen_eui64 = True
            best, best_score = candidate, score
        elif seen_eui64 and not candidate.is_eui64:
            logger.debug(f"Skipping {candidate}: an EUI-64 address is available")
        elif best is None or score < best_score:
            best, best_score = candidate, score

    if best is None:
        raise NoCandidateAddress(
            "No usable global IPv6 address to derive the CLAT address from"
        )

    logger.info(f"Using {best} as source for the CLAT address")
    return best


def derive_clat_address(
    candidate: CandidateAddress,
    rng: Optional[random.Random] = None
) -> ipaddress.IPv6Address:
    """
    Derive the CLAT IPv6 address from the chosen source address.

    Args:
        candidate: Source address from select_source().
        rng: Random generator for the non-EUI-64 fallback.

    Returns:
        The CLAT IPv6 address.
    """
    if candidate.is_eui64:
        addr = set_bits(candidate.address, EUI64_MARKER_OFFSET, EUI64_MARKER_BITS, CLAT_MARKER)
        return ipaddress.IPv6Address(addr)

    rng = rng or random.SystemRandom()
    host_bits = ADDRESS_BITS - candidate.prefixlen
    addr = mask(candidate.address, candidate.prefixlen) | rng.getrandbits(host_bits)
    clat_addr = ipaddress.IPv6Address(addr)
    logger.warning(
        f"{format_ipv6(candidate.address)} is not EUI-64 based, "
        f"using random address {clat_addr} (not checked for duplicates)"
    )
    return clat_addr


def synthesize(
    candidates: Sequence[CandidateAddress],
    plat_prefix: ipaddress.IPv6Network,
    rng: Optional[random.Random] = None
) -> ipaddress.IPv6Address:
    """Select a source address and derive the CLAT address from it."""
    return derive_clat_address(select_source(candidates, plat_prefix), rng)


def candidates_from_interface(system, interface: str) -> List[CandidateAddress]:
    """Global IPv6 addresses of ``interface`` as candidates, in listing order."""
    return [
        CandidateAddress.from_text(address, prefixlen, interface)
        for address, prefixlen in system.global_addresses(interface)
    ]

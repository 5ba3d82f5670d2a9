"""
NAT64 (PLAT) prefix discovery, RFC 7050.

A DNS64 resolver synthesizes AAAA records for ``ipv4only.arpa`` by embedding
its well-known A records (192.0.0.170 and 192.0.0.171) into the NAT64
prefix. Locating those addresses inside the answer reveals the prefix and
its length.
"""

import ipaddress
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import dns.exception
import dns.flags
import dns.rdatatype
import dns.resolver

from clat.addrmath import embed_ipv4, embedding_mask, make_prefix, parse_ipv6
from clat.errors import InvalidAddress


WKA_HOSTNAME = "ipv4only.arpa"
WELL_KNOWN_ADDRESSES = (
    ipaddress.IPv4Address("192.0.0.170"),
    ipaddress.IPv4Address("192.0.0.171"),
)

# Longest first, a /96 match must win over a shorter coincidental one
SEARCH_ORDER = (96, 64, 56, 48, 40, 32)


def _build_wka_table() -> Dict[int, Tuple[int, Tuple[int, ...]]]:
    table = {}
    for prefixlen in SEARCH_ORDER:
        patterns = tuple(embed_ipv4(0, prefixlen, int(wka)) for wka in WELL_KNOWN_ADDRESSES)
        table[prefixlen] = (embedding_mask(prefixlen), patterns)
    return table


# prefix length -> (mask, patterns of both well-known addresses)
WKA_TABLE = _build_wka_table()


def match_wka(addr: int) -> Optional[ipaddress.IPv6Network]:
    """
    Find the NAT64 prefix an AAAA answer for ipv4only.arpa was built with.

    Returns:
        The prefix for the longest matching length, or None.
    """
    for prefixlen in SEARCH_ORDER:
        wka_mask, patterns = WKA_TABLE[prefixlen]
        if (addr & wka_mask) in patterns:
            return make_prefix(addr, prefixlen)
    return None


class DnsQuerier:
    """AAAA lookups of ipv4only.arpa through dnspython."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def query_aaaa(self, server: Optional[str]) -> List[str]:
        """
        Query ipv4only.arpa/AAAA with DNSSEC validation disabled.

        Args:
            server: Resolver address, or None for the system resolver.

        Returns:
            The AAAA addresses in the answer.

        Raises:
            dns.exception.DNSException: timeout, NXDOMAIN, no answer, ...
        """
        resolver = dns.resolver.Resolver(configure=server is None)
        if server is not None:
            resolver.nameservers = [server]
        if self.timeout is not None:
            resolver.lifetime = self.timeout
        # CD: the answer is synthetic and would fail validation
        resolver.flags = dns.flags.RD | dns.flags.CD

        answer = resolver.resolve(WKA_HOSTNAME, dns.rdatatype.AAAA, search=False)
        return [rdata.address for rdata in answer]


class PrefixResolver:
    """Discovers the PLAT prefix from the first DNS64 resolver that answers."""

    def __init__(self, querier: Optional[DnsQuerier] = None):
        self.querier = querier or DnsQuerier()
        self.logger = logging.getLogger(__name__)

    def _answers(self, dns_servers: Sequence[str]) -> List[str]:
        servers: List[Optional[str]] = list(dns_servers) or [None]

        for server in servers:
            label = server or "system resolver"
            self.logger.info(f"Querying {label} for {WKA_HOSTNAME} AAAA")
            try:
                addresses = self.querier.query_aaaa(server)
            except dns.exception.DNSException as e:
                self.logger.info(f"No usable answer from {label}: {e}")
                continue
            if addresses:
                self.logger.debug(f"{label} answered: {', '.join(addresses)}")
                return addresses
            self.logger.info(f"Empty answer from {label}")
        return []

    def discover_prefix(self, dns_servers: Sequence[str]) -> Optional[ipaddress.IPv6Network]:
        """
        Discover the NAT64 prefix.

        Args:
            dns_servers: Resolvers to try in order; empty means the system
                         resolver.

        Returns:
            The first discovered prefix, or None when there is none.
        """
        discovered: List[ipaddress.IPv6Network] = []

        for text in self._answers(dns_servers):
            try:
                addr = parse_ipv6(text)
            except InvalidAddress as e:
                self.logger.warning(f"Ignoring malformed AAAA answer: {e}")
                continue

            prefix = match_wka(addr)
            if prefix is None:
                self.logger.debug(f"{text} does not contain a well-known address")
                continue
            if prefix not in discovered:
                self.logger.info(f"Discovered PLAT prefix {prefix} from {text}")
                discovered.append(prefix)

        if not discovered:
            return None

        # TODO: check reachability of each candidate instead of trusting answer order
        if len(discovered) > 1:
            self.logger.warning(
                f"Multiple PLAT prefixes discovered ({', '.join(str(p) for p in discovered)}), "
                f"using {discovered[0]}"
            )
        return discovered[0]

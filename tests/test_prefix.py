"""Tests for NAT64 prefix discovery."""

import ipaddress
from types import SimpleNamespace

import dns.exception
import dns.flags
import dns.rdatatype
import dns.resolver
import pytest

from clat.addrmath import embed_ipv4
from clat.prefix import DnsQuerier, PrefixResolver, WELL_KNOWN_ADDRESSES, match_wka
from tests.fakes import FakeQuerier


def synthesize_aaaa(prefix: str, prefixlen: int, wka=WELL_KNOWN_ADDRESSES[0]) -> int:
    return embed_ipv4(int(ipaddress.IPv6Address(prefix)), prefixlen, int(wka))


@pytest.mark.parametrize("prefix,prefixlen", [
    ("2001:db8::", 32),
    ("2001:db8:100::", 40),
    ("2001:db8:122::", 48),
    ("2001:db8:122:300::", 56),
    ("2001:db8:122:344::", 64),
    ("64:ff9b::", 96),
])
def test_each_rfc6052_length_is_detected(prefix, prefixlen):
    for wka in WELL_KNOWN_ADDRESSES:
        addr = synthesize_aaaa(prefix, prefixlen, wka)
        assert match_wka(addr) == ipaddress.IPv6Network(f"{prefix}/{prefixlen}")


def test_longest_prefix_wins():
    # WKA embedded both at /56 and at /96 in the same address
    addr = synthesize_aaaa("2001:db8:122:300::", 56) | int(WELL_KNOWN_ADDRESSES[1])
    assert match_wka(addr).prefixlen == 96
    assert match_wka(addr) == ipaddress.IPv6Network("2001:db8:122:3c0:0:aa::/96")


def test_unrelated_address_does_not_match():
    assert match_wka(int(ipaddress.IPv6Address("2001:db8::1"))) is None
    assert match_wka(int(ipaddress.IPv6Address("64:ff9b::c000:ac"))) is None


def test_discover_from_first_answering_server():
    querier = FakeQuerier({
        "2001:db8::53": dns.exception.Timeout(),
        "2001:db8::54": [],
        "2001:db8::55": ["64:ff9b::c000:aa", "64:ff9b::c000:ab"],
        "2001:db8::56": ["2001:db8:64::c000:aa"],
    })
    resolver = PrefixResolver(querier)

    prefix = resolver.discover_prefix(["2001:db8::53", "2001:db8::54", "2001:db8::55", "2001:db8::56"])

    assert prefix == ipaddress.IPv6Network("64:ff9b::/96")
    assert querier.queried == ["2001:db8::53", "2001:db8::54", "2001:db8::55"]


def test_empty_server_list_uses_system_resolver():
    querier = FakeQuerier({None: ["64:ff9b::c000:aa"]})
    prefix = PrefixResolver(querier).discover_prefix([])
    assert prefix == ipaddress.IPv6Network("64:ff9b::/96")
    assert querier.queried == [None]


def test_not_found_is_none():
    querier = FakeQuerier({None: dns.resolver.NXDOMAIN()})
    assert PrefixResolver(querier).discover_prefix([]) is None


def test_non_matching_answers_are_skipped():
    querier = FakeQuerier({None: ["2001:db8::1", "garbage", "2001:db8:64::c000:ab"]})
    prefix = PrefixResolver(querier).discover_prefix([])
    assert prefix == ipaddress.IPv6Network("2001:db8:64::/96")


def test_multiple_prefixes_keep_first(caplog):
    querier = FakeQuerier({None: ["2001:db8:64::c000:aa", "64:ff9b::c000:aa", "2001:db8:64::c000:ab"]})
    prefix = PrefixResolver(querier).discover_prefix([])
    assert prefix == ipaddress.IPv6Network("2001:db8:64::/96")
    assert "Multiple PLAT prefixes" in caplog.text


@pytest.fixture
def resolve_calls(monkeypatch):
    """Capture Resolver.resolve() calls and answer with two AAAA records."""
    calls = []

    def fake_resolve(self, qname, rdtype, **kwargs):
        calls.append((self, qname, rdtype, kwargs))
        return [SimpleNamespace(address="64:ff9b::c000:aa"), SimpleNamespace(address="64:ff9b::c000:ab")]

    monkeypatch.setattr(dns.resolver.Resolver, "resolve", fake_resolve)
    return calls


def nameserver_addresses(resolver):
    # dnspython >= 2.4 wraps nameservers in Nameserver objects
    return [getattr(ns, "address", ns) for ns in resolver.nameservers]


def test_query_given_server_alone_with_checking_disabled(resolve_calls, monkeypatch):
    def no_system_config(self, filename):
        raise AssertionError("system resolver configuration must not be read")

    monkeypatch.setattr(dns.resolver.Resolver, "read_resolv_conf", no_system_config)

    addresses = DnsQuerier(timeout=2.5).query_aaaa("2001:db8::53")

    assert addresses == ["64:ff9b::c000:aa", "64:ff9b::c000:ab"]
    resolver, qname, rdtype, kwargs = resolve_calls[0]
    assert qname == "ipv4only.arpa"
    assert rdtype == dns.rdatatype.AAAA
    assert kwargs == {"search": False}
    assert resolver.flags == dns.flags.RD | dns.flags.CD
    assert nameserver_addresses(resolver) == ["2001:db8::53"]
    assert resolver.lifetime == 2.5


def test_query_without_server_uses_system_resolver(resolve_calls, monkeypatch):
    configured = []

    def system_config(self, filename):
        configured.append(filename)
        self.nameservers = ["2001:db8::1"]

    monkeypatch.setattr(dns.resolver.Resolver, "read_resolv_conf", system_config)

    addresses = DnsQuerier().query_aaaa(None)

    assert len(addresses) == 2
    assert len(configured) == 1
    resolver = resolve_calls[0][0]
    assert nameserver_addresses(resolver) == ["2001:db8::1"]
    assert resolver.flags == dns.flags.RD | dns.flags.CD

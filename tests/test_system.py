"""Tests for the iproute2/sysctl/ip6tables wrapper."""

import json
from pathlib import Path

from clat.config import ClatConfig
from clat.system import SystemMutator
from tests.fakes import FakeRunner


ADDR_JSON = json.dumps([{
    "ifindex": 2,
    "ifname": "eth0",
    "addr_info": [
        {"family": "inet6", "local": "2001:db8::211:22ff:fe33:4455", "prefixlen": 64, "scope": "global"},
        {"family": "inet6", "local": "2001:db8::bad", "prefixlen": 64, "scope": "global", "dadfailed": True},
        {"family": "inet6", "local": "2001:db8:1::5", "prefixlen": 56, "scope": "global"},
        {"family": "inet6", "local": "fe80::211:22ff:fe33:4455", "prefixlen": 64, "scope": "link"},
    ],
}])


def make_system(outputs=None):
    runner = FakeRunner(outputs)
    return SystemMutator(ClatConfig(), runner), runner


def test_global_addresses_from_json():
    system, runner = make_system({"addr show dev eth0": ADDR_JSON})

    assert system.global_addresses("eth0") == [
        ("2001:db8::211:22ff:fe33:4455", 64),
        ("2001:db8:1::5", 56),
    ]
    assert runner.commands == ["ip -json -6 addr show dev eth0 scope global"]


def test_route_device():
    system, _ = make_system({"route get": '[{"dst":"64:ff9b::","dev":"wlan0","prefsrc":"2001:db8::1"}]'})
    assert system.route_device("64:ff9b::") == "wlan0"


def test_route_device_without_output():
    system, _ = make_system()
    assert system.route_device("64:ff9b::") is None


def test_list_interfaces():
    system, _ = make_system({"link show": '[{"ifname":"lo"},{"ifname":"eth0"}]'})
    assert system.list_interfaces() == ["lo", "eth0"]


def test_sysctl_commands():
    system, runner = make_system({"sysctl -n": "1\n"})
    assert system.get_sysctl("net.ipv6.conf.all.forwarding") == "1"
    system.set_sysctl("net/ipv6/conf/eth0/proxy_ndp", "1")
    assert runner.commands[-1] == "sysctl -w net/ipv6/conf/eth0/proxy_ndp=1"


def test_ipv4_default_routes_lines():
    system, _ = make_system({"route show default": "default via 10.0.0.1 dev eth0 metric 100\n\n"})
    assert system.ipv4_default_routes() == ["default via 10.0.0.1 dev eth0 metric 100"]


def test_mutation_commands():
    system, runner = make_system()
    system.add_proxy_neighbor("2001:db8::c1a7", "eth0")
    system.make_tun(Path("/run/tayga.conf"))
    system.add_forward_accept("clat", "eth0")
    system.del_forward_accept("clat", "eth0")
    system.add_default_route4("clat", 2048, 1260, 1220)
    system.add_default_route4("clat", 0, 0, 0)
    system.del_route4("default via 10.0.0.1 dev eth0 proto dhcp metric 100")
    system.restore_route4("default via 10.0.0.1 dev eth0 metric 100")

    assert runner.commands == [
        "ip -6 neigh add proxy 2001:db8::c1a7 dev eth0",
        "tayga --mktun --config /run/tayga.conf",
        "ip6tables -I FORWARD -i clat -o eth0 -j ACCEPT",
        "ip6tables -D FORWARD -i clat -o eth0 -j ACCEPT",
        "ip -4 route add default dev clat metric 2048 mtu 1260 advmss 1220",
        "ip -4 route add default dev clat",
        "ip -4 route del default via 10.0.0.1 dev eth0 proto dhcp metric 100",
        "ip -4 route add default via 10.0.0.1 dev eth0 metric 100",
    ]

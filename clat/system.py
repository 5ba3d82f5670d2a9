"""
System mutation and inspection through iproute2, sysctl, ip6tables and tayga.

Every mutating method here has an inverse; the provisioning steps pair them
up and record the inverse in the ledger.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from clat.commands import CommandRunner
from clat.config import ClatConfig


class SystemMutator:
    """Thin wrapper over the commands that read and change network state."""

    def __init__(self, config: ClatConfig, runner: CommandRunner):
        self.config = config
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    def _ip(self, *args: str, readonly: bool = False) -> subprocess.CompletedProcess:
        return self.runner.run([self.config.cmd_ip, *args], readonly=readonly)

    def _ip_json(self, *args: str) -> list:
        result = self._ip("-json", *args, readonly=True)
        output = result.stdout.strip()
        if not output:
            return []
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Could not parse output of 'ip {' '.join(args)}': {e}")
            return []

    # ------------------------------------------------------------------
    # sysctl
    # ------------------------------------------------------------------

    def get_sysctl(self, key: str) -> str:
        """Read a sysctl value."""
        result = self.runner.run([self.config.cmd_sysctl, "-n", key], readonly=True)
        return result.stdout.strip()

    def set_sysctl(self, key: str, value: str):
        """Write a sysctl value."""
        self.runner.run([self.config.cmd_sysctl, "-w", f"{key}={value}"])

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def list_interfaces(self) -> List[str]:
        """Names of all network interfaces."""
        return [link["ifname"] for link in self._ip_json("link", "show") if "ifname" in link]

    def global_addresses(self, interface: str) -> List[Tuple[str, int]]:
        """
        Globally-scoped IPv6 addresses configured on ``interface``.

        Returns:
            List of (address, prefix length) in the kernel's listing order.
        """
        addresses = []
        for link in self._ip_json("-6", "addr", "show", "dev", interface, "scope", "global"):
            for info in link.get("addr_info", []):
                if info.get("family") != "inet6" or info.get("scope") != "global":
                    continue
                if info.get("dadfailed"):
                    self.logger.debug(f"Skipping {info.get('local')}: duplicate address detection failed")
                    continue
                addresses.append((info["local"], int(info["prefixlen"])))
        return addresses

    def route_device(self, destination: str) -> Optional[str]:
        """Outgoing device the kernel would use to reach ``destination``."""
        for route in self._ip_json("-6", "route", "get", destination):
            if route.get("dev"):
                return route["dev"]
        return None

    def ipv4_default_routes(self) -> List[str]:
        """Current IPv4 default routes, one ``ip route`` spec per entry."""
        result = self._ip("-4", "route", "show", "default", readonly=True)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Proxy neighbour
    # ------------------------------------------------------------------

    def add_proxy_neighbor(self, address: str, interface: str):
        self._ip("-6", "neigh", "add", "proxy", address, "dev", interface)

    def del_proxy_neighbor(self, address: str, interface: str):
        self._ip("-6", "neigh", "del", "proxy", address, "dev", interface)

    # ------------------------------------------------------------------
    # Translator device
    # ------------------------------------------------------------------

    def make_tun(self, conffile: Path):
        """Create the persistent TUN device described by a TAYGA config file."""
        self.runner.run([self.config.cmd_tayga, "--mktun", "--config", str(conffile)])

    def remove_tun(self, conffile: Path):
        self.runner.run([self.config.cmd_tayga, "--rmtun", "--config", str(conffile)])

    def link_up(self, interface: str):
        self._ip("link", "set", "up", "dev", interface)

    def add_address(self, address: str, interface: str):
        self._ip("address", "add", address, "dev", interface)

    # ------------------------------------------------------------------
    # Firewall
    # ------------------------------------------------------------------

    def _forward_rule(self, action: str, in_dev: str, out_dev: str):
        self.runner.run([
            self.config.cmd_ip6tables, action, "FORWARD",
            "-i", in_dev, "-o", out_dev, "-j", "ACCEPT"
        ])

    def add_forward_accept(self, in_dev: str, out_dev: str):
        self._forward_rule("-I", in_dev, out_dev)

    def del_forward_accept(self, in_dev: str, out_dev: str):
        self._forward_rule("-D", in_dev, out_dev)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def add_route6(self, destination: str, interface: str):
        self._ip("-6", "route", "add", destination, "dev", interface)

    def del_route6(self, destination: str, interface: str):
        self._ip("-6", "route", "del", destination, "dev", interface)

    def _default_route4_args(self, interface: str, metric: int, mtu: int, advmss: int) -> List[str]:
        args = ["default", "dev", interface]
        if metric:
            args += ["metric", str(metric)]
        if mtu:
            args += ["mtu", str(mtu)]
        if advmss:
            args += ["advmss", str(advmss)]
        return args

    def add_default_route4(self, interface: str, metric: int, mtu: int, advmss: int):
        self._ip("-4", "route", "add", *self._default_route4_args(interface, metric, mtu, advmss))

    def del_default_route4(self, interface: str, metric: int):
        args = ["default", "dev", interface]
        if metric:
            args += ["metric", str(metric)]
        self._ip("-4", "route", "del", *args)

    def del_route4(self, route_spec: str):
        """Delete a route exactly as ``ip -4 route show`` printed it."""
        self._ip("-4", "route", "del", *route_spec.split())

    def restore_route4(self, route_spec: str):
        """Re-add a route exactly as ``ip -4 route show`` printed it."""
        self._ip("-4", "route", "add", *route_spec.split())

"""
Forward provisioning steps.

The steps run in a fixed order and each one records the inverse of every
change it makes in the ledger as soon as that change has succeeded. A step
that finds the system already in the desired state changes and records
nothing, so rollback never clobbers state that predates the run.
"""

import ipaddress
import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Tuple

from clat.config import ClatConfig
from clat.errors import ProvisioningError
from clat.ledger import ProvisioningLedger
from clat.system import SystemMutator


logger = logging.getLogger(__name__)

FORWARDING_KEY = "net.ipv6.conf.all.forwarding"


@dataclass
class ProvisioningContext:
    """Everything the steps need, resolved before the first one runs."""
    config: ClatConfig
    system: SystemMutator
    ledger: ProvisioningLedger
    plat_dev: str
    plat_prefix: ipaddress.IPv6Network
    clat_v6_addr: ipaddress.IPv6Address
    conffile: Path


def iface_sysctl(interface: str, setting: str) -> str:
    # Slash form, interface names may contain dots (VLANs)
    return f"net/ipv6/conf/{interface}/{setting}"


@contextmanager
def command_errors(step: str):
    """Turn a failed system command inside the block into a ProvisioningError."""
    try:
        yield
    except subprocess.CalledProcessError as e:
        cmd_str = e.cmd if isinstance(e.cmd, str) else ' '.join(e.cmd)
        detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
        raise ProvisioningError(step, f"'{cmd_str}' failed: {detail}") from e
    except OSError as e:
        raise ProvisioningError(step, str(e)) from e


def ensure_sysctl(ledger: ProvisioningLedger, system: SystemMutator, key: str, value: str) -> bool:
    """
    Set a sysctl unless it already holds ``value``.

    Returns:
        True if the value was changed (and the change recorded).
    """
    current = system.get_sysctl(key)
    if current == value:
        logger.info(f"{key} is already {value}")
        return False

    logger.info(f"Setting {key} = {value} (was {current})")
    system.set_sysctl(key, value)
    ledger.record(
        f"set {key} to {value}",
        lambda: system.set_sysctl(key, current)
    )
    return True


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def enable_forwarding(ctx: ProvisioningContext):
    ensure_sysctl(ctx.ledger, ctx.system, FORWARDING_KEY, "1")


def relax_accept_ra(ctx: ProvisioningContext):
    """
    Keep accepting router advertisements now that forwarding is on.

    With forwarding enabled the kernel ignores RAs on interfaces where
    accept_ra is 1; 2 restores the host behaviour.
    """
    for interface in ctx.system.list_interfaces():
        if interface in ("lo", ctx.config.clat_dev):
            continue
        key = iface_sysctl(interface, "accept_ra")
        try:
            current = ctx.system.get_sysctl(key)
        except subprocess.CalledProcessError:
            # No IPv6 on this link (CAN, MTU below 1280, ...)
            logger.debug(f"Skipping {interface}: {key} is not readable")
            continue
        if current == "1":
            ensure_sysctl(ctx.ledger, ctx.system, key, "2")


def enable_proxy_ndp(ctx: ProvisioningContext):
    ensure_sysctl(ctx.ledger, ctx.system, iface_sysctl(ctx.plat_dev, "proxy_ndp"), "1")


def add_proxy_neighbor(ctx: ProvisioningContext):
    system, address, dev = ctx.system, str(ctx.clat_v6_addr), ctx.plat_dev
    system.add_proxy_neighbor(address, dev)
    ctx.ledger.record(
        f"proxy neighbour {address} on {dev}",
        lambda: system.del_proxy_neighbor(address, dev)
    )


def create_translator_device(ctx: ProvisioningContext):
    system, conffile, dev = ctx.system, ctx.conffile, ctx.config.clat_dev
    system.make_tun(conffile)
    ctx.ledger.record(
        f"translator device {dev}",
        lambda: system.remove_tun(conffile)
    )
    # Removing the device drops its link state and address as well
    system.link_up(dev)
    system.add_address(str(ctx.config.clat_v4_addr), dev)


def add_firewall_rules(ctx: ProvisioningContext):
    system = ctx.system
    for in_dev, out_dev in ((ctx.config.clat_dev, ctx.plat_dev), (ctx.plat_dev, ctx.config.clat_dev)):
        system.add_forward_accept(in_dev, out_dev)
        ctx.ledger.record(
            f"ip6tables FORWARD accept {in_dev} -> {out_dev}",
            lambda i=in_dev, o=out_dev: system.del_forward_accept(i, o)
        )


def add_clat_route(ctx: ProvisioningContext):
    system, address, dev = ctx.system, str(ctx.clat_v6_addr), ctx.config.clat_dev
    system.add_route6(address, dev)
    ctx.ledger.record(
        f"route {address} via {dev}",
        lambda: system.del_route6(address, dev)
    )


def install_default_route(ctx: ProvisioningContext):
    """
    Route IPv4 through the translator.

    ``ip route replace`` only matches a route with the same metric, so
    replacing means deleting every existing default route first. Each one
    is re-added on unwind.
    """
    config, system, dev = ctx.config, ctx.system, ctx.config.clat_dev
    metric, mtu, advmss = config.v4_defaultroute_metric, config.v4_defaultroute_mtu, config.advmss

    if config.v4_defaultroute_replace:
        for route in system.ipv4_default_routes():
            logger.info(f"Removing IPv4 default route: {route}")
            system.del_route4(route)
            ctx.ledger.record(
                f"remove IPv4 route '{route}'",
                lambda r=route: system.restore_route4(r)
            )

    system.add_default_route4(dev, metric, mtu, advmss)
    ctx.ledger.record(
        f"IPv4 default route via {dev}",
        lambda: system.del_default_route4(dev, metric)
    )


Step = Tuple[str, Callable[[ProvisioningContext], None]]


def forward_steps(config: ClatConfig) -> List[Step]:
    """The enabled steps, in the order they must run."""
    steps: List[Step] = []
    if config.forwarding_enable:
        steps.append(("enable IPv6 forwarding", enable_forwarding))
        steps.append(("keep accepting router advertisements", relax_accept_ra))
    if config.proxynd_enable:
        steps.append(("enable proxy NDP", enable_proxy_ndp))
        steps.append(("add proxy neighbour", add_proxy_neighbor))
    steps.append(("create translator device", create_translator_device))
    if config.ip6tables_enable:
        steps.append(("add firewall rules", add_firewall_rules))
    steps.append(("route CLAT address to translator", add_clat_route))
    if config.v4_defaultroute_enable:
        steps.append(("install IPv4 default route", install_default_route))
    return steps


def provision(ctx: ProvisioningContext):
    """
    Run every enabled step in order.

    Raises:
        ProvisioningError: a step failed; later steps were not attempted.
            The caller unwinds the ledger.
    """
    for name, step in forward_steps(ctx.config):
        logger.info(f"Provisioning: {name}")
        with command_errors(name):
            step(ctx)

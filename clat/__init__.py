"""
pyclat - 464XLAT customer-side translator (CLAT) provisioning.

Discovers the NAT64 (PLAT) prefix, derives an IPv6 address for the local
translator, wires up forwarding, proxy-ND, firewall and routes around a
supervised TAYGA process, and rolls every change back when TAYGA exits.
"""

__version__ = "0.1.0"

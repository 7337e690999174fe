"""Local network detection for picking a default scan range.

Candidate ranges come from the host's IPv4 interfaces (via psutil). Ranges
that must never be swept are dropped: loopback, link-local, the unspecified
network, the default container bridges (172.17-19.x.x) and anything on a
docker/br-/veth interface.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Mapping

import psutil

from netpulse.config import Settings
from netpulse.core.models import LocalNetwork

logger = logging.getLogger(__name__)

AUTO = "auto"
FALLBACK_RANGE = "192.168.1.0/24"

_VIRTUAL_INTERFACES = ("docker", "br-", "veth")
_CONTAINER_BRIDGES = [
    ipaddress.ip_network("172.17.0.0/16"),
    ipaddress.ip_network("172.18.0.0/16"),
    ipaddress.ip_network("172.19.0.0/16"),
]
_PRIVATE_PRIORITY = [
    (ipaddress.ip_network("192.168.0.0/16"), 1),
    (ipaddress.ip_network("10.0.0.0/8"), 2),
    (ipaddress.ip_network("172.16.0.0/12"), 3),
]
_OTHER_PRIORITY = 4
_COMMON_PRIORITY = 5

# Interfaces on networks wider than this are scanned as the /24 around the host
_MAX_AUTO_PREFIX = 24

_COMMON_RANGES = [
    ("192.168.1.0/24", "Home network"),
    ("192.168.0.0/24", "Router network"),
    ("10.0.0.0/24", "Office network"),
    ("172.16.0.0/24", "Private network"),
]


def is_excluded_network(network_range: str, interface: str | None = None) -> bool:
    """True for ranges that auto-detection must never offer."""
    if interface and interface.startswith(_VIRTUAL_INTERFACES):
        return True
    try:
        network = ipaddress.ip_network(network_range, strict=False)
    except ValueError:
        return True
    if network.version != 4:
        return True
    if network.is_loopback or network.is_link_local or network.network_address.is_unspecified:
        return True
    return any(network.network_address in bridge for bridge in _CONTAINER_BRIDGES)


def _priority(network: ipaddress.IPv4Network) -> int:
    for block, priority in _PRIVATE_PRIORITY:
        if network.subnet_of(block):
            return priority
    return _OTHER_PRIORITY


def list_local_networks(
    addrs: Mapping[str, list[Any]] | None = None,
    stats: Mapping[str, Any] | None = None,
) -> list[LocalNetwork]:
    """Usable IPv4 networks of the interfaces that are up, best first."""
    if addrs is None:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    stats = stats or {}

    found: dict[str, LocalNetwork] = {}
    for name, entries in addrs.items():
        if name in stats and not stats[name].isup:
            continue
        for entry in entries:
            if entry.family != socket.AF_INET or not entry.netmask:
                continue
            iface = ipaddress.ip_interface(f"{entry.address}/{entry.netmask}")
            network = iface.network
            if network.prefixlen < _MAX_AUTO_PREFIX:
                network = ipaddress.ip_interface(f"{entry.address}/{_MAX_AUTO_PREFIX}").network
            network_range = str(network)
            if is_excluded_network(network_range, name):
                logger.debug("Excluded network %s on %s", network_range, name)
                continue
            if network_range in found:
                continue
            found[network_range] = LocalNetwork(
                network_range=network_range,
                interface=name,
                address=entry.address,
                source="interface",
                priority=_priority(network),
                description=f"Host network via {name}",
            )
    return sorted(found.values(), key=lambda n: (n.priority, n.interface))


def recommended_ranges(networks: list[LocalNetwork]) -> list[LocalNetwork]:
    """Detected networks followed by the common private ranges not already listed."""
    seen = {n.network_range for n in networks}
    common = [
        LocalNetwork(
            network_range=network_range,
            interface=AUTO,
            source="common",
            priority=_COMMON_PRIORITY,
            description=description,
        )
        for network_range, description in _COMMON_RANGES
        if network_range not in seen
    ]
    return [*networks, *common]


def detect_network(settings: Settings, networks: list[LocalNetwork] | None = None) -> str:
    """Pick the range an "auto" scan should cover.

    The configured override wins, then the best local network, then a
    fixed fallback.
    """
    override = settings.host_network_range
    if override and override.strip().lower() != AUTO:
        logger.info("Using configured network range %s", override)
        return override.strip()
    if networks is None:
        networks = list_local_networks()
    if networks:
        best = networks[0]
        logger.info("Auto-detected network %s (%s)", best.network_range, best.description)
        return best.network_range
    logger.warning("No usable local network found, falling back to %s", FALLBACK_RANGE)
    return FALLBACK_RANGE


def resolve_network_range(network_range: str | None, settings: Settings) -> str:
    """Return `network_range`, or the detected network when it is empty or "auto"."""
    if not network_range or network_range.strip().lower() == AUTO:
        return detect_network(settings)
    return network_range.strip()

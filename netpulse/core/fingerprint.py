"""Device fingerprinting: hostname resolution and device-type classification."""

from __future__ import annotations

import asyncio
import logging
import socket

from netpulse.core.models import DeviceType, SnmpData

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Hostname resolution
# ---------------------------------------------------------------------------

def _resolve_hostname_dns(address: str) -> str | None:
    """Reverse DNS lookup."""
    try:
        hostname, _, _ = socket.gethostbyaddr(address)
        return hostname.rstrip(".") or None
    except (socket.herror, socket.gaierror, OSError):
        return None


def heuristic_name(address: str) -> str | None:
    """Guess a name from the last octet when reverse lookup fails."""
    parts = address.split(".")
    if len(parts) != 4 or not parts[3].isdigit():
        return None
    last = int(parts[3])
    slug = address.replace(".", "-")
    if last == 1:
        return f"gateway-{slug}"
    if last == 254:
        return f"router-{slug}"
    if 100 <= last <= 199:
        return f"device-{slug}"
    return None


async def resolve_hostname(address: str, fallback: str | None = None) -> str | None:
    """Reverse lookup first, then `fallback` (e.g. SNMP sysName), then the
    last-octet heuristic."""
    try:
        hostname = await asyncio.to_thread(_resolve_hostname_dns, address)
    except Exception as exc:
        logger.debug("Reverse lookup for %s failed: %s", address, exc)
        hostname = None
    return hostname or fallback or heuristic_name(address)


# ---------------------------------------------------------------------------
# Device type inference
# ---------------------------------------------------------------------------

_DESCR_KEYWORDS: list[tuple[tuple[str, ...], DeviceType]] = [
    (("router",), DeviceType.ROUTER),
    (("switch",), DeviceType.SWITCH),
    (("printer", "laserjet", "officejet"), DeviceType.PRINTER),
    (("camera", "ipcam", "webcam"), DeviceType.CAMERA),
    (("nas", "synology", "qnap"), DeviceType.NAS),
    (("linux", "windows", "darwin", "mac os", "freebsd", "unix"), DeviceType.COMPUTER),
]

_SNMP_PORT = 161
_TELNET_PORT = 23
_HTTP_PORTS = {80, 443}


def _classify_from_descr(sys_descr: str) -> DeviceType | None:
    words = sys_descr.lower()
    tokens = set(words.replace(",", " ").replace(";", " ").split())
    for keywords, device_type in _DESCR_KEYWORDS:
        for keyword in keywords:
            # Short keywords must match a whole word ("nas" inside "dynastic" is not a NAS)
            if (keyword in tokens) if len(keyword) <= 3 else (keyword in words):
                return device_type
    return None


def _classify_from_ports(open_ports: list[int] | set[int]) -> DeviceType | None:
    ports = set(open_ports)
    if _SNMP_PORT in ports:
        return DeviceType.SWITCH
    if _TELNET_PORT in ports and 80 not in ports:
        return DeviceType.ROUTER
    if ports & _HTTP_PORTS:
        return DeviceType.SERVER
    return None


def classify_device(
    open_ports: list[int] | set[int],
    snmp_data: SnmpData | None = None,
) -> DeviceType:
    """Classify a host: SNMP sysDescr keywords, then open-port signature."""
    if snmp_data and snmp_data.sys_descr:
        by_descr = _classify_from_descr(snmp_data.sys_descr)
        if by_descr is not None:
            return by_descr
    return _classify_from_ports(open_ports) or DeviceType.UNKNOWN

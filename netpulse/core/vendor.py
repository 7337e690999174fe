"""MAC vendor/manufacturer resolution via OUI prefix."""

from __future__ import annotations

import logging

from mac_vendor_lookup import AsyncMacLookup, VendorNotFoundError

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR = "Unknown"

# Common infrastructure OUIs, checked before the IEEE registry
OUI_VENDORS: dict[str, str] = {
    "00:00:0C": "Cisco",
    "00:1B:54": "Cisco",
    "00:05:85": "Juniper",
    "00:09:0F": "Fortinet",
    "00:1A:1E": "Aruba",
    "00:0C:42": "MikroTik",
    "4C:5E:0C": "MikroTik",
    "F0:9F:C2": "Ubiquiti",
    "00:14:BF": "Linksys",
    "00:1E:0B": "HP",
    "3C:D9:2B": "HP",
    "00:00:48": "Epson",
    "00:80:77": "Brother",
    "00:40:8C": "Axis",
    "28:57:BE": "Hikvision",
    "00:11:32": "Synology",
    "00:08:9B": "QNAP",
    "00:90:A9": "Western Digital",
    "00:50:56": "VMware",
    "00:0C:29": "VMware",
    "00:15:5D": "Microsoft",
    "B8:27:EB": "Raspberry Pi Foundation",
    "DC:A6:32": "Raspberry Pi Trading",
    "00:03:93": "Apple",
    "A4:83:E7": "Apple",
}

_registry: AsyncMacLookup | None = None


def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to uppercase colon-separated format."""
    mac = mac.replace("-", ":").upper()
    parts = mac.split(":")
    return ":".join(p.zfill(2) for p in parts)


def oui_prefix(mac: str) -> str:
    """First three octets of a MAC address."""
    return ":".join(normalize_mac(mac).split(":")[:3])


def _get_registry() -> AsyncMacLookup:
    """Lazily create the IEEE registry lookup."""
    global _registry
    if _registry is None:
        _registry = AsyncMacLookup()
    return _registry


async def lookup_vendor(mac: str, *, use_registry: bool = True) -> str:
    """Resolve a MAC address to its vendor name.

    Returns "Unknown" when neither the local OUI table nor the registry knows
    the prefix.
    """
    vendor = OUI_VENDORS.get(oui_prefix(mac))
    if vendor:
        return vendor
    if not use_registry:
        return UNKNOWN_VENDOR
    try:
        result = await _get_registry().lookup(normalize_mac(mac))
        return result or UNKNOWN_VENDOR
    except (VendorNotFoundError, KeyError, ValueError):
        return UNKNOWN_VENDOR
    except Exception as exc:
        logger.debug("Vendor registry lookup failed for %s: %s", mac, exc)
        return UNKNOWN_VENDOR

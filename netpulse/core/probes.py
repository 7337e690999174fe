"""Probe strategies: ICMP reachability, neighbor-table lookup and TCP port scan.

Each probe swallows its own transport errors and reports a negative result
instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
import sys
import time

from netpulse.core.models import ProbeResult
from netpulse.core.vendor import normalize_mac

logger = logging.getLogger(__name__)

SERVICE_NAMES: dict[int, str] = {
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    161: "SNMP",
    443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    3389: "RDP",
    5900: "VNC",
}

_RTT_RE = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_MAC_RE = re.compile(r"([0-9a-fA-F]{1,2}(?:[:-][0-9a-fA-F]{1,2}){5})")


def service_name(port: int) -> str:
    return SERVICE_NAMES.get(port, f"Port-{port}")


# ---------------------------------------------------------------------------
# ICMP reachability
# ---------------------------------------------------------------------------

def _ping_command(address: str, timeout: int) -> list[str]:
    if sys.platform == "win32":
        return ["ping", "-n", "1", "-w", str(timeout * 1000), address]
    return ["ping", "-c", "1", "-W", str(timeout), address]


def _ping_once(address: str, timeout: int) -> ProbeResult:
    """Send a single echo request and parse the round-trip time."""
    start = time.monotonic()
    try:
        result = subprocess.run(
            _ping_command(address, timeout),
            capture_output=True,
            text=True,
            timeout=timeout + 2,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
        logger.debug("Ping %s failed: %s", address, exc)
        return ProbeResult(alive=False)

    if result.returncode != 0:
        return ProbeResult(alive=False)

    match = _RTT_RE.search(result.stdout)
    if match:
        rtt = float(match.group(1))
    else:
        rtt = (time.monotonic() - start) * 1000
    return ProbeResult(alive=True, response_time_ms=round(rtt, 2))


async def ping_host(address: str, timeout: int = 3, retries: int = 1) -> ProbeResult:
    """Reachability probe with a bounded timeout and a fixed retry count."""
    for attempt in range(retries + 1):
        result = await asyncio.to_thread(_ping_once, address, timeout)
        if result.alive:
            return result
        logger.debug("Ping %s: no reply (attempt %d/%d)", address, attempt + 1, retries + 1)
    return ProbeResult(alive=False)


# ---------------------------------------------------------------------------
# Neighbor (ARP) table
# ---------------------------------------------------------------------------

def _neighbor_commands(address: str) -> list[list[str]]:
    if sys.platform == "win32":
        return [["arp", "-a", address]]
    return [["ip", "neigh", "show", address], ["arp", "-n", address]]


def parse_neighbor_output(output: str) -> str | None:
    """Extract a usable MAC address from `ip neigh` / `arp` output."""
    lowered = output.lower()
    if "no entry" in lowered or "incomplete" in lowered or "failed" in lowered:
        return None
    match = _MAC_RE.search(output)
    if not match:
        return None
    mac = normalize_mac(match.group(1))
    # Skip multicast and broadcast MACs
    if mac.startswith("01:") or mac == "FF:FF:FF:FF:FF:FF" or mac == "00:00:00:00:00:00":
        return None
    return mac


def _lookup_neighbor_sync(address: str) -> str | None:
    for cmd in _neighbor_commands(address):
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=2)
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
            logger.debug("Neighbor lookup %s via %s failed: %s", address, cmd[0], exc)
            continue
        mac = parse_neighbor_output(result.stdout)
        if mac:
            return mac
    return None


async def lookup_neighbor(address: str) -> str | None:
    """Look the address up in the local neighbor table; return its MAC on hit."""
    return await asyncio.to_thread(_lookup_neighbor_sync, address)


# ---------------------------------------------------------------------------
# TCP port scan
# ---------------------------------------------------------------------------

async def check_port(address: str, port: int, timeout: float = 2.0) -> bool:
    """Check if a TCP port accepts connections."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port),
            timeout=timeout,
        )
        writer.close()
        await writer.wait_closed()
        return True
    except (asyncio.TimeoutError, OSError):
        return False


async def scan_ports(address: str, ports: list[int], timeout: float = 2.0) -> list[int]:
    """TCP connect scan; returns the sorted list of open ports."""
    results = await asyncio.gather(
        *(check_port(address, port, timeout) for port in ports),
        return_exceptions=True,
    )
    return sorted(port for port, ok in zip(ports, results) if ok is True)

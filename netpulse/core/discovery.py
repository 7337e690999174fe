"""Discovery engine: runs probe strategies against one address and merges the results."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from netpulse.config import Settings
from netpulse.core import fingerprint, probes, snmp, vendor
from netpulse.core.errors import UnreachableError
from netpulse.core.models import DiscoveryResult, ProbeResult

logger = logging.getLogger(__name__)


class DiscoveryMethod(str, Enum):
    PING = "ping"
    ARP = "arp"
    PORT = "port"
    SNMP = "snmp"


_ALIASES: dict[str, DiscoveryMethod] = {
    "reachability-probe": DiscoveryMethod.PING,
    "icmp": DiscoveryMethod.PING,
    "mac": DiscoveryMethod.ARP,
    "port-scan": DiscoveryMethod.PORT,
}


def normalize_methods(methods: list[str]) -> list[DiscoveryMethod]:
    """Map method names (and aliases) to DiscoveryMethod, keeping caller order."""
    ordered: list[DiscoveryMethod] = []
    for name in methods:
        key = name.strip().lower()
        method = _ALIASES.get(key) or DiscoveryMethod(key)
        if method not in ordered:
            ordered.append(method)
    return ordered


class DiscoveryEngine:
    """Orchestrates probe strategies for a single target address.

    Methods run in the caller's order and each may independently mark the
    host reachable. A method is never skipped because an earlier one failed,
    except that a ping-only request fails fast. SNMP tries every community
    candidate only once the host is known to be reachable; otherwise a
    single get with the first candidate stands in for "UDP/161 answers".
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._steps: dict[
            DiscoveryMethod,
            Callable[[DiscoveryResult, list[str]], Awaitable[None]],
        ] = {
            DiscoveryMethod.PING: self._run_ping,
            DiscoveryMethod.ARP: self._run_arp,
            DiscoveryMethod.PORT: self._run_ports,
            DiscoveryMethod.SNMP: self._run_snmp,
        }

    def _step_timeout(self, method: DiscoveryMethod) -> float:
        s = self.settings
        if method is DiscoveryMethod.PING:
            return (s.ping_timeout + 2) * (s.ping_retries + 1)
        if method is DiscoveryMethod.ARP:
            return 5.0
        if method is DiscoveryMethod.PORT:
            return s.port_timeout + 1
        # Each community gets the get timeout plus a best-effort interface walk
        return (s.snmp_timeout * 2 + 1) * max(1, len(s.snmp_communities) + 1)

    async def probe(self, address: str) -> ProbeResult:
        """Single reachability probe, as used by the health monitor."""
        return await probes.ping_host(
            address,
            timeout=self.settings.ping_timeout,
            retries=self.settings.ping_retries,
        )

    async def discover(
        self,
        address: str,
        communities: list[str] | None = None,
        methods: list[str] | None = None,
    ) -> DiscoveryResult:
        """Probe `address` and return its merged profile.

        Raises UnreachableError if no attempted method marked it reachable.
        """
        ordered = normalize_methods(methods or self.settings.discovery_methods)
        candidates = snmp.community_candidates(communities, self.settings.snmp_communities)
        result = DiscoveryResult(address=address)

        for method in ordered:
            try:
                await asyncio.wait_for(
                    self._steps[method](result, candidates),
                    timeout=self._step_timeout(method),
                )
            except asyncio.TimeoutError:
                logger.debug("%s probe on %s timed out", method.value, address)
            except Exception as exc:
                logger.debug("%s probe on %s failed: %s", method.value, address, exc)

            if ordered == [DiscoveryMethod.PING] and not result.reachable:
                break

        if not result.reachable:
            raise UnreachableError(address, [m.value for m in ordered])

        sys_name = result.snmp_data.sys_name if result.snmp_data else None
        if sys_name:
            sys_name = sys_name.split(".")[0].strip() or None
        result.hostname = await fingerprint.resolve_hostname(address, fallback=sys_name)
        result.device_type = fingerprint.classify_device(result.open_ports, result.snmp_data)
        logger.info(
            "Discovered %s (%s) via %s",
            address, result.device_type.value, ", ".join(result.methods),
        )
        return result

    # -- probe steps ------------------------------------------------------

    async def _run_ping(self, result: DiscoveryResult, _: list[str]) -> None:
        probe = await self.probe(result.address)
        if probe.alive:
            result.reachable = True
            result.response_time_ms = probe.response_time_ms
            result.methods.append(DiscoveryMethod.PING.value)

    async def _run_arp(self, result: DiscoveryResult, _: list[str]) -> None:
        mac = await probes.lookup_neighbor(result.address)
        if not mac:
            return
        result.reachable = True
        result.mac_address = mac
        result.vendor = await vendor.lookup_vendor(
            mac, use_registry=self.settings.vendor_registry
        )
        result.methods.append(DiscoveryMethod.ARP.value)

    async def _run_ports(self, result: DiscoveryResult, _: list[str]) -> None:
        open_ports = await probes.scan_ports(
            result.address, self.settings.scan_ports, timeout=self.settings.port_timeout
        )
        if not open_ports:
            return
        result.reachable = True
        result.open_ports = open_ports
        result.services = [probes.service_name(p) for p in open_ports]
        result.methods.append(DiscoveryMethod.PORT.value)

    async def _run_snmp(self, result: DiscoveryResult, communities: list[str]) -> None:
        if not result.reachable:
            # A silent host gets one SNMP get over UDP with the first candidate
            # only; agents drop unknown communities without replying
            logger.debug("Checking UDP/%d on silent host %s", self.settings.snmp_port, result.address)
            communities = communities[:1]
        data = await snmp.query_snmp(
            result.address,
            communities,
            port=self.settings.snmp_port,
            timeout=self.settings.snmp_timeout,
        )
        if data is None:
            return
        result.reachable = True
        result.snmp_data = data
        result.methods.append(DiscoveryMethod.SNMP.value)

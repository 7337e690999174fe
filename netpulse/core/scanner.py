"""Bulk discovery scan over a network range.

Holds the scan lease for its whole duration so the health monitor skips its
sweeps instead of racing on the same device records.
"""

from __future__ import annotations

import asyncio
import ipaddress
import itertools
import logging
import time
from typing import Any

from netpulse.config import Settings
from netpulse.core.coordinator import ScanCoordinator
from netpulse.core.db import DeviceStore
from netpulse.core.discovery import DiscoveryEngine
from netpulse.core.errors import UnreachableError
from netpulse.core.events import Event, EventBus, EventType
from netpulse.core.fingerprint import resolve_hostname
from netpulse.core.models import HostnameUpdate
from netpulse.core.networks import resolve_network_range

logger = logging.getLogger(__name__)

_PROGRESS_EVERY = 5
_LEASE_OWNER = "bulk-discovery"


def expand_range(network_range: str, max_hosts: int) -> list[str]:
    """Expand a CIDR range (or single address) into host addresses.

    Ranges larger than `max_hosts` are truncated to the first `max_hosts` hosts.
    """
    network = ipaddress.ip_network(network_range.strip(), strict=False)
    hosts = [str(h) for h in itertools.islice(network.hosts(), max_hosts + 1)]
    if not hosts:
        hosts = [str(network.network_address)]
    if len(hosts) > max_hosts:
        logger.warning(
            "Range %s has more than %d hosts; scanning the first %d only",
            network_range, max_hosts, max_hosts,
        )
        hosts = hosts[:max_hosts]
    return hosts


class NetworkDiscovery:
    """Scans a network range in batches and folds found hosts into the store."""

    def __init__(
        self,
        settings: Settings,
        engine: DiscoveryEngine,
        store: DeviceStore,
        event_bus: EventBus,
        coordinator: ScanCoordinator,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.store = store
        self.event_bus = event_bus
        self.coordinator = coordinator
        self._reset(None, [])

    def _reset(self, network: str | None, methods: list[str]) -> None:
        self._running = False
        self._aborted = False
        self._network = network
        self._methods = methods
        self._total = 0
        self._scanned = 0
        self._found: list[str] = []
        self._started: float | None = None

    def status(self) -> dict[str, Any]:
        return {
            "isRunning": self._running,
            "network": self._network,
            "methods": self._methods,
            "progress": round(self._scanned / self._total * 100) if self._total else 0,
            "scannedHosts": self._scanned,
            "totalHosts": self._total,
            "foundDevices": len(self._found),
        }

    def stop(self) -> bool:
        """Ask a running scan to stop after the current batch."""
        was_running = self._running
        self._aborted = True
        logger.info("Network scan stop requested (was running: %s)", was_running)
        return was_running

    async def scan_range(
        self,
        network_range: str | None = None,
        methods: list[str] | None = None,
        communities: list[str] | None = None,
    ) -> dict[str, Any]:
        """Scan every host in `network_range`.

        An empty range or "auto" scans the detected local network. Raises
        ScanInProgressError if another scan holds the lease and ValueError
        for an invalid range.
        """
        network_range = resolve_network_range(network_range, self.settings)
        hosts = expand_range(network_range, self.settings.max_scan_hosts)
        methods = list(methods or self.settings.discovery_methods)

        lease = self.coordinator.acquire(_LEASE_OWNER, network_range)
        try:
            self._reset(network_range, methods)
            self._running = True
            self._total = len(hosts)
            self._started = time.monotonic()
            logger.info(
                "Starting network scan of %s (%d hosts) with methods: %s",
                network_range, len(hosts), ", ".join(methods),
            )
            await self.event_bus.publish(Event(
                event_type=EventType.SCAN_STARTED,
                payload={"networkRange": network_range, "methods": methods},
            ))

            batch_size = max(1, self.settings.scan_batch_size)
            for start in range(0, len(hosts), batch_size):
                if self._aborted:
                    logger.info("Network scan of %s aborted", network_range)
                    break
                batch = hosts[start:start + batch_size]
                await asyncio.gather(
                    *(self._scan_host(h, methods, communities) for h in batch)
                )

            duration = time.monotonic() - self._started
            summary = {
                "networkRange": network_range,
                "foundDevices": len(self._found),
                "totalScanned": self._scanned,
                "totalHosts": self._total,
                "durationSeconds": round(duration, 2),
                "methods": methods,
                "aborted": self._aborted,
            }
            logger.info(
                "Network scan of %s completed: %d devices in %.1fs",
                network_range, len(self._found), duration,
            )
            await self.event_bus.publish(
                Event(event_type=EventType.SCAN_COMPLETED, payload=summary)
            )
            return summary
        except Exception as exc:
            logger.error("Network scan of %s failed: %s", network_range, exc)
            await self.event_bus.publish(Event(
                event_type=EventType.SCAN_ERROR,
                payload={"networkRange": network_range, "error": str(exc)},
            ))
            raise
        finally:
            self._running = False
            self.coordinator.release(lease)

    async def _scan_host(
        self,
        host: str,
        methods: list[str],
        communities: list[str] | None,
    ) -> None:
        if self._aborted:
            return
        try:
            result = await self.engine.discover(host, communities, methods)
        except UnreachableError:
            result = None
        except Exception as exc:
            logger.error("Error scanning %s: %s", host, exc)
            result = None

        if result is not None:
            try:
                device, created = await self.store.upsert_discovered(result)
            except Exception as exc:
                logger.error("Failed to save discovered device %s: %s", host, exc)
            else:
                self._found.append(host)
                await self.event_bus.publish(Event(
                    event_type=EventType.DEVICE_DISCOVERED if created else EventType.DEVICE_UPDATED,
                    payload={
                        "device": device.model_dump(mode="json", exclude={"alerts"}),
                        "details": result.summary(),
                    },
                ))

        self._scanned += 1
        if self._scanned % _PROGRESS_EVERY == 0:
            await self.event_bus.publish(Event(
                event_type=EventType.SCAN_PROGRESS,
                payload={**self.status(), "currentHost": host},
            ))

    async def refresh_hostnames(
        self, addresses: list[str] | None = None
    ) -> list[HostnameUpdate]:
        """Re-resolve hostnames for stored devices (all of them by default)."""
        if addresses is None:
            addresses = [d.address for d in await self.store.list_devices()]
        logger.info("Re-resolving hostnames for %d devices", len(addresses))

        results: list[HostnameUpdate] = []
        batch_size = max(1, self.settings.scan_batch_size)
        for start in range(0, len(addresses), batch_size):
            batch = addresses[start:start + batch_size]
            results.extend(
                await asyncio.gather(*(self._refresh_hostname(a) for a in batch))
            )
        return results

    async def _refresh_hostname(self, address: str) -> HostnameUpdate:
        device = await self.store.find_device(address)
        if device is None:
            return HostnameUpdate(address=address, status="not_found")

        old_name = device.name
        try:
            hostname = await resolve_hostname(address)
        except Exception as exc:
            logger.error("Hostname lookup for %s failed: %s", address, exc)
            return HostnameUpdate(address=address, status="error", old_name=old_name, message=str(exc))
        if not hostname:
            return HostnameUpdate(
                address=address,
                status="no_hostname",
                old_name=old_name,
                message="Could not resolve hostname",
            )
        if hostname == device.hostname and hostname == device.display_name:
            return HostnameUpdate(address=address, status="unchanged", old_name=old_name, new_name=hostname)

        try:
            await self.store.update_device(address, {"hostname": hostname, "display_name": hostname})
        except Exception as exc:
            logger.error("Failed to save hostname for %s: %s", address, exc)
            return HostnameUpdate(address=address, status="error", old_name=old_name, message=str(exc))

        logger.info("Updated hostname for %s: %s -> %s", address, old_name, hostname)
        await self.event_bus.publish(Event(
            event_type=EventType.HOSTNAME_UPDATED,
            payload={"address": address, "oldName": old_name, "newName": hostname},
        ))
        return HostnameUpdate(address=address, status="updated", old_name=old_name, new_name=hostname)

"""REST API route definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query

from netpulse.api.schemas import (
    CheckReport,
    DeviceDetail,
    DeviceResponse,
    DiscoverRequest,
    EventResponse,
    MonitoringStartRequest,
    MonitoringStatus,
    NetworksResponse,
    ResolveHostnamesRequest,
    ResolveHostnamesResponse,
    ScanRequest,
    ScanStatus,
    ScanTriggerResponse,
)
from netpulse.core.discovery import normalize_methods
from netpulse.core.errors import ScanInProgressError, StoreError, UnreachableError
from netpulse.core.models import Alert, Device, DeviceStatus, DeviceType, DiscoveryResult
from netpulse.core.networks import (
    detect_network,
    list_local_networks,
    recommended_ranges,
    resolve_network_range,
)
from netpulse.core.scanner import expand_range

if TYPE_CHECKING:
    from netpulse.main import Services

logger = logging.getLogger(__name__)


def _device_to_response(device: Device) -> DeviceResponse:
    return DeviceResponse(
        **device.model_dump(exclude={"alerts"}),
        name=device.name,
        open_alerts=sum(1 for a in device.alerts if not a.acknowledged),
    )


def _check_report(data: dict) -> CheckReport:
    return CheckReport(
        system_alerts=data["systemAlerts"],
        device_alerts=data["deviceAlerts"],
        total_alerts=data["totalAlerts"],
        devices_checked=data["devicesChecked"],
        sweep_skipped=data["sweepSkipped"],
    )


def _monitoring_status(data: dict) -> MonitoringStatus:
    return MonitoringStatus(
        running=data["running"],
        uptime=data["uptime"],
        interval_minutes=data["intervalMinutes"],
        ticks=data["ticks"],
    )


def create_routes(services: Services) -> APIRouter:
    """Create the API router with injected dependencies."""
    router = APIRouter(prefix="/api")
    store = services.store
    scheduler = services.scheduler
    discovery = services.discovery
    background: set[asyncio.Task] = set()

    # -- devices and alerts -------------------------------------------------

    @router.get("/devices", response_model=list[DeviceResponse])
    async def list_devices(
        status: DeviceStatus | None = Query(None, description="Filter by status"),
        type: DeviceType | None = Query(None, description="Filter by device type"),
        include_system: bool = Query(False, description="Include the system device"),
    ) -> list[DeviceResponse]:
        devices = await store.list_devices(
            status=status, device_type=type, include_system=include_system
        )
        return [_device_to_response(d) for d in devices]

    @router.get("/devices/{address}", response_model=DeviceDetail)
    async def get_device(address: str) -> DeviceDetail:
        device = await store.find_device(address)
        if not device:
            raise HTTPException(status_code=404, detail="Device not found")
        return DeviceDetail(
            **_device_to_response(device).model_dump(),
            alerts=device.alerts,
        )

    @router.get("/devices/{address}/alerts", response_model=list[Alert])
    async def get_device_alerts(
        address: str,
        unacknowledged: bool = Query(False),
        limit: int = Query(100, ge=1, le=1000),
    ) -> list[Alert]:
        if await store.find_device(address) is None:
            raise HTTPException(status_code=404, detail="Device not found")
        return await store.list_alerts(address, unacknowledged_only=unacknowledged, limit=limit)

    @router.get("/alerts", response_model=list[Alert])
    async def list_alerts(
        unacknowledged: bool = Query(False),
        limit: int = Query(100, ge=1, le=1000),
    ) -> list[Alert]:
        return await store.list_alerts(unacknowledged_only=unacknowledged, limit=limit)

    @router.post("/alerts/{alert_id}/acknowledge")
    async def acknowledge_alert(alert_id: int) -> dict[str, object]:
        try:
            changed = await store.acknowledge_alert(alert_id)
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        if not changed:
            raise HTTPException(status_code=404, detail="Alert not found or already acknowledged")
        return {"id": alert_id, "acknowledged": True}

    # -- monitoring ---------------------------------------------------------

    @router.get("/monitoring/status", response_model=MonitoringStatus)
    async def monitoring_status() -> MonitoringStatus:
        return _monitoring_status(scheduler.get_status())

    @router.post("/monitoring/start", response_model=MonitoringStatus)
    async def monitoring_start(body: MonitoringStartRequest | None = None) -> MonitoringStatus:
        await scheduler.start(body.interval_minutes if body else None)
        return _monitoring_status(scheduler.get_status())

    @router.post("/monitoring/stop", response_model=MonitoringStatus)
    async def monitoring_stop() -> MonitoringStatus:
        await scheduler.stop()
        return _monitoring_status(scheduler.get_status())

    @router.post("/monitoring/trigger", response_model=CheckReport)
    async def monitoring_trigger() -> CheckReport:
        return _check_report(await scheduler.trigger_checks())

    # -- discovery ----------------------------------------------------------

    async def _run_scan(network_range: str, body: ScanRequest) -> None:
        try:
            await discovery.scan_range(network_range, body.methods, body.communities)
        except ScanInProgressError as exc:
            logger.warning("Scan of %s not started: %s", network_range, exc)
        except Exception as exc:
            logger.error("Background scan of %s failed: %s", network_range, exc)

    @router.post("/discovery/scan", response_model=ScanTriggerResponse, status_code=202)
    async def start_scan(body: ScanRequest) -> ScanTriggerResponse:
        try:
            network_range = resolve_network_range(body.network_range, services.settings)
            hosts = expand_range(network_range, services.settings.max_scan_hosts)
            if body.methods:
                normalize_methods(body.methods)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if services.coordinator.try_read().is_running:
            raise HTTPException(status_code=409, detail="A network scan is already in progress")

        task = asyncio.create_task(_run_scan(network_range, body))
        background.add(task)
        task.add_done_callback(background.discard)
        return ScanTriggerResponse(
            status="started",
            message=f"Scanning {network_range} ({len(hosts)} hosts)",
        )

    @router.get("/discovery/networks", response_model=NetworksResponse)
    async def get_networks() -> NetworksResponse:
        networks = list_local_networks()
        return NetworksResponse(
            current=detect_network(services.settings, networks),
            networks=networks,
            recommended=recommended_ranges(networks),
        )

    @router.post("/discovery/resolve-hostnames", response_model=ResolveHostnamesResponse)
    async def resolve_hostnames(
        body: ResolveHostnamesRequest | None = None,
    ) -> ResolveHostnamesResponse:
        addresses = body.addresses if body else None
        results = await discovery.refresh_hostnames(addresses)
        return ResolveHostnamesResponse(
            results=results,
            total_processed=len(results),
            updated=sum(1 for r in results if r.status == "updated"),
        )

    @router.get("/discovery/status", response_model=ScanStatus)
    async def scan_status() -> ScanStatus:
        data = discovery.status()
        return ScanStatus(
            is_running=data["isRunning"],
            network=data["network"],
            methods=data["methods"],
            progress=data["progress"],
            scanned_hosts=data["scannedHosts"],
            total_hosts=data["totalHosts"],
            found_devices=data["foundDevices"],
        )

    @router.post("/discovery/stop", response_model=ScanTriggerResponse)
    async def stop_scan() -> ScanTriggerResponse:
        if discovery.stop():
            return ScanTriggerResponse(status="stopping", message="Scan will stop after the current batch")
        return ScanTriggerResponse(status="idle", message="No scan is running")

    @router.post("/discovery/device", response_model=DiscoveryResult)
    async def discover_device(body: DiscoverRequest) -> DiscoveryResult:
        try:
            result = await services.engine.discover(body.address, body.communities, body.methods)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except UnreachableError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        try:
            await store.upsert_discovered(result, discovered_by="manual")
        except StoreError as exc:
            logger.error("Failed to save discovered device %s: %s", body.address, exc)
        return result

    # -- events -------------------------------------------------------------

    @router.get("/events", response_model=list[EventResponse])
    async def get_recent_events(
        limit: int = Query(100, ge=1, le=500),
    ) -> list[EventResponse]:
        return [
            EventResponse(
                event_type=e.event_type.value,
                timestamp=e.timestamp,
                payload=e.payload,
            )
            for e in services.event_bus.recent_events[:limit]
        ]

    return router

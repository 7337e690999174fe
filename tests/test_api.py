"""API smoke tests against the FastAPI app."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from netpulse.api import routes
from netpulse.api.server import create_app
from netpulse.api.websocket import serialize_event
from netpulse.core.errors import UnreachableError
from netpulse.core.events import Event, EventType
from netpulse.core.models import (
    Alert,
    AlertType,
    Device,
    DeviceType,
    DiscoveryResult,
    LocalNetwork,
    ProbeResult,
    Severity,
)
from netpulse.core.system import SystemMetrics
from netpulse.main import build_services


@pytest_asyncio.fixture
async def services(settings):
    svc = await build_services(settings)
    svc.engine.probe = AsyncMock(return_value=ProbeResult(alive=True, response_time_ms=3.0))
    svc.engine.discover = AsyncMock(side_effect=UnreachableError("0.0.0.0"))
    svc.system.collector = lambda: SystemMetrics(memory_percent=30.0, uptime_minutes=900.0)
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def client(services):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestDevices:
    @pytest.mark.asyncio
    async def test_empty(self, client):
        resp = await client.get("/api/devices")
        assert resp.status_code == 200
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_list_and_detail(self, client, services):
        await services.store.upsert_device(
            Device(address="10.0.0.5", display_name="nas", device_type=DeviceType.NAS)
        )
        await services.store.append_alerts("10.0.0.5", [
            Alert(type=AlertType.HIGH_RESPONSE_TIME, severity=Severity.WARNING, message="slow"),
        ])

        [device] = (await client.get("/api/devices")).json()
        assert device["address"] == "10.0.0.5"
        assert device["name"] == "nas"
        assert device["open_alerts"] == 1

        detail = (await client.get("/api/devices/10.0.0.5")).json()
        assert [a["type"] for a in detail["alerts"]] == [AlertType.HIGH_RESPONSE_TIME]

        filtered = (await client.get("/api/devices", params={"type": "router"})).json()
        assert filtered == []

    @pytest.mark.asyncio
    async def test_unknown_device(self, client):
        assert (await client.get("/api/devices/10.9.9.9")).status_code == 404
        assert (await client.get("/api/devices/10.9.9.9/alerts")).status_code == 404


class TestAlerts:
    @pytest.mark.asyncio
    async def test_acknowledge(self, client, services):
        await services.store.upsert_device(Device(address="10.0.0.5"))
        [alert] = await services.store.append_alerts("10.0.0.5", [
            Alert(type=AlertType.HIGH_RESPONSE_TIME, severity=Severity.WARNING, message="slow"),
        ])

        resp = await client.post(f"/api/alerts/{alert.id}/acknowledge")
        assert resp.status_code == 200
        assert resp.json() == {"id": alert.id, "acknowledged": True}
        assert (await client.post(f"/api/alerts/{alert.id}/acknowledge")).status_code == 404

        open_alerts = (await client.get("/api/alerts", params={"unacknowledged": True})).json()
        assert open_alerts == []


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_status_idle(self, client):
        data = (await client.get("/api/monitoring/status")).json()
        assert data["running"] is False
        assert data["interval_minutes"] == 5

    @pytest.mark.asyncio
    async def test_trigger(self, client, services):
        await services.store.upsert_device(Device(address="10.0.0.5"))
        data = (await client.post("/api/monitoring/trigger")).json()
        assert data == {
            "system_alerts": 0,
            "device_alerts": 0,
            "total_alerts": 0,
            "devices_checked": 1,
            "sweep_skipped": False,
        }

    @pytest.mark.asyncio
    async def test_start_and_stop(self, client):
        started = (await client.post("/api/monitoring/start", json={"interval_minutes": 10})).json()
        assert started["running"] is True
        assert started["interval_minutes"] == 10
        stopped = (await client.post("/api/monitoring/stop")).json()
        assert stopped["running"] is False


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_invalid_range(self, client):
        resp = await client.post("/api/discovery/scan", json={"network_range": "10.0.0.0/33"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_method(self, client):
        resp = await client.post(
            "/api/discovery/scan",
            json={"network_range": "10.0.0.0/30", "methods": ["traceroute"]},
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_conflict_while_scanning(self, client, services):
        services.coordinator.acquire("bulk-discovery", "10.0.1.0/24")
        resp = await client.post("/api/discovery/scan", json={"network_range": "10.0.0.0/30"})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_background_scan(self, client, services):
        resp = await client.post("/api/discovery/scan", json={"network_range": "10.0.0.0/30"})
        assert resp.status_code == 202
        assert resp.json()["status"] == "started"

        for _ in range(50):
            await asyncio.sleep(0.01)
            status = (await client.get("/api/discovery/status")).json()
            if not status["is_running"] and status["scanned_hosts"] == 2:
                break
        assert status["network"] == "10.0.0.0/30"
        assert status["scanned_hosts"] == 2
        assert status["found_devices"] == 0
        assert services.engine.discover.await_count == 2

    @pytest.mark.asyncio
    async def test_auto_range(self, client, services):
        services.settings.host_network_range = "10.0.0.0/30"
        resp = await client.post("/api/discovery/scan", json={})
        assert resp.status_code == 202
        assert "10.0.0.0/30 (2 hosts)" in resp.json()["message"]
        for _ in range(50):
            await asyncio.sleep(0.01)
            if services.engine.discover.await_count == 2 and not services.coordinator.try_read().is_running:
                break
        assert services.discovery.status()["network"] == "10.0.0.0/30"

    @pytest.mark.asyncio
    async def test_networks(self, client, monkeypatch):
        monkeypatch.setattr(routes, "list_local_networks", lambda: [
            LocalNetwork(
                network_range="192.168.1.0/24",
                interface="eth0",
                address="192.168.1.23",
                source="interface",
                priority=1,
                description="Host network via eth0",
            ),
        ])
        data = (await client.get("/api/discovery/networks")).json()
        assert data["current"] == "192.168.1.0/24"
        assert [n["network_range"] for n in data["networks"]] == ["192.168.1.0/24"]
        assert [n["network_range"] for n in data["recommended"]] == [
            "192.168.1.0/24", "192.168.0.0/24", "10.0.0.0/24", "172.16.0.0/24",
        ]

    @pytest.mark.asyncio
    async def test_resolve_hostnames(self, client, services, monkeypatch):
        await services.store.upsert_device(Device(address="10.0.0.2"))

        async def resolve_hostname(address, fallback=None):
            return "core-rtr.lan"

        monkeypatch.setattr("netpulse.core.scanner.resolve_hostname", resolve_hostname)
        data = (await client.post(
            "/api/discovery/resolve-hostnames", json={"addresses": ["10.0.0.2"]}
        )).json()
        assert data["total_processed"] == 1
        assert data["updated"] == 1
        assert data["results"][0]["new_name"] == "core-rtr.lan"
        assert (await services.store.find_device("10.0.0.2")).display_name == "core-rtr.lan"

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, client):
        data = (await client.post("/api/discovery/stop")).json()
        assert data["status"] == "idle"

    @pytest.mark.asyncio
    async def test_discover_unreachable(self, client):
        resp = await client.post("/api/discovery/device", json={"address": "10.0.0.77"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_discover_stores_device(self, client, services):
        services.engine.discover = AsyncMock(return_value=DiscoveryResult(
            address="10.0.0.2",
            reachable=True,
            hostname="core-rtr",
            device_type=DeviceType.ROUTER,
            methods=["ping"],
        ))
        resp = await client.post("/api/discovery/device", json={"address": "10.0.0.2"})
        assert resp.status_code == 200
        assert resp.json()["device_type"] == "router"

        device = await services.store.find_device("10.0.0.2")
        assert device.display_name == "core-rtr"
        assert device.discovered_by == "manual"


class TestEvents:
    @pytest.mark.asyncio
    async def test_recent_events(self, client, services):
        await services.event_bus.publish(
            Event(event_type=EventType.SCAN_STARTED, payload={"networkRange": "10.0.0.0/30"})
        )
        [event] = (await client.get("/api/events")).json()
        assert event["event_type"] == "discovery.scanStarted"
        assert event["payload"] == {"networkRange": "10.0.0.0/30"}

    def test_websocket_frame(self):
        frame = serialize_event(
            Event(event_type=EventType.NEW_ALERT, payload={"deviceId": "system"})
        )
        assert '"event": "newAlert"' in frame
        assert '"data": {"deviceId": "system"}' in frame

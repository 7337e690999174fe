"""Tests for the aiosqlite device store."""

from datetime import timedelta

import aiosqlite
import pytest

from netpulse.core.db import DeviceStore
from netpulse.core.errors import StoreError
from netpulse.core.models import (
    Alert,
    AlertType,
    Device,
    DeviceMetrics,
    DeviceStatus,
    DeviceType,
    DiscoveryResult,
    Severity,
    SnmpData,
)


def _alert(type_=AlertType.HIGH_RESPONSE_TIME, severity=Severity.WARNING, **kw):
    return Alert(type=type_, severity=severity, message=type_, **kw)


class TestDevices:
    @pytest.mark.asyncio
    async def test_upsert_and_find(self, store, clock):
        device = Device(
            address="10.0.0.5",
            display_name="nas",
            device_type=DeviceType.NAS,
            metrics=DeviceMetrics(last_seen=clock.now, response_time_ms=3.5),
            open_ports=[22, 443],
            services=["SSH", "HTTPS"],
        )
        await store.upsert_device(device)

        found = await store.find_device("10.0.0.5")
        assert found.display_name == "nas"
        assert found.device_type == DeviceType.NAS
        assert found.metrics.last_seen == clock.now
        assert found.metrics.response_time_ms == 3.5
        assert found.open_ports == [22, 443]
        assert found.alerts == []

    @pytest.mark.asyncio
    async def test_missing_device(self, store):
        assert await store.find_device("10.9.9.9") is None

    @pytest.mark.asyncio
    async def test_list_filters(self, store):
        await store.upsert_device(Device(address="10.0.0.2", device_type=DeviceType.ROUTER))
        await store.upsert_device(
            Device(address="10.0.0.3", device_type=DeviceType.SERVER, status=DeviceStatus.OFFLINE)
        )
        await store.ensure_system_device()

        assert [d.address for d in await store.list_devices()] == ["10.0.0.2", "10.0.0.3"]
        offline = await store.list_devices(status=DeviceStatus.OFFLINE)
        assert [d.address for d in offline] == ["10.0.0.3"]
        routers = await store.list_devices(device_type=DeviceType.ROUTER)
        assert [d.address for d in routers] == ["10.0.0.2"]
        everything = await store.list_devices(include_system=True)
        assert "localhost" in [d.address for d in everything]

    @pytest.mark.asyncio
    async def test_update_device_with_nested_metrics(self, store, clock):
        await store.upsert_device(Device(address="10.0.0.5"))
        await store.update_device("10.0.0.5", {
            "status": DeviceStatus.OFFLINE,
            "metrics": DeviceMetrics(last_seen=clock.now, consecutive_failures=3),
        })
        found = await store.find_device("10.0.0.5")
        assert found.status == DeviceStatus.OFFLINE
        assert found.metrics.consecutive_failures == 3
        assert found.metrics.last_seen == clock.now

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, store):
        await store.upsert_device(Device(address="10.0.0.5"))
        with pytest.raises(ValueError):
            await store.update_device("10.0.0.5", {"address": "10.0.0.6"})

    @pytest.mark.asyncio
    async def test_system_device_created_once(self, store):
        first = await store.ensure_system_device()
        second = await store.ensure_system_device()
        assert first.address == second.address == "localhost"
        assert second.name == "NMS Server"
        assert second.device_type == DeviceType.SYSTEM


class TestAlerts:
    @pytest.mark.asyncio
    async def test_append_assigns_ids_in_order(self, store):
        await store.upsert_device(Device(address="10.0.0.5"))
        stored = await store.append_alerts("10.0.0.5", [
            _alert(AlertType.DEVICE_UNREACHABLE, Severity.CRITICAL),
            _alert(AlertType.DEVICE_BACK_ONLINE, Severity.INFO),
        ])
        assert stored[0].id < stored[1].id
        assert all(a.device_address == "10.0.0.5" for a in stored)

        device = await store.find_device("10.0.0.5")
        assert [a.type for a in device.alerts] == [
            AlertType.DEVICE_UNREACHABLE,
            AlertType.DEVICE_BACK_ONLINE,
        ]

    @pytest.mark.asyncio
    async def test_acknowledge_by_type_with_resolution(self, store, clock):
        await store.upsert_device(Device(address="10.0.0.5"))
        await store.append_alerts("10.0.0.5", [
            _alert(AlertType.DEVICE_UNREACHABLE, Severity.CRITICAL),
            _alert(),
        ])
        count = await store.acknowledge_alerts(
            "10.0.0.5", alert_type=AlertType.DEVICE_UNREACHABLE, resolved_at=clock.now
        )
        assert count == 1
        alerts = (await store.find_device("10.0.0.5")).alerts
        assert alerts[0].acknowledged is True
        assert alerts[0].resolved_at == clock.now
        assert alerts[1].acknowledged is False

    @pytest.mark.asyncio
    async def test_acknowledge_single_alert(self, store):
        await store.upsert_device(Device(address="10.0.0.5"))
        [alert] = await store.append_alerts("10.0.0.5", [_alert()])
        assert await store.acknowledge_alert(alert.id) is True
        assert await store.acknowledge_alert(alert.id) is False
        assert await store.acknowledge_alert(9999) is False

    @pytest.mark.asyncio
    async def test_list_alerts_newest_first(self, store):
        await store.upsert_device(Device(address="10.0.0.5"))
        await store.upsert_device(Device(address="10.0.0.6"))
        await store.append_alerts("10.0.0.5", [_alert()])
        [acked] = await store.append_alerts("10.0.0.6", [_alert()])
        await store.append_alerts("10.0.0.5", [_alert(AlertType.DEVICE_BACK_ONLINE, Severity.INFO)])
        await store.acknowledge_alert(acked.id)

        everything = await store.list_alerts()
        assert [a.device_address for a in everything] == ["10.0.0.5", "10.0.0.6", "10.0.0.5"]
        assert len(await store.list_alerts("10.0.0.5")) == 2
        assert len(await store.list_alerts(unacknowledged_only=True)) == 2
        assert len(await store.list_alerts(limit=1)) == 1


class TestApplyHealthUpdate:
    @pytest.mark.asyncio
    async def test_single_transaction(self, store, clock):
        await store.upsert_device(Device(address="10.0.0.5", status=DeviceStatus.OFFLINE))
        [down, old_info] = await store.append_alerts("10.0.0.5", [
            _alert(AlertType.DEVICE_UNREACHABLE, Severity.CRITICAL),
            _alert(
                AlertType.DEVICE_BACK_ONLINE,
                Severity.INFO,
                timestamp=clock.now - timedelta(hours=2),
            ),
        ])

        stored = await store.apply_health_update(
            "10.0.0.5",
            {"status": DeviceStatus.ONLINE, "metrics": DeviceMetrics(last_seen=clock.now)},
            [_alert(AlertType.DEVICE_BACK_ONLINE, Severity.INFO, timestamp=clock.now)],
            resolved_ids=[down.id],
            auto_acked_ids=[old_info.id],
            now=clock.now,
        )

        assert stored[0].id is not None
        device = await store.find_device("10.0.0.5")
        assert device.status == DeviceStatus.ONLINE
        assert [a.acknowledged for a in device.alerts] == [True, True, False]
        assert device.alerts[0].resolved_at == clock.now
        assert device.alerts[1].resolved_at is None

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(self, store, clock, monkeypatch):
        await store.upsert_device(Device(address="10.0.0.5"))

        async def broken(address, alerts):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store, "_insert_alerts", broken)
        with pytest.raises(StoreError):
            await store.apply_health_update(
                "10.0.0.5",
                {"status": DeviceStatus.OFFLINE},
                [_alert(AlertType.DEVICE_UNREACHABLE, Severity.CRITICAL)],
                resolved_ids=[],
                auto_acked_ids=[],
                now=clock.now,
            )

        device = await store.find_device("10.0.0.5")
        assert device.status == DeviceStatus.ONLINE
        assert device.alerts == []


class TestUpsertDiscovered:
    @pytest.mark.asyncio
    async def test_new_device(self, store, clock):
        result = DiscoveryResult(
            address="10.0.0.2",
            reachable=True,
            response_time_ms=1.5,
            open_ports=[161],
            services=["SNMP"],
            snmp_data=SnmpData(sys_descr="Cisco IOS Software, C2900 Router"),
            device_type=DeviceType.ROUTER,
            methods=["ping", "snmp"],
        )
        device, created = await store.upsert_discovered(result, now=clock.now)

        assert created is True
        assert device.display_name == "host-10.0.0.2"
        assert device.status == DeviceStatus.ONLINE
        assert device.first_seen == clock.now
        assert device.description == (
            "Auto-discovered via ping, snmp. Cisco IOS Software, C2900 Router"
        )
        stored = await store.find_device("10.0.0.2")
        assert stored.device_type == DeviceType.ROUTER

    @pytest.mark.asyncio
    async def test_existing_placeholder_name_replaced(self, store, clock):
        await store.upsert_device(Device(address="10.0.0.2", display_name="host-10.0.0.2"))
        result = DiscoveryResult(
            address="10.0.0.2", reachable=True, hostname="core-rtr", methods=["ping"]
        )
        device, created = await store.upsert_discovered(result, now=clock.now)
        assert created is False
        assert device.display_name == "core-rtr"
        assert device.metrics.last_seen == clock.now

    @pytest.mark.asyncio
    async def test_user_name_kept(self, store, clock):
        await store.upsert_device(Device(address="10.0.0.2", display_name="Lobby switch"))
        result = DiscoveryResult(
            address="10.0.0.2", reachable=True, hostname="sw-01", methods=["ping"]
        )
        device, _ = await store.upsert_discovered(result, now=clock.now)
        assert device.display_name == "Lobby switch"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_uninitialized_store_raises(self, tmp_path):
        store = DeviceStore(tmp_path / "x.db")
        with pytest.raises(StoreError):
            await store.find_device("10.0.0.5")

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        from pathlib import Path

        store = DeviceStore(Path(":memory:"))
        await store.initialize()
        try:
            await store.upsert_device(Device(address="10.0.0.5"))
            assert await store.find_device("10.0.0.5") is not None
        finally:
            await store.close()

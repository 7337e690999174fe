"""Async SQLite persistence layer for devices and their alert logs."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from netpulse.core.errors import StoreError
from netpulse.core.events import SYSTEM_DEVICE_IP, SYSTEM_DEVICE_NAME
from netpulse.core.models import (
    Alert,
    Device,
    DeviceMetrics,
    DeviceStatus,
    DeviceType,
    DiscoveryResult,
    Severity,
    _now,
)

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS devices (
    address TEXT PRIMARY KEY,
    display_name TEXT,
    hostname TEXT,
    mac_address TEXT,
    vendor TEXT,
    model TEXT,
    device_type TEXT NOT NULL DEFAULT 'unknown',
    status TEXT NOT NULL DEFAULT 'online',
    last_seen TEXT,
    response_time_ms REAL,
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    open_ports TEXT NOT NULL DEFAULT '[]',
    services TEXT NOT NULL DEFAULT '[]',
    description TEXT,
    discovered_by TEXT,
    first_seen TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL,
    type TEXT NOT NULL,
    severity TEXT NOT NULL,
    message TEXT NOT NULL,
    value REAL,
    threshold REAL,
    timestamp TEXT NOT NULL,
    acknowledged INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT,
    FOREIGN KEY (address) REFERENCES devices(address)
);

CREATE INDEX IF NOT EXISTS idx_alerts_address ON alerts(address);
CREATE INDEX IF NOT EXISTS idx_alerts_open ON alerts(address, type, acknowledged);
"""

# Device fields that may be patched, mapped to their column
_PATCHABLE = {
    "display_name": "display_name",
    "hostname": "hostname",
    "mac_address": "mac_address",
    "vendor": "vendor",
    "model": "model",
    "device_type": "device_type",
    "status": "status",
    "last_seen": "last_seen",
    "response_time_ms": "response_time_ms",
    "consecutive_failures": "consecutive_failures",
    "open_ports": "open_ports",
    "services": "services",
    "description": "description",
}


def _dt_to_str(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return _dt_to_str(value)
    if isinstance(value, (DeviceStatus, DeviceType)):
        return value.value
    if isinstance(value, (list, tuple, set)):
        return json.dumps(sorted(value) if isinstance(value, set) else list(value))
    return value


def _flatten_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Accept `metrics` as a nested dict or DeviceMetrics alongside flat fields."""
    flat = {k: v for k, v in patch.items() if k != "metrics"}
    metrics = patch.get("metrics")
    if isinstance(metrics, DeviceMetrics):
        metrics = metrics.model_dump()
    if metrics:
        flat.update(metrics)
    unknown = set(flat) - set(_PATCHABLE)
    if unknown:
        raise ValueError(f"Unknown device fields: {', '.join(sorted(unknown))}")
    return flat


def _row_to_alert(row: aiosqlite.Row) -> Alert:
    return Alert(
        id=row["id"],
        device_address=row["address"],
        type=row["type"],
        severity=Severity(row["severity"]),
        message=row["message"],
        value=row["value"],
        threshold=row["threshold"],
        timestamp=_str_to_dt(row["timestamp"]),
        acknowledged=bool(row["acknowledged"]),
        resolved_at=_str_to_dt(row["resolved_at"]),
    )


def _row_to_device(row: aiosqlite.Row, alerts: list[Alert]) -> Device:
    """Convert a database row to a Device model."""
    return Device(
        address=row["address"],
        display_name=row["display_name"],
        hostname=row["hostname"],
        mac_address=row["mac_address"],
        vendor=row["vendor"],
        model=row["model"],
        device_type=DeviceType(row["device_type"]),
        status=DeviceStatus(row["status"]),
        metrics=DeviceMetrics(
            last_seen=_str_to_dt(row["last_seen"]),
            response_time_ms=row["response_time_ms"],
            consecutive_failures=row["consecutive_failures"],
        ),
        open_ports=json.loads(row["open_ports"]),
        services=json.loads(row["services"]),
        description=row["description"],
        discovered_by=row["discovered_by"],
        first_seen=_str_to_dt(row["first_seen"]),
        alerts=alerts,
    )


class DeviceStore:
    """Async SQLite store for device records and their alert logs.

    A device's alert log is ordered by insertion (alert id). All writers
    share one connection, so write transactions are serialized by a lock;
    a rollback only ever discards the statements of its own transaction.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables if needed."""
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_CREATE_TABLES)

        # Check/set schema version
        async with self._db.execute("SELECT COUNT(*) FROM schema_version") as cursor:
            count = (await cursor.fetchone())[0]
        if count == 0:
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,)
            )
        await self._db.commit()
        logger.info("Database initialized at %s", self._db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Store is not initialized")
        return self._db

    # -- reads ------------------------------------------------------------

    async def _alerts_for(self, addresses: list[str]) -> dict[str, list[Alert]]:
        by_address: dict[str, list[Alert]] = {a: [] for a in addresses}
        if not addresses:
            return by_address
        placeholders = ", ".join("?" for _ in addresses)
        async with self.db.execute(
            f"SELECT * FROM alerts WHERE address IN ({placeholders}) ORDER BY id ASC",
            addresses,
        ) as cursor:
            for row in await cursor.fetchall():
                by_address[row["address"]].append(_row_to_alert(row))
        return by_address

    async def find_device(self, address: str) -> Device | None:
        """Get a single device, with its alert log, by address."""
        async with self.db.execute(
            "SELECT * FROM devices WHERE address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        alerts = await self._alerts_for([address])
        return _row_to_device(row, alerts[address])

    async def list_devices(
        self,
        status: DeviceStatus | None = None,
        device_type: DeviceType | None = None,
        include_system: bool = False,
    ) -> list[Device]:
        """Get all devices, optionally filtered."""
        query = "SELECT * FROM devices WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if device_type:
            query += " AND device_type = ?"
            params.append(device_type.value)
        if not include_system:
            query += " AND device_type != ?"
            params.append(DeviceType.SYSTEM.value)
        query += " ORDER BY address ASC"

        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        alerts = await self._alerts_for([row["address"] for row in rows])
        return [_row_to_device(row, alerts[row["address"]]) for row in rows]

    async def list_alerts(
        self,
        address: str | None = None,
        unacknowledged_only: bool = False,
        limit: int = 100,
    ) -> list[Alert]:
        """Most recent alerts first."""
        query = "SELECT * FROM alerts WHERE 1=1"
        params: list[Any] = []
        if address:
            query += " AND address = ?"
            params.append(address)
        if unacknowledged_only:
            query += " AND acknowledged = 0"
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        async with self.db.execute(query, params) as cursor:
            return [_row_to_alert(row) for row in await cursor.fetchall()]

    # -- writes -----------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[None]:
        """Run the enclosed statements as one exclusive write transaction."""
        async with self._write_lock:
            try:
                yield
                await self.db.commit()
            except aiosqlite.Error as exc:
                await self.db.rollback()
                raise StoreError(f"Failed to {action}: {exc}") from exc
            except BaseException:
                await self.db.rollback()
                raise

    async def upsert_device(self, device: Device) -> None:
        """Insert or update a device record (the alert log is not touched)."""
        async with self._transaction(f"save device {device.address}"):
            await self._upsert(device)

    async def _upsert(self, device: Device) -> None:
        await self.db.execute(
            """
            INSERT INTO devices (
                address, display_name, hostname, mac_address, vendor, model,
                device_type, status, last_seen, response_time_ms,
                consecutive_failures, open_ports, services, description,
                discovered_by, first_seen
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(address) DO UPDATE SET
                display_name = COALESCE(excluded.display_name, display_name),
                hostname = COALESCE(excluded.hostname, hostname),
                mac_address = COALESCE(excluded.mac_address, mac_address),
                vendor = COALESCE(excluded.vendor, vendor),
                model = COALESCE(excluded.model, model),
                device_type = excluded.device_type,
                status = excluded.status,
                last_seen = excluded.last_seen,
                response_time_ms = excluded.response_time_ms,
                consecutive_failures = excluded.consecutive_failures,
                open_ports = excluded.open_ports,
                services = excluded.services,
                description = COALESCE(excluded.description, description)
            """,
            (
                device.address,
                device.display_name,
                device.hostname,
                device.mac_address,
                device.vendor,
                device.model,
                device.device_type.value,
                device.status.value,
                _dt_to_str(device.metrics.last_seen),
                device.metrics.response_time_ms,
                device.metrics.consecutive_failures,
                json.dumps(device.open_ports),
                json.dumps(device.services),
                device.description,
                device.discovered_by,
                _dt_to_str(device.first_seen),
            ),
        )

    async def _update(self, address: str, patch: dict[str, Any]) -> None:
        flat = _flatten_patch(patch)
        if not flat:
            return
        assignments = ", ".join(f"{_PATCHABLE[k]} = ?" for k in flat)
        params = [_to_column(v) for v in flat.values()]
        params.append(address)
        await self.db.execute(f"UPDATE devices SET {assignments} WHERE address = ?", params)

    async def _insert_alerts(self, address: str, alerts: list[Alert]) -> list[Alert]:
        stored: list[Alert] = []
        for alert in alerts:
            cursor = await self.db.execute(
                """
                INSERT INTO alerts (
                    address, type, severity, message, value, threshold,
                    timestamp, acknowledged, resolved_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    address,
                    alert.type,
                    alert.severity.value,
                    alert.message,
                    alert.value,
                    alert.threshold,
                    _dt_to_str(alert.timestamp),
                    int(alert.acknowledged),
                    _dt_to_str(alert.resolved_at),
                ),
            )
            stored.append(
                alert.model_copy(update={"id": cursor.lastrowid, "device_address": address})
            )
            await cursor.close()
        return stored

    async def _acknowledge(
        self,
        address: str,
        *,
        ids: list[int] | None = None,
        alert_type: str | None = None,
        severity: Severity | None = None,
        resolved_at: datetime | None = None,
    ) -> int:
        query = "UPDATE alerts SET acknowledged = 1"
        params: list[Any] = []
        if resolved_at is not None:
            query += ", resolved_at = ?"
            params.append(_dt_to_str(resolved_at))
        query += " WHERE address = ? AND acknowledged = 0"
        params.append(address)
        if ids is not None:
            if not ids:
                return 0
            query += f" AND id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        if alert_type is not None:
            query += " AND type = ?"
            params.append(alert_type)
        if severity is not None:
            query += " AND severity = ?"
            params.append(severity.value)
        cursor = await self.db.execute(query, params)
        count = cursor.rowcount
        await cursor.close()
        return count

    async def update_device(self, address: str, patch: dict[str, Any]) -> None:
        """Apply a partial update to a device record."""
        async with self._transaction(f"update device {address}"):
            await self._update(address, patch)

    async def append_alerts(self, address: str, alerts: list[Alert]) -> list[Alert]:
        """Append alerts to a device's log; returns them with ids assigned."""
        async with self._transaction(f"append alerts for {address}"):
            stored = await self._insert_alerts(address, alerts)
        return stored

    async def acknowledge_alerts(
        self,
        address: str,
        *,
        ids: list[int] | None = None,
        alert_type: str | None = None,
        severity: Severity | None = None,
        resolved_at: datetime | None = None,
    ) -> int:
        """Acknowledge the device's unacknowledged alerts matching all given criteria."""
        async with self._transaction(f"acknowledge alerts for {address}"):
            count = await self._acknowledge(
                address,
                ids=ids,
                alert_type=alert_type,
                severity=severity,
                resolved_at=resolved_at,
            )
        return count

    async def acknowledge_alert(self, alert_id: int) -> bool:
        """Operator acknowledgement of a single alert."""
        async with self._transaction(f"acknowledge alert {alert_id}"):
            cursor = await self.db.execute(
                "UPDATE alerts SET acknowledged = 1 WHERE id = ? AND acknowledged = 0",
                (alert_id,),
            )
            changed = cursor.rowcount > 0
            await cursor.close()
        return changed

    async def apply_health_update(
        self,
        address: str,
        patch: dict[str, Any],
        new_alerts: list[Alert],
        resolved_ids: list[int],
        auto_acked_ids: list[int],
        now: datetime,
    ) -> list[Alert]:
        """Persist one health evaluation in a single transaction.

        Readers never observe the device patch without its alerts.
        """
        async with self._transaction(f"persist health update for {address}"):
            await self._update(address, patch)
            await self._acknowledge(address, ids=resolved_ids, resolved_at=now)
            await self._acknowledge(address, ids=auto_acked_ids)
            stored = await self._insert_alerts(address, new_alerts)
        return stored

    # -- discovery / system device ----------------------------------------

    async def ensure_system_device(self) -> Device:
        """Return the virtual device that owns system-resource alerts."""
        device = await self.find_device(SYSTEM_DEVICE_IP)
        if device is not None:
            return device
        device = Device(
            address=SYSTEM_DEVICE_IP,
            display_name=SYSTEM_DEVICE_NAME,
            device_type=DeviceType.SYSTEM,
            status=DeviceStatus.ONLINE,
            discovered_by="system",
        )
        await self.upsert_device(device)
        return device

    async def upsert_discovered(
        self,
        result: DiscoveryResult,
        discovered_by: str = "auto_scan",
        now: datetime | None = None,
    ) -> tuple[Device, bool]:
        """Fold a discovery result into a device record.

        Returns the stored device and whether it was newly created.
        """
        now = now or _now()
        existing = await self.find_device(result.address)
        if existing is None:
            description = f"Auto-discovered via {', '.join(result.methods)}"
            if result.snmp_data and result.snmp_data.sys_descr:
                description += f". {result.snmp_data.sys_descr}"
            device = Device(
                address=result.address,
                display_name=result.hostname or f"host-{result.address}",
                hostname=result.hostname,
                mac_address=result.mac_address,
                vendor=result.vendor,
                device_type=result.device_type,
                status=DeviceStatus.ONLINE,
                metrics=DeviceMetrics(
                    last_seen=now,
                    response_time_ms=result.response_time_ms,
                ),
                open_ports=list(result.open_ports),
                services=list(result.services),
                description=description,
                discovered_by=discovered_by,
                first_seen=now,
            )
            await self.upsert_device(device)
            return device, True

        patch: dict[str, Any] = {
            "last_seen": now,
            "response_time_ms": result.response_time_ms,
        }
        placeholder = not existing.display_name or existing.display_name.startswith("host-")
        if result.hostname and placeholder:
            patch["display_name"] = result.hostname
            patch["hostname"] = result.hostname
        if result.open_ports:
            patch["open_ports"] = list(result.open_ports)
            patch["services"] = list(result.services)
        if result.mac_address and not existing.mac_address:
            patch["mac_address"] = result.mac_address
            patch["vendor"] = result.vendor
        if result.device_type != DeviceType.UNKNOWN and existing.device_type == DeviceType.UNKNOWN:
            patch["device_type"] = result.device_type
        await self.update_device(result.address, patch)
        updated = await self.find_device(result.address)
        assert updated is not None
        return updated, False

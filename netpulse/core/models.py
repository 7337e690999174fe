"""Device, alert and discovery models for NetPulse."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DeviceType(str, Enum):
    ROUTER = "router"
    SWITCH = "switch"
    SERVER = "server"
    PRINTER = "printer"
    CAMERA = "camera"
    NAS = "nas"
    COMPUTER = "computer"
    UNKNOWN = "unknown"
    # Virtual device owning system-resource alerts
    SYSTEM = "system"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertType:
    """Alert categories raised by the engine."""

    DEVICE_UNREACHABLE = "Device Unreachable"
    DEVICE_BACK_ONLINE = "Device Back Online"
    HIGH_RESPONSE_TIME = "High Response Time"
    HIGH_MEMORY_USAGE = "High Memory Usage"
    HIGH_CPU_LOAD = "High CPU Load"
    SYSTEM_RESTART = "System Restart"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Alert(BaseModel):
    """A single notable event tied to a device or to the system itself."""

    id: int | None = None
    device_address: str | None = None
    type: str
    severity: Severity
    message: str
    value: float | None = None
    threshold: float | None = None
    timestamp: datetime = Field(default_factory=_now)
    acknowledged: bool = False
    resolved_at: datetime | None = None


class DeviceMetrics(BaseModel):
    last_seen: datetime | None = None
    response_time_ms: float | None = None
    consecutive_failures: int = Field(default=0, ge=0)


class Device(BaseModel):
    """A monitored network host, keyed by its address."""

    address: str  # Primary key
    display_name: str | None = None
    hostname: str | None = None
    mac_address: str | None = None
    vendor: str | None = None
    model: str | None = None
    device_type: DeviceType = DeviceType.UNKNOWN
    status: DeviceStatus = DeviceStatus.ONLINE
    metrics: DeviceMetrics = Field(default_factory=DeviceMetrics)
    open_ports: list[int] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    description: str | None = None
    discovered_by: str | None = None
    first_seen: datetime = Field(default_factory=_now)
    alerts: list[Alert] = Field(default_factory=list)

    @property
    def name(self) -> str:
        """Best available name for display purposes."""
        return self.display_name or self.hostname or self.address

    @property
    def is_online(self) -> bool:
        return self.status == DeviceStatus.ONLINE


class ProbeResult(BaseModel):
    """Outcome of a single reachability probe."""

    alive: bool
    response_time_ms: float | None = None


class SnmpData(BaseModel):
    sys_name: str | None = None
    sys_descr: str | None = None
    sys_object_id: str | None = None
    sys_uptime_ticks: int | None = None
    interfaces: list[str] = Field(default_factory=list)
    community: str | None = None


class DiscoveryResult(BaseModel):
    """Ephemeral profile produced by one discovery pass over a single address."""

    address: str
    reachable: bool = False
    response_time_ms: float | None = None
    mac_address: str | None = None
    vendor: str | None = None
    hostname: str | None = None
    open_ports: list[int] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    snmp_data: SnmpData | None = None
    device_type: DeviceType = DeviceType.UNKNOWN
    methods: list[str] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "hostname": self.hostname,
            "deviceType": self.device_type.value,
            "methods": list(self.methods),
        }


class LocalNetwork(BaseModel):
    """A candidate scan range derived from a local interface or a fallback."""

    network_range: str
    interface: str
    address: str | None = None
    source: str
    priority: int
    description: str


class HostnameUpdate(BaseModel):
    """Outcome of re-resolving the hostname of one stored device."""

    address: str
    status: str
    old_name: str | None = None
    new_name: str | None = None
    message: str | None = None

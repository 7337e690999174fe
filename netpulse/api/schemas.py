"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from netpulse.core.models import (
    Alert,
    DeviceMetrics,
    DeviceStatus,
    DeviceType,
    HostnameUpdate,
    LocalNetwork,
)


class DeviceResponse(BaseModel):
    address: str
    name: str
    display_name: str | None = None
    hostname: str | None = None
    mac_address: str | None = None
    vendor: str | None = None
    model: str | None = None
    device_type: DeviceType
    status: DeviceStatus
    metrics: DeviceMetrics
    open_ports: list[int] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    description: str | None = None
    discovered_by: str | None = None
    first_seen: datetime
    open_alerts: int = 0


class DeviceDetail(DeviceResponse):
    alerts: list[Alert] = Field(default_factory=list)


class MonitoringStartRequest(BaseModel):
    interval_minutes: float | None = Field(None, gt=0)


class MonitoringStatus(BaseModel):
    running: bool
    uptime: float
    interval_minutes: float
    ticks: int


class CheckReport(BaseModel):
    system_alerts: int
    device_alerts: int
    total_alerts: int
    devices_checked: int
    sweep_skipped: bool


class ScanRequest(BaseModel):
    network_range: str = "auto"
    methods: list[str] | None = None
    communities: list[str] | None = None


class DiscoverRequest(BaseModel):
    address: str
    methods: list[str] | None = None
    communities: list[str] | None = None


class ScanTriggerResponse(BaseModel):
    status: str
    message: str


class ScanStatus(BaseModel):
    is_running: bool
    network: str | None = None
    methods: list[str] = Field(default_factory=list)
    progress: int = 0
    scanned_hosts: int = 0
    total_hosts: int = 0
    found_devices: int = 0


class EventResponse(BaseModel):
    event_type: str
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class NetworksResponse(BaseModel):
    current: str
    networks: list[LocalNetwork] = Field(default_factory=list)
    recommended: list[LocalNetwork] = Field(default_factory=list)


class ResolveHostnamesRequest(BaseModel):
    addresses: list[str] | None = None


class ResolveHostnamesResponse(BaseModel):
    results: list[HostnameUpdate] = Field(default_factory=list)
    total_processed: int = 0
    updated: int = 0

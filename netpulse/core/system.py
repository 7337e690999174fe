"""System-resource checks for the host running NetPulse."""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime
from typing import Callable

import psutil
from pydantic import BaseModel

from netpulse.config import Settings
from netpulse.core.alerts import should_auto_acknowledge, should_suppress
from netpulse.core.db import DeviceStore
from netpulse.core.events import EventBus, SYSTEM_DEVICE_IP, system_alert_event
from netpulse.core.models import Alert, AlertType, Severity, _now

logger = logging.getLogger(__name__)


class SystemMetrics(BaseModel):
    memory_percent: float
    cpu_load_percent: float | None = None
    load_average: float | None = None
    uptime_minutes: float


def collect_system_metrics() -> SystemMetrics:
    """Sample memory usage, 1-minute load per CPU and host uptime."""
    memory = psutil.virtual_memory()
    load_avg: float | None = None
    load_percent: float | None = None
    # Load average is not meaningful on Windows
    if sys.platform != "win32":
        load_avg = psutil.getloadavg()[0]
        cpus = psutil.cpu_count() or 1
        load_percent = load_avg / cpus * 100
    return SystemMetrics(
        memory_percent=memory.percent,
        cpu_load_percent=load_percent,
        load_average=load_avg,
        uptime_minutes=(time.time() - psutil.boot_time()) / 60,
    )


def evaluate_system(metrics: SystemMetrics, settings: Settings, now: datetime) -> list[Alert]:
    """Turn a metrics sample into candidate alerts (before deduplication)."""
    alerts: list[Alert] = []

    mem = metrics.memory_percent
    if mem > settings.memory_critical_percent:
        alerts.append(Alert(
            type=AlertType.HIGH_MEMORY_USAGE,
            severity=Severity.CRITICAL,
            message=f"System memory usage is critically high: {mem:.1f}%",
            value=mem,
            threshold=settings.memory_critical_percent,
            timestamp=now,
        ))
    elif mem > settings.memory_warning_percent:
        alerts.append(Alert(
            type=AlertType.HIGH_MEMORY_USAGE,
            severity=Severity.WARNING,
            message=f"System memory usage is high: {mem:.1f}%",
            value=mem,
            threshold=settings.memory_warning_percent,
            timestamp=now,
        ))

    load = metrics.cpu_load_percent
    if load is not None:
        detail = f"{load:.1f}% ({metrics.load_average or 0:.2f})"
        if load > settings.cpu_critical_percent:
            alerts.append(Alert(
                type=AlertType.HIGH_CPU_LOAD,
                severity=Severity.CRITICAL,
                message=f"System CPU load is critically high: {detail}",
                value=load,
                threshold=settings.cpu_critical_percent,
                timestamp=now,
            ))
        elif load > settings.cpu_warning_percent:
            alerts.append(Alert(
                type=AlertType.HIGH_CPU_LOAD,
                severity=Severity.WARNING,
                message=f"System CPU load is high: {detail}",
                value=load,
                threshold=settings.cpu_warning_percent,
                timestamp=now,
            ))

    if metrics.uptime_minutes < settings.restart_uptime_minutes:
        alerts.append(Alert(
            type=AlertType.SYSTEM_RESTART,
            severity=Severity.INFO,
            message=(
                "System was recently restarted. "
                f"Uptime: {round(metrics.uptime_minutes)} minutes"
            ),
            value=metrics.uptime_minutes,
            threshold=settings.restart_uptime_minutes,
            timestamp=now,
        ))
    return alerts


class SystemChecker:
    """Raises deduplicated system alerts against the virtual system device."""

    def __init__(
        self,
        settings: Settings,
        store: DeviceStore,
        event_bus: EventBus,
        clock: Callable[[], datetime] = _now,
        collector: Callable[[], SystemMetrics] = collect_system_metrics,
    ) -> None:
        self.settings = settings
        self.store = store
        self.event_bus = event_bus
        self.clock = clock
        self.collector = collector

    async def run(self) -> list[Alert]:
        """Sample, deduplicate, persist and broadcast. Never raises."""
        try:
            metrics = self.collector()
            now = self.clock()
            system_device = await self.store.ensure_system_device()
            existing = list(system_device.alerts)

            stale = [
                a.id for a in existing
                if a.id is not None
                and should_auto_acknowledge(a, now, self.settings.info_auto_ack_seconds)
            ]
            if stale:
                await self.store.acknowledge_alerts(SYSTEM_DEVICE_IP, ids=stale)
                existing = [a for a in existing if a.id not in stale]

            fresh: list[Alert] = []
            for alert in evaluate_system(metrics, self.settings, now):
                if should_suppress(
                    [*existing, *fresh], alert.type, now, self.settings.dedup_window_seconds
                ):
                    continue
                fresh.append(alert)

            stored = await self.store.append_alerts(SYSTEM_DEVICE_IP, fresh) if fresh else []
        except Exception as exc:
            logger.error("System checks failed: %s", exc)
            return []

        logger.debug(
            "System metrics: memory=%.1f%% load=%s uptime=%.0fmin",
            metrics.memory_percent,
            f"{metrics.cpu_load_percent:.1f}%" if metrics.cpu_load_percent is not None else "n/a",
            metrics.uptime_minutes,
        )
        for alert in stored:
            logger.info("System alert [%s] %s", alert.severity.value, alert.message)
            await self.event_bus.publish(system_alert_event(alert))
        return stored

"""Monitoring scheduler: periodic system checks and device health sweeps."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from netpulse.core.coordinator import ScanStateReader, scan_blocks_sweep
from netpulse.core.events import Event, EventBus, EventType
from netpulse.core.health import HealthMonitor, HealthOutcome
from netpulse.core.models import Alert
from netpulse.core.system import SystemChecker

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    system_alerts: list[Alert] = field(default_factory=list)
    outcomes: list[HealthOutcome] = field(default_factory=list)
    sweep_skipped: bool = False

    @property
    def device_alerts(self) -> list[Alert]:
        return [a for o in self.outcomes for a in o.new_alerts]

    def as_dict(self) -> dict[str, Any]:
        return {
            "systemAlerts": len(self.system_alerts),
            "deviceAlerts": len(self.device_alerts),
            "totalAlerts": len(self.system_alerts) + len(self.device_alerts),
            "devicesChecked": len(self.outcomes),
            "sweepSkipped": self.sweep_skipped,
        }


class MonitoringScheduler:
    """Drives periodic ticks: system checks, then a device sweep.

    The sweep is skipped while a bulk scan holds the scan lease (or when the
    lease state cannot be read).
    """

    def __init__(
        self,
        health: HealthMonitor,
        system: SystemChecker,
        coordinator: ScanStateReader,
        event_bus: EventBus,
        interval_minutes: float = 5,
    ) -> None:
        self.health = health
        self.system = system
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.interval_minutes = interval_minutes
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._started_at: float | None = None
        self._ticks = 0
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stop.is_set()

    async def start(self, interval_minutes: float | None = None) -> None:
        """Start periodic monitoring. A second call while running is a no-op."""
        if self.running:
            logger.warning("Monitoring scheduler is already running")
            return
        if interval_minutes is not None:
            self.interval_minutes = interval_minutes
        logger.info("Starting monitoring with %s minute interval", self.interval_minutes)
        self._stop = asyncio.Event()
        self._started_at = time.monotonic()
        self._task = asyncio.create_task(self._loop())
        await self._publish_status("started")

    async def stop(self) -> None:
        """Cancel the pending timer; a tick already in flight runs to completion."""
        if self._task is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        await asyncio.gather(task, return_exceptions=True)
        self._started_at = None
        logger.info("Monitoring scheduler stopped")
        await self._publish_status("stopped")

    async def _loop(self) -> None:
        interval = self.interval_minutes * 60
        while not self._stop.is_set():
            try:
                await self.run_tick()
            except Exception as exc:
                logger.error("Monitoring tick failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def run_tick(self) -> TickReport:
        """One pass: system checks, then the device sweep unless a scan is running.

        Ticks never overlap; a tick requested while another is in flight waits
        for it and then evaluates the devices as that tick left them.
        """
        if self._tick_lock.locked():
            logger.debug("Monitoring tick already in progress, waiting")
        async with self._tick_lock:
            self._ticks += 1
            report = TickReport()
            report.system_alerts = await self.system.run()
            if scan_blocks_sweep(self.coordinator):
                report.sweep_skipped = True
            else:
                report.outcomes = await self.health.sweep()
            logger.debug("Tick %d: %s", self._ticks, report.as_dict())
            return report

    async def trigger_checks(self) -> dict[str, Any]:
        """Operator-initiated run of both phases, outside the timer cadence."""
        logger.info("Manually triggering monitoring checks")
        report = await self.run_tick()
        return report.as_dict()

    def get_status(self) -> dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return {
            "running": self.running,
            "uptime": round(uptime, 1),
            "intervalMinutes": self.interval_minutes,
            "ticks": self._ticks,
        }

    async def _publish_status(self, status: str) -> None:
        await self.event_bus.publish(Event(
            event_type=EventType.SERVICE_STATUS,
            payload={"status": status, **self.get_status()},
        ))

"""Per-device health evaluation with flap suppression.

One fresh reachability probe is turned into a debounced online/offline
transition plus the alerts it warrants:

* a failed probe only bumps ``consecutive_failures`` until the threshold is
  reached, and the device flips offline (with one critical alert) only if it
  was online;
* the first successful probe after being offline flips it back online,
  resolves outstanding "Device Unreachable" alerts and raises a deduplicated
  "Device Back Online" info alert;
* a slow reply raises a deduplicated "High Response Time" warning;
* stale info alerts are auto-acknowledged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from netpulse.config import Settings
from netpulse.core.alerts import should_auto_acknowledge, should_suppress
from netpulse.core.db import DeviceStore
from netpulse.core.discovery import DiscoveryEngine
from netpulse.core.events import EventBus, device_alert_event, status_event
from netpulse.core.models import (
    Alert,
    AlertType,
    Device,
    DeviceStatus,
    ProbeResult,
    Severity,
    _now,
)

logger = logging.getLogger(__name__)


@dataclass
class HealthOutcome:
    """Result of evaluating one probe against one device."""

    device: Device
    new_alerts: list[Alert] = field(default_factory=list)
    resolved_ids: list[int] = field(default_factory=list)
    auto_acked_ids: list[int] = field(default_factory=list)
    status_changed: bool = False

    @property
    def patch(self) -> dict[str, Any]:
        return {
            "status": self.device.status,
            "metrics": self.device.metrics,
        }


class HealthMonitor:
    """Evaluates reachability over time per device and decides on alerts."""

    def __init__(
        self,
        settings: Settings,
        engine: DiscoveryEngine,
        store: DeviceStore,
        event_bus: EventBus,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.store = store
        self.event_bus = event_bus
        self.clock = clock

    # -- pure evaluation --------------------------------------------------

    def evaluate(
        self,
        device: Device,
        probe: ProbeResult,
        now: datetime | None = None,
    ) -> HealthOutcome:
        """Apply one probe result to `device` without touching the store."""
        now = now or self.clock()
        s = self.settings
        was_online = device.status == DeviceStatus.ONLINE
        metrics = device.metrics.model_copy()
        status = device.status
        alerts = [a.model_copy() for a in device.alerts]
        new_alerts: list[Alert] = []
        resolved_ids: list[int] = []
        auto_acked_ids: list[int] = []

        def raise_alert(alert: Alert, dedup: bool) -> None:
            if dedup and should_suppress(alerts, alert.type, now, s.dedup_window_seconds):
                logger.debug("Suppressed duplicate %r alert for %s", alert.type, device.address)
                return
            alerts.append(alert)
            new_alerts.append(alert)

        if not probe.alive:
            metrics.consecutive_failures += 1
            if metrics.consecutive_failures >= s.failure_threshold and was_online:
                status = DeviceStatus.OFFLINE
                raise_alert(
                    Alert(
                        type=AlertType.DEVICE_UNREACHABLE,
                        severity=Severity.CRITICAL,
                        message=(
                            f"Device {device.name} ({device.address}) is unreachable after "
                            f"{metrics.consecutive_failures} consecutive failed checks"
                        ),
                        value=metrics.consecutive_failures,
                        threshold=s.failure_threshold,
                        timestamp=now,
                    ),
                    dedup=False,
                )
        else:
            metrics.consecutive_failures = 0
            metrics.last_seen = now
            metrics.response_time_ms = probe.response_time_ms
            if not was_online:
                status = DeviceStatus.ONLINE
                for alert in alerts:
                    if alert.type == AlertType.DEVICE_UNREACHABLE and not alert.acknowledged:
                        alert.acknowledged = True
                        alert.resolved_at = now
                        if alert.id is not None:
                            resolved_ids.append(alert.id)
                raise_alert(
                    Alert(
                        type=AlertType.DEVICE_BACK_ONLINE,
                        severity=Severity.INFO,
                        message=f"Device {device.name} ({device.address}) is back online",
                        value=probe.response_time_ms,
                        timestamp=now,
                    ),
                    dedup=True,
                )

            rtt = probe.response_time_ms
            if rtt is not None and rtt > s.high_response_ms:
                raise_alert(
                    Alert(
                        type=AlertType.HIGH_RESPONSE_TIME,
                        severity=Severity.WARNING,
                        message=f"High response time on {device.name}: {rtt:.0f}ms",
                        value=rtt,
                        threshold=s.high_response_ms,
                        timestamp=now,
                    ),
                    dedup=True,
                )

        for alert in alerts:
            if alert.id is not None and should_auto_acknowledge(alert, now, s.info_auto_ack_seconds):
                alert.acknowledged = True
                auto_acked_ids.append(alert.id)

        updated = device.model_copy(
            update={"status": status, "metrics": metrics, "alerts": alerts}
        )
        return HealthOutcome(
            device=updated,
            new_alerts=new_alerts,
            resolved_ids=resolved_ids,
            auto_acked_ids=auto_acked_ids,
            status_changed=status != device.status,
        )

    # -- probing, persistence and broadcast -------------------------------

    async def _probe(self, device: Device) -> ProbeResult:
        try:
            return await self.engine.probe(device.address)
        except Exception as exc:
            # A probe that blows up never counts as "online"
            logger.debug("Probe for %s raised: %s", device.address, exc)
            return ProbeResult(alive=False)

    async def check_device(self, device: Device) -> HealthOutcome | None:
        """Probe, evaluate, persist and broadcast one device.

        Returns None if the outcome could not be persisted.
        """
        probe = await self._probe(device)
        now = self.clock()
        outcome = self.evaluate(device, probe, now)

        try:
            stored = await self.store.apply_health_update(
                device.address,
                outcome.patch,
                outcome.new_alerts,
                outcome.resolved_ids,
                outcome.auto_acked_ids,
                now,
            )
        except Exception as exc:
            logger.error("Failed to persist health check for %s: %s", device.address, exc)
            return None
        outcome.new_alerts = stored

        if outcome.status_changed:
            logger.info("Device %s is now %s", device.address, outcome.device.status.value)
            await self.event_bus.publish(status_event(outcome.device, now))
        for alert in stored:
            logger.info("Alert [%s] %s: %s", alert.severity.value, alert.type, alert.message)
            await self.event_bus.publish(device_alert_event(alert, outcome.device))
        return outcome

    async def sweep(self) -> list[HealthOutcome]:
        """Check every device concurrently; one bad device never blocks the rest."""
        devices = await self.store.list_devices()
        logger.debug("Checking health for %d devices", len(devices))
        results = await asyncio.gather(
            *(self.check_device(d) for d in devices),
            return_exceptions=True,
        )
        outcomes: list[HealthOutcome] = []
        for device, result in zip(devices, results):
            if isinstance(result, BaseException):
                logger.error("Health check failed for %s: %s", device.address, result)
            elif result is not None:
                outcomes.append(result)
        return outcomes

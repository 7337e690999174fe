"""In-memory async event bus for alerts, status changes and discovery progress."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from netpulse.core.models import Alert, Device, _now

logger = logging.getLogger(__name__)

SYSTEM_DEVICE_ID = "system"
SYSTEM_DEVICE_NAME = "NMS Server"
SYSTEM_DEVICE_IP = "localhost"


class EventType(str, Enum):
    NEW_ALERT = "newAlert"
    DEVICE_STATUS_CHANGED = "device.statusChanged"
    DEVICE_DISCOVERED = "device.discovered"
    DEVICE_UPDATED = "device.updated"
    HOSTNAME_UPDATED = "device.hostnameUpdated"
    SCAN_STARTED = "discovery.scanStarted"
    SCAN_PROGRESS = "discovery.scanProgress"
    SCAN_COMPLETED = "discovery.scanCompleted"
    SCAN_ERROR = "discovery.scanError"
    SERVICE_STATUS = "monitoring.serviceStatus"


class Event(BaseModel):
    """A broadcastable notification."""

    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)


def alert_event(
    alert: Alert,
    device_id: str,
    device_name: str,
    device_ip: str,
) -> Event:
    return Event(
        event_type=EventType.NEW_ALERT,
        timestamp=alert.timestamp,
        payload={
            "type": alert.type,
            "severity": alert.severity.value,
            "message": alert.message,
            "deviceId": device_id,
            "deviceName": device_name,
            "deviceIp": device_ip,
            "timestamp": alert.timestamp.isoformat(),
            "value": alert.value,
            "threshold": alert.threshold,
        },
    )


def device_alert_event(alert: Alert, device: Device) -> Event:
    return alert_event(alert, device.address, device.name, device.address)


def system_alert_event(alert: Alert) -> Event:
    return alert_event(alert, SYSTEM_DEVICE_ID, SYSTEM_DEVICE_NAME, SYSTEM_DEVICE_IP)


def status_event(device: Device, timestamp: datetime) -> Event:
    return Event(
        event_type=EventType.DEVICE_STATUS_CHANGED,
        timestamp=timestamp,
        payload={
            "deviceId": device.address,
            "address": device.address,
            "status": device.status.value,
            "responseTimeMs": device.metrics.response_time_ms,
            "timestamp": timestamp.isoformat(),
        },
    )


class EventBus:
    """Async pub/sub event bus using per-subscriber queues.

    Subscribers receive Event objects via asyncio.Queue.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[Event]] = []
        self._history: list[Event] = []
        self._max_history = 500

    def subscribe(self) -> asyncio.Queue[Event]:
        """Create a new subscription queue and return it."""
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=256)
        self._subscribers.append(queue)
        logger.debug("New event subscriber (total: %d)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        """Remove a subscription queue."""
        try:
            self._subscribers.remove(queue)
            logger.debug("Subscriber removed (total: %d)", len(self._subscribers))
        except ValueError:
            pass

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.debug("Event: %s %s", event.event_type.value, event.payload.get("deviceId", ""))

        dead_queues: list[asyncio.Queue[Event]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event and try again
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    dead_queues.append(queue)

        for q in dead_queues:
            self.unsubscribe(q)

    @property
    def recent_events(self) -> list[Event]:
        """Return the most recent events (newest first)."""
        return list(reversed(self._history))

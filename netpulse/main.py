"""Main entry point: wires store, event bus, engine, monitor and API server."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from netpulse.config import Settings, get_settings
from netpulse.core.coordinator import ScanCoordinator
from netpulse.core.db import DeviceStore
from netpulse.core.discovery import DiscoveryEngine
from netpulse.core.events import EventBus
from netpulse.core.health import HealthMonitor
from netpulse.core.scanner import NetworkDiscovery
from netpulse.core.system import SystemChecker
from netpulse.monitor import MonitoringScheduler

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class Services:
    """Every long-lived component, constructed once and passed explicitly."""

    settings: Settings
    store: DeviceStore
    event_bus: EventBus
    coordinator: ScanCoordinator
    engine: DiscoveryEngine
    health: HealthMonitor
    system: SystemChecker
    scheduler: MonitoringScheduler
    discovery: NetworkDiscovery

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.store.close()


async def build_services(settings: Settings | None = None) -> Services:
    """Open the store and construct the engine components."""
    settings = settings or get_settings()
    store = DeviceStore(settings.resolved_db_path)
    await store.initialize()

    event_bus = EventBus()
    coordinator = ScanCoordinator()
    engine = DiscoveryEngine(settings)
    health = HealthMonitor(settings, engine, store, event_bus)
    system = SystemChecker(settings, store, event_bus)
    scheduler = MonitoringScheduler(
        health,
        system,
        coordinator,
        event_bus,
        interval_minutes=settings.monitor_interval_minutes,
    )
    discovery = NetworkDiscovery(settings, engine, store, event_bus, coordinator)
    return Services(
        settings=settings,
        store=store,
        event_bus=event_bus,
        coordinator=coordinator,
        engine=engine,
        health=health,
        system=system,
        scheduler=scheduler,
        discovery=discovery,
    )


async def run_server(
    host: str = "127.0.0.1",
    port: int = 8556,
    with_monitor: bool = True,
) -> None:
    """Start the API server, optionally with the monitoring scheduler."""
    import uvicorn

    from netpulse.api.server import create_app

    settings = get_settings(api_host=host, api_port=port)
    setup_logging(settings.log_level)

    services = await build_services(settings)
    app = create_app(services)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)

    if with_monitor:
        await services.scheduler.start(settings.monitor_interval_minutes)
    try:
        await server.serve()
    finally:
        await services.close()

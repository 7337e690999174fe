"""CLI command implementations for NetPulse."""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from netpulse.config import get_settings
from netpulse.core.errors import ScanInProgressError, UnreachableError
from netpulse.core.models import (
    Alert,
    Device,
    DeviceStatus,
    DeviceType,
    HostnameUpdate,
    LocalNetwork,
    Severity,
)
from netpulse.core.networks import (
    detect_network,
    list_local_networks,
    recommended_ranges,
    resolve_network_range,
)
from netpulse.main import Services, build_services, setup_logging

console = Console()

T = TypeVar("T")

_SEVERITY_STYLE: dict[Severity, str] = {
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "bold red",
}


def _with_services(fn: Callable[[Services], Awaitable[T]]) -> T:
    """Build the services, run `fn` against them, and always close the store."""

    async def _run() -> T:
        services = await build_services(get_settings())
        try:
            return await fn(services)
        finally:
            await services.close()

    return asyncio.run(_run())


def _address_sort_key(d: Device) -> tuple[int, int, str]:
    """Online first, then numerically by address."""
    try:
        num = int(ipaddress.ip_address(d.address))
    except ValueError:
        num = 0
    return (0 if d.is_online else 1, num, d.address)


def _build_device_table(devices: list[Device], title: str = "Devices") -> Table:
    table = Table(
        title=title,
        expand=True,
        padding=(0, 1),
        title_style="bold cyan",
        border_style="bright_black",
    )
    table.add_column("S", width=2, justify="center", no_wrap=True)
    table.add_column("Address", min_width=11, max_width=15, no_wrap=True)
    table.add_column("Name", no_wrap=True, ratio=2)
    table.add_column("Type", no_wrap=True)
    table.add_column("Vendor", no_wrap=True, ratio=1)
    table.add_column("RTT", width=7, no_wrap=True, justify="right")
    table.add_column("Fails", width=5, justify="right")
    table.add_column("Alerts", width=6, justify="right")

    for device in sorted(devices, key=_address_sort_key):
        rtt = device.metrics.response_time_ms
        open_alerts = sum(1 for a in device.alerts if not a.acknowledged)
        table.add_row(
            "[bold green]ON[/]" if device.is_online else "[red]--[/]",
            device.address,
            device.name,
            device.device_type.value,
            device.vendor or "Unknown",
            f"{rtt:.0f}ms" if rtt is not None else "-",
            str(device.metrics.consecutive_failures),
            f"[yellow]{open_alerts}[/]" if open_alerts else "0",
            style="" if device.is_online else "dim",
        )
    return table


def _build_alert_table(alerts: list[Alert], title: str = "Alerts") -> Table:
    table = Table(title=title, expand=True, title_style="bold cyan", border_style="bright_black")
    table.add_column("ID", justify="right", no_wrap=True)
    table.add_column("Time", no_wrap=True)
    table.add_column("Device", no_wrap=True)
    table.add_column("Severity", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Message", ratio=3)
    table.add_column("Ack", justify="center", width=3)

    for alert in alerts:
        style = _SEVERITY_STYLE.get(alert.severity, "")
        table.add_row(
            str(alert.id),
            alert.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            alert.device_address or "-",
            f"[{style}]{alert.severity.value}[/]",
            alert.type,
            alert.message,
            "[green]✓[/]" if alert.acknowledged else "",
        )
    return table


def cmd_discover(
    address: str = typer.Argument(help="Address of the device to discover."),
    methods: Optional[list[str]] = typer.Option(
        None, "--method", "-m", help="Discovery method (repeatable): ping, arp, port, snmp."
    ),
    communities: Optional[list[str]] = typer.Option(
        None, "--community", "-c", help="SNMP community to try first (repeatable)."
    ),
    save: bool = typer.Option(True, "--save/--no-save", help="Store the discovered device."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level."),
) -> None:
    """Probe a single address and print its profile."""
    setup_logging(log_level)

    async def _discover(services: Services) -> Any:
        result = await services.engine.discover(address, communities, methods)
        if save:
            await services.store.upsert_discovered(result, discovered_by="manual")
        return result

    try:
        result = _with_services(_discover)
    except UnreachableError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(f"[red]Invalid request: {exc}[/]")
        raise typer.Exit(2)

    snmp = result.snmp_data
    panel_text = (
        f"[bold]Address:[/]     {result.address}\n"
        f"[bold]Hostname:[/]    {result.hostname or 'N/A'}\n"
        f"[bold]Type:[/]        {result.device_type.value}\n"
        f"[bold]MAC:[/]         {result.mac_address or 'N/A'}\n"
        f"[bold]Vendor:[/]      {result.vendor or 'Unknown'}\n"
        f"[bold]RTT:[/]         "
        f"{f'{result.response_time_ms:.1f}ms' if result.response_time_ms is not None else 'N/A'}\n"
        f"[bold]Open Ports:[/]  {', '.join(map(str, result.open_ports)) or 'None'}\n"
        f"[bold]Services:[/]    {', '.join(result.services) or 'None'}\n"
        f"[bold]SNMP:[/]        {snmp.sys_descr if snmp and snmp.sys_descr else 'N/A'}\n"
        f"[bold]Methods:[/]     {', '.join(result.methods)}"
    )
    console.print(Panel(panel_text, title=result.hostname or result.address, border_style="cyan"))


def cmd_scan(
    network_range: str = typer.Argument(
        "auto", help="CIDR range to scan, e.g. 192.168.1.0/24, or \"auto\" for the local network."
    ),
    methods: Optional[list[str]] = typer.Option(
        None, "--method", "-m", help="Discovery method (repeatable)."
    ),
    communities: Optional[list[str]] = typer.Option(
        None, "--community", "-c", help="SNMP community to try first (repeatable)."
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level."),
) -> None:
    """Scan a network range and store every responding host."""
    setup_logging(log_level)

    async def _scan(services: Services) -> tuple[dict[str, Any], list[Device]]:
        summary = await services.discovery.scan_range(resolved, methods, communities)
        return summary, await services.store.list_devices()

    resolved = resolve_network_range(network_range, get_settings())
    console.print(f"[bold]Scanning[/] {resolved}...", highlight=False)
    try:
        summary, devices = _with_services(_scan)
    except ScanInProgressError as exc:
        console.print(f"[yellow]{exc}[/]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(f"[red]Invalid request: {exc}[/]")
        raise typer.Exit(2)

    console.print(
        f"Found [bold]{summary['foundDevices']}[/] of {summary['totalScanned']} hosts "
        f"in {summary['durationSeconds']:.1f}s."
    )
    if devices:
        console.print()
        console.print(_build_device_table(devices, title="Known Devices"))


def cmd_devices(
    status: Optional[DeviceStatus] = typer.Option(None, "--status", help="Filter by status."),
    device_type: Optional[DeviceType] = typer.Option(None, "--type", help="Filter by device type."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List all known devices from the database."""
    setup_logging(log_level)

    async def _list(services: Services) -> list[Device]:
        return await services.store.list_devices(status=status, device_type=device_type)

    devices = _with_services(_list)
    if not devices:
        console.print("[yellow]No devices in database. Run 'netpulse scan' first.[/]")
        raise typer.Exit(0)

    console.print()
    console.print(_build_device_table(devices, title="Known Devices"))
    console.print(f"\n  [bold]{len(devices)}[/] devices total.\n")


def cmd_device(
    address: str = typer.Argument(help="Address of the device."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Show detailed info and the alert log for a single device."""
    setup_logging(log_level)

    async def _detail(services: Services) -> Device | None:
        return await services.store.find_device(address)

    device = _with_services(_detail)
    if not device:
        console.print(f"[red]Device {address} not found.[/]")
        raise typer.Exit(1)

    m = device.metrics
    panel_text = (
        f"[bold]Address:[/]     {device.address}\n"
        f"[bold]Hostname:[/]    {device.hostname or 'N/A'}\n"
        f"[bold]Type:[/]        {device.device_type.value}\n"
        f"[bold]Status:[/]      {device.status.value}\n"
        f"[bold]MAC:[/]         {device.mac_address or 'N/A'}\n"
        f"[bold]Vendor:[/]      {device.vendor or 'Unknown'}\n"
        f"[bold]Open Ports:[/]  {', '.join(map(str, device.open_ports)) or 'None'}\n"
        f"[bold]RTT:[/]         "
        f"{f'{m.response_time_ms:.1f}ms' if m.response_time_ms is not None else 'N/A'}\n"
        f"[bold]Failures:[/]    {m.consecutive_failures}\n"
        f"[bold]Last Seen:[/]   "
        f"{m.last_seen.strftime('%Y-%m-%d %H:%M:%S') if m.last_seen else 'N/A'}\n"
        f"[bold]First Seen:[/]  {device.first_seen.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"[bold]Description:[/] {device.description or 'N/A'}"
    )
    console.print(Panel(panel_text, title=device.name, border_style="cyan"))
    if device.alerts:
        console.print(_build_alert_table(list(reversed(device.alerts)), title="Alert Log"))


def cmd_alerts(
    address: Optional[str] = typer.Option(None, "--device", "-d", help="Only this device."),
    unacknowledged: bool = typer.Option(False, "--open", help="Only unacknowledged alerts."),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of alerts."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List recent alerts, newest first."""
    setup_logging(log_level)

    async def _alerts(services: Services) -> list[Alert]:
        return await services.store.list_alerts(
            address, unacknowledged_only=unacknowledged, limit=limit
        )

    alerts = _with_services(_alerts)
    if not alerts:
        console.print("[green]No alerts.[/]")
        raise typer.Exit(0)
    console.print(_build_alert_table(alerts))


def cmd_ack(
    alert_id: int = typer.Argument(help="ID of the alert to acknowledge."),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Acknowledge a single alert."""
    setup_logging(log_level)

    async def _ack(services: Services) -> bool:
        return await services.store.acknowledge_alert(alert_id)

    if _with_services(_ack):
        console.print(f"[green]Alert {alert_id} acknowledged.[/]")
    else:
        console.print(f"[red]Alert {alert_id} not found or already acknowledged.[/]")
        raise typer.Exit(1)


def cmd_check(
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Run one round of system checks and a device health sweep."""
    setup_logging(log_level)

    async def _check(services: Services) -> dict[str, Any]:
        return await services.scheduler.trigger_checks()

    report = _with_services(_check)
    if report["sweepSkipped"]:
        console.print("[yellow]Device sweep skipped: a network scan is in progress.[/]")
    console.print(
        f"Checked [bold]{report['devicesChecked']}[/] devices: "
        f"{report['deviceAlerts']} device alerts, {report['systemAlerts']} system alerts."
    )


def cmd_serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="API server bind host."),
    port: int = typer.Option(8556, "--port", "-p", help="API server bind port."),
    monitor: bool = typer.Option(True, "--monitor/--no-monitor", help="Run periodic monitoring."),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Start the API server, optionally with periodic monitoring."""
    setup_logging(log_level)

    from netpulse.main import run_server

    asyncio.run(run_server(host=host, port=port, with_monitor=monitor))


def cmd_networks(
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Show detected local networks and the range an "auto" scan would use."""
    setup_logging(log_level)
    settings = get_settings()
    networks = list_local_networks()
    current = detect_network(settings, networks)

    table = Table(title="Scan Ranges", title_style="bold cyan", border_style="bright_black")
    table.add_column("Range", no_wrap=True)
    table.add_column("Interface", no_wrap=True)
    table.add_column("Address", no_wrap=True)
    table.add_column("Source")
    table.add_column("Description")
    candidates: list[LocalNetwork] = recommended_ranges(networks)
    for network in candidates:
        marker = "[bold green]*[/] " if network.network_range == current else ""
        table.add_row(
            f"{marker}{network.network_range}",
            network.interface,
            network.address or "-",
            network.source,
            network.description,
        )
    console.print(table)
    console.print(f"Auto scan range: [bold]{current}[/]")


def cmd_resolve_names(
    addresses: Optional[list[str]] = typer.Argument(
        None, help="Addresses to refresh (default: every stored device)."
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Re-resolve hostnames for stored devices and rename them."""
    setup_logging(log_level)

    async def _resolve(services: Services) -> list[HostnameUpdate]:
        return await services.discovery.refresh_hostnames(addresses or None)

    results = _with_services(_resolve)
    if not results:
        console.print("[dim]No devices to resolve.[/]")
        return
    for result in results:
        if result.status == "updated":
            console.print(f"[green]{result.address}[/]: {result.old_name} -> {result.new_name}")
        elif result.status == "unchanged":
            console.print(f"[dim]{result.address}: {result.new_name} (unchanged)[/]")
        else:
            console.print(f"[yellow]{result.address}: {result.status.replace('_', ' ')}[/]")
    updated = sum(1 for r in results if r.status == "updated")
    console.print(f"Updated [bold]{updated}[/] of {len(results)} devices.")

"""Typer CLI application for NetPulse."""

from __future__ import annotations

import typer

from netpulse.cli.commands import (
    cmd_ack,
    cmd_alerts,
    cmd_check,
    cmd_device,
    cmd_devices,
    cmd_discover,
    cmd_networks,
    cmd_resolve_names,
    cmd_scan,
    cmd_serve,
)

app = typer.Typer(
    name="netpulse",
    help="NetPulse: device discovery and health monitoring.",
    no_args_is_help=True,
    add_completion=False,
)

app.command("discover", help="Probe a single address and store its profile.")(cmd_discover)
app.command("scan", help="Scan a network range for devices.")(cmd_scan)
app.command("networks", help="Show detected local networks and the auto scan range.")(cmd_networks)
app.command("resolve-names", help="Re-resolve hostnames for stored devices.")(cmd_resolve_names)
app.command("devices", help="List all known devices from the database.")(cmd_devices)
app.command("device", help="Show detailed info for a single device.")(cmd_device)
app.command("alerts", help="List recent alerts.")(cmd_alerts)
app.command("ack", help="Acknowledge an alert.")(cmd_ack)
app.command("check", help="Run system checks and a device sweep once.")(cmd_check)
app.command("serve", help="Start the API server with periodic monitoring.")(cmd_serve)


if __name__ == "__main__":
    app()

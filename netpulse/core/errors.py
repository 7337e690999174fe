"""Exception types raised by the NetPulse engine."""

from __future__ import annotations


class NetPulseError(Exception):
    """Base class for NetPulse errors."""


class UnreachableError(NetPulseError):
    """No discovery method marked the address as reachable."""

    def __init__(self, address: str, methods: list[str] | None = None) -> None:
        self.address = address
        self.methods = list(methods or [])
        tried = ", ".join(self.methods) or "none"
        super().__init__(f"Device {address} is not reachable (tried: {tried})")


class ScanInProgressError(NetPulseError):
    """A bulk discovery scan already holds the scan lease."""


class StoreError(NetPulseError):
    """A persistence call failed."""

"""Scan lease arbitrating between a bulk discovery scan and the health monitor.

The bulk-scan initiator acquires the lease for the duration of its scan and
is the only party that releases it. The monitor only reads the state, via a
non-blocking ``try_read``, before each sweep.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, Protocol

from netpulse.core.errors import ScanInProgressError
from netpulse.core.models import _now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanState:
    is_running: bool
    owner: str | None = None
    network: str | None = None
    started_at: datetime | None = None


@dataclass(frozen=True)
class ScanLease:
    owner: str
    network: str | None = None
    started_at: datetime = field(default_factory=_now)
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


class ScanStateReader(Protocol):
    def try_read(self) -> ScanState: ...


class ScanCoordinator:
    """Process-wide, in-memory scan lease."""

    def __init__(self) -> None:
        self._lease: ScanLease | None = None

    def acquire(self, owner: str, network: str | None = None) -> ScanLease:
        """Take the lease; raises ScanInProgressError if it is already held."""
        if self._lease is not None:
            raise ScanInProgressError(
                f"Scan already in progress (owner={self._lease.owner}, "
                f"network={self._lease.network})"
            )
        self._lease = ScanLease(owner=owner, network=network)
        logger.info("Scan lease acquired by %s for %s", owner, network or "n/a")
        return self._lease

    def release(self, lease: ScanLease) -> None:
        """Release the lease. Only the current holder's lease clears it."""
        if self._lease is None or self._lease.token != lease.token:
            logger.warning("Ignoring release of a lease not currently held (%s)", lease.owner)
            return
        self._lease = None
        logger.info("Scan lease released by %s", lease.owner)

    @contextmanager
    def lease(self, owner: str, network: str | None = None) -> Iterator[ScanLease]:
        held = self.acquire(owner, network)
        try:
            yield held
        finally:
            self.release(held)

    def try_read(self) -> ScanState:
        lease = self._lease
        if lease is None:
            return ScanState(is_running=False)
        return ScanState(
            is_running=True,
            owner=lease.owner,
            network=lease.network,
            started_at=lease.started_at,
        )


def scan_blocks_sweep(reader: ScanStateReader) -> bool:
    """True if a sweep must be skipped.

    An unreadable lease state is treated as "a scan might be running".
    """
    try:
        state = reader.try_read()
    except Exception as exc:
        logger.warning("Scan state unreadable (%s); skipping device sweep", exc)
        return True
    if not isinstance(state, ScanState):
        logger.warning("Scan state malformed (%r); skipping device sweep", state)
        return True
    if state.is_running:
        logger.info("Bulk scan in progress (%s); skipping device sweep", state.owner)
    return state.is_running


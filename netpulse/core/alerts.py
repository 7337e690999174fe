"""Alert deduplication and auto-acknowledge rules.

Pure decision functions shared by device alerts and system-resource alerts.
Callers decide what to append or mutate based on the returned booleans.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from netpulse.core.models import Alert, Severity

DEDUP_WINDOW_SECONDS = 300
INFO_AUTO_ACK_SECONDS = 3600


def should_suppress(
    existing_alerts: Iterable[Alert],
    candidate_type: str,
    now: datetime,
    window_seconds: float = DEDUP_WINDOW_SECONDS,
) -> bool:
    """True if an unacknowledged alert of the same type was raised within the window."""
    window = timedelta(seconds=window_seconds)
    return any(
        alert.type == candidate_type
        and not alert.acknowledged
        and now - alert.timestamp <= window
        for alert in existing_alerts
    )


def should_auto_acknowledge(
    alert: Alert,
    now: datetime,
    max_age_seconds: float = INFO_AUTO_ACK_SECONDS,
) -> bool:
    """True for an unacknowledged info alert older than `max_age_seconds`."""
    return (
        alert.severity == Severity.INFO
        and not alert.acknowledged
        and now - alert.timestamp > timedelta(seconds=max_age_seconds)
    )

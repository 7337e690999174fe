"""SNMPv2c system-group query with community-string fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pysnmp.error import PySnmpError
from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
    walk_cmd,
)

from netpulse.core.models import SnmpData

logger = logging.getLogger(__name__)

OID_SYS_DESCR = "1.3.6.1.2.1.1.1.0"
OID_SYS_OBJECT_ID = "1.3.6.1.2.1.1.2.0"
OID_SYS_UPTIME = "1.3.6.1.2.1.1.3.0"
OID_SYS_NAME = "1.3.6.1.2.1.1.5.0"
OID_IF_DESCR = "1.3.6.1.2.1.2.2.1.2"

_SYSTEM_OIDS = {
    OID_SYS_DESCR: "sys_descr",
    OID_SYS_OBJECT_ID: "sys_object_id",
    OID_SYS_UPTIME: "sys_uptime_ticks",
    OID_SYS_NAME: "sys_name",
}


def community_candidates(supplied: list[str] | None, defaults: list[str]) -> list[str]:
    """Caller-supplied communities first, then the defaults, without repeats."""
    ordered: list[str] = []
    for community in [*(supplied or []), *defaults]:
        if community and community not in ordered:
            ordered.append(community)
    return ordered


def parse_system_varbinds(var_binds: list[tuple[Any, Any]]) -> dict[str, Any]:
    """Map system-group varbinds to SnmpData field values."""
    fields: dict[str, Any] = {}
    for oid, value in var_binds:
        key = _SYSTEM_OIDS.get(str(oid))
        if key is None:
            continue
        text = value.prettyPrint() if hasattr(value, "prettyPrint") else str(value)
        if not text or "No Such" in text:
            continue
        if key == "sys_uptime_ticks":
            try:
                fields[key] = int(value)
            except (TypeError, ValueError):
                continue
        else:
            fields[key] = text.strip()
    return fields


async def _fetch_system(
    engine: SnmpEngine,
    address: str,
    community: str,
    port: int,
    timeout: float,
) -> dict[str, Any] | None:
    target = await UdpTransportTarget.create((address, port), timeout=timeout, retries=0)
    error_indication, error_status, _, var_binds = await get_cmd(
        engine,
        CommunityData(community, mpModel=1),
        target,
        ContextData(),
        *(ObjectType(ObjectIdentity(oid)) for oid in _SYSTEM_OIDS),
    )
    if error_indication or error_status:
        logger.debug(
            "SNMP get %s (community=%s): err=%s status=%s",
            address, community, error_indication, error_status,
        )
        return None
    fields = parse_system_varbinds(list(var_binds))
    return fields or None


async def _walk_interfaces(
    engine: SnmpEngine,
    address: str,
    community: str,
    port: int,
    timeout: float,
    max_rows: int,
) -> list[str]:
    target = await UdpTransportTarget.create((address, port), timeout=timeout, retries=0)
    names: list[str] = []
    async for error_indication, error_status, _, var_binds in walk_cmd(
        engine,
        CommunityData(community, mpModel=1),
        target,
        ContextData(),
        ObjectType(ObjectIdentity(OID_IF_DESCR)),
        lexicographicMode=False,
    ):
        if error_indication or error_status:
            break
        for _, value in var_binds:
            names.append(str(value))
        if len(names) >= max_rows:
            break
    return names


async def query_snmp(
    address: str,
    communities: list[str],
    *,
    port: int = 161,
    timeout: float = 2.0,
    max_interfaces: int = 64,
) -> SnmpData | None:
    """Read the system group, trying each community in order.

    Stops at the first community that answers. The interface-description
    table is read best-effort. Returns None when no community works.
    """
    engine = SnmpEngine()
    try:
        for community in communities:
            try:
                fields = await _fetch_system(engine, address, community, port, timeout)
            except (asyncio.TimeoutError, OSError, ValueError, PySnmpError) as exc:
                logger.debug("SNMP %s (community=%s) failed: %s", address, community, exc)
                continue
            if fields is None:
                continue

            data = SnmpData(community=community, **fields)
            try:
                data.interfaces = await _walk_interfaces(
                    engine, address, community, port, timeout, max_interfaces
                )
            except (asyncio.TimeoutError, OSError, ValueError, PySnmpError) as exc:
                logger.debug("SNMP interface walk on %s failed: %s", address, exc)
            return data
        return None
    finally:
        engine.close_dispatcher()

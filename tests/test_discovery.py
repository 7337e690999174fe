"""Tests for discovery engine orchestration."""

from dataclasses import dataclass, field

import pytest

from netpulse.core import fingerprint, probes, snmp
from netpulse.core.discovery import DiscoveryEngine, DiscoveryMethod, normalize_methods
from netpulse.core.errors import UnreachableError
from netpulse.core.models import DeviceType, ProbeResult, SnmpData


@dataclass
class FakeNetwork:
    """Scriptable stand-in for the probe layer."""

    alive: bool = False
    rtt: float = 4.2
    mac: str | None = None
    open_ports: list[int] = field(default_factory=list)
    snmp_community: str | None = None
    sys_descr: str | None = None
    sys_name: str | None = None
    calls: list[str] = field(default_factory=list)
    communities_tried: list[str] = field(default_factory=list)


@pytest.fixture
def net(monkeypatch):
    fake = FakeNetwork()

    async def ping_host(address, timeout=3, retries=1):
        fake.calls.append("ping")
        return ProbeResult(alive=fake.alive, response_time_ms=fake.rtt if fake.alive else None)

    async def lookup_neighbor(address):
        fake.calls.append("arp")
        return fake.mac

    async def scan_ports(address, ports, timeout=2.0):
        fake.calls.append("port")
        return sorted(p for p in fake.open_ports if p in ports)

    async def query_snmp(address, communities, *, port=161, timeout=2.0):
        fake.calls.append("snmp")
        for community in communities:
            fake.communities_tried.append(community)
            if community == fake.snmp_community:
                return SnmpData(
                    community=community, sys_descr=fake.sys_descr, sys_name=fake.sys_name
                )
        return None

    async def resolve_hostname(address, fallback=None):
        return fallback or fingerprint.heuristic_name(address)

    monkeypatch.setattr(probes, "ping_host", ping_host)
    monkeypatch.setattr(probes, "lookup_neighbor", lookup_neighbor)
    monkeypatch.setattr(probes, "scan_ports", scan_ports)
    monkeypatch.setattr(snmp, "query_snmp", query_snmp)
    monkeypatch.setattr(fingerprint, "resolve_hostname", resolve_hostname)
    return fake


@pytest.fixture
def discovery_engine(settings):
    return DiscoveryEngine(settings)


class TestNormalizeMethods:
    def test_aliases(self):
        assert normalize_methods(["reachability-probe", "mac", "port-scan", "snmp"]) == [
            DiscoveryMethod.PING,
            DiscoveryMethod.ARP,
            DiscoveryMethod.PORT,
            DiscoveryMethod.SNMP,
        ]

    def test_keeps_caller_order_without_repeats(self):
        assert normalize_methods(["SNMP", "ping", "icmp"]) == [
            DiscoveryMethod.SNMP,
            DiscoveryMethod.PING,
        ]

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            normalize_methods(["traceroute"])


class TestDiscover:
    @pytest.mark.asyncio
    async def test_ping_only_fails_fast(self, discovery_engine, net):
        with pytest.raises(UnreachableError) as exc_info:
            await discovery_engine.discover("10.0.0.77", methods=["ping"])
        assert net.calls == ["ping"]
        assert exc_info.value.address == "10.0.0.77"
        assert "10.0.0.77" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unreachable_by_every_method(self, discovery_engine, net):
        with pytest.raises(UnreachableError) as exc_info:
            await discovery_engine.discover("10.0.0.77")
        assert exc_info.value.methods == ["ping", "arp", "port", "snmp"]
        # Only one UDP get when nothing else answered
        assert net.calls == ["ping", "arp", "port", "snmp"]
        assert net.communities_tried == ["public"]

    @pytest.mark.asyncio
    async def test_failed_ping_does_not_skip_later_methods(self, discovery_engine, net):
        net.mac = "00:11:32:aa:bb:cc"
        result = await discovery_engine.discover("10.0.0.20", methods=["ping", "arp"])
        assert net.calls == ["ping", "arp"]
        assert result.reachable is True
        assert result.methods == ["arp"]
        assert result.mac_address == "00:11:32:aa:bb:cc"
        assert result.vendor == "Synology"

    @pytest.mark.asyncio
    async def test_web_server_profile(self, discovery_engine, net):
        net.alive = True
        net.open_ports = [80, 443]
        result = await discovery_engine.discover("10.0.0.150")

        assert result.reachable is True
        assert result.response_time_ms == 4.2
        assert result.open_ports == [80, 443]
        assert result.services == ["HTTP", "HTTPS"]
        assert result.device_type == DeviceType.SERVER
        assert result.hostname == "device-10-0-0-150"
        assert result.methods == ["ping", "port"]

    @pytest.mark.asyncio
    async def test_snmp_runs_when_reachable(self, discovery_engine, net):
        net.alive = True
        net.snmp_community = "public"
        net.sys_descr = "Cisco IOS Software, C2900 Router"
        net.sys_name = "core-rtr.example.net"

        result = await discovery_engine.discover("10.0.0.2")

        assert result.snmp_data.community == "public"
        assert result.device_type == DeviceType.ROUTER
        assert result.hostname == "core-rtr"
        assert result.methods == ["ping", "snmp"]

    @pytest.mark.asyncio
    async def test_silent_host_answering_snmp(self, discovery_engine, net):
        net.snmp_community = "public"
        result = await discovery_engine.discover("10.0.0.3", methods=["ping", "snmp"])
        assert net.calls == ["ping", "snmp"]
        assert net.communities_tried == ["public"]
        assert result.reachable is True
        assert result.methods == ["snmp"]
        assert result.device_type == DeviceType.UNKNOWN

    @pytest.mark.asyncio
    async def test_silent_host_gets_only_first_community(self, discovery_engine, net):
        net.snmp_community = "private"
        with pytest.raises(UnreachableError):
            await discovery_engine.discover("10.0.0.3", methods=["ping", "snmp"])
        assert net.communities_tried == ["public"]

    @pytest.mark.asyncio
    async def test_supplied_communities_tried_first(self, discovery_engine, net):
        net.alive = True
        net.snmp_community = "public"
        await discovery_engine.discover(
            "10.0.0.4", communities=["s3cret", "public"], methods=["ping", "snmp"]
        )
        assert net.communities_tried == ["s3cret", "public"]

    @pytest.mark.asyncio
    async def test_defaults_tried_after_supplied(self, discovery_engine, net):
        net.alive = True
        await discovery_engine.discover("10.0.0.4", communities=["s3cret"], methods=["ping", "snmp"])
        assert net.communities_tried == ["s3cret", "public", "private"]

    @pytest.mark.asyncio
    async def test_probe_error_is_a_negative_result(self, discovery_engine, net, monkeypatch):
        async def broken(address):
            raise OSError("arp table unreadable")

        monkeypatch.setattr(probes, "lookup_neighbor", broken)
        net.open_ports = [22]
        result = await discovery_engine.discover("10.0.0.6", methods=["arp", "port"])
        assert result.methods == ["port"]
        assert result.mac_address is None


class TestProbe:
    @pytest.mark.asyncio
    async def test_uses_configured_timeout(self, discovery_engine, monkeypatch):
        seen = {}

        async def ping_host(address, timeout=3, retries=1):
            seen.update(address=address, timeout=timeout, retries=retries)
            return ProbeResult(alive=True, response_time_ms=1.0)

        monkeypatch.setattr(probes, "ping_host", ping_host)
        result = await discovery_engine.probe("10.0.0.5")
        assert result.alive is True
        assert seen == {"address": "10.0.0.5", "timeout": 1, "retries": 0}


class TestCommunityCandidates:
    def test_order_and_dedup(self):
        assert snmp.community_candidates(["private", "ops"], ["public", "private"]) == [
            "private", "ops", "public",
        ]

    def test_defaults_only(self):
        assert snmp.community_candidates(None, ["public"]) == ["public"]

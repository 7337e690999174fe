"""Pydantic settings for NetPulse configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Well-known service ports probed during discovery
_DEFAULT_PORTS = [22, 23, 25, 53, 80, 110, 143, 161, 443, 993, 995, 3389, 5900]


def _load_yaml_config() -> dict[str, Any]:
    """Load config from ~/.netpulse/config.yaml, falling back to project config.yaml."""
    user_cfg = Path.home() / ".netpulse" / "config.yaml"
    if user_cfg.exists():
        with open(user_cfg) as f:
            return yaml.safe_load(f) or {}
    project_cfg = Path(__file__).parent.parent / "config.yaml"
    if project_cfg.exists():
        with open(project_cfg) as f:
            return yaml.safe_load(f) or {}
    return {}


class Settings(BaseSettings):
    """NetPulse application settings.

    Priority (highest → lowest): environment variables → config.yaml → defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="NETPULSE_",
        env_nested_delimiter="__",
    )

    # Monitoring
    monitor_interval_minutes: float = 5
    failure_threshold: int = 3
    dedup_window_seconds: int = 300
    info_auto_ack_seconds: int = 3600
    high_response_ms: float = 1000

    # Probes
    ping_timeout: int = 3
    ping_retries: int = 1
    port_timeout: float = 2.0
    snmp_timeout: float = 2.0
    snmp_port: int = 161
    scan_ports: list[int] = Field(default_factory=lambda: list(_DEFAULT_PORTS))
    snmp_communities: list[str] = Field(default_factory=lambda: ["public", "private"])
    discovery_methods: list[str] = Field(default_factory=lambda: ["ping", "arp", "port", "snmp"])
    vendor_registry: bool = True

    # Bulk discovery
    scan_batch_size: int = 10
    max_scan_hosts: int = 4096
    # Range used for "auto" scans instead of the detected local network
    host_network_range: str | None = None

    # System resource thresholds (percent / minutes)
    memory_warning_percent: float = 80
    memory_critical_percent: float = 90
    cpu_warning_percent: float = 80
    cpu_critical_percent: float = 90
    restart_uptime_minutes: float = 10

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8556

    # Logging
    log_level: str = "INFO"

    # Database
    db_path: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        yaml_values = _load_yaml_config()
        # YAML values serve as defaults; explicit env/init values take priority
        merged = {**yaml_values, **{k: v for k, v in values.items() if v is not None}}
        return merged

    @property
    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path)
        return Path.home() / ".netpulse" / "netpulse.db"


def get_settings(**overrides: Any) -> Settings:
    """Create a Settings instance, optionally with overrides."""
    return Settings(**overrides)

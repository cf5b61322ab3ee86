"""Configuration management for the ZaaNet provisioner."""

import os
import re
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv


class PathsConfig(BaseModel):
    """Filesystem layout on the router."""
    config_dir: str = "/etc/zaanet"
    web_root: str = "/etc/nodogsplash/htdocs"
    uci_dir: str = "/etc/config"
    crontab: str = "/etc/crontabs/root"
    staging_dir: str = "/tmp/zaanet-install"
    tmp_dir: str = "/tmp"
    init_dir: str = "/etc/init.d"
    overlay: str = "/overlay"
    net_class_dir: str = "/sys/class/net"
    arp_table: str = "/proc/net/arp"
    dhcp_leases: List[str] = Field(default_factory=lambda: [
        "/tmp/dhcp.leases",
        "/var/lib/dhcp/dhcpd.leases",
    ])

    @property
    def credentials_file(self) -> Path:
        return Path(self.config_dir) / "config"

    @property
    def install_log(self) -> Path:
        return Path(self.config_dir) / "installation.log"


class RemoteConfig(BaseModel):
    """Remote splash page source and backend endpoints."""
    repository: str = "ZaaNet/public-splash"
    branch: str = "main"
    raw_base: Optional[str] = None
    main_server: str = "https://api.zaanet.xyz"
    manifest: List[str] = Field(default_factory=lambda: [
        "splash.html",
        "session.html",
        "config.js",
        "script.js",
        "session.js",
        "styles.css",
    ])
    required_files: List[str] = Field(default_factory=lambda: [
        "splash.html",
        "config.js",
        "script.js",
    ])
    critical_files: List[str] = Field(default_factory=lambda: [
        "splash.html",
        "styles.css",
        "script.js",
        "session.html",
        "session.js",
        "config.js",
    ])
    entry_point: str = "splash.html"
    network_info_path: str = "/api/v1/portal/network/{contract_id}"
    metrics_path: str = "/api/v1/portal/metrics"
    download_timeout: int = Field(default=30, ge=1, le=600)
    connectivity_host: str = "8.8.8.8"

    @property
    def base_url(self) -> str:
        if self.raw_base:
            return self.raw_base.rstrip("/")
        return f"https://raw.githubusercontent.com/{self.repository}/{self.branch}"


class GatewayConfig(BaseModel):
    """NoDogSplash parameters."""
    package: str = "nodogsplash"
    section: str = "@nodogsplash[0]"
    service: str = "nodogsplash"
    name: str = "ZaaNet WiFi Hotspot"
    interface: str = "br-lan"
    port: int = Field(default=2050, ge=1, le=65535)
    preauth_idle_timeout: int = Field(default=10, ge=1)
    auth_idle_timeout: int = Field(default=60, ge=1)
    session_timeout: int = Field(default=1440, ge=1)
    log_level: str = "info"
    legacy_options: List[str] = Field(default_factory=lambda: ["checkinterval"])
    preauthenticated_users: List[str] = Field(default_factory=lambda: [
        "allow tcp port 53",
        "allow udp port 53",
        "allow udp port 67",
        "allow udp port 68",
    ])
    users_to_router: List[str] = Field(default_factory=lambda: [
        "allow tcp port 22",
        "allow tcp port 80",
        "allow tcp port 443",
        "allow tcp port 53",
        "allow udp port 53",
        "allow udp port 67",
    ])
    restart_settle: float = Field(default=5.0, ge=0)


class WirelessConfig(BaseModel):
    """Radio configuration."""
    package: str = "wireless"
    default_ssid: str = "ZaaNet"
    secondary_suffix: str = "-5G"
    reload_timeout: int = Field(default=30, ge=1, le=300)
    settle: float = Field(default=3.0, ge=0)
    reset_encryption: str = "psk2"
    reset_key: str = "goodlife"
    reset_ssid: str = "GL-XE300"


class JobsConfig(BaseModel):
    """Background job schedules."""
    network_info_schedule: str = "*/30 * * * *"
    metrics_schedule: str = "* * * * *"
    network_info_script: str = "update-network-info.sh"
    metrics_script: str = "collect-metrics.sh"
    cron_service: str = "cron"


class SpaceConfig(BaseModel):
    """Environment thresholds."""
    min_free_mb: int = Field(default=3, ge=0)
    secret_min_length: int = Field(default=16, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "/var/log/zaanet-provisioner.log"
    db: str = "/etc/zaanet-provisioner/history.db"


class Config(BaseModel):
    """Main configuration class."""
    paths: PathsConfig = Field(default_factory=PathsConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    wireless: WirelessConfig = Field(default_factory=WirelessConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    limits: SpaceConfig = Field(default_factory=SpaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("remote", mode="after")
    @classmethod
    def required_within_manifest(cls, v: RemoteConfig) -> RemoteConfig:
        """Required files must be a subset of the manifest."""
        missing = [f for f in v.required_files if f not in v.manifest]
        if missing:
            raise ValueError(f"Required files not in manifest: {missing}")
        return v


def expand_env_vars(obj):
    """Recursively expand environment variables in a dict."""
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        pattern = re.compile(r'\$\{([^}]+)\}')
        def replacer(match):
            return os.getenv(match.group(1), match.group(0))
        return pattern.sub(replacer, obj)
    return obj


def load_config(config_path: Optional[str] = None, env_file: str = ".env") -> Config:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file. When omitted the
            built-in defaults are used.
        env_file: Path to the .env file for environment variables.

    Returns:
        Config object with all settings.
    """
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)

    if config_path is None:
        return Config()

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r") as f:
        raw_config = yaml.safe_load(f) or {}

    expanded_config = expand_env_vars(raw_config)

    return Config(**expanded_config)

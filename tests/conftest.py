"""Shared fixtures: temporary router filesystem, fake config store, fake HTTP."""

from pathlib import Path
from typing import Dict, Optional, Set, Tuple

import aiohttp
import pytest

from zaanet_provisioner.config import Config, GatewayConfig, PathsConfig, RemoteConfig, WirelessConfig
from zaanet_provisioner.credentials import ProvisioningConfig
from zaanet_provisioner.errors import ConfigStoreError
from zaanet_provisioner.store import ConfigStore

BASE_URL = "http://portal.test/splash"

TEMPLATES = {
    "splash.html": b"<!DOCTYPE html><html><body>ROUTER_ID_PLACEHOLDER WIFI_SSID_PLACEHOLDER</body></html>",
    "session.html": b"<html><body>Session for CONTRACT_ID_PLACEHOLDER</body></html>",
    "config.js": (
        b"const CONFIG = {\n"
        b"  routerId: 'ROUTER_ID_PLACEHOLDER',\n"
        b"  contractId: 'CONTRACT_ID_PLACEHOLDER',\n"
        b"  server: 'MAIN_SERVER_PLACEHOLDER',\n"
        b"  legacy: '${ROUTER_ID}',\n"
        b"};\n"
    ),
    "script.js": b"function start() { return fetch('/network-info.json'); }\n",
    "session.js": b"let remaining = 0;\n",
    "styles.css": b"body { margin: 0; }\n",
}


class FakeStore(ConfigStore):
    """File-backed store that appends committed operations to its artifact."""

    def __init__(
        self,
        package: str,
        config_dir: str,
        fail_keys: Optional[Set[str]] = None,
        fail_commit: bool = False,
    ):
        super().__init__(package, config_dir)
        self.fail_keys = fail_keys or set()
        self.fail_commit = fail_commit
        self.values: Dict[Tuple[str, str], str] = {}
        self.staged = []
        self.committed = []
        self.commits = 0
        self.reverts = 0

    def _stage(self, op: str, section: str, key: str, value: Optional[str] = None) -> None:
        if key in self.fail_keys:
            raise ConfigStoreError(f"uci {op} {self.package}.{section}.{key} failed: rejected")
        self.staged.append((op, section, key, value))

    async def get(self, section: str, key: str) -> Optional[str]:
        return self.values.get((section, key))

    async def set(self, section: str, key: str, value: str) -> None:
        self._stage("set", section, key, value)
        self.values[(section, key)] = value

    async def delete(self, section: str, key: str) -> None:
        self._stage("delete", section, key)
        self.values.pop((section, key), None)

    async def add_list(self, section: str, key: str, value: str) -> None:
        self._stage("add_list", section, key, value)
        current = self.values.get((section, key))
        self.values[(section, key)] = f"{current} {value}" if current else value

    async def commit(self) -> None:
        self.commits += 1
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.fail_commit:
            self.path.write_text("garbage after a half-written commit\n")
            raise ConfigStoreError(f"uci commit {self.package} failed: I/O error")
        with open(self.path, "a") as f:
            for op, section, key, value in self.staged:
                f.write(f"{op} {section}.{key}={value}\n")
        self.committed.extend(self.staged)
        self.staged = []

    async def revert(self) -> None:
        self.reverts += 1
        self.staged = []


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b""):
        self.status = status
        self.body = body

    async def read(self) -> bytes:
        return self.body

    async def text(self) -> str:
        return self.body.decode()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Just enough of aiohttp.ClientSession for GET and POST."""

    def __init__(self, routes=None, post_status: int = 200):
        self.routes = routes or {}
        self.post_status = post_status
        self.requests = []
        self.posts = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append(url)
        route = self.routes.get(url, FakeResponse(404))
        if isinstance(route, Exception):
            raise route
        return route

    def post(self, url, json=None, headers=None, **kwargs):
        self.posts.append({"url": url, "json": json, "headers": headers})
        return FakeResponse(self.post_status)

    async def close(self):
        self.closed = True


def template_routes(overrides=None):
    routes = {f"{BASE_URL}/{name}": FakeResponse(200, body) for name, body in TEMPLATES.items()}
    for name, response in (overrides or {}).items():
        routes[f"{BASE_URL}/{name}"] = response
    return routes


@pytest.fixture
def settings(tmp_path: Path) -> Config:
    """Settings whose every path lives under tmp_path."""
    root = tmp_path
    paths = PathsConfig(
        config_dir=str(root / "etc" / "zaanet"),
        web_root=str(root / "etc" / "nodogsplash" / "htdocs"),
        uci_dir=str(root / "etc" / "config"),
        crontab=str(root / "etc" / "crontabs" / "root"),
        staging_dir=str(root / "tmp" / "zaanet-install"),
        tmp_dir=str(root / "tmp"),
        init_dir=str(root / "etc" / "init.d"),
        overlay=str(root),
        net_class_dir=str(root / "sys" / "class" / "net"),
        arp_table=str(root / "proc" / "net" / "arp"),
        dhcp_leases=[str(root / "tmp" / "dhcp.leases")],
    )
    (root / "tmp").mkdir()
    (root / "etc" / "config").mkdir(parents=True)
    return Config(
        paths=paths,
        remote=RemoteConfig(raw_base=BASE_URL, main_server="https://api.example.test"),
        gateway=GatewayConfig(restart_settle=0),
        wireless=WirelessConfig(settle=0, reload_timeout=1),
    )


@pytest.fixture
def provisioning() -> ProvisioningConfig:
    return ProvisioningConfig(
        router_id="ZN-0123456789AB",
        contract_id="contract/42&x",
        secret_key="s3cret-key-long-enough",
        main_server="https://api.example.test",
        wifi_ssid="Cafe WiFi",
    )


@pytest.fixture
def fake_session():
    return FakeSession(template_routes())


@pytest.fixture
def gateway_store(settings):
    return FakeStore("nodogsplash", settings.paths.uci_dir)


@pytest.fixture
def network_store(settings):
    return FakeStore("wireless", settings.paths.uci_dir)

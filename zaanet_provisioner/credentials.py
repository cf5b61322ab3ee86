"""Persisted router identity and operator credentials.

The record lives in a restricted-permission ``KEY="value"`` file that is
collected once at install time and read by every background job.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

# File key -> model field
FILE_KEYS = {
    "ROUTER_ID": "router_id",
    "CONTRACT_ID": "contract_id",
    "MAIN_SERVER": "main_server",
    "ZAANET_SECRET": "secret_key",
    "WIFI_SSID": "wifi_ssid",
}

FILE_COMMENTS = {
    "ROUTER_ID": "Unique router identifier",
    "CONTRACT_ID": "ZaaNet smart contract ID",
    "MAIN_SERVER": "Main server URL",
    "ZAANET_SECRET": "ZaaNet secret key (keep secure!)",
    "WIFI_SSID": "WiFi SSID",
}


class ProvisioningConfig(BaseModel):
    """Identity and credentials shared by the installer and background jobs."""
    router_id: str
    contract_id: str
    secret_key: str
    main_server: str
    wifi_ssid: str

    @field_validator("router_id", "contract_id", "secret_key", "main_server", "wifi_ssid")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("main_server")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_provisioning_config(config: ProvisioningConfig, now: Optional[datetime] = None) -> str:
    """Render the record in the on-disk format."""
    now = now or datetime.now()
    lines = [
        "# ZaaNet Router Configuration",
        f"# Generated: {now.strftime('%a %b %d %H:%M:%S %Y')}",
        "",
    ]
    for key, field_name in FILE_KEYS.items():
        lines.append(f"# {FILE_COMMENTS[key]}")
        lines.append(f"{key}={_quote(getattr(config, field_name))}")
        lines.append("")
    return "\n".join(lines)


def save_provisioning_config(config: ProvisioningConfig, path: Path) -> Path:
    """Write the record with mode 0600 via a temporary sibling and rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(render_provisioning_config(config))
    os.chmod(tmp_path, 0o600)
    os.replace(tmp_path, path)

    logger.info(f"Configuration file written: {path}")
    return path


def load_provisioning_config(path: Path) -> Optional[ProvisioningConfig]:
    """Load the persisted record.

    Returns None when the file does not exist. A file with missing or blank
    keys raises a pydantic ValidationError.
    """
    path = Path(path)
    if not path.exists():
        return None

    raw = dotenv_values(path, interpolate=False)
    values = {field_name: raw.get(key) or "" for key, field_name in FILE_KEYS.items()}
    return ProvisioningConfig(**values)


def load_router_id(path: Path) -> Optional[str]:
    """Read only the persisted router id, tolerating an incomplete file."""
    path = Path(path)
    if not path.exists():
        return None
    router_id = dotenv_values(path, interpolate=False).get("ROUTER_ID")
    return router_id or None

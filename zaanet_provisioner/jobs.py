"""Background jobs run from cron: network-info refresh and metrics upload.

Each job is single-shot and idempotent. Failures are logged and the job
exits quietly; the next scheduled run tries again.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .commands import run_command
from .config import Config
from .credentials import ProvisioningConfig, load_provisioning_config

logger = logging.getLogger(__name__)

NETWORK_INFO_FILE = "network-info.json"


def accept_network_info(payload: Any) -> bool:
    """A response is cacheable only with a top-level true ``success``."""
    if not isinstance(payload, dict):
        return False
    success = payload.get("success")
    return success is True or success == "true"


def network_info_url(config: ProvisioningConfig, settings: Config) -> str:
    path = settings.remote.network_info_path.format(contract_id=config.contract_id)
    return f"{config.main_server}{path}"


def write_network_info(body: bytes, dest: Path) -> None:
    """Atomically replace the cache file, mode 0644."""
    dest = Path(dest)
    tmp = dest.with_name(f".{dest.name}.tmp")
    try:
        tmp.write_bytes(body)
        os.chmod(tmp, 0o644)
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)


async def refresh_network_info(
    config: ProvisioningConfig,
    settings: Config,
    session: Optional[aiohttp.ClientSession] = None,
) -> bool:
    """Fetch the network info document and cache it in the web root.

    Returns True if the cache was rewritten. A rejected or failed response
    leaves the existing cache untouched.
    """
    url = network_info_url(config, settings)
    dest = Path(settings.paths.web_root) / NETWORK_INFO_FILE
    own_session = session is None
    if own_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=settings.remote.download_timeout))

    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                logger.warning(f"Network info fetch returned HTTP {resp.status}: {url}")
                return False
            body = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"Failed to fetch network info ({e}): {url}")
        return False
    finally:
        if own_session:
            await session.close()

    if not body:
        logger.warning("Network info fetch returned empty response")
        return False

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if not accept_network_info(payload):
        logger.warning(f"Network info response doesn't look valid; skipping cache write: {body[:200]!r}")
        return False

    write_network_info(body, dest)
    logger.info(f"Cached network info to: {dest}")
    return True


def parse_client_counters(raw: str) -> List[Dict[str, Any]]:
    """Per-client usage records from ``ndsctl json`` output."""
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("ndsctl returned invalid JSON")
        return []

    clients = data.get("clients") if isinstance(data, dict) else None
    if not isinstance(clients, dict):
        return []

    records = []
    for key, client in clients.items():
        if not isinstance(client, dict):
            continue
        records.append({
            "mac": str(client.get("mac", key)).lower(),
            "ip": client.get("ip"),
            "state": client.get("state"),
            "duration": client.get("duration", 0),
            "downloaded": client.get("downloaded", 0),
            "uploaded": client.get("uploaded", 0),
        })
    return records


async def read_client_counters(timeout: float = 10.0, runner: Callable = run_command) -> List[Dict[str, Any]]:
    result = await runner("ndsctl", "json", timeout=timeout)
    if not result.ok:
        logger.warning(f"ndsctl json failed: {result.stderr.strip() or result.returncode}")
        return []
    return parse_client_counters(result.stdout)


async def collect_metrics(
    config: ProvisioningConfig,
    settings: Config,
    session: Optional[aiohttp.ClientSession] = None,
    runner: Callable = run_command,
) -> bool:
    """POST current client counters to the backend.

    Fire-and-forget: never raises, returns whether the POST was accepted.
    """
    clients = await read_client_counters(runner=runner)
    payload = {
        "routerId": config.router_id,
        "contractId": config.contract_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "clients": clients,
    }
    headers = {
        "Content-Type": "application/json",
        "X-Router-ID": config.router_id,
        "X-Contract-ID": config.contract_id,
    }
    url = f"{config.main_server}{settings.remote.metrics_path}"

    own_session = session is None
    try:
        if own_session:
            session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        async with session.post(url, json=payload, headers=headers) as resp:
            if resp.status >= 400:
                logger.warning(f"Metrics POST returned {resp.status}")
                return False
            logger.debug(f"Metrics sent for {len(clients)} clients")
            return True
    except Exception as e:
        logger.warning(f"Metrics POST failed: {e}")
        return False
    finally:
        if own_session and session is not None:
            await session.close()


JOBS = {
    "network-info": refresh_network_info,
    "metrics": collect_metrics,
}


async def run_job(name: str, settings: Config) -> int:
    """Entry point used by the cron launchers. Returns an exit code."""
    job = JOBS.get(name)
    if job is None:
        logger.error(f"Unknown job: {name}")
        return 2

    config = load_provisioning_config(settings.paths.credentials_file)
    if config is None:
        logger.info("No provisioning config found; nothing to do")
        return 0

    await job(config, settings)
    return 0

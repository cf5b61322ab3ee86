"""Init services, the package manager, the WiFi reload and host checks."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .commands import run_command
from .errors import EnvironmentCheckError

logger = logging.getLogger(__name__)


class ServiceController:
    """Controls one ``/etc/init.d`` service."""

    def __init__(self, name: str, init_dir: str = "/etc/init.d", timeout: float = 60.0):
        self.name = name
        self.script = str(Path(init_dir) / name)
        self.timeout = timeout

    async def _action(self, action: str) -> bool:
        result = await run_command(self.script, action, timeout=self.timeout)
        if not result.ok:
            detail = "timed out" if result.timed_out else (result.stderr.strip() or f"exit code {result.returncode}")
            logger.warning(f"{self.name} {action} failed: {detail}")
        return result.ok

    async def start(self) -> bool:
        return await self._action("start")

    async def stop(self) -> bool:
        return await self._action("stop")

    async def restart(self) -> bool:
        return await self._action("restart")

    async def enable(self) -> bool:
        return await self._action("enable")

    async def disable(self) -> bool:
        return await self._action("disable")

    async def is_running(self) -> bool:
        result = await run_command(self.script, "status", timeout=15)
        return "running" in result.stdout


class PackageManager:
    """Thin ``opkg`` wrapper."""

    def __init__(self, timeout: float = 300.0):
        self.timeout = timeout

    async def _opkg(self, *args: str) -> bool:
        result = await run_command("opkg", *args, timeout=self.timeout)
        if not result.ok:
            logger.debug(f"opkg {' '.join(args)} failed: {result.stderr.strip()}")
        return result.ok

    async def version(self, package: str) -> Optional[str]:
        """Installed version, or None if the package is absent."""
        result = await run_command("opkg", "list-installed", timeout=60)
        for line in result.stdout.splitlines():
            parts = line.split()
            # "<name> - <version>"
            if parts and parts[0] == package:
                return parts[2] if len(parts) >= 3 else ""
        return None

    async def is_installed(self, package: str) -> bool:
        return await self.version(package) is not None

    async def update(self) -> bool:
        return await self._opkg("update")

    async def install(self, package: str, force_reinstall: bool = False) -> bool:
        args = ["install"]
        if force_reinstall:
            args.append("--force-reinstall")
        return await self._opkg(*args, package)

    async def remove(self, package: str) -> bool:
        return await self._opkg("remove", package)


@dataclass
class WifiReloadResult:
    """Outcome of a bounded ``wifi reload``."""
    completed: bool
    timed_out: bool = False
    returncode: Optional[int] = None
    elapsed: float = 0.0

    @property
    def warning(self) -> Optional[str]:
        if self.timed_out:
            return (
                f"WiFi reload timed out after {self.elapsed:.0f} seconds; "
                "configuration is saved but may require manual reload: wifi reload"
            )
        if self.returncode not in (0, None):
            return f"WiFi reload finished with warnings (code: {self.returncode})"
        return None


async def reload_wifi(
    timeout: float = 30.0,
    settle: float = 3.0,
    command: Sequence[str] = ("wifi", "reload"),
    poll_interval: float = 1.0,
) -> WifiReloadResult:
    """Start the reload detached and poll until it exits or the timeout expires.

    The process is killed on timeout; the run never waits longer than
    ``timeout`` plus ``settle`` seconds.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()

    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError:
        logger.warning(f"{command[0]} not found, skipping reload")
        return WifiReloadResult(completed=False, returncode=127)

    next_report = 5.0
    while True:
        elapsed = loop.time() - started
        if elapsed >= timeout:
            break
        try:
            await asyncio.wait_for(proc.wait(), timeout=min(poll_interval, timeout - elapsed))
        except asyncio.TimeoutError:
            elapsed = loop.time() - started
            if elapsed >= next_report:
                logger.info(f"Still waiting... ({int(elapsed)} seconds elapsed)")
                next_report += 5.0
            continue

        result = WifiReloadResult(completed=True, returncode=proc.returncode, elapsed=loop.time() - started)
        if proc.returncode == 0:
            logger.info("WiFi reloaded successfully")
        else:
            logger.warning(result.warning)
        await asyncio.sleep(settle)
        return result

    proc.kill()
    await proc.wait()
    result = WifiReloadResult(completed=False, timed_out=True, elapsed=loop.time() - started)
    logger.warning(result.warning)
    await asyncio.sleep(settle)
    return result


async def port_listening(port: int) -> bool:
    """Whether anything listens on the port, per ``netstat`` or ``ss``."""
    for tool in ("netstat", "ss"):
        result = await run_command(tool, "-tuln", timeout=10)
        if result.ok and _lists_port(result.stdout, port):
            return True
    return False


def _lists_port(output: str, port: int) -> bool:
    suffix = f":{port}"
    for line in output.splitlines():
        # Local address column: "0.0.0.0:2050", ":::2050", "*:2050"
        if any(field.endswith(suffix) for field in line.split()[3:5]):
            return True
    return False


def check_root(geteuid: Callable[[], int] = os.geteuid) -> None:
    if geteuid() != 0:
        raise EnvironmentCheckError("This script must be run as root")


async def check_connectivity(host: str = "8.8.8.8") -> None:
    result = await run_command("ping", "-c", "1", "-W", "2", host, timeout=10)
    if not result.ok:
        raise EnvironmentCheckError("No internet connection detected")


def check_free_space(path: str = "/overlay", min_free_mb: int = 3) -> int:
    """Free space in KB. Raises if below the minimum."""
    target = path if Path(path).exists() else "/"
    free_kb = shutil.disk_usage(target).free // 1024
    if free_kb < min_free_mb * 1024:
        raise EnvironmentCheckError(
            f"Insufficient space on {path}: {free_kb}KB available, at least {min_free_mb}MB required"
        )
    return free_kb

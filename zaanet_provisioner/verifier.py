"""Post-deployment checks and the durable install log."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

import aiohttp

from .services import port_listening

logger = logging.getLogger(__name__)

RUN_SEPARATOR = "#" * 60


@dataclass
class VerificationReport:
    """Independent check results. ``passed`` only if none failed."""
    checks: Dict[str, bool] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures

    def record(self, name: str, ok: bool, failure: str) -> None:
        self.checks[name] = ok
        if ok:
            logger.info(f"Verified: {name}")
        else:
            self.failures.append(failure)
            logger.warning(failure)


async def fetch_splash_page(url: str, timeout: float = 10.0) -> Optional[str]:
    """Body of the served splash page, or None if unreachable."""
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    return None
                return await resp.text()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"Splash page fetch failed: {e}")
        return None


class DeploymentVerifier:
    """Read-only consistency checks over a finished deployment.

    Every check runs regardless of earlier failures.
    """

    def __init__(
        self,
        web_root: Path,
        required_files: Sequence[str],
        credentials_file: Path,
        port: int,
        entry_point: str = "splash.html",
        listening_check: Callable[[int], Awaitable[bool]] = port_listening,
        page_fetcher: Optional[Callable[[str], Awaitable[Optional[str]]]] = fetch_splash_page,
    ):
        self.web_root = Path(web_root)
        self.required_files = list(required_files)
        self.credentials_file = Path(credentials_file)
        self.port = port
        self.entry_point = entry_point
        self.listening_check = listening_check
        self.page_fetcher = page_fetcher

    @property
    def splash_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/{self.entry_point}"

    async def verify(self) -> VerificationReport:
        report = VerificationReport()

        listening = await self.listening_check(self.port)
        report.record(
            f"listening on port {self.port}", listening,
            f"Gateway may not be listening on port {self.port}",
        )

        for name in self.required_files:
            path = self.web_root / name
            ok = path.is_file() and path.stat().st_size > 0
            report.record(f"{name} deployed", ok, f"{name} not found or empty")

        config_ok = self.credentials_file.is_file() and self.credentials_file.stat().st_size > 0
        report.record("configuration file", config_ok, "Configuration file missing or empty")

        if self.page_fetcher is not None:
            body = await self.page_fetcher(self.splash_url)
            served = bool(body) and "<html" in body.lower()
            report.record("splash page served", served, f"Splash page not served at {self.splash_url}")

        return report


Entries = Union[Dict[str, object], Sequence[str], str]


class InstallLog:
    """Plain-text, sectioned run log kept for manual recovery."""

    def __init__(self, title: str):
        self.title = title
        self.sections: List[tuple] = []

    def section(self, name: str, entries: Entries) -> "InstallLog":
        self.sections.append((name, entries))
        return self

    def render(self) -> str:
        lines = [self.title, "=" * len(self.title), ""]
        for name, entries in self.sections:
            lines += [f"{name}:", "-" * (len(name) + 1)]
            if isinstance(entries, str):
                lines.append(entries)
            elif isinstance(entries, dict):
                lines += [f"{k}: {v}" for k, v in entries.items()]
            elif entries:
                lines += [str(e) for e in entries]
            else:
                lines.append("None")
            lines.append("")
        return "\n".join(lines)

    def write(self, path: Path, mode: int = 0o644) -> Path:
        """Append this run to ``path``; earlier runs are kept."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = self.render()
        if path.exists() and path.stat().st_size > 0:
            text = "\n" + RUN_SEPARATOR + "\n\n" + text
        with open(path, "a") as f:
            f.write(text)
        os.chmod(path, mode)
        logger.info(f"Log saved: {path}")
        return path


def deployed_file_sizes(web_root: Path) -> List[str]:
    """``name size`` lines for the portal files in the web root."""
    web_root = Path(web_root)
    if not web_root.is_dir():
        return []
    return [
        f"{p.name} {p.stat().st_size}B"
        for p in sorted(web_root.iterdir())
        if p.is_file() and p.suffix in (".html", ".js", ".css")
    ]


def run_stamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%a %b %d %H:%M:%S %Y")

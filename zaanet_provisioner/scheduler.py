"""Recurring background jobs in the cron table."""

import logging
import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .commands import run_command
from .errors import JobError

logger = logging.getLogger(__name__)

CRON_SUFFIX = ">/dev/null 2>&1"


@dataclass(frozen=True)
class ScheduledJob:
    """One cron registration, deduplicated by its script path."""
    script_path: str
    schedule: str
    dedup_key: Optional[str] = None

    @property
    def key(self) -> str:
        return self.dedup_key or self.script_path

    @property
    def line(self) -> str:
        return f"{self.schedule} {self.script_path} {CRON_SUFFIX}"


class JobScheduler:
    """Read-modify-write upserts against a cron table file."""

    def __init__(self, crontab: Path, init_dir: str = "/etc/init.d", cron_service: str = "cron"):
        self.crontab = Path(crontab)
        self.init_dir = Path(init_dir)
        self.cron_service = cron_service

    def entries(self) -> List[str]:
        """Active (non-blank, non-comment) lines of the table."""
        return [
            line for line in self._read()
            if line.strip() and not line.lstrip().startswith("#")
        ]

    def install_or_update(self, job: ScheduledJob) -> None:
        """Replace any line referencing the job's key with its current schedule."""
        lines = [line for line in self._read() if job.key not in line]
        lines.append(job.line)
        self._write(lines)
        logger.info(f"Cron job installed: {job.line}")

    def remove(self, script_path: str) -> int:
        """Drop every line referencing the script. Returns how many were removed."""
        current = self._read()
        kept = [line for line in current if script_path not in line]
        removed = len(current) - len(kept)
        if removed:
            self._write(kept)
            logger.info(f"Removed {removed} cron entr{'y' if removed == 1 else 'ies'} for {script_path}")
        return removed

    async def reload(self) -> None:
        """Enable and restart the cron daemon so table edits take effect."""
        script = str(self.init_dir / self.cron_service)
        for action in ("enable", "restart"):
            result = await run_command(script, action, timeout=15)
            if not result.ok:
                logger.warning(f"{self.cron_service} {action} failed: {result.stderr.strip() or result.returncode}")

    def _read(self) -> List[str]:
        if not self.crontab.exists():
            return []
        return self.crontab.read_text().splitlines()

    def _write(self, lines: List[str]) -> None:
        tmp = self.crontab.with_name(f".{self.crontab.name}.tmp")
        try:
            self.crontab.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text("".join(f"{line}\n" for line in lines))
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.crontab)
        except OSError as e:
            if tmp.exists():
                tmp.unlink()
            raise JobError(f"Failed to update {self.crontab}: {e}") from e


def write_job_script(
    path: Path,
    job_name: str,
    settings_file: Optional[str] = None,
    env_file: Optional[str] = None,
) -> Path:
    """Write an executable launcher that runs one background job.

    Cron starts jobs from its own working directory, so the settings and
    env file paths are written out absolute.
    """
    path = Path(path)
    cmd = [sys.executable, "-m", "zaanet_provisioner.cli"]
    if settings_file:
        cmd += ["--config", str(Path(settings_file).resolve())]
    if env_file and Path(env_file).exists():
        cmd += ["--env-file", str(Path(env_file).resolve())]
    cmd += ["job", job_name]

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "#!/bin/sh\n"
        f"# ZaaNet background job: {job_name}\n"
        f"exec {' '.join(shlex.quote(c) for c in cmd)}\n"
    )
    path.chmod(0o755)
    logger.info(f"Deployed: {path}")
    return path

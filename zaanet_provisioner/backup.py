"""Timestamped backups of configuration artifacts."""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def backup_path_for(artifact: Path, now: datetime) -> Path:
    """``<artifact>.backup.<YYYYmmdd-HHMMSS>``, de-duplicated within a second."""
    stamp = now.strftime(TIMESTAMP_FORMAT)
    candidate = artifact.with_name(f"{artifact.name}.backup.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = artifact.with_name(f"{artifact.name}.backup.{stamp}-{counter}")
        counter += 1
    return candidate


@dataclass
class BackupRecord:
    """Copy of a file or directory taken before its first mutation.

    Backups are never deleted by the engine; uninstallation is the only
    place that removes them.
    """
    artifact: Path
    path: Path
    created_at: datetime
    is_dir: bool = False

    @classmethod
    def create(cls, artifact: Path, now: Optional[datetime] = None) -> Optional["BackupRecord"]:
        """Back up an artifact. Returns None if there is nothing to back up."""
        artifact = Path(artifact)
        now = now or datetime.now()

        if artifact.is_dir():
            if not any(artifact.iterdir()):
                return None
            dest = backup_path_for(artifact, now)
            shutil.copytree(artifact, dest, symlinks=True)
            logger.info(f"Backed up {artifact} to: {dest}")
            return cls(artifact=artifact, path=dest, created_at=now, is_dir=True)

        if not artifact.exists():
            return None

        dest = backup_path_for(artifact, now)
        shutil.copy2(artifact, dest)
        logger.info(f"Backed up {artifact} to: {dest}")
        return cls(artifact=artifact, path=dest, created_at=now)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def restore(self) -> None:
        """Put the backed-up content back in place of the artifact."""
        if not self.exists:
            raise FileNotFoundError(f"Backup missing: {self.path}")

        if self.is_dir:
            if self.artifact.exists():
                shutil.rmtree(self.artifact)
            shutil.copytree(self.path, self.artifact, symlinks=True)
        else:
            tmp = self.artifact.with_name(f".{self.artifact.name}.restore")
            shutil.copy2(self.path, tmp)
            tmp.replace(self.artifact)

        logger.warning(f"Restored {self.artifact} from backup: {self.path}")


def find_backups(artifact: Path) -> List[Path]:
    """Existing backups of an artifact, oldest first."""
    artifact = Path(artifact)
    if not artifact.parent.exists():
        return []
    return sorted(artifact.parent.glob(f"{artifact.name}.backup.*"))

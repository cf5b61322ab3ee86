"""Splash page template download, validation and deployment."""

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import aiohttp

from .backup import BackupRecord
from .errors import EntryPointMissingError, FetchError, MissingFilesError

logger = logging.getLogger(__name__)

_SCRIPT_TOKENS = re.compile(rb"(function|const|let|var|//)")
_STYLE_TOKENS = re.compile(rb"[{}:;]")

# Asset sub-directories copied along with the templates when present
ASSET_DIRS = ("assets", "images")
KEEP_FILES = (".gitkeep",)


def looks_valid(filename: str, content: bytes) -> bool:
    """Structural sanity check by extension.

    Markup needs a root tag, scripts need script syntax tokens, styles need
    block/declaration punctuation. Other extensions only need content.
    """
    if not content:
        return False
    suffix = Path(filename).suffix.lower()
    if suffix in (".html", ".htm"):
        lowered = content.lower()
        return b"<html" in lowered or b"<!doctype" in lowered
    if suffix == ".js":
        return bool(_SCRIPT_TOKENS.search(content))
    if suffix == ".css":
        return bool(_STYLE_TOKENS.search(content))
    return True


@dataclass
class StagedAssets:
    """Files accepted into the staging directory."""
    staging_dir: Path
    files: List[Path] = field(default_factory=list)

    def names(self) -> List[str]:
        return [f.name for f in self.files]


@dataclass
class DeploymentResult:
    """Outcome of copying staged files into the web root."""
    web_root: Path
    deployed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    recovered: List[str] = field(default_factory=list)
    backup: Optional[BackupRecord] = None
    warnings: List[str] = field(default_factory=list)


class AssetProvisioner:
    """Fetches the template manifest and deploys it to the gateway's web root."""

    def __init__(
        self,
        base_url: str,
        manifest: Sequence[str],
        required_files: Sequence[str],
        staging_dir: Path,
        timeout: int = 30,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.manifest = list(manifest)
        self.required_files = list(required_files)
        self.staging_dir = Path(staging_dir)
        self.timeout = timeout
        self.session = session

    def url_for(self, filename: str) -> str:
        return f"{self.base_url}/{filename}"

    async def fetch(self) -> StagedAssets:
        """Download and validate every manifest file.

        Raises:
            FetchError: a file failed to download or validate. No file is
                left staged.
            MissingFilesError: a required file is absent after the fetch.
        """
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        staged = StagedAssets(staging_dir=self.staging_dir)
        failed: List[str] = []

        logger.info(f"Downloading files from {self.base_url}")
        async with self._session() as session:
            for filename in self.manifest:
                dest = self.staging_dir / filename
                if await self._download(session, filename, dest):
                    staged.files.append(dest)
                    logger.info(f"Downloaded: {filename}")
                else:
                    failed.append(filename)

        if failed:
            for path in staged.files:
                path.unlink(missing_ok=True)
            raise FetchError(f"Failed to download some files: {' '.join(failed)}", failed)

        missing = [f for f in self.required_files if not (self.staging_dir / f).is_file()]
        if missing:
            raise MissingFilesError(f"Required files are missing: {' '.join(missing)}", missing)

        return staged

    async def deploy(
        self,
        staged: StagedAssets,
        web_root: Path,
        entry_point: str,
        critical_files: Sequence[str],
        now: Optional[datetime] = None,
    ) -> DeploymentResult:
        """Replace the web root contents with the staged files.

        The previous contents are backed up first. Files that fail to copy
        are retried by direct download; the entry point must exist and be
        non-empty afterwards.

        Raises:
            EntryPointMissingError: the entry point is missing or empty.
        """
        web_root = Path(web_root)
        result = DeploymentResult(web_root=web_root)

        if web_root.is_dir():
            result.backup = BackupRecord.create(web_root, now)
            self._clear(web_root)
        web_root.mkdir(parents=True, exist_ok=True)

        for source in staged.files:
            dest = web_root / source.name
            try:
                shutil.copyfile(source, dest)
            except OSError as e:
                logger.error(f"Failed to copy: {source.name} ({e})")
                result.failed.append(source.name)
                continue

            if source.suffix == ".sh":
                dest.chmod(0o755)

            if dest.is_file() and dest.stat().st_size > 0:
                result.deployed.append(source.name)
                logger.info(f"Deployed: {source.name}")
            else:
                logger.error(f"Failed to deploy: {source.name} (file empty or missing after copy)")
                result.failed.append(source.name)

        for dirname in ASSET_DIRS:
            src_dir = staged.staging_dir / dirname
            if src_dir.is_dir():
                try:
                    shutil.copytree(src_dir, web_root / dirname, dirs_exist_ok=True)
                    logger.info(f"Deployed: {dirname} directory")
                except OSError as e:
                    result.warnings.append(f"Failed to deploy {dirname} directory: {e}")

        if result.failed or not _non_empty(web_root / entry_point):
            logger.warning("Direct file copy failed, attempting direct download fallback...")
            await self._recover(web_root, critical_files, result)

        if not _non_empty(web_root / entry_point):
            where = f" Deployment backup available at: {result.backup.path}" if result.backup else ""
            raise EntryPointMissingError(f"{entry_point} is missing or empty after deployment.{where}")

        return result

    async def download_to(self, filename: str, dest: Path) -> bool:
        """Fetch a single file outside the manifest pass."""
        async with self._session() as session:
            return await self._download(session, filename, dest)

    async def _recover(self, web_root: Path, critical_files: Sequence[str], result: DeploymentResult) -> None:
        async with self._session() as session:
            for filename in critical_files:
                dest = web_root / filename
                if _non_empty(dest):
                    continue
                logger.info(f"Downloading {filename} directly...")
                if await self._download(session, filename, dest):
                    result.recovered.append(filename)
                    logger.info(f"Downloaded and deployed: {filename}")
                else:
                    result.warnings.append(f"Failed to download {filename} during fallback")

    async def _download(self, session: aiohttp.ClientSession, filename: str, dest: Path) -> bool:
        url = self.url_for(filename)
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status != 200:
                    logger.error(f"Failed: {filename} (HTTP {resp.status})")
                    return False
                content = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed: {filename} ({e})")
            return False

        if not content:
            logger.error(f"Failed: {filename} (file is empty or missing)")
            return False

        if not looks_valid(filename, content):
            logger.warning(f"Downloaded {filename} but content looks invalid")
            return False

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        return True

    def _session(self):
        if self.session is not None:
            return _Borrowed(self.session)
        return aiohttp.ClientSession()

    @staticmethod
    def _clear(web_root: Path) -> None:
        for child in web_root.iterdir():
            if child.name in KEEP_FILES:
                continue
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        logger.info(f"{web_root} cleared.")


class _Borrowed:
    """Async context wrapper that leaves a caller-owned session open."""

    def __init__(self, session):
        self._session = session

    async def __aenter__(self):
        return self._session

    async def __aexit__(self, *exc):
        return False


def _non_empty(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0

"""Key/value configuration store interface and the UCI implementation."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from .commands import run_command
from .errors import ConfigStoreError

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """One configuration package (e.g. ``nodogsplash`` or ``wireless``).

    Mutations are staged until ``commit``; ``revert`` discards them.
    Every method raises ConfigStoreError when the store rejects a call.
    """

    def __init__(self, package: str, config_dir: str = "/etc/config"):
        self.package = package
        self.config_dir = Path(config_dir)

    @property
    def path(self) -> Path:
        """The on-disk artifact backing this package."""
        return self.config_dir / self.package

    @abstractmethod
    async def get(self, section: str, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, section: str, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, section: str, key: str) -> None:
        """Delete an option or a whole list. Deleting an absent key is not an error."""
        pass

    @abstractmethod
    async def add_list(self, section: str, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def revert(self) -> None:
        pass

    async def get_list(self, section: str, key: str) -> List[str]:
        value = await self.get(section, key)
        return value.split() if value else []


class UciStore(ConfigStore):
    """Store backed by the OpenWrt ``uci`` command line tool."""

    def __init__(self, package: str, config_dir: str = "/etc/config", timeout: float = 15.0):
        super().__init__(package, config_dir)
        self.timeout = timeout

    def _ref(self, section: str, key: Optional[str] = None) -> str:
        ref = f"{self.package}.{section}"
        return f"{ref}.{key}" if key else ref

    async def _uci(self, *args: str, allow_failure: bool = False) -> str:
        cmd = ["uci", "-q"]
        if self.config_dir != Path("/etc/config"):
            cmd += ["-c", str(self.config_dir)]
        cmd += list(args)

        result = await run_command(*cmd, timeout=self.timeout)
        if not result.ok and not allow_failure:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise ConfigStoreError(f"uci {' '.join(args)} failed: {detail}")
        return result.stdout.strip() if result.ok else ""

    async def get(self, section: str, key: str) -> Optional[str]:
        value = await self._uci("get", self._ref(section, key), allow_failure=True)
        return value or None

    async def set(self, section: str, key: str, value: str) -> None:
        await self._uci("set", f"{self._ref(section, key)}={value}")

    async def delete(self, section: str, key: str) -> None:
        await self._uci("delete", self._ref(section, key), allow_failure=True)

    async def add_list(self, section: str, key: str, value: str) -> None:
        await self._uci("add_list", f"{self._ref(section, key)}={value}")

    async def commit(self) -> None:
        await self._uci("commit", self.package)
        logger.debug(f"Committed {self.package}")

    async def revert(self) -> None:
        await self._uci("revert", self.package, allow_failure=True)

"""Placeholder substitution over deployed portal files."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .credentials import ProvisioningConfig
from .errors import EntryPointMissingError, InjectionError

logger = logging.getLogger(__name__)

# Token -> ProvisioningConfig attribute
PLACEHOLDERS = {
    "ROUTER_ID_PLACEHOLDER": "router_id",
    "CONTRACT_ID_PLACEHOLDER": "contract_id",
    "MAIN_SERVER_PLACEHOLDER": "main_server",
    "WIFI_SSID_PLACEHOLDER": "wifi_ssid",
    "${ROUTER_ID}": "router_id",
}

INJECTABLE_SUFFIXES = (".html", ".js", ".css")


def placeholder_values(config: ProvisioningConfig) -> Dict[str, str]:
    """Map every known placeholder token to its runtime value."""
    return {token: getattr(config, attr) for token, attr in PLACEHOLDERS.items()}


def injectable_files(web_root: Path) -> List[Path]:
    return sorted(
        p for p in Path(web_root).iterdir()
        if p.is_file() and p.suffix in INJECTABLE_SUFFIXES
    )


@dataclass
class FileInjection:
    path: Path
    replacements: Dict[str, int] = field(default_factory=dict)
    size_before: int = 0
    size_after: int = 0

    @property
    def changed(self) -> bool:
        return any(self.replacements.values())


@dataclass
class InjectionReport:
    """Per-file outcome of an injection pass."""
    files: List[FileInjection] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def warnings(self) -> List[str]:
        return [f"injection: {name}: {reason}" for name, reason in self.failures.items()]


class TemplateInjector:
    """Substitutes named placeholder tokens with literal values.

    Tokens are matched as literal text and values are inserted verbatim, so
    slashes, ampersands or backslashes in a value cannot corrupt the file.
    Each file is rewritten through a temporary sibling and only replaced
    once the result is non-empty; otherwise the original stays in place.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def inject(
        self,
        files: Iterable[Path],
        values: Dict[str, str],
        entry_point: Optional[Path] = None,
    ) -> InjectionReport:
        """Run one substitution pass.

        Raises:
            InjectionError: a value is unusable (empty or multi-line).
            EntryPointMissingError: the entry point is missing or empty
                after the pass.
        """
        self._check_values(values)
        pattern = self._pattern(values)
        report = InjectionReport()

        for path in files:
            path = Path(path)
            try:
                outcome = self._inject_file(path, pattern, values)
            except (OSError, UnicodeDecodeError) as e:
                report.failures[path.name] = str(e)
                logger.error(f"Failed to inject {path.name}: {e}")
                continue

            if outcome is None:
                report.failures[path.name] = "file became empty after replacement, original kept"
                logger.error(f"File became empty after replacement: {path.name} - keeping original")
                continue

            report.files.append(outcome)
            if outcome.changed:
                logger.info(f"Updated: {path.name}")

        if entry_point is not None:
            entry_point = Path(entry_point)
            if not entry_point.is_file() or entry_point.stat().st_size == 0:
                raise EntryPointMissingError(
                    f"{entry_point.name} is missing or empty after configuration injection"
                )

        return report

    def _inject_file(self, path: Path, pattern: re.Pattern, values: Dict[str, str]) -> Optional[FileInjection]:
        raw = path.read_bytes()
        text = raw.decode(self.encoding)
        outcome = FileInjection(path=path, size_before=len(raw), size_after=len(raw))

        counts: Dict[str, int] = {}

        def substitute(match: re.Match) -> str:
            token = match.group(0)
            counts[token] = counts.get(token, 0) + 1
            return values[token]

        rendered = pattern.sub(substitute, text)
        outcome.replacements = counts
        if not counts:
            return outcome

        data = rendered.encode(self.encoding)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            with open(tmp, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            if tmp.stat().st_size == 0:
                return None

            os.chmod(tmp, path.stat().st_mode & 0o7777)
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

        outcome.size_after = len(data)
        return outcome

    @staticmethod
    def _pattern(values: Dict[str, str]) -> re.Pattern:
        # Longest tokens first so overlapping tokens resolve deterministically
        tokens = sorted(values, key=len, reverse=True)
        return re.compile("|".join(re.escape(t) for t in tokens))

    @staticmethod
    def _check_values(values: Dict[str, str]) -> None:
        if not values:
            raise InjectionError("No placeholder values supplied")
        for token, value in values.items():
            if not value:
                raise InjectionError(f"Empty value for {token}")
            if "\n" in value or "\r" in value or "\x00" in value:
                raise InjectionError(f"Value for {token} must be a single line")

"""Error taxonomy for the provisioning engine.

Only EnvironmentCheckError, FetchError and EntryPointMissingError stop an
install run. Everything else is absorbed at the component boundary and
surfaced as a warning.
"""

from typing import Iterable


class ProvisioningError(Exception):
    """Base error for the provisioner."""


class EnvironmentCheckError(ProvisioningError):
    """Host is unfit for provisioning (not root, offline, no space)."""


class FetchError(ProvisioningError):
    """A remote template file could not be downloaded or failed validation."""

    def __init__(self, message: str, failed_files: Iterable[str] = ()):
        super().__init__(message)
        self.failed_files = list(failed_files)


class MissingFilesError(FetchError):
    """Required template files are absent after the fetch."""


class InjectionError(ProvisioningError):
    """Placeholder substitution corrupted a file."""


class EntryPointMissingError(InjectionError):
    """The splash entry point is missing or empty."""


class ConfigStoreError(ProvisioningError):
    """The configuration store rejected an operation."""


class JobError(ProvisioningError):
    """A scheduled job could not be installed or removed."""

"""Error taxonomy shared by the provisioning stages.

Every fatal condition raised while provisioning derives from
:class:`ProvisioningError`. The engine wraps whichever error halted a run in
:class:`ProvisioningFailed`, which additionally records the stage that failed
and the last stage that completed.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import ProvisioningReport, Stage


class ProvisioningError(RuntimeError):
    """Base class for fatal provisioning errors."""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        """Store the message and optional operator remediation text."""
        super().__init__(message)
        self.remediation = remediation


class PrivilegeError(ProvisioningError):
    """Raised when the tool is not running with root privileges."""


class UnsupportedPlatformError(ProvisioningError):
    """Raised for an unrecognised operating system or package family."""


class PackageInstallError(ProvisioningError):
    """Raised when the system package manager fails."""


class ServiceActivationError(ProvisioningError):
    """Raised when the service manager cannot enable or start a unit."""


class ConfigWriteError(ProvisioningError):
    """Raised when the persisted configuration cannot be written."""


class SecretResolutionError(ProvisioningError):
    """Raised when existing secrets cannot be read back from disk."""


class SecretGenerationError(ProvisioningError):
    """Raised when the operating system random source is unavailable."""


class DeploymentError(ProvisioningError):
    """Raised when application deployment or database provisioning fails."""


class ProvisioningFailed(RuntimeError):
    """Raised by the engine when a stage halts the run."""

    def __init__(
        self,
        stage: Stage,
        last_completed: Stage,
        error: ProvisioningError,
        report: ProvisioningReport,
    ) -> None:
        """Record the failing stage, the last good stage and the cause."""
        super().__init__(
            f"Provisioning halted during {stage.value} "
            f"(last completed: {last_completed.value}): {error}"
        )
        self.stage = stage
        self.last_completed = last_completed
        self.error = error
        self.report = report

    @property
    def remediation(self) -> str | None:
        """Return the remediation hint of the underlying error."""
        return self.error.remediation


__all__ = [
    "ConfigWriteError",
    "DeploymentError",
    "PackageInstallError",
    "PrivilegeError",
    "ProvisioningError",
    "ProvisioningFailed",
    "SecretGenerationError",
    "SecretResolutionError",
    "ServiceActivationError",
    "UnsupportedPlatformError",
]

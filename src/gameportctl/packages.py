"""System package and dependency-service reconciliation per OS family."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from .environment import CommandError, SystemEnvironment
from .errors import PackageInstallError, ServiceActivationError, UnsupportedPlatformError
from .providers.systemd import SystemdError, SystemdProvider

LOGGER = logging.getLogger(__name__)

MANUAL_INSTALL_HINT = "Unsupported OS. Please install dependencies manually."


class OsFamily(str, Enum):
    """Package-manager families the reconciler knows how to drive."""

    DEBIAN = "debian"
    RHEL = "rhel"


_FAMILY_IDS: dict[OsFamily, frozenset[str]] = {
    OsFamily.DEBIAN: frozenset({"debian", "ubuntu", "raspbian"}),
    OsFamily.RHEL: frozenset({"rhel", "centos", "fedora", "rocky", "almalinux"}),
}


@dataclass(frozen=True)
class PackageStrategy:
    """Commands, packages and services for one OS family."""

    family: OsFamily
    refresh: tuple[str, ...]
    install: tuple[str, ...]
    packages: tuple[str, ...]
    services: tuple[str, ...]
    environment: tuple[tuple[str, str], ...] = ()

    @property
    def datastore_unit(self) -> str:
        """Return the database service unit name."""
        return f"{self.services[1]}.service"

    @property
    def cache_unit(self) -> str:
        """Return the cache service unit name."""
        return f"{self.services[2]}.service"

    @property
    def orchestration_unit(self) -> str:
        """Return the container runtime unit name."""
        return f"{self.services[0]}.service"


STRATEGIES: dict[OsFamily, PackageStrategy] = {
    OsFamily.DEBIAN: PackageStrategy(
        family=OsFamily.DEBIAN,
        refresh=("apt-get", "update", "-y"),
        install=("apt-get", "install", "-y"),
        packages=(
            "curl",
            "wget",
            "git",
            "nodejs",
            "npm",
            "docker.io",
            "docker-compose",
            "mysql-server",
            "redis-server",
        ),
        services=("docker", "mysql", "redis-server"),
        environment=(("DEBIAN_FRONTEND", "noninteractive"),),
    ),
    OsFamily.RHEL: PackageStrategy(
        family=OsFamily.RHEL,
        refresh=("dnf", "-y", "makecache"),
        install=("dnf", "-y", "install"),
        packages=(
            "curl",
            "wget",
            "git",
            "nodejs",
            "npm",
            "docker",
            "docker-compose",
            "mysql-server",
            "redis",
        ),
        services=("docker", "mysqld", "redis"),
    ),
}


@dataclass(slots=True)
class PackageResult:
    """Summary of a reconcile run."""

    family: OsFamily
    packages: list[str]
    services: list[str]
    commands: list[list[str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "family": self.family.value,
            "packages": list(self.packages),
            "services": list(self.services),
            "commands": [list(command) for command in self.commands],
        }


def resolve_family(os_id: str, os_like: Sequence[str] = ()) -> OsFamily:
    """Map an ``os-release`` ID (and ``ID_LIKE``) onto a supported family."""
    candidates = [os_id.lower(), *(token.lower() for token in os_like)]
    for candidate in candidates:
        for family, identifiers in _FAMILY_IDS.items():
            if candidate in identifiers:
                return family
    raise UnsupportedPlatformError(
        f"Unsupported OS family '{os_id}'.",
        remediation=MANUAL_INSTALL_HINT,
    )


def strategy_for(family: OsFamily | str) -> PackageStrategy:
    """Return the strategy for *family*, rejecting anything unknown."""
    try:
        resolved = family if isinstance(family, OsFamily) else OsFamily(str(family))
    except ValueError as exc:
        raise UnsupportedPlatformError(
            f"Unsupported package family '{family}'.",
            remediation=MANUAL_INSTALL_HINT,
        ) from exc
    return STRATEGIES[resolved]


@dataclass(slots=True)
class PackageReconciler:
    """Install the declared packages and enable their services."""

    env: SystemEnvironment
    systemd: SystemdProvider

    def reconcile(
        self,
        family: OsFamily | str,
        packages: Sequence[str] | None = None,
    ) -> PackageResult:
        """Refresh the package index, install *packages*, enable services.

        Partial failures are not rolled back; re-running is the recovery path.
        """
        strategy = strategy_for(family)
        package_list = list(packages) if packages is not None else list(strategy.packages)
        result = PackageResult(
            family=strategy.family,
            packages=package_list,
            services=list(strategy.services),
        )
        command_env = dict(strategy.environment) or None

        self._package_command(list(strategy.refresh), command_env, result)
        if package_list:
            self._package_command([*strategy.install, *package_list], command_env, result)

        for service in strategy.services:
            try:
                self.systemd.enable_now(service)
            except SystemdError as exc:
                raise ServiceActivationError(
                    f"Failed to enable service '{service}': {exc}",
                    remediation=f"Inspect `journalctl -u {service}` and re-run the installer.",
                ) from exc
            result.commands.append([self.systemd.systemctl_bin, "enable", "--now", service])
        LOGGER.info(
            "Reconciled %d packages and %d services for %s",
            len(package_list),
            len(strategy.services),
            strategy.family.value,
        )
        return result

    def _package_command(
        self,
        command: list[str],
        command_env: dict[str, str] | None,
        result: PackageResult,
    ) -> None:
        LOGGER.debug("Running package command: %s", " ".join(command))
        try:
            self.env.run(command, env=command_env)
        except CommandError as exc:
            raise PackageInstallError(
                str(exc),
                remediation="Resolve the package manager error and re-run the installer.",
            ) from exc
        result.commands.append(command)


__all__ = [
    "OsFamily",
    "PackageReconciler",
    "PackageResult",
    "PackageStrategy",
    "STRATEGIES",
    "resolve_family",
    "strategy_for",
]

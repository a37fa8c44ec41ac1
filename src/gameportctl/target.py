"""Declarative description of the host state one GamePort instance needs."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .bootstrap import DirectorySpec, ServiceAccountSpec
from .config import (
    AppConfig,
    AppSettings,
    CacheSettings,
    DatabaseSettings,
    DeploySettings,
    OrchestrationSettings,
)
from .packages import PackageStrategy
from .providers.systemd import ServiceUnitDescriptor
from .secret_manager import SecretBundle

SIGNING_SECRET_ENV = "JWT_SECRET"


@dataclass(frozen=True)
class ProvisioningTarget:
    """Immutable end state derived from the tool configuration."""

    service_name: str
    account: ServiceAccountSpec
    install_root: Path
    data_root: Path
    config_root: Path
    log_root: Path
    config_path: Path
    app: AppSettings
    database: DatabaseSettings
    cache: CacheSettings
    orchestration: OrchestrationSettings
    deploy: DeploySettings
    extra_packages: tuple[str, ...] = ()
    skip_packages: bool = False
    export_signing_secret: bool = True

    @property
    def owner(self) -> str:
        """Return the service account name."""
        return self.account.name

    @property
    def group(self) -> str:
        """Return the service account primary group."""
        return self.account.group or self.account.name

    def directories(self) -> tuple[DirectorySpec, ...]:
        """Return the managed directories with their required owner and mode."""
        return (
            DirectorySpec(self.install_root, owner=self.owner, group=self.group, mode=0o755),
            DirectorySpec(self.data_root, owner=self.owner, group=self.group, mode=0o750),
            DirectorySpec(self.config_root, owner=self.owner, group=self.group, mode=0o750),
            DirectorySpec(self.log_root, owner=self.owner, group=self.group, mode=0o750),
        )

    def packages_for(self, strategy: PackageStrategy) -> list[str]:
        """Return the family package list plus configured extras."""
        packages = list(strategy.packages)
        for extra in self.extra_packages:
            if extra not in packages:
                packages.append(extra)
        return packages

    def service_unit(
        self,
        secrets: SecretBundle,
        strategy: PackageStrategy | None = None,
    ) -> ServiceUnitDescriptor:
        """Return the unit descriptor for the panel service."""
        after = ["network.target"]
        if strategy is not None:
            after.extend(
                [strategy.datastore_unit, strategy.cache_unit, strategy.orchestration_unit]
            )
        environment = {
            "NODE_ENV": self.app.environment,
            "CONFIG_PATH": str(self.config_path),
        }
        if self.export_signing_secret:
            # Compatibility shim; the config file stays the source of truth.
            environment[SIGNING_SECRET_ENV] = secrets.signing_secret
        entry_point = self.install_root / self.deploy.entry_point
        return ServiceUnitDescriptor(
            name=self.service_name,
            description="GamePort Game Server Management Panel",
            user=self.owner,
            group=self.group,
            working_directory=self.install_root,
            exec_start=f"{self.deploy.node_bin} {entry_point}",
            after=tuple(after),
            environment=environment,
            syslog_identifier=self.service_name,
            contains_secrets=self.export_signing_secret,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "service_name": self.service_name,
            "account": self.account.to_dict(),
            "directories": [spec.to_dict() for spec in self.directories()],
            "config_path": str(self.config_path),
            "extra_packages": list(self.extra_packages),
            "skip_packages": self.skip_packages,
            "export_signing_secret": self.export_signing_secret,
        }


def build_target(config: AppConfig) -> ProvisioningTarget:
    """Return the :class:`ProvisioningTarget` described by *config*."""
    account = ServiceAccountSpec(
        name=config.service_user,
        group=config.service_group,
        home=Path("/home") / config.service_user,
        supplementary_groups=(config.orchestration.group,),
    )
    return ProvisioningTarget(
        service_name=config.service_name,
        account=account,
        install_root=config.install_root,
        data_root=config.data_root,
        config_root=config.config_root,
        log_root=config.log_root,
        config_path=config.panel_config_path,
        app=config.app,
        database=config.database,
        cache=config.cache,
        orchestration=config.orchestration,
        deploy=config.deploy,
        extra_packages=config.packages.extra,
        skip_packages=config.packages.skip,
        export_signing_secret=config.systemd.export_signing_secret,
    )


__all__ = ["ProvisioningTarget", "SIGNING_SECRET_ENV", "build_target"]

"""Provisioning state machine.

A run walks an explicit, ordered sequence of stages::

    Start -> FactsCollected -> PackagesReady -> AccountAndDirsReady
          -> SecretsResolved -> ConfigPersisted -> ServiceRegistered -> Running

Each transition is one fallible method. The first failure halts the run and
raises :class:`~gameportctl.errors.ProvisioningFailed` naming the stage that
failed and the last one that completed. Nothing is rolled back; every stage
is idempotent, so re-running after fixing the cause is the recovery path.
"""
from __future__ import annotations

import logging
import secrets as _secrets
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .bootstrap import ensure_account, ensure_directories
from .environment import SystemEnvironment
from .errors import (
    DeploymentError,
    PrivilegeError,
    ProvisioningError,
    ProvisioningFailed,
    ServiceActivationError,
)
from .facts import (
    MEMINFO_PATH,
    OS_RELEASE_PATH,
    HostFacts,
    ResourceAdvisory,
    assess_resources,
    collect,
)
from .materializer import persist, render
from .packages import (
    PackageReconciler,
    PackageStrategy,
    resolve_family,
    strategy_for,
)
from .providers.application import ApplicationDeployer, ApplicationDeployError
from .providers.database import DatabaseError, DatabaseProvisioner
from .providers.systemd import SystemdError, SystemdProvider
from .secret_manager import SecretBundle, TokenSource, load_or_create
from .state import StateRegistry, StateRegistryError
from .target import ProvisioningTarget
from .templates import TemplateError

LOGGER = logging.getLogger(__name__)


class Stage(str, Enum):
    """States of a provisioning run, in order."""

    START = "Start"
    FACTS_COLLECTED = "FactsCollected"
    PACKAGES_READY = "PackagesReady"
    ACCOUNT_AND_DIRS_READY = "AccountAndDirsReady"
    SECRETS_RESOLVED = "SecretsResolved"
    CONFIG_PERSISTED = "ConfigPersisted"
    SERVICE_REGISTERED = "ServiceRegistered"
    RUNNING = "Running"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(slots=True)
class StageRecord:
    """Outcome of a single transition."""

    stage: Stage
    status: str
    detail: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "stage": self.stage.value,
            "status": self.status,
            "detail": self.detail,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class ProvisioningReport:
    """Everything observed during a run, complete or not."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: str = field(default_factory=_timestamp)
    finished_at: str | None = None
    stages: list[StageRecord] = field(default_factory=list)
    facts: HostFacts | None = None
    advisories: list[ResourceAdvisory] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    last_completed: Stage = Stage.START
    failure: dict[str, object] | None = None
    access_url: str | None = None
    secrets: dict[str, str] = field(default_factory=dict)
    config_changed: bool | None = None
    unit_changed: bool | None = None
    backups: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the run reached :attr:`Stage.RUNNING`."""
        return self.last_completed is Stage.RUNNING

    @property
    def status(self) -> str:
        """Return ``success``, ``failed`` or ``in-progress``."""
        if self.failure is not None:
            return "failed"
        return "success" if self.succeeded else "in-progress"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status,
            "last_completed": self.last_completed.value,
            "stages": [record.to_dict() for record in self.stages],
            "facts": self.facts.to_dict() if self.facts else None,
            "advisories": [advisory.to_dict() for advisory in self.advisories],
            "warnings": list(self.warnings),
            "failure": self.failure,
            "access_url": self.access_url,
            "secrets": dict(self.secrets),
            "config_changed": self.config_changed,
            "unit_changed": self.unit_changed,
            "backups": list(self.backups),
        }


@dataclass(slots=True)
class RunOptions:
    """Switches that narrow what a run touches."""

    skip_packages: bool = False
    skip_deploy: bool = False
    os_release: Path = OS_RELEASE_PATH
    meminfo: Path = MEMINFO_PATH
    disk_path: Path = Path("/")


class Provisioner:
    """Drive a host to :class:`ProvisioningTarget`, one stage at a time."""

    def __init__(
        self,
        env: SystemEnvironment,
        target: ProvisioningTarget,
        *,
        systemd: SystemdProvider,
        state: StateRegistry | None = None,
        options: RunOptions | None = None,
        token_source: TokenSource = _secrets.token_bytes,
        on_stage: Callable[[StageRecord], None] | None = None,
    ) -> None:
        """Wire the collaborators used by the stages."""
        self.env = env
        self.target = target
        self.systemd = systemd
        self.state = state
        self.options = options or RunOptions()
        self.token_source = token_source
        self.on_stage = on_stage
        self.packages = PackageReconciler(env=env, systemd=systemd)
        self.database = DatabaseProvisioner(env=env, mysql_bin=target.database.mysql_bin)
        self.deployer = ApplicationDeployer(
            env=env,
            install_root=target.install_root,
            settings=target.deploy,
            environment_name=target.app.environment,
        )

        self._facts: HostFacts | None = None
        self._strategy: PackageStrategy | None = None
        self._secrets: SecretBundle | None = None

    @property
    def deploy_enabled(self) -> bool:
        """Return ``True`` when the application tree is managed by this run."""
        return self.target.deploy.enabled and not self.options.skip_deploy

    def stages(self) -> list[tuple[Stage, Callable[[ProvisioningReport], str]]]:
        """Return the ordered transitions of a run."""
        return [
            (Stage.FACTS_COLLECTED, self._collect_facts),
            (Stage.PACKAGES_READY, self._reconcile_packages),
            (Stage.ACCOUNT_AND_DIRS_READY, self._provision_account_and_dirs),
            (Stage.SECRETS_RESOLVED, self._resolve_secrets),
            (Stage.CONFIG_PERSISTED, self._persist_config),
            (Stage.SERVICE_REGISTERED, self._register_service),
            (Stage.RUNNING, self._activate),
        ]

    def run(self) -> ProvisioningReport:
        """Execute every stage, raising :class:`ProvisioningFailed` on the first error."""
        report = ProvisioningReport()
        for stage, action in self.stages():
            started = time.perf_counter()
            try:
                detail = self._guard(stage, action, report)
            except ProvisioningError as exc:
                record = StageRecord(
                    stage=stage,
                    status="failed",
                    detail=str(exc),
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
                self._push(report, record)
                report.failure = {
                    "stage": stage.value,
                    "error": str(exc),
                    "type": type(exc).__name__,
                    "remediation": exc.remediation,
                }
                report.finished_at = _timestamp()
                LOGGER.error("Stage %s failed: %s", stage.value, exc)
                self._save(report)
                raise ProvisioningFailed(stage, report.last_completed, exc, report) from exc
            record = StageRecord(
                stage=stage,
                status="ok",
                detail=detail,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
            self._push(report, record)
            report.last_completed = stage
            LOGGER.info("Reached %s: %s", stage.value, detail)
        report.finished_at = _timestamp()
        self._save(report)
        return report

    # ------------------------------------------------------------------
    def _guard(
        self,
        stage: Stage,
        action: Callable[[ProvisioningReport], str],
        report: ProvisioningReport,
    ) -> str:
        try:
            return action(report)
        except ProvisioningError:
            raise
        except SystemdError as exc:
            raise ServiceActivationError(
                str(exc),
                remediation=f"Inspect `journalctl -u {self.target.service_name}` and re-run.",
            ) from exc
        except (ApplicationDeployError, DatabaseError) as exc:
            raise DeploymentError(
                str(exc),
                remediation="Fix the reported problem and re-run the installer.",
            ) from exc
        except TemplateError as exc:
            raise ServiceActivationError(str(exc)) from exc
        except OSError as exc:
            raise ProvisioningError(f"{stage.value}: {exc}") from exc

    def _push(self, report: ProvisioningReport, record: StageRecord) -> None:
        report.stages.append(record)
        if self.on_stage is not None:
            self.on_stage(record)

    def _save(self, report: ProvisioningReport) -> None:
        if self.state is None:
            return
        try:
            self.state.record_run(report.to_dict())
        except (StateRegistryError, OSError) as exc:
            LOGGER.warning("Could not record run state: %s", exc)
            report.warnings.append(f"Run state not recorded: {exc}")

    # Stages -----------------------------------------------------------
    def _collect_facts(self, report: ProvisioningReport) -> str:
        if not self.env.is_root():
            raise PrivilegeError(
                "This installer must be run as root.",
                remediation="Re-run with sudo or as the root user.",
            )
        facts = collect(
            self.env,
            os_release=self.options.os_release,
            meminfo=self.options.meminfo,
            disk_path=self.options.disk_path,
        )
        self._facts = facts
        report.facts = facts
        report.advisories = assess_resources(facts)
        return (
            f"{facts.os_id} {facts.os_version}; {facts.cpu_cores} cores, "
            f"{facts.ram_mb} MB RAM, {facts.disk_free_mb} MB free"
        )

    def _reconcile_packages(self, report: ProvisioningReport) -> str:
        facts = self._require_facts()
        if self.options.skip_packages or self.target.skip_packages:
            try:
                self._strategy = strategy_for(resolve_family(facts.os_id, facts.os_like))
            except ProvisioningError:
                self._strategy = None
            report.warnings.append("Package installation skipped by request.")
            return "skipped"
        family = resolve_family(facts.os_id, facts.os_like)
        strategy = strategy_for(family)
        self._strategy = strategy
        result = self.packages.reconcile(family, self.target.packages_for(strategy))
        return (
            f"{family.value}: {len(result.packages)} packages, "
            f"services {', '.join(result.services)}"
        )

    def _provision_account_and_dirs(self, report: ProvisioningReport) -> str:
        account_plan = ensure_account(self.env, self.target.account)
        report.warnings.extend(account_plan.warnings)
        directory_plan = ensure_directories(self.env, self.target.directories())
        details = [
            f"account {'created' if account_plan.changed else 'present'}",
            f"{len(directory_plan.created)} directories created",
        ]
        if directory_plan.drifted:
            details.append(f"{len(directory_plan.drifted)} corrected")
        if self.deploy_enabled:
            cloned = self.deployer.ensure_checkout()
            self.deployer.install_dependencies()
            self.deployer.assign_ownership(self.target.owner, self.target.group)
            details.append("application cloned" if cloned else "application present")
        return ", ".join(details)

    def _resolve_secrets(self, report: ProvisioningReport) -> str:
        bundle = load_or_create(
            self.env,
            self.target.config_path,
            token_source=self.token_source,
        )
        self._secrets = bundle
        report.secrets = bundle.summary()
        if bundle.fresh:
            return "generated new secrets"
        return f"reused {len(bundle.reused)} secrets"

    def _persist_config(self, report: ProvisioningReport) -> str:
        bundle = self._require_secrets()
        record = render(self.target, self._facts, bundle)
        report.access_url = record.url
        result = persist(
            self.env,
            record,
            self.target.config_path,
            owner=self.target.owner,
            group=self.target.group,
        )
        report.config_changed = result.changed
        details = [f"{self.target.config_path} {'written' if result.changed else 'unchanged'}"]
        if result.backup is not None:
            report.backups.append(str(result.backup))
            details.append(f"previous copy kept at {result.backup}")
        if self.target.database.provision:
            self.database.ensure(
                self.target.database.name,
                self.target.database.user,
                bundle.db_password,
            )
            details.append("database provisioned")
        if self.deploy_enabled and self.target.deploy.migrate:
            self.deployer.migrate(self.target.config_path)
            details.append("migrations applied")
        return ", ".join(details)

    def _register_service(self, report: ProvisioningReport) -> str:
        descriptor = self.target.service_unit(self._require_secrets(), self._strategy)
        changed = self.systemd.write_unit(descriptor)
        report.unit_changed = changed
        details = [f"{descriptor.unit_name} {'written' if changed else 'unchanged'}"]
        if self.deploy_enabled:
            link = self.deployer.link_cli()
            details.append(f"CLI linked at {link}")
        return ", ".join(details)

    def _activate(self, report: ProvisioningReport) -> str:
        descriptor = self.target.service_unit(self._require_secrets(), self._strategy)
        self.systemd.reload_and_activate(descriptor.unit_name)
        return f"{descriptor.unit_name} restarted"

    # ------------------------------------------------------------------
    def _require_facts(self) -> HostFacts:
        if self._facts is None:
            raise ProvisioningError("Host facts have not been collected.")
        return self._facts

    def _require_secrets(self) -> SecretBundle:
        if self._secrets is None:
            raise ProvisioningError("Secrets have not been resolved.")
        return self._secrets


__all__ = [
    "ProvisioningReport",
    "Provisioner",
    "RunOptions",
    "Stage",
    "StageRecord",
]

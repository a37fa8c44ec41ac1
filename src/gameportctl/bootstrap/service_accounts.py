"""Utilities for inspecting and provisioning the GamePort service account."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..environment import CommandError, SystemEnvironment
from ..errors import ProvisioningError

LOGGER = logging.getLogger(__name__)

RESTRICTED_SHELL = "/usr/sbin/nologin"


@dataclass(frozen=True)
class ServiceAccountSpec:
    """Desired attributes for the runtime service account."""

    name: str
    group: str | None = None
    system: bool = True
    create_group: bool = True
    home: Path | None = None
    shell: str | None = RESTRICTED_SHELL
    supplementary_groups: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "group": self.group,
            "home": str(self.home) if self.home else None,
            "shell": self.shell,
            "supplementary_groups": list(self.supplementary_groups),
        }


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the service account on the host."""

    user_exists: bool
    group_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None
    groups: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ServiceAccountAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["ensure-group", "create-user", "add-groups"]
    description: str
    command: list[str] | None = None


@dataclass(slots=True)
class ServiceAccountPlan:
    """Aggregated actions and warnings required to satisfy a ServiceAccountSpec."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``True`` when the plan mutates the host."""
        return bool(self.actions)


def inspect_service_account(
    env: SystemEnvironment,
    spec: ServiceAccountSpec,
) -> ServiceAccountStatus:
    """Return the current status for *spec* from the host account database."""
    record = env.lookup_user(spec.name)
    group_exists = bool(spec.group) and env.group_exists(str(spec.group))
    if record is None:
        return ServiceAccountStatus(user_exists=False, group_exists=group_exists)
    return ServiceAccountStatus(
        user_exists=True,
        group_exists=group_exists,
        uid=record.uid,
        gid=record.gid,
        home=record.home,
        shell=record.shell,
        primary_group=record.primary_group,
        groups=list(record.groups),
    )


def plan_service_account(
    env: SystemEnvironment,
    spec: ServiceAccountSpec,
) -> ServiceAccountPlan:
    """Return a plan describing how to satisfy *spec* on the host."""
    status = inspect_service_account(env, spec)
    plan = ServiceAccountPlan(spec=spec, status=status)

    if spec.group and not status.group_exists and not status.user_exists:
        if spec.create_group:
            command = ["groupadd"]
            if spec.system:
                command.append("--system")
            command.append(spec.group)
            plan.actions.append(
                ServiceAccountAction(
                    kind="ensure-group",
                    description=f"Create group '{spec.group}'.",
                    command=command,
                )
            )
        else:
            plan.warnings.append(
                f"Group '{spec.group}' is missing and create_group is False."
            )

    if not status.user_exists:
        command = ["useradd"]
        if spec.system:
            command.append("--system")
        if spec.home:
            command.extend(["--create-home", "--home-dir", str(spec.home)])
        else:
            command.append("--no-create-home")
        if spec.shell:
            command.extend(["--shell", str(spec.shell)])
        if spec.group:
            command.extend(["--gid", spec.group])
        command.append(spec.name)
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create service user '{spec.name}'.",
                command=command,
            )
        )
    else:
        if spec.group and status.primary_group and status.primary_group != spec.group:
            plan.warnings.append(
                "User "
                f"'{spec.name}' primary group is '{status.primary_group}', "
                f"expected '{spec.group}'."
            )
        if spec.home and status.home and status.home != spec.home:
            plan.warnings.append(
                f"User '{spec.name}' home '{status.home}' differs from desired '{spec.home}'."
            )
        if spec.shell and status.shell and str(status.shell) != str(spec.shell):
            plan.warnings.append(
                f"User '{spec.name}' shell '{status.shell}' differs from desired '{spec.shell}'."
            )

    missing_groups: list[str] = []
    for group in spec.supplementary_groups:
        if group in status.groups:
            continue
        if not env.group_exists(group):
            plan.warnings.append(
                f"Supplementary group '{group}' does not exist; skipping membership."
            )
            continue
        missing_groups.append(group)
    if missing_groups:
        plan.actions.append(
            ServiceAccountAction(
                kind="add-groups",
                description=(
                    f"Add '{spec.name}' to supplementary groups: {', '.join(missing_groups)}."
                ),
                command=["usermod", "--append", "--groups", ",".join(missing_groups), spec.name],
            )
        )

    return plan


def apply_service_account_plan(
    env: SystemEnvironment,
    plan: ServiceAccountPlan,
    *,
    dry_run: bool = False,
) -> None:
    """Execute the commands described by *plan*."""
    for action in plan.actions:
        if action.command is None or dry_run:
            continue
        LOGGER.info(action.description)
        try:
            env.run(action.command)
        except CommandError as exc:
            raise ProvisioningError(
                f"{action.description.rstrip('.')} failed: {exc}",
                remediation="Check the account database and re-run the installer.",
            ) from exc


def ensure_account(env: SystemEnvironment, spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Create the account described by *spec* only when it is absent."""
    plan = plan_service_account(env, spec)
    for warning in plan.warnings:
        LOGGER.warning(warning)
    apply_service_account_plan(env, plan)
    return plan


__all__ = [
    "RESTRICTED_SHELL",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "ensure_account",
    "inspect_service_account",
    "plan_service_account",
]

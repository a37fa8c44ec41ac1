"""Directory planning helpers for the provisioning workflow.

Ownership and mode are reasserted on every run, even for directories that
already look correct, so that drift introduced by an operator is healed by
simply re-running the installer.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..environment import SystemEnvironment
from ..errors import ProvisioningError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectorySpec:
    """Desired state for a managed directory."""

    path: Path
    owner: str | None = None
    group: str | None = None
    mode: int = 0o750

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "owner": self.owner,
            "group": self.group,
            "mode": f"{self.mode:04o}",
        }


@dataclass(slots=True)
class DirectoryAction:
    """Single filesystem operation."""

    kind: Literal["mkdir", "chown", "chmod"]
    spec: DirectorySpec
    drift: bool = False


@dataclass(slots=True)
class DirectoryPlan:
    """Ordered actions plus problems found while planning."""

    actions: list[DirectoryAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def created(self) -> list[Path]:
        """Return the directories the plan creates."""
        return [action.spec.path for action in self.actions if action.kind == "mkdir"]

    @property
    def drifted(self) -> list[Path]:
        """Return the directories whose ownership or mode had drifted."""
        seen: list[Path] = []
        for action in self.actions:
            if action.drift and action.spec.path not in seen:
                seen.append(action.spec.path)
        return seen


def plan_directories(env: SystemEnvironment, specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Return the actions needed to bring *specs* to their desired state."""
    plan = DirectoryPlan()
    for spec in specs:
        if env.exists(spec.path) and not env.is_dir(spec.path):
            plan.warnings.append(f"{spec.path} exists but is not a directory.")
            continue

        owner_drift = False
        mode_drift = False
        if not env.exists(spec.path):
            plan.actions.append(DirectoryAction(kind="mkdir", spec=spec))
        else:
            current = env.stat_path(spec.path)
            owner_drift = bool(
                (spec.owner and current.owner != spec.owner)
                or (spec.group and current.group != spec.group)
            )
            mode_drift = current.mode != spec.mode

        if spec.owner:
            plan.actions.append(DirectoryAction(kind="chown", spec=spec, drift=owner_drift))
        plan.actions.append(DirectoryAction(kind="chmod", spec=spec, drift=mode_drift))
    return plan


def apply_directory_plan(env: SystemEnvironment, plan: DirectoryPlan) -> None:
    """Execute *plan* against the host."""
    for action in plan.actions:
        spec = action.spec
        if action.kind == "mkdir":
            LOGGER.info("Creating directory %s", spec.path)
            env.make_directory(spec.path)
        elif action.kind == "chown" and spec.owner:
            if action.drift:
                LOGGER.warning("Correcting ownership drift on %s", spec.path)
            env.chown(spec.path, spec.owner, spec.group)
        elif action.kind == "chmod":
            if action.drift:
                LOGGER.warning("Correcting mode drift on %s", spec.path)
            env.chmod(spec.path, spec.mode)


def ensure_directories(env: SystemEnvironment, specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Create missing directories and reassert ownership and mode on all of them."""
    plan = plan_directories(env, specs)
    if plan.warnings:
        raise ProvisioningError(
            "; ".join(plan.warnings),
            remediation="Move the conflicting files aside and re-run the installer.",
        )
    try:
        apply_directory_plan(env, plan)
    except OSError as exc:
        raise ProvisioningError(f"Failed to prepare directories: {exc}") from exc
    return plan


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "apply_directory_plan",
    "ensure_directories",
    "plan_directories",
]

"""Systemd provider for the GamePort service unit."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from ..environment import CommandError, CommandResult, SystemEnvironment
from ..templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

UNIT_TEMPLATE = "systemd/service.j2"


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(frozen=True)
class ServiceUnitDescriptor:
    """Declarative description of the supervised application process."""

    name: str
    description: str
    user: str
    group: str
    working_directory: Path
    exec_start: str
    after: tuple[str, ...] = ("network.target",)
    environment: Mapping[str, str] = field(default_factory=dict)
    restart: str = "always"
    restart_sec: int = 10
    syslog_identifier: str | None = None
    wanted_by: str = "multi-user.target"
    contains_secrets: bool = False

    @property
    def unit_name(self) -> str:
        """Return the unit file name."""
        return self.name if self.name.endswith(".service") else f"{self.name}.service"

    def context(self) -> dict[str, object]:
        """Return the template context for the unit."""
        return {
            "description": self.description,
            "after": " ".join(self.after),
            "user": self.user,
            "group": self.group,
            "working_directory": str(self.working_directory),
            "exec_start": self.exec_start,
            "restart": self.restart,
            "restart_sec": self.restart_sec,
            "syslog_identifier": self.syslog_identifier or self.name,
            "environment": [f"{key}={value}" for key, value in self.environment.items()],
            "wanted_by": self.wanted_by,
        }

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with secrets masked."""
        payload = self.context()
        payload["name"] = self.unit_name
        payload["environment"] = [
            f"{key}=***" if self.contains_secrets and "SECRET" in key else f"{key}={value}"
            for key, value in self.environment.items()
        ]
        return payload


@dataclass(slots=True)
class SystemdProvider:
    """Render unit files and drive ``systemctl`` through the host environment."""

    env: SystemEnvironment
    templates: TemplateEngine
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def unit_path(self, descriptor: ServiceUnitDescriptor) -> Path:
        """Return the full path for the unit file of *descriptor*."""
        return self.systemd_dir / descriptor.unit_name

    def render_unit(self, descriptor: ServiceUnitDescriptor) -> str:
        """Return the unit file text for *descriptor*."""
        return self.templates.render_to_string(UNIT_TEMPLATE, descriptor.context())

    def write_unit(self, descriptor: ServiceUnitDescriptor) -> bool:
        """Write the unit for *descriptor*, returning ``True`` when content changed."""
        path = self.unit_path(descriptor)
        content = self.render_unit(descriptor)
        mode = 0o600 if descriptor.contains_secrets else 0o644
        existing: str | None = None
        if self.env.exists(path):
            try:
                existing = self.env.read_text(path)
            except OSError:
                existing = None
        try:
            if existing != content:
                self.env.write_file_atomic(path, content, mode=mode)
            self.env.chmod(path, mode)
        except OSError as exc:
            raise SystemdError(f"Failed to write unit {path}: {exc}") from exc
        LOGGER.info("Unit %s %s", path, "updated" if existing != content else "unchanged")
        return existing != content

    def reload_and_activate(self, name: str) -> None:
        """Reload systemd, enable *name* and (re)start it.

        Restarting a unit that is already running is expected on re-runs.
        """
        self.daemon_reload()
        self.enable(name)
        self.restart(name)

    def enable(self, name: str) -> CommandResult:
        """Enable *name* at boot."""
        return self._systemctl("enable", name)

    def restart(self, name: str) -> CommandResult:
        """Restart (or start) *name*."""
        return self._systemctl("restart", name)

    def daemon_reload(self) -> CommandResult:
        """Ask systemd to re-read unit files."""
        return self._systemctl("daemon-reload")

    def enable_now(self, name: str) -> CommandResult:
        """Enable and immediately start *name*."""
        return self._systemctl("enable", "--now", name)

    def is_active(self, name: str) -> bool:
        """Return ``True`` if systemd reports *name* as active."""
        result = self._systemctl("is-active", name, check=False)
        return result.returncode == 0 and result.stdout.strip() == "active"

    # ------------------------------------------------------------------
    def _systemctl(self, command: str, *args: str, check: bool = True) -> CommandResult:
        argv = [self.systemctl_bin, command, *args]
        try:
            return self.env.run(argv, check=check)
        except CommandError as exc:
            raise SystemdError(str(exc)) from exc


__all__ = ["ServiceUnitDescriptor", "SystemdError", "SystemdProvider"]

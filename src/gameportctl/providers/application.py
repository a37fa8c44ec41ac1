"""Check out, install and migrate the GamePort panel application."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import DeploySettings
from ..environment import CommandError, SystemEnvironment

LOGGER = logging.getLogger(__name__)


class ApplicationDeployError(RuntimeError):
    """Raised when checkout, dependency install or migrations fail."""


@dataclass(slots=True)
class ApplicationDeployer:
    """Deploy the panel source tree into the install root."""

    env: SystemEnvironment
    install_root: Path
    settings: DeploySettings
    environment_name: str = "production"

    @property
    def cli_target(self) -> Path:
        """Return the panel's own CLI script."""
        return self.install_root / self.settings.cli_script

    def ensure_checkout(self) -> bool:
        """Clone the repository unless the install root is already a checkout."""
        if self.env.exists(self.install_root / ".git"):
            LOGGER.info("Existing checkout found in %s; skipping clone", self.install_root)
            return False
        self._run(
            [self.settings.git_bin, "clone", self.settings.repository, str(self.install_root)],
            action="git clone",
        )
        return True

    def install_dependencies(self) -> None:
        """Install production npm dependencies."""
        self._run(
            [self.settings.npm_bin, "install", "--production"],
            action="npm install",
            cwd=self.install_root,
        )

    def migrate(self, config_path: Path) -> None:
        """Run the panel's database migrations against *config_path*."""
        self._run(
            [self.settings.npm_bin, "run", "migrate"],
            action="npm run migrate",
            cwd=self.install_root,
            env={"NODE_ENV": self.environment_name, "CONFIG_PATH": str(config_path)},
        )

    def assign_ownership(self, owner: str, group: str) -> None:
        """Hand the whole source tree to the service account."""
        self._run(["chown", "-R", f"{owner}:{group}", str(self.install_root)], action="chown")

    def link_cli(self) -> Path:
        """Expose the panel CLI on ``PATH`` and make it executable."""
        link = self.settings.cli_link
        try:
            self.env.symlink(self.cli_target, link)
            if self.env.exists(self.cli_target):
                self.env.chmod(self.cli_target, 0o755)
        except OSError as exc:
            raise ApplicationDeployError(f"Failed to link {link}: {exc}") from exc
        return link

    def _run(
        self,
        command: list[str],
        *,
        action: str,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        LOGGER.debug("Running %s", " ".join(command))
        try:
            self.env.run(command, cwd=cwd, env=env)
        except CommandError as exc:
            raise ApplicationDeployError(f"{action} failed: {exc}") from exc


__all__ = ["ApplicationDeployError", "ApplicationDeployer"]

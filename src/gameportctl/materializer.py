"""Render and persist the panel configuration file.

The file holds live credentials, so it is written through a temporary file
in the same directory and renamed into place, then forced to ``0600`` and
owned by the service account on every run.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from .environment import SystemEnvironment
from .errors import ConfigWriteError
from .facts import HostFacts
from .secret_manager import SecretBundle
from .target import ProvisioningTarget

LOGGER = logging.getLogger(__name__)

CONFIG_MODE = 0o600
BACKUP_KEEP = 5


@dataclass(frozen=True)
class PersistedConfig:
    """Structured record written to the panel configuration file."""

    app: dict[str, object]
    database: dict[str, object]
    cache: dict[str, object]
    storage: dict[str, object]
    orchestration: dict[str, object]
    auth: dict[str, object]

    def to_dict(self) -> dict[str, object]:
        """Return the document in on-disk section order."""
        return {
            "app": dict(self.app),
            "database": dict(self.database),
            "cache": dict(self.cache),
            "storage": dict(self.storage),
            "orchestration": dict(self.orchestration),
            "auth": dict(self.auth),
        }

    def to_json(self) -> str:
        """Return the serialised document."""
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @property
    def url(self) -> str:
        """Return the panel URL."""
        return str(self.app["url"])


def access_url(target: ProvisioningTarget, facts: HostFacts | None) -> str:
    """Return the configured panel URL, or one derived from the host address."""
    if target.app.url:
        return target.app.url
    host = facts.primary_address if facts and facts.primary_address else "localhost"
    return f"http://{host}:{target.app.port}"


def render(
    target: ProvisioningTarget,
    facts: HostFacts | None,
    secrets: SecretBundle,
) -> PersistedConfig:
    """Return the configuration record for *target*; touches nothing on the host."""
    return PersistedConfig(
        app={
            "name": target.app.name,
            "url": access_url(target, facts),
            "port": target.app.port,
            "environment": target.app.environment,
            "secretKey": secrets.app_key,
        },
        database={
            "client": target.database.client,
            "connection": {
                "host": target.database.host,
                "port": target.database.port,
                "user": target.database.user,
                "password": secrets.db_password,
                "database": target.database.name,
            },
        },
        cache={"host": target.cache.host, "port": target.cache.port},
        storage={"path": str(target.data_root)},
        orchestration={"socket": str(target.orchestration.socket)},
        auth={"secret": secrets.signing_secret},
    )


@dataclass(frozen=True)
class PersistResult:
    """Outcome of :func:`persist`."""

    changed: bool
    backup: Path | None = None
    pruned: tuple[Path, ...] = ()


def _backup_epoch(path: Path, prefix: str) -> int | None:
    suffix = path.name[len(prefix) :]
    return int(suffix) if path.name.startswith(prefix) and suffix.isdigit() else None


def _prune_backups(env: SystemEnvironment, path: Path, keep: int) -> tuple[Path, ...]:
    prefix = f"{path.name}.bak."
    backups: list[tuple[int, Path]] = []
    for entry in env.list_dir(path.parent):
        epoch = _backup_epoch(entry, prefix)
        if epoch is not None:
            backups.append((epoch, entry))
    backups.sort()
    stale = tuple(entry for _, entry in backups[: max(len(backups) - keep, 0)])
    for entry in stale:
        env.remove_file(entry)
        LOGGER.info("Removed old configuration backup %s", entry)
    return stale


def persist(
    env: SystemEnvironment,
    record: PersistedConfig,
    path: Path,
    *,
    owner: str | None = None,
    group: str | None = None,
    keep_backups: int = BACKUP_KEEP,
) -> PersistResult:
    """Write *record* to *path* atomically and lock it down to the owner.

    A previous file with different content is copied to
    ``<name>.bak.<epoch>`` first; only the newest *keep_backups* copies are
    kept since each one carries live credentials.
    """
    content = record.to_json()
    try:
        previous: str | None = env.read_text(path) if env.exists(path) else None
    except OSError as exc:
        raise ConfigWriteError(f"Cannot read existing configuration {path}: {exc}") from exc

    changed = previous != content
    backup: Path | None = None
    pruned: tuple[Path, ...] = ()
    try:
        if changed and previous is not None:
            backup = path.with_name(f"{path.name}.bak.{int(time.time())}")
            env.write_file_atomic(backup, previous, mode=CONFIG_MODE)
            if owner:
                env.chown(backup, owner, group)
            LOGGER.info("Backed up previous configuration to %s", backup)
            pruned = _prune_backups(env, path, keep_backups)
        if changed:
            env.write_file_atomic(path, content, mode=CONFIG_MODE)
        if owner:
            env.chown(path, owner, group)
        env.chmod(path, CONFIG_MODE)
    except OSError as exc:
        raise ConfigWriteError(
            f"Failed to write configuration {path}: {exc}",
            remediation="Check free space and permissions under the configuration root.",
        ) from exc
    LOGGER.info("Configuration %s %s", path, "written" if changed else "unchanged")
    return PersistResult(changed=changed, backup=backup, pruned=pruned)


__all__ = [
    "BACKUP_KEEP",
    "CONFIG_MODE",
    "PersistResult",
    "PersistedConfig",
    "access_url",
    "persist",
    "render",
]

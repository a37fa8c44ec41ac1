"""Host capability used by every provisioning stage.

All reads and mutations of host state (package database, service manager,
accounts and filesystem) flow through :class:`SystemEnvironment`. The real
implementation, :class:`HostEnvironment`, shells out and touches the local
filesystem; tests substitute an in-memory double.
"""
from __future__ import annotations

import grp
import os
import pwd
import shutil
import socket
import stat
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


class CommandError(RuntimeError):
    """Raised when an external command exits unsuccessfully."""

    def __init__(self, args: Sequence[str], returncode: int, output: str) -> None:
        """Record the argv, return code and captured output of the failure."""
        joined = " ".join(args)
        message = output.strip() or "no output"
        super().__init__(f"{joined} failed (exit {returncode}): {message}")
        self.command = list(args)
        self.returncode = returncode
        self.output = output


@dataclass(slots=True)
class CommandResult:
    """Outcome of a command executed through the environment."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


@dataclass(slots=True)
class PathStat:
    """Ownership and permission bits of a filesystem path."""

    mode: int
    owner: str | None
    group: str | None


@dataclass(slots=True)
class UserRecord:
    """Account database entry for a user."""

    name: str
    uid: int
    gid: int
    home: Path
    shell: str
    primary_group: str | None = None
    groups: list[str] = field(default_factory=list)


class SystemEnvironment(Protocol):
    """Capabilities the provisioning engine needs from a host."""

    def is_root(self) -> bool:
        """Return ``True`` when running with root privileges."""

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Execute *command*, raising :class:`CommandError` on failure when *check*."""

    def read_text(self, path: Path) -> str:
        """Return the text content of *path*."""

    def exists(self, path: Path) -> bool:
        """Return ``True`` if *path* exists."""

    def is_dir(self, path: Path) -> bool:
        """Return ``True`` if *path* is a directory."""

    def make_directory(self, path: Path) -> None:
        """Create *path* and any missing parents."""

    def write_file_atomic(self, path: Path, content: str, *, mode: int) -> None:
        """Write *content* to *path* through a same-directory temp file and rename."""

    def list_dir(self, path: Path) -> list[Path]:
        """Return the entries of directory *path*."""

    def remove_file(self, path: Path) -> None:
        """Delete the file at *path*."""

    def chmod(self, path: Path, mode: int) -> None:
        """Set the permission bits of *path*."""

    def chown(self, path: Path, user: str, group: str | None) -> None:
        """Set the owner (and optionally group) of *path*."""

    def stat_path(self, path: Path) -> PathStat:
        """Return ownership and mode details for *path*."""

    def lookup_user(self, name: str) -> UserRecord | None:
        """Return the account entry for *name* or ``None``."""

    def group_exists(self, name: str) -> bool:
        """Return ``True`` if the group *name* exists."""

    def cpu_count(self) -> int:
        """Return the number of online CPU cores."""

    def disk_free_mb(self, path: Path) -> int:
        """Return the free space available on the filesystem holding *path*."""

    def primary_address(self) -> str | None:
        """Return the primary outbound IPv4 address, if one can be determined."""

    def symlink(self, target: Path, link: Path) -> None:
        """Point *link* at *target*, replacing any existing link."""


class HostEnvironment:
    """:class:`SystemEnvironment` backed by the local machine."""

    def is_root(self) -> bool:
        """Return ``True`` when the effective uid is 0."""
        return os.geteuid() == 0

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run *command* capturing output."""
        merged_env = None
        if env is not None:
            merged_env = dict(os.environ)
            merged_env.update(env)
        try:
            completed = subprocess.run(  # noqa: S603
                list(command),
                capture_output=True,
                text=True,
                check=False,
                env=merged_env,
                cwd=str(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as exc:
            raise CommandError(command, 127, f"{command[0]} not found: {exc}") from exc
        result = CommandResult(
            args=list(command),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and result.returncode != 0:
            raise CommandError(command, result.returncode, result.stderr or result.stdout)
        return result

    def read_text(self, path: Path) -> str:
        """Read *path* as UTF-8."""
        return path.read_text(encoding="utf-8")

    def exists(self, path: Path) -> bool:
        """Return whether *path* exists (symlinks are not followed)."""
        return path.exists() or path.is_symlink()

    def is_dir(self, path: Path) -> bool:
        """Return whether *path* is a directory."""
        return path.is_dir()

    def make_directory(self, path: Path) -> None:
        """Create *path* with parents."""
        path.mkdir(parents=True, exist_ok=True)

    def write_file_atomic(self, path: Path, content: str, *, mode: int) -> None:
        """Write *content* into place via ``os.replace``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                os.fchmod(handle.fileno(), mode)
                handle.write(content)
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        os.chmod(path, mode)

    def list_dir(self, path: Path) -> list[Path]:
        """Return the entries of *path* in name order."""
        return sorted(path.iterdir())

    def remove_file(self, path: Path) -> None:
        """Unlink *path*."""
        path.unlink()

    def chmod(self, path: Path, mode: int) -> None:
        """Apply *mode* to *path*."""
        os.chmod(path, mode)

    def chown(self, path: Path, user: str, group: str | None) -> None:
        """Apply ownership to *path*."""
        try:
            shutil.chown(path, user=user, group=group)
        except LookupError as exc:
            raise OSError(f"Cannot chown {path} to {user}:{group}: {exc}") from exc

    def stat_path(self, path: Path) -> PathStat:
        """Return mode, owner and group of *path*."""
        info = path.stat()
        try:
            owner: str | None = pwd.getpwuid(info.st_uid).pw_name
        except KeyError:
            owner = None
        try:
            group: str | None = grp.getgrgid(info.st_gid).gr_name
        except KeyError:
            group = None
        return PathStat(mode=stat.S_IMODE(info.st_mode), owner=owner, group=group)

    def lookup_user(self, name: str) -> UserRecord | None:
        """Return the passwd entry for *name* including supplementary groups."""
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            return None
        try:
            primary_group: str | None = grp.getgrgid(entry.pw_gid).gr_name
        except KeyError:
            primary_group = None
        groups = sorted(group.gr_name for group in grp.getgrall() if name in group.gr_mem)
        return UserRecord(
            name=name,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
            home=Path(entry.pw_dir),
            shell=entry.pw_shell,
            primary_group=primary_group,
            groups=groups,
        )

    def group_exists(self, name: str) -> bool:
        """Return whether the group database knows *name*."""
        try:
            grp.getgrnam(name)
        except KeyError:
            return False
        return True

    def cpu_count(self) -> int:
        """Return the number of CPUs visible to the OS."""
        return os.cpu_count() or 1

    def disk_free_mb(self, path: Path) -> int:
        """Return free megabytes on the filesystem holding *path*."""
        usage = shutil.disk_usage(path)
        return usage.free // (1024 * 1024)

    def primary_address(self) -> str | None:
        """Return the source address used for outbound traffic."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                # UDP connect sends no packets; it only selects a route.
                sock.connect(("192.0.2.1", 80))
                address = sock.getsockname()[0]
        except OSError:
            return None
        return str(address)

    def symlink(self, target: Path, link: Path) -> None:
        """Create or replace *link* pointing at *target*."""
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(target)


__all__ = [
    "CommandError",
    "CommandResult",
    "HostEnvironment",
    "PathStat",
    "SystemEnvironment",
    "UserRecord",
]

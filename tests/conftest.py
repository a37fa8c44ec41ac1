"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

import pytest

from gameportctl.config import load_config
from gameportctl.environment import CommandError, CommandResult, PathStat, UserRecord
from gameportctl.providers.systemd import SystemdProvider
from gameportctl.target import ProvisioningTarget, build_target
from gameportctl.templates import TemplateEngine

DEBIAN_OS_RELEASE = (
    'PRETTY_NAME="Ubuntu 22.04.4 LTS"\n'
    'NAME="Ubuntu"\n'
    'VERSION_ID="22.04"\n'
    "ID=ubuntu\n"
    "ID_LIKE=debian\n"
)

RHEL_OS_RELEASE = 'NAME="Rocky Linux"\nID="rocky"\nID_LIKE="rhel centos fedora"\nVERSION_ID="9.3"\n'

ARCH_OS_RELEASE = 'NAME="Arch Linux"\nID=arch\n'

OS_RELEASES = {
    "ubuntu": DEBIAN_OS_RELEASE,
    "rocky": RHEL_OS_RELEASE,
    "arch": ARCH_OS_RELEASE,
}


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeEnvironment:
    """In-memory stand-in for :class:`gameportctl.environment.HostEnvironment`.

    Commands are recorded rather than executed; the handful whose side
    effects later stages observe (account, group, clone) are simulated.
    """

    def __init__(
        self,
        *,
        root: bool = True,
        os_release: str | None = DEBIAN_OS_RELEASE,
        cpu: int = 4,
        ram_mb: int = 4096,
        disk_mb: int = 20000,
        address: str | None = "203.0.113.10",
    ) -> None:
        """Seed the fake host."""
        self.root = root
        self.cpu = cpu
        self.disk_mb = disk_mb
        self.address = address
        self.files: dict[Path, str] = {}
        self.dirs: set[Path] = {Path("/")}
        self.modes: dict[Path, int] = {}
        self.owners: dict[Path, tuple[str | None, str | None]] = {}
        self.links: dict[Path, Path] = {}
        self.users: dict[str, UserRecord] = {}
        self.groups: set[str] = {"root"}
        self.commands: list[list[str]] = []
        self.command_envs: list[dict[str, str] | None] = []
        self.writes: list[Path] = []
        self._failures: list[tuple[list[str], int, str]] = []
        if os_release is not None:
            self.files[Path("/etc/os-release")] = os_release
        self.files[Path("/proc/meminfo")] = f"MemTotal:       {ram_mb * 1024} kB\n"

    # helpers -----------------------------------------------------------
    def fail(self, *prefix: str, returncode: int = 1, output: str = "boom") -> None:
        """Make commands starting with *prefix* fail."""
        self._failures.append((list(prefix), returncode, output))

    def add_user(self, name: str, *, shell: str = "/usr/sbin/nologin", groups: Sequence[str] = ()) -> None:
        """Register an existing account."""
        self.groups.add(name)
        self.users[name] = UserRecord(
            name=name,
            uid=999,
            gid=999,
            home=Path("/home") / name,
            shell=shell,
            primary_group=name,
            groups=list(groups),
        )

    def commands_starting(self, *prefix: str) -> list[list[str]]:
        """Return recorded commands beginning with *prefix*."""
        return [command for command in self.commands if command[: len(prefix)] == list(prefix)]

    def _add_dir(self, path: Path) -> None:
        for candidate in [path, *path.parents]:
            if candidate not in self.dirs:
                self.dirs.add(candidate)
                self.modes.setdefault(candidate, 0o755)
                self.owners.setdefault(candidate, ("root", "root"))

    # SystemEnvironment -------------------------------------------------
    def is_root(self) -> bool:
        return self.root

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> CommandResult:
        argv = list(command)
        self.commands.append(argv)
        self.command_envs.append(dict(env) if env is not None else None)
        for prefix, returncode, output in self._failures:
            if argv[: len(prefix)] == prefix:
                if check:
                    raise CommandError(argv, returncode, output)
                return CommandResult(argv, returncode, "", output)
        self._simulate(argv)
        stdout = "active\n" if argv[1:2] == ["is-active"] else ""
        return CommandResult(argv, 0, stdout, "")

    def _simulate(self, argv: list[str]) -> None:
        program = argv[0]
        if program == "groupadd":
            self.groups.add(argv[-1])
        elif program == "useradd":
            name = argv[-1]
            shell = argv[argv.index("--shell") + 1] if "--shell" in argv else "/bin/sh"
            group = argv[argv.index("--gid") + 1] if "--gid" in argv else name
            self.groups.add(group)
            self.users[name] = UserRecord(
                name=name,
                uid=999,
                gid=999,
                home=Path(argv[argv.index("--home-dir") + 1]) if "--home-dir" in argv else Path("/"),
                shell=shell,
                primary_group=group,
            )
        elif program == "usermod" and "--groups" in argv:
            record = self.users[argv[-1]]
            record.groups.extend(argv[argv.index("--groups") + 1].split(","))
        elif program in {"apt-get", "dnf"} and "install" in argv:
            if "docker.io" in argv or "docker" in argv:
                self.groups.add("docker")
        elif program == "git" and argv[1:2] == ["clone"]:
            self._add_dir(Path(argv[-1]) / ".git")

    def read_text(self, path: Path) -> str:
        if path in self.files:
            return self.files[path]
        if path in self.dirs:
            raise IsADirectoryError(str(path))
        raise FileNotFoundError(str(path))

    def exists(self, path: Path) -> bool:
        return path in self.files or path in self.dirs or path in self.links

    def is_dir(self, path: Path) -> bool:
        return path in self.dirs

    def make_directory(self, path: Path) -> None:
        self._add_dir(path)

    def write_file_atomic(self, path: Path, content: str, *, mode: int) -> None:
        self._add_dir(path.parent)
        self.files[path] = content
        self.modes[path] = mode
        self.owners.setdefault(path, ("root", "root"))
        self.writes.append(path)

    def list_dir(self, path: Path) -> list[Path]:
        if path not in self.dirs:
            raise FileNotFoundError(str(path))
        entries = {entry for entry in [*self.files, *self.dirs, *self.links] if entry.parent == path}
        return sorted(entry for entry in entries if entry != path)

    def remove_file(self, path: Path) -> None:
        if path not in self.files:
            raise FileNotFoundError(str(path))
        del self.files[path]
        self.modes.pop(path, None)
        self.owners.pop(path, None)

    def chmod(self, path: Path, mode: int) -> None:
        if not self.exists(path):
            raise FileNotFoundError(str(path))
        self.modes[path] = mode

    def chown(self, path: Path, user: str, group: str | None) -> None:
        if not self.exists(path):
            raise FileNotFoundError(str(path))
        if user != "root" and user not in self.users:
            raise OSError(f"unknown user {user}")
        current_group = self.owners.get(path, ("root", "root"))[1]
        self.owners[path] = (user, group or current_group)

    def stat_path(self, path: Path) -> PathStat:
        owner, group = self.owners.get(path, ("root", "root"))
        return PathStat(mode=self.modes.get(path, 0o755), owner=owner, group=group)

    def lookup_user(self, name: str) -> UserRecord | None:
        return self.users.get(name)

    def group_exists(self, name: str) -> bool:
        return name in self.groups

    def cpu_count(self) -> int:
        return self.cpu

    def disk_free_mb(self, path: Path) -> int:
        return self.disk_mb

    def primary_address(self) -> str | None:
        return self.address

    def symlink(self, target: Path, link: Path) -> None:
        self.links[link] = target


@pytest.fixture
def make_env() -> Callable[..., FakeEnvironment]:
    """Return a factory for fake hosts.

    ``distro`` picks one of :data:`OS_RELEASES`; pass ``os_release`` directly
    for a custom (or ``None`` for a missing) descriptor.
    """

    def factory(*, distro: str = "ubuntu", **kwargs: object) -> FakeEnvironment:
        kwargs.setdefault("os_release", OS_RELEASES[distro])
        return FakeEnvironment(**kwargs)  # type: ignore[arg-type]

    return factory


@pytest.fixture
def fake_env(make_env: Callable[..., FakeEnvironment]) -> FakeEnvironment:
    """Return a root-capable Ubuntu host with comfortable resources."""
    return make_env()


@pytest.fixture
def target(tmp_path: Path) -> ProvisioningTarget:
    """Return the default provisioning target."""
    return build_target(load_config(config_file=tmp_path / "absent.yml", env={}))


@pytest.fixture
def systemd(fake_env: FakeEnvironment) -> SystemdProvider:
    """Return a systemd provider bound to the fake host."""
    return SystemdProvider(env=fake_env, templates=TemplateEngine.with_overrides(None))

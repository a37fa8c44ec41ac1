"""Tests for OS family resolution and package reconciliation."""
from __future__ import annotations

from typing import Any

import pytest

from gameportctl.errors import (
    PackageInstallError,
    ServiceActivationError,
    UnsupportedPlatformError,
)
from gameportctl.packages import (
    STRATEGIES,
    OsFamily,
    PackageReconciler,
    resolve_family,
    strategy_for,
)
from gameportctl.providers.systemd import SystemdProvider


@pytest.mark.parametrize(
    ("os_id", "os_like", "expected"),
    [
        ("ubuntu", (), OsFamily.DEBIAN),
        ("debian", (), OsFamily.DEBIAN),
        ("linuxmint", ("ubuntu", "debian"), OsFamily.DEBIAN),
        ("centos", (), OsFamily.RHEL),
        ("fedora", (), OsFamily.RHEL),
        ("rhel", (), OsFamily.RHEL),
        ("rocky", ("rhel", "centos", "fedora"), OsFamily.RHEL),
        ("ol", ("fedora",), OsFamily.RHEL),
    ],
)
def test_resolve_family_known(os_id: str, os_like: tuple[str, ...], expected: OsFamily) -> None:
    """IDs and ID_LIKE tokens map onto the two supported families."""
    assert resolve_family(os_id, os_like) is expected


@pytest.mark.parametrize(("os_id", "os_like"), [("arch", ()), ("alpine", ()), ("opensuse", ("suse",))])
def test_resolve_family_unknown_raises(os_id: str, os_like: tuple[str, ...]) -> None:
    """Anything else is an explicit failure asking for manual installation."""
    with pytest.raises(UnsupportedPlatformError) as excinfo:
        resolve_family(os_id, os_like)

    assert excinfo.value.remediation == "Unsupported OS. Please install dependencies manually."


def test_strategy_for_rejects_unknown_family() -> None:
    """String families outside the enumeration are rejected."""
    assert strategy_for("debian") is STRATEGIES[OsFamily.DEBIAN]
    with pytest.raises(UnsupportedPlatformError):
        strategy_for("gentoo")


def test_reconcile_debian_runs_index_install_and_services(
    fake_env: Any,
    systemd: SystemdProvider,
) -> None:
    """Debian hosts refresh apt, install non-interactively and enable services."""
    reconciler = PackageReconciler(env=fake_env, systemd=systemd)

    result = reconciler.reconcile(OsFamily.DEBIAN)

    assert fake_env.commands[0] == ["apt-get", "update", "-y"]
    assert fake_env.commands[1][:3] == ["apt-get", "install", "-y"]
    assert "docker.io" in fake_env.commands[1]
    assert fake_env.command_envs[1] == {"DEBIAN_FRONTEND": "noninteractive"}
    assert fake_env.commands[2:] == [
        ["systemctl", "enable", "--now", "docker"],
        ["systemctl", "enable", "--now", "mysql"],
        ["systemctl", "enable", "--now", "redis-server"],
    ]
    assert result.services == ["docker", "mysql", "redis-server"]
    assert result.to_dict()["family"] == "debian"


def test_reconcile_rhel_uses_dnf(fake_env: Any, systemd: SystemdProvider) -> None:
    """RHEL hosts use dnf and the mysqld/redis unit names."""
    result = PackageReconciler(env=fake_env, systemd=systemd).reconcile("rhel", ["git"])

    assert fake_env.commands[0] == ["dnf", "-y", "makecache"]
    assert fake_env.commands[1] == ["dnf", "-y", "install", "git"]
    assert result.services == ["docker", "mysqld", "redis"]


def test_reconcile_unknown_family_touches_nothing(
    fake_env: Any,
    systemd: SystemdProvider,
) -> None:
    """Unsupported families fail before any command runs."""
    with pytest.raises(UnsupportedPlatformError):
        PackageReconciler(env=fake_env, systemd=systemd).reconcile("slackware")

    assert fake_env.commands == []


def test_reconcile_package_failure(fake_env: Any, systemd: SystemdProvider) -> None:
    """Package manager failures become PackageInstallError."""
    fake_env.fail("apt-get", "install", output="E: dpkg was interrupted")

    with pytest.raises(PackageInstallError, match="dpkg was interrupted"):
        PackageReconciler(env=fake_env, systemd=systemd).reconcile(OsFamily.DEBIAN)

    assert not fake_env.commands_starting("systemctl")


def test_reconcile_service_failure(fake_env: Any, systemd: SystemdProvider) -> None:
    """Service manager failures become ServiceActivationError."""
    fake_env.fail("systemctl", "enable", "--now", "mysql")

    with pytest.raises(ServiceActivationError, match="mysql"):
        PackageReconciler(env=fake_env, systemd=systemd).reconcile(OsFamily.DEBIAN)

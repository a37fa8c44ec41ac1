"""Tests for host fact collection and resource advisories."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gameportctl.errors import UnsupportedPlatformError
from gameportctl.facts import HostFacts, assess_resources, collect, parse_os_release


def test_parse_os_release_handles_quotes_and_comments() -> None:
    """Quoted values are unwrapped and comments ignored."""
    parsed = parse_os_release(
        '# comment\nNAME="Debian GNU/Linux"\nID=debian\nVERSION_ID="12"\n\nBROKEN\n'
    )

    assert parsed == {"NAME": "Debian GNU/Linux", "ID": "debian", "VERSION_ID": "12"}


def test_collect_reads_release_and_resources(make_env: Any) -> None:
    """Facts come from os-release, meminfo and the environment."""
    env = make_env(cpu=8, ram_mb=16384, disk_mb=50000)

    facts = collect(env)

    assert facts == HostFacts(
        os_id="ubuntu",
        os_like=("debian",),
        os_version="22.04",
        cpu_cores=8,
        ram_mb=16384,
        disk_free_mb=50000,
        primary_address="203.0.113.10",
    )
    assert env.commands == []


def test_collect_without_meminfo_reports_zero_ram(make_env: Any) -> None:
    """An unreadable meminfo is not fatal."""
    env = make_env()
    del env.files[Path("/proc/meminfo")]

    assert collect(env).ram_mb == 0


def test_collect_requires_os_release(make_env: Any) -> None:
    """Missing descriptors raise UnsupportedPlatformError."""
    env = make_env(os_release=None)

    with pytest.raises(UnsupportedPlatformError) as excinfo:
        collect(env)

    assert excinfo.value.remediation is not None


def test_collect_requires_id(make_env: Any) -> None:
    """A descriptor without ID is unsupported."""
    env = make_env(os_release='NAME="Mystery"\n')

    with pytest.raises(UnsupportedPlatformError, match="does not declare an ID"):
        collect(env)


@pytest.mark.parametrize(
    ("cpu", "ram", "disk", "expected"),
    [
        (4, 4096, 20000, []),
        (2, 2048, 10240, []),
        (1, 4096, 20000, ["cpu"]),
        (4, 2047, 20000, ["ram"]),
        (4, 4096, 10239, ["disk"]),
        (1, 1024, 5000, ["cpu", "ram", "disk"]),
    ],
)
def test_assess_resources_thresholds(
    cpu: int,
    ram: int,
    disk: int,
    expected: list[str],
) -> None:
    """Advisories fire strictly below each recommended minimum."""
    facts = HostFacts(
        os_id="debian",
        os_like=(),
        os_version="12",
        cpu_cores=cpu,
        ram_mb=ram,
        disk_free_mb=disk,
    )

    advisories = assess_resources(facts)

    assert [advisory.resource for advisory in advisories] == expected

"""Host fact collection and resource advisories."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from .environment import SystemEnvironment
from .errors import UnsupportedPlatformError

LOGGER = logging.getLogger(__name__)

OS_RELEASE_PATH = Path("/etc/os-release")
MEMINFO_PATH = Path("/proc/meminfo")

MIN_CPU_CORES = 2
MIN_RAM_MB = 2048
MIN_DISK_MB = 10240

SUPPORTED_HINT = "Please use Ubuntu 20.04+, Debian 11+, or CentOS 8+."


@dataclass(frozen=True)
class HostFacts:
    """Read-only snapshot of the host, recomputed on every run."""

    os_id: str
    os_like: tuple[str, ...]
    os_version: str
    cpu_cores: int
    ram_mb: int
    disk_free_mb: int
    primary_address: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "os_id": self.os_id,
            "os_like": list(self.os_like),
            "os_version": self.os_version,
            "cpu_cores": self.cpu_cores,
            "ram_mb": self.ram_mb,
            "disk_free_mb": self.disk_free_mb,
            "primary_address": self.primary_address,
        }


@dataclass(frozen=True)
class ResourceAdvisory:
    """Advisory emitted when a host resource is below the recommendation."""

    resource: str
    observed: int
    minimum: int
    message: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "resource": self.resource,
            "observed": self.observed,
            "minimum": self.minimum,
            "message": self.message,
        }


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``os-release`` style ``KEY=value`` lines."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw_value = line.partition("=")
        try:
            tokens = shlex.split(raw_value)
        except ValueError:
            tokens = [raw_value.strip("\"'")]
        values[key.strip()] = tokens[0] if tokens else ""
    return values


def _read_ram_mb(env: SystemEnvironment, meminfo: Path) -> int:
    try:
        text = env.read_text(meminfo)
    except OSError as exc:
        LOGGER.debug("Cannot read %s: %s", meminfo, exc)
        return 0
    for line in text.splitlines():
        if line.startswith("MemTotal:"):
            parts = line.split()
            try:
                return int(parts[1]) // 1024
            except (IndexError, ValueError):
                return 0
    return 0


def collect(
    env: SystemEnvironment,
    *,
    os_release: Path = OS_RELEASE_PATH,
    meminfo: Path = MEMINFO_PATH,
    disk_path: Path = Path("/"),
) -> HostFacts:
    """Return a :class:`HostFacts` snapshot without changing the host."""
    try:
        release_text = env.read_text(os_release)
    except OSError as exc:
        raise UnsupportedPlatformError(
            f"Unsupported OS: cannot read {os_release}.",
            remediation=SUPPORTED_HINT,
        ) from exc

    release = parse_os_release(release_text)
    os_id = release.get("ID", "").strip().lower()
    if not os_id:
        raise UnsupportedPlatformError(
            f"Unsupported OS: {os_release} does not declare an ID.",
            remediation=SUPPORTED_HINT,
        )
    os_like = tuple(token.lower() for token in release.get("ID_LIKE", "").split())

    facts = HostFacts(
        os_id=os_id,
        os_like=os_like,
        os_version=release.get("VERSION_ID", ""),
        cpu_cores=env.cpu_count(),
        ram_mb=_read_ram_mb(env, meminfo),
        disk_free_mb=env.disk_free_mb(disk_path),
        primary_address=env.primary_address(),
    )
    LOGGER.info(
        "Detected %s %s (%d cores, %d MB RAM, %d MB free)",
        facts.os_id,
        facts.os_version,
        facts.cpu_cores,
        facts.ram_mb,
        facts.disk_free_mb,
    )
    return facts


def assess_resources(facts: HostFacts) -> list[ResourceAdvisory]:
    """Return advisories for resources below the recommended minimums."""
    advisories: list[ResourceAdvisory] = []
    if facts.cpu_cores < MIN_CPU_CORES:
        advisories.append(
            ResourceAdvisory(
                resource="cpu",
                observed=facts.cpu_cores,
                minimum=MIN_CPU_CORES,
                message=f"GamePort recommends at least {MIN_CPU_CORES} CPU cores.",
            )
        )
    if facts.ram_mb < MIN_RAM_MB:
        advisories.append(
            ResourceAdvisory(
                resource="ram",
                observed=facts.ram_mb,
                minimum=MIN_RAM_MB,
                message="GamePort recommends at least 2GB of RAM.",
            )
        )
    if facts.disk_free_mb < MIN_DISK_MB:
        advisories.append(
            ResourceAdvisory(
                resource="disk",
                observed=facts.disk_free_mb,
                minimum=MIN_DISK_MB,
                message="GamePort recommends at least 10GB of free disk space.",
            )
        )
    for advisory in advisories:
        LOGGER.warning("%s (observed %d)", advisory.message, advisory.observed)
    return advisories


__all__ = [
    "HostFacts",
    "MIN_CPU_CORES",
    "MIN_DISK_MB",
    "MIN_RAM_MB",
    "ResourceAdvisory",
    "assess_resources",
    "collect",
    "parse_os_release",
]

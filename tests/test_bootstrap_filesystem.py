"""Unit tests for directory planning helpers."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gameportctl.bootstrap.filesystem import (
    DirectorySpec,
    apply_directory_plan,
    ensure_directories,
    plan_directories,
)
from gameportctl.errors import ProvisioningError

DATA_ROOT = Path("/var/lib/gameport")


@pytest.fixture
def owned_env(fake_env: Any) -> Any:
    fake_env.add_user("gameport")
    return fake_env


def test_plan_creates_missing_directory(owned_env: Any) -> None:
    """Plan should create directories that are absent."""
    spec = DirectorySpec(path=DATA_ROOT, owner="gameport", group="gameport", mode=0o750)

    plan = plan_directories(owned_env, [spec])
    assert [action.kind for action in plan.actions] == ["mkdir", "chown", "chmod"]
    assert plan.created == [DATA_ROOT]

    apply_directory_plan(owned_env, plan)
    assert DATA_ROOT in owned_env.dirs
    assert owned_env.modes[DATA_ROOT] == 0o750
    assert owned_env.owners[DATA_ROOT] == ("gameport", "gameport")


def test_matching_directory_is_reasserted_without_drift(owned_env: Any) -> None:
    """Correct directories still get chown/chmod but are not flagged."""
    spec = DirectorySpec(path=DATA_ROOT, owner="gameport", group="gameport")
    ensure_directories(owned_env, [spec])

    plan = plan_directories(owned_env, [spec])

    assert [action.kind for action in plan.actions] == ["chown", "chmod"]
    assert plan.drifted == []


def test_ownership_and_mode_drift_is_corrected(owned_env: Any) -> None:
    """Re-running heals directories an operator changed by hand."""
    spec = DirectorySpec(path=DATA_ROOT, owner="gameport", group="gameport", mode=0o750)
    ensure_directories(owned_env, [spec])
    owned_env.owners[DATA_ROOT] = ("root", "root")
    owned_env.modes[DATA_ROOT] = 0o777

    plan = ensure_directories(owned_env, [spec])

    assert plan.drifted == [DATA_ROOT]
    assert owned_env.owners[DATA_ROOT] == ("gameport", "gameport")
    assert owned_env.modes[DATA_ROOT] == 0o750


def test_plan_warns_on_non_directory(owned_env: Any) -> None:
    """Plan should warn when the target path is a regular file."""
    owned_env.files[DATA_ROOT] = "not a directory"

    plan = plan_directories(owned_env, [DirectorySpec(path=DATA_ROOT)])

    assert plan.actions == []
    assert plan.warnings == [f"{DATA_ROOT} exists but is not a directory."]
    with pytest.raises(ProvisioningError, match="not a directory"):
        ensure_directories(owned_env, [DirectorySpec(path=DATA_ROOT)])


def test_unknown_owner_is_provisioning_error(fake_env: Any) -> None:
    """chown failures surface as ProvisioningError."""
    spec = DirectorySpec(path=DATA_ROOT, owner="ghost", group="ghost")

    with pytest.raises(ProvisioningError, match="unknown user ghost"):
        ensure_directories(fake_env, [spec])


def test_apply_on_real_filesystem(tmp_path: Path) -> None:
    """The host implementation creates and chmods real directories."""
    from gameportctl.environment import HostEnvironment

    target = tmp_path / "var" / "lib" / "gameport"
    spec = DirectorySpec(path=target, mode=0o750)

    ensure_directories(HostEnvironment(), [spec])

    assert target.is_dir()
    assert target.stat().st_mode & 0o777 == 0o750

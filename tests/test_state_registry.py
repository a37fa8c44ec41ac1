"""State registry helpers tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from gameportctl.state import HISTORY_FILE, LAST_RUN_FILE, StateRegistry, StateRegistryError
from gameportctl.state.registry import HISTORY_LIMIT


def test_read_missing_files_returns_default(tmp_path: Path) -> None:
    """Missing files return the provided default structure."""
    registry = StateRegistry(tmp_path)

    assert registry.read(LAST_RUN_FILE, default={"runs": []}) == {"runs": []}
    assert registry.read_last_run() is None
    assert registry.read_history() == []


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a state file and reading it back succeeds."""
    registry = StateRegistry(tmp_path / "state")
    payload = {"run_id": "abc", "stages": [{"stage": "Start", "status": "ok"}]}

    registry.write(LAST_RUN_FILE, payload)

    path = tmp_path / "state" / LAST_RUN_FILE
    assert (path.stat().st_mode & 0o777) == 0o640
    assert registry.read(LAST_RUN_FILE) == payload
    assert sorted(entry.name for entry in path.parent.iterdir()) == [LAST_RUN_FILE]


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a StateRegistryError."""
    registry = StateRegistry(tmp_path)
    (tmp_path / LAST_RUN_FILE).write_text("::: not yaml :::\n")

    with pytest.raises(StateRegistryError):
        registry.read_last_run()


def test_last_run_must_be_mapping(tmp_path: Path) -> None:
    """A last-run file holding a list is rejected."""
    registry = StateRegistry(tmp_path)
    (tmp_path / LAST_RUN_FILE).write_text("- 1\n- 2\n")

    with pytest.raises(StateRegistryError, match="must contain a mapping"):
        registry.read_last_run()


def test_record_run_keeps_bounded_history(tmp_path: Path) -> None:
    """History keeps only the most recent summaries."""
    registry = StateRegistry(tmp_path)

    for index in range(HISTORY_LIMIT + 5):
        registry.record_run(
            {
                "run_id": f"run-{index}",
                "started_at": "2024-01-01T00:00:00Z",
                "status": "success",
                "last_completed": "Running",
                "secrets": {"signing_secret": "reused"},
            }
        )

    history = registry.read_history()
    assert len(history) == HISTORY_LIMIT
    assert history[0]["run_id"] == "run-5"
    assert history[-1] == {
        "run_id": f"run-{HISTORY_LIMIT + 4}",
        "started_at": "2024-01-01T00:00:00Z",
        "status": "success",
        "last_completed": "Running",
    }
    last = registry.read_last_run()
    assert last is not None
    assert last["run_id"] == f"run-{HISTORY_LIMIT + 4}"
    assert (tmp_path / HISTORY_FILE).exists()


def test_write_failure_when_root_unavailable(tmp_path: Path) -> None:
    """An unusable state root raises StateRegistryError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    registry = StateRegistry(blocker / "state")

    with pytest.raises(StateRegistryError, match="Cannot create state directory"):
        registry.write(LAST_RUN_FILE, {"run_id": "x"})


def test_unreadable_state_file_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Permission errors surface as StateRegistryError instead of leaking."""
    registry = StateRegistry(tmp_path)
    registry.record_run({"run_id": "abc", "status": "success"})
    original = Path.read_text

    def read_text(self: Path, *args: object, **kwargs: object) -> str:
        if self.name == LAST_RUN_FILE:
            raise PermissionError(13, "Permission denied", str(self))
        return original(self, *args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(Path, "read_text", read_text)

    with pytest.raises(StateRegistryError, match="Cannot read state file"):
        registry.read_last_run()
    assert registry.read_history()[0]["run_id"] == "abc"

"""Helpers for the gameportctl run-state store.

The state directory (``/var/lib/gameportctl`` by default) stores YAML
artifacts describing previous provisioning runs. Files are written through a
temporary file and ``os.replace`` so an interrupted run never leaves a
truncated record behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage gameportctl state. Install with "
        "`pip install gameportctl`."
    ) from exc

LAST_RUN_FILE = "last-run.yml"
HISTORY_FILE = "history.yml"
HISTORY_LIMIT = 20


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML run-state store."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the state directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named state file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a state file, returning *default* when missing."""
        path = self.path_for(name)
        try:
            if not path.exists():
                return deepcopy(default)
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateRegistryError(f"Cannot read state file {path}: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse state file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given state file."""
        try:
            self.ensure_root()
        except OSError as exc:
            raise StateRegistryError(f"Cannot create state directory {self.root}: {exc}") from exc
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)

    # Run helpers -----------------------------------------------------
    def read_last_run(self) -> dict[str, Any] | None:
        """Return the most recent run report, or ``None`` if never recorded."""
        value = self.read(LAST_RUN_FILE)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"{self.path_for(LAST_RUN_FILE)} must contain a mapping.")
        return dict(value)

    def read_history(self) -> list[dict[str, Any]]:
        """Return summaries of previous runs, oldest first."""
        value = self.read(HISTORY_FILE, default={"runs": []})
        raw_runs = value.get("runs", []) if isinstance(value, Mapping) else []
        if not isinstance(raw_runs, list):
            return []
        return [dict(entry) for entry in raw_runs if isinstance(entry, Mapping)]

    def record_run(self, report: Mapping[str, object]) -> None:
        """Persist *report* as the last run and append a summary to the history."""
        self.write(LAST_RUN_FILE, report)
        summary = {
            "run_id": report.get("run_id"),
            "started_at": report.get("started_at"),
            "status": report.get("status"),
            "last_completed": report.get("last_completed"),
        }
        history = self.read_history()
        history.append(summary)
        self.write(HISTORY_FILE, {"runs": history[-HISTORY_LIMIT:]})


__all__ = ["StateRegistry", "StateRegistryError", "LAST_RUN_FILE", "HISTORY_FILE"]

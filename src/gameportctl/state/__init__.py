"""State management helpers for gameportctl."""
from __future__ import annotations

from .registry import HISTORY_FILE, LAST_RUN_FILE, StateRegistry, StateRegistryError

__all__ = ["HISTORY_FILE", "LAST_RUN_FILE", "StateRegistry", "StateRegistryError"]

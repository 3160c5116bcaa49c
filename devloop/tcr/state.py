"""
Durable TCR run state.

FailureStatePersistence owns one small JSON file per project holding the
outcome of the last check and the consecutive failure count. The file is
overwritten wholesale on every check; no history is kept.

Reads and writes go through ``session()``, which loads the record, hands it
to the caller for mutation and writes it back atomically only if the block
completes without raising.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional

from devloop.errors import PersistenceError
from devloop.models import TCRRunState, utc_now
from devloop.utils.fs import FileSystemError, file_exists, read_file, safe_write

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger


class FailureStatePersistence:
    """
    Load and save the TCR run state file.

    A missing file reads as a fresh state (no outcome, streak 0). A file that
    exists but cannot be parsed is a PersistenceError: continuing with a
    fresh state would silently lose the failure streak.
    """

    def __init__(self, path: str | Path, logger: Optional[DevloopLogger] = None) -> None:
        self.path = Path(path)
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def exists(self) -> bool:
        return file_exists(self.path)

    def load(self) -> TCRRunState:
        """
        Read the persisted state.

        Raises:
            PersistenceError: If the file is unreadable or corrupt.
        """
        if not file_exists(self.path):
            return TCRRunState()

        try:
            data = json.loads(read_file(self.path))
            if not isinstance(data, dict):
                raise ValueError("state file must contain a JSON object")
            return TCRRunState.from_dict(data)
        except FileSystemError as e:
            raise PersistenceError(f"Cannot read TCR state {self.path}: {e}")
        except (ValueError, TypeError) as e:
            self._log("tcr_state_corrupt", {
                "path": str(self.path),
                "error": str(e),
            }, level="error")
            raise PersistenceError(f"Corrupt TCR state file {self.path}: {e}")

    def save(self, state: TCRRunState) -> None:
        """
        Overwrite the state file atomically.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        state.updated_at = utc_now()
        try:
            safe_write(self.path, json.dumps(state.to_dict(), indent=2) + "\n")
        except FileSystemError as e:
            raise PersistenceError(f"Cannot write TCR state {self.path}: {e}")
        self._log("tcr_state_saved", {
            "outcome": state.last_outcome.value if state.last_outcome else None,
            "failure_streak": state.failure_streak,
        }, level="debug")

    @contextmanager
    def session(self) -> Iterator[TCRRunState]:
        """
        Read-modify-write scope around the state record.

        Example:
            with store.session() as state:
                state.failure_streak += 1
        """
        state = self.load()
        yield state
        self.save(state)

    def reset(self) -> TCRRunState:
        """Zero the failure streak and drop saved output."""
        with self.session() as state:
            state.failure_streak = 0
            state.last_full_output = None
        return state

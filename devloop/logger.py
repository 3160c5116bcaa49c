"""
Structured JSONL logging for devloop.

This module provides:
- JSONL event logging for debugging and audit trails
- Log files organized by component and date
- Log levels (debug, info, warn, error)
- Context manager for run-scoped logging
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from devloop.config import DevloopConfig, get_config


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DevloopLogger:
    """
    JSONL event logger.

    Writes structured log entries to <devloop_dir>/logs/<component>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - component: Component that emitted the event
    - data: Additional event data (dict)
    """

    def __init__(self, component: str, config: Optional[DevloopConfig] = None) -> None:
        """
        Initialize logger for a component.

        Args:
            component: Name used for the log file (e.g. "stages", "tcr").
            config: Optional config to use. If not provided, loads devloop.yaml.
        """
        self.component = component
        self._config = config
        self._current_run_id: Optional[str] = None

    @property
    def config(self) -> DevloopConfig:
        """Get configuration (lazy load)."""
        if self._config is None:
            self._config = get_config()
        return self._config

    def _get_log_path(self, day: Optional[str] = None) -> Path:
        if day is None:
            day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.config.logs_path / f"{self.component}-{day}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        log_path = self._get_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "issue_moved", "tcr_fail").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "component": self.component,
            "data": data or {},
        }

        if self._current_run_id:
            entry["run_id"] = self._current_run_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.ERROR)

    @contextmanager
    def run_context(self, run_id: str) -> Iterator[DevloopLogger]:
        """
        Context manager for run-scoped logging.

        All logs within this context include the run_id.

        Example:
            with logger.run_context("check-20260101T120000") as log:
                log.info("tcr_pass", {"step": "parse header"})
        """
        old_run_id = self._current_run_id
        self._current_run_id = run_id
        try:
            yield self
        finally:
            self._current_run_id = old_run_id

    def read_logs(
        self,
        day: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Read log entries for a day (default today) with optional filtering.

        Malformed lines are skipped.
        """
        log_path = self._get_log_path(day)
        if not log_path.exists():
            return []

        entries = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level") != level:
                    continue
                if event_type and entry.get("event_type") != event_type:
                    continue

                entries.append(entry)

        return entries

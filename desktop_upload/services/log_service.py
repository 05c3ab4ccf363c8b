"""JSONL logging service for application events.

Writes one JSON object per line to hive-partitioned daily .jsonl files.
DuckDB-compatible: SELECT * FROM read_json_auto('logs/json/**/events.jsonl', hive_partitioning=true)
"""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from desktop_upload.config import get_settings


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self, log_directory: Path | None = None) -> None:
        """Initialize the log service.

        Args:
            log_directory: Fixed log directory; defaults to the configured one
        """
        self._log_directory = log_directory
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path:
        """Get the log directory, creating it if needed."""
        log_dir = self._log_directory or get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, dt: datetime) -> Path:
        """Build a hive-partitioned directory path and create it.

        Returns:
            Path like logs/json/year=2026/month=02/day=08/
        """
        hive_dir = (
            self._get_log_dir()
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    def _get_current_log_file(self) -> Path:
        """Get the path to today's events log file."""
        return self._get_hive_dir(datetime.now(UTC)) / "events.jsonl"

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (app, upload, credentials, reconcile, submission, settings)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_current_log_file()
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an INFO-level event."""
        self.log("INFO", category, event, message, metadata)

    def warning(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log a WARNING-level event."""
        self.log("WARNING", category, event, message, metadata)

    def error(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an ERROR-level event."""
        self.log("ERROR", category, event, message, metadata)

    def save_run_jsonl(
        self,
        submission_id: str,
        summary: dict[str, Any],
        completed_at: datetime,
    ) -> Path:
        """Write a per-run JSONL summary file.

        Args:
            submission_id: The submission the upload run belonged to
            summary: Run summary dict
            completed_at: When the run ended

        Returns:
            Path to the written file
        """
        hive_dir = self._get_hive_dir(completed_at)
        out_path = hive_dir / f"upload-{submission_id}-{completed_at.strftime('%H%M%S')}.jsonl"
        line = json.dumps(summary, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def read_events(self, limit: int = 100, category: str | None = None) -> list[dict[str, Any]]:
        """Read the most recent events, newest first, across all days.

        Args:
            limit: Maximum number of entries
            category: Only return entries of this category
        """
        json_dir = self._get_log_dir() / "json"
        entries: list[dict[str, Any]] = []
        for log_file in sorted(json_dir.rglob("events.jsonl"), reverse=True):
            with open(log_file, encoding="utf-8") as f:
                lines = f.readlines()
            for line in reversed(lines):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if category and entry.get("category") != category:
                    continue
                entries.append(entry)
                if len(entries) >= limit:
                    return entries
        return entries


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service

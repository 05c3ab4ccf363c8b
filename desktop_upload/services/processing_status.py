"""Readers for the files the processing engine writes next to its output."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from desktop_upload.services.utils import round_half_up

logger = logging.getLogger(__name__)

STATUS_FILENAME = "status.json"
METADATA_FILENAME = "00_metadata.json"


@dataclass
class ProcessingStatusSummary:
    """Per-episode state counts from ``status.json``."""

    done: int = 0
    indexing: int = 0
    pending: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def summarize_processing_status(status_data: Any) -> ProcessingStatusSummary:
    """Count episode states in a ``{season: {episode: state}}`` document."""
    summary = ProcessingStatusSummary()
    if not isinstance(status_data, dict):
        return summary

    for season in status_data.values():
        if not isinstance(season, dict):
            continue
        for state in season.values():
            summary.total += 1
            if state == "done":
                summary.done += 1
            elif state == "indexing":
                summary.indexing += 1
            else:
                summary.pending += 1
    return summary


def derive_processing_progress(summary: ProcessingStatusSummary | None) -> int | None:
    """Percent complete; an indexing episode counts as half done."""
    if summary is None or summary.total <= 0:
        return None
    weighted = summary.done + summary.indexing * 0.5
    ratio = max(0.0, min(1.0, weighted / summary.total))
    return round_half_up(ratio * 100)


def is_processing_complete(summary: ProcessingStatusSummary | None) -> bool:
    """True once every episode is done."""
    return bool(summary and summary.total > 0 and summary.done >= summary.total)


def _read_json(path: Path) -> Any | None:
    if not path.is_file():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        logger.warning("Could not read %s", path, exc_info=True)
        return None


def read_status_summary(job_dir: Path) -> ProcessingStatusSummary | None:
    """Summarize ``status.json`` in a submission folder, or None if absent."""
    data = _read_json(job_dir / STATUS_FILENAME)
    if data is None:
        return None
    return summarize_processing_status(data)


def read_metadata(job_dir: Path) -> dict[str, Any] | None:
    """Load ``00_metadata.json`` from a submission folder, or None if absent."""
    data = _read_json(job_dir / METADATA_FILENAME)
    return data if isinstance(data, dict) else None

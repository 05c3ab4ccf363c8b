"""Resume bookkeeping for interrupted uploads.

One record per submission under ``resume:<id>``. Every load and persist goes
through :func:`normalize_resume_state`, which repairs the record so that:

* ``completed_files`` only names paths present in ``file_sizes``, once each;
* ``uploaded_bytes`` is at least the size of the completed files and never
  more than ``total_bytes``.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from desktop_upload.services.state_store import StateStore, get_state_store
from desktop_upload.services.utils import percent

logger = logging.getLogger(__name__)

RESUME_VERSION = 2
RESUME_KEY_PREFIX = "resume:"

# camelCase keys written by the v1 desktop client
_LEGACY_KEYS = {
    "processingId": "processing_id",
    "sourceMediaId": "source_media_id",
    "identityId": "identity_id",
    "seriesId": "series_id",
    "seriesName": "series_name",
    "entryName": "entry_name",
    "backgroundColor": "background_color",
    "textColor": "text_color",
    "folderPath": "folder_path",
    "completedFiles": "completed_files",
    "fileRecords": "file_records",
    "fileSizes": "file_sizes",
    "totalBytes": "total_bytes",
    "totalFiles": "total_files",
    "uploadedBytes": "uploaded_bytes",
    "lastUploadedAt": "last_uploaded_at",
    "lastError": "last_error",
}


def build_resume_key(processing_id: str) -> str:
    """Storage key for a submission's resume record."""
    return f"{RESUME_KEY_PREFIX}{processing_id}"


@dataclass
class ResumeState:
    """Durable upload bookkeeping for one submission."""

    processing_id: str
    version: int = RESUME_VERSION
    source_media_id: str | None = None
    identity_id: str | None = None
    series_id: str | None = None
    series_name: str | None = None
    entry_name: str | None = None
    background_color: str | None = None
    text_color: str | None = None
    folder_path: str | None = None
    completed_files: list[str] = field(default_factory=list)
    file_records: dict[str, str] = field(default_factory=dict)
    file_sizes: dict[str, int] = field(default_factory=dict)
    total_bytes: int | None = None
    total_files: int | None = None
    uploaded_bytes: int | None = None
    last_uploaded_at: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any], processing_id: str | None = None) -> "ResumeState":
        """Build a state from a stored dictionary, upgrading older shapes.

        Unknown keys are ignored; the result is not normalized.
        """
        if int(data.get("version") or 1) < RESUME_VERSION:
            data = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}

        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["processing_id"] = processing_id or str(values.get("processing_id") or "")
        return cls(**values)


@dataclass
class UploadStats:
    """Upload progress derived from a resume state."""

    completed_files: list[str]
    total_files: int
    total_bytes: int
    uploaded_bytes: int
    progress: int


def _as_count(value: Any) -> int | None:
    """Coerce a stored number to a non-negative int, or None if unusable."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if value != value or value < 0 or value == float("inf"):
        return None
    return int(value)


def sanitize_completed_files(completed_files: list[str], file_sizes: dict[str, int]) -> list[str]:
    """Drop completed paths that are not in ``file_sizes`` and de-duplicate.

    Order of first occurrence is kept.
    """
    seen: set[str] = set()
    sanitized: list[str] = []
    for path in completed_files:
        if path in file_sizes and path not in seen:
            seen.add(path)
            sanitized.append(path)
    return sanitized


def sum_completed_bytes(completed_files: list[str], file_sizes: dict[str, int]) -> int:
    """Total size of the completed files."""
    return sum(file_sizes.get(path, 0) for path in completed_files)


def normalize_resume_state(state: ResumeState, processing_id: str | None = None) -> ResumeState:
    """Return a repaired copy of ``state``.

    Deterministic and total: applying it twice gives the same result.
    """
    file_sizes: dict[str, int] = {}
    for path, size in (state.file_sizes or {}).items():
        count = _as_count(size)
        if count is not None:
            file_sizes[str(path)] = count

    file_records = {
        str(path): str(record_id)
        for path, record_id in (state.file_records or {}).items()
        if record_id
    }
    completed = sanitize_completed_files([str(p) for p in state.completed_files or []], file_sizes)
    completed_bytes = sum_completed_bytes(completed, file_sizes)

    total_bytes = _as_count(state.total_bytes)
    if not total_bytes:
        total_bytes = sum(file_sizes.values())
    total_bytes = max(total_bytes, completed_bytes)

    total_files = _as_count(state.total_files)
    if not total_files:
        total_files = len(file_sizes)
    total_files = max(total_files, len(completed))

    uploaded_bytes = max(_as_count(state.uploaded_bytes) or 0, completed_bytes)
    if total_bytes > 0:
        uploaded_bytes = min(uploaded_bytes, total_bytes)

    return ResumeState(
        processing_id=processing_id or state.processing_id,
        version=RESUME_VERSION,
        source_media_id=state.source_media_id,
        identity_id=state.identity_id,
        series_id=state.series_id,
        series_name=state.series_name,
        entry_name=state.entry_name,
        background_color=state.background_color,
        text_color=state.text_color,
        folder_path=state.folder_path,
        completed_files=completed,
        file_records=file_records,
        file_sizes=file_sizes,
        total_bytes=total_bytes,
        total_files=total_files,
        uploaded_bytes=uploaded_bytes,
        last_uploaded_at=state.last_uploaded_at,
        last_error=state.last_error,
    )


def derive_upload_stats(state: ResumeState | None) -> UploadStats | None:
    """Compute upload progress from a resume state.

    Progress is byte-weighted; when no byte total is known it falls back to
    the share of completed files.
    """
    if state is None:
        return None

    normalized = normalize_resume_state(state)
    completed = normalized.completed_files
    total_bytes = normalized.total_bytes or 0
    total_files = normalized.total_files or 0
    uploaded_bytes = normalized.uploaded_bytes or 0

    if total_bytes > 0:
        progress = percent(uploaded_bytes, total_bytes)
    elif total_files > 0:
        progress = percent(len(completed), total_files)
    else:
        progress = 0

    return UploadStats(
        completed_files=completed,
        total_files=total_files,
        total_bytes=total_bytes,
        uploaded_bytes=uploaded_bytes,
        progress=progress,
    )


class ResumeStore:
    """Loads and persists :class:`ResumeState` records in the state store."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def load(self, processing_id: str) -> ResumeState | None:
        """Load the normalized resume state for a submission, if any."""
        raw = self._store.get_json(build_resume_key(processing_id))
        if raw is None:
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed resume state for %s", processing_id)
            return None
        try:
            state = ResumeState.from_dict(raw, processing_id)
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable resume state for %s", processing_id, exc_info=True)
            return None
        return normalize_resume_state(state, processing_id)

    def persist(
        self,
        processing_id: str,
        patch: "ResumeState | dict[str, Any] | None" = None,
    ) -> ResumeState:
        """Merge ``patch`` into the stored state, normalize and write it back.

        Args:
            processing_id: Submission id
            patch: Fields to overwrite, or a full state to replace the record

        Returns:
            The normalized state as written; callers should keep using this value
        """
        if isinstance(patch, ResumeState):
            merged = patch
        else:
            current = self.load(processing_id) or ResumeState(processing_id=processing_id)
            values = current.to_dict()
            values.update(patch or {})
            merged = ResumeState.from_dict(values, processing_id)

        normalized = normalize_resume_state(merged, processing_id)
        self._store.put_json(build_resume_key(processing_id), normalized.to_dict())
        return normalized

    def clear(self, processing_id: str) -> bool:
        """Remove the resume state for a submission."""
        return self._store.delete(build_resume_key(processing_id))


def get_resume_store() -> ResumeStore:
    """Get a resume store bound to the global state store."""
    return ResumeStore(get_state_store())

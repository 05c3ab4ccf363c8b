"""Submission records and their status lifecycle."""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from desktop_upload.services.resume_store import ResumeState
from desktop_upload.services.state_store import StateStore, get_state_store
from desktop_upload.services.utils import utc_now_iso

logger = logging.getLogger(__name__)

SUBMISSION_KEY_PREFIX = "submission:"
ACTIVE_UPLOAD_KEY = "active_upload"


class SubmissionStatus(Enum):
    """Status of a submission."""

    CREATED = "created"
    PROCESSING = "processing"
    PROCESSED = "processed"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    COMPLETED = "completed"
    ERROR = "error"


_STATUS_ORDER = [
    SubmissionStatus.CREATED,
    SubmissionStatus.PROCESSING,
    SubmissionStatus.PROCESSED,
    SubmissionStatus.UPLOADING,
    SubmissionStatus.UPLOADED,
    SubmissionStatus.COMPLETED,
]

IN_PROGRESS_STATUSES = frozenset(
    {
        SubmissionStatus.PROCESSING,
        SubmissionStatus.PROCESSED,
        SubmissionStatus.UPLOADING,
        SubmissionStatus.UPLOADED,
    }
)

RETRYABLE_STATUSES = frozenset({SubmissionStatus.PROCESSING, SubmissionStatus.UPLOADING})


class InvalidTransitionError(ValueError):
    """Raised when a status change would move a submission backwards."""


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    """Check whether ``current -> target`` is a legal status change."""
    if current == target:
        return True
    if target == SubmissionStatus.ERROR:
        return current in IN_PROGRESS_STATUSES
    if current == SubmissionStatus.ERROR:
        return target in RETRYABLE_STATUSES
    return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(current)


def build_submission_key(submission_id: str) -> str:
    """Storage key for a submission record."""
    return f"{SUBMISSION_KEY_PREFIX}{submission_id}"


@dataclass
class Submission:
    """One user-initiated processing and upload job."""

    id: str
    source_media_id: str = ""
    series_id: str = ""
    series_name: str = ""
    title: str = ""
    index_name: str = ""
    source_folder_path: str = ""
    background_color: str | None = None
    text_color: str | None = None
    status: SubmissionStatus = SubmissionStatus.CREATED
    processing_progress: int | None = None
    upload_progress: int | None = None
    metadata: dict[str, Any] | None = None
    status_summary: dict[str, int] | None = None
    resume_state: ResumeState | None = None
    auto_upload: bool = False
    error: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source_media_id": self.source_media_id,
            "series_id": self.series_id,
            "series_name": self.series_name,
            "title": self.title,
            "index_name": self.index_name,
            "source_folder_path": self.source_folder_path,
            "background_color": self.background_color,
            "text_color": self.text_color,
            "status": self.status.value,
            "processing_progress": self.processing_progress,
            "upload_progress": self.upload_progress,
            "metadata": self.metadata,
            "status_summary": self.status_summary,
            "resume_state": self.resume_state.to_dict() if self.resume_state else None,
            "auto_upload": self.auto_upload,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Submission":
        """Build a submission from a stored dictionary."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["status"] = SubmissionStatus(values.get("status") or SubmissionStatus.CREATED.value)
        resume = values.get("resume_state")
        values["resume_state"] = (
            ResumeState.from_dict(resume, values["id"]) if isinstance(resume, dict) else None
        )
        return cls(**values)


class SubmissionStore:
    """Loads and persists :class:`Submission` records in the state store."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def load(self, submission_id: str) -> Submission | None:
        """Load a submission by id."""
        raw = self._store.get_json(build_submission_key(submission_id))
        if not isinstance(raw, dict):
            return None
        try:
            return Submission.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring unreadable submission %s", submission_id, exc_info=True)
            return None

    def save(self, submission: Submission) -> Submission:
        """Write a submission record as-is, stamping ``updated_at``."""
        submission.updated_at = utc_now_iso()
        self._store.put_json(build_submission_key(submission.id), submission.to_dict())
        return submission

    def patch(self, submission_id: str, **changes: Any) -> Submission:
        """Read-modify-write a submission record.

        Args:
            submission_id: Submission id
            **changes: Field values to overwrite; ``status`` may be a
                :class:`SubmissionStatus` or its string value

        Returns:
            The updated submission

        Raises:
            KeyError: If the submission does not exist
            InvalidTransitionError: If the status change is not allowed
        """
        current = self.load(submission_id)
        if current is None:
            raise KeyError(submission_id)

        if "status" in changes:
            target = SubmissionStatus(changes["status"])
            if not can_transition(current.status, target):
                raise InvalidTransitionError(
                    f"Submission {submission_id} cannot move from "
                    f"{current.status.value} to {target.value}"
                )
            changes["status"] = target

        for key, value in changes.items():
            if not hasattr(current, key):
                raise AttributeError(f"Submission has no field {key!r}")
            setattr(current, key, value)

        return self.save(current)

    def list_ids(self) -> list[str]:
        """Ids of every stored submission."""
        return [key[len(SUBMISSION_KEY_PREFIX) :] for key in self._store.keys(SUBMISSION_KEY_PREFIX)]

    def list_all(self) -> list[Submission]:
        """Every stored submission, newest update first."""
        submissions = [s for s in (self.load(i) for i in self.list_ids()) if s is not None]
        submissions.sort(key=lambda s: s.updated_at, reverse=True)
        return submissions

    def delete(self, submission_id: str) -> bool:
        """Remove a submission record."""
        return self._store.delete(build_submission_key(submission_id))

    def get_active_upload_marker(self) -> str | None:
        """Id of the upload that was running when the marker was last written."""
        value = self._store.get_json(ACTIVE_UPLOAD_KEY)
        return value if isinstance(value, str) and value else None

    def set_active_upload_marker(self, submission_id: str) -> None:
        """Record the running upload so a restart can resume it."""
        self._store.put_json(ACTIVE_UPLOAD_KEY, submission_id)

    def clear_active_upload_marker(self, submission_id: str | None = None) -> None:
        """Clear the marker, optionally only if it still names ``submission_id``."""
        if submission_id is None or self.get_active_upload_marker() == submission_id:
            self._store.delete(ACTIVE_UPLOAD_KEY)


def get_submission_store() -> SubmissionStore:
    """Get a submission store bound to the global state store."""
    return SubmissionStore(get_state_store())

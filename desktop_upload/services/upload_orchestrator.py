"""Upload orchestrator: resumable, one-file-at-a-time uploads of a submission folder."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from desktop_upload.services.credential_service import CredentialRefresher
from desktop_upload.services.folder_scanner import scan_folder, summarize_snapshot
from desktop_upload.services.log_service import get_log_service
from desktop_upload.services.resume_store import (
    ResumeState,
    ResumeStore,
    derive_upload_stats,
    sanitize_completed_files,
    sum_completed_bytes,
)
from desktop_upload.services.s3_service import (
    DEFAULT_LEVEL,
    build_object_key,
    guess_content_type,
    is_token_expired_error,
)
from desktop_upload.services.submission_store import (
    Submission,
    SubmissionStatus,
    SubmissionStore,
)
from desktop_upload.services.upload_registry import (
    ActiveUploadRegistry,
    UploadAlreadyRunningError,
    UploadRun,
)
from desktop_upload.services.utils import format_file_size, utc_now_iso

logger = logging.getLogger(__name__)

FILE_STATUS_UPLOADING = "uploading"
FILE_STATUS_UPLOADED = "uploaded"
SUBMISSION_RECORD_UPLOADED = "uploaded"


class UploadOutcome(Enum):
    """How an upload run ended."""

    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"
    SKIPPED = "skipped"


class UploadPausedError(Exception):
    """Raised inside the upload loop when the run was cancelled or superseded."""


class UploadFailedError(RuntimeError):
    """Raised when a file cannot be uploaded and the run must stop."""


class ObjectStore(Protocol):
    def put(
        self, key: str, body: bytes, level: str = ..., content_type: str = ...
    ) -> dict[str, Any]: ...


class MetadataService(Protocol):
    def create_file_record(
        self, source_media_id: str, storage_key: str, status: str
    ) -> str | None: ...

    def update_file_record(self, record_id: str, status: str) -> None: ...

    def update_submission_record(self, source_media_id: str, status: str) -> None: ...


class UploadOrchestrator:
    """Drives a submission from ``processed`` (or a paused/failed upload) to ``completed``.

    Every completed file is persisted to the resume state before the next one
    starts, so a crash loses at most the file in flight.
    """

    def __init__(
        self,
        submission_store: SubmissionStore,
        resume_store: ResumeStore,
        credentials: CredentialRefresher,
        object_store: ObjectStore,
        metadata_service: MetadataService | None,
        registry: ActiveUploadRegistry,
        processing_root: Path,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.submission_store = submission_store
        self.resume_store = resume_store
        self.credentials = credentials
        self.object_store = object_store
        self.metadata_service = metadata_service
        self.registry = registry
        self.processing_root = Path(processing_root)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def can_start(self, submission: Submission) -> bool:
        """Whether a submission is in a state an upload may start from."""
        if submission.status in (SubmissionStatus.PROCESSED, SubmissionStatus.ERROR):
            return True
        return (
            submission.status == SubmissionStatus.UPLOADING
            and (submission.upload_progress or 0) < 100
        )

    def start_upload(self, submission: Submission | str) -> UploadOutcome:
        """Upload every remaining file of a submission.

        Never raises for upload failures; the outcome and the persisted
        submission status describe what happened.

        Args:
            submission: Submission or its id

        Returns:
            The run outcome
        """
        log = get_log_service()
        submission_id = submission if isinstance(submission, str) else submission.id
        current = self.submission_store.load(submission_id)
        if current is None:
            logger.warning("Cannot upload unknown submission %s", submission_id)
            return UploadOutcome.SKIPPED

        if not self.can_start(current):
            log.warning(
                "upload",
                "upload_not_startable",
                f"Submission {submission_id} is {current.status.value}; not starting upload",
                {"submission_id": submission_id, "status": current.status.value},
            )
            return UploadOutcome.SKIPPED

        try:
            run = self.registry.begin(submission_id)
        except UploadAlreadyRunningError:
            if self.registry.active_id == submission_id:
                log.warning(
                    "upload",
                    "upload_already_active",
                    f"Upload for {submission_id} is already running",
                    {"submission_id": submission_id},
                )
            else:
                log.warning(
                    "upload",
                    "upload_still_stopping",
                    f"Upload for {submission_id} was cancelled and has not stopped yet",
                    {"submission_id": submission_id},
                )
            return UploadOutcome.SKIPPED

        if run.replaced is not None:
            log.warning(
                "upload",
                "upload_superseded",
                f"Upload {run.replaced} paused in favour of {submission_id}",
                {"submission_id": run.replaced, "replaced_by": submission_id},
            )
        self.submission_store.set_active_upload_marker(submission_id)

        started_at = datetime.now(UTC)
        error_message: str | None = None
        log.info(
            "upload",
            "upload_run_started",
            f"Starting upload for {submission_id}",
            {"submission_id": submission_id, "status": current.status.value},
        )

        try:
            outcome = self._run(current, run)
        except UploadPausedError:
            outcome = UploadOutcome.PAUSED
        except Exception as e:
            outcome = UploadOutcome.ERROR
            error_message = str(e) or e.__class__.__name__
            logger.warning("Upload for %s failed", submission_id, exc_info=True)
            self._record_failure(submission_id, error_message)
        finally:
            self.registry.finish(run)
            self.submission_store.clear_active_upload_marker(submission_id)

        self._log_run_end(submission_id, outcome, started_at, error_message)
        return outcome

    def cancel_upload(self, submission_id: str) -> bool:
        """Pause an upload at its next file boundary.

        Returns:
            True if it was the active upload
        """
        was_active = self.registry.cancel(submission_id)
        if was_active:
            self.submission_store.clear_active_upload_marker(submission_id)
        get_log_service().warning(
            "upload",
            "upload_cancelled",
            f"Upload {submission_id} cancelled",
            {"submission_id": submission_id, "was_active": was_active},
        )
        return was_active

    def resume_interrupted_upload(self) -> UploadOutcome | None:
        """Restart the upload that was active when the process last exited.

        Returns:
            The outcome of the resumed run, or None if nothing was resumed
        """
        submission_id = self.submission_store.get_active_upload_marker()
        if submission_id is None:
            return None

        submission = self.submission_store.load(submission_id)
        if (
            submission is not None
            and submission.status == SubmissionStatus.UPLOADING
            and (submission.upload_progress or 0) < 100
        ):
            get_log_service().info(
                "upload",
                "upload_resumed",
                f"Resuming interrupted upload {submission_id}",
                {"submission_id": submission_id, "upload_progress": submission.upload_progress},
            )
            return self.start_upload(submission)

        self.submission_store.clear_active_upload_marker(submission_id)
        return None

    def _run(self, submission: Submission, run: UploadRun) -> UploadOutcome:
        submission_id = submission.id
        root = self.processing_root / submission_id
        file_sizes = scan_folder(root)
        if not file_sizes:
            get_log_service().warning(
                "upload",
                "upload_no_files",
                f"No uploadable files in {root}",
                {"submission_id": submission_id, "folder": str(root)},
            )
            return UploadOutcome.SKIPPED

        resume = self._reconcile_resume_state(submission, root, file_sizes)
        self.submission_store.patch(
            submission_id,
            status=SubmissionStatus.UPLOADING,
            error=None,
            resume_state=resume,
        )

        identity_id = self.credentials.ensure_fresh_credentials(
            submission_id, force_refresh=not resume.identity_id
        )
        resume = self.resume_store.load(submission_id) or resume

        completed = list(resume.completed_files)
        for relative_path, size in file_sizes.items():
            if not self.registry.should_continue(run):
                raise UploadPausedError(submission_id)
            if relative_path in completed:
                continue

            if self.credentials.needs_refresh():
                identity_id = self.credentials.ensure_fresh_credentials(
                    submission_id, force_refresh=True
                )

            disk_path = root.joinpath(*relative_path.split("/"))
            if not disk_path.is_file():
                logger.warning("Skipping %s: no longer on disk", disk_path)
                continue

            storage_key = f"{submission.source_media_id}/{relative_path}"
            record_id = resume.file_records.get(relative_path)
            if not record_id:
                record_id = self._create_file_record(submission, identity_id, storage_key)
                if record_id:
                    resume = self.resume_store.persist(
                        submission_id,
                        {"file_records": {**resume.file_records, relative_path: record_id}},
                    )

            try:
                body = disk_path.read_bytes()
            except OSError as e:
                raise UploadFailedError(f"Could not read {relative_path}: {e}") from e

            identity_id = self._put_with_retry(submission_id, relative_path, storage_key, body)

            if record_id:
                self._update_file_record(submission_id, record_id, relative_path)
            else:
                logger.warning("Uploaded %s without a file record", relative_path)

            completed.append(relative_path)
            resume = self.resume_store.persist(
                submission_id,
                {
                    "completed_files": completed,
                    "uploaded_bytes": (resume.uploaded_bytes or 0) + size,
                    "last_uploaded_at": utc_now_iso(),
                },
            )
            stats = derive_upload_stats(resume)
            self._record_progress(submission_id, resume, stats.progress if stats else 0)
            get_log_service().info(
                "upload",
                "file_upload_completed",
                f"Uploaded {relative_path} ({format_file_size(size)})",
                {
                    "submission_id": submission_id,
                    "path": relative_path,
                    "file_size": size,
                    "upload_progress": stats.progress if stats else 0,
                },
            )

        self._finish(submission)
        return UploadOutcome.COMPLETED

    def _reconcile_resume_state(
        self, submission: Submission, root: Path, file_sizes: dict[str, int]
    ) -> ResumeState:
        """Stamp the resume state with the submission and the fresh snapshot."""
        stored = self.resume_store.load(submission.id) or ResumeState(processing_id=submission.id)
        completed = sanitize_completed_files(stored.completed_files, file_sizes)
        records = {
            path: record_id
            for path, record_id in stored.file_records.items()
            if path in file_sizes
        }
        total_bytes, total_files = summarize_snapshot(file_sizes)

        stored.source_media_id = submission.source_media_id
        stored.series_id = submission.series_id
        stored.series_name = submission.series_name
        stored.entry_name = submission.title
        stored.background_color = submission.background_color
        stored.text_color = submission.text_color
        stored.folder_path = str(root)
        stored.file_sizes = dict(file_sizes)
        stored.total_bytes = total_bytes
        stored.total_files = total_files
        stored.completed_files = completed
        stored.file_records = records
        stored.uploaded_bytes = sum_completed_bytes(completed, file_sizes)
        return self.resume_store.persist(submission.id, stored)

    def _record_progress(self, submission_id: str, resume: ResumeState, progress: int) -> None:
        """Store per-file progress without touching the status.

        The reconciler may already have completed the submission, in which
        case there is nothing left to record.
        """
        current = self.submission_store.load(submission_id)
        if current is None or current.status == SubmissionStatus.COMPLETED:
            return
        self.submission_store.patch(submission_id, upload_progress=progress, resume_state=resume)

    def _put_with_retry(
        self, submission_id: str, relative_path: str, storage_key: str, body: bytes
    ) -> str:
        """Upload one object, refreshing credentials before every attempt.

        Returns:
            The identity id the object was stored under
        """
        content_type = guess_content_type(relative_path)
        attempt = 0
        while True:
            identity_id = self.credentials.ensure_fresh_credentials(
                submission_id, force_refresh=attempt > 0
            )
            try:
                self.object_store.put(
                    storage_key, body, level=DEFAULT_LEVEL, content_type=content_type
                )
                return identity_id
            except Exception as e:
                if not is_token_expired_error(e) or attempt >= self.max_retries:
                    raise UploadFailedError(f"Upload of {relative_path} failed: {e}") from e
                attempt += 1
                get_log_service().warning(
                    "upload",
                    "upload_retry",
                    f"Credentials expired uploading {relative_path}; retry {attempt}",
                    {"submission_id": submission_id, "path": relative_path, "attempt": attempt},
                )
                self._sleep(self.retry_delay * attempt)

    def _create_file_record(
        self, submission: Submission, identity_id: str, storage_key: str
    ) -> str | None:
        if self.metadata_service is None:
            return None
        try:
            return self.metadata_service.create_file_record(
                submission.source_media_id,
                build_object_key(identity_id, storage_key),
                FILE_STATUS_UPLOADING,
            )
        except Exception as e:
            logger.warning("Could not create file record for %s", storage_key, exc_info=True)
            get_log_service().warning(
                "upload",
                "file_record_create_failed",
                f"Could not create file record for {storage_key}: {e}",
                {"submission_id": submission.id, "storage_key": storage_key},
            )
            return None

    def _update_file_record(self, submission_id: str, record_id: str, relative_path: str) -> None:
        if self.metadata_service is None:
            return
        try:
            self.metadata_service.update_file_record(record_id, FILE_STATUS_UPLOADED)
        except Exception as e:
            logger.warning("Could not update file record %s", record_id, exc_info=True)
            get_log_service().warning(
                "upload",
                "file_record_update_failed",
                f"Could not mark {relative_path} uploaded: {e}",
                {"submission_id": submission_id, "record_id": record_id},
            )

    def _finish(self, submission: Submission) -> None:
        if self.metadata_service is not None:
            try:
                self.metadata_service.update_submission_record(
                    submission.source_media_id, SUBMISSION_RECORD_UPLOADED
                )
            except Exception as e:
                logger.warning(
                    "Could not update source media %s", submission.source_media_id, exc_info=True
                )
                get_log_service().warning(
                    "upload",
                    "submission_record_update_failed",
                    f"Could not mark source media uploaded: {e}",
                    {"submission_id": submission.id, "source_media_id": submission.source_media_id},
                )

        # The reconciler may already have moved a 100% upload to completed.
        current = self.submission_store.load(submission.id)
        if current is None or current.status != SubmissionStatus.COMPLETED:
            self.submission_store.patch(
                submission.id, status=SubmissionStatus.UPLOADED, upload_progress=100
            )
        self.resume_store.clear(submission.id)
        self.submission_store.patch(
            submission.id,
            status=SubmissionStatus.COMPLETED,
            upload_progress=100,
            resume_state=None,
            error=None,
        )

    def _record_failure(self, submission_id: str, message: str) -> None:
        """Move the submission to ``error``; the resume state keeps its progress."""
        try:
            if self.resume_store.load(submission_id) is not None:
                self.resume_store.persist(submission_id, {"last_error": message})
            self.submission_store.patch(
                submission_id,
                status=SubmissionStatus.ERROR,
                error=message,
                resume_state=self.resume_store.load(submission_id),
            )
        except Exception:
            logger.error("Could not record failure for %s", submission_id, exc_info=True)

    def _log_run_end(
        self,
        submission_id: str,
        outcome: UploadOutcome,
        started_at: datetime,
        error_message: str | None,
    ) -> None:
        log = get_log_service()
        completed_at = datetime.now(UTC)
        resume = self.resume_store.load(submission_id)
        stats = derive_upload_stats(resume)
        summary: dict[str, Any] = {
            "timestamp": completed_at.isoformat(),
            "event": f"upload_run_{outcome.value}",
            "submission_id": submission_id,
            "outcome": outcome.value,
            "completed_files": len(stats.completed_files) if stats else None,
            "total_files": stats.total_files if stats else None,
            "uploaded_bytes": stats.uploaded_bytes if stats else None,
            "duration_seconds": (completed_at - started_at).total_seconds(),
            "error": error_message,
        }

        if outcome == UploadOutcome.ERROR:
            log.error("upload", "upload_run_failed", f"Upload failed: {error_message}", summary)
        elif outcome == UploadOutcome.PAUSED:
            log.warning("upload", "upload_run_paused", f"Upload {submission_id} paused", summary)
        elif outcome == UploadOutcome.COMPLETED:
            log.info("upload", "upload_run_completed", f"Upload {submission_id} completed", summary)
        else:
            return

        try:
            log.save_run_jsonl(submission_id, summary, completed_at)
        except Exception:
            logger.warning("Failed to save upload run summary", exc_info=True)


# Global upload orchestrator instance
_upload_orchestrator: UploadOrchestrator | None = None


def get_upload_orchestrator() -> UploadOrchestrator:
    """Get the global upload orchestrator, built from the current settings."""
    global _upload_orchestrator
    if _upload_orchestrator is None:
        from desktop_upload.config import get_settings
        from desktop_upload.services.credential_service import AwsIdentityProvider
        from desktop_upload.services.metadata_service import GraphQLMetadataService
        from desktop_upload.services.resume_store import get_resume_store
        from desktop_upload.services.s3_service import S3ObjectStore
        from desktop_upload.services.submission_store import get_submission_store
        from desktop_upload.services.upload_registry import get_upload_registry

        settings = get_settings()
        resume_store = get_resume_store()
        identity_provider = AwsIdentityProvider(
            settings.aws_profile, settings.aws_region, settings.identity_pool_id
        )
        metadata_service = (
            GraphQLMetadataService(settings.graphql_endpoint, settings.graphql_api_key or None)
            if settings.graphql_endpoint
            else None
        )
        _upload_orchestrator = UploadOrchestrator(
            submission_store=get_submission_store(),
            resume_store=resume_store,
            credentials=CredentialRefresher(
                identity_provider,
                resume_store,
                refresh_interval_seconds=settings.credential_refresh_minutes * 60,
            ),
            object_store=S3ObjectStore(identity_provider, settings.s3_bucket),
            metadata_service=metadata_service,
            registry=get_upload_registry(),
            processing_root=settings.processing_root,
            max_retries=settings.max_upload_retries,
            retry_delay=settings.upload_retry_delay_seconds,
        )
    return _upload_orchestrator


def reset_upload_orchestrator() -> None:
    """Drop the global orchestrator so the next call rebuilds it from settings."""
    global _upload_orchestrator
    _upload_orchestrator = None

"""Background poller that derives submission progress from persisted state."""

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from desktop_upload.services.log_service import get_log_service
from desktop_upload.services.processing_status import (
    derive_processing_progress,
    is_processing_complete,
    read_metadata,
    read_status_summary,
)
from desktop_upload.services.resume_store import ResumeStore, derive_upload_stats
from desktop_upload.services.submission_store import (
    Submission,
    SubmissionStatus,
    SubmissionStore,
)

logger = logging.getLogger(__name__)


class StatusReconciler:
    """Re-derives ``processing`` and ``uploading`` progress every few seconds.

    Reads only what is on disk and in the state store. It never runs the
    upload loop itself; at most it hands a freshly processed submission that
    asked for auto-upload to ``start_upload``.
    """

    def __init__(
        self,
        submission_store: SubmissionStore,
        resume_store: ResumeStore,
        processing_root: Path,
        start_upload: Callable[[Submission], Any] | None = None,
        interval: float = 2.0,
    ) -> None:
        self.submission_store = submission_store
        self.resume_store = resume_store
        self.processing_root = Path(processing_root)
        self.start_upload = start_upload
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        """Whether the background thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling on a daemon thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="status-reconciler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Status reconcile pass failed")
            self._stop_event.wait(self.interval)

    def poll_once(self) -> None:
        """Visit every submission folder once."""
        if not self.processing_root.is_dir():
            return

        for job_dir in sorted(p for p in self.processing_root.iterdir() if p.is_dir()):
            submission = self.submission_store.load(job_dir.name)
            if submission is None:
                continue
            try:
                if submission.status == SubmissionStatus.PROCESSING:
                    self._reconcile_processing(submission, job_dir)
                elif submission.status == SubmissionStatus.UPLOADING:
                    self._reconcile_uploading(submission)
            except Exception:
                logger.warning("Could not reconcile submission %s", submission.id, exc_info=True)

    def _reconcile_processing(self, submission: Submission, job_dir: Path) -> None:
        summary = read_status_summary(job_dir)
        if summary is None:
            return

        progress = derive_processing_progress(summary)
        summary_dict = summary.to_dict()

        if is_processing_complete(summary):
            updated = self.submission_store.patch(
                submission.id,
                status=SubmissionStatus.PROCESSED,
                processing_progress=100,
                status_summary=summary_dict,
                auto_upload=False,
            )
            get_log_service().info(
                "reconcile",
                "processing_completed",
                f"Submission {submission.id} finished processing",
                {"submission_id": submission.id, "auto_upload": submission.auto_upload},
            )
            if submission.auto_upload and self.start_upload is not None:
                self.start_upload(updated)
            return

        if progress != submission.processing_progress or summary_dict != submission.status_summary:
            self.submission_store.patch(
                submission.id,
                processing_progress=progress,
                status_summary=summary_dict,
            )

    def _reconcile_uploading(self, submission: Submission) -> None:
        resume = self.resume_store.load(submission.id)
        stats = derive_upload_stats(resume)
        if stats is None:
            return

        if stats.progress >= 100:
            self.submission_store.patch(
                submission.id,
                status=SubmissionStatus.COMPLETED,
                upload_progress=100,
                resume_state=None,
            )
            self.resume_store.clear(submission.id)
            get_log_service().info(
                "reconcile",
                "upload_completed",
                f"Submission {submission.id} upload reached 100%",
                {"submission_id": submission.id},
            )
            return

        previous_bytes = submission.resume_state.uploaded_bytes if submission.resume_state else 0
        if stats.progress != (submission.upload_progress or 0) or stats.uploaded_bytes != (
            previous_bytes or 0
        ):
            self.submission_store.patch(
                submission.id,
                upload_progress=stats.progress,
                resume_state=resume,
            )

    def load_all_submissions(self) -> list[dict[str, Any]]:
        """Every stored submission with its on-disk metadata and resume state."""
        results: list[dict[str, Any]] = []
        for submission in self.submission_store.list_all():
            job_dir = self.processing_root / submission.id
            data = submission.to_dict()
            metadata = read_metadata(job_dir)
            if metadata is not None:
                data["metadata"] = metadata
            summary = read_status_summary(job_dir)
            if summary is not None:
                data["status_summary"] = summary.to_dict()
            resume = self.resume_store.load(submission.id)
            if resume is not None:
                data["resume_state"] = resume.to_dict()
                stats = derive_upload_stats(resume)
                data["upload_progress"] = max(data["upload_progress"] or 0, stats.progress if stats else 0)
            results.append(data)
        return results


# Global reconciler instance
_status_reconciler: StatusReconciler | None = None


def get_status_reconciler() -> StatusReconciler:
    """Get the global status reconciler, built from the current settings."""
    global _status_reconciler
    if _status_reconciler is None:
        from desktop_upload.config import get_settings
        from desktop_upload.services.resume_store import get_resume_store
        from desktop_upload.services.submission_store import get_submission_store

        settings = get_settings()
        _status_reconciler = StatusReconciler(
            get_submission_store(),
            get_resume_store(),
            settings.processing_root,
            start_upload=start_upload_in_background,
            interval=settings.status_poll_seconds,
        )
    return _status_reconciler


def start_upload_in_background(submission: Submission) -> threading.Thread:
    """Run the global orchestrator's ``start_upload`` on a daemon thread."""
    from desktop_upload.services.upload_orchestrator import get_upload_orchestrator

    thread = threading.Thread(
        target=get_upload_orchestrator().start_upload,
        args=(submission.id,),
        name=f"upload-{submission.id}",
        daemon=True,
    )
    thread.start()
    return thread

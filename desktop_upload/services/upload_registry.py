"""Process-wide record of which upload is running."""

import itertools
import threading
from dataclasses import dataclass


class UploadAlreadyRunningError(RuntimeError):
    """Raised when a submission still has a live upload run."""


@dataclass(frozen=True)
class UploadRun:
    """Handle for one upload run of a submission."""

    submission_id: str
    token: int
    replaced: str | None = None


class ActiveUploadRegistry:
    """Single active upload slot plus a continue flag per run.

    Each :meth:`begin` hands out an :class:`UploadRun` with its own token. The
    upload loop polls :meth:`should_continue` with that run before every file;
    flipping the run's flag to False is how it is paused or superseded. A
    submission has at most one live run, from ``begin`` until ``finish``,
    even after it has been cancelled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._active_id: str | None = None
        self._live: dict[str, int] = {}
        self._continue: dict[int, bool] = {}

    @property
    def active_id(self) -> str | None:
        """Id of the upload currently holding the slot."""
        with self._lock:
            return self._active_id

    def is_running(self, submission_id: str) -> bool:
        """Whether a run of ``submission_id`` has begun and not yet finished."""
        with self._lock:
            return submission_id in self._live

    def begin(self, submission_id: str) -> UploadRun:
        """Make ``submission_id`` the active upload.

        Any other active upload has its flag flipped and is named in
        ``UploadRun.replaced``.

        Raises:
            UploadAlreadyRunningError: If a run of this submission is still live
        """
        with self._lock:
            if submission_id in self._live:
                raise UploadAlreadyRunningError(submission_id)

            previous = self._active_id
            if previous is not None and previous in self._live:
                self._continue[self._live[previous]] = False

            token = next(self._tokens)
            self._live[submission_id] = token
            self._continue[token] = True
            self._active_id = submission_id
            return UploadRun(submission_id, token, previous)

    def should_continue(self, run: UploadRun) -> bool:
        """Whether ``run`` may keep going."""
        with self._lock:
            return self._continue.get(run.token, False)

    def cancel(self, submission_id: str) -> bool:
        """Ask the live run of ``submission_id`` to stop.

        Returns:
            True if it was the active upload
        """
        with self._lock:
            token = self._live.get(submission_id)
            if token is not None:
                self._continue[token] = False
            if self._active_id == submission_id:
                self._active_id = None
                return True
            return False

    def finish(self, run: UploadRun) -> None:
        """Retire ``run``, releasing the slot if it still holds it."""
        with self._lock:
            self._continue.pop(run.token, None)
            if self._live.get(run.submission_id) != run.token:
                return
            del self._live[run.submission_id]
            if self._active_id == run.submission_id:
                self._active_id = None


# Global registry instance
_upload_registry: ActiveUploadRegistry | None = None


def get_upload_registry() -> ActiveUploadRegistry:
    """Get the global upload registry instance."""
    global _upload_registry
    if _upload_registry is None:
        _upload_registry = ActiveUploadRegistry()
    return _upload_registry

"""Upload API routes for desktop_upload"""

import threading

from flask import Blueprint, Response, jsonify

from desktop_upload.services.resume_store import derive_upload_stats, get_resume_store
from desktop_upload.services.submission_store import get_submission_store
from desktop_upload.services.upload_orchestrator import get_upload_orchestrator
from desktop_upload.services.upload_registry import get_upload_registry

upload_bp = Blueprint("upload", __name__)


def _start_in_background(submission_id: str) -> tuple[Response, int]:
    """Validate a submission and run its upload on a worker thread."""
    submission = get_submission_store().load(submission_id)
    if submission is None:
        return jsonify({"error": "Submission not found"}), 404

    orchestrator = get_upload_orchestrator()
    if not orchestrator.can_start(submission):
        return jsonify(
            {
                "error": f"Submission is {submission.status.value}; upload cannot start",
                "status": submission.status.value,
            }
        ), 409

    registry = get_upload_registry()
    previous = registry.active_id
    if previous == submission_id:
        return jsonify({"submission_id": submission_id, "status": "already_running"}), 200
    if registry.is_running(submission_id):
        return jsonify({"error": "Upload is still stopping; retry shortly"}), 409

    thread = threading.Thread(
        target=orchestrator.start_upload,
        args=(submission_id,),
        name=f"upload-{submission_id}",
        daemon=True,
    )
    thread.start()

    return jsonify(
        {"submission_id": submission_id, "status": "started", "replaces": previous}
    ), 202


@upload_bp.route("/start/<submission_id>", methods=["POST"])
def start_upload(submission_id: str) -> tuple[Response, int]:
    """Start (or resume) uploading a processed submission.

    Returns immediately (202 Accepted); the upload runs in the background and
    any other active upload is paused.
    """
    return _start_in_background(submission_id)


@upload_bp.route("/retry/<submission_id>", methods=["POST"])
def retry_upload(submission_id: str) -> tuple[Response, int]:
    """Retry a failed or paused upload from where it stopped."""
    return _start_in_background(submission_id)


@upload_bp.route("/cancel/<submission_id>", methods=["POST"])
def cancel_upload(submission_id: str) -> tuple[Response, int]:
    """Pause an upload at the next file boundary."""
    if get_submission_store().load(submission_id) is None:
        return jsonify({"error": "Submission not found"}), 404

    was_active = get_upload_orchestrator().cancel_upload(submission_id)
    return jsonify({"submission_id": submission_id, "cancelled": was_active}), 200


@upload_bp.route("/active", methods=["GET"])
def get_active_upload() -> tuple[Response, int]:
    """Get the id of the running upload, if any."""
    return jsonify({"active_upload_id": get_upload_registry().active_id}), 200


@upload_bp.route("/status/<submission_id>", methods=["GET"])
def get_upload_status(submission_id: str) -> tuple[Response, int]:
    """Get a submission together with its derived upload stats.

    Returns:
        JSON response with submission, stats (or null) and whether it is active
    """
    submission = get_submission_store().load(submission_id)
    if submission is None:
        return jsonify({"error": "Submission not found"}), 404

    stats = derive_upload_stats(get_resume_store().load(submission_id))
    return jsonify(
        {
            "submission": submission.to_dict(),
            "stats": (
                {
                    "completed_files": len(stats.completed_files),
                    "total_files": stats.total_files,
                    "total_bytes": stats.total_bytes,
                    "uploaded_bytes": stats.uploaded_bytes,
                    "progress": stats.progress,
                }
                if stats
                else None
            ),
            "active": get_upload_registry().active_id == submission_id,
        }
    ), 200

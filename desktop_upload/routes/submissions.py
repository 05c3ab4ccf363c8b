"""Submission API routes for desktop_upload"""

import uuid

from flask import Blueprint, Response, jsonify, request

from desktop_upload.services.log_service import get_log_service
from desktop_upload.services.resume_store import get_resume_store
from desktop_upload.services.status_reconciler import get_status_reconciler
from desktop_upload.services.submission_store import (
    Submission,
    SubmissionStatus,
    get_submission_store,
)
from desktop_upload.services.upload_orchestrator import get_upload_orchestrator
from desktop_upload.services.upload_registry import get_upload_registry

submissions_bp = Blueprint("submissions", __name__)

INITIAL_STATUSES = frozenset({SubmissionStatus.CREATED, SubmissionStatus.PROCESSING})

_TEXT_FIELDS = (
    "series_id",
    "series_name",
    "title",
    "index_name",
    "source_folder_path",
)


@submissions_bp.route("", methods=["GET"])
def list_submissions() -> tuple[Response, int]:
    """List every submission, newest first, with metadata and resume state."""
    return jsonify({"submissions": get_status_reconciler().load_all_submissions()}), 200


@submissions_bp.route("/<submission_id>", methods=["GET"])
def get_submission(submission_id: str) -> tuple[Response, int]:
    """Get one submission."""
    submission = get_submission_store().load(submission_id)
    if submission is None:
        return jsonify({"error": "Submission not found"}), 404
    return jsonify(submission.to_dict()), 200


@submissions_bp.route("", methods=["POST"])
def create_submission() -> tuple[Response, int]:
    """Register a submission handed over by the processing flow.

    Request body:
        source_media_id: Remote media id (required)
        id: Local id; generated if omitted
        status: "created" (default) or "processing"
        auto_upload: Start uploading once processing completes
        series_id, series_name, title, index_name, source_folder_path,
        background_color, text_color: Descriptive fields

    Returns:
        JSON response with the stored submission (201 Created)
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object required"}), 400

    source_media_id = data.get("source_media_id")
    if not source_media_id or not isinstance(source_media_id, str):
        return jsonify({"error": "source_media_id is required"}), 400

    try:
        status = SubmissionStatus(data.get("status", SubmissionStatus.CREATED.value))
    except ValueError:
        return jsonify({"error": f"Unknown status: {data.get('status')}"}), 400
    if status not in INITIAL_STATUSES:
        return jsonify({"error": "status must be 'created' or 'processing'"}), 400

    store = get_submission_store()
    submission_id = str(data.get("id") or uuid.uuid4())
    if store.load(submission_id) is not None:
        return jsonify({"error": f"Submission {submission_id} already exists"}), 409

    submission = Submission(
        id=submission_id,
        source_media_id=source_media_id,
        status=status,
        auto_upload=bool(data.get("auto_upload", False)),
        background_color=data.get("background_color"),
        text_color=data.get("text_color"),
        **{name: str(data.get(name) or "") for name in _TEXT_FIELDS},
    )
    store.save(submission)

    get_log_service().info(
        "submission",
        "submission_created",
        f"Registered submission {submission_id}",
        {
            "submission_id": submission_id,
            "source_media_id": source_media_id,
            "status": status.value,
            "auto_upload": submission.auto_upload,
        },
    )
    return jsonify(submission.to_dict()), 201


@submissions_bp.route("/<submission_id>", methods=["DELETE"])
def delete_submission(submission_id: str) -> tuple[Response, int]:
    """Remove a submission and its resume state, pausing its upload first."""
    store = get_submission_store()
    if store.load(submission_id) is None:
        return jsonify({"error": "Submission not found"}), 404

    if get_upload_registry().active_id == submission_id:
        get_upload_orchestrator().cancel_upload(submission_id)

    store.delete(submission_id)
    get_resume_store().clear(submission_id)
    store.clear_active_upload_marker(submission_id)

    get_log_service().info(
        "submission",
        "submission_deleted",
        f"Deleted submission {submission_id}",
        {"submission_id": submission_id},
    )
    return jsonify({"deleted": submission_id}), 200

"""Logs API routes for desktop_upload"""

from flask import Blueprint, Response, jsonify, request

from desktop_upload.services.log_service import get_log_service

logs_bp = Blueprint("logs", __name__)


@logs_bp.route("/entries", methods=["GET"])
def get_log_entries() -> tuple[Response, int]:
    """Recent event log entries, newest first.

    Query params:
        category: Filter by category (app/upload/credentials/reconcile/submission/settings)
        limit: Maximum entries (default 100, max 1000)

    Returns:
        JSON with entries
    """
    category = request.args.get("category") or None
    try:
        limit = max(1, min(1000, int(request.args.get("limit", "100"))))
    except ValueError:
        limit = 100

    entries = get_log_service().read_events(limit=limit, category=category)
    return jsonify({"entries": entries, "limit": limit}), 200

"""Settings API routes for desktop_upload"""

from flask import Blueprint, Response, jsonify, request

from desktop_upload.config import get_package_version, get_settings
from desktop_upload.services import s3_service
from desktop_upload.services.log_service import get_log_service
from desktop_upload.services.upload_orchestrator import reset_upload_orchestrator

settings_bp = Blueprint("settings", __name__)

ALLOWED_SETTING_KEYS = frozenset(
    {
        "aws_profile",
        "aws_region",
        "s3_bucket",
        "identity_pool_id",
        "graphql_endpoint",
        "graphql_api_key",
        "processing_root",
        "log_directory",
        "credential_refresh_minutes",
        "max_upload_retries",
        "upload_retry_delay_seconds",
        "status_poll_seconds",
    }
)


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings.

    Returns:
        JSON response with all settings
    """
    settings = get_settings()
    data = settings.all()
    if data.get("graphql_api_key"):
        data["graphql_api_key"] = "********"
    data["version"] = get_package_version()
    return jsonify(data), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Request body:
        JSON object with settings to update

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data:
        return jsonify({"error": "Empty body"}), 400

    filtered_data = {k: v for k, v in data.items() if k in ALLOWED_SETTING_KEYS}
    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    settings = get_settings()
    settings.update(filtered_data)
    # Next upload picks up the new credentials, bucket and endpoint
    reset_upload_orchestrator()

    log = get_log_service()
    log.info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(sorted(filtered_data.keys()))}",
        {"changed_keys": sorted(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/profiles", methods=["GET"])
def get_profiles() -> tuple[Response, int]:
    """Get list of available AWS profiles."""
    return jsonify({"profiles": s3_service.get_available_profiles()}), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_connection() -> tuple[Response, int]:
    """Validate S3 connection with current or provided settings.

    Request body (optional):
        aws_profile: AWS profile to test
        aws_region: AWS region to test
        s3_bucket: S3 bucket to test

    Returns:
        JSON response with validation result
    """
    settings = get_settings()
    data = (request.get_json(silent=True) or {}) if request.is_json else {}
    profile = data.get("aws_profile", settings.aws_profile)
    region = data.get("aws_region", settings.aws_region)
    bucket = data.get("s3_bucket", settings.s3_bucket)

    if not bucket:
        return jsonify({"error": "S3 bucket not specified"}), 400

    log = get_log_service()
    metadata = {"bucket": bucket, "profile": profile, "region": region}
    try:
        client = s3_service.create_s3_client(profile, region)
        result = s3_service.validate_bucket_access(client, bucket)
    except Exception as e:
        log.error(
            "settings",
            "connection_test",
            f"Connection test error for bucket '{bucket}': {e}",
            {**metadata, "error": str(e)},
        )
        return jsonify({"success": False, "error": str(e)}), 200

    if result["success"]:
        log.info(
            "settings",
            "connection_test",
            f"Connection test succeeded for bucket '{bucket}'",
            {**metadata, "success": True},
        )
        return jsonify(
            {"success": True, "message": f"Successfully connected to bucket '{bucket}'"}
        ), 200

    log.warning(
        "settings",
        "connection_test",
        f"Connection test failed for bucket '{bucket}': {result['error']}",
        {**metadata, "success": False, "error": result["error"]},
    )
    return jsonify({"success": False, "error": result["error"]}), 200

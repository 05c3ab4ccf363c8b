"""Flask application factory for the desktop upload engine."""

import logging
import os
import threading
from typing import Any

from flask import Flask

from desktop_upload.config import get_package_version, get_settings

logger = logging.getLogger(__name__)


def _resume_interrupted_upload() -> None:
    from desktop_upload.services.upload_orchestrator import get_upload_orchestrator

    try:
        get_upload_orchestrator().resume_interrupted_upload()
    except Exception:
        logger.exception("Could not resume interrupted upload")


def create_app(config: dict[str, Any] | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Flask config overrides, applied before background work starts
    """
    app = Flask(__name__)

    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["SETTINGS"] = settings
    if config:
        app.config.update(config)

    # Register blueprints
    from desktop_upload.routes.logs import logs_bp
    from desktop_upload.routes.settings import settings_bp
    from desktop_upload.routes.submissions import submissions_bp
    from desktop_upload.routes.upload import upload_bp

    app.register_blueprint(submissions_bp, url_prefix="/api/submissions")
    app.register_blueprint(upload_bp, url_prefix="/api/upload")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")

    # Log application startup
    from desktop_upload.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version(), "processing_root": str(settings.processing_root)},
    )

    if not app.config.get("TESTING"):
        threading.Thread(
            target=_resume_interrupted_upload, name="resume-upload", daemon=True
        ).start()

        if settings.enable_background_reconciler:
            from desktop_upload.services.status_reconciler import get_status_reconciler

            get_status_reconciler().start()

    return app

"""Configuration management for desktop_upload"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_PREFIX = "DESKTOP_UPLOAD_"
ENV_AWS_PROFILE = f"{ENV_PREFIX}AWS_PROFILE"
ENV_AWS_REGION = f"{ENV_PREFIX}AWS_REGION"
ENV_S3_BUCKET = f"{ENV_PREFIX}S3_BUCKET"
ENV_IDENTITY_POOL_ID = f"{ENV_PREFIX}IDENTITY_POOL_ID"
ENV_GRAPHQL_ENDPOINT = f"{ENV_PREFIX}GRAPHQL_ENDPOINT"
ENV_GRAPHQL_API_KEY = f"{ENV_PREFIX}GRAPHQL_API_KEY"
ENV_PROCESSING_ROOT = f"{ENV_PREFIX}PROCESSING_ROOT"
ENV_STATE_DB_PATH = f"{ENV_PREFIX}STATE_DB_PATH"
ENV_LOG_DIRECTORY = f"{ENV_PREFIX}LOG_DIRECTORY"

DEFAULT_PRODUCT_NAME = "memesrc"


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def get_package_name() -> str:
    """Get the package name from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("name", "desktop-upload"))
    except Exception:
        return "desktop-upload"


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        defaults: dict[str, Any] = {
            "aws_profile": "default",
            "aws_region": "us-east-1",
            "s3_bucket": "",
            "identity_pool_id": "",
            "graphql_endpoint": "",
            "graphql_api_key": "",
            "product_name": DEFAULT_PRODUCT_NAME,
            "processing_root": "",
            "state_db_path": "",
            "log_directory": "",
            "credential_refresh_minutes": 12,
            "max_upload_retries": 3,
            "upload_retry_delay_seconds": 2.0,
            "status_poll_seconds": 2.0,
            "enable_background_reconciler": True,
        }

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        env_overrides = {
            "aws_profile": os.environ.get(ENV_AWS_PROFILE),
            "aws_region": os.environ.get(ENV_AWS_REGION),
            "s3_bucket": os.environ.get(ENV_S3_BUCKET),
            "identity_pool_id": os.environ.get(ENV_IDENTITY_POOL_ID),
            "graphql_endpoint": os.environ.get(ENV_GRAPHQL_ENDPOINT),
            "graphql_api_key": os.environ.get(ENV_GRAPHQL_API_KEY),
            "processing_root": os.environ.get(ENV_PROCESSING_ROOT),
            "state_db_path": os.environ.get(ENV_STATE_DB_PATH),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
        }

        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

        if not SETTINGS_FILE.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def aws_profile(self) -> str:
        """Get the AWS profile name."""
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        """Get the AWS region."""
        return str(self._settings.get("aws_region", "us-east-1"))

    @property
    def s3_bucket(self) -> str:
        """Get the S3 bucket name."""
        return str(self._settings.get("s3_bucket", ""))

    @property
    def identity_pool_id(self) -> str:
        """Get the Cognito identity pool id (empty to use the profile's own identity)."""
        return str(self._settings.get("identity_pool_id", ""))

    @property
    def graphql_endpoint(self) -> str:
        """Get the metadata service GraphQL endpoint."""
        return str(self._settings.get("graphql_endpoint", ""))

    @property
    def graphql_api_key(self) -> str:
        """Get the metadata service API key."""
        return str(self._settings.get("graphql_api_key", ""))

    @property
    def product_name(self) -> str:
        """Get the product name used for the dot-directory under the home folder."""
        return str(self._settings.get("product_name", DEFAULT_PRODUCT_NAME))

    @property
    def product_directory(self) -> Path:
        """Get the ``~/.<product>`` directory."""
        return Path.home() / f".{self.product_name}"

    @property
    def processing_root(self) -> Path:
        """Get the root holding one output folder per submission."""
        configured = str(self._settings.get("processing_root", "") or "")
        if configured:
            return Path(configured).expanduser()
        return self.product_directory / "processing"

    @property
    def state_db_path(self) -> Path:
        """Get the SQLite file backing the local key-value store."""
        configured = str(self._settings.get("state_db_path", "") or "")
        if configured:
            return Path(configured).expanduser()
        return self.product_directory / "desktop_upload_state.db"

    @property
    def log_directory(self) -> Path:
        """Get the directory for JSONL event logs."""
        configured = str(self._settings.get("log_directory", "") or "")
        if configured:
            return Path(configured).expanduser()
        return self.product_directory / "logs"

    @property
    def credential_refresh_minutes(self) -> float:
        """Get the maximum age of storage credentials before a forced refresh."""
        return float(self._settings.get("credential_refresh_minutes", 12))

    @property
    def max_upload_retries(self) -> int:
        """Get how many times a single file is retried after a token expiry."""
        return int(self._settings.get("max_upload_retries", 3))

    @property
    def upload_retry_delay_seconds(self) -> float:
        """Get the base delay for linear retry backoff."""
        return float(self._settings.get("upload_retry_delay_seconds", 2.0))

    @property
    def status_poll_seconds(self) -> float:
        """Get the background reconciler period."""
        return float(self._settings.get("status_poll_seconds", 2.0))

    @property
    def enable_background_reconciler(self) -> bool:
        """Whether create_app() starts the background status poller."""
        value = self._settings.get("enable_background_reconciler", True)
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()

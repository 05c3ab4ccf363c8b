"""S3 service for the upload object store."""

import configparser
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.exceptions import ClientError, NoCredentialsError
from mypy_boto3_s3 import S3Client

from desktop_upload.services.utils import get_extension

DEFAULT_LEVEL = "protected"

CONTENT_TYPES: dict[str, str] = {
    "mp4": "video/mp4",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "m4v": "video/x-m4v",
    "json": "application/json",
    "csv": "text/csv",
    "srt": "application/x-subrip",
    "zip": "application/zip",
}

TOKEN_EXPIRED_CODES = frozenset(
    {
        "ExpiredToken",
        "ExpiredTokenException",
        "RequestExpired",
        "InvalidToken",
        "TokenRefreshRequired",
    }
)


class SessionProvider(Protocol):
    """Identity source that can hand out a credentialed session."""

    @property
    def session(self) -> boto3.Session: ...

    def current_credentials(self) -> dict[str, Any]: ...


def get_available_profiles() -> list[str]:
    """Get list of available AWS profiles from ~/.aws/config and ~/.aws/credentials."""
    profiles: set[str] = set()

    credentials_path = Path.home() / ".aws" / "credentials"
    if credentials_path.exists():
        config = configparser.ConfigParser()
        config.read(credentials_path)
        profiles.update(config.sections())

    config_path = Path.home() / ".aws" / "config"
    if config_path.exists():
        config = configparser.ConfigParser()
        config.read(config_path)
        for section in config.sections():
            # Config file uses "profile name" format
            if section.startswith("profile "):
                profiles.add(section.replace("profile ", ""))
            else:
                profiles.add(section)

    profiles.add("default")

    return sorted(profiles)


def create_s3_client(profile: str | None, region: str = "us-east-1") -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name, or None for the default credential chain
        region: AWS region

    Returns:
        Configured S3 client
    """
    session = boto3.Session(profile_name=profile or None, region_name=region)
    client: S3Client = session.client("s3")
    return client


def guess_content_type(path: str) -> str:
    """Content type for an upload, keyed on its extension."""
    return CONTENT_TYPES.get(get_extension(path), "application/octet-stream")


def is_token_expired_error(error: BaseException) -> bool:
    """Check whether an upload failure was caused by expired credentials."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        if code in TOKEN_EXPIRED_CODES:
            return True
    code = getattr(error, "code", None)
    if isinstance(code, str) and code in TOKEN_EXPIRED_CODES:
        return True
    message = str(error).lower()
    return "token" in message and "expir" in message


def build_object_key(identity_id: str, key: str, level: str = DEFAULT_LEVEL) -> str:
    """Full S3 key for an object stored under an identity's prefix."""
    return f"{level}/{identity_id}/{key}"


class S3ObjectStore:
    """Writes upload bodies to S3 under ``<level>/<identity_id>/<key>``."""

    def __init__(self, identity_provider: SessionProvider, bucket: str) -> None:
        self.identity_provider = identity_provider
        self.bucket = bucket

    def put(
        self,
        key: str,
        body: bytes,
        level: str = DEFAULT_LEVEL,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Upload one object.

        Args:
            key: Key relative to the identity prefix
            body: Object contents
            level: Access level prefix
            content_type: MIME type stored with the object

        Returns:
            Dictionary with the bucket, full key and size

        Raises:
            ClientError: On any S3 failure, including expired credentials
        """
        identity_id = self.identity_provider.current_credentials()["identity_id"]
        full_key = build_object_key(identity_id, key, level)
        client: S3Client = self.identity_provider.session.client("s3")
        client.put_object(Bucket=self.bucket, Key=full_key, Body=body, ContentType=content_type)
        return {"bucket": self.bucket, "key": full_key, "size": len(body)}


def validate_bucket_access(client: S3Client, bucket: str) -> dict[str, Any]:
    """Validate that we can access the specified S3 bucket.

    Args:
        client: S3 client
        bucket: S3 bucket name

    Returns:
        Dictionary with validation result
    """
    try:
        client.head_bucket(Bucket=bucket)
        return {
            "success": True,
            "bucket": bucket,
            "error": None,
        }
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        if error_code == "404":
            error_msg = f"Bucket '{bucket}' does not exist"
        elif error_code == "403":
            error_msg = f"Access denied to bucket '{bucket}'"
        else:
            error_msg = str(e)
        return {
            "success": False,
            "bucket": bucket,
            "error": error_msg,
        }
    except NoCredentialsError:
        return {
            "success": False,
            "bucket": bucket,
            "error": "AWS credentials not found",
        }

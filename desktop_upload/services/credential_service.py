"""AWS identity resolution and periodic credential refresh."""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from desktop_upload.services.log_service import get_log_service
from desktop_upload.services.resume_store import ResumeStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 12 * 60


class IdentityUnavailableError(RuntimeError):
    """Raised when no identity id can be resolved for an upload."""


class IdentityProvider(Protocol):
    """What the refresher needs from an identity source."""

    def current_credentials(self) -> dict[str, Any]: ...

    def force_token_refresh(self) -> None: ...


class AwsIdentityProvider:
    """Resolves the caller's identity and a credentialed boto3 session.

    With a Cognito identity pool configured, the profile's credentials are
    exchanged for temporary identity-pool credentials and the identity id is
    the Cognito one. Without a pool, STS ``GetCallerIdentity`` supplies it.
    """

    def __init__(
        self,
        profile: str | None = None,
        region: str = "us-east-1",
        identity_pool_id: str | None = None,
    ) -> None:
        self.profile = profile or None
        self.region = region
        self.identity_pool_id = identity_pool_id or None
        self._lock = threading.Lock()
        self._session: boto3.Session | None = None
        self._identity_id: str | None = None

    def _base_session(self) -> boto3.Session:
        return boto3.Session(profile_name=self.profile, region_name=self.region)

    def _resolve(self) -> tuple[boto3.Session, str]:
        base = self._base_session()

        if not self.identity_pool_id:
            sts = base.client("sts")
            identity_id = sts.get_caller_identity()["UserId"]
            return base, identity_id

        cognito = base.client("cognito-identity")
        identity_id = self._identity_id or cognito.get_id(IdentityPoolId=self.identity_pool_id)[
            "IdentityId"
        ]
        creds = cognito.get_credentials_for_identity(IdentityId=identity_id)["Credentials"]
        session = boto3.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretKey"],
            aws_session_token=creds["SessionToken"],
            region_name=self.region,
        )
        return session, identity_id

    def _ensure(self) -> tuple[boto3.Session, str]:
        with self._lock:
            if self._session is None or self._identity_id is None:
                self._session, self._identity_id = self._resolve()
            return self._session, self._identity_id

    @property
    def session(self) -> boto3.Session:
        """Credentialed session for object store calls."""
        return self._ensure()[0]

    def current_credentials(self) -> dict[str, Any]:
        """Return ``{"identity_id": ...}`` for the current session.

        Raises:
            IdentityUnavailableError: If AWS cannot resolve an identity
        """
        try:
            _, identity_id = self._ensure()
        except (BotoCoreError, ClientError) as e:
            raise IdentityUnavailableError(f"Could not resolve AWS identity: {e}") from e
        return {"identity_id": identity_id}

    def force_token_refresh(self) -> None:
        """Drop the cached session so the next call mints new credentials."""
        with self._lock:
            self._session = None


class CredentialRefresher:
    """Keeps credentials fresh for long uploads and caches the identity id."""

    def __init__(
        self,
        identity_provider: IdentityProvider,
        resume_store: ResumeStore,
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.identity_provider = identity_provider
        self.resume_store = resume_store
        self.refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock
        self._last_refresh: float | None = None

    @property
    def last_refresh(self) -> float | None:
        """Clock reading of the last successful refresh."""
        return self._last_refresh

    def needs_refresh(self) -> bool:
        """True if credentials have not been refreshed within the interval."""
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh > self.refresh_interval_seconds

    def ensure_fresh_credentials(self, processing_id: str, force_refresh: bool = False) -> str:
        """Make sure credentials are usable and return the identity id.

        Args:
            processing_id: Submission whose resume state caches the identity
            force_refresh: Drop cached credentials first

        Returns:
            The identity id

        Raises:
            IdentityUnavailableError: If neither the provider nor the resume
                state can supply an identity id
        """
        if force_refresh:
            try:
                self.identity_provider.force_token_refresh()
            except Exception:
                logger.warning("Forced token refresh failed", exc_info=True)

        identity_id: str | None = None
        try:
            identity_id = self.identity_provider.current_credentials().get("identity_id")
        except Exception as e:
            logger.warning("Could not read current credentials: %s", e)

        if not identity_id:
            cached = self.resume_store.load(processing_id)
            cached_identity = cached.identity_id if cached else None
            if not cached_identity:
                raise IdentityUnavailableError(
                    f"No identity available for submission {processing_id}"
                )
            # Not a refresh: leave the timestamp alone so the next file retries.
            get_log_service().warning(
                "credentials",
                "credentials_cached_identity",
                f"Using cached identity for {processing_id}",
                {"processing_id": processing_id, "forced": force_refresh},
            )
            return cached_identity

        self._last_refresh = self._clock()
        self.resume_store.persist(processing_id, {"identity_id": identity_id, "last_error": None})

        get_log_service().info(
            "credentials",
            "credentials_refreshed",
            f"Credentials ready for {processing_id}",
            {"processing_id": processing_id, "forced": force_refresh},
        )
        return identity_id

"""Tests for identity resolution and credential refresh."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from conftest import FakeClock, FakeIdentityProvider

from desktop_upload.services.credential_service import (
    AwsIdentityProvider,
    CredentialRefresher,
    IdentityUnavailableError,
)
from desktop_upload.services.resume_store import ResumeStore


class TestCredentialRefresher:
    """Tests for CredentialRefresher."""

    def test_returns_and_caches_identity(
        self, credentials: CredentialRefresher, resume_store: ResumeStore
    ) -> None:
        """Test the identity id is persisted into the resume state."""
        resume_store.persist("sub-1", {"last_error": "boom"})

        identity_id = credentials.ensure_fresh_credentials("sub-1")

        assert identity_id == "us-east-1:identity-1"
        state = resume_store.load("sub-1")
        assert state is not None
        assert state.identity_id == "us-east-1:identity-1"
        assert state.last_error is None

    def test_force_refresh(
        self, credentials: CredentialRefresher, identity_provider: FakeIdentityProvider
    ) -> None:
        """Test forcing calls the provider's token refresh."""
        credentials.ensure_fresh_credentials("sub-1", force_refresh=True)

        assert identity_provider.refresh_count == 1

    def test_falls_back_to_cached_identity(
        self,
        credentials: CredentialRefresher,
        identity_provider: FakeIdentityProvider,
        resume_store: ResumeStore,
    ) -> None:
        """Test the resume state's identity is used when the provider has none."""
        resume_store.persist("sub-1", {"identity_id": "cached-identity"})
        identity_provider.identity_id = None

        assert credentials.ensure_fresh_credentials("sub-1") == "cached-identity"

    def test_provider_error_falls_back(
        self, resume_store: ResumeStore, clock: FakeClock
    ) -> None:
        """Test a failing provider still allows the cached identity."""
        provider = MagicMock()
        provider.current_credentials.side_effect = RuntimeError("offline")
        resume_store.persist("sub-1", {"identity_id": "cached-identity"})
        refresher = CredentialRefresher(provider, resume_store, 60, clock=clock)

        assert refresher.ensure_fresh_credentials("sub-1") == "cached-identity"

    def test_cached_identity_is_not_a_refresh(
        self, resume_store: ResumeStore, clock: FakeClock
    ) -> None:
        """Test falling back to the cached identity leaves the refresh due."""
        provider = MagicMock()
        provider.current_credentials.side_effect = RuntimeError("offline")
        resume_store.persist("sub-1", {"identity_id": "cached-identity", "last_error": "boom"})
        refresher = CredentialRefresher(provider, resume_store, 60, clock=clock)

        refresher.ensure_fresh_credentials("sub-1", force_refresh=True)

        assert refresher.last_refresh is None
        assert refresher.needs_refresh()
        state = resume_store.load("sub-1")
        assert state is not None
        assert state.last_error == "boom"

    def test_no_identity_raises(
        self,
        credentials: CredentialRefresher,
        identity_provider: FakeIdentityProvider,
    ) -> None:
        """Test that no identity anywhere is fatal."""
        identity_provider.identity_id = None

        with pytest.raises(IdentityUnavailableError):
            credentials.ensure_fresh_credentials("sub-1")

    def test_needs_refresh_after_interval(
        self, credentials: CredentialRefresher, clock: FakeClock
    ) -> None:
        """Test the refresh interval is measured on the injected clock."""
        assert credentials.needs_refresh()

        credentials.ensure_fresh_credentials("sub-1")
        assert not credentials.needs_refresh()

        clock.advance(12 * 60)
        assert not credentials.needs_refresh()

        clock.advance(1)
        assert credentials.needs_refresh()


class TestAwsIdentityProvider:
    """Tests for AwsIdentityProvider."""

    @patch("desktop_upload.services.credential_service.boto3.Session")
    def test_sts_identity_without_pool(self, mock_session_cls: MagicMock) -> None:
        """Test that STS supplies the identity when no pool is configured."""
        session = mock_session_cls.return_value
        session.client.return_value.get_caller_identity.return_value = {"UserId": "AIDA123"}

        provider = AwsIdentityProvider("default", "us-east-1")

        assert provider.current_credentials() == {"identity_id": "AIDA123"}
        assert provider.session is session
        session.client.assert_called_once_with("sts")

    @patch("desktop_upload.services.credential_service.boto3.Session")
    def test_cognito_identity_with_pool(self, mock_session_cls: MagicMock) -> None:
        """Test the identity pool exchange."""
        cognito = mock_session_cls.return_value.client.return_value
        cognito.get_id.return_value = {"IdentityId": "us-east-1:abc"}
        cognito.get_credentials_for_identity.return_value = {
            "Credentials": {
                "AccessKeyId": "AKIA",
                "SecretKey": "secret",
                "SessionToken": "token",
            }
        }

        provider = AwsIdentityProvider("default", "us-east-1", "us-east-1:pool")

        assert provider.current_credentials() == {"identity_id": "us-east-1:abc"}
        cognito.get_id.assert_called_once_with(IdentityPoolId="us-east-1:pool")
        mock_session_cls.assert_any_call(
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret",
            aws_session_token="token",
            region_name="us-east-1",
        )

    @patch("desktop_upload.services.credential_service.boto3.Session")
    def test_force_refresh_rebuilds_session(self, mock_session_cls: MagicMock) -> None:
        """Test that a forced refresh re-resolves credentials on next use."""
        sts = mock_session_cls.return_value.client.return_value
        sts.get_caller_identity.return_value = {"UserId": "AIDA123"}
        provider = AwsIdentityProvider("default", "us-east-1")

        provider.current_credentials()
        provider.force_token_refresh()
        provider.current_credentials()

        assert sts.get_caller_identity.call_count == 2

    @patch("desktop_upload.services.credential_service.boto3.Session")
    def test_aws_error_is_identity_unavailable(self, mock_session_cls: MagicMock) -> None:
        """Test botocore failures surface as IdentityUnavailableError."""
        sts = mock_session_cls.return_value.client.return_value
        sts.get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetCallerIdentity"
        )

        with pytest.raises(IdentityUnavailableError):
            AwsIdentityProvider("default").current_credentials()

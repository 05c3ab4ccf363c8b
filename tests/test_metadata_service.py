"""Tests for the GraphQL metadata service client."""

from unittest.mock import MagicMock

import pytest
import requests

from desktop_upload.services.metadata_service import (
    CREATE_FILE_MUTATION,
    GraphQLMetadataService,
    MetadataServiceError,
)


def _response(payload: object, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return resp


@pytest.fixture
def session() -> MagicMock:
    """Mocked requests session."""
    mock = MagicMock(spec=requests.Session)
    mock.headers = {}
    return mock


@pytest.fixture
def service(session: MagicMock) -> GraphQLMetadataService:
    """Metadata service posting through the mocked session."""
    return GraphQLMetadataService("https://api.example.test/graphql", "key-1", session=session)


class TestGraphQLMetadataService:
    """Tests for GraphQLMetadataService."""

    def test_sets_api_key_header(self, service: GraphQLMetadataService, session: MagicMock) -> None:
        """Test the API key is sent on every request."""
        assert session.headers["x-api-key"] == "key-1"
        assert session.headers["Content-Type"] == "application/json"

    def test_create_file_record(self, service: GraphQLMetadataService, session: MagicMock) -> None:
        """Test createFile input and returned id."""
        session.post.return_value = _response(
            {"data": {"createFile": {"id": "file-1", "status": "uploading"}}}
        )

        record_id = service.create_file_record("media-1", "protected/id-1/media-1/a.mp4", "uploading")

        assert record_id == "file-1"
        _, kwargs = session.post.call_args
        assert kwargs["json"]["query"] == CREATE_FILE_MUTATION
        assert kwargs["json"]["variables"] == {
            "input": {
                "sourceMediaFilesId": "media-1",
                "key": "protected/id-1/media-1/a.mp4",
                "status": "uploading",
            }
        }

    def test_create_without_id(self, service: GraphQLMetadataService, session: MagicMock) -> None:
        """Test a response without a record id yields None."""
        session.post.return_value = _response({"data": {"createFile": None}})

        assert service.create_file_record("media-1", "k", "uploading") is None

    def test_update_file_record(self, service: GraphQLMetadataService, session: MagicMock) -> None:
        """Test updateFile input."""
        session.post.return_value = _response({"data": {"updateFile": {"id": "file-1"}}})

        service.update_file_record("file-1", "uploaded")

        _, kwargs = session.post.call_args
        assert kwargs["json"]["variables"] == {"input": {"id": "file-1", "status": "uploaded"}}

    def test_update_submission_record(
        self, service: GraphQLMetadataService, session: MagicMock
    ) -> None:
        """Test updateSourceMedia input."""
        session.post.return_value = _response({"data": {"updateSourceMedia": {"id": "media-1"}}})

        service.update_submission_record("media-1", "uploaded")

        _, kwargs = session.post.call_args
        assert "updateSourceMedia" in kwargs["json"]["query"]
        assert kwargs["json"]["variables"] == {"input": {"id": "media-1", "status": "uploaded"}}

    def test_graphql_errors_raise(
        self, service: GraphQLMetadataService, session: MagicMock
    ) -> None:
        """Test that GraphQL errors become MetadataServiceError."""
        session.post.return_value = _response(
            {"data": None, "errors": [{"message": "Not Authorized"}]}
        )

        with pytest.raises(MetadataServiceError, match="Not Authorized"):
            service.update_file_record("file-1", "uploaded")

    def test_http_errors_raise(self, service: GraphQLMetadataService, session: MagicMock) -> None:
        """Test that HTTP failures become MetadataServiceError."""
        session.post.return_value = _response({}, status_code=502)

        with pytest.raises(MetadataServiceError):
            service.update_file_record("file-1", "uploaded")

    def test_connection_errors_raise(
        self, service: GraphQLMetadataService, session: MagicMock
    ) -> None:
        """Test that transport failures become MetadataServiceError."""
        session.post.side_effect = requests.exceptions.ConnectionError("offline")

        with pytest.raises(MetadataServiceError, match="unreachable"):
            service.create_file_record("media-1", "k", "uploading")

    def test_missing_endpoint(self, session: MagicMock) -> None:
        """Test that an unconfigured endpoint is refused before any request."""
        service = GraphQLMetadataService("", session=session)

        with pytest.raises(MetadataServiceError):
            service.update_file_record("file-1", "uploaded")
        session.post.assert_not_called()

    def test_default_session_has_retry_adapter(self) -> None:
        """Test the default session mounts a retrying adapter."""
        service = GraphQLMetadataService("https://api.example.test/graphql")

        adapter = service.session.get_adapter("https://api.example.test/graphql")
        assert adapter.max_retries.total == 3
        assert "x-api-key" not in service.session.headers

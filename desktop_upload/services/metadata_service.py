"""GraphQL client for the remote file and source-media records."""

import logging
from typing import Any

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

CREATE_FILE_MUTATION = """
mutation CreateFile($input: CreateFileInput!, $condition: ModelFileConditionInput) {
  createFile(input: $input, condition: $condition) {
    id
    status
  }
}
"""

UPDATE_FILE_MUTATION = """
mutation UpdateFile($input: UpdateFileInput!, $condition: ModelFileConditionInput) {
  updateFile(input: $input, condition: $condition) {
    id
    status
  }
}
"""

UPDATE_SOURCE_MEDIA_MUTATION = """
mutation UpdateSourceMedia(
  $input: UpdateSourceMediaInput!
  $condition: ModelSourceMediaConditionInput
) {
  updateSourceMedia(input: $input, condition: $condition) {
    id
    status
  }
}
"""


class MetadataServiceError(RuntimeError):
    """Raised when the metadata service rejects or cannot serve a request."""


class GraphQLMetadataService:
    """Creates and updates file and source-media records over GraphQL."""

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        session: Session | None = None,
        timeout_s: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_s = timeout_s

        if session is None:
            session = Session()
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=1.0,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session

        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"x-api-key": api_key})

    def execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Post a GraphQL operation and return its ``data`` object.

        Raises:
            MetadataServiceError: On transport errors, HTTP errors or GraphQL errors
        """
        if not self.endpoint:
            raise MetadataServiceError("Metadata service endpoint is not configured")

        try:
            resp = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                timeout=self.timeout_s,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.exceptions.RequestException as exc:
            raise MetadataServiceError(f"Metadata service unreachable: {exc}") from exc
        except ValueError as exc:
            raise MetadataServiceError("Metadata service returned invalid JSON") from exc

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(e.get("message", e)) for e in errors)
            raise MetadataServiceError(f"Metadata service error: {messages}")

        data: dict[str, Any] = payload.get("data") or {}
        return data

    def create_file_record(self, source_media_id: str, storage_key: str, status: str) -> str | None:
        """Create a file record and return its id, if the service returned one."""
        data = self.execute(
            CREATE_FILE_MUTATION,
            {"input": {"sourceMediaFilesId": source_media_id, "key": storage_key, "status": status}},
        )
        record = data.get("createFile") or {}
        record_id = record.get("id")
        return str(record_id) if record_id else None

    def update_file_record(self, record_id: str, status: str) -> None:
        """Set the status of a file record."""
        self.execute(UPDATE_FILE_MUTATION, {"input": {"id": record_id, "status": status}})

    def update_submission_record(self, source_media_id: str, status: str) -> None:
        """Set the status of the remote source-media record."""
        self.execute(
            UPDATE_SOURCE_MEDIA_MUTATION, {"input": {"id": source_media_id, "status": status}}
        )

"""Pytest configuration and fixtures for the desktop_upload tests."""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError
from flask import Flask
from flask.testing import FlaskClient

from desktop_upload import config, create_app
from desktop_upload.services import (
    log_service,
    state_store,
    status_reconciler,
    upload_orchestrator,
    upload_registry,
)
from desktop_upload.services.credential_service import CredentialRefresher
from desktop_upload.services.resume_store import ResumeStore
from desktop_upload.services.state_store import StateStore
from desktop_upload.services.submission_store import (
    Submission,
    SubmissionStatus,
    SubmissionStore,
)
from desktop_upload.services.upload_orchestrator import UploadOrchestrator
from desktop_upload.services.upload_registry import ActiveUploadRegistry


def make_expired_token_error() -> ClientError:
    """ClientError as raised by S3 when the session token has expired."""
    return ClientError(
        {
            "Error": {
                "Code": "ExpiredToken",
                "Message": "The provided token has expired.",
            }
        },
        "PutObject",
    )


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    """Identity provider returning a fixed identity id."""

    def __init__(self, identity_id: str | None = "us-east-1:identity-1") -> None:
        self.identity_id = identity_id
        self.refresh_count = 0

    def current_credentials(self) -> dict[str, Any]:
        return {"identity_id": self.identity_id}

    def force_token_refresh(self) -> None:
        self.refresh_count += 1


class FakeObjectStore:
    """Object store that records puts and raises queued errors first."""

    def __init__(self) -> None:
        self.puts: list[dict[str, Any]] = []
        self.errors: list[BaseException] = []
        self.attempts = 0
        self.before_put: Any = None

    def put(
        self,
        key: str,
        body: bytes,
        level: str = "protected",
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        self.attempts += 1
        if self.before_put is not None:
            self.before_put(key)
        if self.errors:
            raise self.errors.pop(0)
        self.puts.append(
            {"key": key, "body": body, "level": level, "content_type": content_type}
        )
        return {"bucket": "test-bucket", "key": key, "size": len(body)}


class FakeMetadataService:
    """Metadata service that hands out sequential record ids."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.updated_files: list[tuple[str, str]] = []
        self.updated_submissions: list[tuple[str, str]] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_submission_update = False

    def create_file_record(self, source_media_id: str, storage_key: str, status: str) -> str | None:
        if self.fail_create:
            raise RuntimeError("createFile unavailable")
        record_id = f"record-{len(self.created) + 1}"
        self.created.append(
            {"source_media_id": source_media_id, "key": storage_key, "status": status}
        )
        return record_id

    def update_file_record(self, record_id: str, status: str) -> None:
        if self.fail_update:
            raise RuntimeError("updateFile unavailable")
        self.updated_files.append((record_id, status))

    def update_submission_record(self, source_media_id: str, status: str) -> None:
        if self.fail_submission_update:
            raise RuntimeError("updateSourceMedia unavailable")
        self.updated_submissions.append((source_media_id, status))


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point settings, state and logs at a temporary directory and reset singletons."""
    monkeypatch.setattr(config, "SETTINGS_FILE", tmp_path / "settings.json")
    monkeypatch.setattr(config, "SETTINGS_DEFAULT_FILE", tmp_path / "settings.default.json")
    monkeypatch.setenv(config.ENV_PROCESSING_ROOT, str(tmp_path / "processing"))
    monkeypatch.setenv(config.ENV_STATE_DB_PATH, str(tmp_path / "state.db"))
    monkeypatch.setenv(config.ENV_LOG_DIRECTORY, str(tmp_path / "logs"))
    monkeypatch.setenv(config.ENV_S3_BUCKET, "test-bucket")
    monkeypatch.setattr(config.Settings, "_instance", None)
    monkeypatch.setattr(state_store, "_state_store", None)
    monkeypatch.setattr(log_service, "_log_service", log_service.LogService(tmp_path / "logs"))
    monkeypatch.setattr(upload_registry, "_upload_registry", None)
    monkeypatch.setattr(upload_orchestrator, "_upload_orchestrator", None)
    monkeypatch.setattr(status_reconciler, "_status_reconciler", None)
    yield
    if state_store._state_store is not None:
        state_store._state_store.close()


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """Directory the event log writes to."""
    return tmp_path / "logs"


@pytest.fixture
def store(tmp_path: Path) -> Generator[StateStore, None, None]:
    """Global state store backed by a temporary SQLite file."""
    kv = state_store.get_state_store()
    yield kv
    kv.close()


@pytest.fixture
def resume_store(store: StateStore) -> ResumeStore:
    """Resume store over the temporary state store."""
    return ResumeStore(store)


@pytest.fixture
def submission_store(store: StateStore) -> SubmissionStore:
    """Submission store over the temporary state store."""
    return SubmissionStore(store)


@pytest.fixture
def processing_root(tmp_path: Path) -> Path:
    """Root folder holding one output folder per submission."""
    root = tmp_path / "processing"
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture
def make_submission(
    submission_store: SubmissionStore, processing_root: Path
) -> Any:
    """Factory that stores a submission and writes its output files."""

    def _make(
        submission_id: str = "sub-1",
        status: SubmissionStatus = SubmissionStatus.PROCESSED,
        files: dict[str, bytes] | None = None,
        **fields: Any,
    ) -> Submission:
        job_dir = processing_root / submission_id
        job_dir.mkdir(parents=True, exist_ok=True)
        for relative, body in (files or {}).items():
            path = job_dir / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        values: dict[str, Any] = {
            "source_media_id": "media-1",
            "series_id": "series-1",
            "series_name": "Test Series",
            "title": "Season 1",
        }
        values.update(fields)
        submission = Submission(id=submission_id, status=status, **values)
        return submission_store.save(submission)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    """Hand-driven monotonic clock."""
    return FakeClock()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    """Identity provider with a fixed identity."""
    return FakeIdentityProvider()


@pytest.fixture
def credentials(
    identity_provider: FakeIdentityProvider, resume_store: ResumeStore, clock: FakeClock
) -> CredentialRefresher:
    """Credential refresher with a 12 minute interval and a fake clock."""
    return CredentialRefresher(identity_provider, resume_store, 12 * 60, clock=clock)


@pytest.fixture
def object_store() -> FakeObjectStore:
    """Recording object store."""
    return FakeObjectStore()


@pytest.fixture
def metadata_service() -> FakeMetadataService:
    """Recording metadata service."""
    return FakeMetadataService()


@pytest.fixture
def registry() -> ActiveUploadRegistry:
    """Fresh active upload registry."""
    return ActiveUploadRegistry()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the orchestrator."""
    return []


@pytest.fixture
def orchestrator(
    submission_store: SubmissionStore,
    resume_store: ResumeStore,
    credentials: CredentialRefresher,
    object_store: FakeObjectStore,
    metadata_service: FakeMetadataService,
    registry: ActiveUploadRegistry,
    processing_root: Path,
    sleeps: list[float],
) -> UploadOrchestrator:
    """Orchestrator wired to fakes; sleeping only records the delay."""
    return UploadOrchestrator(
        submission_store=submission_store,
        resume_store=resume_store,
        credentials=credentials,
        object_store=object_store,
        metadata_service=metadata_service,
        registry=registry,
        processing_root=processing_root,
        max_retries=3,
        retry_delay=2.0,
        sleep=sleeps.append,
    )


@pytest.fixture
def app(
    orchestrator: UploadOrchestrator,
    registry: ActiveUploadRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> Flask:
    """Create application for testing, using the fake-backed orchestrator."""
    monkeypatch.setattr(upload_orchestrator, "_upload_orchestrator", orchestrator)
    monkeypatch.setattr(upload_registry, "_upload_registry", registry)
    return create_app({"TESTING": True})


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()

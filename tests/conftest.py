"""
Pytest configuration and fixtures for testing.
"""
import os
from datetime import datetime, timedelta

# must be set before coursemedia reads its settings
os.environ.setdefault("AUTO_CREATE_DB_SCHEMA", "false")
os.environ.setdefault("USE_DUMMY_S3", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import coursemedia.models  # noqa: F401
from coursemedia.core.constants import (
    METADATA_PREFIX,
    RENDITIONS_PREFIX,
    ROLE_ADMIN,
    ROLE_INSTRUCTOR,
    ROLE_REVIEWER,
    SUBTITLES_PREFIX,
    THUMBNAILS_PREFIX,
)
from coursemedia.core.errors import ProcessingError
from coursemedia.core.security import create_access_token
from coursemedia.db.base import Base
from coursemedia.db.deps import get_db, get_storage
from coursemedia.integrations.storage import StorageClient
from coursemedia.main import app
from coursemedia.modules.assets.service import AssetService, FileMetadata
from coursemedia.modules.jobs.models import JobType
from coursemedia.modules.jobs.payloads import (
    MetadataResult,
    SubtitleResult,
    ThumbnailResult,
    TranscodeResult,
)
from coursemedia.modules.processing.dispatcher import Dispatcher
from coursemedia.modules.processing.handlers import HandlerOutcome, HandlerRegistry, JobHandler


# Test database URL
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    """Local-filesystem storage rooted in the test's tmp dir."""
    return StorageClient(use_dummy=True, storage_path=str(tmp_path / "s3"))


@pytest.fixture(scope="function")
def client(db, storage):
    """FastAPI test client with test database and storage."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ---------- AUTH ----------


def auth_headers_for(user_id: str, *roles: str) -> dict:
    token = create_access_token(subject=user_id, roles=roles)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_headers():
    return auth_headers_for


@pytest.fixture
def instructor_headers():
    return auth_headers_for("instructor-1", ROLE_INSTRUCTOR)


@pytest.fixture
def admin_headers():
    return auth_headers_for("admin-1", ROLE_ADMIN)


@pytest.fixture
def reviewer_headers():
    return auth_headers_for("reviewer-1", ROLE_REVIEWER)


@pytest.fixture
def student_headers():
    return auth_headers_for("student-1", "student")


# ---------- ASSETS ----------


@pytest.fixture
def uploaded_asset(db, storage):
    """An asset whose original is stored, with no jobs yet."""
    service = AssetService(db)
    asset = service.create_asset(
        "lesson-42",
        FileMetadata(filename="intro.mp4", mime_type="video/mp4", size_bytes=10 * 1024 * 1024),
        uploaded_by="instructor-1",
    )
    key = f"videos/originals/{asset.id}.mp4"
    storage.put_object(key, b"\x00" * 1024, "video/mp4")
    return service.mark_uploaded(asset.id, key)


# ---------- FAKE HANDLERS ----------


def fake_outcome(ctx) -> HandlerOutcome:
    params = ctx.params
    asset_id = ctx.asset_id
    if ctx.job_type == JobType.video_transcoding:
        return HandlerOutcome(
            result=TranscodeResult(
                file_path=f"{RENDITIONS_PREFIX}/{asset_id}/{params.resolution}_{params.quality}.{params.format}",
                file_size=2048,
                resolution=params.resolution,
                quality=params.quality,
                format=params.format,
                bitrate_kbps=params.bitrate_kbps,
            )
        )
    if ctx.job_type == JobType.subtitle_generation:
        return HandlerOutcome(
            result=SubtitleResult(
                file_path=f"{SUBTITLES_PREFIX}/{asset_id}/{params.language}.{params.format}",
                language=params.language,
                format=params.format,
                confidence_score=0.9,
                word_count=4,
                segment_count=1,
            ),
            extra_attrs={
                "segments": [
                    {"start": 0.0, "end": 2.5, "text": "welcome to the lesson", "confidence": 0.9}
                ]
            },
        )
    if ctx.job_type == JobType.metadata_extraction:
        return HandlerOutcome(
            result=MetadataResult(
                file_path=f"{METADATA_PREFIX}/{asset_id}/{ctx.job_id}.json",
                duration_seconds=120.0,
                container_format="mov,mp4,m4a,3gp,3g2,mj2",
                resolution="1920x1080",
                bitrate_kbps=4000,
                video_codec="h264",
                audio_codec="aac",
            )
        )
    return HandlerOutcome(
        result=ThumbnailResult(
            file_path=f"{THUMBNAILS_PREFIX}/{asset_id}_thumb.jpg",
            time_offset=params.time_offset,
            size=params.size,
        )
    )


class FakeHandler(JobHandler):
    """Succeeds with a canned result after failing ``fail_times`` attempts."""

    def __init__(self, job_type: JobType, fail_times: int = 0, error: Exception | None = None):
        self.job_type = job_type
        self.fail_times = fail_times
        self.error = error
        self.calls = 0

    def handle(self, ctx) -> HandlerOutcome:
        self.calls += 1
        ctx.report_progress(50)
        if self.calls <= self.fail_times:
            raise self.error or ProcessingError(f"simulated failure #{self.calls}")
        return fake_outcome(ctx)


@pytest.fixture
def fake_registry():
    """Build a registry of fake handlers; pass handlers to override specific job types."""
    def _build(*handlers: JobHandler) -> HandlerRegistry:
        registry = HandlerRegistry()
        for job_type in JobType:
            registry.register(FakeHandler(job_type))
        for handler in handlers:
            registry.register(handler)
        return registry

    return _build


@pytest.fixture
def make_dispatcher(db, storage, tmp_path):
    """Dispatcher on the test database with zero retry backoff."""
    def _make(registry: HandlerRegistry, **kwargs) -> Dispatcher:
        kwargs.setdefault("backoff_base_seconds", 0)
        kwargs.setdefault("backoff_max_seconds", 0)
        return Dispatcher(
            registry=registry,
            session_factory=TestingSessionLocal,
            storage=storage,
            work_root=str(tmp_path / "work"),
            **kwargs,
        )

    return _make


@pytest.fixture
def fake_handler():
    """The FakeHandler class, for tests that need a failing or counting handler."""
    return FakeHandler


class FakeClock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(db):
    """Opens extra sessions on the test database, e.g. to play a second writer."""
    sessions = []

    def _open():
        session = TestingSessionLocal()
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()

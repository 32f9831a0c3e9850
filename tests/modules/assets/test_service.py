"""
Tests for the asset store: intake validation, artifacts and lifecycle.
"""
import io
import uuid

import pytest

from coursemedia.core.config import settings
from coursemedia.core.errors import InvalidStateError, NotFoundError, ValidationError
from coursemedia.modules.assets.intake import UploadIntake, UploadRequest
from coursemedia.modules.assets.models import (
    AssetProcessingStatus,
    SubtitleFormat,
    UploadStatus,
    VideoAsset,
)
from coursemedia.modules.assets.service import AssetService, FileMetadata
from coursemedia.modules.audit.service import AuditLog
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.content.service import TagInput
from coursemedia.modules.jobs.models import JobStatus, JobType, ProcessingJob
from coursemedia.modules.workflows.models import Workflow, WorkflowStatus


def _file(size=10 * 1024 * 1024, mime="video/mp4", name="intro.mp4"):
    return FileMetadata(filename=name, mime_type=mime, size_bytes=size)


class TestCreateAsset:
    """Intake validation on createAsset."""

    @pytest.mark.parametrize(
        "size,mime",
        [
            (1, "video/mp4"),
            (10 * 1024 * 1024, "video/quicktime"),
            (settings.MAX_UPLOAD_SIZE_BYTES, "video/webm"),
        ],
    )
    def test_valid_upload_is_created_as_uploading(self, db, size, mime):
        """Any video up to the size limit is accepted in uploading state."""
        asset = AssetService(db).create_asset("lesson-42", _file(size=size, mime=mime))

        assert asset.upload_status == UploadStatus.uploading
        assert asset.processing_status == AssetProcessingStatus.pending
        assert asset.size_bytes == size
        assert db.query(VideoAsset).count() == 1

    @pytest.mark.parametrize(
        "size,mime",
        [
            (settings.MAX_UPLOAD_SIZE_BYTES + 1, "video/mp4"),
            (1024, "application/pdf"),
            (1024, "image/png"),
            (0, "video/mp4"),
        ],
    )
    def test_invalid_upload_is_rejected_and_not_persisted(self, db, size, mime):
        """Oversized, empty or non-video uploads raise ValidationError and store nothing."""
        with pytest.raises(ValidationError):
            AssetService(db).create_asset("lesson-42", _file(size=size, mime=mime))

        assert db.query(VideoAsset).count() == 0

    def test_mark_uploaded_sets_storage_key(self, db):
        """markUploaded records the final path and flips the upload status."""
        service = AssetService(db)
        asset = service.create_asset("lesson-42", _file())

        asset = service.mark_uploaded(asset.id, "videos/originals/x.mp4", {"size_bytes": 42})

        assert asset.upload_status == UploadStatus.uploaded
        assert asset.storage_key == "videos/originals/x.mp4"
        assert asset.size_bytes == 42

    def test_mark_uploaded_twice_is_rejected(self, db, uploaded_asset):
        """Only an uploading asset can be marked uploaded."""
        with pytest.raises(InvalidStateError):
            AssetService(db).mark_uploaded(uploaded_asset.id, "videos/originals/other.mp4")

    def test_unknown_asset_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            AssetService(db).get_asset(uuid.uuid4())


class TestRecordArtifact:
    """Artifacts recorded from job results."""

    def test_metadata_result_updates_asset_attributes(self, db, uploaded_asset):
        service = AssetService(db)
        service.record_artifact(
            uploaded_asset.id,
            uuid.uuid4(),
            JobType.metadata_extraction,
            "videos/metadata/a.json",
            {"duration_seconds": 95.5, "resolution": "1280x720", "video_codec": "h264"},
        )

        asset = service.get_asset(uploaded_asset.id)
        assert asset.duration_seconds == 95.5
        assert asset.resolution == "1280x720"
        assert asset.video_codec == "h264"

    def test_replayed_artifact_is_not_duplicated(self, db, uploaded_asset):
        """Recording the same job twice keeps a single artifact."""
        service = AssetService(db)
        job_id = uuid.uuid4()
        attrs = {"resolution": "1920x1080", "quality": "high", "format": "mp4"}

        first = service.record_artifact(
            uploaded_asset.id, job_id, JobType.video_transcoding, "videos/transcoded/a.mp4", attrs
        )
        second = service.record_artifact(
            uploaded_asset.id, job_id, JobType.video_transcoding, "videos/transcoded/a.mp4", attrs
        )

        assert first.id == second.id
        assert len(service.list_renditions(uploaded_asset.id)) == 1

    def test_subtitle_artifact_upserts_subtitle_with_segments(self, db, uploaded_asset):
        service = AssetService(db)
        attrs = {
            "language": "en",
            "format": "srt",
            "confidence_score": 0.8,
            "word_count": 3,
            "segments": [
                {"start": 0.0, "end": 1.5, "text": "hello there", "confidence": 0.8},
                {"start": 1.5, "end": 3.0, "text": "class", "confidence": 0.7},
            ],
        }
        service.record_artifact(
            uploaded_asset.id, uuid.uuid4(), JobType.subtitle_generation, "videos/subtitles/a/en.srt", attrs
        )
        # a second run for the same language replaces rather than duplicates
        attrs["word_count"] = 5
        service.record_artifact(
            uploaded_asset.id, uuid.uuid4(), JobType.subtitle_generation, "videos/subtitles/a/en.srt", attrs
        )

        subtitles = service.get_subtitles(uploaded_asset.id, language="en", format=SubtitleFormat.srt)
        assert len(subtitles) == 1
        assert subtitles[0].word_count == 5
        assert [seg.text for seg in subtitles[0].segments] == ["hello there", "class"]


class TestUploadIntake:
    """End-to-end intake of an upload."""

    def test_upload_seeds_jobs_workflow_and_content_details(self, db, storage):
        body = b"\x00" * 4096
        result = UploadIntake(db, storage).accept(
            UploadRequest(
                content_id="lesson-42",
                file_metadata=_file(size=len(body)),
                fileobj=io.BytesIO(body),
                uploaded_by="instructor-1",
                title="Intro",
                tags=[TagInput(name="python")],
                metadata={"level": "beginner"},
            )
        )

        asset = AssetService(db).get_asset(result.video_asset_id)
        assert asset.upload_status == UploadStatus.uploaded
        assert storage.object_exists(asset.storage_key)
        assert storage.head_object(asset.storage_key)["ContentLength"] == len(body)

        jobs = db.query(ProcessingJob).filter(ProcessingJob.asset_id == asset.id).all()
        assert {job.id for job in jobs} == set(result.job_ids)
        assert all(job.status == JobStatus.pending for job in jobs)
        assert len(jobs) == 2 + len(settings.TRANSCODE_PROFILES) + 1

        workflow = db.get(Workflow, result.workflow_id)
        assert workflow.status == WorkflowStatus.draft
        assert workflow.content_type == ContentType.lesson

        entries = AuditLog(db).for_entity("video_asset", asset.id)
        assert [entry.action for entry in entries] == ["asset.uploaded"]

    def test_rejected_upload_leaves_nothing_behind(self, db, storage):
        with pytest.raises(ValidationError):
            UploadIntake(db, storage).accept(
                UploadRequest(
                    content_id="lesson-42",
                    file_metadata=_file(mime="text/plain"),
                    fileobj=io.BytesIO(b"not a video"),
                )
            )

        assert db.query(VideoAsset).count() == 0
        assert db.query(ProcessingJob).count() == 0


class TestLifecycle:
    """Reprocessing and content deletion."""

    def test_reprocess_refused_while_jobs_are_open(self, db, uploaded_asset):
        service = AssetService(db)
        service.reprocess(uploaded_asset.id)

        with pytest.raises(InvalidStateError):
            service.reprocess(uploaded_asset.id)

    def test_soft_delete_cancels_open_jobs_and_hides_asset(self, db, uploaded_asset):
        service = AssetService(db)
        job_ids = service.reprocess(uploaded_asset.id, actor_id="admin-1")

        deleted = service.soft_delete_for_content("lesson-42", actor_id="admin-1")

        assert deleted == 1
        statuses = {
            db.get(ProcessingJob, job_id, populate_existing=True).status for job_id in job_ids
        }
        assert statuses == {JobStatus.cancelled}
        with pytest.raises(NotFoundError):
            service.get_asset(uploaded_asset.id)

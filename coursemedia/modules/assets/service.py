from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coursemedia.core.config import settings
from coursemedia.core.errors import InvalidStateError, NotFoundError, ValidationError
from coursemedia.core.logging import get_logger
from coursemedia.core.timeutils import utcnow
from coursemedia.models.outbox_event import add_outbox_event
from coursemedia.modules.assets.models import (
    AssetProcessingStatus,
    Subtitle,
    SubtitleFormat,
    SubtitleSegment,
    SubtitleStatus,
    UploadStatus,
    VideoArtifact,
    VideoAsset,
)
from coursemedia.modules.assets.repository import AssetRepository
from coursemedia.modules.audit.service import AuditLog
from coursemedia.modules.jobs.models import OPEN_JOB_STATUSES, JobStatus, JobType
from coursemedia.modules.jobs.plan import build_default_plan
from coursemedia.modules.jobs.queue import JobQueue
from coursemedia.modules.jobs.repository import JobRepository
from coursemedia.modules.status.service import AggregateStatus, derive_processing_status

logger = get_logger(__name__)

# attributes a metadata extraction result may write onto the asset
_EXTRACTED_FIELDS = (
    "duration_seconds",
    "container_format",
    "resolution",
    "bitrate_kbps",
    "video_codec",
    "audio_codec",
)


class FileMetadata(BaseModel):
    """What is known about an upload before its bytes are stored."""

    filename: str = Field(min_length=1)
    mime_type: str
    size_bytes: int


class AssetService:
    """Service layer for video assets and their derived artifacts."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.asset_repo = AssetRepository(db)
        self.job_repo = JobRepository(db)
        self.audit = AuditLog(db)

    # ---------- INTAKE ----------

    @staticmethod
    def validate_file(file_metadata: FileMetadata) -> None:
        if file_metadata.size_bytes <= 0:
            raise ValidationError("Uploaded file is empty")
        if file_metadata.size_bytes > settings.MAX_UPLOAD_SIZE_BYTES:
            raise ValidationError(
                f"File too large: {file_metadata.size_bytes} bytes "
                f"(maximum {settings.MAX_UPLOAD_SIZE_BYTES} bytes)"
            )
        if not (file_metadata.mime_type or "").lower().startswith(settings.ALLOWED_MIME_PREFIX):
            raise ValidationError(
                f"Invalid file type {file_metadata.mime_type!r}: only video files are allowed"
            )

    def create_asset(
        self,
        content_id: str,
        file_metadata: FileMetadata,
        uploaded_by: Optional[str] = None,
        commit: bool = True,
    ) -> VideoAsset:
        """Validate an upload and register it as uploading. Nothing is stored on rejection."""
        if not content_id:
            raise ValidationError("content_id is required")
        self.validate_file(file_metadata)

        asset = self.asset_repo.create(
            content_id=content_id,
            original_filename=file_metadata.filename,
            mime_type=file_metadata.mime_type,
            size_bytes=file_metadata.size_bytes,
            upload_status=UploadStatus.uploading,
            processing_status=AssetProcessingStatus.pending,
            uploaded_by=uploaded_by,
        )
        if commit:
            self.db.commit()
            self.db.refresh(asset)

        logger.info(
            "asset created",
            asset_id=str(asset.id),
            content_id=content_id,
            size_bytes=file_metadata.size_bytes,
        )
        return asset

    def mark_uploaded(
        self,
        asset_id: uuid.UUID,
        final_path: str,
        extracted_attributes: Optional[dict[str, Any]] = None,
        commit: bool = True,
    ) -> VideoAsset:
        asset = self.get_asset(asset_id)
        if asset.upload_status != UploadStatus.uploading:
            raise InvalidStateError(
                f"Asset upload is {asset.upload_status.value}, expected uploading"
            )

        updates: dict[str, Any] = {
            "storage_key": final_path,
            "upload_status": UploadStatus.uploaded,
        }
        for key, value in (extracted_attributes or {}).items():
            if key in _EXTRACTED_FIELDS + ("size_bytes",) and value is not None:
                updates[key] = value
        self.asset_repo.update(asset, **updates)

        if commit:
            self.db.commit()
            self.db.refresh(asset)
        logger.info("asset uploaded", asset_id=str(asset_id), storage_key=final_path)
        return asset

    def get_asset(self, asset_id: uuid.UUID) -> VideoAsset:
        asset = self.asset_repo.get_by_id(asset_id)
        if not asset:
            raise NotFoundError("Video asset not found")
        return asset

    # ---------- ARTIFACTS ----------

    def record_artifact(
        self,
        asset_id: uuid.UUID,
        job_id: uuid.UUID,
        job_type: JobType,
        artifact_path: str,
        attrs: Optional[dict[str, Any]] = None,
        commit: bool = True,
    ) -> VideoArtifact:
        """Attach the output of a job to its asset.

        Replaying the same job returns the existing artifact without
        re-applying side effects.
        """
        job_type = JobType(job_type)
        existing = self.asset_repo.get_artifact_by_job(job_id)
        if existing:
            logger.info("artifact already recorded", job_id=str(job_id))
            return existing

        asset = self.get_asset(asset_id)
        attrs = dict(attrs or {})
        segments = attrs.pop("segments", None) or []

        artifact = self.asset_repo.create_artifact(
            asset_id=asset.id,
            job_id=job_id,
            job_type=job_type.value,
            artifact_path=artifact_path,
            attributes=attrs,
            created_at=self.clock(),
        )

        if job_type == JobType.metadata_extraction:
            extracted = {
                key: attrs[key] for key in _EXTRACTED_FIELDS if attrs.get(key) is not None
            }
            self.asset_repo.update(asset, **extracted)
        elif job_type == JobType.thumbnail_generation:
            self.asset_repo.update(asset, thumbnail_key=artifact_path)
        elif job_type == JobType.subtitle_generation:
            self._upsert_subtitle(asset, artifact_path, attrs, segments)

        if commit:
            self.db.commit()
        logger.info(
            "artifact recorded",
            asset_id=str(asset.id),
            job_id=str(job_id),
            job_type=job_type.value,
            artifact_path=artifact_path,
        )
        return artifact

    def _upsert_subtitle(
        self,
        asset: VideoAsset,
        file_path: str,
        attrs: dict[str, Any],
        segments: list[dict[str, Any]],
    ) -> Subtitle:
        language = attrs.get("language") or settings.DEFAULT_SUBTITLE_LANGUAGE
        format = SubtitleFormat(attrs.get("format") or settings.DEFAULT_SUBTITLE_FORMAT)

        subtitle = self.asset_repo.get_subtitle(asset.id, language, format)
        if subtitle is None:
            subtitle = Subtitle(asset_id=asset.id, language=language, format=format)
            self.db.add(subtitle)

        subtitle.file_path = file_path
        subtitle.confidence_score = attrs.get("confidence_score")
        subtitle.word_count = attrs.get("word_count")
        subtitle.status = SubtitleStatus.completed
        subtitle.error_message = None
        subtitle.completed_at = self.clock()

        if segments:
            subtitle.segments.clear()
            self.db.flush()
            for order, segment in enumerate(segments):
                subtitle.segments.append(
                    SubtitleSegment(
                        segment_order=order,
                        start_time=segment["start"],
                        end_time=segment["end"],
                        text=segment["text"],
                        confidence=segment.get("confidence"),
                    )
                )
        self.db.flush()
        return subtitle

    def list_renditions(self, asset_id: uuid.UUID) -> list[VideoArtifact]:
        """Transcoded renditions of an asset, oldest first."""
        self.get_asset(asset_id)
        return self.asset_repo.list_artifacts(asset_id, JobType.video_transcoding.value)

    def get_subtitles(
        self,
        asset_id: uuid.UUID,
        language: Optional[str] = None,
        format: Optional[SubtitleFormat] = None,
    ) -> list[Subtitle]:
        self.get_asset(asset_id)
        return self.asset_repo.list_subtitles(asset_id, language, format)

    # ---------- STATUS ----------

    def refresh_processing_status(self, asset_id: uuid.UUID, commit: bool = True) -> VideoAsset:
        """Copy the derived aggregate status onto the stored asset fields."""
        asset = self.asset_repo.get_by_id(asset_id, include_deleted=True)
        if not asset:
            raise NotFoundError("Video asset not found")

        jobs = self.job_repo.list_current_for_asset(asset_id)
        aggregate = derive_processing_status(jobs)
        previous = asset.processing_status

        if aggregate == AggregateStatus.completed:
            processing_status = AssetProcessingStatus.completed
        elif aggregate == AggregateStatus.failed:
            processing_status = AssetProcessingStatus.failed
        elif aggregate == AggregateStatus.processing:
            running = {job.job_type for job in jobs if job.status == JobStatus.processing}
            if running == {JobType.subtitle_generation}:
                processing_status = AssetProcessingStatus.subtitle_generation
            else:
                processing_status = AssetProcessingStatus.transcoding
        else:
            processing_status = AssetProcessingStatus.pending

        updates: dict[str, Any] = {"processing_status": processing_status}
        if asset.upload_status != UploadStatus.uploading:
            if aggregate == AggregateStatus.completed:
                updates["upload_status"] = UploadStatus.completed
            elif aggregate == AggregateStatus.failed:
                updates["upload_status"] = UploadStatus.failed
            elif any(job.status != JobStatus.pending for job in jobs):
                updates["upload_status"] = UploadStatus.processing
        self.asset_repo.update(asset, **updates)

        if processing_status != previous and processing_status in (
            AssetProcessingStatus.completed,
            AssetProcessingStatus.failed,
        ):
            add_outbox_event(
                self.db,
                event_type=f"video.processing.{processing_status.value}",
                aggregate_type="video_asset",
                aggregate_id=asset.id,
                payload={
                    "video_asset_id": str(asset.id),
                    "content_id": asset.content_id,
                    "processing_status": processing_status.value,
                    "job_count": len(jobs),
                },
            )
            logger.info(
                "asset processing finished",
                asset_id=str(asset.id),
                processing_status=processing_status.value,
            )

        if commit:
            self.db.commit()
        return asset

    # ---------- LIFECYCLE ----------

    def reprocess(self, asset_id: uuid.UUID, actor_id: Optional[str] = None) -> list[uuid.UUID]:
        """Seed a fresh job plan for an existing asset."""
        asset = self.get_asset(asset_id)
        if asset.upload_status == UploadStatus.uploading or not asset.storage_key:
            raise InvalidStateError("Asset upload has not finished")
        open_jobs = [
            job for job in self.job_repo.list_for_asset(asset_id) if job.status in OPEN_JOB_STATUSES
        ]
        if open_jobs:
            raise InvalidStateError(
                f"Asset still has {len(open_jobs)} pending or running job(s)"
            )

        queue = JobQueue(self.db, clock=self.clock)
        generation = self.job_repo.current_generation(asset.id) + 1
        job_ids = queue.enqueue_many(
            build_default_plan(asset.id), commit=False, generation=generation
        )
        self.asset_repo.update(
            asset,
            upload_status=UploadStatus.uploaded,
            processing_status=AssetProcessingStatus.pending,
        )
        self.audit.record(
            actor_id=actor_id,
            action="asset.reprocess",
            entity_type="video_asset",
            entity_id=asset.id,
            details={"generation": generation, "job_ids": [str(job_id) for job_id in job_ids]},
        )
        self.db.commit()
        logger.info("asset reprocessing queued", asset_id=str(asset.id), jobs=len(job_ids))
        return job_ids

    def soft_delete_for_content(self, content_id: str, actor_id: Optional[str] = None) -> int:
        """Retire every asset of a content item and cancel its open jobs."""
        assets = self.asset_repo.list_by_content(content_id)
        now = self.clock()
        cancelled = 0
        for asset in assets:
            for job in self.job_repo.list_open_for_assets([asset.id]):
                if self.job_repo.transition(
                    job.id,
                    OPEN_JOB_STATUSES,
                    {"status": JobStatus.cancelled, "completed_at": now},
                ):
                    cancelled += 1
            self.asset_repo.update(asset, deleted_at=now)
            self.audit.record(
                actor_id=actor_id,
                action="asset.deleted",
                entity_type="video_asset",
                entity_id=asset.id,
                details={"content_id": content_id},
            )
        self.db.commit()
        logger.info(
            "content assets deleted",
            content_id=content_id,
            assets=len(assets),
            cancelled_jobs=cancelled,
        )
        return len(assets)

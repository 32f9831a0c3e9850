from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from coursemedia.modules.assets.models import (
    AssetProcessingStatus,
    SubtitleFormat,
    SubtitleStatus,
    UploadStatus,
)
from coursemedia.modules.jobs.models import JobStatus, JobType
from coursemedia.modules.status.service import AggregateStatus
from coursemedia.schemas.common import CamelModel


class UploadResponse(CamelModel):
    video_asset_id: UUID
    workflow_id: UUID
    job_ids: list[UUID]
    message: str


class VideoAssetRead(CamelModel):
    id: UUID
    content_id: str
    original_filename: str
    storage_key: Optional[str] = None
    mime_type: str
    size_bytes: int
    duration_seconds: Optional[float] = None
    container_format: Optional[str] = None
    resolution: Optional[str] = None
    bitrate_kbps: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    thumbnail_key: Optional[str] = None
    upload_status: UploadStatus
    processing_status: AssetProcessingStatus
    uploaded_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class JobRead(CamelModel):
    id: UUID
    asset_id: UUID
    job_type: JobType
    priority: int
    generation: int
    status: JobStatus
    progress: int
    parameters: dict[str, Any]
    result_data: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int
    max_retries: int
    available_at: datetime
    worker_id: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AggregateRead(CamelModel):
    status: AggregateStatus
    progress: int
    total_jobs: int
    counts: dict[str, int]
    poll_interval_seconds: int


class AssetStatusResponse(CamelModel):
    video_asset: VideoAssetRead
    jobs: list[JobRead]
    aggregate: AggregateRead


class RenditionRead(CamelModel):
    job_id: UUID
    artifact_path: str
    resolution: Optional[str] = None
    quality: Optional[str] = None
    format: Optional[str] = None
    bitrate_kbps: Optional[int] = None
    file_size: Optional[int] = None
    created_at: datetime


class SubtitleSegmentRead(CamelModel):
    segment_order: int
    start_time: float
    end_time: float
    text: str
    confidence: Optional[float] = None


class SubtitleRead(CamelModel):
    id: UUID
    language: str
    format: SubtitleFormat
    file_path: Optional[str] = None
    confidence_score: Optional[float] = None
    word_count: Optional[int] = None
    status: SubtitleStatus
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    segments: list[SubtitleSegmentRead] = []


class ReprocessResponse(CamelModel):
    video_asset_id: UUID
    job_ids: list[UUID]


class DeleteVideosResponse(CamelModel):
    content_id: str
    deleted_assets: int


class QueueStatsResponse(CamelModel):
    total: int
    by_status: dict[str, int]
    by_type: dict[str, dict[str, int]]

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coursemedia.core.timeutils import utcnow
from coursemedia.db.base import Base
from coursemedia.db.mixins import TimestampMixin


class UploadStatus(str, enum.Enum):
    uploading = "uploading"
    uploaded = "uploaded"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class AssetProcessingStatus(str, enum.Enum):
    """Stored mirror of the aggregate job status for an asset"""
    pending = "pending"
    transcoding = "transcoding"
    subtitle_generation = "subtitle_generation"
    completed = "completed"
    failed = "failed"


class SubtitleFormat(str, enum.Enum):
    srt = "srt"
    vtt = "vtt"
    json = "json"


class SubtitleStatus(str, enum.Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class VideoAsset(TimestampMixin, Base):
    __tablename__ = "video_assets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # lesson (or other content item) owned by the content-management subsystem
    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Filled by metadata extraction
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    container_format: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bitrate_kbps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    video_codec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    audio_codec: Mapped[str | None] = mapped_column(String(50), nullable=True)

    thumbnail_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    upload_status: Mapped[UploadStatus] = mapped_column(
        Enum(UploadStatus, name="upload_status"),
        default=UploadStatus.uploading,
        server_default=UploadStatus.uploading.value,
        nullable=False,
        index=True,
    )
    processing_status: Mapped[AssetProcessingStatus] = mapped_column(
        Enum(AssetProcessingStatus, name="asset_processing_status"),
        default=AssetProcessingStatus.pending,
        server_default=AssetProcessingStatus.pending.value,
        nullable=False,
    )

    uploaded_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Soft delete, set when the owning content is removed
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    artifacts: Mapped[list["VideoArtifact"]] = relationship(
        "VideoArtifact",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="VideoArtifact.created_at",
    )

    subtitles: Mapped[list["Subtitle"]] = relationship(
        "Subtitle",
        back_populates="asset",
        cascade="all, delete-orphan",
    )


class VideoArtifact(Base):
    """A derived file (rendition, subtitle, thumbnail, probe report) produced by one job."""
    __tablename__ = "video_artifacts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video_assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # one artifact per job; replayed completions hit this constraint
    job_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)

    artifact_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    asset: Mapped["VideoAsset"] = relationship("VideoAsset", back_populates="artifacts")


class Subtitle(TimestampMixin, Base):
    __tablename__ = "subtitles"
    __table_args__ = (
        UniqueConstraint("asset_id", "language", "format", name="uq_subtitles_asset_language_format"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video_assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    language: Mapped[str] = mapped_column(String(10), nullable=False)
    format: Mapped[SubtitleFormat] = mapped_column(
        Enum(SubtitleFormat, name="subtitle_format"), nullable=False
    )
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[SubtitleStatus] = mapped_column(
        Enum(SubtitleStatus, name="subtitle_status"),
        default=SubtitleStatus.processing,
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    asset: Mapped["VideoAsset"] = relationship("VideoAsset", back_populates="subtitles")

    segments: Mapped[list["SubtitleSegment"]] = relationship(
        "SubtitleSegment",
        back_populates="subtitle",
        cascade="all, delete-orphan",
        order_by="SubtitleSegment.segment_order",
    )


class SubtitleSegment(Base):
    __tablename__ = "subtitle_segments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    subtitle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("subtitles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    segment_order: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[float] = mapped_column(Float, nullable=False)
    end_time: Mapped[float] = mapped_column(Float, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    subtitle: Mapped["Subtitle"] = relationship("Subtitle", back_populates="segments")

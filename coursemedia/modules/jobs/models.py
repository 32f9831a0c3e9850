from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from coursemedia.core.timeutils import utcnow
from coursemedia.db.base import Base


class JobType(str, enum.Enum):
    video_transcoding = "video_transcoding"
    subtitle_generation = "subtitle_generation"
    metadata_extraction = "metadata_extraction"
    thumbnail_generation = "thumbnail_generation"


class JobStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


OPEN_JOB_STATUSES = (JobStatus.pending, JobStatus.processing)
FINISHED_JOB_STATUSES = (JobStatus.completed, JobStatus.failed, JobStatus.cancelled)


class ProcessingJob(Base):
    """One unit of background work tied to a video asset."""

    __tablename__ = "processing_jobs"
    __table_args__ = (
        Index("ix_processing_jobs_dispatch", "status", "priority", "enqueue_seq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # Reference only; the Asset Store owns the asset row
    asset_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    job_type: Mapped[JobType] = mapped_column(Enum(JobType, name="job_type"), nullable=False)

    # Job plan this job belongs to; reprocessing seeds the next generation
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enqueue_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.pending,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    parameters: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Not dispatchable before this instant (retry backoff)
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    worker_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_JOB_STATUSES

    def __repr__(self):
        return f"<ProcessingJob(id={self.id}, type={self.job_type.value}, status={self.status.value})>"

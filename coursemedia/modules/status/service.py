"""Consolidated, computed processing status of an asset.

Nothing here writes. Clients poll ``get_status`` every few seconds, so it is
two indexed reads and a pure fold over the job list.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from sqlalchemy.orm import Session

from coursemedia.core.config import settings
from coursemedia.core.constants import MAX_PROGRESS
from coursemedia.core.errors import NotFoundError
from coursemedia.modules.assets.models import VideoAsset
from coursemedia.modules.assets.repository import AssetRepository
from coursemedia.modules.jobs.models import JobStatus, JobType, ProcessingJob
from coursemedia.modules.jobs.repository import JobRepository


class AggregateStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


def derive_processing_status(
    jobs: Iterable[Union[ProcessingJob, JobStatus]],
) -> AggregateStatus:
    statuses = [
        job.status if isinstance(job, ProcessingJob) else JobStatus(job) for job in jobs
    ]
    if not statuses:
        return AggregateStatus.pending
    if all(s == JobStatus.completed for s in statuses):
        return AggregateStatus.completed

    has_open = any(s in (JobStatus.pending, JobStatus.processing) for s in statuses)
    if any(s == JobStatus.failed for s in statuses) and not has_open:
        return AggregateStatus.failed
    if any(s == JobStatus.processing for s in statuses):
        return AggregateStatus.processing
    return AggregateStatus.pending


def overall_progress(jobs: Iterable[ProcessingJob]) -> int:
    """Mean progress of non-cancelled jobs, counting completed ones as done."""
    values = []
    for job in jobs:
        if job.status == JobStatus.cancelled:
            continue
        if job.status == JobStatus.completed:
            values.append(MAX_PROGRESS)
        else:
            values.append(job.progress or 0)
    if not values:
        return 0
    return round(sum(values) / len(values))


_TYPE_ORDER = {job_type: index for index, job_type in enumerate(JobType)}


def group_jobs(jobs: Iterable[ProcessingJob]) -> list[ProcessingJob]:
    """Jobs grouped by type, newest first within each type."""
    return sorted(
        jobs,
        key=lambda job: (
            _TYPE_ORDER[job.job_type],
            -job.created_at.timestamp(),
            -job.enqueue_seq,
        ),
    )


@dataclass
class AggregateSummary:
    status: AggregateStatus
    progress: int
    total_jobs: int
    counts: dict[str, int] = field(default_factory=dict)
    poll_interval_seconds: int = settings.STATUS_POLL_INTERVAL_SECONDS


@dataclass
class AssetStatus:
    video_asset: VideoAsset
    jobs: list[ProcessingJob]
    aggregate: AggregateSummary


def summarize(jobs: list[ProcessingJob]) -> AggregateSummary:
    counts = {status.value: 0 for status in JobStatus}
    for job in jobs:
        counts[job.status.value] += 1
    return AggregateSummary(
        status=derive_processing_status(jobs),
        progress=overall_progress(jobs),
        total_jobs=len(jobs),
        counts=counts,
        poll_interval_seconds=settings.STATUS_POLL_INTERVAL_SECONDS,
    )


class StatusService:
    def __init__(self, db: Session):
        self.db = db
        self.asset_repo = AssetRepository(db)
        self.job_repo = JobRepository(db)

    def get_status(self, asset_id: uuid.UUID) -> AssetStatus:
        asset = self.asset_repo.get_by_id(asset_id)
        if not asset:
            raise NotFoundError("Video asset not found")

        jobs = group_jobs(self.job_repo.list_for_asset(asset_id))
        # jobs superseded by a reprocess stay listed but no longer count
        generation = max((job.generation for job in jobs), default=0)
        current = [job for job in jobs if job.generation == generation]
        return AssetStatus(video_asset=asset, jobs=jobs, aggregate=summarize(current))

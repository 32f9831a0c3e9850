"""Durable priority queue of processing jobs, backed by the processing_jobs table.

Dispatch order is priority (higher first), then enqueue order. A job is only
dispatchable once ``available_at`` has passed, which is how retry backoff is
enforced. Every state change is a conditional UPDATE on the current status,
so concurrent workers, the reaper and API callers cannot both win a race on
the same job.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from coursemedia.core.config import settings
from coursemedia.core.constants import MAX_PROGRESS, MIN_PROGRESS
from coursemedia.core.errors import InvalidStateError, NotFoundError
from coursemedia.core.logging import get_logger
from coursemedia.core.timeutils import next_sequence, utcnow
from coursemedia.modules.audit.service import AuditLog
from coursemedia.modules.jobs.models import (
    FINISHED_JOB_STATUSES,
    OPEN_JOB_STATUSES,
    JobStatus,
    JobType,
    ProcessingJob,
)
from coursemedia.modules.jobs.payloads import JobSpec, parse_parameters, parse_result
from coursemedia.modules.jobs.repository import JobRepository

logger = get_logger(__name__)


def backoff_delay(retry_count: int, base_seconds: float, max_seconds: float) -> float:
    return min(base_seconds * (2 ** retry_count), max_seconds)


class JobQueue:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
    ):
        self.db = db
        self.repo = JobRepository(db)
        self.audit = AuditLog(db)
        self.clock = clock
        self.backoff_base_seconds = (
            settings.JOB_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.JOB_BACKOFF_MAX_SECONDS if backoff_max_seconds is None else backoff_max_seconds
        )

    # ---------- ENQUEUE ----------

    def enqueue(
        self, spec: JobSpec, commit: bool = True, generation: Optional[int] = None
    ) -> uuid.UUID:
        """Add a pending job. Without ``generation`` it joins the asset's current plan."""
        params = parse_parameters(spec.job_type, spec.parameters)
        if generation is None:
            generation = max(self.repo.current_generation(spec.asset_id), 1)
        max_retries = (
            spec.max_retries
            if spec.max_retries is not None
            else settings.max_retries_for(JobType(spec.job_type).value)
        )
        now = self.clock()
        job = self.repo.create(
            asset_id=spec.asset_id,
            job_type=spec.job_type,
            priority=spec.priority,
            generation=generation,
            enqueue_seq=next_sequence(),
            status=JobStatus.pending,
            progress=MIN_PROGRESS,
            parameters=params.model_dump(mode="json"),
            retry_count=0,
            max_retries=max_retries,
            available_at=now,
            created_at=now,
        )
        if commit:
            self.db.commit()

        logger.info(
            "job enqueued",
            job_id=str(job.id),
            asset_id=str(job.asset_id),
            job_type=job.job_type.value,
            priority=job.priority,
        )
        return job.id

    def enqueue_many(
        self,
        specs: Iterable[JobSpec],
        commit: bool = True,
        generation: Optional[int] = None,
    ) -> list[uuid.UUID]:
        job_ids = [self.enqueue(spec, commit=False, generation=generation) for spec in specs]
        if commit:
            self.db.commit()
        return job_ids

    # ---------- DISPATCH ----------

    def dequeue_next(self, worker_id: str) -> Optional[ProcessingJob]:
        """Claim the next dispatchable job for ``worker_id``, or return None."""
        while True:
            candidates = self.repo.next_candidates(self.clock())
            if not candidates:
                self.db.rollback()
                return None

            for job_id in candidates:
                claimed = self.repo.transition(
                    job_id,
                    [JobStatus.pending],
                    {
                        "status": JobStatus.processing,
                        "started_at": self.clock(),
                        "worker_id": worker_id,
                        "progress": MIN_PROGRESS,
                    },
                )
                self.db.commit()
                if claimed:
                    job = self.repo.get_by_id(job_id)
                    self.db.refresh(job)
                    logger.info(
                        "job claimed",
                        job_id=str(job.id),
                        job_type=job.job_type.value,
                        worker_id=worker_id,
                        retry_count=job.retry_count,
                    )
                    return job
            # every candidate was taken by another worker; look again

    def update_progress(self, job_id: uuid.UUID, progress: int) -> bool:
        """Raise progress of a processing job. Ignored in any other state or if lower."""
        progress = max(MIN_PROGRESS, min(MAX_PROGRESS, int(progress)))
        updated = self.repo.raise_progress(job_id, progress)
        self.db.commit()
        return updated

    def is_cancelled(self, job_id: uuid.UUID) -> bool:
        status = self.repo.get_status(job_id)
        self.db.commit()
        return status == JobStatus.cancelled

    # ---------- OUTCOMES ----------

    def complete(
        self,
        job_id: uuid.UUID,
        result_data: Any,
        worker_id: Optional[str] = None,
        commit: bool = True,
    ) -> bool:
        """Mark a processing job completed.

        Replayed completions and completions of a job that was cancelled
        meanwhile are ignored and return False.
        """
        job = self._get_or_404(job_id)
        result = parse_result(job.job_type, result_data)

        completed = self.repo.transition(
            job_id,
            [JobStatus.processing],
            {
                "status": JobStatus.completed,
                "progress": MAX_PROGRESS,
                "result_data": result.model_dump(mode="json"),
                "error_message": None,
                "completed_at": self.clock(),
            },
            worker_id=worker_id,
        )
        if commit:
            self.db.commit()

        if completed:
            logger.info("job completed", job_id=str(job_id), job_type=job.job_type.value)
        else:
            logger.info(
                "completion ignored",
                job_id=str(job_id),
                status=self.repo.get_status(job_id).value,
            )
        return completed

    def fail(
        self,
        job_id: uuid.UUID,
        error_message: str,
        worker_id: Optional[str] = None,
        error_kind: str = "processing",
    ) -> Optional[ProcessingJob]:
        """Record a failed attempt and either schedule a retry or fail terminally.

        Returns the updated job, or None when the job was no longer processing
        (cancelled, already failed by the reaper, claimed by someone else).
        """
        job = self._get_or_404(job_id)
        if job.status != JobStatus.processing:
            logger.info("failure ignored", job_id=str(job_id), status=job.status.value)
            return None

        now = self.clock()
        if job.retry_count + 1 <= job.max_retries:
            retry_count = job.retry_count + 1
            delay = backoff_delay(retry_count, self.backoff_base_seconds, self.backoff_max_seconds)
            values = {
                "status": JobStatus.pending,
                "retry_count": retry_count,
                "error_message": error_message,
                "available_at": now + timedelta(seconds=delay),
                "worker_id": None,
                "progress": MIN_PROGRESS,
            }
        else:
            delay = None
            values = {
                "status": JobStatus.failed,
                "error_message": error_message,
                "completed_at": now,
                "worker_id": None,
            }

        updated = self.repo.transition(
            job_id,
            [JobStatus.processing],
            values,
            worker_id=worker_id,
            retry_count=job.retry_count,
        )
        self.db.commit()
        if not updated:
            logger.info("failure lost race", job_id=str(job_id))
            return None

        self.db.refresh(job)
        log = logger.warning if error_kind == "transient_infra" else logger.error
        if job.status == JobStatus.pending:
            log(
                "job attempt failed, retry scheduled",
                job_id=str(job_id),
                job_type=job.job_type.value,
                error_kind=error_kind,
                error=error_message,
                retry_count=job.retry_count,
                max_retries=job.max_retries,
                retry_in_seconds=delay,
            )
        else:
            log(
                "job failed permanently",
                job_id=str(job_id),
                job_type=job.job_type.value,
                error_kind=error_kind,
                error=error_message,
                retry_count=job.retry_count,
            )
        return job

    def cancel(self, job_id: uuid.UUID, actor_id: Optional[str] = None) -> ProcessingJob:
        job = self._get_or_404(job_id)
        previous = job.status
        if previous not in OPEN_JOB_STATUSES:
            raise InvalidStateError(f"Cannot cancel a job that is {previous.value}")

        cancelled = self.repo.transition(
            job_id,
            OPEN_JOB_STATUSES,
            {"status": JobStatus.cancelled, "completed_at": self.clock()},
        )
        if not cancelled:
            self.db.rollback()
            self.db.refresh(job)
            raise InvalidStateError(f"Cannot cancel a job that is {job.status.value}")

        self.audit.record(
            actor_id=actor_id,
            action="job.cancelled",
            entity_type="processing_job",
            entity_id=job_id,
            from_state=previous.value,
            to_state=JobStatus.cancelled.value,
        )
        self.db.commit()
        self.db.refresh(job)
        logger.info("job cancelled", job_id=str(job_id), previous_status=previous.value)
        return job

    def retry_manually(self, job_id: uuid.UUID, actor_id: Optional[str] = None) -> ProcessingJob:
        """Put a terminally failed job back in the queue with a fresh retry budget."""
        job = self._get_or_404(job_id)
        if job.status != JobStatus.failed:
            raise InvalidStateError(
                f"Only failed jobs can be retried; job is {job.status.value}"
            )
        if job.generation < self.repo.current_generation(job.asset_id):
            raise InvalidStateError("Job belongs to a superseded plan; the asset was reprocessed")

        retried = self.repo.transition(
            job_id,
            [JobStatus.failed],
            {
                "status": JobStatus.pending,
                "retry_count": 0,
                "progress": MIN_PROGRESS,
                "available_at": self.clock(),
                "enqueue_seq": next_sequence(),
                "error_message": None,
                "result_data": None,
                "worker_id": None,
                "started_at": None,
                "completed_at": None,
            },
        )
        if not retried:
            self.db.rollback()
            raise InvalidStateError("Job is no longer failed")

        self.audit.record(
            actor_id=actor_id,
            action="job.manual_retry",
            entity_type="processing_job",
            entity_id=job_id,
            from_state=JobStatus.failed.value,
            to_state=JobStatus.pending.value,
            details={"previous_error": job.error_message},
        )
        self.db.commit()
        self.db.refresh(job)
        logger.info("job manually retried", job_id=str(job_id), actor_id=actor_id)
        return job

    # ---------- READS ----------

    def get_job(self, job_id: uuid.UUID) -> ProcessingJob:
        return self._get_or_404(job_id)

    def list_for_asset(
        self, asset_id: uuid.UUID, job_type: Optional[JobType] = None
    ) -> list[ProcessingJob]:
        return self.repo.list_for_asset(asset_id, job_type)

    def queue_statistics(self) -> dict[str, Any]:
        by_type: dict[str, dict[str, int]] = {
            jt.value: {st.value: 0 for st in JobStatus} for jt in JobType
        }
        totals: dict[str, int] = {st.value: 0 for st in JobStatus}
        for job_type, status, count in self.repo.counts_by_type_and_status():
            by_type[job_type.value][status.value] = count
            totals[status.value] += count
        return {"total": sum(totals.values()), "by_status": totals, "by_type": by_type}

    # ---------- MAINTENANCE ----------

    def reap_stalled(self, max_processing_seconds: Optional[int] = None) -> int:
        return len(self.reap_stalled_jobs(max_processing_seconds))

    def reap_stalled_jobs(self, max_processing_seconds: Optional[int] = None) -> list[ProcessingJob]:
        """Force-fail jobs stuck in processing; they go through the normal retry path."""
        if max_processing_seconds is None:
            max_processing_seconds = settings.JOB_MAX_PROCESSING_SECONDS
        cutoff = self.clock() - timedelta(seconds=max_processing_seconds)

        reaped = []
        for job in self.repo.list_stalled(cutoff):
            message = f"Job exceeded maximum processing time of {max_processing_seconds}s"
            failed = self.fail(job.id, message, error_kind="timeout")
            if failed is not None:
                reaped.append(failed)
        if reaped:
            logger.warning("reaped stalled jobs", count=len(reaped), cutoff=cutoff.isoformat())
        return reaped

    def cleanup_finished(
        self,
        older_than_days: Optional[int] = None,
        retired_asset_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> int:
        """Delete old cancelled jobs, plus every finished job of retired assets.

        Completed and failed jobs of live assets are kept because the
        aggregate status of an asset is derived from them.
        """
        if older_than_days is None:
            older_than_days = settings.JOB_RETENTION_DAYS
        cutoff = self.clock() - timedelta(days=older_than_days)

        deleted = self.repo.delete_finished_before(cutoff, [JobStatus.cancelled])
        if retired_asset_ids:
            deleted += self.repo.delete_finished_before(
                cutoff, FINISHED_JOB_STATUSES, asset_ids=retired_asset_ids
            )
        self.db.commit()
        logger.info("cleaned up finished jobs", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    def _get_or_404(self, job_id: uuid.UUID) -> ProcessingJob:
        job = self.repo.get_by_id(job_id)
        if not job:
            raise NotFoundError("Job not found")
        return job

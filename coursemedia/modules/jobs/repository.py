from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from coursemedia.modules.jobs.models import JobStatus, JobType, ProcessingJob


class JobRepository:
    """Repository for ProcessingJob rows.

    State-changing helpers are conditional UPDATEs that return whether a row
    matched, so two sessions racing on the same job never both win.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, job_id: uuid.UUID) -> Optional[ProcessingJob]:
        """Get job by ID."""
        return (
            self.db.query(ProcessingJob)
            .populate_existing()
            .filter(ProcessingJob.id == job_id)
            .first()
        )

    def get_status(self, job_id: uuid.UUID) -> Optional[JobStatus]:
        """Read the current status straight from the database, bypassing the identity map."""
        return self.db.execute(
            select(ProcessingJob.status).where(ProcessingJob.id == job_id)
        ).scalar_one_or_none()

    def create(self, **fields: Any) -> ProcessingJob:
        job = ProcessingJob(**fields)
        self.db.add(job)
        self.db.flush()
        return job

    def list_for_asset(
        self, asset_id: uuid.UUID, job_type: Optional[JobType] = None
    ) -> list[ProcessingJob]:
        """Jobs for an asset, newest first."""
        query = (
            self.db.query(ProcessingJob)
            .populate_existing()
            .filter(ProcessingJob.asset_id == asset_id)
        )
        if job_type:
            query = query.filter(ProcessingJob.job_type == job_type)
        return query.order_by(
            ProcessingJob.created_at.desc(), ProcessingJob.enqueue_seq.desc()
        ).all()

    def current_generation(self, asset_id: uuid.UUID) -> int:
        """Latest job plan generation of an asset, 0 when it has no jobs."""
        return self.db.execute(
            select(func.max(ProcessingJob.generation)).where(ProcessingJob.asset_id == asset_id)
        ).scalar() or 0

    def list_current_for_asset(self, asset_id: uuid.UUID) -> list[ProcessingJob]:
        """Jobs of the asset's latest plan generation, newest first."""
        generation = self.current_generation(asset_id)
        return (
            self.db.query(ProcessingJob)
            .populate_existing()
            .filter(
                ProcessingJob.asset_id == asset_id,
                ProcessingJob.generation == generation,
            )
            .order_by(ProcessingJob.created_at.desc(), ProcessingJob.enqueue_seq.desc())
            .all()
        )

    def list_open_for_assets(self, asset_ids: Iterable[uuid.UUID]) -> list[ProcessingJob]:
        asset_ids = list(asset_ids)
        if not asset_ids:
            return []
        return (
            self.db.query(ProcessingJob)
            .populate_existing()
            .filter(
                ProcessingJob.asset_id.in_(asset_ids),
                ProcessingJob.status.in_([JobStatus.pending, JobStatus.processing]),
            )
            .all()
        )

    def next_candidates(self, now: datetime, limit: int = 5) -> list[uuid.UUID]:
        """Ids of dispatchable jobs in dispatch order."""
        return list(
            self.db.execute(
                select(ProcessingJob.id)
                .where(
                    ProcessingJob.status == JobStatus.pending,
                    ProcessingJob.available_at <= now,
                )
                .order_by(ProcessingJob.priority.desc(), ProcessingJob.enqueue_seq.asc())
                .limit(limit)
            ).scalars()
        )

    def list_stalled(self, started_before: datetime) -> list[ProcessingJob]:
        return (
            self.db.query(ProcessingJob)
            .populate_existing()
            .filter(
                ProcessingJob.status == JobStatus.processing,
                ProcessingJob.started_at < started_before,
            )
            .all()
        )

    def transition(
        self,
        job_id: uuid.UUID,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
        **conditions: Any,
    ) -> bool:
        """Apply ``values`` only if the job is still in one of ``from_statuses``.

        Extra keyword conditions are equality checks on other columns
        (e.g. ``worker_id``). Returns True when the row was updated.
        """
        stmt = update(ProcessingJob).where(
            ProcessingJob.id == job_id,
            ProcessingJob.status.in_(list(from_statuses)),
        )
        for column, expected in conditions.items():
            if expected is not None:
                stmt = stmt.where(getattr(ProcessingJob, column) == expected)
        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def raise_progress(self, job_id: uuid.UUID, progress: int) -> bool:
        result = self.db.execute(
            update(ProcessingJob)
            .where(
                ProcessingJob.id == job_id,
                ProcessingJob.status == JobStatus.processing,
                ProcessingJob.progress < progress,
            )
            .values(progress=progress)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def counts_by_type_and_status(self) -> list[tuple[JobType, JobStatus, int]]:
        rows = self.db.execute(
            select(ProcessingJob.job_type, ProcessingJob.status, func.count(ProcessingJob.id))
            .group_by(ProcessingJob.job_type, ProcessingJob.status)
        ).all()
        return [(row[0], row[1], row[2]) for row in rows]

    def delete_finished_before(
        self,
        cutoff: datetime,
        statuses: Iterable[JobStatus],
        asset_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> int:
        stmt = delete(ProcessingJob).where(
            ProcessingJob.status.in_(list(statuses)),
            ProcessingJob.completed_at < cutoff,
        )
        if asset_ids is not None:
            stmt = stmt.where(ProcessingJob.asset_id.in_(list(asset_ids)))
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

# coursemedia/modules/jobs/routes.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coursemedia.core.constants import ROLE_ADMIN, ROLE_INSTRUCTOR
from coursemedia.core.security import Identity
from coursemedia.db.deps import get_current_identity, get_db, require_roles
from coursemedia.modules.assets.service import AssetService
from coursemedia.modules.jobs.models import JobType
from coursemedia.modules.jobs.queue import JobQueue
from coursemedia.schemas.video import JobRead, QueueStatsResponse

router = APIRouter(
    prefix="/video-content/jobs",
    tags=["jobs"],
    dependencies=[Depends(get_current_identity)],
)


@router.get("/queue/stats", response_model=QueueStatsResponse)
def queue_stats(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    return JobQueue(db).queue_statistics()


@router.get("/content/{asset_id}", response_model=List[JobRead])
def list_asset_jobs(
    asset_id: UUID,
    job_type: Optional[JobType] = Query(default=None, alias="jobType"),
    db: Session = Depends(get_db),
):
    AssetService(db).get_asset(asset_id)
    return JobQueue(db).list_for_asset(asset_id, job_type)


@router.get("/{job_id}", response_model=JobRead)
def get_job(job_id: UUID, db: Session = Depends(get_db)):
    return JobQueue(db).get_job(job_id)


@router.post("/{job_id}/retry", response_model=JobRead)
def retry_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    """Requeue a failed job with a fresh retry budget (409 unless failed)."""
    queue = JobQueue(db)
    job = queue.retry_manually(job_id, actor_id=identity.user_id)
    AssetService(db).refresh_processing_status(job.asset_id)
    return job


@router.post("/{job_id}/cancel", response_model=JobRead)
def cancel_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    queue = JobQueue(db)
    job = queue.cancel(job_id, actor_id=identity.user_id)
    AssetService(db).refresh_processing_status(job.asset_id)
    return job

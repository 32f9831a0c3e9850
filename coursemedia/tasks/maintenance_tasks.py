from __future__ import annotations

from typing import Optional

from coursemedia.celery_app import celery_app
from coursemedia.core.logging import get_logger
from coursemedia.db.session import SessionLocal
from coursemedia.modules.assets.repository import AssetRepository
from coursemedia.modules.assets.service import AssetService
from coursemedia.modules.jobs.queue import JobQueue

logger = get_logger(__name__)


@celery_app.task(name="coursemedia.tasks.maintenance_tasks.reap_stalled_jobs")
def reap_stalled_jobs() -> dict:
    """Force-fail jobs that have been processing too long, then refresh their assets."""
    db = SessionLocal()
    try:
        reaped = JobQueue(db).reap_stalled_jobs()
        assets = AssetService(db)
        for asset_id in {job.asset_id for job in reaped}:
            assets.refresh_processing_status(asset_id)
        return {"reaped": len(reaped)}
    finally:
        db.close()


@celery_app.task(name="coursemedia.tasks.maintenance_tasks.cleanup_finished_jobs")
def cleanup_finished_jobs(older_than_days: Optional[int] = None) -> dict:
    db = SessionLocal()
    try:
        retired = AssetRepository(db).list_deleted_ids()
        deleted = JobQueue(db).cleanup_finished(older_than_days, retired_asset_ids=retired)
        return {"deleted": deleted}
    finally:
        db.close()

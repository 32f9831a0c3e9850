from coursemedia.core.env import load_env
load_env()

from celery import Celery

from coursemedia.core.config import settings
from coursemedia.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)

celery_app = Celery(
    "coursemedia",
    broker=settings.RABBITMQ_URL,
    backend=settings.REDIS_URL,
    include=["coursemedia.tasks.outbox_tasks", "coursemedia.tasks.maintenance_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "reap-stalled-jobs": {
        "task": "coursemedia.tasks.maintenance_tasks.reap_stalled_jobs",
        "schedule": float(settings.REAPER_INTERVAL_SECONDS),
    },
    "publish-pending-outbox": {
        "task": "coursemedia.tasks.outbox_tasks.publish_pending_outbox",
        "schedule": float(settings.OUTBOX_PUBLISH_INTERVAL_SECONDS),
    },
    "cleanup-finished-jobs": {
        "task": "coursemedia.tasks.maintenance_tasks.cleanup_finished_jobs",
        "schedule": float(settings.JOB_CLEANUP_INTERVAL_SECONDS),
    },
}

if __name__ == "__main__":
    celery_app.start()

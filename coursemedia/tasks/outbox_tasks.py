from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from coursemedia.celery_app import celery_app
from coursemedia.core.config import settings
from coursemedia.core.logging import get_logger
from coursemedia.db.session import SessionLocal
from coursemedia.integrations.kafka.producer import flush_producer, publish_json
from coursemedia.models.outbox_event import OutboxEvent, OutboxStatus

logger = get_logger(__name__)

TOPIC_MAP = {
    "video.processing.completed": "coursemedia.video-events",
    "video.processing.failed": "coursemedia.video-events",
    "workflow.status_changed": "coursemedia.workflow-events",
}


def publish_batch(db: Session, batch_size: int = 50) -> dict:
    """Publish pending outbox rows to Kafka, oldest first.

    A row that fails to publish stays pending until it has used up
    OUTBOX_MAX_ATTEMPTS, then it is dead-lettered as failed.
    """
    events = (
        db.query(OutboxEvent)
        .filter(
            OutboxEvent.status == OutboxStatus.pending,
            OutboxEvent.event_type.in_(list(TOPIC_MAP.keys())),
            func.coalesce(OutboxEvent.attempts, 0) < settings.OUTBOX_MAX_ATTEMPTS,
        )
        .order_by(OutboxEvent.created_at.asc())
        .limit(batch_size)
        .all()
    )

    published = 0
    failed = 0
    for evt in events:
        topic = TOPIC_MAP[evt.event_type]
        try:
            publish_json(
                topic=topic,
                key=str(evt.aggregate_id),
                value={
                    "event_id": str(evt.id),
                    "event_type": evt.event_type,
                    "aggregate_type": evt.aggregate_type,
                    "aggregate_id": str(evt.aggregate_id),
                    "payload": evt.payload,
                    "created_at": evt.created_at.isoformat() if evt.created_at else None,
                },
            )
            evt.status = OutboxStatus.published
            evt.last_error = None
            evt.attempts = (evt.attempts or 0) + 1
            db.commit()
            published += 1
        except Exception as e:
            evt.attempts = (evt.attempts or 0) + 1
            evt.last_error = str(e)[:500]
            if evt.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
                evt.status = OutboxStatus.failed
                failed += 1
                logger.error("outbox event dead-lettered", event_id=str(evt.id), error=str(e))
            db.commit()

    if published:
        flush_producer()
    logger.info("outbox batch published", published=published, failed=failed, checked=len(events))
    return {"published": published, "failed": failed, "checked": len(events)}


@celery_app.task(
    name="coursemedia.tasks.outbox_tasks.publish_pending_outbox",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 5},
)
def publish_pending_outbox(self, batch_size: int = 50) -> dict:
    db: Session = SessionLocal()
    try:
        return publish_batch(db, batch_size)
    finally:
        db.close()

"""
Tests for publishing outbox events to Kafka.
"""
import pytest

from coursemedia.core.config import settings
from coursemedia.models.outbox_event import OutboxEvent, OutboxStatus
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import WorkflowStatus
from coursemedia.modules.workflows.service import WorkflowService
from coursemedia.tasks import outbox_tasks


@pytest.fixture
def sent(monkeypatch):
    messages = []
    monkeypatch.setattr(
        outbox_tasks,
        "publish_json",
        lambda topic, key, value: messages.append((topic, key, value)),
    )
    monkeypatch.setattr(outbox_tasks, "flush_producer", lambda: 0)
    return messages


@pytest.fixture
def status_change(db):
    service = WorkflowService(db)
    workflow = service.create_workflow("lesson-42", ContentType.lesson)
    service.set_status(workflow.id, WorkflowStatus.review, actor_id="instructor-1")
    return workflow


class TestPublishBatch:
    def test_pending_events_are_published_once(self, db, sent, status_change):
        result = outbox_tasks.publish_batch(db)
        again = outbox_tasks.publish_batch(db)

        assert result == {"published": 1, "failed": 0, "checked": 1}
        assert again["checked"] == 0
        topic, key, value = sent[0]
        assert topic == "coursemedia.workflow-events"
        assert key == str(status_change.id)
        assert value["event_type"] == "workflow.status_changed"
        assert value["payload"]["to_status"] == "review"
        event = db.query(OutboxEvent).one()
        assert event.status == OutboxStatus.published
        assert event.attempts == 1

    def test_failing_event_is_dead_lettered(self, db, monkeypatch, status_change):
        def broken(topic, key, value):
            raise RuntimeError("broker unavailable")

        monkeypatch.setattr(outbox_tasks, "publish_json", broken)
        monkeypatch.setattr(settings, "OUTBOX_MAX_ATTEMPTS", 2)

        first = outbox_tasks.publish_batch(db)
        event = db.query(OutboxEvent).one()
        assert first["failed"] == 0
        assert event.status == OutboxStatus.pending
        assert event.last_error == "broker unavailable"

        second = outbox_tasks.publish_batch(db)
        assert second["failed"] == 1
        assert db.query(OutboxEvent).one().status == OutboxStatus.failed

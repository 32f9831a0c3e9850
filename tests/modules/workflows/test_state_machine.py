"""
Tests for the editorial workflow state machine.
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from coursemedia.core.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from coursemedia.models.outbox_event import OutboxEvent
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import ALLOWED_TRANSITIONS, WorkflowStatus
from coursemedia.modules.workflows.service import WorkflowService

LESSON = ContentType.lesson
DRAFT, REVIEW, APPROVED, PUBLISHED, ARCHIVED = (
    WorkflowStatus.draft,
    WorkflowStatus.review,
    WorkflowStatus.approved,
    WorkflowStatus.published,
    WorkflowStatus.archived,
)


@pytest.fixture
def service(db, clock):
    return WorkflowService(db, clock=clock)


@pytest.fixture
def workflow(service):
    return service.create_workflow("lesson-42", LESSON, actor_id="instructor-1")


class TestCreate:
    def test_new_workflow_starts_in_draft(self, service, workflow):
        assert workflow.status == DRAFT
        assert workflow.version == 1
        assert [e.action for e in service.timeline(workflow.id)] == ["workflow.created"]

    def test_existing_workflow_is_reused(self, service, workflow):
        again = service.create_workflow("lesson-42", LESSON, actor_id="instructor-2")

        assert again.id == workflow.id
        assert len(service.timeline(workflow.id)) == 1

    def test_lookup_by_content(self, service, workflow):
        assert service.get_by_content(LESSON, "lesson-42").id == workflow.id
        with pytest.raises(NotFoundError):
            service.get_by_content(ContentType.course, "lesson-42")


class TestTransitions:
    """The transition table."""

    def test_draft_cannot_jump_to_published(self, service, workflow):
        with pytest.raises(InvalidTransitionError):
            service.set_status(workflow.id, PUBLISHED)

        assert service.get_workflow(workflow.id).status == DRAFT

    def test_full_path_to_published(self, service, workflow, clock):
        for status in (REVIEW, APPROVED, PUBLISHED):
            clock.advance(minutes=1)
            workflow = service.set_status(workflow.id, status, actor_id="admin-1")

        assert workflow.status == PUBLISHED
        assert workflow.published_at == clock.now
        assert workflow.version == 4

    def test_published_at_is_set_once(self, service, workflow, clock):
        for status in (REVIEW, APPROVED, PUBLISHED):
            service.set_status(workflow.id, status)
        first_published = service.get_workflow(workflow.id).published_at

        clock.advance(days=1)
        service.set_status(workflow.id, PUBLISHED)
        service.set_status(workflow.id, APPROVED)
        service.set_status(workflow.id, PUBLISHED)

        assert service.get_workflow(workflow.id).published_at == first_published

    def test_same_status_is_a_no_op(self, service, workflow):
        service.set_status(workflow.id, DRAFT, notes="nothing to do")

        assert service.get_workflow(workflow.id).version == 1
        assert len(service.timeline(workflow.id)) == 1

    @pytest.mark.parametrize("start", [DRAFT, REVIEW, APPROVED, PUBLISHED])
    def test_archive_from_anywhere_is_terminal(self, service, workflow, clock, start):
        path = {
            DRAFT: [],
            REVIEW: [REVIEW],
            APPROVED: [REVIEW, APPROVED],
            PUBLISHED: [REVIEW, APPROVED, PUBLISHED],
        }[start]
        for status in path:
            service.set_status(workflow.id, status)

        archived = service.set_status(workflow.id, ARCHIVED)

        assert archived.archived_at == clock.now
        for target in (DRAFT, REVIEW, APPROVED, PUBLISHED):
            with pytest.raises(InvalidTransitionError):
                service.set_status(workflow.id, target)

    def test_table_has_no_exit_from_archived(self):
        assert ALLOWED_TRANSITIONS[ARCHIVED] == frozenset()
        assert all(ARCHIVED in targets for s, targets in ALLOWED_TRANSITIONS.items() if s != ARCHIVED)

    def test_unknown_status_is_a_validation_error(self, service, workflow):
        with pytest.raises(ValidationError):
            service.set_status(workflow.id, "deleted")

    def test_unknown_workflow(self, service):
        with pytest.raises(NotFoundError):
            service.set_status(uuid.uuid4(), REVIEW)

    def test_change_is_audited_and_published_as_event(self, db, service, workflow):
        service.set_status(workflow.id, REVIEW, actor_id="instructor-1", notes="ready for review")

        entry = service.timeline(workflow.id)[-1]
        assert (entry.action, entry.from_state, entry.to_state) == (
            "workflow.status_changed",
            "draft",
            "review",
        )
        assert entry.actor_id == "instructor-1"
        assert entry.notes == "ready for review"

        events = db.scalars(select(OutboxEvent)).all()
        assert len(events) == 1
        assert events[0].event_type == "workflow.status_changed"
        assert events[0].payload["from_status"] == "draft"
        assert events[0].payload["to_status"] == "review"
        assert events[0].payload["content_id"] == "lesson-42"

    def test_rejected_change_leaves_no_trace(self, db, service, workflow):
        with pytest.raises(InvalidTransitionError):
            service.set_status(workflow.id, APPROVED)

        assert len(service.timeline(workflow.id)) == 1
        assert db.scalars(select(OutboxEvent)).all() == []


class TestConcurrency:
    """Optimistic locking on the workflow row."""

    def test_expected_version_mismatch(self, service, workflow):
        service.set_status(workflow.id, REVIEW)

        with pytest.raises(InvalidTransitionError):
            service.set_status(workflow.id, APPROVED, expected_version=1)

        assert service.set_status(workflow.id, APPROVED, expected_version=2).status == APPROVED

    def test_stale_writer_loses(self, db, service, workflow, session_factory):
        """A second session commits first; the stale first session gets a conflict."""
        other = WorkflowService(session_factory())
        other.set_status(workflow.id, REVIEW, actor_id="instructor-2")

        with pytest.raises(InvalidTransitionError):
            service.set_status(workflow.id, ARCHIVED, actor_id="admin-1")

        current = service.get_workflow(workflow.id)
        assert current.status == REVIEW
        assert current.version == 2
        assert [e.action for e in service.timeline(workflow.id)] == [
            "workflow.created",
            "workflow.status_changed",
        ]


class TestReview:
    """Reviewer assignment, notes and review queues."""

    def test_assign_requires_review_status(self, service, workflow):
        with pytest.raises(InvalidStateError):
            service.assign_reviewer(workflow.id, "reviewer-1")

    def test_assign_and_add_notes(self, service, workflow, clock):
        service.set_status(workflow.id, REVIEW)
        deadline = clock.now + timedelta(days=3)

        assigned = service.assign_reviewer(workflow.id, "reviewer-1", actor_id="admin-1", deadline=deadline)
        noted = service.add_review_notes(workflow.id, "reviewer-1", "Audio drops at 03:10")

        assert assigned.current_reviewer_id == "reviewer-1"
        assert assigned.review_deadline == deadline
        assert noted.review_notes == "Audio drops at 03:10"
        assert [e.action for e in service.timeline(workflow.id)][-2:] == [
            "workflow.reviewer_assigned",
            "workflow.review_notes",
        ]

    def test_only_assigned_reviewer_adds_notes(self, service, workflow):
        service.set_status(workflow.id, REVIEW)
        service.assign_reviewer(workflow.id, "reviewer-1")

        with pytest.raises(PermissionDeniedError):
            service.add_review_notes(workflow.id, "reviewer-2", "looks fine")

    def test_publishing_clears_reviewer(self, service, workflow):
        service.set_status(workflow.id, REVIEW)
        service.assign_reviewer(workflow.id, "reviewer-1")
        service.set_status(workflow.id, APPROVED)

        published = service.set_status(workflow.id, PUBLISHED)

        assert published.current_reviewer_id is None

    def test_pending_and_overdue_reviews(self, service, clock):
        ids = {}
        for content_id, days in [("lesson-1", 5), ("lesson-2", -2), ("lesson-3", None)]:
            wf = service.create_workflow(content_id, LESSON)
            service.set_status(wf.id, REVIEW)
            deadline = clock.now + timedelta(days=days) if days is not None else None
            service.assign_reviewer(wf.id, "reviewer-1", deadline=deadline)
            ids[content_id] = wf.id

        pending = service.pending_reviews("reviewer-1")
        overdue = service.overdue_reviews()

        assert [wf.content_id for wf in pending] == ["lesson-2", "lesson-1", "lesson-3"]
        assert service.pending_reviews("reviewer-2") == []
        assert [(wf.id, days) for wf, days in overdue] == [(ids["lesson-2"], 2)]


class TestBulkAndQueries:
    def test_bulk_update_reports_each_item(self, service):
        service.create_workflow("lesson-1", LESSON)
        archived = service.create_workflow("lesson-2", LESSON)
        service.set_status(archived.id, ARCHIVED)

        results = service.bulk_update_status(
            ["lesson-1", "lesson-2", "lesson-9"], LESSON, REVIEW, actor_id="admin-1"
        )

        assert results[0] == {"content_id": "lesson-1", "success": True, "status": "review"}
        assert results[1]["success"] is False
        assert "archived to review" in results[1]["error"]
        assert results[2] == {"content_id": "lesson-9", "success": False, "error": "Workflow not found"}
        assert service.get_by_content(LESSON, "lesson-1").status == REVIEW

    def test_list_by_status_and_statistics(self, service):
        service.create_workflow("lesson-1", LESSON)
        service.create_workflow("lesson-2", LESSON)
        course = service.create_workflow("course-1", ContentType.course)
        service.set_status(course.id, REVIEW)

        drafts = service.list_by_status(DRAFT, content_type=LESSON)
        stats = service.statistics()

        assert sorted(wf.content_id for wf in drafts) == ["lesson-1", "lesson-2"]
        assert stats == [
            {"status": "review", "content_type": "course", "count": 1},
            {"status": "draft", "content_type": "lesson", "count": 2},
        ]

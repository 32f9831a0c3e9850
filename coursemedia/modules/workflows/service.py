"""Editorial workflow state machine.

Every accepted status change writes an audit entry and a
``workflow.status_changed`` outbox event in the same transaction as the
change itself. Concurrent writers are serialised by the row version: the
loser of a race gets InvalidTransitionError instead of silently
overwriting the winner.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from coursemedia.core.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from coursemedia.core.logging import get_logger
from coursemedia.core.timeutils import utcnow
from coursemedia.models.outbox_event import add_outbox_event
from coursemedia.modules.audit.models import AuditLogEntry
from coursemedia.modules.audit.service import AuditLog
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import Workflow, WorkflowStatus
from coursemedia.modules.workflows.repository import WorkflowRepository

logger = get_logger(__name__)

ENTITY_TYPE = "workflow"


def _parse_status(value: Any) -> WorkflowStatus:
    try:
        return WorkflowStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown workflow status: {value!r}")


class WorkflowService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.repo = WorkflowRepository(db)
        self.audit = AuditLog(db)

    def create_workflow(
        self,
        content_id: str,
        content_type: ContentType,
        actor_id: Optional[str] = None,
        commit: bool = True,
    ) -> Workflow:
        """Start a content item in draft, or return its existing workflow."""
        existing = self.repo.get_by_content(content_id, content_type)
        if existing:
            return existing

        workflow = self.repo.create(
            content_id=content_id,
            content_type=content_type,
            status=WorkflowStatus.draft,
            created_by=actor_id,
        )
        self.audit.record(
            actor_id=actor_id,
            action="workflow.created",
            entity_type=ENTITY_TYPE,
            entity_id=workflow.id,
            to_state=WorkflowStatus.draft.value,
            notes="Content created",
        )
        if commit:
            self.db.commit()
        logger.info(
            "workflow created",
            workflow_id=str(workflow.id),
            content_id=content_id,
            content_type=ContentType(content_type).value,
        )
        return workflow

    def get_workflow(self, workflow_id: uuid.UUID) -> Workflow:
        workflow = self.repo.get_by_id(workflow_id)
        if not workflow:
            raise NotFoundError("Workflow not found")
        return workflow

    def get_by_content(self, content_type: ContentType, content_id: str) -> Workflow:
        workflow = self.repo.get_by_content(content_id, content_type)
        if not workflow:
            raise NotFoundError("Workflow not found")
        return workflow

    # ---------- TRANSITIONS ----------

    def set_status(
        self,
        workflow_id: uuid.UUID,
        new_status: WorkflowStatus,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Workflow:
        new_status = _parse_status(new_status)
        workflow = self.get_workflow(workflow_id)

        if expected_version is not None and workflow.version != expected_version:
            raise InvalidTransitionError(
                f"Workflow was changed by someone else (version {workflow.version}, "
                f"expected {expected_version})"
            )

        old_status = workflow.status
        if new_status == old_status:
            return workflow

        if not workflow.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid status transition from {old_status.value} to {new_status.value}"
            )

        now = self.clock()
        workflow.status = new_status
        if new_status == WorkflowStatus.published:
            if workflow.published_at is None:
                workflow.published_at = now
            workflow.current_reviewer_id = None
        elif new_status == WorkflowStatus.archived:
            workflow.archived_at = now
            workflow.current_reviewer_id = None

        self.audit.record(
            actor_id=actor_id,
            action="workflow.status_changed",
            entity_type=ENTITY_TYPE,
            entity_id=workflow.id,
            from_state=old_status.value,
            to_state=new_status.value,
            notes=notes,
        )
        add_outbox_event(
            self.db,
            event_type="workflow.status_changed",
            aggregate_type=ENTITY_TYPE,
            aggregate_id=workflow.id,
            payload={
                "workflow_id": str(workflow.id),
                "content_id": workflow.content_id,
                "content_type": workflow.content_type.value,
                "from_status": old_status.value,
                "to_status": new_status.value,
                "changed_by": actor_id,
                "notes": notes,
                "changed_at": now.isoformat(),
            },
        )
        self._commit_or_conflict(workflow_id)

        logger.info(
            "workflow status changed",
            workflow_id=str(workflow.id),
            from_status=old_status.value,
            to_status=new_status.value,
            actor_id=actor_id,
        )
        return workflow

    def _commit_or_conflict(self, workflow_id: uuid.UUID) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("workflow update lost a concurrent race", workflow_id=str(workflow_id))
            raise InvalidTransitionError(
                "Workflow was changed by someone else; reload and try again"
            )

    def bulk_update_status(
        self,
        content_ids: list[str],
        content_type: ContentType,
        new_status: WorkflowStatus,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Apply one status to many content items; failures are reported per item."""
        results = []
        for content_id in content_ids:
            try:
                workflow = self.get_by_content(content_type, content_id)
                workflow = self.set_status(workflow.id, new_status, actor_id, notes)
                results.append(
                    {"content_id": content_id, "success": True, "status": workflow.status.value}
                )
            except (NotFoundError, InvalidStateError, ValidationError) as exc:
                self.db.rollback()
                results.append({"content_id": content_id, "success": False, "error": exc.message})
        return results

    # ---------- REVIEW ----------

    def assign_reviewer(
        self,
        workflow_id: uuid.UUID,
        reviewer_id: str,
        actor_id: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Workflow:
        workflow = self.get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.review:
            raise InvalidStateError("Content must be in review status to assign a reviewer")

        workflow.current_reviewer_id = reviewer_id
        workflow.review_deadline = deadline
        self.audit.record(
            actor_id=actor_id,
            action="workflow.reviewer_assigned",
            entity_type=ENTITY_TYPE,
            entity_id=workflow.id,
            from_state=workflow.status.value,
            to_state=workflow.status.value,
            notes="Reviewer assigned",
            details={
                "reviewer_id": reviewer_id,
                "deadline": deadline.isoformat() if deadline else None,
            },
        )
        self._commit_or_conflict(workflow_id)
        logger.info("reviewer assigned", workflow_id=str(workflow.id), reviewer_id=reviewer_id)
        return workflow

    def add_review_notes(self, workflow_id: uuid.UUID, reviewer_id: str, notes: str) -> Workflow:
        workflow = self.get_workflow(workflow_id)
        if workflow.current_reviewer_id != reviewer_id:
            raise PermissionDeniedError("Only the assigned reviewer can add review notes")

        workflow.review_notes = notes
        self.audit.record(
            actor_id=reviewer_id,
            action="workflow.review_notes",
            entity_type=ENTITY_TYPE,
            entity_id=workflow.id,
            notes=notes,
        )
        self._commit_or_conflict(workflow_id)
        return workflow

    # ---------- QUERIES ----------

    def list_by_status(
        self,
        status: WorkflowStatus,
        content_type: Optional[ContentType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Workflow]:
        return self.repo.list_by_status(_parse_status(status), content_type, limit, offset)

    def pending_reviews(self, reviewer_id: str, limit: int = 50, offset: int = 0) -> list[Workflow]:
        return self.repo.list_pending_reviews(reviewer_id, limit, offset)

    def overdue_reviews(self) -> list[tuple[Workflow, int]]:
        """Reviews past their deadline with the number of whole days overdue."""
        now = self.clock()
        return [
            (workflow, (now - workflow.review_deadline).days)
            for workflow in self.repo.list_overdue(now)
        ]

    def statistics(self) -> list[dict[str, Any]]:
        return [
            {"status": status.value, "content_type": content_type.value, "count": count}
            for status, content_type, count in sorted(
                self.repo.counts_by_status_and_type(),
                key=lambda row: (row[1].value, row[0].value),
            )
        ]

    def timeline(self, workflow_id: uuid.UUID) -> list[AuditLogEntry]:
        self.get_workflow(workflow_id)
        return self.audit.for_entity(ENTITY_TYPE, workflow_id)

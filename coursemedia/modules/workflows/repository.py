from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import Workflow, WorkflowStatus


class WorkflowRepository:
    """Repository for Workflow entity."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, workflow_id: uuid.UUID) -> Optional[Workflow]:
        """Get workflow by ID."""
        return self.db.query(Workflow).filter(Workflow.id == workflow_id).first()

    def get_by_content(self, content_id: str, content_type: ContentType) -> Optional[Workflow]:
        return (
            self.db.query(Workflow)
            .filter(Workflow.content_id == content_id, Workflow.content_type == content_type)
            .first()
        )

    def create(self, **fields) -> Workflow:
        workflow = Workflow(**fields)
        self.db.add(workflow)
        self.db.flush()
        return workflow

    def list_by_status(
        self,
        status: WorkflowStatus,
        content_type: Optional[ContentType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Workflow]:
        query = self.db.query(Workflow).filter(Workflow.status == status)
        if content_type:
            query = query.filter(Workflow.content_type == content_type)
        return query.order_by(Workflow.updated_at.desc()).offset(offset).limit(limit).all()

    def list_pending_reviews(self, reviewer_id: str, limit: int = 50, offset: int = 0) -> list[Workflow]:
        return (
            self.db.query(Workflow)
            .filter(
                Workflow.current_reviewer_id == reviewer_id,
                Workflow.status == WorkflowStatus.review,
            )
            .order_by(
                Workflow.review_deadline.is_(None),
                Workflow.review_deadline.asc(),
                Workflow.updated_at.desc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_overdue(self, now: datetime) -> list[Workflow]:
        return (
            self.db.query(Workflow)
            .filter(
                Workflow.status == WorkflowStatus.review,
                Workflow.review_deadline.is_not(None),
                Workflow.review_deadline < now,
            )
            .order_by(Workflow.review_deadline.asc())
            .all()
        )

    def counts_by_status_and_type(self) -> list[tuple[WorkflowStatus, ContentType, int]]:
        rows = (
            self.db.query(Workflow.status, Workflow.content_type, func.count(Workflow.id))
            .group_by(Workflow.status, Workflow.content_type)
            .all()
        )
        return [(row[0], row[1], row[2]) for row in rows]

    def search(
        self,
        status: Optional[WorkflowStatus] = None,
        content_type: Optional[ContentType] = None,
        content_ids: Optional[Iterable[str]] = None,
        limit: int = 50,
    ) -> list[Workflow]:
        query = self.db.query(Workflow)
        if status:
            query = query.filter(Workflow.status == status)
        if content_type:
            query = query.filter(Workflow.content_type == content_type)
        if content_ids is not None:
            query = query.filter(Workflow.content_id.in_(list(content_ids)))
        return query.order_by(Workflow.updated_at.desc()).limit(limit).all()

# coursemedia/modules/workflows/routes.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coursemedia.core.constants import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_REVIEWER
from coursemedia.core.security import Identity
from coursemedia.db.deps import get_current_identity, get_db, require_roles
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import WorkflowStatus
from coursemedia.modules.workflows.service import WorkflowService
from coursemedia.schemas.workflow import (
    AssignReviewer,
    BulkStatusUpdate,
    BulkUpdateItem,
    OverdueReviewRead,
    ReviewNotes,
    StatusUpdate,
    TimelineEntryRead,
    WorkflowRead,
    WorkflowStatRead,
    WorkflowWithHistory,
)

router = APIRouter(
    prefix="/video-content/workflow",
    tags=["workflow"],
    dependencies=[Depends(get_current_identity)],
)

# Static paths are registered before the two-segment content lookup so they
# are not captured by it.


@router.get("/by-status/{status}", response_model=List[WorkflowRead])
def list_by_status(
    status: WorkflowStatus,
    content_type: Optional[ContentType] = Query(default=None, alias="contentType"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return WorkflowService(db).list_by_status(status, content_type, limit, offset)


@router.get("/pending-reviews", response_model=List[WorkflowRead])
def pending_reviews(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Reviews assigned to the caller, nearest deadline first."""
    return WorkflowService(db).pending_reviews(identity.user_id, limit, offset)


@router.get("/overdue-reviews", response_model=List[OverdueReviewRead])
def overdue_reviews(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    return [
        OverdueReviewRead(workflow=WorkflowRead.model_validate(workflow), days_overdue=days)
        for workflow, days in WorkflowService(db).overdue_reviews()
    ]


@router.get("/stats", response_model=List[WorkflowStatRead])
def workflow_stats(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    return WorkflowService(db).statistics()


@router.post("/bulk-update", response_model=List[BulkUpdateItem])
def bulk_update(
    payload: BulkStatusUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    return WorkflowService(db).bulk_update_status(
        payload.content_ids,
        payload.content_type,
        payload.status,
        actor_id=identity.user_id,
        notes=payload.notes,
    )


@router.put("/{workflow_id}/status", response_model=WorkflowRead)
def set_status(
    workflow_id: UUID,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_REVIEWER, ROLE_ADMIN)),
):
    """Move content through the editorial workflow (409 on an illegal transition)."""
    return WorkflowService(db).set_status(
        workflow_id,
        payload.status,
        actor_id=identity.user_id,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )


@router.post("/{workflow_id}/assign-reviewer", response_model=WorkflowRead)
def assign_reviewer(
    workflow_id: UUID,
    payload: AssignReviewer,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    return WorkflowService(db).assign_reviewer(
        workflow_id, payload.reviewer_id, actor_id=identity.user_id, deadline=payload.deadline
    )


@router.post("/{workflow_id}/review-notes", response_model=WorkflowRead)
def add_review_notes(
    workflow_id: UUID,
    payload: ReviewNotes,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return WorkflowService(db).add_review_notes(workflow_id, identity.user_id, payload.notes)


@router.get("/{workflow_id}/timeline", response_model=List[TimelineEntryRead])
def workflow_timeline(workflow_id: UUID, db: Session = Depends(get_db)):
    return WorkflowService(db).timeline(workflow_id)


@router.get("/{content_type}/{content_id}", response_model=WorkflowWithHistory)
def get_workflow_by_content(
    content_type: ContentType,
    content_id: str,
    db: Session = Depends(get_db),
):
    service = WorkflowService(db)
    workflow = service.get_by_content(content_type, content_id)
    return WorkflowWithHistory(
        workflow=WorkflowRead.model_validate(workflow),
        history=[TimelineEntryRead.model_validate(entry) for entry in service.timeline(workflow.id)],
    )

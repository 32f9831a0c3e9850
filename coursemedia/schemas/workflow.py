from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from coursemedia.modules.content.models import ContentType
from coursemedia.modules.workflows.models import WorkflowStatus
from coursemedia.schemas.common import CamelModel


class WorkflowRead(CamelModel):
    id: UUID
    content_id: str
    content_type: ContentType
    status: WorkflowStatus
    current_reviewer_id: Optional[str] = None
    review_notes: Optional[str] = None
    review_deadline: Optional[datetime] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_by: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class StatusUpdate(CamelModel):
    status: WorkflowStatus
    notes: Optional[str] = None
    # optimistic concurrency: reject when the workflow moved on since it was read
    expected_version: Optional[int] = None


class AssignReviewer(CamelModel):
    reviewer_id: str = Field(min_length=1)
    deadline: Optional[datetime] = None


class ReviewNotes(CamelModel):
    notes: str = Field(min_length=1)


class BulkStatusUpdate(CamelModel):
    content_ids: list[str] = Field(min_length=1)
    content_type: ContentType = ContentType.lesson
    status: WorkflowStatus
    notes: Optional[str] = None


class BulkUpdateItem(CamelModel):
    content_id: str
    success: bool
    status: Optional[WorkflowStatus] = None
    error: Optional[str] = None


class OverdueReviewRead(CamelModel):
    workflow: WorkflowRead
    days_overdue: int


class WorkflowStatRead(CamelModel):
    status: WorkflowStatus
    content_type: ContentType
    count: int


class TimelineEntryRead(CamelModel):
    id: UUID
    actor_id: Optional[str] = None
    action: str
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    notes: Optional[str] = None
    details: dict[str, Any] = {}
    created_at: datetime


class WorkflowWithHistory(CamelModel):
    workflow: WorkflowRead
    history: list[TimelineEntryRead]

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from coursemedia.db.base import Base
from coursemedia.db.mixins import TimestampMixin
from coursemedia.modules.content.models import ContentType


class WorkflowStatus(str, enum.Enum):
    draft = "draft"
    review = "review"
    approved = "approved"
    published = "published"
    archived = "archived"


# archived is reachable from every other status and has no way out
ALLOWED_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.draft: frozenset({WorkflowStatus.review, WorkflowStatus.archived}),
    WorkflowStatus.review: frozenset(
        {WorkflowStatus.draft, WorkflowStatus.approved, WorkflowStatus.archived}
    ),
    WorkflowStatus.approved: frozenset(
        {WorkflowStatus.review, WorkflowStatus.published, WorkflowStatus.archived}
    ),
    WorkflowStatus.published: frozenset({WorkflowStatus.approved, WorkflowStatus.archived}),
    WorkflowStatus.archived: frozenset(),
}


class Workflow(TimestampMixin, Base):
    __tablename__ = "content_workflows"
    __table_args__ = (
        UniqueConstraint("content_id", "content_type", name="uq_content_workflows_content"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, name="content_type"), nullable=False
    )

    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, name="workflow_status"),
        nullable=False,
        default=WorkflowStatus.draft,
        server_default=WorkflowStatus.draft.value,
        index=True,
    )

    current_reviewer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # optimistic lock; every UPDATE checks and bumps it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def can_transition_to(self, new_status: WorkflowStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

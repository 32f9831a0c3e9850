"""Upload intake: store the original, register the asset and seed its jobs.

Everything the upload creates in the database (asset, jobs, workflow,
metadata, tags, audit entry) is committed together. If any of it fails the
stored original is removed again, so a rejected upload leaves nothing behind.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Optional

from sqlalchemy.orm import Session

from coursemedia.core.constants import ORIGINALS_PREFIX
from coursemedia.core.logging import get_logger
from coursemedia.core.timeutils import utcnow
from coursemedia.integrations.storage import StorageClient
from coursemedia.modules.assets.service import AssetService, FileMetadata
from coursemedia.modules.audit.service import AuditLog
from coursemedia.modules.content.models import ContentType
from coursemedia.modules.content.service import ContentService, TagInput
from coursemedia.modules.jobs.plan import build_default_plan
from coursemedia.modules.jobs.queue import JobQueue
from coursemedia.modules.workflows.service import WorkflowService

logger = get_logger(__name__)


@dataclass
class UploadRequest:
    content_id: str
    file_metadata: FileMetadata
    fileobj: BinaryIO
    uploaded_by: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    tags: list[TagInput] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadResult:
    video_asset_id: uuid.UUID
    workflow_id: uuid.UUID
    job_ids: list[uuid.UUID]


def original_key(asset_id: uuid.UUID, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return f"{ORIGINALS_PREFIX}/{asset_id}{ext}"


class UploadIntake:
    def __init__(
        self,
        db: Session,
        storage: StorageClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.storage = storage
        self.assets = AssetService(db, clock=clock)
        self.queue = JobQueue(db, clock=clock)
        self.workflows = WorkflowService(db, clock=clock)
        self.content = ContentService(db)
        self.audit = AuditLog(db)

    def accept(self, request: UploadRequest) -> UploadResult:
        # rejects bad input before anything is stored
        asset = self.assets.create_asset(
            request.content_id,
            request.file_metadata,
            uploaded_by=request.uploaded_by,
            commit=False,
        )
        key = original_key(asset.id, request.file_metadata.filename)

        stored = False
        try:
            size = self.storage.upload_fileobj(
                request.fileobj, key, content_type=request.file_metadata.mime_type
            )
            stored = True
            self.assets.mark_uploaded(asset.id, key, {"size_bytes": size}, commit=False)

            job_ids = self.queue.enqueue_many(build_default_plan(asset.id), commit=False)
            workflow = self.workflows.create_workflow(
                request.content_id,
                ContentType.lesson,
                actor_id=request.uploaded_by,
                commit=False,
            )
            self._apply_content_details(request)

            self.audit.record(
                actor_id=request.uploaded_by,
                action="asset.uploaded",
                entity_type="video_asset",
                entity_id=asset.id,
                to_state="uploaded",
                details={
                    "content_id": request.content_id,
                    "filename": request.file_metadata.filename,
                    "size_bytes": size,
                    "job_ids": [str(job_id) for job_id in job_ids],
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            if stored:
                self.storage.delete_object(key)
            raise

        logger.info(
            "video upload accepted",
            asset_id=str(asset.id),
            content_id=request.content_id,
            workflow_id=str(workflow.id),
            jobs=len(job_ids),
        )
        return UploadResult(video_asset_id=asset.id, workflow_id=workflow.id, job_ids=job_ids)

    def _apply_content_details(self, request: UploadRequest) -> None:
        details = dict(request.metadata)
        if request.title:
            details["title"] = request.title
        if request.description:
            details["description"] = request.description
        if details:
            self.content.add_metadata_many(
                ContentType.lesson, request.content_id, details, commit=False
            )
        if request.tags:
            self.content.add_tags(ContentType.lesson, request.content_id, request.tags, commit=False)

# coursemedia/modules/assets/routes.py
import json
import os
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from coursemedia.core.constants import ROLE_ADMIN, ROLE_INSTRUCTOR
from coursemedia.core.errors import ValidationError
from coursemedia.core.security import Identity
from coursemedia.db.deps import get_current_identity, get_db, get_storage, require_roles
from coursemedia.integrations.storage import StorageClient
from coursemedia.modules.assets.intake import UploadIntake, UploadRequest
from coursemedia.modules.assets.models import SubtitleFormat
from coursemedia.modules.assets.service import AssetService, FileMetadata
from coursemedia.modules.content.service import TagInput
from coursemedia.modules.status.service import StatusService
from coursemedia.schemas.video import (
    AssetStatusResponse,
    DeleteVideosResponse,
    RenditionRead,
    ReprocessResponse,
    SubtitleRead,
    UploadResponse,
)

router = APIRouter(
    prefix="/video-content",
    tags=["video-content"],
    dependencies=[Depends(get_current_identity)],
)


def _upload_size(video: UploadFile) -> int:
    if video.size is not None:
        return video.size
    video.file.seek(0, os.SEEK_END)
    size = video.file.tell()
    video.file.seek(0)
    return size


def _parse_json_field(raw: Optional[str], name: str, expected: type) -> Any:
    if raw is None or raw == "":
        return expected()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError(f"{name} must be valid JSON")
    if not isinstance(value, expected):
        raise ValidationError(f"{name} must be a JSON {expected.__name__}")
    return value


def _parse_tags(raw: Optional[str]) -> list[TagInput]:
    tags = []
    for item in _parse_json_field(raw, "tags", list):
        if isinstance(item, str):
            item = {"name": item}
        elif not isinstance(item, dict):
            raise ValidationError("tags must be strings or objects with a name")
        try:
            tags.append(TagInput.model_validate(item))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid tag {item!r}: {exc.errors()[0]['msg']}") from exc
    return tags


@router.post(
    "/upload/{content_id}",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
)
def upload_video(
    content_id: str,
    video: UploadFile = File(...),
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None),
    metadata: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage),
    identity: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    """Store a lesson video and queue its processing jobs."""
    request = UploadRequest(
        content_id=content_id,
        file_metadata=FileMetadata(
            filename=video.filename or "upload",
            mime_type=video.content_type or "",
            size_bytes=_upload_size(video),
        ),
        fileobj=video.file,
        uploaded_by=identity.user_id,
        title=title,
        description=description,
        tags=_parse_tags(tags),
        metadata=_parse_json_field(metadata, "metadata", dict),
    )
    result = UploadIntake(db, storage).accept(request)
    return UploadResponse(
        video_asset_id=result.video_asset_id,
        workflow_id=result.workflow_id,
        job_ids=result.job_ids,
        message="Video uploaded successfully, processing started",
    )


@router.get("/status/{video_asset_id}", response_model=AssetStatusResponse)
def get_processing_status(video_asset_id: UUID, db: Session = Depends(get_db)):
    """Asset, its jobs and the aggregate processing status."""
    return AssetStatusResponse.model_validate(StatusService(db).get_status(video_asset_id))


@router.get("/qualities/{video_asset_id}", response_model=List[RenditionRead])
def list_qualities(video_asset_id: UUID, db: Session = Depends(get_db)):
    artifacts = AssetService(db).list_renditions(video_asset_id)
    return [
        RenditionRead(
            job_id=artifact.job_id,
            artifact_path=artifact.artifact_path,
            created_at=artifact.created_at,
            **{
                key: artifact.attributes.get(key)
                for key in ("resolution", "quality", "format", "bitrate_kbps", "file_size")
            },
        )
        for artifact in artifacts
    ]


@router.get("/subtitles/{video_asset_id}", response_model=List[SubtitleRead])
def list_subtitles(
    video_asset_id: UUID,
    language: Optional[str] = Query(default=None),
    format: Optional[SubtitleFormat] = Query(default=None),
    db: Session = Depends(get_db),
):
    return AssetService(db).get_subtitles(video_asset_id, language, format)


@router.post("/assets/{video_asset_id}/reprocess", response_model=ReprocessResponse)
def reprocess_asset(
    video_asset_id: UUID,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    job_ids = AssetService(db).reprocess(video_asset_id, actor_id=identity.user_id)
    return ReprocessResponse(video_asset_id=video_asset_id, job_ids=job_ids)


@router.delete("/content/{content_id}/videos", response_model=DeleteVideosResponse)
def delete_content_videos(
    content_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(ROLE_ADMIN)),
):
    """Retire every video of a content item and cancel its outstanding jobs."""
    deleted = AssetService(db).soft_delete_for_content(content_id, actor_id=identity.user_id)
    return DeleteVideosResponse(content_id=content_id, deleted_assets=deleted)

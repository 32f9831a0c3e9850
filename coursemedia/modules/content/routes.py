# coursemedia/modules/content/routes.py
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from coursemedia.core.constants import ROLE_ADMIN, ROLE_INSTRUCTOR
from coursemedia.core.security import Identity
from coursemedia.db.deps import get_current_identity, get_db, require_roles
from coursemedia.modules.content.models import ContentMetadata, ContentType
from coursemedia.modules.content.service import ContentService, TagInput, decode_value
from coursemedia.schemas.content import (
    MetadataRead,
    MetadataUpdate,
    MetadataWrite,
    SearchRequest,
    TagRead,
    TagsWrite,
)
from coursemedia.schemas.workflow import WorkflowRead

router = APIRouter(
    prefix="/video-content",
    tags=["content"],
    dependencies=[Depends(get_current_identity)],
)


def _metadata_read(entry: ContentMetadata) -> MetadataRead:
    return MetadataRead(
        id=entry.id,
        key=entry.key,
        value=decode_value(entry),
        value_type=entry.value_type,
        is_public=entry.is_public,
        is_searchable=entry.is_searchable,
    )


@router.post(
    "/metadata/{content_type}/{content_id}",
    response_model=List[MetadataRead],
    status_code=status.HTTP_201_CREATED,
)
def add_metadata(
    content_type: ContentType,
    content_id: str,
    payload: MetadataWrite,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    service = ContentService(db)
    entries = [
        service.add_metadata(
            content_type,
            content_id,
            key,
            value,
            is_public=payload.is_public,
            is_searchable=payload.is_searchable,
            commit=False,
        )
        for key, value in payload.metadata.items()
    ]
    db.commit()
    return [_metadata_read(entry) for entry in entries]


@router.put("/metadata/{metadata_id}", response_model=MetadataRead)
def update_metadata(
    metadata_id: UUID,
    payload: MetadataUpdate,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    entry = ContentService(db).update_metadata(
        metadata_id,
        payload.value,
        is_public=payload.is_public,
        is_searchable=payload.is_searchable,
    )
    return _metadata_read(entry)


@router.get("/metadata/{content_type}/{content_id}", response_model=List[MetadataRead])
def get_metadata(
    content_type: ContentType,
    content_id: str,
    include_private: bool = Query(default=False, alias="includePrivate"),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    # private keys are only visible to staff
    include_private = include_private and identity.has_any_role((ROLE_INSTRUCTOR, ROLE_ADMIN))
    entries = ContentService(db).get_metadata(content_type, content_id, include_private)
    return [_metadata_read(entry) for entry in entries]


@router.post(
    "/tags/{content_type}/{content_id}",
    response_model=List[TagRead],
    status_code=status.HTTP_201_CREATED,
)
def add_tags(
    content_type: ContentType,
    content_id: str,
    payload: TagsWrite,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
):
    """Add tags; names already present are ignored. Returns only the new tags."""
    tags = [TagInput(**tag.model_dump()) for tag in payload.tags]
    return ContentService(db).add_tags(content_type, content_id, tags)


@router.get("/tags/{content_type}/{content_id}", response_model=List[TagRead])
def get_tags(content_type: ContentType, content_id: str, db: Session = Depends(get_db)):
    return ContentService(db).get_tags(content_type, content_id)


@router.post("/search", response_model=List[WorkflowRead])
def search_content(payload: SearchRequest, db: Session = Depends(get_db)):
    return ContentService(db).search(
        status=payload.status,
        content_type=payload.content_type,
        metadata=payload.metadata,
        tags=payload.tags,
        limit=payload.limit,
    )

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.orm import Session

from coursemedia.modules.content.models import ContentMetadata, ContentTag, ContentType


class ContentMetadataRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, metadata_id: uuid.UUID) -> Optional[ContentMetadata]:
        return self.db.get(ContentMetadata, metadata_id)

    def get(self, content_type: ContentType, content_id: str, key: str) -> Optional[ContentMetadata]:
        return (
            self.db.query(ContentMetadata)
            .filter(
                ContentMetadata.content_type == content_type,
                ContentMetadata.content_id == content_id,
                ContentMetadata.key == key,
            )
            .first()
        )

    def list_for_content(
        self, content_type: ContentType, content_id: str, include_private: bool = False
    ) -> list[ContentMetadata]:
        query = self.db.query(ContentMetadata).filter(
            ContentMetadata.content_type == content_type,
            ContentMetadata.content_id == content_id,
        )
        if not include_private:
            query = query.filter(ContentMetadata.is_public.is_(True))
        return query.order_by(ContentMetadata.key.asc()).all()

    def content_ids_matching(self, content_type: Optional[ContentType], key: str, value: str) -> set[str]:
        query = self.db.query(ContentMetadata.content_id).filter(
            ContentMetadata.key == key,
            ContentMetadata.value.ilike(f"%{value}%"),
            ContentMetadata.is_searchable.is_(True),
        )
        if content_type:
            query = query.filter(ContentMetadata.content_type == content_type)
        return {row[0] for row in query.all()}

    def add(self, entry: ContentMetadata) -> ContentMetadata:
        self.db.add(entry)
        self.db.flush()
        return entry


class ContentTagRepository:
    def __init__(self, db: Session):
        self.db = db

    def existing_names(self, content_type: ContentType, content_id: str) -> set[str]:
        rows = (
            self.db.query(ContentTag.name)
            .filter(ContentTag.content_type == content_type, ContentTag.content_id == content_id)
            .all()
        )
        return {row[0] for row in rows}

    def list_for_content(self, content_type: ContentType, content_id: str) -> list[ContentTag]:
        return (
            self.db.query(ContentTag)
            .filter(ContentTag.content_type == content_type, ContentTag.content_id == content_id)
            .order_by(ContentTag.weight.desc(), ContentTag.name.asc())
            .all()
        )

    def content_ids_with_tag(self, content_type: Optional[ContentType], name: str) -> set[str]:
        query = self.db.query(ContentTag.content_id).filter(ContentTag.name == name)
        if content_type:
            query = query.filter(ContentTag.content_type == content_type)
        return {row[0] for row in query.all()}

    def add(self, tag: ContentTag) -> ContentTag:
        self.db.add(tag)
        self.db.flush()
        return tag

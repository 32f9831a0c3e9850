from __future__ import annotations

import json
import uuid
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coursemedia.core.errors import NotFoundError, ValidationError
from coursemedia.core.logging import get_logger
from coursemedia.modules.content.models import (
    ContentMetadata,
    ContentTag,
    ContentType,
    MetadataValueType,
)
from coursemedia.modules.content.repository import ContentMetadataRepository, ContentTagRepository
from coursemedia.modules.workflows.models import Workflow, WorkflowStatus
from coursemedia.modules.workflows.repository import WorkflowRepository

logger = get_logger(__name__)


class TagInput(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: str = "general"
    weight: float = 1.0


def encode_value(value: Any) -> tuple[Optional[str], MetadataValueType]:
    """Store any JSON value as text plus the type needed to read it back."""
    if value is None:
        return None, MetadataValueType.string
    if isinstance(value, bool):
        return ("true" if value else "false"), MetadataValueType.boolean
    if isinstance(value, (int, float)):
        return str(value), MetadataValueType.number
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True), MetadataValueType.json
    return str(value), MetadataValueType.string


def decode_value(entry: ContentMetadata) -> Any:
    if entry.value is None:
        return None
    if entry.value_type == MetadataValueType.boolean:
        return entry.value == "true"
    if entry.value_type == MetadataValueType.number:
        number = float(entry.value)
        return int(number) if number.is_integer() and "." not in entry.value else number
    if entry.value_type == MetadataValueType.json:
        return json.loads(entry.value)
    return entry.value


class ContentService:
    """Metadata and tags attached to content items, plus search over them."""

    def __init__(self, db: Session):
        self.db = db
        self.metadata_repo = ContentMetadataRepository(db)
        self.tag_repo = ContentTagRepository(db)
        self.workflow_repo = WorkflowRepository(db)

    # ---------- METADATA ----------

    def add_metadata(
        self,
        content_type: ContentType,
        content_id: str,
        key: str,
        value: Any,
        is_public: bool = True,
        is_searchable: bool = True,
        commit: bool = True,
    ) -> ContentMetadata:
        """Upsert one key; a repeated key replaces the previous value."""
        if not key or not key.strip():
            raise ValidationError("Metadata key must not be empty")
        key = key.strip()
        stored, value_type = encode_value(value)

        entry = self.metadata_repo.get(content_type, content_id, key)
        if entry is None:
            entry = self.metadata_repo.add(
                ContentMetadata(
                    content_type=content_type,
                    content_id=content_id,
                    key=key,
                    value=stored,
                    value_type=value_type,
                    is_public=is_public,
                    is_searchable=is_searchable,
                )
            )
        else:
            entry.value = stored
            entry.value_type = value_type
            entry.is_public = is_public
            entry.is_searchable = is_searchable
            self.db.flush()

        if commit:
            self.db.commit()
        return entry

    def update_metadata(
        self,
        metadata_id: uuid.UUID,
        value: Any,
        is_public: Optional[bool] = None,
        is_searchable: Optional[bool] = None,
        commit: bool = True,
    ) -> ContentMetadata:
        """Replace the value of an existing entry; visibility flags change only when given."""
        entry = self.metadata_repo.get_by_id(metadata_id)
        if entry is None:
            raise NotFoundError("Metadata entry not found")

        entry.value, entry.value_type = encode_value(value)
        if is_public is not None:
            entry.is_public = is_public
        if is_searchable is not None:
            entry.is_searchable = is_searchable
        self.db.flush()

        if commit:
            self.db.commit()
        logger.info("metadata updated", metadata_id=str(metadata_id), key=entry.key)
        return entry

    def add_metadata_many(
        self,
        content_type: ContentType,
        content_id: str,
        metadata: dict[str, Any],
        commit: bool = True,
    ) -> list[ContentMetadata]:
        entries = [
            self.add_metadata(content_type, content_id, key, value, commit=False)
            for key, value in metadata.items()
        ]
        if commit:
            self.db.commit()
        logger.info(
            "metadata saved",
            content_type=ContentType(content_type).value,
            content_id=content_id,
            keys=len(entries),
        )
        return entries

    def get_metadata(
        self, content_type: ContentType, content_id: str, include_private: bool = False
    ) -> list[ContentMetadata]:
        return self.metadata_repo.list_for_content(content_type, content_id, include_private)

    # ---------- TAGS ----------

    def add_tags(
        self,
        content_type: ContentType,
        content_id: str,
        tags: Iterable[TagInput],
        commit: bool = True,
    ) -> list[ContentTag]:
        """Insert new tags; names already on the content are skipped, not errors."""
        existing = self.tag_repo.existing_names(content_type, content_id)
        created = []
        for tag in tags:
            if isinstance(tag, dict):
                tag = TagInput(**tag)
            name = tag.name.strip()
            if not name or name in existing:
                continue
            existing.add(name)
            created.append(
                self.tag_repo.add(
                    ContentTag(
                        content_type=content_type,
                        content_id=content_id,
                        name=name,
                        category=tag.category or "general",
                        weight=tag.weight,
                    )
                )
            )
        if commit:
            self.db.commit()
        logger.info(
            "tags saved",
            content_type=ContentType(content_type).value,
            content_id=content_id,
            added=len(created),
        )
        return created

    def get_tags(self, content_type: ContentType, content_id: str) -> list[ContentTag]:
        """Tags ordered by weight (heaviest first), then name."""
        return self.tag_repo.list_for_content(content_type, content_id)

    # ---------- SEARCH ----------

    def search(
        self,
        status: Optional[WorkflowStatus] = None,
        content_type: Optional[ContentType] = None,
        metadata: Optional[dict[str, Any]] = None,
        tags: Optional[list[str]] = None,
        limit: int = 50,
    ) -> list[Workflow]:
        """Workflows whose content matches every metadata pair and any of the tags."""
        content_ids: Optional[set[str]] = None

        for key, value in (metadata or {}).items():
            stored, _ = encode_value(value)
            matches = self.metadata_repo.content_ids_matching(content_type, key, stored or "")
            content_ids = matches if content_ids is None else content_ids & matches

        if tags:
            tagged: set[str] = set()
            for name in tags:
                tagged |= self.tag_repo.content_ids_with_tag(content_type, name)
            content_ids = tagged if content_ids is None else content_ids & tagged

        if content_ids is not None and not content_ids:
            return []
        return self.workflow_repo.search(
            status=status,
            content_type=content_type,
            content_ids=content_ids,
            limit=limit,
        )

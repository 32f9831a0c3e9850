from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Enum, Float, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from coursemedia.db.base import Base
from coursemedia.db.mixins import TimestampMixin


class ContentType(str, enum.Enum):
    course = "course"
    lesson = "lesson"
    video = "video"


class MetadataValueType(str, enum.Enum):
    string = "string"
    number = "number"
    boolean = "boolean"
    json = "json"


class ContentMetadata(TimestampMixin, Base):
    __tablename__ = "content_metadata"
    __table_args__ = (
        UniqueConstraint("content_type", "content_id", "key", name="uq_content_metadata_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, name="content_type"), nullable=False
    )
    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    key: Mapped[str] = mapped_column(String(100), nullable=False)
    # stored as text; value_type says how to read it back
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_type: Mapped[MetadataValueType] = mapped_column(
        Enum(MetadataValueType, name="metadata_value_type"),
        nullable=False,
        default=MetadataValueType.string,
    )

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_searchable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ContentTag(TimestampMixin, Base):
    __tablename__ = "content_tags"
    __table_args__ = (
        UniqueConstraint("content_type", "content_id", "name", name="uq_content_tags_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, name="content_type"), nullable=False
    )
    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

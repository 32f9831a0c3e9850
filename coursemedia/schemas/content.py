from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from coursemedia.modules.content.models import ContentType, MetadataValueType
from coursemedia.modules.workflows.models import WorkflowStatus
from coursemedia.schemas.common import CamelModel


class MetadataWrite(CamelModel):
    metadata: dict[str, Any] = Field(min_length=1)
    is_public: bool = True
    is_searchable: bool = True


class MetadataUpdate(CamelModel):
    value: Any = Field(...)
    is_public: Optional[bool] = None
    is_searchable: Optional[bool] = None


class MetadataRead(CamelModel):
    id: UUID
    key: str
    value: Any = None
    value_type: MetadataValueType
    is_public: bool
    is_searchable: bool


class TagWrite(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    category: str = "general"
    weight: float = 1.0


class TagsWrite(CamelModel):
    tags: list[TagWrite] = Field(min_length=1)


class TagRead(CamelModel):
    name: str
    category: str
    weight: float


class SearchRequest(CamelModel):
    status: Optional[WorkflowStatus] = None
    content_type: Optional[ContentType] = None
    metadata: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    limit: int = Field(default=50, ge=1, le=200)

# coursemedia/models/__init__.py
"""Import every model so Base.metadata knows all tables."""

from .outbox_event import OutboxEvent
from coursemedia.modules.assets.models import VideoAsset, VideoArtifact, Subtitle, SubtitleSegment
from coursemedia.modules.audit.models import AuditLogEntry
from coursemedia.modules.content.models import ContentMetadata, ContentTag
from coursemedia.modules.jobs.models import ProcessingJob
from coursemedia.modules.workflows.models import Workflow

__all__ = [
    "OutboxEvent",
    "VideoAsset",
    "VideoArtifact",
    "Subtitle",
    "SubtitleSegment",
    "AuditLogEntry",
    "ContentMetadata",
    "ContentTag",
    "ProcessingJob",
    "Workflow",
]

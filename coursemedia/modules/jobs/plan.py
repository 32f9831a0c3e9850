"""The set of jobs seeded for a freshly uploaded (or reprocessed) asset."""

from __future__ import annotations

import uuid
from typing import Optional

from coursemedia.core.config import settings
from coursemedia.core.constants import (
    PRIORITY_METADATA_EXTRACTION,
    PRIORITY_SUBTITLE_GENERATION,
    PRIORITY_THUMBNAIL_GENERATION,
    PRIORITY_VIDEO_TRANSCODING,
)
from coursemedia.modules.jobs.payloads import (
    JobSpec,
    MetadataExtractionParameters,
    SubtitleParameters,
    ThumbnailParameters,
    TranscodeParameters,
)


def build_default_plan(
    asset_id: uuid.UUID,
    profiles: Optional[list[dict]] = None,
    subtitle_language: Optional[str] = None,
    subtitle_format: Optional[str] = None,
) -> list[JobSpec]:
    """Metadata, thumbnail, one transcode per profile and one subtitle track."""
    if profiles is None:
        profiles = settings.TRANSCODE_PROFILES

    specs = [
        JobSpec.for_job(asset_id, MetadataExtractionParameters(), priority=PRIORITY_METADATA_EXTRACTION),
        JobSpec.for_job(
            asset_id,
            ThumbnailParameters(
                time_offset=settings.THUMBNAIL_TIME_OFFSET,
                size=settings.THUMBNAIL_SIZE,
            ),
            priority=PRIORITY_THUMBNAIL_GENERATION,
        ),
    ]
    for profile in profiles:
        specs.append(
            JobSpec.for_job(
                asset_id,
                TranscodeParameters(**profile),
                priority=PRIORITY_VIDEO_TRANSCODING,
            )
        )
    specs.append(
        JobSpec.for_job(
            asset_id,
            SubtitleParameters(
                language=subtitle_language or settings.DEFAULT_SUBTITLE_LANGUAGE,
                format=subtitle_format or settings.DEFAULT_SUBTITLE_FORMAT,
            ),
            priority=PRIORITY_SUBTITLE_GENERATION,
        )
    )
    return specs

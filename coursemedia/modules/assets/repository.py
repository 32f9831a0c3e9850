from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from coursemedia.modules.assets.models import (
    Subtitle,
    SubtitleFormat,
    VideoArtifact,
    VideoAsset,
)


class AssetRepository:
    """Repository for VideoAsset and its derived records."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, asset_id: uuid.UUID, include_deleted: bool = False) -> Optional[VideoAsset]:
        """Get asset by ID."""
        query = self.db.query(VideoAsset).filter(VideoAsset.id == asset_id)
        if not include_deleted:
            query = query.filter(VideoAsset.deleted_at.is_(None))
        return query.first()

    def list_by_content(self, content_id: str) -> list[VideoAsset]:
        """Live assets of a content item, newest first."""
        return (
            self.db.query(VideoAsset)
            .filter(VideoAsset.content_id == content_id, VideoAsset.deleted_at.is_(None))
            .order_by(VideoAsset.created_at.desc())
            .all()
        )

    def list_deleted_ids(self) -> list[uuid.UUID]:
        return [
            row[0]
            for row in self.db.query(VideoAsset.id).filter(VideoAsset.deleted_at.is_not(None)).all()
        ]

    def create(self, **fields) -> VideoAsset:
        """Create a new asset."""
        asset = VideoAsset(**fields)
        self.db.add(asset)
        self.db.flush()
        return asset

    def update(self, asset: VideoAsset, **kwargs) -> VideoAsset:
        """Update asset fields."""
        for key, value in kwargs.items():
            if hasattr(asset, key):
                setattr(asset, key, value)
        self.db.flush()
        return asset

    # ---------- ARTIFACTS ----------

    def get_artifact_by_job(self, job_id: uuid.UUID) -> Optional[VideoArtifact]:
        return self.db.query(VideoArtifact).filter(VideoArtifact.job_id == job_id).first()

    def create_artifact(self, **fields) -> VideoArtifact:
        artifact = VideoArtifact(**fields)
        self.db.add(artifact)
        self.db.flush()
        return artifact

    def list_artifacts(self, asset_id: uuid.UUID, job_type: Optional[str] = None) -> list[VideoArtifact]:
        query = self.db.query(VideoArtifact).filter(VideoArtifact.asset_id == asset_id)
        if job_type:
            query = query.filter(VideoArtifact.job_type == job_type)
        return query.order_by(VideoArtifact.created_at.asc()).all()

    # ---------- SUBTITLES ----------

    def get_subtitle(
        self, asset_id: uuid.UUID, language: str, format: SubtitleFormat
    ) -> Optional[Subtitle]:
        return (
            self.db.query(Subtitle)
            .filter(
                Subtitle.asset_id == asset_id,
                Subtitle.language == language,
                Subtitle.format == format,
            )
            .first()
        )

    def list_subtitles(
        self,
        asset_id: uuid.UUID,
        language: Optional[str] = None,
        format: Optional[SubtitleFormat] = None,
    ) -> list[Subtitle]:
        query = (
            self.db.query(Subtitle)
            .options(selectinload(Subtitle.segments))
            .filter(Subtitle.asset_id == asset_id)
        )
        if language:
            query = query.filter(Subtitle.language == language)
        if format:
            query = query.filter(Subtitle.format == format)
        return query.order_by(Subtitle.language.asc(), Subtitle.format.asc()).all()

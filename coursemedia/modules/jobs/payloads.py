"""Typed job parameters and results, one variant per job type.

Rows store these as JSON; everything that reads or writes ``parameters`` or
``result_data`` goes through ``parse_parameters`` / ``parse_result`` so a
handler always receives the model for its own job type.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from coursemedia.core.errors import ValidationError
from coursemedia.modules.assets.models import SubtitleFormat
from coursemedia.modules.jobs.models import JobType

_RESOLUTION_RE = re.compile(r"^\d{2,5}x\d{2,5}$")
_TIME_OFFSET_RE = re.compile(r"^\d{2}:\d{2}:\d{2}(\.\d+)?$")


def _check_resolution(value: str) -> str:
    if not _RESOLUTION_RE.match(value):
        raise ValueError(f"resolution must look like 1280x720, got {value!r}")
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)


# ---------- PARAMETERS ----------


class TranscodeParameters(_Payload):
    resolution: str
    quality: str = "medium"
    bitrate_kbps: int = Field(default=2500, gt=0)
    format: str = "mp4"
    video_codec: str = "libx264"
    audio_bitrate_kbps: int = Field(default=128, gt=0)
    crf: int = Field(default=23, ge=0, le=51)
    preset: str = "medium"

    _validate_resolution = field_validator("resolution")(_check_resolution)


class SubtitleParameters(_Payload):
    language: str = "en"
    format: SubtitleFormat = SubtitleFormat.srt


class MetadataExtractionParameters(_Payload):
    pass


class ThumbnailParameters(_Payload):
    time_offset: str = "00:00:05"
    size: str = "1280x720"

    _validate_size = field_validator("size")(_check_resolution)

    @field_validator("time_offset")
    @classmethod
    def _validate_time_offset(cls, value: str) -> str:
        if not _TIME_OFFSET_RE.match(value):
            raise ValueError(f"time_offset must look like 00:00:05, got {value!r}")
        return value


JobParameters = Union[
    TranscodeParameters,
    SubtitleParameters,
    MetadataExtractionParameters,
    ThumbnailParameters,
]


# ---------- RESULTS ----------


class TranscodeResult(_Payload):
    file_path: str
    file_size: int
    resolution: str
    quality: str
    format: str
    bitrate_kbps: int


class SubtitleResult(_Payload):
    file_path: str
    language: str
    format: SubtitleFormat
    confidence_score: float = Field(ge=0.0, le=1.0)
    word_count: int
    segment_count: int


class MetadataResult(_Payload):
    file_path: str
    duration_seconds: Optional[float] = None
    size_bytes: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    container_format: Optional[str] = None
    resolution: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    frame_rate: Optional[str] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None


class ThumbnailResult(_Payload):
    file_path: str
    time_offset: str
    size: str


JobResult = Union[TranscodeResult, SubtitleResult, MetadataResult, ThumbnailResult]


PARAMETER_MODELS: dict[JobType, type[_Payload]] = {
    JobType.video_transcoding: TranscodeParameters,
    JobType.subtitle_generation: SubtitleParameters,
    JobType.metadata_extraction: MetadataExtractionParameters,
    JobType.thumbnail_generation: ThumbnailParameters,
}

RESULT_MODELS: dict[JobType, type[_Payload]] = {
    JobType.video_transcoding: TranscodeResult,
    JobType.subtitle_generation: SubtitleResult,
    JobType.metadata_extraction: MetadataResult,
    JobType.thumbnail_generation: ThumbnailResult,
}


def _coerce(models: dict, job_type: JobType, data: Any, label: str):
    model = models[JobType(job_type)]
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {label} for {JobType(job_type).value}: {exc.errors()}") from exc


def parse_parameters(job_type: JobType, data: Any) -> JobParameters:
    return _coerce(PARAMETER_MODELS, job_type, data, "parameters")


def parse_result(job_type: JobType, data: Any) -> JobResult:
    return _coerce(RESULT_MODELS, job_type, data, "result")


class JobSpec(BaseModel):
    """What a caller hands to JobQueue.enqueue."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    asset_id: uuid.UUID
    job_type: JobType
    parameters: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    max_retries: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def for_job(
        cls,
        asset_id: uuid.UUID,
        parameters: JobParameters,
        priority: int = 0,
        max_retries: Optional[int] = None,
    ) -> "JobSpec":
        job_type = next(jt for jt, model in PARAMETER_MODELS.items() if isinstance(parameters, model))
        return cls(
            asset_id=asset_id,
            job_type=job_type,
            parameters=parameters.model_dump(),
            priority=priority,
            max_retries=max_retries,
        )

"""Job handlers, one per job type, dispatched through a HandlerRegistry.

A handler receives a JobContext and returns a HandlerOutcome. It never
touches the job row itself; the dispatcher records the artifact and
completes or fails the job based on what the handler returned or raised.
"""

from __future__ import annotations

import abc
import json
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from coursemedia.core.constants import (
    METADATA_PREFIX,
    RENDITIONS_PREFIX,
    SUBTITLES_PREFIX,
    THUMBNAILS_PREFIX,
)
from coursemedia.core.errors import ProcessingError
from coursemedia.core.logging import get_logger
from coursemedia.modules.assets.models import SubtitleFormat
from coursemedia.modules.jobs.models import JobType
from coursemedia.modules.jobs.payloads import (
    JobResult,
    MetadataResult,
    SubtitleResult,
    ThumbnailResult,
    TranscodeResult,
)
from coursemedia.modules.processing import ffmpeg, subtitles
from coursemedia.modules.processing.context import JobContext
from coursemedia.modules.processing.transcription import Transcriber, WhisperTranscriber

logger = get_logger(__name__)


@dataclass
class HandlerOutcome:
    result: JobResult
    # stored with the artifact but not part of the job result (e.g. subtitle segments)
    extra_attrs: dict[str, Any] = field(default_factory=dict)

    @property
    def artifact_path(self) -> str:
        return self.result.file_path

    def artifact_attrs(self) -> dict[str, Any]:
        attrs = self.result.model_dump(mode="json", exclude={"file_path"})
        attrs.update(self.extra_attrs)
        return attrs


class JobHandler(abc.ABC):
    job_type: JobType

    @abc.abstractmethod
    def handle(self, ctx: JobContext) -> HandlerOutcome:
        ...


class MetadataExtractionHandler(JobHandler):
    job_type = JobType.metadata_extraction

    def handle(self, ctx: JobContext) -> HandlerOutcome:
        source = ctx.fetch_source()
        ctx.report_progress(20)

        info = ffmpeg.parse_probe(ffmpeg.probe(source))
        ctx.report_progress(80)

        key = f"{METADATA_PREFIX}/{ctx.asset_id}/{ctx.job_id}.json"
        ctx.publish_bytes(
            json.dumps(info, indent=2).encode("utf-8"), key, "application/json"
        )
        return HandlerOutcome(result=MetadataResult(file_path=key, **info))


class ThumbnailHandler(JobHandler):
    job_type = JobType.thumbnail_generation

    def handle(self, ctx: JobContext) -> HandlerOutcome:
        params = ctx.params
        source = ctx.fetch_source()
        ctx.report_progress(20)

        # clips shorter than the offset get their first frame instead
        time_offset = params.time_offset
        duration = ctx.asset.duration_seconds
        if duration is not None and ffmpeg.parse_time_offset(time_offset) >= duration:
            time_offset = "00:00:00"

        output = ctx.work_dir / "thumbnail.jpg"
        ffmpeg.run_ffmpeg(
            ffmpeg.build_thumbnail_command(source, output, time_offset, params.size)
        )
        ctx.report_progress(80)

        key = f"{THUMBNAILS_PREFIX}/{ctx.asset_id}_thumb.jpg"
        ctx.publish_output(output, key, "image/jpeg")
        return HandlerOutcome(
            result=ThumbnailResult(file_path=key, time_offset=time_offset, size=params.size)
        )


class TranscodeHandler(JobHandler):
    job_type = JobType.video_transcoding

    def handle(self, ctx: JobContext) -> HandlerOutcome:
        params = ctx.params
        source = ctx.fetch_source()
        ctx.report_progress(5)

        duration = ctx.asset.duration_seconds
        if not duration:
            duration = ffmpeg.parse_probe(ffmpeg.probe(source))["duration_seconds"]

        output = ctx.work_dir / f"{ctx.asset_id}_{params.resolution}.{params.format}"
        ffmpeg.run_ffmpeg(
            ffmpeg.build_transcode_command(source, output, params),
            duration_seconds=duration,
            # encoding is 5..95 of the job; upload takes the rest
            on_progress=lambda fraction: ctx.report_progress(5 + fraction * 90),
        )
        if not output.exists():
            raise ProcessingError(f"ffmpeg produced no output for {params.resolution}")

        key = f"{RENDITIONS_PREFIX}/{ctx.asset_id}/{params.resolution}_{params.quality}.{params.format}"
        ctx.publish_output(output, key, f"video/{params.format}")
        return HandlerOutcome(
            result=TranscodeResult(
                file_path=key,
                file_size=os.path.getsize(output),
                resolution=params.resolution,
                quality=params.quality,
                format=params.format,
                bitrate_kbps=params.bitrate_kbps,
            )
        )


class SubtitleHandler(JobHandler):
    job_type = JobType.subtitle_generation

    def __init__(self, transcriber: Optional[Transcriber] = None):
        self.transcriber = transcriber or WhisperTranscriber()

    def handle(self, ctx: JobContext) -> HandlerOutcome:
        params = ctx.params
        source = ctx.fetch_source()

        wav_path = ctx.work_dir / "audio.wav"
        ffmpeg.run_ffmpeg(ffmpeg.build_audio_extract_command(source, wav_path))
        ctx.report_progress(20)

        segments = self.transcriber.transcribe(wav_path, params.language)
        ctx.report_progress(80)

        body = subtitles.render(segments, params.format, params.language)
        output = ctx.work_dir / f"{params.language}.{params.format}"
        output.write_text(body, encoding="utf-8")

        key = f"{SUBTITLES_PREFIX}/{ctx.asset_id}/{params.language}.{params.format}"
        ctx.publish_output(output, key, subtitles.CONTENT_TYPES[SubtitleFormat(params.format)])
        return HandlerOutcome(
            result=SubtitleResult(
                file_path=key,
                language=params.language,
                format=params.format,
                confidence_score=round(subtitles.average_confidence(segments), 4),
                word_count=subtitles.count_words(segments),
                segment_count=len(segments),
            ),
            extra_attrs={"segments": [asdict(seg) for seg in segments]},
        )


class HandlerRegistry:
    def __init__(self):
        self._handlers: dict[JobType, JobHandler] = {}

    def register(self, handler: JobHandler, job_type: Optional[JobType] = None) -> None:
        job_type = JobType(job_type or handler.job_type)
        self._handlers[job_type] = handler
        logger.debug("handler registered", job_type=job_type.value, handler=type(handler).__name__)

    def get(self, job_type: JobType) -> JobHandler:
        try:
            return self._handlers[JobType(job_type)]
        except KeyError:
            raise ProcessingError(f"No handler registered for job type {job_type}")

    def __contains__(self, job_type) -> bool:
        return JobType(job_type) in self._handlers


def default_registry(transcriber: Optional[Transcriber] = None) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register(MetadataExtractionHandler())
    registry.register(ThumbnailHandler())
    registry.register(TranscodeHandler())
    registry.register(SubtitleHandler(transcriber))
    return registry

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from coursemedia.modules.assets.models import SubtitleFormat


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str
    confidence: Optional[float] = None


def _split_time(seconds: float) -> tuple[int, int, int, int]:
    if seconds < 0:
        seconds = 0.0
    total_ms = int(round(seconds * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return hours, minutes, secs, ms


def srt_time(seconds: float) -> str:
    # SRT format: HH:MM:SS,mmm
    h, m, s, ms = _split_time(seconds)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def vtt_time(seconds: float) -> str:
    # WebVTT format: HH:MM:SS.mmm
    h, m, s, ms = _split_time(seconds)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def render_srt(segments: Iterable[TranscriptSegment]) -> str:
    blocks = []
    for index, seg in enumerate(segments, start=1):
        blocks.append(f"{index}\n{srt_time(seg.start)} --> {srt_time(seg.end)}\n{seg.text}\n")
    return "\n".join(blocks)


def render_vtt(segments: Iterable[TranscriptSegment]) -> str:
    blocks = ["WEBVTT\n"]
    for seg in segments:
        blocks.append(f"{vtt_time(seg.start)} --> {vtt_time(seg.end)}\n{seg.text}\n")
    return "\n".join(blocks)


def render_json(segments: Iterable[TranscriptSegment], language: str) -> str:
    payload = {
        "language": language,
        "segments": [asdict(seg) for seg in segments],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def render(segments: list[TranscriptSegment], format: SubtitleFormat, language: str) -> str:
    format = SubtitleFormat(format)
    if format == SubtitleFormat.srt:
        return render_srt(segments)
    if format == SubtitleFormat.vtt:
        return render_vtt(segments)
    return render_json(segments, language)


CONTENT_TYPES = {
    SubtitleFormat.srt: "application/x-subrip",
    SubtitleFormat.vtt: "text/vtt",
    SubtitleFormat.json: "application/json",
}


def average_confidence(segments: Iterable[TranscriptSegment]) -> float:
    scores = [seg.confidence for seg in segments if seg.confidence is not None]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def count_words(segments: Iterable[TranscriptSegment]) -> int:
    return sum(len(seg.text.split()) for seg in segments)

"""Speech-to-text backends used by subtitle generation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from coursemedia.core.config import settings
from coursemedia.core.errors import ProcessingError
from coursemedia.core.logging import get_logger
from coursemedia.modules.processing.subtitles import TranscriptSegment

logger = get_logger(__name__)


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path, language: str) -> list[TranscriptSegment]:
        ...


@dataclass(frozen=True)
class WhisperConfig:
    model_size: str = "base"
    device: str = "cpu"  # "cpu" or "cuda"
    compute_type: str = "int8"  # "int8" on CPU is fast; "float16" on GPU


class WhisperTranscriber:
    """faster-whisper backend. The model is loaded on first use and reused."""

    def __init__(self, config: Optional[WhisperConfig] = None):
        self.config = config or WhisperConfig(model_size=settings.WHISPER_MODEL)
        self._model = None

    def _load_model(self):
        if self._model is None:
            try:
                from faster_whisper import WhisperModel
            except ImportError as e:
                raise ProcessingError(
                    "faster-whisper is not installed. "
                    "Install optional deps with: pip install -e '.[speech]'"
                ) from e
            logger.info("loading whisper model", model_size=self.config.model_size)
            self._model = WhisperModel(
                self.config.model_size,
                device=self.config.device,
                compute_type=self.config.compute_type,
            )
        return self._model

    def transcribe(self, audio_path: Path, language: str) -> list[TranscriptSegment]:
        model = self._load_model()
        segments, _info = model.transcribe(
            str(audio_path),
            language=language,
            vad_filter=True,
            word_timestamps=False,
        )

        out: list[TranscriptSegment] = []
        for seg in segments:
            text = (seg.text or "").strip()
            if not text:
                continue
            # avg_logprob is a log-likelihood; exp() maps it into 0..1
            confidence = min(1.0, max(0.0, math.exp(seg.avg_logprob)))
            out.append(
                TranscriptSegment(
                    start=float(seg.start),
                    end=float(seg.end),
                    text=text,
                    confidence=round(confidence, 4),
                )
            )
        return out

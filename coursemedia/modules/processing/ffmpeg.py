from __future__ import annotations

import json
import shutil
import subprocess
import threading
from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any, Optional, cast

from coursemedia.core.config import settings
from coursemedia.core.errors import ProcessingError
from coursemedia.core.logging import get_logger
from coursemedia.modules.jobs.payloads import TranscodeParameters

logger = get_logger(__name__)


def _require_cmd(cmd: str) -> str:
    path = shutil.which(cmd)
    if not path:
        raise ProcessingError(
            f"Required executable '{cmd}' not found in PATH. "
            "Install ffmpeg/ffprobe and ensure they are available on PATH."
        )
    return path


# ---------- PROBING ----------


def probe(video_path: Path) -> dict:
    """Return ffprobe JSON for streams and format."""
    binary = _require_cmd(settings.FFPROBE_BINARY)
    cmd = [
        binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        "-show_format",
        str(video_path),
    ]
    try:
        out = subprocess.check_output(cmd, text=True, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as e:
        raise ProcessingError(f"ffprobe failed (exit={e.returncode}): {(e.stderr or '').strip()}") from e
    try:
        return json.loads(out)
    except ValueError as e:
        raise ProcessingError("ffprobe returned invalid JSON") from e


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe(data: dict) -> dict[str, Any]:
    """Flatten ffprobe output into the attributes stored on an asset."""
    fmt = data.get("format") or {}
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is None:
        raise ProcessingError("ffprobe found no video stream")

    duration = _to_float(fmt.get("duration"))
    bit_rate = _to_int(fmt.get("bit_rate"))
    width, height = _to_int(video.get("width")), _to_int(video.get("height"))

    return {
        "duration_seconds": round(duration, 3) if duration is not None else None,
        "size_bytes": _to_int(fmt.get("size")),
        "bitrate_kbps": round(bit_rate / 1000) if bit_rate else None,
        "container_format": fmt.get("format_name"),
        "resolution": f"{width}x{height}" if width and height else None,
        "video_codec": video.get("codec_name"),
        "audio_codec": audio.get("codec_name") if audio else None,
        "frame_rate": video.get("r_frame_rate"),
        "audio_channels": _to_int(audio.get("channels")) if audio else None,
        "audio_sample_rate": _to_int(audio.get("sample_rate")) if audio else None,
    }


def parse_time_offset(offset: str) -> float:
    """'HH:MM:SS[.fff]' to seconds."""
    hours, minutes, seconds = offset.split(":")
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


# ---------- COMMANDS ----------


def build_transcode_command(
    input_path: Path, output_path: Path, params: TranscodeParameters
) -> list[str]:
    width, height = params.resolution.split("x")
    return [
        settings.FFMPEG_BINARY,
        "-y",
        "-v",
        "error",
        "-i",
        str(input_path),
        "-c:v",
        params.video_codec,
        "-preset",
        params.preset,
        "-crf",
        str(params.crf),
        "-b:v",
        f"{params.bitrate_kbps}k",
        "-vf",
        f"scale={width}:{height}",
        "-c:a",
        "aac",
        "-b:a",
        f"{params.audio_bitrate_kbps}k",
        "-movflags",
        "+faststart",
        # Progress output for parsers
        "-progress",
        "pipe:1",
        "-nostats",
        str(output_path),
    ]


def build_thumbnail_command(
    input_path: Path, output_path: Path, time_offset: str, size: str
) -> list[str]:
    width, height = size.split("x")
    return [
        settings.FFMPEG_BINARY,
        "-y",
        "-v",
        "error",
        "-ss",
        time_offset,
        "-i",
        str(input_path),
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}",
        str(output_path),
    ]


def build_audio_extract_command(input_path: Path, wav_path: Path, sample_rate: int = 16000) -> list[str]:
    return [
        settings.FFMPEG_BINARY,
        "-y",
        "-v",
        "error",
        "-i",
        str(input_path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-f",
        "wav",
        str(wav_path),
    ]


# ---------- RUNNING ----------


def parse_progress_line(line: str, duration_seconds: float) -> Optional[float]:
    """Fraction done (0..1) from one ``-progress`` line, or None if the line carries none."""
    line = line.strip()
    if "=" not in line:
        return None
    key, value = (part.strip() for part in line.split("=", 1))
    if key == "progress" and value == "end":
        return 1.0
    if key in ("out_time_ms", "out_time_us"):
        try:
            # both keys are reported in microseconds by ffmpeg
            micros = int(value)
        except ValueError:
            return None
        return min(1.0, max(0.0, (micros / 1_000_000.0) / max(0.01, duration_seconds)))
    return None


STDERR_TAIL_LINES = 50


def _drain(stream: IO[str], tail: deque) -> None:
    for line in stream:
        tail.append(line.rstrip())


def run_ffmpeg(
    cmd: list[str],
    duration_seconds: Optional[float] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> None:
    """Run an ffmpeg command, optionally reporting progress (0..1).

    Exceptions raised by ``on_progress`` (e.g. cancellation) stop the
    process and propagate. stderr is drained on a reader thread so a noisy
    input cannot fill the pipe and stall ffmpeg; its last lines go into the
    error message.
    """
    _require_cmd(cmd[0])
    logger.debug("running ffmpeg", cmd=" ".join(cmd))

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    )
    stdout = cast(IO[str], proc.stdout)
    stderr = cast(IO[str], proc.stderr)
    stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)
    stderr_reader = threading.Thread(target=_drain, args=(stderr, stderr_tail), daemon=True)
    stderr_reader.start()

    try:
        for line in stdout:
            if on_progress and duration_seconds:
                fraction = parse_progress_line(line, duration_seconds)
                if fraction is not None:
                    on_progress(fraction)
        ret = proc.wait()
        stderr_reader.join()
        if ret != 0:
            err = "\n".join(stderr_tail).strip()
            raise ProcessingError(f"ffmpeg failed (exit={ret}). {err}")
    except BaseException:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        raise
    finally:
        stderr_reader.join(timeout=5)
        stdout.close()
        stderr.close()

"""
Tests for ffprobe parsing, ffmpeg command construction and progress parsing.
"""
import sys
from pathlib import Path

import pytest

from coursemedia.core.errors import ProcessingError
from coursemedia.modules.processing import ffmpeg
from coursemedia.modules.jobs.payloads import TranscodeParameters

PROBE_OUTPUT = {
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30/1",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "channels": 2,
            "sample_rate": "48000",
        },
    ],
    "format": {
        "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
        "duration": "125.4567",
        "size": "10485760",
        "bit_rate": "668912",
    },
}


class TestParseProbe:
    """Flattening ffprobe output."""

    def test_extracts_video_and_audio_attributes(self):
        info = ffmpeg.parse_probe(PROBE_OUTPUT)

        assert info["duration_seconds"] == 125.457
        assert info["size_bytes"] == 10485760
        assert info["bitrate_kbps"] == 669
        assert info["resolution"] == "1920x1080"
        assert info["video_codec"] == "h264"
        assert info["audio_codec"] == "aac"
        assert info["audio_channels"] == 2
        assert info["audio_sample_rate"] == 48000

    def test_silent_video_has_no_audio_fields(self):
        data = {"streams": [PROBE_OUTPUT["streams"][0]], "format": {}}

        info = ffmpeg.parse_probe(data)

        assert info["audio_codec"] is None
        assert info["duration_seconds"] is None

    def test_file_without_video_stream_is_a_processing_error(self):
        with pytest.raises(ProcessingError):
            ffmpeg.parse_probe({"streams": [PROBE_OUTPUT["streams"][1]], "format": {}})


class TestCommands:
    """ffmpeg argument lists."""

    def test_transcode_command_scales_and_reports_progress(self):
        params = TranscodeParameters(resolution="1280x720", bitrate_kbps=2500)

        cmd = ffmpeg.build_transcode_command(Path("in.mp4"), Path("out.mp4"), params)

        assert cmd[cmd.index("-vf") + 1] == "scale=1280:720"
        assert cmd[cmd.index("-b:v") + 1] == "2500k"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == "out.mp4"

    def test_thumbnail_command_seeks_before_input(self):
        cmd = ffmpeg.build_thumbnail_command(Path("in.mp4"), Path("t.jpg"), "00:00:05", "1280x720")

        assert cmd.index("-ss") < cmd.index("-i")
        assert cmd[cmd.index("-frames:v") + 1] == "1"

    def test_time_offset_parsing(self):
        assert ffmpeg.parse_time_offset("00:01:05") == 65
        assert ffmpeg.parse_time_offset("01:00:00.5") == 3600.5

    def test_missing_binary_is_a_processing_error(self):
        with pytest.raises(ProcessingError):
            ffmpeg.run_ffmpeg(["coursemedia-no-such-binary", "-version"])


class TestProgressParsing:
    """Fractions from ``-progress`` output."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("out_time_ms=30000000", 0.25),
            ("out_time_us=60000000", 0.5),
            ("out_time_ms=999000000", 1.0),
            ("progress=end", 1.0),
            ("progress=continue", None),
            ("frame=120", None),
            ("garbage", None),
            ("out_time_ms=N/A", None),
        ],
    )
    def test_progress_line(self, line, expected):
        assert ffmpeg.parse_progress_line(line, duration_seconds=120) == expected


NOISY_FAILURE = """
import sys
for i in range(20000):
    sys.stderr.write(f"frame {i}: corrupt macroblock\\n")
sys.stdout.write("out_time_ms=60000000\\n")
sys.stdout.write("progress=end\\n")
sys.exit(3)
"""


class TestRunProcess:
    """Running the encoder process."""

    def test_noisy_stderr_does_not_stall_and_only_the_tail_is_kept(self):
        """More stderr than a pipe buffer holds; progress still arrives and the run ends."""
        reported = []

        with pytest.raises(ProcessingError) as excinfo:
            ffmpeg.run_ffmpeg(
                [sys.executable, "-c", NOISY_FAILURE],
                duration_seconds=120,
                on_progress=reported.append,
            )

        message = excinfo.value.message
        assert message.startswith("ffmpeg failed (exit=3).")
        assert "frame 19999: corrupt macroblock" in message
        assert "frame 0: corrupt macroblock" not in message
        assert message.count("corrupt macroblock") == ffmpeg.STDERR_TAIL_LINES
        assert reported == [0.5, 1.0]

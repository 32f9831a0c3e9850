"""
Tests for subtitle rendering.
"""
import json

import pytest

from coursemedia.modules.assets.models import SubtitleFormat
from coursemedia.modules.processing.subtitles import (
    TranscriptSegment,
    average_confidence,
    count_words,
    render,
    srt_time,
    vtt_time,
)

SEGMENTS = [
    TranscriptSegment(start=0.0, end=2.5, text="Welcome to the course.", confidence=0.9),
    TranscriptSegment(start=2.5, end=3661.042, text="Let's begin.", confidence=0.7),
]


class TestTimestamps:
    def test_srt_uses_comma_for_milliseconds(self):
        assert srt_time(3661.042) == "01:01:01,042"

    def test_vtt_uses_dot_for_milliseconds(self):
        assert vtt_time(2.5) == "00:00:02.500"

    def test_negative_times_clamp_to_zero(self):
        assert srt_time(-1) == "00:00:00,000"


class TestRender:
    """Output formats."""

    def test_srt(self):
        body = render(SEGMENTS, SubtitleFormat.srt, "en")

        assert body.startswith("1\n00:00:00,000 --> 00:00:02,500\nWelcome to the course.\n")
        assert "\n2\n00:00:02,500 --> 01:01:01,042\nLet's begin.\n" in body

    def test_vtt(self):
        body = render(SEGMENTS, "vtt", "en")

        assert body.startswith("WEBVTT\n")
        assert "00:00:00.000 --> 00:00:02.500" in body

    def test_json(self):
        payload = json.loads(render(SEGMENTS, SubtitleFormat.json, "fr"))

        assert payload["language"] == "fr"
        assert payload["segments"][1]["text"] == "Let's begin."


class TestStatistics:
    def test_average_confidence_and_word_count(self):
        assert average_confidence(SEGMENTS) == pytest.approx(0.8)
        assert count_words(SEGMENTS) == 6

    def test_no_segments(self):
        assert average_confidence([]) == 0.0
        assert count_words([]) == 0

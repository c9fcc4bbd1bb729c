"""
Tests for minutes_engine.parser.caption_parser.CaptionParser.

Covers parse() on well-formed and degraded captions, hard-error rejection,
and the quality model helpers.
"""

import pytest

from domain.models import QualityMetrics
from minutes_engine.parser.caption_parser import CaptionParser
from shared_utils.error_handler import CaptionParseError


@pytest.fixture()
def parser() -> CaptionParser:
    return CaptionParser()


# ---------------------------------------------------------------------------
# parse: well-formed input
# ---------------------------------------------------------------------------


class TestParseWellFormed:
    def test_two_speaker_example(self, parser: CaptionParser) -> None:
        content = (
            "00:00:01.000 --> 00:00:03.000\n1 Alice: Hello team\n"
            "00:00:03.500 --> 00:00:05.000\n2 Bob: Hi Alice"
        )
        result = parser.parse(content)
        assert result.transcript == "Alice: Hello team\nBob: Hi Alice"
        assert result.speakers == ["Alice", "Bob"]
        assert result.quality.errors == []

    def test_cues_keep_timestamps(self, parser: CaptionParser, sample_vtt: str) -> None:
        result = parser.parse(sample_vtt)
        assert len(result.cues) == 4
        assert result.cues[0].start_time == "00:00:01.000"
        assert result.cues[0].end_time == "00:00:04.000"
        assert result.cues[1].speaker == "Bob"

    def test_clean_file_scores_full_marks(self, parser: CaptionParser, sample_vtt: str) -> None:
        result = parser.parse(sample_vtt)
        assert result.quality.warnings == []
        assert result.quality.score == 100
        assert result.quality.suggestions == ["Caption quality is good."]

    def test_speaker_transcripts_grouped(self, parser: CaptionParser, sample_vtt: str) -> None:
        result = parser.parse(sample_vtt)
        assert set(result.speaker_transcripts) == {"Alice", "Bob"}
        assert result.speaker_transcripts["Alice"].count("\n") == 1

    def test_bare_speaker_line_under_timestamp(self, parser: CaptionParser) -> None:
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:02.000\n"
            "Alice: Hello there team members\n\n"
            "00:00:02.500 --> 00:00:04.000\n"
            "Bob: Good morning to you as well\n"
        )
        result = parser.parse(content)
        assert result.speakers == ["Alice", "Bob"]

    def test_cue_settings_after_end_time(self, parser: CaptionParser) -> None:
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:03.000 align:start position:0%\n"
            "1 Alice: Settings trail the timestamp here\n"
        )
        result = parser.parse(content)
        assert result.cues[0].end_time == "00:00:03.000"

    def test_windows_line_endings(self, parser: CaptionParser, sample_vtt: str) -> None:
        result = parser.parse(sample_vtt.replace("\n", "\r\n"))
        assert len(result.cues) == 4


# ---------------------------------------------------------------------------
# parse: warnings
# ---------------------------------------------------------------------------


class TestParseWarnings:
    def test_missing_header_is_warning(self, parser: CaptionParser) -> None:
        content = "00:00:01.000 --> 00:00:03.000\n1 Alice: Hello team, this is long enough"
        result = parser.parse(content)
        assert "missing WEBVTT header" in result.quality.warnings

    def test_single_speaker_penalised(self, parser: CaptionParser) -> None:
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:02.000\n1 Alice: This is a sufficiently long sentence.\n\n"
            "00:00:03.000 --> 00:00:04.000\n2 Alice: Another sufficiently long sentence here.\n"
        )
        result = parser.parse(content)
        assert "only one speaker detected" in result.quality.warnings
        assert result.quality.score == 80

    def test_empty_utterance_counted(self, parser: CaptionParser, sample_vtt: str) -> None:
        content = sample_vtt + "\n00:00:18.500 --> 00:00:19.000\n5 Bob:\n"
        result = parser.parse(content)
        assert result.quality.metrics.empty_cue_count == 1
        assert len(result.cues) == 4
        assert result.quality.score < 100

    def test_invalid_speaker_format_warns(self, parser: CaptionParser, sample_vtt: str) -> None:
        content = sample_vtt + "\n00:00:20.000 --> 00:00:21.000\n12:30 was the agreed time\n"
        result = parser.parse(content)
        assert any("invalid speaker format" in w for w in result.quality.warnings)

    def test_large_gap_detected(self, parser: CaptionParser) -> None:
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:04.000\n1 Alice: Before the long break in the meeting\n\n"
            "00:10:00.000 --> 00:10:04.000\n2 Bob: After the long break in the meeting\n"
        )
        result = parser.parse(content)
        assert result.quality.metrics.large_gap_count == 1

    def test_short_average_suggests_better_recording(self, parser: CaptionParser) -> None:
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:02.000\n1 Alice: Yes\n\n"
            "00:00:02.000 --> 00:00:03.000\n2 Bob: No\n"
        )
        result = parser.parse(content)
        assert "Use a higher quality recording to improve recognition." in result.quality.suggestions


# ---------------------------------------------------------------------------
# parse: hard errors
# ---------------------------------------------------------------------------


class TestParseHardErrors:
    def test_empty_content(self, parser: CaptionParser) -> None:
        with pytest.raises(CaptionParseError):
            parser.parse("   ")

    def test_oversized_content(self) -> None:
        with pytest.raises(CaptionParseError):
            CaptionParser(max_chars=10).parse("WEBVTT " + "x" * 20)

    def test_no_timestamps_no_speakers(self, parser: CaptionParser) -> None:
        with pytest.raises(CaptionParseError) as exc_info:
            parser.parse("WEBVTT\n\nhello there")
        errors = exc_info.value.errors
        assert "no cues found" in errors
        assert "no speakers identified" in errors
        assert "no timestamps found" in errors

    def test_timestamps_without_speakers(self, parser: CaptionParser) -> None:
        with pytest.raises(CaptionParseError) as exc_info:
            parser.parse("WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nno speaker here")
        assert "no timestamps found" not in exc_info.value.errors
        assert "no speakers identified" in exc_info.value.errors

    def test_error_is_unprocessable(self, parser: CaptionParser) -> None:
        with pytest.raises(CaptionParseError) as exc_info:
            parser.parse("WEBVTT")
        assert exc_info.value.http_status == 422
        assert exc_info.value.retryable is False


# ---------------------------------------------------------------------------
# Quality model helpers
# ---------------------------------------------------------------------------


class TestQualityModel:
    def test_score_monotonic_in_warnings_and_errors(self) -> None:
        metrics = QualityMetrics(cue_count=4, speaker_count=2, average_text_length=40.0)
        clean = CaptionParser.quality_score(metrics, 0, 0)
        warned = CaptionParser.quality_score(metrics, 1, 0)
        errored = CaptionParser.quality_score(metrics, 1, 1)
        assert clean >= warned >= errored

    def test_score_clamped(self) -> None:
        metrics = QualityMetrics(cue_count=0, speaker_count=0, average_text_length=0.0)
        assert CaptionParser.quality_score(metrics, 50, 3) == 0

    def test_balance_single_speaker_zero(self) -> None:
        assert CaptionParser.speaker_balance_score({"Alice": 5}) == 0.0

    def test_balance_even_split(self) -> None:
        assert CaptionParser.speaker_balance_score({"Alice": 2, "Bob": 2}) == 100.0

    def test_balance_uneven_split(self) -> None:
        assert CaptionParser.speaker_balance_score({"Alice": 3, "Bob": 1}) == pytest.approx(50.0)

    def test_to_seconds(self) -> None:
        assert CaptionParser.to_seconds("00:01:02.500") == pytest.approx(62.5)
        assert CaptionParser.to_seconds("garbage") is None

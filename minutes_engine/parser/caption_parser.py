"""
Caption file parsing and quality scoring.

Parses speaker-tagged WebVTT caption exports into an ordered list of cues and
a chronological ``"speaker: text"`` transcript, then scores the parse 0-100.

Expected shape::

    WEBVTT

    00:00:01.000 --> 00:00:03.000
    1 Alice: Hello team

A content line is bound to the most recent timestamp line. Lines that look
like content but do not match the speaker pattern become warnings. Zero cues,
zero speakers or zero timestamps are hard errors and the parse is rejected.
"""

import math
import re
from typing import Dict, List, Optional

from domain.models import (
    CaptionCue,
    CaptionParseResult,
    QualityMetrics,
    QualityReport,
)
from shared_utils.constants import CaptionQuality, LogScope
from shared_utils.error_handler import CaptionParseError
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.PARSER)


class CaptionParser:
    """Parser and quality model for caption files."""

    TIMESTAMP_LINE: re.Pattern = re.compile(
        r"\d{2}:\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}\.\d{3}"
    )
    TIMESTAMP: re.Pattern = re.compile(r"(\d{2}):(\d{2}):(\d{2})\.(\d{3})")
    # "<cue id> <speaker>: <text>"
    SPEAKER_LINE: re.Pattern = re.compile(r"^\d+\s+([^:]+):\s*(.*)$")
    # Plain "<speaker>: <text>" directly under a timestamp line
    BARE_SPEAKER_LINE: re.Pattern = re.compile(r"^([^:\d][^:]{0,79}):\s*(.*)$")

    def __init__(self, max_chars: int = 5_000_000) -> None:
        self._max_chars = max_chars

    def parse(self, content: str) -> CaptionParseResult:
        """Parse caption text.

        Args:
            content: Full caption file text.

        Returns:
            CaptionParseResult with cues, chronological transcript, speakers
            in first-seen order and a QualityReport.

        Raises:
            CaptionParseError: On any hard error (no cues, no speakers, no
                timestamps) or unusable input.
        """
        if not isinstance(content, str) or not content.strip():
            raise CaptionParseError(["caption content is empty"])
        if len(content) > self._max_chars:
            raise CaptionParseError(
                [f"caption content exceeds {self._max_chars} characters"],
                context={"length": len(content)},
            )

        warnings: List[str] = []
        if "WEBVTT" not in content:
            warnings.append("missing WEBVTT header")

        lines = content.split("\n")
        cues: List[CaptionCue] = []
        current_time: Optional[str] = None
        after_timestamp = False
        timestamp_count = 0
        speaker_line_count = 0
        empty_cue_count = 0

        for index, raw_line in enumerate(lines, start=1):
            line = raw_line.strip()
            if not line:
                after_timestamp = False
                continue

            if "-->" in line:
                current_time = line
                timestamp_count += 1
                after_timestamp = True
                if not self.TIMESTAMP_LINE.search(line):
                    warnings.append(f"line {index}: malformed timestamp - {line}")
                continue

            if line.startswith("WEBVTT") or ":" not in line:
                after_timestamp = False
                continue

            match = self.SPEAKER_LINE.match(line)
            if match is None and after_timestamp:
                match = self.BARE_SPEAKER_LINE.match(line)
            after_timestamp = False

            if match is None:
                warnings.append(f"line {index}: invalid speaker format - {line}")
                continue

            speaker = match.group(1).strip()
            text = match.group(2).strip()
            speaker_line_count += 1

            if not current_time:
                warnings.append(f"line {index}: utterance without timestamp - {line}")
                continue
            if not text:
                empty_cue_count += 1
                warnings.append(f"line {index}: empty utterance - {line}")
                continue

            start, end = self._split_range(current_time)
            cues.append(CaptionCue(start_time=start, end_time=end, speaker=speaker, text=text))

        speaker_transcripts: Dict[str, List[str]] = {}
        for cue in cues:
            speaker_transcripts.setdefault(cue.speaker, []).append(cue.text)
        speakers = list(speaker_transcripts.keys())
        transcript = "\n".join(f"{cue.speaker}: {cue.text}" for cue in cues)

        errors: List[str] = []
        if not cues:
            errors.append("no cues found")
        if not speakers:
            errors.append("no speakers identified")
        if timestamp_count == 0:
            errors.append("no timestamps found")

        metrics = QualityMetrics(
            cue_count=len(cues),
            speaker_count=len(speakers),
            average_text_length=(
                sum(len(c.text) for c in cues) / len(cues) if cues else 0.0
            ),
            empty_cue_count=empty_cue_count,
            large_gap_count=self._count_large_gaps(cues),
            speaker_balance_score=self.speaker_balance_score(
                {s: len(t) for s, t in speaker_transcripts.items()}
            ),
            timestamp_count=timestamp_count,
            speaker_line_count=speaker_line_count,
        )
        warnings.extend(self._metric_warnings(metrics, cues))

        report = QualityReport(
            score=self.quality_score(metrics, len(warnings), len(errors)),
            warnings=warnings,
            errors=errors,
            metrics=metrics,
            suggestions=self.suggestions(metrics, cues, errors),
        )

        if errors:
            logger.warning(
                "caption_parse_rejected",
                errors=errors,
                warnings=len(warnings),
                timestamps=timestamp_count,
                speaker_lines=speaker_line_count,
            )
            raise CaptionParseError(
                errors,
                context={"score": report.score, "warning_count": len(warnings)},
            )

        logger.info(
            "caption_parsed",
            cues=metrics.cue_count,
            speakers=metrics.speaker_count,
            score=report.score,
            warnings=len(warnings),
        )
        return CaptionParseResult(
            cues=cues,
            transcript=transcript,
            speakers=speakers,
            speaker_transcripts={s: "\n".join(t) for s, t in speaker_transcripts.items()},
            quality=report,
        )

    # ------------------------------------------------------------------
    # Quality model
    # ------------------------------------------------------------------

    @staticmethod
    def quality_score(metrics: QualityMetrics, warning_count: int, error_count: int) -> int:
        """Score a parse from 100 down, clamped to 0..100."""
        q = CaptionQuality
        score = 100
        score -= error_count * q.HARD_ERROR_PENALTY
        score -= warning_count * q.WARNING_PENALTY
        score -= metrics.empty_cue_count * q.EMPTY_CUE_PENALTY
        if metrics.average_text_length < q.SHORT_AVERAGE_CHARS:
            score -= q.SHORT_AVERAGE_PENALTY
        if metrics.speaker_count == 1 and metrics.cue_count > 1:
            score -= q.SINGLE_SPEAKER_PENALTY
        score -= metrics.large_gap_count * q.LARGE_GAP_PENALTY
        if metrics.speaker_balance_score > q.BALANCE_BONUS_THRESHOLD:
            score += q.BALANCE_BONUS
        return max(0, min(100, score))

    @staticmethod
    def speaker_balance_score(statement_counts: Dict[str, int]) -> float:
        """100 minus twice the std-dev of speaker shares from an even split.

        A single (or no) speaker scores 0.
        """
        if len(statement_counts) <= 1:
            return 0.0
        total = sum(statement_counts.values())
        if total == 0:
            return 0.0
        ideal = 100.0 / len(statement_counts)
        shares = [count / total * 100.0 for count in statement_counts.values()]
        variance = sum((share - ideal) ** 2 for share in shares) / len(shares)
        return max(0.0, min(100.0, 100.0 - math.sqrt(variance) * 2))

    @classmethod
    def to_seconds(cls, timestamp: str) -> Optional[float]:
        match = cls.TIMESTAMP.search(timestamp or "")
        if match is None:
            return None
        hours, minutes, seconds, millis = (int(g) for g in match.groups())
        return hours * 3600 + minutes * 60 + seconds + millis / 1000

    @staticmethod
    def _split_range(time_line: str) -> tuple[str, str]:
        start, _, end = time_line.partition("-->")
        # Cue settings ("align:start") may trail the end time
        end_parts = end.strip().split()
        return start.strip(), end_parts[0] if end_parts else ""

    @classmethod
    def _count_large_gaps(cls, cues: List[CaptionCue]) -> int:
        large = 0
        for prev, curr in zip(cues, cues[1:]):
            prev_end = cls.to_seconds(prev.end_time)
            curr_start = cls.to_seconds(curr.start_time)
            if prev_end is None or curr_start is None:
                continue
            if curr_start - prev_end > CaptionQuality.LARGE_GAP_SECONDS:
                large += 1
        return large

    @staticmethod
    def _metric_warnings(metrics: QualityMetrics, cues: List[CaptionCue]) -> List[str]:
        q = CaptionQuality
        warnings = []
        if metrics.empty_cue_count:
            warnings.append(f"{metrics.empty_cue_count} empty utterance(s)")
        short = sum(1 for c in cues if len(c.text) < q.SHORT_CUE_CHARS)
        if cues and short > len(cues) * q.SHORT_CUE_RATIO:
            warnings.append(
                f"short utterances (<{q.SHORT_CUE_CHARS} chars) exceed "
                f"{int(q.SHORT_CUE_RATIO * 100)}% ({short}/{len(cues)})"
            )
        if metrics.speaker_count == 1:
            warnings.append("only one speaker detected")
        if cues and metrics.average_text_length < q.SHORT_AVERAGE_CHARS:
            warnings.append(
                f"average utterance length is low ({metrics.average_text_length:.1f} chars)"
            )
        if metrics.large_gap_count:
            warnings.append(f"{metrics.large_gap_count} gap(s) longer than 5 minutes")
        return warnings

    @staticmethod
    def suggestions(
        metrics: QualityMetrics,
        cues: List[CaptionCue],
        errors: List[str],
    ) -> List[str]:
        """Human-readable hints for improving caption quality."""
        q = CaptionQuality
        hints = []
        if errors:
            hints.append("Check the caption file structure; it could not be parsed.")
        if metrics.empty_cue_count:
            hints.append("Remove empty utterances or fill in their text.")
        if cues and metrics.average_text_length < q.SHORT_AVERAGE_CHARS:
            hints.append("Use a higher quality recording to improve recognition.")
        if metrics.speaker_count == 1 and metrics.cue_count > 1:
            hints.append("Enable per-speaker captions so speakers can be told apart.")
        if metrics.large_gap_count:
            hints.append("Review long silent gaps; the recording may have been paused.")
        if metrics.speaker_count > 1 and metrics.speaker_balance_score < 50:
            hints.append("Speaker participation is uneven.")
        short = sum(1 for c in cues if len(c.text) < q.SHORT_CUE_CHARS)
        if cues and short > len(cues) * q.SHORT_CUE_RATIO:
            hints.append("Many utterances are very short; consider merging adjacent cues.")
        if not hints:
            hints.append("Caption quality is good.")
        return hints

"""
ffmpeg-backed splitting of recordings that exceed the speech-to-text upload limit.

Segments are cut with stream copy (no re-encode), so each one keeps the
source container and codec. Segment length is sized from the average bitrate
to land near ``target_bytes``, clamped to 5..10 minutes.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Optional

import ffmpeg

from shared_utils.constants import LogScope
from shared_utils.error_handler import TranscriptionError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)

MIN_SEGMENT_SECONDS = 300
MAX_SEGMENT_SECONDS = 600
TARGET_SEGMENT_BYTES = 10 * 1024 * 1024


def segment_seconds_for(size_bytes: int, duration_seconds: Optional[float], target_bytes: int) -> int:
    """Seconds of audio that fit in ``target_bytes`` at the file's average bitrate."""
    if not duration_seconds or duration_seconds <= 0 or size_bytes <= 0:
        return MIN_SEGMENT_SECONDS
    seconds = int(duration_seconds * target_bytes / size_bytes)
    return max(MIN_SEGMENT_SECONDS, min(seconds, MAX_SEGMENT_SECONDS))


class FfmpegAudioSegmenter:
    """Splits one audio blob into ordered, individually uploadable segments."""

    def __init__(self, target_bytes: int = TARGET_SEGMENT_BYTES) -> None:
        self._target_bytes = target_bytes

    def split(self, audio: bytes, filename: str) -> List[bytes]:
        """Return the segments of ``audio`` in playback order.

        Raises:
            TranscriptionError: ffmpeg failed or produced no segments.
        """
        suffix = Path(filename).suffix or ".m4a"
        with tempfile.TemporaryDirectory(prefix="stt_segments_") as workdir:
            source = os.path.join(workdir, f"source{suffix}")
            with open(source, "wb") as fh:
                fh.write(audio)

            duration = self._duration(source)
            segment_seconds = segment_seconds_for(len(audio), duration, self._target_bytes)
            pattern = os.path.join(workdir, f"part_%03d{suffix}")
            try:
                (
                    ffmpeg
                    .input(source)
                    .output(
                        pattern,
                        f="segment",
                        segment_time=segment_seconds,
                        c="copy",
                        reset_timestamps=1,
                        loglevel="error",
                    )
                    .overwrite_output()
                    .run(capture_stdout=True, capture_stderr=True)
                )
            except ffmpeg.Error as exc:
                stderr = exc.stderr.decode("utf-8", errors="ignore")[:200] if exc.stderr else ""
                logger.error("audio_split_failed", filename=filename, stderr=stderr)
                raise TranscriptionError(
                    "Could not split audio for transcription",
                    context={"filename": filename, "stderr": stderr},
                ) from exc
            except OSError as exc:
                logger.error("audio_split_unavailable", filename=filename, error=str(exc))
                raise TranscriptionError(
                    "ffmpeg is not available to split audio", context={"filename": filename}
                ) from exc

            parts = sorted(Path(workdir).glob(f"part_*{suffix}"))
            if not parts:
                raise TranscriptionError("Audio split produced no segments", context={"filename": filename})
            segments = [part.read_bytes() for part in parts]

        logger.info(
            "audio_split",
            filename=filename,
            bytes=len(audio),
            duration_seconds=duration,
            segment_seconds=segment_seconds,
            segments=len(segments),
        )
        return segments

    @staticmethod
    def _duration(path: str) -> Optional[float]:
        try:
            return float(ffmpeg.probe(path)["format"]["duration"])
        except (ffmpeg.Error, OSError, KeyError, ValueError) as exc:
            logger.warning("audio_duration_unknown", error=str(exc))
            return None

"""
Transcription strategy: captions first, audio speech-to-text second.

The strategies are an ordered list evaluated by ``produce``; each either
returns a result or declines (None) after recording why. When every strategy
declines the outcome is ``NoMedia``.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from domain.models import (
    AudioResult,
    CaptionResult,
    MediaFile,
    NoMedia,
    StrategyResult,
    TenantCredentials,
)
from minutes_engine.parser.caption_parser import CaptionParser
from ports.audio_transcriber import AudioTranscriberPort
from ports.conferencing import ConferencingProviderPort
from shared_utils.constants import LogScope
from shared_utils.error_handler import AppException, CaptionParseError, ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.TRANSCRIPTION)

# Most preferred first; video is the last resort
_AUDIO_PREFERENCE = ("M4A", "MP3", "WAV", "MP4")
_USABLE_STATUSES = {None, "", "completed"}


def _caption_rank(media: MediaFile) -> int:
    # Speaker-tagged audio transcript, then plain VTT, then closed captions
    if media.file_type.upper() == "TRANSCRIPT" or media.recording_type.lower() == "audio_transcript":
        return 0
    if media.file_type.upper() == "VTT":
        return 1
    return 2


def rank_caption_files(files: List[MediaFile]) -> List[MediaFile]:
    """Downloadable caption/transcript files, TRANSCRIPT first (stable within a rank)."""
    candidates = [
        f for f in files
        if f.is_caption() and f.download_url and f.status in _USABLE_STATUSES
    ]
    return sorted(candidates, key=_caption_rank)


def rank_audio_files(files: List[MediaFile]) -> List[MediaFile]:
    """Audio containers before video, in ``_AUDIO_PREFERENCE`` order."""
    candidates = [
        f for f in files
        if (f.is_audio() or f.is_video()) and f.download_url and f.status in _USABLE_STATUSES
    ]

    def rank(media: MediaFile) -> Tuple[bool, int]:
        file_type = media.file_type.upper()
        position = (
            _AUDIO_PREFERENCE.index(file_type) if file_type in _AUDIO_PREFERENCE else len(_AUDIO_PREFERENCE)
        )
        # audio_only recordings of an unlisted type still beat video
        return (not media.is_audio(), position)

    return sorted(candidates, key=rank)


class _Attempt:
    """Mutable notes shared across one ``produce`` call."""

    def __init__(self) -> None:
        self.caption_rejection: Optional[str] = None


class TranscriptionStrategy:
    """Produces a raw transcript for a meeting's media list."""

    def __init__(
        self,
        provider: ConferencingProviderPort,
        transcriber: AudioTranscriberPort,
        parser: Optional[CaptionParser] = None,
        min_caption_quality: int = 0,
    ) -> None:
        self._provider = provider
        self._transcriber = transcriber
        self._parser = parser or CaptionParser()
        self._min_caption_quality = min_caption_quality
        self._strategies: List[Callable[[TenantCredentials, List[MediaFile], _Attempt], Optional[StrategyResult]]] = [
            self._from_captions,
            self._from_audio,
        ]

    def produce(self, credentials: TenantCredentials, media_files: List[MediaFile]) -> StrategyResult:
        """Return CaptionResult, AudioResult or NoMedia.

        Raises:
            TranscriptionError / ExternalServiceError: The audio path was
                chosen but download or speech-to-text failed.
        """
        attempt = _Attempt()
        for strategy in self._strategies:
            result = strategy(credentials, media_files, attempt)
            if result is not None:
                logger.info("transcription_strategy_selected", kind=result.kind)
                return result

        reason = "no usable caption file and no reachable audio or video file"
        if attempt.caption_rejection:
            reason = f"{reason} (captions rejected: {attempt.caption_rejection})"
        logger.warning("transcription_no_media", reason=reason, files=len(media_files))
        return NoMedia(reason=reason)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _from_captions(
        self, credentials: TenantCredentials, files: List[MediaFile], attempt: _Attempt
    ) -> Optional[CaptionResult]:
        for caption in rank_caption_files(files):
            result = self._parse_caption(credentials, caption, attempt)
            if result is not None:
                return result
        return None

    def _parse_caption(
        self, credentials: TenantCredentials, caption: MediaFile, attempt: _Attempt
    ) -> Optional[CaptionResult]:
        try:
            raw = self._provider.download(credentials, caption.download_url)
        except AppException as exc:
            attempt.caption_rejection = f"download failed: {exc.message}"
            logger.warning("caption_download_failed", file_id=caption.file_id, error=exc.message)
            return None

        try:
            parsed = self._parser.parse(raw.decode("utf-8-sig", errors="replace"))
        except CaptionParseError as exc:
            attempt.caption_rejection = "; ".join(exc.errors)
            logger.warning("caption_parse_unusable", file_id=caption.file_id, errors=exc.errors)
            return None

        score = parsed.quality.score
        if self._min_caption_quality and score < self._min_caption_quality:
            attempt.caption_rejection = (
                f"quality score {score} below minimum {self._min_caption_quality}"
            )
            logger.warning("caption_quality_below_minimum", score=score, minimum=self._min_caption_quality)
            return None

        return CaptionResult(
            transcript=parsed.transcript,
            speakers=parsed.speakers,
            quality=parsed.quality,
            media_file_id=caption.file_id,
        )

    def _reachable(self, credentials: TenantCredentials, media: MediaFile) -> bool:
        try:
            return self._provider.media_exists(credentials, media.download_url)
        except ExternalServiceError as exc:
            logger.warning("audio_media_check_failed", file_id=media.file_id, error=exc.message)
            return False

    def _from_audio(
        self, credentials: TenantCredentials, files: List[MediaFile], attempt: _Attempt
    ) -> Optional[AudioResult]:
        for media in rank_audio_files(files):
            # Existence check before paying for a transcription call
            if not self._reachable(credentials, media):
                logger.warning("audio_media_unreachable", file_id=media.file_id, file_type=media.file_type)
                continue

            audio = self._provider.download(credentials, media.download_url)
            extension = (media.file_extension or media.file_type or "m4a").lower()
            transcript = self._transcriber.transcribe(audio, filename=f"recording.{extension}")
            return AudioResult(
                transcript=transcript,
                media_file_id=media.file_id,
                caption_rejection_reason=attempt.caption_rejection,
            )
        return None

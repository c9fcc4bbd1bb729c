"""
OpenAI Whisper speech-to-text adapter.

POSTs multipart/form-data to the transcription endpoint:
    model=<whisper model>, response_format=json, file=@audio
    Authorization: Bearer <OPENAI_API_KEY>

Audio over the upload limit is split into segments (see audio_segmenter);
segments are transcribed in order and their texts joined.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import List, Optional

import httpx

from adapters.audio_segmenter import FfmpegAudioSegmenter
from shared_utils.constants import Defaults, LogScope, ModelIDs
from shared_utils.error_handler import ConfigurationError, ExternalServiceError, TranscriptionError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)

_SERVICE = "Whisper"
_EMPTY_TRANSCRIPT = "Speech-to-text returned an empty transcript"
# Upload limit of the hosted transcription endpoint
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


class WhisperTranscriber:
    """Implements AudioTranscriberPort against the OpenAI transcription API."""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = Defaults.WHISPER_API_URL,
        model: str = ModelIDs.OPENAI_WHISPER,
        timeout: float = Defaults.STT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
        segmenter: Optional[FfmpegAudioSegmenter] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY not set for speech-to-text")
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._http = http_client or httpx.Client(timeout=timeout)
        self._segmenter = segmenter or FfmpegAudioSegmenter()

    def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        if not audio:
            raise TranscriptionError("Audio file is empty", context={"filename": filename})
        if len(audio) <= MAX_UPLOAD_BYTES:
            return self._transcribe_one(audio, filename, language)
        return self._transcribe_segmented(audio, filename, language)

    def _transcribe_segmented(self, audio: bytes, filename: str, language: Optional[str]) -> str:
        segments = self._segmenter.split(audio, filename)
        oversized = [i for i, segment in enumerate(segments) if len(segment) > MAX_UPLOAD_BYTES]
        if oversized:
            raise TranscriptionError(
                "Audio segment still exceeds the speech-to-text upload limit",
                context={"filename": filename, "segments": oversized},
            )

        logger.info("whisper_segmented_transcription", filename=filename, segments=len(segments))
        stem, suffix = Path(filename).stem, Path(filename).suffix
        texts: List[str] = []
        for index, segment in enumerate(segments):
            segment_name = f"{stem}_part_{index:03d}{suffix}"
            try:
                texts.append(self._transcribe_one(segment, segment_name, language))
            except TranscriptionError as exc:
                # A silent stretch yields no text; the other segments still count
                if exc.message != _EMPTY_TRANSCRIPT:
                    raise
                logger.warning("whisper_segment_empty", filename=segment_name)
        if not texts:
            raise TranscriptionError(_EMPTY_TRANSCRIPT, context={"filename": filename})
        return "\n".join(texts)

    def _transcribe_one(self, audio: bytes, filename: str, language: Optional[str]) -> str:
        data = {"model": self._model, "response_format": "json", "temperature": "0"}
        if language:
            data["language"] = language
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        files = {"file": (filename, audio, content_type)}

        try:
            resp = self._http.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                data=data,
                files=files,
            )
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(_SERVICE, "transcription request timed out") from exc
        except httpx.TransportError as exc:
            raise ExternalServiceError(_SERVICE, f"transport error: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ExternalServiceError(
                _SERVICE, f"returned {resp.status_code}", context={"status_code": resp.status_code}
            )
        if resp.status_code >= 400:
            logger.error("whisper_rejected", status_code=resp.status_code, body=resp.text[:200])
            raise TranscriptionError(
                f"Speech-to-text rejected the audio ({resp.status_code})",
                context={"status_code": resp.status_code},
            )

        text = (resp.json().get("text") or "").strip()
        logger.info("whisper_transcribed", filename=filename, chars=len(text))
        if not text:
            raise TranscriptionError(_EMPTY_TRANSCRIPT)
        return text

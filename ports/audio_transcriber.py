"""
Port interface for external speech-to-text.

Implementations: WhisperTranscriber (adapters/)
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class AudioTranscriberPort(Protocol):
    """Turns an audio file into plain transcript text."""

    def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        """Transcribe audio bytes.

        Args:
            audio: Raw audio file content.
            filename: Name with extension, used to infer the container type.
            language: Optional ISO-639-1 hint.

        Raises:
            ExternalServiceError: Timeout or 5xx from the STT service.
            TranscriptionError: The STT service rejected the input.
        """
        ...

"""
Port interface for the conferencing provider's REST API.

Implementations: ZoomClient (adapters/)
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from domain.models import MeetingRecordings, Participant, TenantCredentials


@runtime_checkable
class ConferencingProviderPort(Protocol):
    """Recording lookup and media download, authenticated per tenant."""

    def get_recordings(self, credentials: TenantCredentials, meeting_id: str) -> MeetingRecordings:
        """Fetch the recording file list and meeting details.

        Raises:
            ExternalServiceError: Timeout, 5xx or connection failure.
            NoMediaAvailableError: The provider has no recordings for the meeting.
        """
        ...

    def get_participants(self, credentials: TenantCredentials, meeting_id: str) -> List[Participant]:
        """List meeting participants from the provider's meeting report."""
        ...

    def media_exists(self, credentials: TenantCredentials, url: str) -> bool:
        """Lightweight reachability check (HEAD) for a media URL."""
        ...

    def download(self, credentials: TenantCredentials, url: str) -> bytes:
        """Download a media file.

        Raises:
            ExternalServiceError: Timeout, 5xx or connection failure.
            TranscriptionError: The asset is permanently inaccessible (4xx).
        """
        ...

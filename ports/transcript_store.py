"""
Port interface for minutes records and the per-recipient delivery log.

Implementations: DynamoTranscriptStoreAdapter, InMemoryTranscriptStore (adapters/)
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from domain.models import DeliveryLogEntry, MinutesRecord


@runtime_checkable
class TranscriptStorePort(Protocol):
    """Persistence for generated minutes and their delivery outcomes."""

    def save_minutes(self, record: MinutesRecord) -> MinutesRecord:
        """Persist a new minutes record.

        Returns the stored record. If a record already exists for the same
        ``job_id`` the existing record is returned unchanged.
        """
        ...

    def get_minutes(self, transcript_id: str) -> Optional[MinutesRecord]:
        ...

    def get_minutes_for_job(self, job_id: str) -> Optional[MinutesRecord]:
        ...

    def list_minutes_for_meeting(self, tenant_id: str, meeting_id: str) -> List[MinutesRecord]:
        """Every minutes record produced for this meeting id, by any job.

        Recurring meetings share one id, so this can span several occurrences.
        """
        ...

    def append_delivery(self, entry: DeliveryLogEntry) -> None:
        """Append one delivery log entry. Entries are never updated."""
        ...

    def list_deliveries(self, transcript_id: str) -> List[DeliveryLogEntry]:
        """All entries for a transcript in creation order."""
        ...

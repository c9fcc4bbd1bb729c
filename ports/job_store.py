"""
Port interface for durable job records.

Implementations: DynamoJobStoreAdapter, InMemoryJobStore (adapters/)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from domain.models import Job, JobStatus, JobType


@runtime_checkable
class JobStorePort(Protocol):
    """Abstract interface for job persistence and state transitions."""

    def create_if_absent(self, job: Job) -> tuple[Job, bool]:
        """Insert ``job`` unless an equivalent job is already active.

        Equivalence is the dedupe key (tenant_id, meeting_id, type); a job in
        ``pending`` or ``processing`` for that key suppresses creation.

        Returns:
            ``(job, True)`` when inserted, ``(existing_job, False)`` otherwise.

        Raises:
            ExternalServiceError: If the store is unreachable.
        """
        ...

    def get(self, job_id: str) -> Optional[Job]:
        """Return the job or None."""
        ...

    def find_active(self, tenant_id: str, meeting_id: str, job_type: JobType) -> Optional[Job]:
        """Return a pending/processing job for the dedupe key, if any."""
        ...

    def claim(self, job_id: str) -> Optional[Job]:
        """Atomically move a job from ``pending`` to ``processing``.

        At most one caller succeeds for a given job, and at most one job per
        (tenant_id, meeting_id) may be processing at a time.

        Returns:
            The claimed job, or None if it was not pending or the meeting
            already has a processing job.
        """
        ...

    def complete(self, job_id: str, result: Dict[str, Any]) -> Job:
        """processing -> completed, recording ``result`` and completed_at."""
        ...

    def fail(self, job_id: str, error_message: str, result: Optional[Dict[str, Any]] = None) -> Job:
        """processing -> failed, keeping the first permanent cause."""
        ...

    def reset_for_retry(self, job_id: str) -> Job:
        """failed -> pending, clearing error_message and bumping retry_count.

        Raises:
            JobNotFoundError: Unknown job.
            JobStateError: Job is not failed.
        """
        ...

    def list_jobs(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> List[Job]:
        """List jobs, newest first, optionally filtered."""
        ...

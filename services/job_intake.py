"""
Job intake: persists new jobs with dedupe and feeds the worker queue.

Used by the webhook gateway and the admin API (which only need to create and
queue jobs) and by the worker (re-queueing deferred jobs, stale sweeps).

``recording_completed`` jobs are queued with a delay of
``caption_wait_seconds``: the provider usually follows the recording with a
``transcript_completed`` event, and the job that runs second is superseded
once minutes exist for the meeting.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from domain.models import Job, JobStatus, JobType
from ports.job_queue import JobQueuePort
from ports.job_store import JobStorePort
from shared_utils.constants import Defaults, LogScope
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ORCHESTRATION)

DELAYED_JOB_TYPES = frozenset({JobType.RECORDING_COMPLETED})


class JobIntake:
    def __init__(
        self,
        job_store: JobStorePort,
        job_queue: JobQueuePort,
        stale_pending_minutes: int = Defaults.STALE_PENDING_MINUTES,
        caption_wait_seconds: int = Defaults.CAPTION_WAIT_SECONDS,
    ) -> None:
        self._jobs = job_store
        self._queue = job_queue
        self._stale_pending_minutes = stale_pending_minutes
        self._caption_wait_seconds = caption_wait_seconds

    def initial_delay(self, job: Job) -> int:
        return self._caption_wait_seconds if job.type in DELAYED_JOB_TYPES else 0

    def submit(self, job: Job) -> Tuple[Job, bool]:
        """Persist a pending job (deduplicated) and queue it when new."""
        stored, created = self._jobs.create_if_absent(job)
        if created:
            delay = self.initial_delay(stored)
            self._queue.enqueue(stored.job_id, delay_seconds=delay)
            logger.info(
                "job_submitted",
                job_id=stored.job_id,
                tenant_id=stored.tenant_id,
                meeting_id=stored.meeting_id,
                type=stored.type.value,
                delay_seconds=delay,
            )
        else:
            logger.info("job_duplicate_suppressed", job_id=stored.job_id, status=stored.status.value)
        return stored, created

    def requeue(self, job_id: str, delay_seconds: int = 0) -> None:
        self._queue.enqueue(job_id, delay_seconds=delay_seconds)

    def sweep_stale_jobs(self, now: Optional[datetime] = None) -> List[str]:
        """Re-enqueue pending jobs untouched for ``stale_pending_minutes``.

        Covers a lost enqueue after the job row was written; the atomic claim
        makes the extra delivery harmless. Delayed job types get their initial
        delay added to the cutoff so a sweep does not cut the wait short.
        """
        if self._stale_pending_minutes <= 0:
            return []
        now = now or datetime.now(timezone.utc)
        requeued = []
        for job in self._jobs.list_jobs(status=JobStatus.PENDING):
            try:
                stamp = datetime.fromisoformat(job.updated_at or job.created_at)
            except ValueError:
                continue
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=timezone.utc)
            age_limit = timedelta(minutes=self._stale_pending_minutes)
            if job.retry_count == 0:
                age_limit += timedelta(seconds=self.initial_delay(job))
            if stamp <= now - age_limit:
                self._queue.enqueue(job.job_id)
                requeued.append(job.job_id)
        if requeued:
            logger.info("stale_jobs_requeued", count=len(requeued), job_ids=requeued)
        return requeued

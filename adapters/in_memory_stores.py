"""
In-memory store adapters for local development and tests.

Implements JobStorePort, CredentialStorePort and TranscriptStorePort with
plain dicts guarded by a lock, so the atomic claim and dedupe semantics hold
across worker threads in one process.

NOT for production: no persistence across restarts.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Tuple

from domain.models import (
    ACTIVE_JOB_STATUSES,
    DeliveryLogEntry,
    Job,
    JobStatus,
    JobType,
    MinutesRecord,
    TenantCredentials,
    utc_now_iso,
)
from shared_utils.constants import LogScope
from shared_utils.error_handler import JobNotFoundError, JobStateError, ValidationError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


class InMemoryJobStore:
    """Dict-backed JobStorePort with a single lock for all transitions."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # JobStorePort implementation
    # ------------------------------------------------------------------

    def create_if_absent(self, job: Job) -> Tuple[Job, bool]:
        with self._lock:
            existing = self._find_active_locked(job.tenant_id, job.meeting_id, job.type)
            if existing is not None:
                logger.info(
                    "inmemory_job_deduplicated",
                    job_id=existing.job_id,
                    meeting_id=job.meeting_id,
                    type=job.type.value,
                )
                return existing.model_copy(deep=True), False
            now = utc_now_iso()
            stored = job.model_copy(
                update={
                    "status": JobStatus.PENDING,
                    "created_at": job.created_at or now,
                    "updated_at": now,
                },
                deep=True,
            )
            self._jobs[stored.job_id] = stored
            logger.info("inmemory_job_created", job_id=stored.job_id, type=stored.type.value)
            return stored.model_copy(deep=True), True

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def find_active(self, tenant_id: str, meeting_id: str, job_type: JobType) -> Optional[Job]:
        with self._lock:
            job = self._find_active_locked(tenant_id, meeting_id, job_type)
            return job.model_copy(deep=True) if job else None

    def claim(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            for other in self._jobs.values():
                if (
                    other.job_id != job_id
                    and other.status == JobStatus.PROCESSING
                    and other.tenant_id == job.tenant_id
                    and other.meeting_id == job.meeting_id
                ):
                    logger.info("inmemory_claim_meeting_busy", job_id=job_id, holder=other.job_id)
                    return None
            job.status = JobStatus.PROCESSING
            job.updated_at = utc_now_iso()
            return job.model_copy(deep=True)

    def complete(self, job_id: str, result: Dict[str, Any]) -> Job:
        return self._finish(job_id, JobStatus.COMPLETED, result=result)

    def fail(self, job_id: str, error_message: str, result: Optional[Dict[str, Any]] = None) -> Job:
        return self._finish(job_id, JobStatus.FAILED, result=result, error_message=error_message)

    def reset_for_retry(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status != JobStatus.FAILED:
                raise JobStateError(job_id, job.status.value, "Only failed jobs can be retried")
            if self._find_active_locked(job.tenant_id, job.meeting_id, job.type) is not None:
                raise JobStateError(
                    job_id, job.status.value, "An equivalent job is already pending or processing"
                )
            job.status = JobStatus.PENDING
            job.error_message = None
            job.completed_at = None
            job.retry_count += 1
            job.updated_at = utc_now_iso()
            return job.model_copy(deep=True)

    def list_jobs(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> List[Job]:
        with self._lock:
            jobs = [
                j.model_copy(deep=True)
                for j in self._jobs.values()
                if (tenant_id is None or j.tenant_id == tenant_id)
                and (status is None or j.status == status)
            ]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_active_locked(self, tenant_id: str, meeting_id: str, job_type: JobType) -> Optional[Job]:
        for job in self._jobs.values():
            if job.dedupe_key == (tenant_id, meeting_id, job_type.value) and job.status in ACTIVE_JOB_STATUSES:
                return job
        return None

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status != JobStatus.PROCESSING:
                raise JobStateError(job_id, job.status.value)
            now = utc_now_iso()
            job.status = status
            job.updated_at = now
            job.completed_at = now
            if result is not None:
                job.result = result
            if error_message is not None:
                job.error_message = error_message
            logger.info("inmemory_job_finished", job_id=job_id, status=status.value)
            return job.model_copy(deep=True)


_REQUIRED_CREDENTIAL_FIELDS = (
    "provider_account_id",
    "provider_client_id",
    "provider_client_secret",
    "webhook_signing_secret",
)


def merge_credentials(
    tenant_id: str,
    existing: Optional[TenantCredentials],
    fields: Dict[str, Any],
) -> TenantCredentials:
    """Apply a partial update to a credential set, validating new records."""
    allowed = set(_REQUIRED_CREDENTIAL_FIELDS) | {"active"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError("Unknown credential fields", context={"fields": sorted(unknown)})

    if existing is None:
        missing = [f for f in _REQUIRED_CREDENTIAL_FIELDS if not fields.get(f)]
        if missing:
            raise ValidationError("Missing credential fields", context={"fields": missing})
        base: Dict[str, Any] = {"tenant_id": tenant_id}
    else:
        base = {
            "tenant_id": tenant_id,
            "provider_account_id": existing.provider_account_id,
            "provider_client_id": existing.provider_client_id,
            "provider_client_secret": existing.provider_client_secret.get_secret_value(),
            "webhook_signing_secret": existing.webhook_signing_secret.get_secret_value(),
            "active": existing.active,
        }
    base.update({k: v for k, v in fields.items() if v is not None})
    base["updated_at"] = utc_now_iso()
    return TenantCredentials(**base)


class InMemoryCredentialStore:
    """Dict-backed CredentialStorePort."""

    def __init__(self, initial: Optional[List[TenantCredentials]] = None) -> None:
        self._creds: Dict[str, TenantCredentials] = {c.tenant_id: c for c in initial or []}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> Optional[TenantCredentials]:
        with self._lock:
            return self._creds.get(tenant_id)

    def upsert(self, tenant_id: str, fields: Dict[str, Any]) -> TenantCredentials:
        with self._lock:
            creds = merge_credentials(tenant_id, self._creds.get(tenant_id), fields)
            self._creds[tenant_id] = creds
        logger.info("inmemory_credentials_upserted", tenant_id=tenant_id, active=creds.active)
        return creds


class InMemoryTranscriptStore:
    """Dict-backed TranscriptStorePort (minutes + append-only delivery log)."""

    def __init__(self) -> None:
        self._minutes: Dict[str, MinutesRecord] = {}
        self._by_job: Dict[str, str] = {}
        self._deliveries: List[DeliveryLogEntry] = []
        self._lock = threading.Lock()

    def save_minutes(self, record: MinutesRecord) -> MinutesRecord:
        with self._lock:
            existing_id = self._by_job.get(record.job_id)
            if existing_id is not None:
                return self._minutes[existing_id]
            stored = record.model_copy(update={"created_at": record.created_at or utc_now_iso()})
            self._minutes[stored.transcript_id] = stored
            self._by_job[stored.job_id] = stored.transcript_id
            return stored

    def get_minutes(self, transcript_id: str) -> Optional[MinutesRecord]:
        with self._lock:
            return self._minutes.get(transcript_id)

    def get_minutes_for_job(self, job_id: str) -> Optional[MinutesRecord]:
        with self._lock:
            transcript_id = self._by_job.get(job_id)
            return self._minutes.get(transcript_id) if transcript_id else None

    def list_minutes_for_meeting(self, tenant_id: str, meeting_id: str) -> List[MinutesRecord]:
        with self._lock:
            return [
                r for r in self._minutes.values()
                if r.tenant_id == tenant_id and r.meeting_id == meeting_id
            ]

    def append_delivery(self, entry: DeliveryLogEntry) -> None:
        with self._lock:
            self._deliveries.append(
                entry.model_copy(update={"created_at": entry.created_at or utc_now_iso()})
            )

    def list_deliveries(self, transcript_id: str) -> List[DeliveryLogEntry]:
        with self._lock:
            return [e for e in self._deliveries if e.transcript_id == transcript_id]

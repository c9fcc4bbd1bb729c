"""
Operator-facing job administration: manual jobs, status, retries, resends and
credential upserts. Backs the /api/v1 routes.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from domain.models import (
    DeliveryLogEntry,
    DeliveryStatus,
    Job,
    JobStatus,
    JobType,
    ManualPayload,
)
from ports.credential_store import CredentialStorePort
from ports.job_store import JobStorePort
from ports.transcript_store import TranscriptStorePort
from services.credential_resolver import CredentialResolver
from services.distribution_engine import DistributionEngine
from services.job_intake import JobIntake
from shared_utils.constants import LogScope
from shared_utils.error_handler import (
    JobNotFoundError,
    NotConfiguredError,
    TenantResolutionError,
    ValidationError,
)
from shared_utils.logging_utils import get_scoped_logger, mask_secret
from shared_utils.validation import InputValidator, validate_input


logger = get_scoped_logger(LogScope.API)


def _check_tenant(tenant_id: str) -> str:
    if not InputValidator.is_valid_tenant_id(tenant_id):
        raise TenantResolutionError(str(tenant_id), "Malformed tenant identifier")
    return tenant_id


class JobAdminService:
    """Synchronous admin operations over the job and transcript stores."""

    def __init__(
        self,
        job_store: JobStorePort,
        transcript_store: TranscriptStorePort,
        credential_store: CredentialStorePort,
        credential_resolver: CredentialResolver,
        intake: JobIntake,
        distribution_factory: Callable[[], DistributionEngine],
    ) -> None:
        self._jobs = job_store
        self._transcripts = transcript_store
        self._credential_store = credential_store
        self._resolver = credential_resolver
        self._intake = intake
        self._distribution_factory = distribution_factory

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @validate_input({
        "meeting_id": lambda v: InputValidator.validate_non_empty_string(str(v), "meeting_id"),
        "recipients": lambda v: InputValidator.validate_emails(v or []),
    })
    def create_manual_job(
        self,
        tenant_id: str,
        meeting_id: str,
        topic: str = "",
        start_time: Optional[str] = None,
        recipients: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Job, bool]:
        """Queue a job for a meeting the webhook never reported.

        Pass ``meeting_id`` and ``recipients`` as keywords so they are validated.
        """
        _check_tenant(tenant_id)
        meeting_id = str(meeting_id).strip()
        if not meeting_id:
            raise ValidationError("meeting_id cannot be empty")
        emails = list(recipients or [])
        try:
            self._resolver.resolve(tenant_id)
        except NotConfiguredError as exc:
            raise TenantResolutionError(tenant_id) from exc

        payload = ManualPayload(
            meeting_id=meeting_id,
            topic=topic,
            start_time=start_time,
            recipients=emails,
            notes=notes,
        )
        job = Job(
            job_id=str(uuid4()),
            tenant_id=tenant_id,
            type=JobType.MANUAL,
            meeting_id=meeting_id,
            payload=payload.model_dump(mode="json", exclude={"kind"}),
        )
        return self._intake.submit(job)

    def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, tenant_id: str, status: Optional[str] = None) -> List[Job]:
        _check_tenant(tenant_id)
        job_status = None
        if status:
            try:
                job_status = JobStatus(status)
            except ValueError as exc:
                raise ValidationError(
                    "Unknown job status",
                    context={"status": status, "allowed": [s.value for s in JobStatus]},
                ) from exc
        return self._jobs.list_jobs(tenant_id=tenant_id, status=job_status)

    def retry_job(self, job_id: str) -> Job:
        """failed -> pending and back onto the queue."""
        job = self._jobs.reset_for_retry(job_id)
        self._intake.requeue(job.job_id)
        logger.info("job_retry_requested", job_id=job_id, retry_count=job.retry_count)
        return job

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    def list_deliveries(self, transcript_id: str) -> List[DeliveryLogEntry]:
        if self._transcripts.get_minutes(transcript_id) is None:
            raise JobNotFoundError(transcript_id, resource="transcript")
        return self._transcripts.list_deliveries(transcript_id)

    def resend(self, transcript_id: str, recipients: Optional[List[str]] = None) -> List[DeliveryLogEntry]:
        """Send the minutes again.

        Without explicit recipients, targets every address whose latest
        attempt failed. New entries are appended with the next attempt number.
        """
        record = self._transcripts.get_minutes(transcript_id)
        if record is None:
            raise JobNotFoundError(transcript_id, resource="transcript")

        history = self._transcripts.list_deliveries(transcript_id)
        latest: Dict[str, DeliveryLogEntry] = {}
        for entry in history:
            key = entry.recipient.lower()
            if key not in latest or entry.attempt >= latest[key].attempt:
                latest[key] = entry

        if recipients:
            targets = InputValidator.validate_emails(recipients)
        else:
            targets = [e.recipient for e in latest.values() if e.status == DeliveryStatus.FAILED]
        if not targets:
            logger.info("resend_nothing_to_send", transcript_id=transcript_id)
            return []

        attempt = max((e.attempt for e in history), default=0) + 1
        logger.info("resend_requested", transcript_id=transcript_id, recipients=len(targets), attempt=attempt)
        return self._distribution_factory().deliver(record, targets, attempt=attempt)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def upsert_credentials(self, tenant_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Write-only secrets: the response carries fingerprints, never values."""
        _check_tenant(tenant_id)
        creds = self._credential_store.upsert(tenant_id, fields)
        logger.info("tenant_credentials_updated", tenant_id=tenant_id, active=creds.active)
        return {
            "tenant_id": creds.tenant_id,
            "provider_account_id": creds.provider_account_id,
            "provider_client_id": creds.provider_client_id,
            "provider_client_secret": mask_secret(creds.provider_client_secret.get_secret_value()),
            "webhook_signing_secret": mask_secret(creds.webhook_signing_secret.get_secret_value()),
            "active": creds.active,
            "updated_at": creds.updated_at,
        }

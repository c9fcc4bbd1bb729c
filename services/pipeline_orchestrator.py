"""
Pipeline orchestrator: drives one job from pending to completed or failed.

Flow:  claim -> supersede check -> credentials -> media -> transcript -> minutes
       -> persist -> recipients -> deliver -> complete

The provider sends both recording and transcript events for one meeting. A
non-manual job finding minutes another job already produced for the same
meeting occurrence completes as superseded, without a second transcription
or a second round of mail.

Depends only on ports and sibling services; adapters are injected by the DI
container. Every permanent failure lands on the job as ``failed`` with the
first cause; transient failures that outlast their adapter-level retries are
treated the same way so a job never stays ``processing`` after ``process``
returns.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, List, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from domain.models import (
    AudioResult,
    CaptionResult,
    DeliveryStatus,
    Job,
    JobPayload,
    JobResult,
    JobStatus,
    JobType,
    ManualPayload,
    MediaFile,
    MeetingMetadata,
    MeetingRecordings,
    MinutesRecord,
    NoMedia,
    Participant,
    StrategyResult,
    TenantCredentials,
    TranscriptionMethod,
    parse_job_payload,
    utc_now_iso,
)
from ports.conferencing import ConferencingProviderPort
from ports.job_store import JobStorePort
from ports.transcript_store import TranscriptStorePort
from services.credential_resolver import CredentialResolver
from services.distribution_engine import DistributionEngine
from services.minutes_generator import MinutesGenerator
from services.transcription_strategy import TranscriptionStrategy
from shared_utils.constants import LogScope
from shared_utils.error_handler import AppException, NoMediaAvailableError
from shared_utils.logging_utils import ContextualLogger, get_scoped_logger


logger = get_scoped_logger(LogScope.ORCHESTRATION)


class ProcessOutcome(str, Enum):
    """What ``process`` did with a job id taken off the queue."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"        # unknown job or already past pending
    DEFERRED = "deferred"      # another job for the meeting is processing
    SUPERSEDED = "superseded"  # minutes for the meeting came from another job


def resolve_recipients(
    payload: JobPayload,
    host_email: Optional[str],
    participants: List[Participant],
) -> List[str]:
    """Manual recipients win; otherwise host first, then participants.

    Deduplicated case-insensitively, first spelling kept.
    """
    if isinstance(payload, ManualPayload) and payload.recipients:
        candidates = list(payload.recipients)
    else:
        candidates = [host_email] if host_email else []
        candidates += [p.email for p in participants if p.email]

    seen = set()
    recipients = []
    for email in candidates:
        key = email.strip().lower()
        if key and key not in seen:
            seen.add(key)
            recipients.append(email.strip())
    return recipients


class PipelineOrchestrator:
    """Owns the job lifecycle for the worker pool."""

    def __init__(
        self,
        job_store: JobStorePort,
        transcript_store: TranscriptStorePort,
        credential_resolver: CredentialResolver,
        provider: ConferencingProviderPort,
        strategy: TranscriptionStrategy,
        generator: MinutesGenerator,
        distribution: DistributionEngine,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._jobs = job_store
        self._transcripts = transcript_store
        self._credentials = credential_resolver
        self._provider = provider
        self._strategy = strategy
        self._generator = generator
        self._distribution = distribution
        self._new_id = id_factory

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, job_id: str) -> ProcessOutcome:
        """Run the pipeline for one queued job id."""
        job = self._jobs.claim(job_id)
        if job is None:
            current = self._jobs.get(job_id)
            if current is not None and current.status == JobStatus.PENDING:
                logger.info("job_deferred_meeting_busy", job_id=job_id, meeting_id=current.meeting_id)
                return ProcessOutcome.DEFERRED
            logger.info(
                "job_skipped",
                job_id=job_id,
                status=current.status.value if current else None,
            )
            return ProcessOutcome.SKIPPED

        log = ContextualLogger(
            LogScope.ORCHESTRATION,
            job_id=job.job_id,
            tenant_id=job.tenant_id,
            meeting_id=job.meeting_id,
        )
        log.info("job_processing_started", type=job.type.value, retry_count=job.retry_count)

        result = JobResult()
        try:
            earlier = self._superseding_minutes(job)
            if earlier is not None:
                return self._supersede(job, earlier, result, log)
            self._run(job, result, log)
        except AppException as exc:
            return self._fail(job, f"{type(exc).__name__}: {exc.message}", result, log)
        except PydanticValidationError as exc:
            return self._fail(job, f"InvalidPayload: {exc.error_count()} validation error(s)", result, log)
        except Exception as exc:
            log.error("job_unexpected_error", error_type=type(exc).__name__, error=str(exc))
            return self._fail(job, f"{type(exc).__name__}: {exc}", result, log)

        self._jobs.complete(job.job_id, result.model_dump(mode="json"))
        log.info(
            "job_completed",
            transcript_id=result.transcript_id,
            method=result.transcription_method.value if result.transcription_method else None,
            recipients=result.recipients_attempted,
            failed=result.recipients_failed,
        )
        return ProcessOutcome.COMPLETED

    def _run(self, job: Job, result: JobResult, log: ContextualLogger) -> None:
        payload = parse_job_payload(job)
        credentials = self._credentials.resolve(job.tenant_id)
        recordings = self._recordings_for(credentials, payload, log)
        participants = self._participants_for(credentials, payload, log)

        record = self._transcripts.get_minutes_for_job(job.job_id)
        if record is None:
            outcome = self._strategy.produce(credentials, self._media_for(payload, recordings))
            self._record_outcome(outcome, result)
            if isinstance(outcome, NoMedia):
                raise NoMediaAvailableError(outcome.reason)
            record = self._build_minutes(job, payload, recordings, participants, outcome)
            record = self._transcripts.save_minutes(record)
            log.info("minutes_saved", transcript_id=record.transcript_id)
        else:
            log.info("minutes_already_saved", transcript_id=record.transcript_id)
        result.transcript_id = record.transcript_id

        host_email = payload.host_email or (recordings.host_email if recordings else None)
        recipients = resolve_recipients(payload, host_email, participants)
        if not recipients:
            log.warning("no_recipients_resolved")
        entries = self._distribution.deliver(record, recipients)
        result.recipients_attempted = len(entries)
        result.recipients_failed = sum(1 for e in entries if e.status == DeliveryStatus.FAILED)

    def _superseding_minutes(self, job: Job) -> Optional[MinutesRecord]:
        """Minutes another job already produced for this meeting occurrence.

        Manual jobs always run, and so does a job resuming after its own save.
        Records with a different start time belong to another occurrence of a
        recurring meeting.
        """
        if job.type == JobType.MANUAL:
            return None
        if self._transcripts.get_minutes_for_job(job.job_id) is not None:
            return None
        start_time = parse_job_payload(job).start_time
        for record in self._transcripts.list_minutes_for_meeting(job.tenant_id, job.meeting_id):
            if record.job_id == job.job_id:
                continue
            if start_time and record.start_time and record.start_time != start_time:
                continue
            return record
        return None

    def _supersede(
        self, job: Job, earlier: MinutesRecord, result: JobResult, log: ContextualLogger
    ) -> ProcessOutcome:
        result.superseded_by = earlier.transcript_id
        self._jobs.complete(job.job_id, result.model_dump(mode="json"))
        log.info("job_superseded", transcript_id=earlier.transcript_id, by_job=earlier.job_id)
        return ProcessOutcome.SUPERSEDED

    def _fail(self, job: Job, error_message: str, result: JobResult, log: ContextualLogger) -> ProcessOutcome:
        log.warning("job_failed", error=error_message)
        self._jobs.fail(job.job_id, error_message, result.model_dump(mode="json"))
        return ProcessOutcome.FAILED

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _recordings_for(
        self, credentials: TenantCredentials, payload: JobPayload, log: ContextualLogger
    ) -> Optional[MeetingRecordings]:
        """Provider recording listing, only when the payload carries no files."""
        if payload.recording_files:
            return None
        log.info("fetching_recordings_from_provider")
        return self._provider.get_recordings(credentials, payload.meeting_uuid or payload.meeting_id)

    @staticmethod
    def _media_for(payload: JobPayload, recordings: Optional[MeetingRecordings]) -> List[MediaFile]:
        if payload.recording_files:
            return payload.recording_files
        return recordings.recording_files if recordings else []

    def _participants_for(
        self, credentials: TenantCredentials, payload: JobPayload, log: ContextualLogger
    ) -> List[Participant]:
        if payload.participants:
            return payload.participants
        if isinstance(payload, ManualPayload) and payload.recipients:
            return []
        try:
            return self._provider.get_participants(credentials, payload.meeting_uuid or payload.meeting_id)
        except AppException as exc:
            # Host-only delivery is still useful
            log.warning("participant_lookup_failed", error=exc.message)
            return []

    @staticmethod
    def _record_outcome(outcome: StrategyResult, result: JobResult) -> None:
        if isinstance(outcome, CaptionResult):
            result.transcription_method = TranscriptionMethod.CAPTION
            result.caption_quality_score = outcome.quality.score
            result.caption_speakers = outcome.speakers
        elif isinstance(outcome, AudioResult):
            result.transcription_method = TranscriptionMethod.AUDIO
            result.caption_rejection_reason = outcome.caption_rejection_reason
        else:
            result.caption_rejection_reason = outcome.reason

    def _build_minutes(
        self,
        job: Job,
        payload: JobPayload,
        recordings: Optional[MeetingRecordings],
        participants: List[Participant],
        outcome: StrategyResult,
    ) -> MinutesRecord:
        names = [p.name for p in participants if p.name]
        if not names and isinstance(outcome, CaptionResult):
            names = list(outcome.speakers)
        names = list(dict.fromkeys(names))

        meeting = MeetingMetadata(
            meeting_id=job.meeting_id,
            topic=payload.topic or (recordings.topic if recordings else ""),
            start_time=payload.start_time or (recordings.start_time if recordings else None),
            duration=payload.duration or (recordings.duration if recordings else None),
            host_email=payload.host_email or (recordings.host_email if recordings else None),
            participants=names,
        )
        minutes = self._generator.generate(outcome.transcript, meeting)
        return MinutesRecord(
            transcript_id=self._new_id(),
            job_id=job.job_id,
            tenant_id=job.tenant_id,
            meeting_id=job.meeting_id,
            meeting_topic=meeting.topic,
            start_time=meeting.start_time,
            duration=meeting.duration,
            participants=names,
            raw_transcript=outcome.transcript,
            formatted_transcript=minutes.formatted_transcript,
            summary=minutes.summary,
            action_items=minutes.action_items,
            key_decisions=minutes.key_decisions,
            created_at=utc_now_iso(),
        )


"""
Pure domain models for the meeting minutes pipeline.

These models contain NO AWS or HTTP dependencies. They represent core business
concepts that flow through ports and services.

Job payloads and transcription outcomes are tagged unions discriminated on
``kind`` so services match on a type rather than probing dict keys.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, SecretStr, TypeAdapter


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class JobType(str, Enum):
    """What triggered a job."""

    RECORDING_COMPLETED = "recording_completed"
    TRANSCRIPT_COMPLETED = "transcript_completed"
    MEETING_ENDED = "meeting_ended"
    MANUAL = "manual"


class JobStatus(str, Enum):
    """Job lifecycle: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class DeliveryStatus(str, Enum):
    """Outcome of sending minutes to a single recipient."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class TranscriptionMethod(str, Enum):
    CAPTION = "caption"
    AUDIO = "audio"


# ---------------------------------------------------------------------------
# Tenant credentials
# ---------------------------------------------------------------------------


class TenantCredentials(BaseModel):
    """Provider API credentials and webhook signing secret for one tenant.

    Secrets are ``SecretStr`` so they render as ``**********`` in reprs and
    log lines.
    """

    tenant_id: str
    provider_account_id: str
    provider_client_id: str
    provider_client_secret: SecretStr
    webhook_signing_secret: SecretStr
    active: bool = True
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Conferencing provider data
# ---------------------------------------------------------------------------

_CAPTION_FILE_TYPES = {"VTT", "TRANSCRIPT", "CC"}
_CAPTION_RECORDING_TYPES = {"transcript", "audio_transcript", "closed_caption"}
_AUDIO_FILE_TYPES = {"M4A", "MP3", "WAV"}
_VIDEO_FILE_TYPES = {"MP4"}


class MediaFile(BaseModel):
    """One entry of a meeting's recording file list."""

    file_id: Optional[str] = Field(default=None, alias="id")
    file_type: str = ""
    file_extension: str = ""
    recording_type: str = ""
    download_url: str = ""
    file_size: Optional[int] = None
    status: Optional[str] = None
    recording_start: Optional[str] = None
    recording_end: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def is_caption(self) -> bool:
        return (
            self.file_type.upper() in _CAPTION_FILE_TYPES
            or self.recording_type.lower() in _CAPTION_RECORDING_TYPES
        )

    def is_audio(self) -> bool:
        return (
            self.file_type.upper() in _AUDIO_FILE_TYPES
            or self.recording_type.lower() == "audio_only"
        )

    def is_video(self) -> bool:
        return self.file_type.upper() in _VIDEO_FILE_TYPES


class Participant(BaseModel):
    """Meeting attendee as reported by the provider (email may be hidden)."""

    name: str = ""
    email: Optional[str] = None

    model_config = {"extra": "ignore"}


class MeetingRecordings(BaseModel):
    """Recording listing for a meeting fetched from the provider API."""

    meeting_id: str
    topic: str = ""
    start_time: Optional[str] = None
    duration: Optional[int] = None
    host_email: Optional[str] = None
    recording_files: List[MediaFile] = []


# ---------------------------------------------------------------------------
# Job payloads (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class _MeetingPayload(BaseModel):
    meeting_id: str
    meeting_uuid: Optional[str] = None
    topic: str = ""
    start_time: Optional[str] = None
    duration: Optional[int] = None
    host_email: Optional[str] = None
    host_name: Optional[str] = None
    recording_files: List[MediaFile] = []
    participants: List[Participant] = []

    model_config = {"extra": "ignore"}


class RecordingCompletedPayload(_MeetingPayload):
    kind: Literal["recording_completed"] = "recording_completed"


class TranscriptCompletedPayload(_MeetingPayload):
    kind: Literal["transcript_completed"] = "transcript_completed"


class MeetingEndedPayload(_MeetingPayload):
    kind: Literal["meeting_ended"] = "meeting_ended"


class ManualPayload(_MeetingPayload):
    """Operator-entered job. ``recipients`` overrides provider lookups."""

    kind: Literal["manual"] = "manual"
    recipients: List[str] = []
    notes: Optional[str] = None


JobPayload = Annotated[
    Union[
        RecordingCompletedPayload,
        TranscriptCompletedPayload,
        MeetingEndedPayload,
        ManualPayload,
    ],
    Field(discriminator="kind"),
]

JOB_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(JobPayload)

PAYLOAD_TYPES = {
    JobType.RECORDING_COMPLETED: RecordingCompletedPayload,
    JobType.TRANSCRIPT_COMPLETED: TranscriptCompletedPayload,
    JobType.MEETING_ENDED: MeetingEndedPayload,
    JobType.MANUAL: ManualPayload,
}


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class JobResult(BaseModel):
    """What a completed job produced, stored on the job for status queries."""

    transcript_id: Optional[str] = None
    transcription_method: Optional[TranscriptionMethod] = None
    caption_quality_score: Optional[int] = None
    caption_speakers: List[str] = []
    caption_rejection_reason: Optional[str] = None
    recipients_attempted: int = 0
    recipients_failed: int = 0
    # transcript_id of another job's minutes for the same meeting
    superseded_by: Optional[str] = None


class Job(BaseModel):
    """One meeting-completion event tracked end to end.

    ``payload`` and ``result`` are stored as plain dicts; the orchestrator
    validates ``payload`` into a ``JobPayload`` before use.
    """

    job_id: str
    tenant_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    meeting_id: str
    payload: Dict[str, Any] = {}
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None

    @property
    def dedupe_key(self) -> Tuple[str, str, str]:
        return (self.tenant_id, self.meeting_id, self.type.value)

    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


def parse_job_payload(job: Job) -> JobPayload:
    """Validate a job's stored payload into its tagged payload model.

    Raises:
        pydantic.ValidationError: If the payload does not match the job type.
    """
    data = {**job.payload, "kind": job.type.value}
    data.setdefault("meeting_id", job.meeting_id)
    return JOB_PAYLOAD_ADAPTER.validate_python(data)


# ---------------------------------------------------------------------------
# Caption parsing
# ---------------------------------------------------------------------------


class CaptionCue(BaseModel):
    """One speaker-tagged utterance bound to its timestamp range."""

    start_time: str
    end_time: str
    speaker: str
    text: str


class QualityMetrics(BaseModel):
    cue_count: int = 0
    speaker_count: int = 0
    average_text_length: float = 0.0
    empty_cue_count: int = 0
    large_gap_count: int = 0
    speaker_balance_score: float = 0.0
    timestamp_count: int = 0
    speaker_line_count: int = 0


class QualityReport(BaseModel):
    """Score (0-100) plus the warnings, hard errors and metrics behind it."""

    score: int = 0
    warnings: List[str] = []
    errors: List[str] = []
    metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    suggestions: List[str] = []

    @property
    def has_hard_error(self) -> bool:
        return bool(self.errors)


class CaptionParseResult(BaseModel):
    """Successful caption parse: transcript, speaker set and quality."""

    cues: List[CaptionCue]
    transcript: str
    speakers: List[str]
    speaker_transcripts: Dict[str, str] = {}
    quality: QualityReport


# ---------------------------------------------------------------------------
# Transcription strategy outcome (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class CaptionResult(BaseModel):
    kind: Literal["caption"] = "caption"
    transcript: str
    speakers: List[str] = []
    quality: QualityReport
    media_file_id: Optional[str] = None


class AudioResult(BaseModel):
    kind: Literal["audio"] = "audio"
    transcript: str
    media_file_id: Optional[str] = None
    caption_rejection_reason: Optional[str] = None


class NoMedia(BaseModel):
    kind: Literal["no_media"] = "no_media"
    reason: str


StrategyResult = Annotated[
    Union[CaptionResult, AudioResult, NoMedia],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Minutes
# ---------------------------------------------------------------------------


class MeetingMetadata(BaseModel):
    """Meeting context handed to the minutes generator."""

    meeting_id: str
    topic: str = ""
    start_time: Optional[str] = None
    duration: Optional[int] = None  # minutes
    host_email: Optional[str] = None
    participants: List[str] = []


class ActionItem(BaseModel):
    item: str
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[str] = None

    model_config = {"extra": "ignore"}


class Minutes(BaseModel):
    """Structured output of the summarization call."""

    summary: str = ""
    formatted_transcript: str = ""
    action_items: List[ActionItem] = []
    key_decisions: List[str] = []
    discussion_points: List[str] = []
    next_meeting: Optional[str] = None
    follow_up_required: bool = False

    model_config = {"extra": "ignore"}


class MinutesRecord(BaseModel):
    """Persisted minutes; created once per successfully processed job."""

    transcript_id: str
    job_id: str
    tenant_id: str
    meeting_id: str
    meeting_topic: str = ""
    start_time: Optional[str] = None
    duration: Optional[int] = None
    participants: List[str] = []
    raw_transcript: str
    formatted_transcript: str = ""
    summary: str = ""
    action_items: List[ActionItem] = []
    key_decisions: List[str] = []
    created_at: str = ""


class DeliveryLogEntry(BaseModel):
    """Append-only record of one send attempt to one recipient."""

    log_id: str
    transcript_id: str
    tenant_id: str = ""
    recipient: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt: int = 1
    sent_at: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str = ""

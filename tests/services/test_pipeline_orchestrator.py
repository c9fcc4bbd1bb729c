"""
Tests for services.pipeline_orchestrator.PipelineOrchestrator.

Runs the real stores, strategy and distribution engine in memory with the
provider, speech-to-text, LLM and mailer mocked.
"""

import itertools
import json
import threading
from unittest.mock import MagicMock

import pytest

from adapters.in_memory_stores import (
    InMemoryCredentialStore,
    InMemoryJobStore,
    InMemoryTranscriptStore,
)
from domain.models import (
    DeliveryStatus,
    JobStatus,
    JobType,
    ManualPayload,
    MeetingEndedPayload,
    MeetingRecordings,
    Participant,
)
from services.credential_resolver import CredentialResolver
from services.distribution_engine import DistributionEngine
from services.minutes_generator import MinutesGenerator
from services.pipeline_orchestrator import (
    PipelineOrchestrator,
    ProcessOutcome,
    resolve_recipients,
)
from services.transcription_strategy import TranscriptionStrategy
from shared_utils.error_handler import DeliveryError, ExternalServiceError, GenerationError
from tests.conftest import make_job


LLM_REPLY = json.dumps(
    {
        "summary": "Launch confirmed.",
        "formatted_transcript": "Alice: ship it",
        "action_items": [{"item": "Send checklist", "assignee": "Bob"}],
        "key_decisions": ["Ship Thursday"],
    }
)


class Pipeline:
    """The orchestrator plus handles on its collaborators."""

    def __init__(self, tenant_credentials, provider, transcriber, mailer, id_factory=None) -> None:
        self.jobs = InMemoryJobStore()
        self.transcripts = InMemoryTranscriptStore()
        self.credentials = InMemoryCredentialStore([tenant_credentials])
        self.provider = provider
        self.transcriber = transcriber
        self.mailer = mailer
        self.llm = MagicMock()
        self.llm.generate.return_value = LLM_REPLY
        self.orchestrator = PipelineOrchestrator(
            job_store=self.jobs,
            transcript_store=self.transcripts,
            credential_resolver=CredentialResolver(self.credentials),
            provider=provider,
            strategy=TranscriptionStrategy(provider, transcriber),
            generator=MinutesGenerator(self.llm, max_retries=0, retry_wait=0),
            distribution=DistributionEngine(mailer, self.transcripts),
            id_factory=id_factory or (lambda: "t-1"),
        )

    def add(self, job):
        self.jobs.create_if_absent(job)
        return job.job_id


@pytest.fixture()
def pipeline(tenant_credentials, mock_provider, mock_transcriber, mock_mailer) -> Pipeline:
    return Pipeline(tenant_credentials, mock_provider, mock_transcriber, mock_mailer)


def _recording_payload(*files, **extra):
    return {
        "host_email": "host@example.com",
        "topic": "Launch review",
        "recording_files": [f.model_dump(by_alias=True) for f in files],
        **extra,
    }


# ---------------------------------------------------------------------------
# resolve_recipients
# ---------------------------------------------------------------------------


class TestResolveRecipients:
    def test_host_then_participants_deduplicated(self) -> None:
        payload = MeetingEndedPayload(meeting_id="m")
        people = [
            Participant(name="Alice", email="Alice@Example.com"),
            Participant(name="Host", email="host@example.com"),
            Participant(name="NoEmail"),
        ]
        assert resolve_recipients(payload, "HOST@example.com", people) == [
            "HOST@example.com",
            "Alice@Example.com",
        ]

    def test_manual_recipients_win(self) -> None:
        payload = ManualPayload(meeting_id="m", recipients=["x@example.com", " X@example.com "])
        people = [Participant(name="A", email="a@example.com")]
        assert resolve_recipients(payload, "host@example.com", people) == ["x@example.com"]

    def test_nothing_to_send_to(self) -> None:
        assert resolve_recipients(MeetingEndedPayload(meeting_id="m"), None, []) == []


# ---------------------------------------------------------------------------
# process: happy paths
# ---------------------------------------------------------------------------


class TestProcessCompleted:
    def test_caption_path_with_partial_delivery_failure(
        self, pipeline: Pipeline, caption_file, sample_vtt
    ) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        pipeline.provider.get_participants.return_value = [
            Participant(name="Alice", email="alice@example.com"),
            Participant(name="Bob", email="bob@example.com"),
        ]
        pipeline.mailer.send.side_effect = [None, DeliveryError("alice@example.com", "bounced"), None]
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file)))

        outcome = pipeline.orchestrator.process(job_id)

        assert outcome == ProcessOutcome.COMPLETED
        job = pipeline.jobs.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result["transcription_method"] == "caption"
        assert job.result["caption_quality_score"] == 100
        assert job.result["recipients_attempted"] == 3
        assert job.result["recipients_failed"] == 1
        assert job.result["transcript_id"] == "t-1"

        record = pipeline.transcripts.get_minutes("t-1")
        assert record.summary == "Launch confirmed."
        assert record.participants == ["Alice", "Bob"]
        assert record.meeting_topic == "Launch review"
        statuses = [e.status for e in pipeline.transcripts.list_deliveries("t-1")]
        assert statuses.count(DeliveryStatus.FAILED) == 1
        pipeline.provider.get_recordings.assert_not_called()

    def test_audio_path_from_provider_listing(self, pipeline: Pipeline, audio_file) -> None:
        pipeline.provider.get_recordings.return_value = MeetingRecordings(
            meeting_id="123456789",
            topic="From provider",
            host_email="host@example.com",
            recording_files=[audio_file],
        )
        pipeline.provider.download.return_value = b"audio"
        job_id = pipeline.add(make_job(job_type=JobType.MEETING_ENDED))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED

        job = pipeline.jobs.get(job_id)
        assert job.result["transcription_method"] == "audio"
        assert pipeline.transcripts.get_minutes("t-1").meeting_topic == "From provider"
        pipeline.mailer.send.assert_called_once()
        assert pipeline.mailer.send.call_args.args[0] == "host@example.com"

    def test_manual_job_uses_given_recipients(self, pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        job_id = pipeline.add(
            make_job(
                job_type=JobType.MANUAL,
                payload=_recording_payload(caption_file, recipients=["ops@example.com"]),
            )
        )

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED

        pipeline.provider.get_participants.assert_not_called()
        assert [c.args[0] for c in pipeline.mailer.send.call_args_list] == ["ops@example.com"]
        # Speaker names stand in for the missing participant list
        assert pipeline.transcripts.get_minutes("t-1").participants == ["Alice", "Bob"]

    def test_participant_lookup_failure_is_not_fatal(self, pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        pipeline.provider.get_participants.side_effect = ExternalServiceError("Zoom", "report unavailable")
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file)))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED
        assert pipeline.jobs.get(job_id).result["recipients_attempted"] == 1

    def test_zero_recipients_still_completes(self, pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        payload = _recording_payload(caption_file)
        payload.pop("host_email")
        job_id = pipeline.add(make_job(payload=payload))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED
        assert pipeline.jobs.get(job_id).result["recipients_attempted"] == 0

    def test_existing_minutes_reused_on_retry(
        self, pipeline: Pipeline, caption_file, sample_minutes_record
    ) -> None:
        pipeline.transcripts.save_minutes(sample_minutes_record)
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file)))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED

        pipeline.provider.download.assert_not_called()
        pipeline.llm.generate.assert_not_called()
        assert pipeline.jobs.get(job_id).result["transcript_id"] == "t-1"


# ---------------------------------------------------------------------------
# process: failures
# ---------------------------------------------------------------------------


class TestProcessFailed:
    def test_no_media(self, pipeline: Pipeline) -> None:
        job_id = pipeline.add(make_job())

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.FAILED

        job = pipeline.jobs.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message.startswith("NoMediaAvailableError")
        assert "no usable caption file" in job.result["caption_rejection_reason"]
        pipeline.mailer.send.assert_not_called()

    def test_unconfigured_tenant(self, pipeline: Pipeline) -> None:
        job_id = pipeline.add(make_job(tenant_id="ghost"))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.FAILED
        assert pipeline.jobs.get(job_id).error_message.startswith("NotConfiguredError")

    def test_invalid_payload(self, pipeline: Pipeline) -> None:
        job_id = pipeline.add(make_job(payload={"duration": "long"}))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.FAILED
        assert pipeline.jobs.get(job_id).error_message.startswith("InvalidPayload")

    def test_generation_failure(self, pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        pipeline.llm.generate.side_effect = GenerationError("model unavailable", transient=True)
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file)))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.FAILED

        job = pipeline.jobs.get(job_id)
        assert job.error_message == "GenerationError: model unavailable"
        assert job.result["transcription_method"] == "caption"
        assert pipeline.transcripts.get_minutes_for_job(job_id) is None

    def test_unexpected_exception(self, pipeline: Pipeline) -> None:
        pipeline.provider.get_recordings.side_effect = KeyError("recording_files")
        job_id = pipeline.add(make_job())

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.FAILED
        assert pipeline.jobs.get(job_id).error_message.startswith("KeyError")


# ---------------------------------------------------------------------------
# process: claim outcomes
# ---------------------------------------------------------------------------


class TestProcessClaim:
    def test_unknown_job_skipped(self, pipeline: Pipeline) -> None:
        assert pipeline.orchestrator.process("missing") == ProcessOutcome.SKIPPED

    def test_finished_job_skipped(self, pipeline: Pipeline) -> None:
        job_id = pipeline.add(make_job())
        pipeline.orchestrator.process(job_id)
        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.SKIPPED

    def test_busy_meeting_deferred(self, pipeline: Pipeline) -> None:
        pipeline.add(make_job("job-1"))
        other = pipeline.add(make_job("job-2", job_type=JobType.MEETING_ENDED))
        pipeline.jobs.claim("job-1")

        assert pipeline.orchestrator.process(other) == ProcessOutcome.DEFERRED
        assert pipeline.jobs.get(other).status == JobStatus.PENDING

    def test_duplicate_delivery_processed_once(self, pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file)))
        outcomes = []
        barrier = threading.Barrier(4)

        def worker() -> None:
            barrier.wait()
            outcomes.append(pipeline.orchestrator.process(job_id))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(ProcessOutcome.COMPLETED) == 1
        assert outcomes.count(ProcessOutcome.SKIPPED) == 3
        assert pipeline.llm.generate.call_count == 1


# ---------------------------------------------------------------------------
# process: one set of minutes per meeting
# ---------------------------------------------------------------------------


START = "2026-01-15T10:00:00Z"


@pytest.fixture()
def counted_pipeline(tenant_credentials, mock_provider, mock_transcriber, mock_mailer) -> Pipeline:
    counter = itertools.count(1)
    return Pipeline(
        tenant_credentials, mock_provider, mock_transcriber, mock_mailer,
        id_factory=lambda: f"t-{next(counter)}",
    )


class TestProcessSuperseded:
    @pytest.mark.parametrize("first", ["transcript", "recording"])
    def test_both_provider_events_yield_one_set_of_minutes(
        self, counted_pipeline: Pipeline, caption_file, audio_file, sample_vtt, first: str
    ) -> None:
        pipeline = counted_pipeline
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        jobs = {
            "transcript": pipeline.add(make_job(
                "job-t",
                job_type=JobType.TRANSCRIPT_COMPLETED,
                payload=_recording_payload(caption_file, start_time=START),
            )),
            "recording": pipeline.add(make_job(
                "job-r",
                job_type=JobType.RECORDING_COMPLETED,
                payload=_recording_payload(audio_file, caption_file, start_time=START),
            )),
        }
        second = "recording" if first == "transcript" else "transcript"

        assert pipeline.orchestrator.process(jobs[first]) == ProcessOutcome.COMPLETED
        assert pipeline.orchestrator.process(jobs[second]) == ProcessOutcome.SUPERSEDED

        records = pipeline.transcripts.list_minutes_for_meeting("acme", "123456789")
        assert [r.transcript_id for r in records] == ["t-1"]
        assert pipeline.mailer.send.call_count == 1
        assert pipeline.llm.generate.call_count == 1

        superseded = pipeline.jobs.get(jobs[second])
        assert superseded.status == JobStatus.COMPLETED
        assert superseded.result["superseded_by"] == "t-1"
        assert superseded.result["transcript_id"] is None

    def test_manual_job_always_runs(self, counted_pipeline: Pipeline, caption_file, sample_vtt) -> None:
        pipeline = counted_pipeline
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        pipeline.add(make_job("job-t", job_type=JobType.TRANSCRIPT_COMPLETED,
                              payload=_recording_payload(caption_file, start_time=START)))
        pipeline.orchestrator.process("job-t")
        manual = pipeline.add(make_job("job-m", job_type=JobType.MANUAL,
                                       payload=_recording_payload(caption_file, start_time=START)))

        assert pipeline.orchestrator.process(manual) == ProcessOutcome.COMPLETED

        assert len(pipeline.transcripts.list_minutes_for_meeting("acme", "123456789")) == 2
        assert pipeline.mailer.send.call_count == 2

    def test_other_occurrence_of_recurring_meeting_runs(
        self, counted_pipeline: Pipeline, caption_file, sample_vtt, sample_minutes_record
    ) -> None:
        pipeline = counted_pipeline
        pipeline.provider.download.return_value = sample_vtt.encode("utf-8")
        pipeline.transcripts.save_minutes(
            sample_minutes_record.model_copy(
                update={"transcript_id": "t-old", "job_id": "job-old", "start_time": "2026-01-08T10:00:00Z"}
            )
        )
        job_id = pipeline.add(make_job(payload=_recording_payload(caption_file, start_time=START)))

        assert pipeline.orchestrator.process(job_id) == ProcessOutcome.COMPLETED
        assert pipeline.jobs.get(job_id).result["superseded_by"] is None
        pipeline.llm.generate.assert_called_once()

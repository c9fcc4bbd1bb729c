"""
Tests for adapters.in_memory_stores: job state machine, dedupe, the
per-meeting processing lock and credential merging.
"""

import threading

import pytest

from adapters.in_memory_stores import (
    InMemoryCredentialStore,
    InMemoryJobStore,
    InMemoryTranscriptStore,
    merge_credentials,
)
from domain.models import DeliveryLogEntry, DeliveryStatus, JobStatus, JobType
from shared_utils.error_handler import JobNotFoundError, JobStateError, ValidationError
from tests.conftest import make_job


@pytest.fixture()
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


# ---------------------------------------------------------------------------
# create_if_absent
# ---------------------------------------------------------------------------


class TestCreateIfAbsent:
    def test_new_job_is_pending(self, store: InMemoryJobStore) -> None:
        job, created = store.create_if_absent(make_job())
        assert created is True
        assert job.status == JobStatus.PENDING
        assert job.created_at

    def test_duplicate_returns_existing(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        job, created = store.create_if_absent(make_job("job-2"))
        assert created is False
        assert job.job_id == "job-1"
        assert len(store.list_jobs()) == 1

    def test_different_type_is_not_duplicate(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        _, created = store.create_if_absent(make_job("job-2", job_type=JobType.MEETING_ENDED))
        assert created is True

    def test_terminal_job_does_not_block(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        store.claim("job-1")
        store.complete("job-1", {})
        _, created = store.create_if_absent(make_job("job-2"))
        assert created is True


# ---------------------------------------------------------------------------
# claim and transitions
# ---------------------------------------------------------------------------


class TestClaim:
    def test_claim_moves_to_processing(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        job = store.claim("job-1")
        assert job.status == JobStatus.PROCESSING

    def test_second_claim_returns_none(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        assert store.claim("job-1") is not None
        assert store.claim("job-1") is None

    def test_unknown_job(self, store: InMemoryJobStore) -> None:
        assert store.claim("nope") is None

    def test_meeting_busy_blocks_other_job(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        store.create_if_absent(make_job("job-2", job_type=JobType.MEETING_ENDED))
        store.claim("job-1")

        assert store.claim("job-2") is None
        assert store.get("job-2").status == JobStatus.PENDING

        store.fail("job-1", "boom")
        assert store.claim("job-2") is not None

    def test_concurrent_claims_single_winner(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        results = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(store.claim("job-1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is not None) == 1


class TestFinish:
    def test_complete_records_result(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        store.claim("job-1")
        job = store.complete("job-1", {"transcript_id": "t-1"})
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"transcript_id": "t-1"}
        assert job.completed_at

    def test_complete_requires_processing(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        with pytest.raises(JobStateError):
            store.complete("job-1", {})

    def test_fail_unknown_job(self, store: InMemoryJobStore) -> None:
        with pytest.raises(JobNotFoundError):
            store.fail("nope", "boom")

    def test_fail_keeps_partial_result(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        store.claim("job-1")
        job = store.fail("job-1", "NoMediaAvailableError: nothing", {"caption_rejection_reason": "bad"})
        assert job.status == JobStatus.FAILED
        assert job.result["caption_rejection_reason"] == "bad"


class TestResetForRetry:
    def test_failed_job_goes_back_to_pending(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        store.claim("job-1")
        store.fail("job-1", "boom")

        job = store.reset_for_retry("job-1")

        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1
        assert job.error_message is None

    def test_only_failed_jobs(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job())
        with pytest.raises(JobStateError):
            store.reset_for_retry("job-1")

    def test_blocked_by_active_equivalent(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        store.claim("job-1")
        store.fail("job-1", "boom")
        store.create_if_absent(make_job("job-2"))

        with pytest.raises(JobStateError):
            store.reset_for_retry("job-1")


class TestListJobs:
    def test_filters(self, store: InMemoryJobStore) -> None:
        store.create_if_absent(make_job("job-1"))
        store.create_if_absent(make_job("job-2", tenant_id="other"))
        store.claim("job-1")

        assert [j.job_id for j in store.list_jobs(tenant_id="acme")] == ["job-1"]
        assert [j.job_id for j in store.list_jobs(status=JobStatus.PENDING)] == ["job-2"]


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


_FULL = {
    "provider_account_id": "a",
    "provider_client_id": "c",
    "provider_client_secret": "s",
    "webhook_signing_secret": "w",
}


class TestCredentials:
    def test_new_record_requires_all_fields(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            merge_credentials("acme", None, {"provider_client_id": "c"})
        assert "provider_account_id" in exc_info.value.context["fields"]

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            merge_credentials("acme", None, {**_FULL, "color": "blue"})

    def test_partial_update_keeps_other_fields(self) -> None:
        store = InMemoryCredentialStore()
        store.upsert("acme", _FULL)
        creds = store.upsert("acme", {"active": False})
        assert creds.active is False
        assert creds.provider_client_secret.get_secret_value() == "s"
        assert store.get("acme").active is False

    def test_missing_tenant(self) -> None:
        assert InMemoryCredentialStore().get("acme") is None


# ---------------------------------------------------------------------------
# Transcript store
# ---------------------------------------------------------------------------


class TestTranscriptStore:
    def test_save_is_idempotent_per_job(self, sample_minutes_record) -> None:
        store = InMemoryTranscriptStore()
        first = store.save_minutes(sample_minutes_record)
        second = store.save_minutes(sample_minutes_record.model_copy(update={"transcript_id": "t-2"}))
        assert second.transcript_id == first.transcript_id
        assert store.get_minutes("t-2") is None
        assert store.get_minutes_for_job("job-1").transcript_id == "t-1"

    def test_list_minutes_for_meeting(self, sample_minutes_record) -> None:
        store = InMemoryTranscriptStore()
        store.save_minutes(sample_minutes_record)
        store.save_minutes(sample_minutes_record.model_copy(update={"transcript_id": "t-2", "job_id": "job-2"}))
        store.save_minutes(
            sample_minutes_record.model_copy(update={"transcript_id": "t-3", "job_id": "job-3", "tenant_id": "other"})
        )

        found = store.list_minutes_for_meeting("acme", "123456789")

        assert sorted(r.transcript_id for r in found) == ["t-1", "t-2"]
        assert store.list_minutes_for_meeting("acme", "999") == []

    def test_delivery_log_is_append_only(self) -> None:
        store = InMemoryTranscriptStore()
        for attempt, status in ((1, DeliveryStatus.FAILED), (2, DeliveryStatus.SENT)):
            store.append_delivery(
                DeliveryLogEntry(
                    log_id=f"l-{attempt}",
                    transcript_id="t-1",
                    recipient="a@example.com",
                    status=status,
                    attempt=attempt,
                )
            )
        entries = store.list_deliveries("t-1")
        assert [e.status for e in entries] == [DeliveryStatus.FAILED, DeliveryStatus.SENT]
        assert all(e.created_at for e in entries)
        assert store.list_deliveries("t-2") == []

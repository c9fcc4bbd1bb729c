"""
Tests for services.webhook_gateway.WebhookGateway: tenant resolution,
signature schemes, URL validation and job creation.
"""

import json

import pytest

from adapters.in_memory_stores import InMemoryCredentialStore, InMemoryJobStore
from adapters.job_queues import InMemoryJobQueue
from domain.models import JobType
from services.credential_resolver import CredentialResolver
from services.job_intake import JobIntake
from services.webhook_gateway import WebhookGateway, hmac_hex
from shared_utils.error_handler import (
    InvalidSignatureError,
    TenantResolutionError,
    ValidationError,
)
from tests.conftest import WEBHOOK_SECRET


NOW = 1_760_000_000


def _event(event: str = "recording.completed", **obj) -> bytes:
    payload = {
        "id": 123456789,
        "uuid": "abc==",
        "topic": "Weekly sync",
        "host_email": "host@example.com",
        "recording_files": [
            {"id": "f1", "file_type": "TRANSCRIPT", "download_url": "https://zoom.example/vtt"}
        ],
        **obj,
    }
    return json.dumps({"event": event, "payload": {"account_id": "acct-1", "object": payload}}).encode()


def _sign(body: bytes) -> str:
    return hmac_hex(WEBHOOK_SECRET, body)


class Harness:
    def __init__(self, tenant_credentials, **gateway_kwargs) -> None:
        self.jobs = InMemoryJobStore()
        self.queue = InMemoryJobQueue()
        resolver = CredentialResolver(InMemoryCredentialStore([tenant_credentials]))
        self.gateway = WebhookGateway(
            resolver, JobIntake(self.jobs, self.queue), clock=lambda: NOW, **gateway_kwargs
        )


@pytest.fixture()
def harness(tenant_credentials) -> Harness:
    return Harness(tenant_credentials)


# ---------------------------------------------------------------------------
# Job creation
# ---------------------------------------------------------------------------


class TestAcceptedEvents:
    def test_recording_completed_creates_job(self, harness: Harness) -> None:
        body = _event()

        response = harness.gateway.handle("acme", body, _sign(body), None)

        assert response["status"] == "accepted"
        job = harness.jobs.get(response["job_id"])
        assert job.type == JobType.RECORDING_COMPLETED
        assert job.meeting_id == "123456789"
        assert job.payload["meeting_uuid"] == "abc=="
        assert job.payload["recording_files"][0]["file_id"] == "f1"
        assert "kind" not in job.payload
        assert harness.queue.pending_count() == 1

    def test_prefixed_signature_accepted(self, harness: Harness) -> None:
        body = _event()
        response = harness.gateway.handle("acme", body, "sha256=" + _sign(body).upper(), None)
        assert response["status"] == "accepted"

    def test_redelivery_is_duplicate(self, harness: Harness) -> None:
        body = _event()
        first = harness.gateway.handle("acme", body, _sign(body), None)
        second = harness.gateway.handle("acme", body, _sign(body), None)

        assert second == {"status": "duplicate", "job_id": first["job_id"]}
        assert len(harness.jobs.list_jobs()) == 1

    def test_each_event_type_is_its_own_job(self, harness: Harness) -> None:
        for event in ("recording.completed", "recording.transcript_completed", "meeting.ended"):
            body = _event(event)
            assert harness.gateway.handle("acme", body, _sign(body), None)["status"] == "accepted"
        assert len(harness.jobs.list_jobs()) == 3

    def test_unknown_event_ignored(self, harness: Harness) -> None:
        body = _event("meeting.started")

        response = harness.gateway.handle("acme", body, _sign(body), None)

        assert response == {"status": "ignored", "event": "meeting.started"}
        assert harness.jobs.list_jobs() == []

    def test_null_topic_becomes_empty(self, harness: Harness) -> None:
        body = _event(topic=None)

        response = harness.gateway.handle("acme", body, _sign(body), None)

        assert response["status"] == "accepted"
        assert harness.jobs.get(response["job_id"]).payload["topic"] == ""

    def test_missing_meeting_id(self, harness: Harness) -> None:
        body = _event(id=None)
        with pytest.raises(ValidationError):
            harness.gateway.handle("acme", body, _sign(body), None)

    def test_malformed_meeting_object(self, harness: Harness) -> None:
        body = _event(duration="an hour")
        with pytest.raises(ValidationError):
            harness.gateway.handle("acme", body, _sign(body), None)


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    def test_bad_signature_creates_nothing(self, harness: Harness) -> None:
        with pytest.raises(InvalidSignatureError) as exc_info:
            harness.gateway.handle("acme", _event(), "deadbeef", None)
        assert exc_info.value.http_status == 401
        assert harness.jobs.list_jobs() == []
        assert harness.queue.pending_count() == 0

    def test_missing_signature(self, harness: Harness) -> None:
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", _event(), None, None)

    def test_tampered_body(self, harness: Harness) -> None:
        signature = _sign(_event())
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", _event(topic="changed"), signature, None)

    def test_unknown_tenant(self, harness: Harness) -> None:
        body = _event()
        with pytest.raises(TenantResolutionError) as exc_info:
            harness.gateway.handle("ghost", body, _sign(body), None)
        assert exc_info.value.http_status == 400

    def test_malformed_tenant(self, harness: Harness) -> None:
        with pytest.raises(TenantResolutionError):
            harness.gateway.handle("../etc", _event(), "sig", None)

    def test_signed_invalid_json(self, harness: Harness) -> None:
        body = b"{not json"
        with pytest.raises(ValidationError):
            harness.gateway.handle("acme", body, _sign(body), None)

    def test_unsigned_invalid_json_is_signature_failure(self, harness: Harness) -> None:
        with pytest.raises(InvalidSignatureError) as exc_info:
            harness.gateway.handle("acme", b"{not json", "sig", None)
        assert exc_info.value.http_status == 401

    def test_unsigned_non_object_json_is_signature_failure(self, harness: Harness) -> None:
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", b"[1, 2]", None, None)

    def test_signed_non_object_json(self, harness: Harness) -> None:
        body = b"[1, 2]"
        with pytest.raises(ValidationError):
            harness.gateway.handle("acme", body, _sign(body), None)


# ---------------------------------------------------------------------------
# Signature schemes and freshness
# ---------------------------------------------------------------------------


class TestZoomV0Scheme:
    def test_timestamped_signature(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, signature_scheme="zoom_v0")
        body = _event()
        ts = str(NOW)
        signature = "v0=" + hmac_hex(WEBHOOK_SECRET, f"v0:{ts}:".encode() + body)

        assert harness.gateway.handle("acme", body, signature, ts)["status"] == "accepted"

    def test_requires_timestamp(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, signature_scheme="zoom_v0")
        body = _event()
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", body, "v0=" + _sign(body), None)

    def test_body_signature_rejected_under_v0(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, signature_scheme="zoom_v0")
        body = _event()
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", body, _sign(body), str(NOW))


class TestFreshness:
    def test_stale_timestamp_rejected(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, max_skew_seconds=300)
        body = _event()
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", body, _sign(body), str(NOW - 301))

    def test_millisecond_timestamp_accepted(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, max_skew_seconds=300)
        body = _event()
        response = harness.gateway.handle("acme", body, _sign(body), str((NOW - 10) * 1000))
        assert response["status"] == "accepted"

    def test_missing_timestamp_rejected_when_enforced(self, tenant_credentials) -> None:
        harness = Harness(tenant_credentials, max_skew_seconds=300)
        body = _event()
        with pytest.raises(InvalidSignatureError):
            harness.gateway.handle("acme", body, _sign(body), None)


# ---------------------------------------------------------------------------
# URL validation and challenge
# ---------------------------------------------------------------------------


class TestValidationHandshake:
    def test_url_validation_reply(self, harness: Harness) -> None:
        body = json.dumps({"event": "endpoint.url_validation", "payload": {"plainToken": "tok123"}}).encode()

        response = harness.gateway.handle("acme", body, None, None)

        assert response == {
            "plainToken": "tok123",
            "encryptedToken": hmac_hex(WEBHOOK_SECRET, b"tok123"),
        }
        assert harness.jobs.list_jobs() == []

    def test_url_validation_without_token(self, harness: Harness) -> None:
        body = json.dumps({"event": "endpoint.url_validation", "payload": {}}).encode()
        with pytest.raises(ValidationError):
            harness.gateway.handle("acme", body, None, None)

    def test_challenge_echo(self) -> None:
        assert WebhookGateway.challenge("abc") == {"challenge": "abc"}

    def test_challenge_requires_token(self) -> None:
        with pytest.raises(ValidationError):
            WebhookGateway.challenge(None)

    def test_hmac_hex_known_value(self) -> None:
        # RFC 4231 test case 2
        assert hmac_hex("Jefe", b"what do ya want for nothing?") == (
            "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        )

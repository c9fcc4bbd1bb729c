"""
Root conftest.py: shared fixtures for the entire test suite.

Guidelines:
    • No __init__.py in test sub-directories (avoids shadowing root packages).
    • pytest.ini_options lives in pyproject.toml with pythonpath=["."].
    • Markers: integration.
"""

from typing import Dict
from unittest.mock import MagicMock

import pytest

from domain.models import (
    Job,
    JobType,
    MediaFile,
    MeetingRecordings,
    MinutesRecord,
    TenantCredentials,
)


# ---------------------------------------------------------------------------
# Marker registration
# ---------------------------------------------------------------------------

def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration test")


# ---------------------------------------------------------------------------
# Minimal required settings kwargs for Settings(**BASE_SETTINGS_KWARGS)
# ---------------------------------------------------------------------------

BASE_SETTINGS_KWARGS: Dict[str, str] = {
    "llm_provider": "openai",
    "openai_api_key": "sk-test",
    "environment": "development",
    "storage_backend": "memory",
    "queue_backend": "memory",
}


@pytest.fixture()
def base_settings_kwargs() -> Dict[str, str]:
    """Provide the minimal kwargs needed to instantiate ``Settings``."""
    return {**BASE_SETTINGS_KWARGS}


# ---------------------------------------------------------------------------
# Caption fixtures
# ---------------------------------------------------------------------------

SAMPLE_VTT = (
    "WEBVTT\n"
    "\n"
    "00:00:01.000 --> 00:00:04.000\n"
    "1 Alice: Good morning everyone, let's review the launch plan.\n"
    "\n"
    "00:00:04.500 --> 00:00:09.000\n"
    "2 Bob: The marketing assets are ready and approved by legal.\n"
    "\n"
    "00:00:09.500 --> 00:00:13.000\n"
    "3 Alice: Great, then we ship on Thursday as planned.\n"
    "\n"
    "00:00:13.500 --> 00:00:18.000\n"
    "4 Bob: I will send the final checklist to the team today.\n"
)


@pytest.fixture()
def sample_vtt() -> str:
    return SAMPLE_VTT


# ---------------------------------------------------------------------------
# Domain object factories
# ---------------------------------------------------------------------------

WEBHOOK_SECRET = "whsec-test"


@pytest.fixture()
def tenant_credentials() -> TenantCredentials:
    return TenantCredentials(
        tenant_id="acme",
        provider_account_id="acct-1",
        provider_client_id="client-1",
        provider_client_secret="client-secret",
        webhook_signing_secret=WEBHOOK_SECRET,
    )


def make_job(
    job_id: str = "job-1",
    tenant_id: str = "acme",
    meeting_id: str = "123456789",
    job_type: JobType = JobType.RECORDING_COMPLETED,
    payload: Dict = None,
) -> Job:
    return Job(
        job_id=job_id,
        tenant_id=tenant_id,
        type=job_type,
        meeting_id=meeting_id,
        payload=payload if payload is not None else {"meeting_id": meeting_id},
    )


@pytest.fixture()
def job_factory():
    """Build Job objects with sensible defaults."""
    return make_job


@pytest.fixture()
def caption_file() -> MediaFile:
    return MediaFile(
        id="f-vtt",
        file_type="TRANSCRIPT",
        file_extension="VTT",
        recording_type="audio_transcript",
        download_url="https://zoom.example/rec/vtt",
        status="completed",
    )


@pytest.fixture()
def audio_file() -> MediaFile:
    return MediaFile(
        id="f-m4a",
        file_type="M4A",
        file_extension="M4A",
        recording_type="audio_only",
        download_url="https://zoom.example/rec/m4a",
        status="completed",
    )


@pytest.fixture()
def video_file() -> MediaFile:
    return MediaFile(
        id="f-mp4",
        file_type="MP4",
        file_extension="MP4",
        recording_type="shared_screen_with_speaker_view",
        download_url="https://zoom.example/rec/mp4",
        status="completed",
    )


@pytest.fixture()
def sample_minutes_record() -> MinutesRecord:
    return MinutesRecord(
        transcript_id="t-1",
        job_id="job-1",
        tenant_id="acme",
        meeting_id="123456789",
        meeting_topic="Launch review",
        start_time="2026-01-15T10:00:00Z",
        duration=30,
        participants=["Alice", "Bob"],
        raw_transcript="Alice: hello\nBob: hi",
        formatted_transcript="Alice: hello\nBob: hi",
        summary="Launch confirmed for Thursday.",
        key_decisions=["Ship on Thursday"],
    )


# ---------------------------------------------------------------------------
# Mock adapter factories
# ---------------------------------------------------------------------------

@pytest.fixture()
def mock_provider() -> MagicMock:
    """Conferencing provider mock with an empty recording listing."""
    mock = MagicMock()
    mock.get_recordings.return_value = MeetingRecordings(meeting_id="123456789")
    mock.get_participants.return_value = []
    mock.media_exists.return_value = True
    return mock


@pytest.fixture()
def mock_transcriber() -> MagicMock:
    mock = MagicMock()
    mock.transcribe.return_value = "Alice: audio transcript text"
    return mock


@pytest.fixture()
def mock_mailer() -> MagicMock:
    return MagicMock()

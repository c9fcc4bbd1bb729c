"""
Zoom REST API client.

Implements ConferencingProviderPort with server-to-server OAuth per tenant:

    POST https://zoom.us/oauth/token?grant_type=account_credentials&account_id=<id>
         Authorization: Basic base64(client_id:client_secret)

Tokens are cached per tenant until shortly before expiry. Transient failures
(timeouts, connection errors, 429, 5xx) are retried a bounded number of times
with tenacity and then surface as ExternalServiceError.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from domain.models import MediaFile, MeetingRecordings, Participant, TenantCredentials
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import (
    ExternalServiceError,
    NoMediaAvailableError,
    TranscriptionError,
    is_retryable,
)
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.validation import normalize_meeting_id


logger = get_scoped_logger(LogScope.ADAPTER)

_SERVICE = "Zoom"
_TOKEN_REFRESH_MARGIN = 60


class ZoomClient:
    """httpx-based client for recordings, participants and media downloads."""

    def __init__(
        self,
        api_base: str = Defaults.ZOOM_API_BASE,
        oauth_url: str = Defaults.ZOOM_OAUTH_URL,
        timeout: float = Defaults.HTTP_TIMEOUT,
        download_timeout: float = Defaults.DOWNLOAD_TIMEOUT,
        max_attempts: int = 3,
        retry_wait: float = 1.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._oauth_url = oauth_url
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._http = http_client or httpx.Client(timeout=timeout)
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait
        self._tokens: Dict[Tuple[str, str], Tuple[str, float]] = {}
        self._token_lock = threading.Lock()

    # ------------------------------------------------------------------
    # ConferencingProviderPort implementation
    # ------------------------------------------------------------------

    def get_recordings(self, credentials: TenantCredentials, meeting_id: str) -> MeetingRecordings:
        url = f"{self._api_base}/meetings/{normalize_meeting_id(meeting_id)}/recordings"
        response = self._call("GET", url, credentials)
        if response.status_code == 404:
            raise NoMediaAvailableError(
                "Provider has no recordings for this meeting", context={"meeting_id": meeting_id}
            )
        self._raise_for_client_error(response, "recording lookup")

        body = response.json()
        files = [MediaFile.model_validate(f) for f in body.get("recording_files", [])]
        duration = body.get("duration") or _duration_from_files(files)
        logger.info(
            "zoom_recordings_fetched",
            meeting_id=meeting_id,
            files=[f"{f.file_type}/{f.recording_type}" for f in files],
        )
        return MeetingRecordings(
            meeting_id=str(body.get("id", meeting_id)),
            topic=body.get("topic", ""),
            start_time=body.get("start_time"),
            duration=duration,
            host_email=body.get("host_email"),
            recording_files=files,
        )

    def get_participants(self, credentials: TenantCredentials, meeting_id: str) -> List[Participant]:
        url = f"{self._api_base}/report/meetings/{normalize_meeting_id(meeting_id)}/participants"
        params: Dict[str, Any] = {"page_size": Defaults.PARTICIPANTS_PAGE_SIZE}
        participants: List[Participant] = []
        while True:
            response = self._call("GET", url, credentials, params=params)
            self._raise_for_client_error(response, "participant report")
            body = response.json()
            for raw in body.get("participants", []):
                participants.append(
                    Participant(name=raw.get("name", ""), email=raw.get("user_email") or None)
                )
            token = body.get("next_page_token")
            if not token:
                break
            params = {**params, "next_page_token": token}
        logger.info("zoom_participants_fetched", meeting_id=meeting_id, count=len(participants))
        return participants

    def media_exists(self, credentials: TenantCredentials, url: str) -> bool:
        response = self._call("HEAD", url, credentials, follow_redirects=True)
        exists = response.status_code < 400
        logger.info("zoom_media_checked", status_code=response.status_code, exists=exists)
        return exists

    def download(self, credentials: TenantCredentials, url: str) -> bytes:
        response = self._call(
            "GET", url, credentials, follow_redirects=True, timeout=self._download_timeout
        )
        if response.status_code >= 400:
            raise TranscriptionError(
                f"Media download rejected with {response.status_code}",
                context={"status_code": response.status_code},
            )
        logger.info("zoom_media_downloaded", bytes=len(response.content))
        return response.content

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _call(self, method: str, url: str, credentials: TenantCredentials, **kwargs: Any) -> httpx.Response:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        return retrying(self._authorized_request, method, url, credentials, **kwargs)

    def _authorized_request(
        self, method: str, url: str, credentials: TenantCredentials, **kwargs: Any
    ) -> httpx.Response:
        response = self._send(method, url, headers=self._auth_header(credentials), **kwargs)
        if response.status_code == 401:
            # Token revoked or rotated early; fetch a fresh one once
            self._invalidate(credentials)
            response = self._send(method, url, headers=self._auth_header(credentials), **kwargs)
        return response

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(_SERVICE, f"timeout calling {method} {_redact(url)}") from exc
        except httpx.TransportError as exc:
            raise ExternalServiceError(_SERVICE, f"transport error: {exc}") from exc
        if response.status_code == 429 or response.status_code >= 500:
            raise ExternalServiceError(
                _SERVICE,
                f"{method} {_redact(url)} returned {response.status_code}",
                context={"status_code": response.status_code},
            )
        return response

    def _auth_header(self, credentials: TenantCredentials) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token(credentials)}"}

    def _access_token(self, credentials: TenantCredentials) -> str:
        key = (credentials.tenant_id, credentials.provider_client_id)
        with self._token_lock:
            cached = self._tokens.get(key)
            if cached and cached[1] > time.monotonic():
                return cached[0]

        response = self._send(
            "POST",
            self._oauth_url,
            params={"grant_type": "account_credentials", "account_id": credentials.provider_account_id},
            auth=(credentials.provider_client_id, credentials.provider_client_secret.get_secret_value()),
        )
        if response.status_code >= 400:
            logger.error(
                "zoom_token_rejected",
                tenant_id=credentials.tenant_id,
                status_code=response.status_code,
            )
            raise ExternalServiceError(
                _SERVICE, f"OAuth token request rejected ({response.status_code})"
            )
        body = response.json()
        token = body["access_token"]
        expires_at = time.monotonic() + max(0, int(body.get("expires_in", 3600)) - _TOKEN_REFRESH_MARGIN)
        with self._token_lock:
            self._tokens[key] = (token, expires_at)
        logger.info("zoom_token_issued", tenant_id=credentials.tenant_id)
        return token

    def _invalidate(self, credentials: TenantCredentials) -> None:
        with self._token_lock:
            self._tokens.pop((credentials.tenant_id, credentials.provider_client_id), None)

    @staticmethod
    def _raise_for_client_error(response: httpx.Response, what: str) -> None:
        if response.status_code >= 400:
            raise ExternalServiceError(
                _SERVICE,
                f"{what} rejected with {response.status_code}",
                context={"status_code": response.status_code},
            )


def _duration_from_files(files: List[MediaFile]) -> Optional[int]:
    """Meeting length in minutes from the first file's recording window."""
    for media in files:
        if media.recording_start and media.recording_end:
            try:
                start = datetime.fromisoformat(media.recording_start.replace("Z", "+00:00"))
                end = datetime.fromisoformat(media.recording_end.replace("Z", "+00:00"))
            except ValueError:
                continue
            return round((end - start).total_seconds() / 60)
    return None


def _redact(url: str) -> str:
    """Drop query strings, which may carry download tokens."""
    return url.split("?", 1)[0]

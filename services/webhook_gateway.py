"""
Webhook gateway: authenticates provider events and turns them into jobs.

Signature schemes:
    body     hex(HMAC-SHA256(secret, raw_body)), optional "v0=" / "sha256=" prefix
    zoom_v0  "v0=" + hex(HMAC-SHA256(secret, "v0:{timestamp}:{raw_body}"))

The gateway is not the idempotency boundary; repeated deliveries of the same
event are collapsed by the job store's dedupe on (tenant, meeting, type).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from domain.models import PAYLOAD_TYPES, Job, JobType, TenantCredentials
from services.credential_resolver import CredentialResolver
from services.job_intake import JobIntake
from shared_utils.constants import LogScope, ProviderEvent, SignatureScheme
from shared_utils.error_handler import (
    InvalidSignatureError,
    NotConfiguredError,
    TenantResolutionError,
    ValidationError,
)
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.validation import InputValidator


logger = get_scoped_logger(LogScope.WEBHOOK)

EVENT_JOB_TYPES: Dict[str, JobType] = {
    ProviderEvent.RECORDING_COMPLETED: JobType.RECORDING_COMPLETED,
    ProviderEvent.TRANSCRIPT_COMPLETED: JobType.TRANSCRIPT_COMPLETED,
    ProviderEvent.MEETING_ENDED: JobType.MEETING_ENDED,
}

_SIGNATURE_PREFIXES = ("v0=", "sha256=")


def hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class WebhookGateway:
    """``handle(tenant_id, raw_body, signature, timestamp) -> response body``."""

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        intake: JobIntake,
        signature_scheme: str = SignatureScheme.BODY.value,
        max_skew_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._resolver = credential_resolver
        self._intake = intake
        self._scheme = SignatureScheme(signature_scheme)
        self._max_skew_seconds = max_skew_seconds
        self._clock = clock

    def handle(
        self,
        tenant_id: str,
        raw_body: bytes,
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> Dict[str, Any]:
        """Process one inbound event.

        Raises:
            TenantResolutionError: Malformed or unconfigured tenant (400).
            ValidationError: Body is not a usable event (400).
            InvalidSignatureError: Signature or timestamp check failed (401).
        """
        credentials = self._resolve_tenant(tenant_id)
        try:
            event = self._decode(raw_body)
        except ValidationError:
            # Unsigned garbage is an authentication failure, not a bad request
            self._verify(credentials, raw_body, signature, timestamp)
            raise
        event_type = event.get("event")

        if event_type == ProviderEvent.URL_VALIDATION:
            return self._validation_reply(credentials, event)

        self._verify(credentials, raw_body, signature, timestamp)

        job_type = EVENT_JOB_TYPES.get(event_type)
        if job_type is None:
            logger.info("webhook_event_ignored", tenant_id=tenant_id, event_type=event_type)
            return {"status": "ignored", "event": event_type}

        job = self._build_job(tenant_id, job_type, event)
        stored, created = self._intake.submit(job)
        logger.info(
            "webhook_event_accepted",
            tenant_id=tenant_id,
            event_type=event_type,
            job_id=stored.job_id,
            created=created,
        )
        return {
            "status": "accepted" if created else "duplicate",
            "job_id": stored.job_id,
        }

    @staticmethod
    def challenge(token: Optional[str]) -> Dict[str, str]:
        """Liveness echo for GET requests; no signing involved."""
        if not token:
            raise ValidationError("Missing challenge parameter")
        return {"challenge": token}

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_tenant(self, tenant_id: str) -> TenantCredentials:
        if not InputValidator.is_valid_tenant_id(tenant_id):
            raise TenantResolutionError(str(tenant_id), "Malformed tenant identifier")
        try:
            return self._resolver.resolve(tenant_id)
        except NotConfiguredError as exc:
            raise TenantResolutionError(tenant_id) from exc

    @staticmethod
    def _decode(raw_body: bytes) -> Dict[str, Any]:
        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return event

    @staticmethod
    def _validation_reply(credentials: TenantCredentials, event: Dict[str, Any]) -> Dict[str, str]:
        plain_token = (event.get("payload") or {}).get("plainToken")
        if not plain_token or not isinstance(plain_token, str):
            raise ValidationError("URL validation event without plainToken")
        secret = credentials.webhook_signing_secret.get_secret_value()
        logger.info("webhook_url_validation", tenant_id=credentials.tenant_id)
        return {
            "plainToken": plain_token,
            "encryptedToken": hmac_hex(secret, plain_token.encode("utf-8")),
        }

    def _verify(
        self,
        credentials: TenantCredentials,
        raw_body: bytes,
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> None:
        if not signature:
            logger.warning("webhook_signature_missing", tenant_id=credentials.tenant_id)
            raise InvalidSignatureError("Missing webhook signature")
        secret = credentials.webhook_signing_secret.get_secret_value()

        if self._scheme == SignatureScheme.ZOOM_V0:
            if not timestamp:
                raise InvalidSignatureError("Missing webhook timestamp")
            message = b"v0:" + timestamp.encode("utf-8") + b":" + raw_body
            expected = "v0=" + hmac_hex(secret, message)
            provided = signature.strip()
        else:
            expected = hmac_hex(secret, raw_body)
            provided = signature.strip()
            for prefix in _SIGNATURE_PREFIXES:
                if provided.startswith(prefix):
                    provided = provided[len(prefix):]
                    break
            provided = provided.lower()

        if not hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8")):
            logger.warning("webhook_signature_mismatch", tenant_id=credentials.tenant_id)
            raise InvalidSignatureError()

        if self._max_skew_seconds > 0:
            self._check_freshness(timestamp)

    def _check_freshness(self, timestamp: Optional[str]) -> None:
        try:
            sent = float(timestamp) if timestamp else None
        except ValueError:
            sent = None
        if sent is None:
            raise InvalidSignatureError("Missing or malformed webhook timestamp")
        if sent > 1e12:
            sent /= 1000.0  # milliseconds
        if abs(self._clock() - sent) > self._max_skew_seconds:
            raise InvalidSignatureError("Webhook timestamp outside allowed window")

    @staticmethod
    def _build_job(tenant_id: str, job_type: JobType, event: Dict[str, Any]) -> Job:
        obj = (event.get("payload") or {}).get("object") or {}
        if not isinstance(obj, dict):
            raise ValidationError("Webhook payload.object must be an object")
        meeting_id = obj.get("id")
        if meeting_id in (None, ""):
            raise ValidationError("Webhook payload.object.id is required")

        data = {
            "meeting_id": str(meeting_id),
            "meeting_uuid": obj.get("uuid"),
            "topic": obj.get("topic") or "",
            "start_time": obj.get("start_time"),
            "duration": obj.get("duration"),
            "host_email": obj.get("host_email"),
            "host_name": obj.get("host_name"),
            "recording_files": obj.get("recording_files") or [],
            "participants": obj.get("participants") or [],
        }
        try:
            payload = PAYLOAD_TYPES[job_type].model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Webhook payload does not describe a meeting",
                context={"errors": exc.error_count()},
            ) from exc

        return Job(
            job_id=str(uuid4()),
            tenant_id=tenant_id,
            type=job_type,
            meeting_id=payload.meeting_id,
            payload=payload.model_dump(mode="json", exclude={"kind"}),
        )

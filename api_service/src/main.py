"""
FastAPI backend for the meeting minutes pipeline.

Endpoints:
    GET  /health                                        - Health check
    POST /webhooks/{tenant_id}                          - Provider event intake
    GET  /webhooks/{tenant_id}?challenge=X              - Liveness echo
    POST /api/v1/tenants/{tenant_id}/jobs               - Manual job creation
    GET  /api/v1/tenants/{tenant_id}/jobs               - List jobs
    GET  /api/v1/jobs/{job_id}                          - Job status
    POST /api/v1/jobs/{job_id}/retry                    - Retry a failed job
    GET  /api/v1/transcripts/{transcript_id}/deliveries - Delivery log
    POST /api/v1/transcripts/{transcript_id}/resend     - Resend minutes
    PUT  /api/v1/tenants/{tenant_id}/credentials        - Credential upsert

Processing happens in the worker; this process only authenticates, persists
and enqueues.
"""

from typing import List, Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
import uvicorn

from shared_utils.config_loader import get_settings
from shared_utils.logging_utils import ContextualLogger
from shared_utils.constants import LogScope, APIEndpoints
from shared_utils.error_handler import AppException, handle_error
from shared_utils.di_container import get_di_container


SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"


# ---------------------------------------------------------------------------
# Application bootstrap
# ---------------------------------------------------------------------------

settings = get_settings()
logger = ContextualLogger(scope=LogScope.API)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=settings.app_description,
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ManualJobRequest(BaseModel):
    meeting_id: str
    topic: str = ""
    start_time: Optional[str] = None
    recipients: List[str] = []
    notes: Optional[str] = None


class ResendRequest(BaseModel):
    recipients: Optional[List[str]] = None


class CredentialsRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    provider_account_id: Optional[str] = None
    provider_client_id: Optional[str] = None
    provider_client_secret: Optional[str] = None
    webhook_signing_secret: Optional[str] = None
    active: Optional[bool] = None


def _error_response(exc: Exception, event: str) -> JSONResponse:
    if isinstance(exc, AppException):
        logger.warning(event, error_code=exc.error_code, http_status=exc.http_status)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
    error_response = handle_error(exc, scope=LogScope.API)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get(APIEndpoints.HEALTH)
def health_check() -> dict:
    """Health check endpoint."""
    logger.debug("health_check_requested")
    return {
        "status": "healthy",
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "queue_backend": settings.queue_backend,
    }


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@app.post(APIEndpoints.WEBHOOK)
@limiter.limit("300/minute")
async def receive_webhook(request: Request, tenant_id: str) -> JSONResponse:
    """Provider event intake. Unknown event types are acknowledged with 200."""
    try:
        raw_body = await request.body()
        gateway = get_di_container().get_webhook_gateway()
        body = await run_in_threadpool(
            gateway.handle,
            tenant_id,
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
        )
        return JSONResponse(content=body)
    except Exception as e:
        return _error_response(e, "webhook_rejected")


@app.get(APIEndpoints.WEBHOOK)
def webhook_challenge(tenant_id: str, challenge: Optional[str] = None) -> JSONResponse:
    try:
        gateway = get_di_container().get_webhook_gateway()
        return JSONResponse(content=gateway.challenge(challenge))
    except Exception as e:
        return _error_response(e, "webhook_challenge_rejected")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@app.post(APIEndpoints.TENANT_JOBS)
@limiter.limit("60/minute")
def create_job(request: Request, tenant_id: str, body: ManualJobRequest) -> JSONResponse:
    """Queue a manual job; 200 with the existing job when one is already active."""
    try:
        admin = get_di_container().get_job_admin_service()
        job, created = admin.create_manual_job(
            tenant_id,
            meeting_id=body.meeting_id,
            topic=body.topic,
            start_time=body.start_time,
            recipients=body.recipients,
            notes=body.notes,
        )
        logger.info("manual_job_requested", job_id=job.job_id, created=created)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED if created else status.HTTP_200_OK,
            content={"job_id": job.job_id, "status": job.status.value, "created": created},
        )
    except Exception as e:
        return _error_response(e, "manual_job_rejected")


@app.get(APIEndpoints.TENANT_JOBS)
def list_jobs(
    tenant_id: str,
    status_filter: Optional[str] = Query(default=None, alias="status"),
) -> JSONResponse:
    try:
        admin = get_di_container().get_job_admin_service()
        jobs = admin.list_jobs(tenant_id, status=status_filter)
        return JSONResponse(content=[j.model_dump(mode="json") for j in jobs])
    except Exception as e:
        return _error_response(e, "list_jobs_failed")


@app.get(APIEndpoints.JOB)
def get_job(job_id: str) -> JSONResponse:
    try:
        job = get_di_container().get_job_admin_service().get_job(job_id)
        return JSONResponse(content=job.model_dump(mode="json"))
    except Exception as e:
        return _error_response(e, "get_job_failed")


@app.post(APIEndpoints.JOB_RETRY)
@limiter.limit("30/minute")
def retry_job(request: Request, job_id: str) -> JSONResponse:
    try:
        job = get_di_container().get_job_admin_service().retry_job(job_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"job_id": job.job_id, "status": job.status.value, "retry_count": job.retry_count},
        )
    except Exception as e:
        return _error_response(e, "retry_job_rejected")


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------

@app.get(APIEndpoints.DELIVERIES)
def list_deliveries(transcript_id: str) -> JSONResponse:
    try:
        entries = get_di_container().get_job_admin_service().list_deliveries(transcript_id)
        return JSONResponse(content=[e.model_dump(mode="json") for e in entries])
    except Exception as e:
        return _error_response(e, "list_deliveries_failed")


@app.post(APIEndpoints.RESEND)
@limiter.limit("30/minute")
def resend_minutes(
    request: Request,
    transcript_id: str,
    body: Optional[ResendRequest] = None,
) -> JSONResponse:
    try:
        admin = get_di_container().get_job_admin_service()
        entries = admin.resend(transcript_id, recipients=body.recipients if body else None)
        return JSONResponse(content=[e.model_dump(mode="json") for e in entries])
    except Exception as e:
        return _error_response(e, "resend_rejected")


# ---------------------------------------------------------------------------
# Tenant credentials
# ---------------------------------------------------------------------------

@app.put(APIEndpoints.TENANT_CREDENTIALS)
@limiter.limit("30/minute")
def upsert_credentials(request: Request, tenant_id: str, body: CredentialsRequest) -> JSONResponse:
    """Secrets are write-only; the response shows fingerprints."""
    try:
        admin = get_di_container().get_job_admin_service()
        view = admin.upsert_credentials(tenant_id, body.model_dump(exclude_none=True))
        return JSONResponse(content=view)
    except Exception as e:
        return _error_response(e, "credentials_rejected")


if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.api_port,
        log_level="info"
    )

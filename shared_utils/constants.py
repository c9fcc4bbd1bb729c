"""
Constants management.
Centralized configuration for all magic values, model IDs, and defaults.
"""

from enum import Enum
from typing import Final


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    BEDROCK = "bedrock"
    OPENAI = "openai"


class StorageBackend(str, Enum):
    """Where jobs, credentials, minutes and delivery logs live."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


class QueueBackend(str, Enum):
    """Job queue transport."""
    MEMORY = "memory"
    SQS = "sqs"


class SignatureScheme(str, Enum):
    """Webhook signature schemes.

    BODY     -- hex HMAC-SHA256(secret, raw_body)
    ZOOM_V0  -- "v0=" + hex HMAC-SHA256(secret, "v0:{timestamp}:{raw_body}")
    """
    BODY = "body"
    ZOOM_V0 = "zoom_v0"


class ProviderEvent:
    """Event names sent by the conferencing provider."""
    URL_VALIDATION: Final[str] = "endpoint.url_validation"
    RECORDING_COMPLETED: Final[str] = "recording.completed"
    TRANSCRIPT_COMPLETED: Final[str] = "recording.transcript_completed"
    MEETING_ENDED: Final[str] = "meeting.ended"


# Model IDs
class ModelIDs:
    """Centralized model identifiers."""
    BEDROCK_CLAUDE_3_HAIKU: Final[str] = "anthropic.claude-3-haiku-20240307-v1:0"
    OPENAI_GPT_4O_MINI: Final[str] = "gpt-4o-mini"
    OPENAI_WHISPER: Final[str] = "whisper-1"


# Default values
class Defaults:
    """Defaults shared by settings, services and adapters."""
    SYSTEM_TENANT_ID: Final[str] = "system"
    MAX_LLM_RETRIES: Final[int] = 2
    WORKER_CONCURRENCY: Final[int] = 3
    QUEUE_WAIT_SECONDS: Final[int] = 10
    HTTP_TIMEOUT: Final[float] = 30.0
    DOWNLOAD_TIMEOUT: Final[float] = 120.0
    STT_TIMEOUT: Final[float] = 300.0
    LLM_TIMEOUT: Final[float] = 120.0
    MAIL_TIMEOUT: Final[float] = 30.0
    STALE_PENDING_MINUTES: Final[int] = 15
    CAPTION_WAIT_SECONDS: Final[int] = 900
    LOG_LEVEL: Final[str] = "INFO"
    AWS_REGION: Final[str] = "eu-west-2"
    WHISPER_API_URL: Final[str] = "https://api.openai.com/v1/audio/transcriptions"
    ZOOM_API_BASE: Final[str] = "https://api.zoom.us/v2"
    ZOOM_OAUTH_URL: Final[str] = "https://zoom.us/oauth/token"
    PARTICIPANTS_PAGE_SIZE: Final[int] = 300


class CaptionQuality:
    """Weights and thresholds of the caption quality model."""
    HARD_ERROR_PENALTY: Final[int] = 30
    WARNING_PENALTY: Final[int] = 5
    EMPTY_CUE_PENALTY: Final[int] = 2
    SHORT_AVERAGE_PENALTY: Final[int] = 10
    SINGLE_SPEAKER_PENALTY: Final[int] = 15
    LARGE_GAP_PENALTY: Final[int] = 5
    BALANCE_BONUS: Final[int] = 5
    BALANCE_BONUS_THRESHOLD: Final[float] = 70.0
    SHORT_AVERAGE_CHARS: Final[int] = 20
    SHORT_CUE_CHARS: Final[int] = 10
    SHORT_CUE_RATIO: Final[float] = 0.3
    LARGE_GAP_SECONDS: Final[float] = 300.0


# Logging scopes
class LogScope:
    """Standardized logging scope names."""
    CONFIG = "config_loader"
    API = "api"
    PARSER = "caption_parser"
    VALIDATION = "validation"
    ERROR_HANDLER = "error_handler"
    PROVIDER = "provider"
    WORKER = "worker"
    ADAPTER = "adapter"
    ORCHESTRATION = "orchestration"
    WEBHOOK = "webhook_gateway"
    CREDENTIALS = "credential_resolver"
    TRANSCRIPTION = "transcription_strategy"
    MINUTES = "minutes_generator"
    DISTRIBUTION = "distribution"


# API endpoints and paths
class APIEndpoints:
    """API route definitions."""
    HEALTH = "/health"
    WEBHOOK = "/webhooks/{tenant_id}"
    TENANT_JOBS = "/api/v1/tenants/{tenant_id}/jobs"
    TENANT_CREDENTIALS = "/api/v1/tenants/{tenant_id}/credentials"
    JOB = "/api/v1/jobs/{job_id}"
    JOB_RETRY = "/api/v1/jobs/{job_id}/retry"
    DELIVERIES = "/api/v1/transcripts/{transcript_id}/deliveries"
    RESEND = "/api/v1/transcripts/{transcript_id}/resend"


# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes for consistency."""
    INVALID_CONFIG = "INVALID_CONFIG"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TENANT_RESOLUTION_FAILED = "TENANT_RESOLUTION_FAILED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CAPTION_PARSE_FAILED = "CAPTION_PARSE_FAILED"
    NO_MEDIA_AVAILABLE = "NO_MEDIA_AVAILABLE"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_JOB_STATE = "INVALID_JOB_STATE"
    STORAGE_ERROR = "STORAGE_ERROR"
    WORKER_ERROR = "WORKER_ERROR"

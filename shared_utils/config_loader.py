from pydantic_settings import BaseSettings
from pydantic import field_validator, ConfigDict
from functools import lru_cache
from typing import Optional
import json
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared_utils.constants import (
    Defaults,
    LogScope,
    ModelIDs,
    QueueBackend,
    SignatureScheme,
    StorageBackend,
)
from shared_utils.logging_utils import get_scoped_logger, mask_secret

logger = get_scoped_logger(LogScope.CONFIG)


def get_secret_from_aws(secret_name: str, key: str, region: str = Defaults.AWS_REGION) -> str:
    """Fetch one key of a JSON secret from AWS Secrets Manager.

    Args:
        secret_name: Name of the secret in Secrets Manager
        key: Key inside the JSON secret document
        region: AWS region

    Returns:
        Secret value or empty string if fetch fails
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_name)
        if "SecretString" in response:
            secret = json.loads(response["SecretString"])
            return secret.get(key, "")
        return ""
    except (BotoCoreError, ClientError, ValueError) as e:
        logger.warning("secret_fetch_failed", secret_name=secret_name, error=str(e))
        return ""


class Settings(BaseSettings):
    """Application configuration with environment variable precedence.

    Precedence: 1) Environment Variables > 2) .env file > 3) Class defaults
    """
    # Application metadata
    app_name: str = "Meeting Minutes Pipeline"
    app_version: str = "1.0.0"
    app_description: str = "Webhook-driven meeting transcription, minutes and distribution"
    environment: str = "development"

    api_host: str = "localhost"
    api_port: int = 8000
    api_protocol: str = "http"

    # System tenant (environment-level provider credentials)
    system_tenant_id: str = Defaults.SYSTEM_TENANT_ID
    zoom_account_id: Optional[str] = None
    zoom_client_id: Optional[str] = None
    zoom_client_secret: Optional[str] = None
    zoom_webhook_secret_token: Optional[str] = None
    zoom_api_base: str = Defaults.ZOOM_API_BASE
    zoom_oauth_url: str = Defaults.ZOOM_OAUTH_URL

    # Webhook verification
    webhook_signature_scheme: str = SignatureScheme.BODY.value
    webhook_max_skew_seconds: int = 0

    # Storage
    storage_backend: str = StorageBackend.MEMORY.value
    aws_region: str = Defaults.AWS_REGION
    aws_endpoint_url: str = ""
    dynamodb_jobs_table: str = "MinutesJobs"
    dynamodb_credentials_table: str = "TenantCredentials"
    dynamodb_transcripts_table: str = "MeetingMinutes"
    dynamodb_delivery_log_table: str = "DeliveryLog"

    # Queue / worker pool
    queue_backend: str = QueueBackend.MEMORY.value
    sqs_queue_url: str = ""
    worker_concurrency: int = Defaults.WORKER_CONCURRENCY
    queue_wait_seconds: int = Defaults.QUEUE_WAIT_SECONDS

    # LLM configuration
    llm_provider: str = "openai"
    openai_api_key: Optional[str] = None
    openai_secret_name: Optional[str] = None
    openai_llm_model_id: str = ModelIDs.OPENAI_GPT_4O_MINI
    bedrock_region: str = Defaults.AWS_REGION
    bedrock_llm_model_id: str = ModelIDs.BEDROCK_CLAUDE_3_HAIKU
    llm_max_retries: int = Defaults.MAX_LLM_RETRIES

    # Speech-to-text
    whisper_api_url: str = Defaults.WHISPER_API_URL
    whisper_model: str = ModelIDs.OPENAI_WHISPER

    # Email
    sendgrid_api_key: Optional[str] = None
    mail_from: str = "minutes@example.com"
    mail_from_name: str = "Meeting Minutes"

    # Timeouts (seconds)
    http_timeout: float = Defaults.HTTP_TIMEOUT
    download_timeout: float = Defaults.DOWNLOAD_TIMEOUT
    stt_timeout: float = Defaults.STT_TIMEOUT
    llm_timeout: float = Defaults.LLM_TIMEOUT
    mail_timeout: float = Defaults.MAIL_TIMEOUT

    # Pipeline policy
    min_caption_quality: int = 0
    stale_pending_minutes: int = Defaults.STALE_PENDING_MINUTES
    # recording_completed jobs wait this long so the transcript event can win
    caption_wait_seconds: int = Defaults.CAPTION_WAIT_SECONDS

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator('llm_provider')
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate LLM provider is supported."""
        valid_providers = {"openai", "bedrock"}
        if v.lower() not in valid_providers:
            raise ValueError(f"llm_provider must be one of {valid_providers}, got {v}")
        return v.lower()

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is recognized."""
        valid_envs = {"development", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}, got {v}")
        return v.lower()

    @field_validator('webhook_signature_scheme')
    @classmethod
    def validate_signature_scheme(cls, v: str) -> str:
        """Validate webhook signature scheme."""
        valid = {s.value for s in SignatureScheme}
        if v.lower() not in valid:
            raise ValueError(f"webhook_signature_scheme must be one of {valid}, got {v}")
        return v.lower()

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        valid = {s.value for s in StorageBackend}
        if v.lower() not in valid:
            raise ValueError(f"storage_backend must be one of {valid}, got {v}")
        return v.lower()

    @field_validator('queue_backend')
    @classmethod
    def validate_queue_backend(cls, v: str) -> str:
        valid = {q.value for q in QueueBackend}
        if v.lower() not in valid:
            raise ValueError(f"queue_backend must be one of {valid}, got {v}")
        return v.lower()

    @field_validator('min_caption_quality')
    @classmethod
    def validate_min_caption_quality(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"min_caption_quality must be within 0..100, got {v}")
        return v

    @field_validator('worker_concurrency', 'llm_max_retries', 'caption_wait_seconds')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v

    def get_api_base_url(self) -> str:
        """Get full API base URL constructed from host, port and protocol.

        Returns:
            Full API base URL (e.g., "http://localhost:8000")
        """
        port_str = "" if (
            (self.api_protocol == "http" and self.api_port == 80) or
            (self.api_protocol == "https" and self.api_port == 443)
        ) else f":{self.api_port}"

        return f"{self.api_protocol}://{self.api_host}{port_str}"

    def has_system_credentials(self) -> bool:
        """True when the environment carries a full provider credential set."""
        return all([
            self.zoom_account_id,
            self.zoom_client_id,
            self.zoom_client_secret,
            self.zoom_webhook_secret_token,
        ])


@lru_cache()
def get_settings() -> Settings:
    """Load and cache application settings.

    If OPENAI_SECRET_NAME is provided and no key is set directly,
    fetches the OpenAI API key from AWS Secrets Manager.

    Returns:
        Validated Settings instance

    Raises:
        ValueError: If settings are invalid
    """
    settings = Settings()

    if settings.openai_secret_name and not settings.openai_api_key:
        secret_key = get_secret_from_aws(
            settings.openai_secret_name, "openai_api_key", settings.aws_region
        )
        if secret_key:
            settings.openai_api_key = secret_key
            logger.debug("fetched_openai_key_from_secrets_manager")

    # Secrets are logged as fingerprints only
    logger.info(
        "configuration_loaded",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        queue_backend=settings.queue_backend,
        llm_provider=settings.llm_provider,
        signature_scheme=settings.webhook_signature_scheme,
        system_webhook_secret=mask_secret(settings.zoom_webhook_secret_token),
    )

    return settings

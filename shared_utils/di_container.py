"""
Dependency injection container for managing application dependencies.
Centralizes adapter/service creation and lifecycle management.

Backends are picked from Settings: ``storage_backend`` (memory | dynamodb) and
``queue_backend`` (memory | sqs). Everything is a lazy singleton so the API
process never builds the LLM, speech-to-text or mail clients it does not use.
"""

from typing import Optional

from minutes_engine.parser.caption_parser import CaptionParser
from minutes_engine.providers.factory import LLMProviderFactory
from shared_utils.config_loader import Settings, get_settings
from shared_utils.constants import LogScope, QueueBackend, StorageBackend
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.CONFIG)


class DIContainer:
    """Singleton dependency injection container."""

    _instance: Optional['DIContainer'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._settings = None
            cls._instance.reset()
        return cls._instance

    def reset(self, settings: Optional[Settings] = None):
        """Reset container (useful for testing)."""
        self._settings = settings
        self._job_store = None
        self._credential_store = None
        self._transcript_store = None
        self._job_queue = None
        self._conferencing_provider = None
        self._audio_transcriber = None
        self._llm_provider = None
        self._mailer = None
        self._credential_resolver = None
        self._job_intake = None
        self._transcription_strategy = None
        self._minutes_generator = None
        self._distribution_engine = None
        self._orchestrator = None
        self._webhook_gateway = None
        self._job_admin_service = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _uses_dynamodb(self) -> bool:
        return self.settings.storage_backend == StorageBackend.DYNAMODB.value

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    def get_job_store(self):
        """Get or create the JobStorePort implementation (lazy singleton)."""
        if self._job_store is None:
            settings = self.settings
            if self._uses_dynamodb():
                from adapters.dynamo_job_store import DynamoJobStoreAdapter
                self._job_store = DynamoJobStoreAdapter(
                    table_name=settings.dynamodb_jobs_table,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                )
            else:
                from adapters.in_memory_stores import InMemoryJobStore
                self._job_store = InMemoryJobStore()
            logger.info("initialized_job_store", backend=settings.storage_backend)
        return self._job_store

    def get_credential_store(self):
        """Get or create the CredentialStorePort implementation (lazy singleton)."""
        if self._credential_store is None:
            settings = self.settings
            if self._uses_dynamodb():
                from adapters.dynamo_credential_store import DynamoCredentialStoreAdapter
                self._credential_store = DynamoCredentialStoreAdapter(
                    table_name=settings.dynamodb_credentials_table,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                )
            else:
                from adapters.in_memory_stores import InMemoryCredentialStore
                self._credential_store = InMemoryCredentialStore()
            logger.info("initialized_credential_store", backend=settings.storage_backend)
        return self._credential_store

    def get_transcript_store(self):
        """Get or create the TranscriptStorePort implementation (lazy singleton)."""
        if self._transcript_store is None:
            settings = self.settings
            if self._uses_dynamodb():
                from adapters.dynamo_transcript_store import DynamoTranscriptStoreAdapter
                self._transcript_store = DynamoTranscriptStoreAdapter(
                    minutes_table=settings.dynamodb_transcripts_table,
                    delivery_log_table=settings.dynamodb_delivery_log_table,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                )
            else:
                from adapters.in_memory_stores import InMemoryTranscriptStore
                self._transcript_store = InMemoryTranscriptStore()
            logger.info("initialized_transcript_store", backend=settings.storage_backend)
        return self._transcript_store

    def get_job_queue(self):
        """Get or create the JobQueuePort implementation (lazy singleton).

        The in-memory queue only works when API and worker share a process.
        """
        if self._job_queue is None:
            settings = self.settings
            if settings.queue_backend == QueueBackend.SQS.value:
                from adapters.job_queues import SqsJobQueueAdapter
                self._job_queue = SqsJobQueueAdapter(
                    queue_url=settings.sqs_queue_url,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                )
            else:
                from adapters.job_queues import InMemoryJobQueue
                self._job_queue = InMemoryJobQueue()
            logger.info("initialized_job_queue", backend=settings.queue_backend)
        return self._job_queue

    def get_conferencing_provider(self):
        if self._conferencing_provider is None:
            from adapters.zoom_client import ZoomClient

            settings = self.settings
            self._conferencing_provider = ZoomClient(
                api_base=settings.zoom_api_base,
                oauth_url=settings.zoom_oauth_url,
                timeout=settings.http_timeout,
                download_timeout=settings.download_timeout,
            )
            logger.info("initialized_conferencing_provider", provider="zoom")
        return self._conferencing_provider

    def get_audio_transcriber(self):
        if self._audio_transcriber is None:
            from adapters.whisper_transcriber import WhisperTranscriber

            settings = self.settings
            self._audio_transcriber = WhisperTranscriber(
                api_key=settings.openai_api_key,
                api_url=settings.whisper_api_url,
                model=settings.whisper_model,
                timeout=settings.stt_timeout,
            )
            logger.info("initialized_audio_transcriber", model=settings.whisper_model)
        return self._audio_transcriber

    def get_llm_provider(self):
        """Get or create LLM provider (lazy singleton).

        Raises:
            ConfigurationError: If provider initialization fails.
        """
        if self._llm_provider is None:
            self._llm_provider = LLMProviderFactory.create(self.settings)
        return self._llm_provider

    def get_mailer(self):
        if self._mailer is None:
            from adapters.sendgrid_mailer import SendGridMailer

            settings = self.settings
            self._mailer = SendGridMailer(
                api_key=settings.sendgrid_api_key,
                from_email=settings.mail_from,
                from_name=settings.mail_from_name,
                timeout=settings.mail_timeout,
            )
            logger.info("initialized_mailer", provider="sendgrid")
        return self._mailer

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def get_credential_resolver(self):
        if self._credential_resolver is None:
            from services.credential_resolver import (
                CredentialResolver,
                system_credentials_from_settings,
            )

            self._credential_resolver = CredentialResolver(
                credential_store=self.get_credential_store(),
                system_credentials=system_credentials_from_settings(self.settings),
                system_tenant_id=self.settings.system_tenant_id,
            )
        return self._credential_resolver

    def get_job_intake(self):
        if self._job_intake is None:
            from services.job_intake import JobIntake

            self._job_intake = JobIntake(
                job_store=self.get_job_store(),
                job_queue=self.get_job_queue(),
                stale_pending_minutes=self.settings.stale_pending_minutes,
                caption_wait_seconds=self.settings.caption_wait_seconds,
            )
        return self._job_intake

    def get_transcription_strategy(self):
        if self._transcription_strategy is None:
            from services.transcription_strategy import TranscriptionStrategy

            self._transcription_strategy = TranscriptionStrategy(
                provider=self.get_conferencing_provider(),
                transcriber=self.get_audio_transcriber(),
                parser=CaptionParser(),
                min_caption_quality=self.settings.min_caption_quality,
            )
        return self._transcription_strategy

    def get_minutes_generator(self):
        if self._minutes_generator is None:
            from services.minutes_generator import MinutesGenerator

            self._minutes_generator = MinutesGenerator(
                llm=self.get_llm_provider(),
                max_retries=self.settings.llm_max_retries,
            )
        return self._minutes_generator

    def get_distribution_engine(self):
        if self._distribution_engine is None:
            from services.distribution_engine import DistributionEngine

            self._distribution_engine = DistributionEngine(
                mailer=self.get_mailer(),
                transcript_store=self.get_transcript_store(),
            )
        return self._distribution_engine

    def get_orchestrator(self):
        """Get or create PipelineOrchestrator (lazy singleton).

        Builds every outbound client, so only the worker calls this.
        """
        if self._orchestrator is None:
            from services.pipeline_orchestrator import PipelineOrchestrator

            self._orchestrator = PipelineOrchestrator(
                job_store=self.get_job_store(),
                transcript_store=self.get_transcript_store(),
                credential_resolver=self.get_credential_resolver(),
                provider=self.get_conferencing_provider(),
                strategy=self.get_transcription_strategy(),
                generator=self.get_minutes_generator(),
                distribution=self.get_distribution_engine(),
            )
            logger.info("initialized_orchestrator")
        return self._orchestrator

    def get_webhook_gateway(self):
        if self._webhook_gateway is None:
            from services.webhook_gateway import WebhookGateway

            self._webhook_gateway = WebhookGateway(
                credential_resolver=self.get_credential_resolver(),
                intake=self.get_job_intake(),
                signature_scheme=self.settings.webhook_signature_scheme,
                max_skew_seconds=self.settings.webhook_max_skew_seconds,
            )
        return self._webhook_gateway

    def get_job_admin_service(self):
        if self._job_admin_service is None:
            from services.job_admin_service import JobAdminService

            self._job_admin_service = JobAdminService(
                job_store=self.get_job_store(),
                transcript_store=self.get_transcript_store(),
                credential_store=self.get_credential_store(),
                credential_resolver=self.get_credential_resolver(),
                intake=self.get_job_intake(),
                distribution_factory=self.get_distribution_engine,
            )
        return self._job_admin_service


# Global singleton instance
_container = DIContainer()


def get_di_container() -> DIContainer:
    """Get global DI container instance."""
    return _container

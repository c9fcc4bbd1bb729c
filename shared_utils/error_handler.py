"""
Structured error handling and response formatting.
Provides consistent error responses with error codes and context.

Every AppException carries a ``retryable`` flag. The orchestrator uses it to
tell transient I/O failures apart from permanent ones.
"""

from typing import Optional, Dict, Any
import logging

from shared_utils.constants import ErrorCode, LogScope
from shared_utils.logging_utils import get_scoped_logger


class AppException(Exception):
    """Base exception for application errors."""

    retryable: bool = False

    def __init__(
        self,
        error_code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        http_status: int = 500
    ):
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        self.http_status = http_status
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to response dictionary."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "context": self.context
            }
        }


class ValidationError(AppException):
    """Validation/input error."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.INVALID_INPUT.value,
            message=message,
            context=context,
            http_status=400
        )


class ConfigurationError(AppException):
    """Configuration error."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: str = ErrorCode.INVALID_CONFIG.value,
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            context=context,
            http_status=500
        )


class NotConfiguredError(ConfigurationError):
    """Tenant has no active credentials. Permanent for that tenant."""

    def __init__(self, tenant_id: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"No active credentials configured for tenant {tenant_id}",
            context={**(context or {}), "tenant_id": tenant_id},
            error_code=ErrorCode.NOT_CONFIGURED.value,
        )
        self.tenant_id = tenant_id


class InvalidSignatureError(AppException):
    """Webhook signature missing, stale or mismatched."""

    def __init__(self, message: str = "Invalid webhook signature", context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.INVALID_SIGNATURE.value,
            message=message,
            context=context,
            http_status=401
        )


class TenantResolutionError(AppException):
    """Tenant identifier malformed or unusable for webhook delivery."""

    def __init__(self, tenant_id: str, message: Optional[str] = None):
        super().__init__(
            error_code=ErrorCode.TENANT_RESOLUTION_FAILED.value,
            message=message or f"Cannot resolve tenant {tenant_id!r}",
            context={"tenant_id": tenant_id},
            http_status=400
        )


class ExternalServiceError(AppException):
    """External service unavailable error (timeouts, 5xx, connection errors)."""

    retryable = True

    def __init__(self, service: str, message: str, context: Optional[Dict[str, Any]] = None):
        full_message = f"{service} unavailable: {message}"
        super().__init__(
            error_code=ErrorCode.EXTERNAL_SERVICE_ERROR.value,
            message=full_message,
            context={**(context or {}), "service": service},
            http_status=503
        )
        self.service = service


class CaptionParseError(AppException):
    """Caption file has a hard error and cannot be used."""

    def __init__(self, errors: list, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.CAPTION_PARSE_FAILED.value,
            message="Caption parsing unusable: " + "; ".join(errors),
            context={**(context or {}), "errors": list(errors)},
            http_status=422
        )
        self.errors = list(errors)


class NoMediaAvailableError(AppException):
    """Neither a usable caption file nor a reachable audio file exists."""

    def __init__(self, message: str = "No usable caption or audio media", context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.NO_MEDIA_AVAILABLE.value,
            message=message,
            context=context,
            http_status=422
        )


class TranscriptionError(AppException):
    """Permanent failure producing a raw transcript."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.TRANSCRIPTION_FAILED.value,
            message=message,
            context=context,
            http_status=502
        )


class GenerationError(AppException):
    """Minutes generation failed. ``transient`` marks timeout/5xx causes."""

    def __init__(
        self,
        message: str,
        transient: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code=ErrorCode.GENERATION_FAILED.value,
            message=message,
            context={**(context or {}), "transient": transient},
            http_status=502
        )
        self.transient = transient
        self.retryable = transient


class DeliveryError(AppException):
    """A single recipient could not be sent the minutes."""

    def __init__(self, recipient: str, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            error_code=ErrorCode.DELIVERY_FAILED.value,
            message=message,
            context={**(context or {}), "recipient": recipient},
            http_status=502
        )
        self.recipient = recipient


class JobNotFoundError(AppException):
    """Requested job or transcript does not exist."""

    def __init__(self, resource_id: str, resource: str = "job"):
        super().__init__(
            error_code=ErrorCode.JOB_NOT_FOUND.value,
            message=f"{resource.capitalize()} {resource_id} not found",
            context={f"{resource}_id": resource_id},
            http_status=404
        )


class JobStateError(AppException):
    """Requested transition is not allowed from the job's current status."""

    def __init__(self, job_id: str, status: str, message: Optional[str] = None):
        super().__init__(
            error_code=ErrorCode.INVALID_JOB_STATE.value,
            message=message or f"Job {job_id} cannot transition from {status}",
            context={"job_id": job_id, "status": status},
            http_status=409
        )


def is_retryable(exc: Exception) -> bool:
    """True when ``exc`` is a transient failure worth another attempt."""
    return isinstance(exc, AppException) and exc.retryable


def log_exception(
    exc: Exception,
    scope: str = LogScope.ERROR_HANDLER,
    logger: Optional[logging.Logger] = None
) -> None:
    """Log exception with structured context.

    Args:
        exc: Exception to log
        scope: Log scope identifier
        logger: Optional custom logger (uses structlog if not provided)
    """
    if logger is None:
        logger = get_scoped_logger(scope)

    if isinstance(exc, AppException):
        logger.error(
            "app_exception",
            error_code=exc.error_code,
            message=exc.message,
            http_status=exc.http_status,
            retryable=exc.retryable,
            context=exc.context
        )
    else:
        logger.error(
            "unexpected_exception",
            error_type=type(exc).__name__,
            message=str(exc),
            traceback=True
        )


def handle_error(
    exc: Exception,
    scope: str = LogScope.ERROR_HANDLER,
    default_error_code: str = ErrorCode.EXTERNAL_SERVICE_ERROR.value
) -> Dict[str, Any]:
    """Handle exception and return structured error response.

    Args:
        exc: Exception to handle
        scope: Log scope
        default_error_code: Default error code for non-AppException errors

    Returns:
        Structured error response dictionary
    """
    log_exception(exc, scope)

    if isinstance(exc, AppException):
        return exc.to_dict()
    return {
        "error": {
            "code": default_error_code,
            "message": f"An unexpected error occurred: {str(exc)}",
            "context": {"error_type": type(exc).__name__}
        }
    }

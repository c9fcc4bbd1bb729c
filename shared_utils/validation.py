"""
Input validation and sanitization utilities.
Provides decorators and functions for validating and cleaning input data.
"""

from typing import Any, Callable, Iterable, List
from urllib.parse import quote
import functools
import re

from shared_utils.error_handler import ValidationError
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.constants import LogScope


_TENANT_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_\-]{0,63}$')
_EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class InputValidator:
    """Utility class for input validation."""

    @staticmethod
    def validate_non_empty_string(value: str, field_name: str) -> str:
        """Validate non-empty string.

        Args:
            value: String to validate
            field_name: Name of field for error messages

        Returns:
            Validated string

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string")

        if not value or not value.strip():
            raise ValidationError(f"{field_name} cannot be empty")

        return value.strip()

    @staticmethod
    def is_valid_tenant_id(value: Any) -> bool:
        """Tenant ids are 1-64 chars of letters, digits, ``-`` and ``_``."""
        return isinstance(value, str) and bool(_TENANT_ID_PATTERN.match(value))

    @staticmethod
    def validate_email(value: str, field_name: str = "email") -> str:
        """Validate an email address and return it trimmed.

        Raises:
            ValidationError: If the value does not look like an address
        """
        value = InputValidator.validate_non_empty_string(value, field_name)
        if not _EMAIL_PATTERN.match(value):
            raise ValidationError(f"{field_name} is not a valid email address", context={"value": value})
        return value

    @staticmethod
    def validate_emails(values: Iterable[str], field_name: str = "recipients") -> List[str]:
        """Validate a list of addresses, dropping case-insensitive duplicates."""
        seen = set()
        result = []
        for value in values:
            email = InputValidator.validate_email(value, field_name)
            key = email.lower()
            if key not in seen:
                seen.add(key)
                result.append(email)
        return result


def normalize_meeting_id(meeting_id: Any) -> str:
    """Normalise a provider meeting identifier for API paths.

    Numeric ids arrive formatted ("123 4567 8901", "123-4567-8901"); those are
    collapsed to digits. Meeting UUIDs that start with ``/`` or contain ``//``
    must be double URL-encoded before they can be used in a path.
    """
    raw = str(meeting_id).strip()
    if not raw:
        raise ValidationError("meeting_id cannot be empty")

    compact = re.sub(r'[\s\-]', '', raw)
    if compact.isdigit():
        return compact

    if raw.startswith('/') or '//' in raw:
        return quote(quote(raw, safe=''), safe='')
    return raw


def validate_input(
    validation_rules: dict[str, Callable],
    scope: str = LogScope.VALIDATION
):
    """Decorator to validate function arguments against rules.

    Args:
        validation_rules: Dict mapping param names to validation functions
        scope: Log scope

    Example:
        @validate_input({
            'meeting_id': lambda x: InputValidator.validate_non_empty_string(x, 'meeting_id'),
        })
        def create_manual_job(tenant_id, meeting_id):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = get_scoped_logger(scope)

            try:
                for param_name, validator in validation_rules.items():
                    if param_name in kwargs:
                        kwargs[param_name] = validator(kwargs[param_name])

                logger.debug(
                    f"{func.__name__}_validation_passed",
                    func_name=func.__name__,
                    validated_params=list(validation_rules.keys())
                )

                return func(*args, **kwargs)

            except ValidationError as e:
                logger.warning(
                    f"{func.__name__}_validation_failed",
                    func_name=func.__name__,
                    error=str(e)
                )
                raise

        return wrapper
    return decorator

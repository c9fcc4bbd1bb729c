"""
SendGrid mailer adapter.

Implements MailerPort: one API call per recipient so a rejected address never
affects the others.
"""

from __future__ import annotations

from typing import Optional
from urllib.error import URLError

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import ConfigurationError, DeliveryError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


class SendGridMailer:
    """Sends minutes through the SendGrid v3 mail API."""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        from_name: str = "",
        timeout: float = Defaults.MAIL_TIMEOUT,
        client: Optional[SendGridAPIClient] = None,
    ) -> None:
        if client is None and not api_key:
            raise ConfigurationError("SENDGRID_API_KEY not configured")
        self._client = client or SendGridAPIClient(api_key=api_key)
        # Propagates to the per-request clients python_http_client builds
        self._client.client.timeout = timeout
        self._from = (from_email, from_name) if from_name else from_email

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> None:
        message = Mail(
            from_email=self._from,
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
            plain_text_content=text_content,
        )
        try:
            response = self._client.send(message)
        except HTTPError as exc:
            logger.warning("sendgrid_rejected", recipient=to_email, status_code=exc.status_code)
            raise DeliveryError(to_email, f"SendGrid returned {exc.status_code}") from exc
        except (URLError, TimeoutError, OSError) as exc:
            logger.warning("sendgrid_unreachable", recipient=to_email, error=str(exc))
            raise DeliveryError(to_email, f"SendGrid unreachable: {exc}") from exc

        if response.status_code >= 300:
            raise DeliveryError(to_email, f"SendGrid returned {response.status_code}")
        logger.info("sendgrid_sent", recipient=to_email, status_code=response.status_code)

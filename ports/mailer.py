"""
Port interface for outbound email.

Implementations: SendGridMailer (adapters/)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MailerPort(Protocol):
    """Sends one message to one recipient."""

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> None:
        """Send a message.

        Raises:
            DeliveryError: The provider rejected or failed to accept the message.
        """
        ...

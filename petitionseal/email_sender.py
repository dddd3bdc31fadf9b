"""
Email delivery for PetitionSeal.

Senders post to a transactional email provider over HTTP. A send either
succeeds or raises ``EmailDeliveryError``; callers never treat an
unconfirmed send as delivered.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from .config import Settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
POSTMARK_API_URL = "https://api.postmarkapp.com/email"


class EmailDeliveryError(Exception):
    """The provider did not accept the message."""

    def __init__(self, provider: str, detail: str):
        self.provider = provider
        self.detail = detail
        super().__init__(f"{provider} email error: {detail}")


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    html: str
    text: str


def build_otp_email(code: str, ttl_minutes: int = 10) -> EmailMessage:
    """Verification code email."""
    subject = "Your verification code"
    html = (
        "<h2>Email Verification</h2>\n"
        f"<p>Your verification code is: <strong>{code}</strong></p>\n"
        f"<p>This code will expire in {ttl_minutes} minutes.</p>\n"
        "<p>If you didn't request this code, please ignore this email.</p>\n"
    )
    text = (
        f"Your verification code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email."
    )
    return EmailMessage(subject=subject, html=html, text=text)


class EmailSender(ABC):
    """Abstract interface for outbound email."""

    name = "email"

    @abstractmethod
    def send(self, to: str, message: EmailMessage) -> None:
        """
        Deliver a message.

        Raises:
            EmailDeliveryError: If the provider rejects or cannot be reached
        """
        pass


class _HttpEmailSender(EmailSender):

    def __init__(
        self,
        sender: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.sender = sender
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, url: str, headers: dict, body: dict) -> None:
        try:
            response = self.session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise EmailDeliveryError(self.name, str(e)) from e
        if not response.ok:
            raise EmailDeliveryError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")
        logger.debug("Email accepted by %s", self.name)


class ResendEmailSender(_HttpEmailSender):
    name = "resend"

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        super().__init__(sender, timeout, session)
        self.api_key = api_key

    def send(self, to: str, message: EmailMessage) -> None:
        self._post(
            RESEND_API_URL,
            {"Authorization": f"Bearer {self.api_key}"},
            {
                "from": self.sender,
                "to": to,
                "subject": message.subject,
                "html": message.html,
                "text": message.text,
            },
        )


class PostmarkEmailSender(_HttpEmailSender):
    name = "postmark"

    def __init__(self, server_token: str, sender: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        super().__init__(sender, timeout, session)
        self.server_token = server_token

    def send(self, to: str, message: EmailMessage) -> None:
        self._post(
            POSTMARK_API_URL,
            {"X-Postmark-Server-Token": self.server_token, "Accept": "application/json"},
            {
                "From": self.sender,
                "To": to,
                "Subject": message.subject,
                "HtmlBody": message.html,
                "TextBody": message.text,
            },
        )


def get_email_sender(settings: Settings) -> EmailSender:
    """
    Factory for the configured provider.

    Resend is preferred when both are configured.
    """
    if settings.resend_api_key:
        return ResendEmailSender(settings.resend_api_key, settings.email_from,
                                 settings.email_timeout_seconds)
    if settings.postmark_server_token:
        return PostmarkEmailSender(settings.postmark_server_token, settings.email_from,
                                   settings.email_timeout_seconds)
    raise ValueError("No email provider configured")

"""
auth/mailer.py -- Outbound verification email.

Two implementations of one small interface:
  ResendMailer -- posts to the Resend REST API through a shared
      requests.Session. Any transport or HTTP error becomes
      MailDeliveryError; the raw error is logged, not returned.
  LogMailer    -- development fallback used when RESEND_API_KEY is empty.
      Writes the code to the log so a local developer can complete signup.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests

from auth.errors import MailDeliveryError
from core.config import Settings

logger = logging.getLogger("sessiongate.auth.mailer")

RESEND_API = "https://api.resend.com/emails"

_SUBJECT = "Verify your email address"

_BODY = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Email Verification</h2>
  <p>Thank you for registering! Please use the following code to verify your email:</p>
  <div style="background-color: #f4f4f4; padding: 20px; text-align: center;
              font-size: 32px; font-weight: bold; letter-spacing: 5px; margin: 20px 0;">
    {code}
  </div>
  <p>This code will expire in {minutes} minutes.</p>
  <p>If you didn't request this code, please ignore this email.</p>
</div>
"""


class Mailer(ABC):
    """Interface for verification email delivery."""

    @abstractmethod
    def send_verification(self, to_email: str, code: str) -> None: ...


class ResendMailer(Mailer):
    def __init__(self, api_key: str, sender: str, code_ttl_minutes: int = 10, timeout: float = 10) -> None:
        self._sender = sender
        self._minutes = code_ttl_minutes
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {api_key}"

    def send_verification(self, to_email: str, code: str) -> None:
        payload = {
            "from": self._sender,
            "to": [to_email],
            "subject": _SUBJECT,
            "html": _BODY.format(code=code, minutes=self._minutes),
        }
        try:
            resp = self._session.post(RESEND_API, json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Verification email to %s failed: %s", to_email, e)
            raise MailDeliveryError() from e
        try:
            email_id = resp.json().get("id")
        except ValueError:
            # Delivered; the receipt body just was not JSON.
            email_id = None
        logger.info("Verification email sent to %s (id=%s)", to_email, email_id)


class LogMailer(Mailer):
    def send_verification(self, to_email: str, code: str) -> None:
        logger.info("RESEND_API_KEY not set; verification code for %s is %s", to_email, code)


def build_mailer(settings: Settings) -> Mailer:
    if settings.resend_api_key:
        return ResendMailer(
            settings.resend_api_key,
            settings.mail_from,
            code_ttl_minutes=settings.verification_code_ttl_seconds // 60,
        )
    logger.warning("Email delivery disabled -- using LogMailer")
    return LogMailer()

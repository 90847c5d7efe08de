"""
auth/errors.py -- Auth-specific refinements of the core error taxonomy.

NotFound and Expired verification outcomes both surface as
InvalidOrExpiredCode; callers are never told which one applied.
"""

from __future__ import annotations

from core.errors import ForbiddenError, UnauthorizedError, UpstreamError, ValidationError


class InvalidCredentials(UnauthorizedError):
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class EmailNotVerified(ForbiddenError):
    code = "email_not_verified"
    default_message = "Please verify your email before logging in"


class InvalidOrExpiredCode(ValidationError):
    code = "invalid_code"
    default_message = "Invalid or expired verification code"


class NoSession(ValidationError):
    code = "no_session"
    default_message = "No session found"


class MailDeliveryError(UpstreamError):
    code = "mail_delivery_failed"
    default_message = "Failed to send verification email"

"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). The store maps rows
to these; services and routes do the work.

The account origin is an explicit tag on User rather than something inferred
from which of hashed_password / external_id happens to be NULL.

Layer rule: no imports from api/, gateway/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AccountOrigin(str, Enum):
    local = "local"  # email + password registration
    federated = "federated"  # created by an external identity provider


class VerifyOutcome(str, Enum):
    valid = "valid"
    invalid = "invalid"  # already used, or lost a concurrent consume
    expired = "expired"
    not_found = "not_found"


@dataclass
class User:
    """An identity record.

    hashed_password is set only for local accounts; external_provider and
    external_id only for federated ones. Federated accounts start verified
    because the provider vouches for the email.
    """

    email: str
    name: str
    origin: AccountOrigin = AccountOrigin.local
    id: int | None = None
    hashed_password: str | None = None
    external_provider: str | None = None  # "google", "github", "oidc"
    external_id: str | None = None  # provider's stable subject
    avatar_url: str | None = None
    is_verified: bool = False
    created_at: str | None = None


@dataclass
class PublicUser:
    """Redacted projection of a User -- safe to return to clients."""

    id: int
    email: str
    name: str
    avatar: str


@dataclass
class VerificationCode:
    """A single-use 6-digit code proving control of an email address."""

    email: str
    code: str
    expires_at: str
    id: int | None = None
    used: bool = False
    created_at: str | None = None


@dataclass
class Session:
    """A capability token bound to one user."""

    user_id: int
    token: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class ExternalIdentity:
    """A verified identity handed back by an external provider."""

    provider: str
    subject: str
    email: str
    name: str
    avatar_url: str | None = None


@dataclass
class LoginResult:
    token: str
    user: PublicUser

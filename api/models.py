"""
API request and response models for the auth service.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the domain shape;
route handlers map between the two.

Field constraints here only reject malformed input (400 through the
RequestValidationError handler). Business rules such as "email already
registered" live in AuthCore.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PublicUser

# bcrypt silently truncates (or, in recent releases, rejects) anything past
# 72 bytes, so the API refuses longer passwords outright.
_PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str
    message: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    # No whitespace stripping: it would silently alter passwords.
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    name: str = Field(min_length=1, max_length=255)


class VerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=6)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class ResendCodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user_id: int


class UserView(BaseModel):
    """Public projection of a user. Never carries password material."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    avatar: str = ""

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserView":
        return cls(id=user.id, email=user.email, name=user.name, avatar=user.avatar)


class LoginResponse(BaseModel):
    """Response for POST /auth/login. The gateway moves token into a cookie."""

    model_config = ConfigDict(frozen=True)

    message: str
    token: str
    user: UserView


class UserSearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserView] = Field(default_factory=list)

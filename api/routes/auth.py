"""
api/routes/auth.py -- Email/password account endpoints.

Routes:
  POST /auth/register      -- create an unverified account; emails a code (201)
  POST /auth/verify        -- consume a verification code
  POST /auth/login         -- password login; returns the session token in the body
  POST /auth/resend-code   -- issue a fresh code for an unverified account
  POST /auth/logout        -- revoke the session named by the session_token cookie

The login response carries the token in JSON because the gateway, not this
service, owns the browser cookie: it lifts the token into session_token and
removes it from the body before the client sees it.

Security:
  Cache-Control: no-store on login responses.
  Login failures share one generic message for unknown email, federated
  account and wrong password (see AuthCore.login for timing equalization).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResendCodeRequest,
    UserView,
    VerifyRequest,
)
from auth.dependencies import get_auth_core, session_token
from auth.service import AuthCore

router = APIRouter()


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(body: RegisterRequest, auth: AuthCore = Depends(get_auth_core)) -> RegisterResponse:
    """Create a local account and send its first verification code.

    If the email cannot be sent the account still exists; the client should
    call /auth/resend-code rather than registering again.
    """
    user_id = auth.register(body.email, body.password, body.name)
    return RegisterResponse(
        message="Registration successful. Please check your email for verification code.",
        user_id=user_id,
    )


@router.post("/auth/verify", response_model=MessageResponse)
def verify(body: VerifyRequest, auth: AuthCore = Depends(get_auth_core)) -> MessageResponse:
    auth.verify_email(body.email, body.code)
    return MessageResponse(message="Email verified successfully! You can now log in.")


@router.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest, auth: AuthCore = Depends(get_auth_core)) -> JSONResponse:
    result = auth.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            message="Login successful",
            token=result.token,
            user=UserView.from_public(result.user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/resend-code", response_model=MessageResponse)
def resend_code(body: ResendCodeRequest, auth: AuthCore = Depends(get_auth_core)) -> MessageResponse:
    if not auth.resend_code(body.email):
        return MessageResponse(message="Email already verified")
    return MessageResponse(message="Verification code sent successfully")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    token: str | None = Depends(session_token),
    auth: AuthCore = Depends(get_auth_core),
) -> MessageResponse:
    """Revoke the current session. An unknown token still logs out cleanly."""
    auth.logout(token)
    return MessageResponse(message="Logged out successfully")

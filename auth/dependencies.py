"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth service.

The only credential is the session_token cookie. The gateway forwards it
unchanged, so the auth service reads it from the same place as a browser
talking to it directly.

session_token() is the soft variant (returns None when absent).
get_current_user() resolves it and raises 401 when it is missing or dead.

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import PublicUser
from auth.service import AuthCore
from core.config import SESSION_COOKIE


def get_auth_core(request: Request) -> AuthCore:
    return request.app.state.auth


def session_token(request: Request) -> str | None:
    return request.cookies.get(SESSION_COOKIE) or None


def get_current_user(request: Request) -> PublicUser:
    """Require a live session. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    return get_auth_core(request).current_user(session_token(request))

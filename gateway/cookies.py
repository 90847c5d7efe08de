"""gateway/cookies.py -- The session cookie as the browser receives it."""

from __future__ import annotations

from starlette.responses import Response

from core.config import SESSION_COOKIE, Settings, get_settings


def set_session_cookie(response: Response, token: str, settings: Settings | None = None) -> None:
    """HttpOnly, SameSite=Lax, path /, seven-day Max-Age. Secure follows SECURE_COOKIES."""
    settings = settings or get_settings()
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        max_age=settings.session_cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )

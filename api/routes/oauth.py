"""
api/routes/oauth.py -- Federated login through an external identity provider.

Routes:
  GET /auth/{provider}            -- redirect the browser to the provider
  GET /auth/{provider}/callback   -- exchange the code, open a session, and
                                     302 to GATEWAY_URL/auth/callback?token=...

The gateway's /auth/callback route turns the token query parameter into the
session_token cookie. This service never sets the browser cookie itself.

Flow:
  1. Reject providers that are not configured (404).
  2. authlib exchanges the code; state is checked against SessionMiddleware.
  3. get_external_identity() insists on a verified email.
  4. AuthCore.complete_federated_login() finds or creates the user and
     issues a fresh session.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.dependencies import get_auth_core
from auth.oauth import OAuthConfig, get_external_identity
from auth.service import AuthCore
from core.config import get_settings
from core.errors import NotFoundError, ValidationError

logger = logging.getLogger("sessiongate.api.oauth")

router = APIRouter()


def _provider_config(request: Request, provider: str) -> OAuthConfig:
    cfg = request.app.state.oauth_configs.get(provider)
    if cfg is None:
        raise NotFoundError(f"Unknown identity provider: {provider}")
    return cfg


@router.get("/auth/{provider}")
async def oauth_begin(request: Request, provider: str):
    cfg = _provider_config(request, provider)
    client = request.app.state.oauth.create_client(provider)
    logger.info("Starting OAuth for provider %s", provider)
    return await client.authorize_redirect(request, cfg.callback_url)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str, auth: AuthCore = Depends(get_auth_core)) -> RedirectResponse:
    _provider_config(request, provider)
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("OAuth token exchange failed for provider %r: %s", provider, exc)
        raise ValidationError("OAuth authentication failed") from exc

    try:
        identity = await get_external_identity(client, provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected for provider %r: %s", provider, exc)
        raise ValidationError("OAuth authentication failed") from exc

    session = await run_in_threadpool(
        auth.complete_federated_login,
        identity.provider,
        identity.subject,
        identity.email,
        identity.name,
        identity.avatar_url,
    )

    target = f"{get_settings().gateway_url.rstrip('/')}/auth/callback?{urlencode({'token': session})}"
    resp = RedirectResponse(target, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp

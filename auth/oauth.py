"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration and identity extraction.

Provider configuration is explicit: oauth_configs() turns Settings into one
OAuthConfig per enabled provider, and build_oauth() registers exactly those
with a fresh authlib registry. Both run once at app startup; request
handlers read the result from app.state and never from module globals.

Only providers with both client ID and secret configured are enabled. The
callback URL points at the gateway, which proxies /auth/{provider}/callback
back to the auth service, so the provider only ever sees the public origin.

Security notes:
  Email verification is mandatory. get_external_identity() raises ValueError
  if the provider does not confirm the email is verified -- an unverified
  address could belong to someone else.

  OAuth state (CSRF protection) is handled by authlib through Starlette's
  SessionMiddleware, installed in api/main.py.

Supported providers:
  google -- OIDC discovery.
  github -- Authorization code flow; static endpoints; profile + emails API.
  oidc   -- Generic OIDC discovery (Okta, Keycloak, Authentik, ...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalIdentity
from core.config import Settings

logger = logging.getLogger("sessiongate.auth.oauth")


@dataclass(frozen=True)
class OAuthConfig:
    """Everything needed to register one provider with authlib."""

    name: str
    client_id: str
    client_secret: str
    callback_url: str
    scopes: tuple[str, ...]
    server_metadata_url: str | None = None
    endpoints: dict = field(default_factory=dict)  # static endpoints for non-OIDC providers


def oauth_configs(settings: Settings) -> dict[str, OAuthConfig]:
    """Return the enabled providers keyed by name."""
    base = settings.gateway_url.rstrip("/")
    configs: dict[str, OAuthConfig] = {}

    if settings.google_client_id and settings.google_client_secret:
        configs["google"] = OAuthConfig(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            callback_url=f"{base}/auth/google/callback",
            scopes=("openid", "email", "profile"),
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        )

    if settings.github_client_id and settings.github_client_secret:
        configs["github"] = OAuthConfig(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            callback_url=f"{base}/auth/github/callback",
            scopes=("read:user", "user:email"),
            endpoints={
                "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
                "authorize_url": "https://github.com/login/oauth/authorize",
                "api_base_url": "https://api.github.com/",
            },
        )

    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        configs["oidc"] = OAuthConfig(
            name="oidc",
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            callback_url=f"{base}/auth/oidc/callback",
            scopes=("openid", "email", "profile"),
            server_metadata_url=settings.oidc_discovery_url,
        )

    return configs


def build_oauth(configs: dict[str, OAuthConfig]) -> OAuth:
    """Create an authlib registry holding exactly the given providers."""
    registry = OAuth()
    for cfg in configs.values():
        kwargs = dict(cfg.endpoints)
        if cfg.server_metadata_url:
            kwargs["server_metadata_url"] = cfg.server_metadata_url
        registry.register(
            name=cfg.name,
            client_id=cfg.client_id,
            client_secret=cfg.client_secret,
            client_kwargs={"scope": " ".join(cfg.scopes)},
            **kwargs,
        )
        logger.info("OAuth provider registered: %s", cfg.name)
    return registry


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_external_identity(client, provider: str, token: dict) -> ExternalIdentity:
    """Normalize a provider token response into an ExternalIdentity.

    Raises:
        ValueError: If a verified email or stable subject cannot be confirmed.
    """
    if provider == "github":
        return await _get_github_identity(client, token)
    elif provider in ("google", "oidc"):
        return _get_oidc_identity(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_identity(client, token: dict) -> ExternalIdentity:
    """GitHub needs two API calls: /user for the numeric id, /user/emails for the address.

    Only the email where both primary and verified are true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break
    if not email:
        raise ValueError("GitHub OAuth: no primary verified email found")

    return ExternalIdentity(
        provider="github",
        subject=str(profile["id"]),
        email=email,
        name=profile.get("name") or profile.get("login") or email,
        avatar_url=profile.get("avatar_url"),
    )


def _get_oidc_identity(token: dict, provider: str) -> ExternalIdentity:
    """Read identity claims from the id_token userinfo. email_verified must be true."""
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return ExternalIdentity(
        provider=provider,
        subject=subject,
        email=email,
        name=userinfo.get("name") or email,
        avatar_url=userinfo.get("picture"),
    )

"""Unit tests for auth/oauth.py -- provider configuration and identity extraction.

Covers:
- only fully configured providers are enabled
- callback URLs point at the gateway
- build_oauth registers exactly the configured providers
- OIDC identities require email_verified
- GitHub identities use the primary verified email
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auth.oauth import build_oauth, get_external_identity, oauth_configs
from core.config import get_settings


def _settings(**overrides):
    return get_settings().model_copy(update={"gateway_url": "https://app.example/", **overrides})


def test_no_providers_by_default():
    assert oauth_configs(_settings()) == {}


def test_configured_providers_and_callbacks():
    configs = oauth_configs(
        _settings(
            google_client_id="g",
            google_client_secret="gs",
            github_client_id="h",
            github_client_secret="hs",
            oidc_client_id="o",
            oidc_client_secret="os",
        )
    )
    # oidc also needs a discovery URL
    assert sorted(configs) == ["github", "google"]
    assert configs["google"].callback_url == "https://app.example/auth/google/callback"
    assert configs["github"].endpoints["authorize_url"].startswith("https://github.com/")


def test_build_oauth_registers_configured_clients():
    configs = oauth_configs(_settings(google_client_id="g", google_client_secret="gs"))
    registry = build_oauth(configs)
    assert registry.create_client("google") is not None
    assert registry.create_client("github") is None


def test_oidc_identity_requires_verified_email():
    token = {"userinfo": {"sub": "1", "email": "a@example.com", "email_verified": False}}
    with pytest.raises(ValueError):
        asyncio.run(get_external_identity(MagicMock(), "google", token))


def test_oidc_identity_fields():
    token = {
        "userinfo": {
            "sub": "abc",
            "email": "a@example.com",
            "email_verified": True,
            "name": "Ann",
            "picture": "https://img/a.png",
        }
    }
    identity = asyncio.run(get_external_identity(MagicMock(), "oidc", token))
    assert identity.provider == "oidc"
    assert identity.subject == "abc"
    assert identity.name == "Ann"
    assert identity.avatar_url == "https://img/a.png"


def _json_response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


def test_github_identity_uses_primary_verified_email():
    client = MagicMock()
    client.get = AsyncMock(
        side_effect=[
            _json_response({"id": 42, "login": "octo", "name": None, "avatar_url": "https://gh/42.png"}),
            _json_response(
                [
                    {"email": "old@example.com", "primary": False, "verified": True},
                    {"email": "octo@example.com", "primary": True, "verified": True},
                ]
            ),
        ]
    )
    identity = asyncio.run(get_external_identity(client, "github", {"access_token": "t"}))
    assert identity.subject == "42"
    assert identity.email == "octo@example.com"
    assert identity.name == "octo"


def test_github_identity_without_verified_primary_is_rejected():
    client = MagicMock()
    client.get = AsyncMock(
        side_effect=[
            _json_response({"id": 42, "login": "octo"}),
            _json_response([{"email": "octo@example.com", "primary": True, "verified": False}]),
        ]
    )
    with pytest.raises(ValueError):
        asyncio.run(get_external_identity(client, "github", {"access_token": "t"}))


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        asyncio.run(get_external_identity(MagicMock(), "myspace", {}))

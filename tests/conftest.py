"""
tests/conftest.py -- Shared test fixtures for sessiongate.

This module provides:
  - RecordingMailer: captures verification codes instead of sending email
  - make_core(): an AuthCore over an isolated named shared-memory DB
  - auth_client: TestClient for the auth service with a patched lifespan
  - register_verified: helper that registers and verifies a local account
  - gateway: TestClient for the gateway, whose upstreams are the real
    auth app and a stub backend reached in-process through httpx.ASGITransport

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any core/auth import so
get_settings() auto-generates SECRET_KEY and hashing stays fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from unittest.mock import MagicMock

# CRITICAL: set before any core/auth import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RESEND_API_KEY", "")

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from api.main import app as auth_app
from auth.mailer import Mailer
from auth.service import AuthCore, build_auth_core
from auth.store import CredentialStore
from core.config import get_settings
from gateway.main import app as gateway_app
from gateway.routes import default_routes

AUTH_HOST = "auth.test"
BACKEND_HOST = "backend.test"


# ---------------------------------------------------------------------------
# Mailer and store helpers
# ---------------------------------------------------------------------------


@dataclass
class RecordingMailer(Mailer):
    """Keeps every (email, code) pair it is asked to send."""

    sent: list[tuple[str, str]] = field(default_factory=list)

    def send_verification(self, to_email: str, code: str) -> None:
        self.sent.append((to_email, code))

    def last_code(self, email: str) -> str:
        codes = [code for to, code in self.sent if to == email]
        assert codes, f"no verification code sent to {email}"
        return codes[-1]


def shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_core(prefix: str = "core") -> AuthCore:
    """AuthCore over a fresh shared-memory DB with a RecordingMailer."""
    store = CredentialStore(shared_memory_url(prefix))
    return build_auth_core(get_settings(), store=store, mailer=RecordingMailer())


def _register_verified(core: AuthCore, email: str, password: str = "secret123", name: str = "Test User") -> int:
    """Register and verify a local account; return its id."""
    uid = core.register(email, password, name)
    core.verify_email(email, core.mailer.last_code(email))
    return uid


@pytest.fixture
def register_verified():
    """The helper above, as a fixture so test modules need no conftest import."""
    return _register_verified


@pytest.fixture
def core() -> Generator[AuthCore, None, None]:
    c = make_core()
    yield c
    c.store.close()


# ---------------------------------------------------------------------------
# Auth service client
# ---------------------------------------------------------------------------


def _patch_auth_lifespan(core: AuthCore):
    """Replace the real lifespan: wire the test AuthCore and a mock OAuth registry."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = core
        app.state.oauth_configs = {}
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@pytest.fixture
def auth_client(core) -> Generator[TestClient, None, None]:
    """TestClient for the auth service. follow_redirects=False so OAuth redirects can be asserted."""
    auth_app.router.lifespan_context = _patch_auth_lifespan(core)
    with TestClient(auth_app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


# ---------------------------------------------------------------------------
# Gateway client
# ---------------------------------------------------------------------------


class HostRouter(httpx.AsyncBaseTransport):
    """Dispatch requests to in-process ASGI apps by host name.

    Unknown hosts fail with httpx.ConnectError, like an unreachable upstream.
    """

    def __init__(self, apps: dict[str, object]) -> None:
        self._transports = {host: httpx.ASGITransport(app=app) for host, app in apps.items()}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        transport = self._transports.get(request.url.host)
        if transport is None:
            raise httpx.ConnectError(f"no route to host {request.url.host}", request=request)
        return await transport.handle_async_request(request)


def make_backend() -> tuple[FastAPI, list[dict]]:
    """A stand-in application backend that echoes each request it receives.

    It also sets its own CORS and cookie headers so tests can check what the
    gateway lets through.
    """
    backend = FastAPI()
    calls: list[dict] = []

    @backend.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def echo(request: Request, path: str) -> JSONResponse:
        body = await request.body()
        seen = {
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query,
            "headers": dict(request.headers),
            "body": body.decode("utf-8"),
        }
        calls.append(seen)
        resp = JSONResponse(seen)
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Expose-Headers"] = "X-Internal"
        resp.headers["X-Upstream"] = "backend"
        resp.set_cookie("backend_a", "1")
        resp.set_cookie("backend_b", "2")
        return resp

    return backend, calls


def _patch_gateway_lifespan(transport: httpx.AsyncBaseTransport):
    @asynccontextmanager
    async def test_lifespan(app):
        app.state.routes = default_routes(f"http://{AUTH_HOST}", f"http://{BACKEND_HOST}")
        app.state.http = httpx.AsyncClient(transport=transport)
        yield
        await app.state.http.aclose()

    return test_lifespan


@dataclass
class GatewayHarness:
    client: TestClient
    core: AuthCore
    backend_calls: list[dict]


@pytest.fixture
def gateway(core) -> Generator[GatewayHarness, None, None]:
    """Gateway TestClient in front of the real auth app and the echo backend.

    ASGITransport does not run lifespans, so the auth app's state is set here
    directly.
    """
    backend, calls = make_backend()
    auth_app.state.auth = core
    auth_app.state.oauth_configs = {}
    auth_app.state.oauth = MagicMock()

    transport = HostRouter({AUTH_HOST: auth_app, BACKEND_HOST: backend})
    gateway_app.router.lifespan_context = _patch_gateway_lifespan(transport)
    with TestClient(gateway_app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield GatewayHarness(client=client, core=core, backend_calls=calls)

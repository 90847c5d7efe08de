"""
tests/test_gateway_proxy.py -- Integration tests for the gateway.

The gateway's upstreams are the real auth app and an echo backend, both
reached in-process (see the gateway fixture in conftest.py).

Covers:
  - PROXY: method, path, query and body forwarded; X-Forwarded-* added;
    default Content-Type; repeated Set-Cookie relayed; upstream CORS headers
    replaced by the gateway's own
  - SESSION_REQUIRED: 401 before any upstream call when the cookie is missing
  - LOGIN: token moved from the body into an HttpOnly cookie; 405 on GET;
    failures relayed unchanged
  - FEDERATED_CALLBACK: cookie + redirect to the frontend, or an error redirect
  - OPTIONS preflight answered locally; unknown paths 404; unreachable
    upstream 502; an unexpected handler failure is a 500 that still carries
    the CORS policy
  - full register -> verify -> login -> me -> logout journey
  - upstream call cancelled when the client disconnects
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from core.config import get_settings
from gateway.proxy import HANDLERS, ClientDisconnected, _send_unless_disconnected
from gateway.routes import Behavior, default_routes

FRONTEND = get_settings().frontend_url


def _assert_gateway_cors(resp):
    assert resp.headers["access-control-allow-origin"] == FRONTEND
    assert resp.headers["access-control-allow-credentials"] == "true"
    assert "OPTIONS" in resp.headers["access-control-allow-methods"]
    assert "Stripe-Signature" in resp.headers["access-control-allow-headers"]


def _signup(client, core, email="journey@example.com", password="secret123", name="Journey"):
    resp = client.post("/auth/register", json={"email": email, "password": password, "name": name})
    assert resp.status_code == 201
    resp = client.post("/auth/verify", json={"email": email, "code": core.mailer.last_code(email)})
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# PROXY
# ---------------------------------------------------------------------------


def test_proxy_forwards_method_path_query_and_body(gateway):
    resp = gateway.client.put("/contracts/7?draft=1&x=y", content=b'{"title": "t"}')
    assert resp.status_code == 200
    seen = resp.json()
    assert seen["method"] == "PUT"
    assert seen["path"] == "/contracts/7"
    assert seen["query"] == "draft=1&x=y"
    assert seen["body"] == '{"title": "t"}'
    assert seen["headers"]["content-type"] == "application/json"


def test_proxy_keeps_client_content_type(gateway):
    resp = gateway.client.post("/friends", content=b"a=1", headers={"Content-Type": "application/x-www-form-urlencoded"})
    assert resp.json()["headers"]["content-type"] == "application/x-www-form-urlencoded"


def test_proxy_adds_forwarded_headers(gateway):
    resp = gateway.client.get("/messages/1", headers={"X-Forwarded-For": "203.0.113.9", "X-Forwarded-Host": "evil"})
    headers = resp.json()["headers"]
    assert headers["x-forwarded-for"] == "203.0.113.9, testclient"
    assert headers["x-forwarded-host"] == "testserver"
    assert headers["x-forwarded-proto"] == "http"


def test_proxy_forwards_cookie_header(gateway):
    gateway.client.cookies.set("session_token", "abc123")
    resp = gateway.client.get("/friends/list")
    assert "session_token=abc123" in resp.json()["headers"]["cookie"]


def test_proxy_relays_repeated_set_cookie_and_custom_headers(gateway):
    resp = gateway.client.get("/contracts")
    cookies = resp.headers.get_list("set-cookie")
    assert len(cookies) == 2
    assert any(c.startswith("backend_a=1") for c in cookies)
    assert any(c.startswith("backend_b=2") for c in cookies)
    assert resp.headers["x-upstream"] == "backend"


def test_proxy_replaces_upstream_cors_headers(gateway):
    resp = gateway.client.get("/contracts")
    _assert_gateway_cors(resp)
    assert "access-control-expose-headers" not in resp.headers


def test_health_is_proxied_to_auth(gateway):
    resp = gateway.client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "up", "message": "It's healthy"}
    _assert_gateway_cors(resp)


def test_unreachable_upstream_is_502(gateway):
    gateway.client.app.state.routes = default_routes("http://auth.test", "http://nowhere.test")
    resp = gateway.client.get("/contracts")
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "bad_gateway"
    _assert_gateway_cors(resp)


def test_unexpected_handler_failure_is_500_with_cors(gateway, monkeypatch):
    async def broken(request, route, client):
        raise RuntimeError("boom")

    monkeypatch.setitem(HANDLERS, Behavior.PROXY, broken)
    resp = gateway.client.get("/contracts")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "internal_error"
    assert "boom" not in resp.text
    _assert_gateway_cors(resp)


def test_unknown_path_is_404(gateway):
    resp = gateway.client.get("/not-routed")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    _assert_gateway_cors(resp)
    assert gateway.backend_calls == []


def test_options_preflight_answered_locally(gateway):
    resp = gateway.client.options("/api/avatars", headers={"Origin": FRONTEND, "Access-Control-Request-Method": "POST"})
    assert resp.status_code == 200
    _assert_gateway_cors(resp)
    assert gateway.backend_calls == []


# ---------------------------------------------------------------------------
# SESSION_REQUIRED
# ---------------------------------------------------------------------------


def test_session_required_without_cookie_is_401_and_no_upstream_call(gateway):
    resp = gateway.client.get("/api/avatars/3")
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Unauthorized - No cookie"
    _assert_gateway_cors(resp)
    assert gateway.backend_calls == []


def test_session_required_with_cookie_is_forwarded(gateway):
    gateway.client.cookies.set("session_token", "whatever")
    resp = gateway.client.post("/api/avatars", json={"style": "pixel"})
    assert resp.status_code == 200
    assert resp.json()["path"] == "/api/avatars"
    assert len(gateway.backend_calls) == 1


def test_me_with_dead_cookie_relays_auth_401(gateway):
    gateway.client.cookies.set("session_token", "0" * 64)
    resp = gateway.client.get("/api/me")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


# ---------------------------------------------------------------------------
# LOGIN
# ---------------------------------------------------------------------------


def test_login_moves_token_into_cookie(gateway):
    _signup(gateway.client, gateway.core)
    resp = gateway.client.post("/auth/login", json={"email": "journey@example.com", "password": "secret123"})
    assert resp.status_code == 200
    body = resp.json()
    assert "token" not in body
    assert body["message"] == "Login successful"
    assert body["user"]["email"] == "journey@example.com"
    assert resp.headers["content-type"].startswith("application/json")

    cookie = resp.headers["set-cookie"]
    token = resp.cookies.get("session_token")
    assert token and len(token) == 64
    assert "HttpOnly" in cookie
    assert "samesite=lax" in cookie.lower()
    assert "Max-Age=604800" in cookie
    assert "Path=/" in cookie
    assert gateway.core.current_user(token).email == "journey@example.com"


def test_login_failure_is_relayed_without_cookie(gateway):
    _signup(gateway.client, gateway.core)
    resp = gateway.client.post("/auth/login", json={"email": "journey@example.com", "password": "wrong-one"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_credentials"
    assert "set-cookie" not in resp.headers


def test_login_unverified_is_relayed_as_403(gateway):
    gateway.client.post("/auth/register", json={"email": "p@example.com", "password": "secret123", "name": "P"})
    resp = gateway.client.post("/auth/login", json={"email": "p@example.com", "password": "secret123"})
    assert resp.status_code == 403
    assert "set-cookie" not in resp.headers


def test_login_get_is_405(gateway):
    resp = gateway.client.get("/auth/login")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "method_not_allowed"


# ---------------------------------------------------------------------------
# FEDERATED_CALLBACK
# ---------------------------------------------------------------------------


def test_federated_callback_sets_cookie_and_redirects(gateway):
    resp = gateway.client.get("/auth/callback?token=tok-from-provider")
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{FRONTEND}/avatar"
    assert resp.cookies.get("session_token") == "tok-from-provider"
    assert "HttpOnly" in resp.headers["set-cookie"]


def test_federated_callback_without_token(gateway):
    resp = gateway.client.get("/auth/callback")
    assert resp.status_code == 302
    assert resp.headers["location"] == f"{FRONTEND}/login?error=oauth_failed"
    assert "set-cookie" not in resp.headers


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_register_verify_login_me_logout_journey(gateway):
    client = gateway.client
    _signup(client, gateway.core, name="Journey")

    login = client.post("/auth/login", json={"email": "journey@example.com", "password": "secret123"})
    assert login.status_code == 200
    # TestClient keeps the cookie the gateway set.
    assert client.cookies.get("session_token")

    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["name"] == "Journey"

    found = client.get("/api/users/search", params={"query": "journ"})
    assert [u["email"] for u in found.json()["users"]] == ["journey@example.com"]

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/api/me").status_code == 401


# ---------------------------------------------------------------------------
# Client disconnect
# ---------------------------------------------------------------------------


def test_upstream_call_cancelled_when_client_disconnects():
    cancelled = []

    class SlowClient:
        async def send(self, request):
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

    async def receive():
        return {"type": "http.disconnect"}

    async def run():
        with pytest.raises(ClientDisconnected):
            await _send_unless_disconnected(SimpleNamespace(receive=receive), SlowClient(), object())
        await asyncio.sleep(0.05)

    asyncio.run(run())
    assert cancelled == [True]


def test_upstream_answer_wins_over_idle_client():
    class FastClient:
        async def send(self, request):
            return "response"

    async def receive():
        await asyncio.sleep(60)

    async def run():
        return await _send_unless_disconnected(SimpleNamespace(receive=receive), FastClient(), object())

    assert asyncio.run(run()) == "response"

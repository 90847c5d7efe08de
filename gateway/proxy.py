"""
gateway/proxy.py -- Request handlers for each route behavior.

Every handler has the same shape:

    async def handler(request, route, client) -> Response

and is looked up through HANDLERS by the dispatcher in gateway/main.py.

Upstream calls go through one shared httpx.AsyncClient. Connection failures
and timeouts (httpx.RequestError) become BadGatewayError (502). Upstream
status codes, including 4xx and 5xx, are relayed unchanged.

If the browser goes away while the upstream call is in flight, the call is
cancelled and ClientDisconnected is raised so the dispatcher can stop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable

import httpx
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from core.config import SESSION_COOKIE, get_settings
from core.errors import BadGatewayError, MethodNotAllowedError, UnauthorizedError
from gateway.cookies import set_session_cookie
from gateway.headers import inbound_response_headers, outbound_request_headers
from gateway.routes import Behavior, Route

logger = logging.getLogger("sessiongate.gateway.proxy")

Handler = Callable[[Request, Route, httpx.AsyncClient], Awaitable[Response]]


class ClientDisconnected(Exception):
    """The client closed the connection before the upstream answered."""


# ---------------------------------------------------------------------------
# Upstream plumbing
# ---------------------------------------------------------------------------


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _send_unless_disconnected(
    request: Request, client: httpx.AsyncClient, upstream: httpx.Request
) -> httpx.Response:
    send = asyncio.ensure_future(client.send(upstream))
    watch = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({send, watch}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (send, watch):
            if not task.done():
                task.cancel()
    if send in done:
        return send.result()
    raise ClientDisconnected()


async def forward(request: Request, route: Route, client: httpx.AsyncClient) -> httpx.Response:
    """Send this request to route.upstream, keeping path, query, method and body."""
    body = await request.body()
    url = route.upstream + request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    upstream = client.build_request(
        request.method,
        url,
        headers=outbound_request_headers(request, body),
        content=body,
    )
    try:
        return await _send_unless_disconnected(request, client, upstream)
    except httpx.RequestError as exc:
        logger.warning("Upstream %s unreachable for %s %s: %s", route.upstream, request.method, request.url.path, exc)
        raise BadGatewayError() from exc


def relay(upstream: httpx.Response, content: bytes | None = None) -> Response:
    """Build the client response from an upstream one, with headers filtered."""
    response = Response(
        content=upstream.content if content is None else content,
        status_code=upstream.status_code,
    )
    for name, value in inbound_response_headers(upstream.headers):
        response.headers.append(name, value)
    return response


# ---------------------------------------------------------------------------
# Behaviors
# ---------------------------------------------------------------------------


async def proxy(request: Request, route: Route, client: httpx.AsyncClient) -> Response:
    return relay(await forward(request, route, client))


async def session_required(request: Request, route: Route, client: httpx.AsyncClient) -> Response:
    if not request.cookies.get(SESSION_COOKIE):
        logger.info("Rejected %s %s: no session cookie", request.method, request.url.path)
        raise UnauthorizedError("Unauthorized - No cookie")
    return await proxy(request, route, client)


async def login(request: Request, route: Route, client: httpx.AsyncClient) -> Response:
    """Forward the login, then move the token from the body into the cookie.

    Only a 200 whose body is a JSON object with a string "token" is rewritten.
    Anything else (401, 403, a non-JSON error page) passes through untouched.
    """
    if request.method != "POST":
        raise MethodNotAllowedError()

    upstream = await forward(request, route, client)
    if upstream.status_code != 200:
        return relay(upstream)

    try:
        payload = upstream.json()
    except ValueError:
        return relay(upstream)
    if not isinstance(payload, dict) or not isinstance(payload.get("token"), str):
        return relay(upstream)

    token = payload.pop("token")
    response = relay(upstream, content=json.dumps(payload).encode("utf-8"))
    response.headers["content-type"] = "application/json"
    set_session_cookie(response, token)
    logger.info("Login succeeded; session cookie set (token=%s...)", token[:10])
    return response


async def federated_callback(request: Request, route: Route, client: httpx.AsyncClient) -> Response:
    settings = get_settings()
    frontend = settings.frontend_url.rstrip("/")
    token = request.query_params.get("token")
    if not token:
        logger.warning("Federated callback without a token")
        return RedirectResponse(f"{frontend}/login?error=oauth_failed", status_code=302)

    response = RedirectResponse(f"{frontend}{settings.frontend_landing_path}", status_code=302)
    set_session_cookie(response, token, settings)
    return response


HANDLERS: dict[Behavior, Handler] = {
    Behavior.PROXY: proxy,
    Behavior.SESSION_REQUIRED: session_required,
    Behavior.LOGIN: login,
    Behavior.FEDERATED_CALLBACK: federated_callback,
}

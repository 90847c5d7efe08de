"""
gateway/headers.py -- Header rewriting in both directions.

Outbound (client -> upstream):
  - hop-by-hop headers, Host and Content-Length are dropped; httpx sets its own
  - client-supplied X-Forwarded-* are replaced, except X-Forwarded-For which
    is extended with the client address
  - Content-Type defaults to application/json when a body is present

Inbound (upstream -> client):
  - every Access-Control-* header is dropped; the gateway's CORS middleware
    is the only source of CORS headers the browser sees
  - Content-Length and Content-Encoding are dropped because httpx has already
    decoded the body and Starlette recomputes the length
  - repeated headers (Set-Cookie) are kept one entry per value
"""

from __future__ import annotations

import httpx
from starlette.requests import Request

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_OUTBOUND_DROP = HOP_BY_HOP | {"host", "content-length"}
_INBOUND_DROP = HOP_BY_HOP | {"content-length", "content-encoding"}
_CORS_PREFIX = "access-control-"
_FORWARDED_PREFIX = "x-forwarded-"


def forwarded_headers(request: Request) -> dict[str, str]:
    client = request.client.host if request.client else "unknown"
    prior = request.headers.get("x-forwarded-for")
    return {
        "x-forwarded-host": request.headers.get("host", request.url.netloc),
        "x-forwarded-proto": request.url.scheme,
        "x-forwarded-for": f"{prior}, {client}" if prior else client,
    }


def outbound_request_headers(request: Request, body: bytes) -> list[tuple[str, str]]:
    """Headers to send upstream for this client request."""
    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name.lower() not in _OUTBOUND_DROP and not name.lower().startswith(_FORWARDED_PREFIX)
    ]
    if body and "content-type" not in request.headers:
        headers.append(("content-type", "application/json"))
    headers.extend(forwarded_headers(request).items())
    return headers


def inbound_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    """Headers to relay to the client from an upstream response."""
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in _INBOUND_DROP and not name.lower().startswith(_CORS_PREFIX)
    ]

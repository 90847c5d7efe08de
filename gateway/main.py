"""
gateway/main.py -- FastAPI application for the public gateway.

Run with:  python main.py gateway
           uvicorn asgi:gateway_app --port 8000

Every path is caught by a single dispatch route that looks the path up in
the RouteTable and hands the request to the behavior's handler in
gateway/proxy.py. Unmatched paths are a local 404.

Middleware stack (outermost to innermost):
  1. cors_policy   -- answers OPTIONS with 200 and stamps the gateway's
                      Access-Control-* headers on every response
                      (handler crashes are re-raised as ServiceError so
                      their 500 passes through here too)
  2. log_requests  -- method, path, status, latency per request

Lifespan creates the shared httpx.AsyncClient and the route table and closes
the client on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from core.config import get_settings
from core.errors import NotFoundError, ServiceError
from gateway.proxy import HANDLERS, ClientDisconnected
from gateway.routes import RouteTable, default_routes

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sessiongate.gateway")

_settings = get_settings()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": _settings.frontend_url,
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, Cookie, Stripe-Signature",
    "Access-Control-Allow-Credentials": "true",
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.routes = default_routes(_settings.auth_service_url, _settings.backend_service_url)
    app.state.http = httpx.AsyncClient(timeout=_settings.upstream_timeout_seconds, follow_redirects=False)
    logger.info("Gateway starting up with %d routes", len(app.state.routes))
    for route in app.state.routes:
        logger.info("  %-28s %-18s %s", route.pattern, route.behavior.value, route.upstream or "-")

    yield

    await app.state.http.aclose()
    logger.info("Gateway shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="sessiongate gateway",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


# ---------------------------------------------------------------------------
# Middleware stack
#
# @app.middleware wraps the current stack, so the last one declared is the
# outermost. cors_policy is declared last so it sees every response,
# including error envelopes and local 404s.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


@app.middleware("http")
async def cors_policy(request: Request, call_next):
    if request.method == "OPTIONS":
        response = Response(status_code=200)
    else:
        response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "An unexpected error occurred."}},
        headers=CORS_HEADERS,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@app.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def dispatch(request: Request, path: str) -> Response:
    routes: RouteTable = request.app.state.routes
    route = routes.match(request.url.path)
    if route is None:
        raise NotFoundError(f"No route for {request.url.path}")

    try:
        return await HANDLERS[route.behavior](request, route, request.app.state.http)
    except ClientDisconnected:
        logger.info("Client went away during %s %s; upstream call cancelled", request.method, request.url.path)
        return Response(status_code=499)
    except ServiceError:
        raise
    except Exception as e:
        # Must leave as a ServiceError: bare exceptions bypass cors_policy.
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        raise ServiceError() from e

"""
gateway/routes.py -- The gateway's path-to-upstream table.

A pattern ending in "/" matches its whole subtree; any other pattern matches
only that exact path. An exact match always wins. Among subtree matches the
longest pattern wins, so "/api/avatars/" beats "/api/" for /api/avatars/7.

Each route names one of four behaviors:

  PROXY               forward as-is to the route's upstream
  SESSION_REQUIRED    401 unless the session cookie is present, then forward
  LOGIN               forward to the auth service, move the token from the
                      JSON body into the session cookie
  FEDERATED_CALLBACK  handled locally: token query param -> cookie -> redirect
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum


class Behavior(str, Enum):
    PROXY = "proxy"
    SESSION_REQUIRED = "session_required"
    LOGIN = "login"
    FEDERATED_CALLBACK = "federated_callback"


@dataclass(frozen=True)
class Route:
    pattern: str
    behavior: Behavior
    upstream: str | None = None  # base URL; None for routes answered locally

    @property
    def is_subtree(self) -> bool:
        return self.pattern.endswith("/")

    def matches(self, path: str) -> bool:
        if self.is_subtree:
            return path.startswith(self.pattern)
        return path == self.pattern


class RouteTable:
    """Ordered lookup over a fixed set of routes."""

    def __init__(self, routes: Iterable[Route]) -> None:
        self._routes: list[Route] = []
        self._exact: dict[str, Route] = {}
        self._subtrees: list[Route] = []
        for route in routes:
            if any(r.pattern == route.pattern for r in self._routes):
                raise ValueError(f"Duplicate route pattern: {route.pattern}")
            if route.behavior is not Behavior.FEDERATED_CALLBACK and not route.upstream:
                raise ValueError(f"Route {route.pattern} needs an upstream")
            self._routes.append(route)
            if route.is_subtree:
                self._subtrees.append(route)
            else:
                self._exact[route.pattern] = route
        self._subtrees.sort(key=lambda r: len(r.pattern), reverse=True)

    def match(self, path: str) -> Route | None:
        """Return the route for path, or None when nothing matches."""
        route = self._exact.get(path)
        if route is not None:
            return route
        for route in self._subtrees:
            if route.matches(path):
                return route
        return None

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)


def default_routes(auth_url: str, backend_url: str) -> RouteTable:
    """The production route table, pointed at the given upstream base URLs."""
    auth = auth_url.rstrip("/")
    backend = backend_url.rstrip("/")
    return RouteTable(
        [
            Route("/health", Behavior.PROXY, auth),
            Route("/auth/callback", Behavior.FEDERATED_CALLBACK),
            Route("/auth/login", Behavior.LOGIN, auth),
            Route("/auth/", Behavior.PROXY, auth),
            Route("/api/me", Behavior.SESSION_REQUIRED, auth),
            Route("/api/users/search", Behavior.PROXY, auth),
            Route("/api/subscriptions/webhook", Behavior.PROXY, backend),
            Route("/api/subscriptions/checkout", Behavior.PROXY, backend),
            Route("/api/subscriptions/", Behavior.PROXY, backend),
            Route("/api/avatars", Behavior.SESSION_REQUIRED, backend),
            Route("/api/avatars/", Behavior.SESSION_REQUIRED, backend),
            Route("/api/", Behavior.PROXY, auth),
            Route("/contracts", Behavior.PROXY, backend),
            Route("/contracts/", Behavior.PROXY, backend),
            Route("/friends", Behavior.PROXY, backend),
            Route("/friends/", Behavior.PROXY, backend),
            Route("/messages", Behavior.PROXY, backend),
            Route("/messages/", Behavior.PROXY, backend),
        ]
    )

"""
api/routes/users.py -- Session-backed user endpoints.

Routes:
  GET /api/me             -- public view of the session's user (401 without one)
  GET /api/users/search   -- find verified users by name or email substring
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.models import UserSearchResponse, UserView
from auth.dependencies import get_auth_core, get_current_user
from auth.models import PublicUser
from auth.service import SEARCH_DEFAULT_LIMIT, AuthCore

router = APIRouter()


def _parse_limit(raw: str | None) -> int:
    """Anything that is not a positive integer means the default."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return SEARCH_DEFAULT_LIMIT
    return value if value > 0 else SEARCH_DEFAULT_LIMIT


@router.get("/api/me", response_model=UserView)
def me(current_user: PublicUser = Depends(get_current_user)) -> UserView:
    return UserView.from_public(current_user)


@router.get("/api/users/search", response_model=UserSearchResponse)
def search_users(
    query: str = Query(default=""),
    limit: str | None = Query(default=None),
    auth: AuthCore = Depends(get_auth_core),
) -> UserSearchResponse:
    """Blank queries return an empty list; limit defaults to 5 and is capped at 20."""
    users = auth.search_users(query, _parse_limit(limit))
    return UserSearchResponse(users=[UserView.from_public(u) for u in users])

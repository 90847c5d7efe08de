"""
auth/sessions.py -- Session token lifecycle.

Tokens are 32 bytes from the secrets module, hex-encoded (64 characters).
They carry no structure and are not signed: possession is the whole
credential, and the only check is an exact-match lookup with an expiry.

One live session per user: issue() deletes the user's previous sessions
before inserting the new one. The delete is best effort -- a failure is
logged and the new session is still issued. Two concurrent logins for the
same user race; the last insert wins and the loser's token simply stops
resolving once the next delete runs.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from auth.models import Session, User
from auth.store import CredentialStore, to_iso, utc_now

logger = logging.getLogger("sessiongate.auth.sessions")

TOKEN_BYTES = 32
DEFAULT_SESSION_TTL = timedelta(days=7)


def generate_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class SessionAuthority:
    def __init__(self, store: CredentialStore, ttl: timedelta = DEFAULT_SESSION_TTL) -> None:
        self._store = store
        self._ttl = ttl

    def issue(self, user_id: int, expires_at: datetime | None = None) -> str:
        """Create the user's only session and return its token."""
        token = generate_session_token()
        try:
            self._store.delete_user_sessions(user_id)
        except SQLAlchemyError:
            logger.warning("Failed to delete old sessions for user %d", user_id, exc_info=True)

        expiry = expires_at or (utc_now() + self._ttl)
        self._store.create_session(Session(user_id=user_id, token=token, expires_at=to_iso(expiry)))
        logger.info("Session issued for user %d", user_id)
        return token

    def resolve(self, token: str) -> User | None:
        """Return the session's user, or None if the token is unknown or expired."""
        user = self._store.get_user_by_session_token(token)
        if user is None:
            logger.debug("No live session for token %s...", token[:10])
        return user

    def revoke(self, token: str) -> None:
        """Delete the session. Unknown tokens are ignored."""
        if self._store.delete_session(token):
            logger.info("Session revoked")

    def active_sessions(self, user_id: int) -> list[Session]:
        return self._store.get_live_sessions(user_id)

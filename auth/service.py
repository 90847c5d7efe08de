"""
auth/service.py -- AuthCore: registration, verification, login and sessions.

Per-account state machine:

    Unregistered --register--> PendingVerification --verify_email--> Verified
    Verified: LoggedOut <--login / logout--> LoggedIn

Federated accounts are born Verified and never hold a password.

Failures are raised as core.errors / auth.errors kinds so the HTTP layer can
map them without inspecting messages. Storage errors (SQLAlchemyError) are
left to propagate; the app's exception handler turns them into a generic 500.

Partial failure policy: register() and resend_code() persist the user and
code before sending mail. If the mail fails the caller gets MailDeliveryError
but nothing is rolled back; resend_code() is the retry path.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.codes import VerificationCodeIssuer
from auth.errors import EmailNotVerified, InvalidCredentials, InvalidOrExpiredCode, NoSession
from auth.mailer import Mailer, build_mailer
from auth.models import AccountOrigin, LoginResult, PublicUser, User, VerifyOutcome
from auth.passwords import dummy_hash, hash_password, verify_password
from auth.sessions import SessionAuthority
from auth.store import CredentialStore
from core.config import Settings
from core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger("sessiongate.auth.service")

MIN_PASSWORD_LENGTH = 6
SEARCH_DEFAULT_LIMIT = 5
SEARCH_MAX_LIMIT = 20


class AuthCore:
    def __init__(
        self,
        store: CredentialStore,
        codes: VerificationCodeIssuer,
        sessions: SessionAuthority,
        mailer: Mailer,
        health_timeout: float = 1.0,
    ) -> None:
        self.store = store
        self.codes = codes
        self.sessions = sessions
        self.mailer = mailer
        self._health_timeout = health_timeout

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> int:
        """Create an unverified local account and email it a code. Returns the user id."""
        if not email or not password or not name:
            raise ValidationError("Email, password, and name are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if self.store.get_by_email(email) is not None:
            raise ConflictError("Email already registered")

        user = User(email=email, name=name, hashed_password=hash_password(password))
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise ConflictError("Email already registered") from exc
        logger.info("Local user %d registered (%s)", user_id, email)

        self._send_code(email)
        return user_id

    def verify_email(self, email: str, code: str) -> None:
        """Consume a code and mark the email verified.

        NotFound, Expired and Invalid all surface as InvalidOrExpiredCode.
        """
        outcome = self.codes.verify(email, code)
        if outcome is not VerifyOutcome.valid:
            logger.info("Verification for %s rejected (%s)", email, outcome.value)
            raise InvalidOrExpiredCode()
        self.store.mark_verified(email)
        logger.info("Email verified: %s", email)

    def resend_code(self, email: str) -> bool:
        """Issue and send a new code. Returns False (no-op) if already verified."""
        user = self.store.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_verified:
            return False
        self.codes.cleanup(email)
        self._send_code(email)
        return True

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email + password and open a session.

        bcrypt runs on every path (against a dummy hash when there is no
        usable password) so response time does not reveal which emails exist
        or which are federated.
        """
        user = self.store.get_by_email(email)
        if user is None or user.origin is AccountOrigin.federated or user.hashed_password is None:
            verify_password(password, dummy_hash())
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_verified:
            raise EmailNotVerified()

        token = self.sessions.issue(user.id)
        logger.info("Login successful for user %d", user.id)
        return LoginResult(token=token, user=_public(user))

    # ------------------------------------------------------------------
    # Federated accounts
    # ------------------------------------------------------------------

    def complete_federated_login(
        self,
        provider: str,
        external_id: str,
        email: str,
        name: str,
        avatar_url: str | None = None,
    ) -> str:
        """Find or create the federated user and open a fresh session. Returns the token.

        An email already owned by a different account is a Conflict; the two
        identities are never linked implicitly.
        """
        user = self.store.get_by_external_id(provider, external_id)
        if user is None:
            if self.store.get_by_email(email) is not None:
                raise ConflictError("Email already registered with another sign-in method")
            user = User(
                email=email,
                name=name or email,
                origin=AccountOrigin.federated,
                external_provider=provider,
                external_id=external_id,
                avatar_url=avatar_url,
                is_verified=True,
            )
            try:
                user.id = self.store.create_user(user)
            except IntegrityError as exc:
                raise ConflictError("Email already registered with another sign-in method") from exc
            logger.info("Federated user %d created via %s", user.id, provider)
        return self.sessions.issue(user.id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def current_user(self, token: str | None) -> PublicUser:
        user = self.sessions.resolve(token) if token else None
        if user is None:
            raise UnauthorizedError()
        return _public(user)

    def logout(self, token: str | None) -> None:
        if not token:
            raise NoSession()
        self.sessions.revoke(token)

    # ------------------------------------------------------------------
    # Directory and health
    # ------------------------------------------------------------------

    def search_users(self, query: str, limit: int = SEARCH_DEFAULT_LIMIT) -> list[PublicUser]:
        query = query.strip()
        if not query:
            return []
        if limit <= 0:
            limit = SEARCH_DEFAULT_LIMIT
        limit = min(limit, SEARCH_MAX_LIMIT)
        return [_public(u) for u in self.store.search_users(query, limit)]

    async def health(self) -> dict[str, str]:
        """Ping the store within the health timeout budget."""
        try:
            await asyncio.wait_for(asyncio.to_thread(self.store.ping), timeout=self._health_timeout)
        except asyncio.TimeoutError:
            logger.warning("Health check timed out after %.1fs", self._health_timeout)
            return {"status": "down", "message": "db down: timed out"}
        except SQLAlchemyError:
            logger.warning("Health check failed", exc_info=True)
            return {"status": "down", "message": "db down"}
        return {"status": "up", "message": "It's healthy"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _send_code(self, email: str) -> None:
        vc = self.codes.issue(email)
        self.mailer.send_verification(email, vc.code)


def _public(user: User) -> PublicUser:
    return PublicUser(id=user.id, email=user.email, name=user.name, avatar=user.avatar_url or "")


def build_auth_core(settings: Settings, store: CredentialStore | None = None, mailer: Mailer | None = None) -> AuthCore:
    """Wire an AuthCore from settings. store and mailer may be injected (tests)."""
    store = store or CredentialStore(settings.database_url)
    return AuthCore(
        store=store,
        codes=VerificationCodeIssuer(store, ttl=timedelta(seconds=settings.verification_code_ttl_seconds)),
        sessions=SessionAuthority(store, ttl=timedelta(seconds=settings.session_ttl_seconds)),
        mailer=mailer or build_mailer(settings),
        health_timeout=settings.health_timeout_seconds,
    )
